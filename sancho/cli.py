"""Operator console: lines typed on standard input that act through the bot."""

from __future__ import annotations

import logging
from io import BytesIO
from pathlib import Path

from PIL import Image

from .instance import OutgoingFile

GOODNIGHT_CHANNEL = "1331332284372222074"
GOODNIGHT_IMAGE = "goodnight.png"
GOODNIGHT_TEXT = (
    "Good night, Family. Tomorrow we shall take part in the banquet... again. "
    "For now, however, I will rest."
)
BAD_REPLY_FORMAT = "Wow. You somehow fucked that up."
IMAGE_DIR = "img"

_log = logging.getLogger(__name__)


def _unescape(text):
    return text.replace("\\n", "\n")


class Console:
    """Interprets console lines such as ``say hello`` or ``chan <id>``."""

    def __init__(
        self,
        session,
        echo_channel="",
        listen_channel="",
        goodnight_channel=GOODNIGHT_CHANNEL,
    ):
        self.session = session
        self.echo_channel = echo_channel
        self.listen_channel = listen_channel
        self.goodnight_channel = goodnight_channel
        self.image_dir = Path(IMAGE_DIR)
        self._commands = {
            "gn": self.goodnight,
            "chan": self.change_channel,
            "say": self.say,
            "sayr": self.say_reply,
            "sayi": self.say_attachment,
            "listen": self.listen,
            "channels": self.list_channels,
        }

    def dispatch(self, line):
        """Run one console line; return True when the bot should shut down."""
        handler = self._commands.get(line.split(" ")[0])
        if handler is None:
            return False
        try:
            return handler(line) is True
        except (OSError, LookupError, ValueError) as exc:
            _log.error("%s", exc)
            return False

    def goodnight(self, line):
        """Say good night with a picture and ask for shutdown."""
        data = (self.image_dir / GOODNIGHT_IMAGE).read_bytes()
        self.session.send(
            self.goodnight_channel,
            GOODNIGHT_TEXT,
            files=[OutgoingFile(GOODNIGHT_IMAGE, data)],
        )
        return True

    def change_channel(self, line):
        """Switch the channel that ``say`` commands post to."""
        self.echo_channel = line.removeprefix("chan ")

    def say(self, line):
        """Post text to the echo channel."""
        text = _unescape(line.removeprefix("say "))
        return self.session.send(self.echo_channel, text)

    def say_reply(self, line):
        """Post text as a reply: ``sayr <message id> <text>``."""
        raw = line.removeprefix("sayr ")
        reply_id, found, text = raw.partition(" ")
        if not found:
            raise ValueError(BAD_REPLY_FORMAT)
        return self.session.send(self.echo_channel, _unescape(text), reply_to=reply_id)

    def say_attachment(self, line):
        """Post an image: ``sayi <file> [<message id> <text>|<text>]``."""
        raw = line.removeprefix("sayi ")
        name, found, text = raw.partition(" ")
        if not found:
            text = ""
        reply_id = None
        if " " in text:
            reply_id, _, text = text.partition(" ")
        data = (self.image_dir / name).read_bytes()
        return self.session.send(
            self.echo_channel,
            _unescape(text),
            reply_to=reply_id or None,
            files=[OutgoingFile(name, data)],
        )

    def get_pfp(self, line):
        """Save a user's avatar as ``<id>.png`` in the image directory."""
        user_id = line.removeprefix("pfp ")
        try:
            user = self.session.user(user_id)
        except LookupError as exc:
            raise LookupError(f"user not found {exc}") from exc
        try:
            avatar = self.session.avatar(user)
        except LookupError as exc:
            raise LookupError(f"could not pull pfp {exc}") from exc
        buffer = BytesIO()
        try:
            with Image.open(BytesIO(avatar)) as image:
                image.convert("RGBA").save(buffer, "PNG")
        except (OSError, ValueError) as exc:
            raise ValueError(f"error encoding: weird {exc}") from exc
        path = self.image_dir / f"{user_id}.png"
        path.write_bytes(buffer.getvalue())
        return path

    def list_channels(self, line):
        """Print the channels of a server and return the printed lines."""
        guild_id = line.removeprefix("channels ")
        try:
            channels = self.session.guild_channels(guild_id)
        except LookupError as exc:
            raise LookupError(f"server not found: {exc}") from exc
        try:
            name = self.session.guild(guild_id).get("name", "")
        except LookupError:
            name = ""
        lines = [f"Channels of server {name}:"]
        lines.extend(
            f"[{number}] {channel.get('name', '')} ({channel.get('id', '')})"
            for number, channel in enumerate(channels)
        )
        print("\n".join(lines))
        return lines

    def listen(self, line):
        """Echo messages of a channel to the console; bare ``listen`` stops."""
        if line.startswith("listen "):
            self.listen_channel = line.removeprefix("listen ")
            print(self.listen_channel)
        else:
            self.listen_channel = ""