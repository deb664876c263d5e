"""Reactions to chat events: messages, edits, guild joins and presence changes."""

from __future__ import annotations

import logging
import random
import threading
import time
from dataclasses import dataclass
from datetime import datetime

from .commands import find_bot_commands
from .dice import edit_roll
from .misc import ender_apology

HOME_GUILD = "1250579779837493278"
BOT_USER_ID = "1330935741018276022"
SEND_MESSAGES = 2048
GREETING_WINDOW = 30
FALLBACK_FAMILY = 13

FAMILY_STATUS = (
    "Allow me to regale thee... that, in this... adventure of mine... "
    "Verily, I was blessed with a family of "
)
GREETING = (
    "The Server will be well-cared for.\n"
    "...After all, the onus always fell on me to give roles that you abandoned."
)
WHOOPS_MESSAGES = (
    "...Not now.\n-# We can hold hands though.",
    "You know what?\n-# mwah",
    "T-thy company is m-most ap-appreciated...",
)
CONCEIVED_REPLY = "What... is it this time?"

_log = logging.getLogger(__name__)


@dataclass
class BotConfig:
    """User and channel ids the bot treats specially."""

    crash_channel: str = ""
    owner_id: str = ""
    whoops_id: str = ""
    mattager_id: str = ""
    ender_id: str = ""
    femmo_id: str = ""
    bad_channels: tuple[str, ...] = ()
    home_guild: str = HOME_GUILD
    bot_user_id: str = BOT_USER_ID


def normalize_content(text):
    """Lower-case and trim a message, unwrapping a leading ``((...))`` aside."""
    text = text.strip().lower()
    if text.startswith("(("):
        last = text.rfind("))")
        if last == -1:
            last = len(text) - 2
        text = text[2:last].strip()
    return text


def command_name(text):
    """Return the command word of normalized text, or None if it is no command."""
    if not text.startswith("."):
        return None
    return text[1:].split(" ")[0]


def _displayed_content(message):
    content = message.content
    for user in message.mentions:
        shown = f"@{user.username}"
        content = content.replace(f"<@{user.id}>", shown).replace(f"<@!{user.id}>", shown)
    return content


def _timestamp(value):
    return value.timestamp() if isinstance(value, datetime) else float(value)


class Events:
    """Dispatches chat events to command handlers and canned replies."""

    def __init__(self, inst, console, config):
        self.inst = inst
        self.console = console
        self.config = config
        self.femmo_online = False
        self.rng = random.Random()

    @property
    def _session(self):
        return self.inst.session

    def _set_family_status(self, count):
        self._session.set_status(f"{FAMILY_STATUS}{count}.")

    def on_ready(self):
        """Show the family size and reload stored reminders."""
        try:
            members = self._session.guild(self.config.home_guild)["member_count"]
        except (LookupError, TypeError):
            members = FALLBACK_FAMILY
        self._set_family_status(members - 1)
        if self.inst.reminders is not None:
            self.inst.reminders.revise_after_startup(self._session)

    def on_guild_create(self, guild):
        """Greet a freshly joined server in the first channel the bot may write to."""
        if guild.get("unavailable"):
            return
        print("Joined server", guild.get("name", ""), guild.get("id", ""))
        joined = _timestamp(guild.get("joined_at", 0))
        for channel in guild.get("channels", []):
            writable = channel.get("permissions", 0) & SEND_MESSAGES == SEND_MESSAGES
            if (
                channel.get("type") == 0
                and writable
                and time.time() - joined < GREETING_WINDOW
            ):
                self._session.send(channel["id"], GREETING)
                return
        if guild.get("id") == self.config.home_guild:
            self._set_family_status(guild.get("member_count", 0) - 2)

    def on_message_create(self, message):
        """React to a new message; return the threads started for commands."""
        try:
            return self._handle_message(message)
        except Exception as exc:
            self._session.send(
                self.config.crash_channel,
                f"<@{self.config.owner_id}> FATAL CRASH: {exc}",
            )
            raise

    def _handle_message(self, message):
        session = self._session
        me = session.me.id
        if message.author.id == me:
            return []
        shown = _displayed_content(message)
        if message.channel_id == self.console.listen_channel or "sancho" in shown.lower():
            print(
                f"[{message.timestamp.strftime('%H:%M:%S')}]({message.id}) "
                f"{message.author.username}: {shown}"
            )
        referenced_author = message.referenced.author.id if message.referenced else None
        text = normalize_content(shown)
        if not text:
            return []

        config = self.config
        author = message.author.id
        name = command_name(text)
        if name is not None:
            return [
                self._start(command.func, message) for command in find_bot_commands(name)
            ]
        if (
            "mwah" in text
            and (referenced_author == me or "sancho" in text)
            and author == config.whoops_id
        ):
            pick = self.rng.randrange(len(WHOOPS_MESSAGES))
            for _ in range(3):
                if pick == 1:
                    pick = self.rng.randrange(len(WHOOPS_MESSAGES))
            session.send(message.channel_id, WHOOPS_MESSAGES[pick], reply_to=message.id)
        elif "conceived" in text and author == config.mattager_id:
            session.send(message.channel_id, CONCEIVED_REPLY, reply_to=message.id)
        elif (
            "sorry" in text
            and author == config.ender_id
            and message.channel_id not in config.bad_channels
        ):
            return [self._start(ender_apology, message)]
        return []

    def _start(self, func, message):
        thread = threading.Thread(target=func, args=(self.inst, message), daemon=True)
        thread.start()
        return thread

    def on_message_update(self, message):
        """Re-roll after a roll command was edited; return the bot reply edited."""
        text = normalize_content(_displayed_content(message))
        if command_name(text) != "roll":
            return None
        session = self._session
        try:
            history = session.channel_messages(message.channel_id, 100, message.id)
        except LookupError as exc:
            _log.error("%s", exc)
            return None
        reply = None
        for candidate in history:
            if (
                candidate.referenced is not None
                and candidate.author.id == session.me.id
                and candidate.referenced.id == message.id
            ):
                reply = candidate
        if reply is None:
            _log.warning("couldn't find the reply to edited roll %s", message.id)
            return None
        edit_roll(self.inst, message, reply)
        return reply

    def on_presence_update(self, user_id, status):
        """Track whether the watched user is online; return the tracked state."""
        if user_id == self.config.femmo_id:
            offline = status == "offline"
            if offline and self.femmo_online:
                self.femmo_online = False
                print(self.femmo_online)
            if not offline and not self.femmo_online:
                self.femmo_online = True
                print(self.femmo_online)
        return self.femmo_online