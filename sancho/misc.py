"""Small commands: help, card draws, the answering ball, images and apology counting."""

from __future__ import annotations

import glob
import random
import re
import secrets
from datetime import date
from pathlib import Path

from .instance import OutgoingFile

HELP_FILE = "help.md"
IMAGE_DIR = "img"
APOLOGY_FILE = "apologylines.txt"
COUNTER_FILE = "randombullshit.ini"
BOD_ALIVE = "yujin.png"
BOD_DEAD = "yujinDead.jpg"

SADNESS = (
    "My creator must have fucked something up.\n"
    "Please ping him immediately and repeatedly until he sees this problem."
)
OUTCOMES = (
    "No.",
    "Perhaps.",
    "If Father wills it.",
    "Most definitely.",
    "Absolutely.",
    "Maybe.",
    "Clearly not.",
    "You'd be stupid to try.",
    "Is it not obvious?",
    "...",
    "Depends on you, and you alone.",
    "...You remind me of that arrogantly hopeful Fixer.",
    "For the Family, of course.",
    "V-verily, tis t-true-\n...You get the point. Yes.",
    "That is... simply impossible.",
)

_SYSTEM_RANDOM = random.SystemRandom()
_INT = re.compile(r"[+-]?\d+")


def _atoi(text):
    return int(text) if _INT.fullmatch(text) else None


def _wrap_int64(value):
    value &= (1 << 64) - 1
    return value - (1 << 64) if value >= 1 << 63 else value


def sadness(inst, message):
    """Apologise in the channel when something went wrong on the bot's side."""
    if message is not None:
        inst.session.send(message.channel_id, SADNESS, reply_to=message.id)


def i_know_what_you_are(inst, message):
    """Reply to a misused command."""
    inst.session.send(message.channel_id, "I know what you are.", reply_to=message.id)


def help_command(inst, message):
    """Reply with the help text."""
    try:
        text = Path(HELP_FILE).read_text(encoding="utf-8")
    except OSError as exc:
        sadness(inst, message)
        inst.report(exc)
        return
    try:
        inst.session.send(message.channel_id, text, reply_to=message.id)
    except Exception as exc:  # the session reports transport failures as it sees fit
        inst.report(exc)


def bod_ping(content):
    """Return the user mention that follows ``.bod``, or an empty string."""
    target = content.removeprefix(".bod ")
    if len(target) >= 3 and target[1] == "@" and _atoi(target[2:-1]) is not None:
        return target
    return ""


def bod(inst, message):
    """Draw a number from 1 to 4 and show the matching card."""
    card_dir = Path(IMAGE_DIR)
    try:
        alive = (card_dir / BOD_ALIVE).read_bytes()
        dead = (card_dir / BOD_DEAD).read_bytes()
    except OSError as exc:
        sadness(inst, message)
        inst.report(exc)
        return
    ping = bod_ping(message.content)
    drawn = _SYSTEM_RANDOM.randint(1, 4)
    if drawn == 4:
        inst.session.send(
            message.channel_id, f"**4** {ping}", files=[OutgoingFile(BOD_ALIVE, alive)]
        )
    else:
        inst.session.send(message.channel_id, str(drawn), files=[OutgoingFile(BOD_DEAD, dead)])


def sanchoball_salt(text):
    """Alternating weighted sum of the characters, weighted by byte position."""
    salt = 0
    offset = 0
    for char in text:
        position = offset + 1
        salt += ord(char) * position * (1 if position % 2 else -1)
        offset += len(char.encode("utf-8"))
    return salt


def sanchoball_index(content, author_id, today, rng=None):
    """Pick an answer index; the same question asks the same way on the same day."""
    rng = rng or _SYSTEM_RANDOM
    _, _, question = content.partition(" ")
    salt = sanchoball_salt(question.lower())
    user = _atoi(author_id) or 0
    noise = random.Random(salt).getrandbits(63) if salt else rng.getrandbits(63)
    return abs(_wrap_int64(today + user + noise)) % len(OUTCOMES)


def sanchoball(inst, message):
    """Answer a yes/no question."""
    now = date.today()
    today = now.timetuple().tm_yday + now.year * 365
    index = sanchoball_index(message.content, message.author.id, today)
    inst.session.send(message.channel_id, OUTCOMES[index], reply_to=message.id)


def find_image(name, directory=IMAGE_DIR):
    """Return the first file in ``directory`` named ``name`` with any extension."""
    pattern = str(Path(directory) / f"{glob.escape(name)}.*")
    matches = sorted(glob.glob(pattern))
    if not matches:
        raise FileNotFoundError(f"no image named {name!r} in {directory}")
    return Path(matches[0])


def send_img(inst, message):
    """Post the image named after the command."""
    try:
        path = find_image(message.text_command())
        data = path.read_bytes()
    except OSError as exc:
        sadness(inst, message)
        inst.report(exc)
        return
    inst.session.send(message.channel_id, files=[OutgoingFile(path.name, data)])


def bump_counter(path, key):
    """Increment an integer key of the default section of an INI file and return it."""
    path = Path(path)
    lines = path.read_text(encoding="utf-8").splitlines()
    found = None
    count = 0
    for position, line in enumerate(lines):
        stripped = line.strip()
        if stripped.startswith("["):
            break
        name, sep, value = stripped.partition("=")
        if sep and name.strip() == key:
            found = position
            count = _atoi(value.strip()) or 0
    count += 1
    entry = f"{key} = {count}"
    if found is None:
        lines.insert(0, entry)
    else:
        lines[found] = entry
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")
    return count


def ender_apology(inst, message):
    """Answer an apology with a random line and the running apology count."""
    try:
        lines = Path(APOLOGY_FILE).read_text(encoding="utf-8").split("\r\n")
    except OSError as exc:
        inst.report(exc)
        return
    line = lines[secrets.randbelow(len(lines))]
    try:
        times = bump_counter(COUNTER_FILE, "endercount")
    except OSError as exc:
        inst.report(exc)
        return
    inst.session.send(
        message.channel_id,
        f"{line}\n*Times Ender has apologized: {times}*",
        reply_to=message.id,
    )