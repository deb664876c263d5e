"""The reminder commands: parsing ``.remind`` requests, listing, deleting and time zones."""

from __future__ import annotations

import re
import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone, tzinfo
from datetime import time as clock_time
from pathlib import Path
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from .misc import i_know_what_you_are, sadness
from .reminders import Reminder

TIMEZONES_FILE = "timezones.txt"
TOKENS = ("to", "in", "at", "on", "every", "forever", "times")
UNIT_LETTERS = "smhdwyc"

I_KNOW = "I know what you are."
NO_INTERVAL = (
    "Invalid reminder formatting: try again! (you probably forgot the time interval)"
)
NO_TIMEZONE = (
    "You tried to set an absolute reminder, but haven't specified a timezone! "
    "To do that, use .settz."
)

_INT = re.compile(r"[+-]?\d+")
_FIXED = {
    "s": 1, "seconds": 1, "second": 1, "sec": 1,
    "m": 60, "minutes": 60, "minute": 60, "min": 60,
    "h": 3600, "hours": 3600, "hour": 3600,
}
_CALENDAR = {
    "d": (0, 0, 1), "days": (0, 0, 1), "day": (0, 0, 1),
    "w": (0, 0, 7), "weeks": (0, 0, 7), "week": (0, 0, 7),
    "months": (0, 1, 0), "month": (0, 1, 0),
    "y": (1, 0, 0), "years": (1, 0, 0), "year": (1, 0, 0),
    "c": (100, 0, 0), "centuries": (100, 0, 0), "century": (100, 0, 0),
}


class ReminderFormatError(ValueError):
    """Raised when a reminder request cannot be understood.

    ``reply`` is the text shown to the user who asked.
    """

    def __init__(self, detail, reply=I_KNOW):
        super().__init__(detail)
        self.reply = reply


@dataclass
class ReminderRequest:
    """What a ``.remind`` command asks for; ``end`` is in Unix seconds."""

    end: int
    message: str
    target: str
    repeats: int = 1
    period: int = 0
    relative: bool = False


@dataclass
class _Token:
    key: str
    index: int
    txt: str = ""


def _now(now):
    return int(time.time()) if now is None else int(now)


def _atoi(text):
    return int(text) if _INT.fullmatch(text) else None


def _add_date(moment, years, months, days):
    months_total = moment.month - 1 + months
    year = moment.year + years + months_total // 12
    first = moment.replace(year=year, month=months_total % 12 + 1, day=1)
    return first + timedelta(days=moment.day - 1 + days)


def _unit_seconds(unit, amount, now):
    if unit in _FIXED:
        return amount * _FIXED[unit]
    if unit in _CALENDAR:
        years, months, days = _CALENDAR[unit]
        base = datetime.fromtimestamp(now, timezone.utc)
        try:
            shifted = _add_date(base, years * amount, months * amount, days * amount)
        except (OverflowError, ValueError) as exc:
            raise ReminderFormatError(f"duration out of range: {amount} {unit}") from exc
        return int(shifted.timestamp()) - now
    return None


def parse_duration(words, now=None):
    """Read ``<number> <unit>`` pairs; return the seconds and the words left over."""
    now = _now(now)
    words = list(words)
    total = 0
    while words:
        head = words[0]
        amount = _atoi(head)
        if amount is None:
            if head in ("a", "an"):
                amount = 1
            elif head and head[-1] in UNIT_LETTERS:
                amount = _atoi(head[:-1])
                if amount is None:
                    break
                words = [head[:-1], head[-1], *words[1:]]
            else:
                break
        if len(words) < 2:
            break
        seconds = _unit_seconds(words[1].lower(), amount, now)
        if seconds is None:
            break
        total += seconds
        words = words[2:]
    return total, words


def _parse_every(words, now):
    if words and words[0].lower() in {**_FIXED, **_CALENDAR}:
        words = ["1", *words]
    return parse_duration(words, now)


def _parse_clock(txt):
    parts = txt.strip().split(":")
    values = [_atoi(part) for part in parts]
    if any(value is None for value in values):
        raise ReminderFormatError(f"bad time formatting: {txt.strip()!r}")
    if len(values) == 2:
        hour, minute, second = values[0], values[1], 0
    elif len(values) == 3:
        hour, minute, second = values
    else:
        raise ReminderFormatError(
            f"bad time formatting (found {len(values)} fragments, expected 2 or 3)"
        )
    return hour * 3600 + minute * 60 + second


def _parse_date(txt, now):
    stripped = txt.strip()
    for separator in "/.-":
        if separator in stripped:
            parts = stripped.split(separator)
            break
    else:
        raise ReminderFormatError(f'bad date separator "{stripped}"')
    values = []
    for part in parts:
        value = _atoi(part)
        if value is None:
            raise ReminderFormatError(f"bad date formatting ({part} is not number)")
        values.append(value)
    this_year = datetime.fromtimestamp(now, timezone.utc).year
    if len(values) == 2:
        year = this_year
    elif len(values) == 3:
        year = values[2]
    else:
        raise ReminderFormatError(
            f"bad date formatting (found {len(values)} fragments, expected 2 or 3)"
        )
    if year % 100 == year:
        year += (this_year // 100) * 100
    try:
        return datetime(year, values[1], values[0]).date()
    except ValueError as exc:
        raise ReminderFormatError(f"no such date: {stripped}") from exc


def _resolve_zone(timezone_lookup, user_id):
    name = timezone_lookup(user_id) if timezone_lookup is not None else None
    if name is None or name == "":
        raise ReminderFormatError("no timezone set", reply=NO_TIMEZONE)
    if isinstance(name, tzinfo):
        return name
    return ZoneInfo(name)


def parse_reminder(text, author_id, now=None, timezone_lookup=None):
    """Turn a ``.remind`` command into a :class:`ReminderRequest`.

    ``timezone_lookup`` maps a user id to a zone name or tzinfo, or ``None``.
    """
    now = _now(now)
    words = text.removeprefix(".remind").strip().split(" ")

    tokens: list[_Token] = []
    for index, word in enumerate(words):
        if word in TOKENS:
            tokens.append(_Token(word, index))
        elif tokens:
            tokens[-1].txt += word + " "
    if not tokens:
        raise ReminderFormatError("no keywords in reminder", reply=NO_INTERVAL)

    first = tokens[0].index
    msg = (" ".join(words[:first]) + " ").removeprefix("me ")
    relative_end = None
    clock = None
    day = None
    forever = False
    repeats = 1
    period = 0

    for token in tokens:
        relative = relative_end is not None
        verbatim = f"{token.key} {token.txt}"
        if token.key == "in":
            if relative or clock is not None or day is not None:
                msg += verbatim
                continue
            total, rest = parse_duration(token.txt.strip().split(" "), now)
            if total == 0:
                continue
            relative_end = now + total
            msg += " ".join(rest)
        elif token.key == "at":
            if relative or clock is not None:
                msg += verbatim
                continue
            clock = _parse_clock(token.txt)
        elif token.key == "on":
            if relative or day is not None:
                msg += verbatim
                continue
            day = _parse_date(token.txt, now)
        elif token.key == "every":
            if period != 0:
                msg += verbatim
                continue
            total, rest = _parse_every(token.txt.strip().split(" "), now)
            if total == 0:
                continue
            period = total
            msg += " ".join(rest)
        elif token.key == "times":
            count_word = words[token.index - 1] if token.index > 0 else ""
            count = _atoi(count_word)
            if repeats != 1 or count is None:
                msg += verbatim
                continue
            repeats = count
            msg = msg[: len(msg) - len(count_word)] + token.txt
        elif token.key == "forever":
            forever = True
        else:
            msg += verbatim

    if relative_end is not None:
        end = relative_end
    elif clock is None and day is None:
        raise ReminderFormatError("no time given", reply=NO_INTERVAL)
    else:
        zone = _resolve_zone(timezone_lookup, author_id)
        local_now = datetime.fromtimestamp(now, zone)
        on = day or local_now.date()
        if clock is None:
            clock = local_now.hour * 3600 + local_now.minute * 60 + local_now.second
        wall = datetime.combine(on, clock_time()) + timedelta(seconds=clock)
        end = int(wall.replace(tzinfo=zone).timestamp())

    if forever and period != 0 and repeats == 1:
        repeats = -1

    head, _, rest = msg.partition(" ")
    if head == "to":
        msg = rest

    target = author_id
    tag = next((word for word in words[:first] if word.startswith("<@")), None)
    if tag is not None:
        target = tag[2:-1]
        msg = msg.replace(f"<@{target}>", "")

    msg = msg.strip().removeprefix("to ")
    return ReminderRequest(
        end=end,
        message=msg,
        target=target,
        repeats=repeats,
        period=period,
        relative=relative_end is not None,
    )


def lookup_timezone(path, user_id):
    """Return the last time zone recorded for a user in the file, or ``None``."""
    zone = None
    for line in Path(path).read_text(encoding="utf-8").splitlines():
        fields = line.split()
        if len(fields) >= 2 and fields[0] == user_id:
            zone = fields[1]
    return zone


def normalize_timezone(text):
    """Map shorthand such as ``utc+2`` onto an ``Etc/`` zone name."""
    if "/" not in text:
        return "Etc/" + text.upper().replace("UTC", "GMT")
    return text


def set_reminder(inst, message):
    """Answer a ``.remind`` command by storing a new reminder."""
    now = int(time.time())
    try:
        request = parse_reminder(
            message.content,
            message.author.id,
            now,
            lambda user_id: lookup_timezone(TIMEZONES_FILE, user_id),
        )
    except ReminderFormatError as exc:
        inst.session.send(message.channel_id, exc.reply, reply_to=message.id)
        if exc.reply == I_KNOW:
            inst.report(exc)
        return
    except (OSError, ZoneInfoNotFoundError, ValueError) as exc:
        sadness(inst, message)
        inst.report(exc)
        return

    reminder = Reminder(
        end=request.end,
        start=now,
        message=request.message,
        author=message.author.id,
        target=request.target,
        rqid=message.id,
        request=message,
        repeats=request.repeats - 1,
        period=request.period,
    )
    try:
        inst.reminders.append(reminder, message.channel_id)
    except OSError as exc:
        sadness(inst, message)
        inst.report(exc)
        return
    inst.session.send(
        message.channel_id,
        f"...As you wish. I shall send a reminder at <t:{request.end}>.",
        reply_to=message.id,
    )


def list_reminders(inst, message):
    """Show the reminders addressed to the asking user."""
    mine = inst.reminders.for_target(message.author.id)
    if not mine:
        inst.session.send(message.channel_id, "No reminders set.", reply_to=message.id)
        return
    listing = "".join(
        f"{number}: {reminder.message} @ <t:{reminder.end}>\n"
        for number, reminder in enumerate(mine, start=1)
    )
    inst.session.send(message.channel_id, listing, reply_to=message.id, ephemeral=True)


def delete_reminder(inst, message):
    """Delete the n-th reminder the asking user has set."""
    _, found, raw_index = message.content.partition(" ")
    index = _atoi(raw_index) if found else None
    if index is None:
        i_know_what_you_are(inst, message)
        return
    try:
        victim = inst.reminders.delete_nth(message.author.id, index)
    except OSError as exc:
        inst.report(exc)
        return
    if victim is not None:
        inst.session.send(
            message.channel_id,
            f"...Reminder to {victim.message} successfully deleted.",
            reply_to=message.id,
        )


def set_timezone(inst, message):
    """Record the asking user's time zone."""
    name = normalize_timezone(message.content.removeprefix(".settz "))
    try:
        zone = ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        inst.session.send(
            message.channel_id,
            f'"{name}" is apparently not a valid timezone',
            reply_to=message.id,
        )
        return
    try:
        with open(TIMEZONES_FILE, "a", encoding="utf-8") as handle:
            handle.write(f"{message.author.id} {zone.key}\n")
    except OSError as exc:
        sadness(inst, message)
        inst.report(exc)
        return
    inst.session.send(
        message.channel_id, f"Timezone set to {zone.key}", reply_to=message.id
    )