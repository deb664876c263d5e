"""Stored reminders: the timers file, the in-memory list and delivery."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from pathlib import Path

from .instance import Message

TIMERS_FILE = "timers.txt"
NOTICE_LIMIT = 2000
LINE_FIELDS = 9
LATE_SUFFIX = " (SORRY I'M LATE I WAS BEING LOBOTOMIZED)"


def _now(now):
    return int(time.time()) if now is None else int(now)


@dataclass
class Reminder:
    """One pending reminder; times are Unix seconds."""

    end: int
    start: int
    message: str
    author: str
    target: str
    rqid: str
    request: Message | None = None
    repeats: int = 0
    period: int = 0
    fires_at: int | None = field(default=None, compare=False)
    fired: bool = field(default=False, compare=False)

    def __post_init__(self) -> None:
        if self.fires_at is None:
            self.fires_at = self.end

    def to_line(self, channel_id):
        """Render the reminder as one line of the timers file."""
        return " ".join(
            [
                self.rqid,
                str(self.end),
                str(self.start),
                self.target,
                channel_id,
                self.author,
                str(self.repeats),
                str(self.period),
                self.message,
            ]
        )

    def format_notice(self):
        """The text posted when the reminder goes off."""
        notice = f"<@{self.target}>: {self.message} (set at <t:{self.start}>)"
        if len(notice) > NOTICE_LIMIT:
            return f"<@{self.target}>: YOUR MESSAGE DIDN'T FIT"
        return notice


def parse_line(line):
    """Parse a timers-file line into ``(reminder, channel_id)``."""
    parts = line.rstrip("\r\n").split(" ", LINE_FIELDS - 1)
    if len(parts) < LINE_FIELDS:
        raise ValueError(f"malformed reminder line: {line!r}")
    rqid, end, start, target, channel_id, author, repeats, period, message = parts
    try:
        reminder = Reminder(
            end=int(end),
            start=int(start),
            message=message,
            author=author,
            target=target,
            rqid=rqid,
            repeats=int(repeats),
            period=int(period),
        )
    except ValueError as exc:
        raise ValueError(f"malformed reminder line: {line!r}") from exc
    return reminder, channel_id


def _read_lines(path):
    text = Path(path).read_text(encoding="utf-8")
    return [line for line in text.splitlines() if line.strip()]


def _write_lines(path, lines):
    Path(path).write_text("".join(f"{line}\n" for line in lines), encoding="utf-8")


class ReminderManager:
    """Keeps the reminders in memory and mirrors them in the timers file."""

    def __init__(self, path=TIMERS_FILE):
        self.path = Path(path)
        self.reminders: list[Reminder] = []

    def append(self, reminder, channel_id):
        """Record a new reminder in the file and in memory."""
        with self.path.open("a", encoding="utf-8") as handle:
            handle.write(reminder.to_line(channel_id) + "\n")
        self.reminders.append(reminder)

    def remove(self, reminder):
        """Drop a reminder from memory; raises ValueError if it is not held."""
        for position, held in enumerate(self.reminders):
            if held is reminder:
                del self.reminders[position]
                return
        raise ValueError("reminder is not managed here")

    def due(self, now=None):
        """Return reminders whose time has come, each only once."""
        now = _now(now)
        ready = [r for r in self.reminders if not r.fired and r.fires_at <= now]
        for reminder in ready:
            reminder.fired = True
        return ready

    def for_target(self, user_id):
        """Return the reminders addressed to a user, in order."""
        return [r for r in self.reminders if r.target == user_id]

    def revise_after_startup(self, session, now=None):
        """Load the file, deliver overdue reminders late and reschedule repeats."""
        now = _now(now)
        kept = []
        for line in _read_lines(self.path):
            reminder, channel_id = parse_line(line)
            if reminder.end > now:
                kept.append(line)
                self.reminders.append(reminder)
                continue
            session.send(
                channel_id,
                f"<@{reminder.target}>: {reminder.message} "
                f"(set at <t:{reminder.start}>){LATE_SUFFIX}",
            )
            if reminder.repeats == 0 or reminder.period <= 0:
                continue
            skipped = (now - reminder.end) // reminder.period
            if reminder.repeats > skipped or reminder.repeats < 0:
                revived = Reminder(
                    end=reminder.end + reminder.period * (skipped + 1),
                    start=reminder.end + reminder.period * skipped,
                    message=reminder.message,
                    author=reminder.author,
                    target=reminder.target,
                    rqid=reminder.rqid,
                    repeats=reminder.repeats - skipped,
                    period=reminder.period,
                )
                kept.append(revived.to_line(channel_id))
                self.reminders.append(revived)
        _write_lines(self.path, kept)

    def delete_nth(self, author_id, index):
        """Delete the ``index``-th (from 1) reminder set by a user; return it or None."""
        kept = []
        count = 0
        for line in _read_lines(self.path):
            fields = line.split(" ", LINE_FIELDS - 1)
            if len(fields) > 5 and fields[5] == author_id:
                count += 1
                if count == index:
                    continue
            kept.append(line)
        _write_lines(self.path, kept)

        mine = [r for r in self.reminders if r.author == author_id]
        if 1 <= index <= len(mine):
            victim = mine[index - 1]
            self.remove(victim)
            return victim
        return None


def remind(inst, reminder, now=None):
    """Deliver a reminder, then drop it or schedule its next repeat."""
    now = _now(now)
    manager = inst.reminders
    try:
        lines = _read_lines(manager.path)
    except OSError:
        return

    notice = reminder.format_notice()
    try:
        if reminder.request is None:
            channel_id = ""
            for line in lines:
                fields = line.split(" ", LINE_FIELDS - 1)
                if fields[0] == reminder.rqid and len(fields) > 4:
                    channel_id = fields[4]
            if not channel_id:
                return
            inst.session.send(channel_id, notice)
        else:
            inst.session.send(
                reminder.request.channel_id, notice, reply_to=reminder.request.id
            )
    except Exception:  # delivery failures leave the reminder untouched
        return

    rewritten = []
    for line in lines:
        if line.split(" ", 1)[0] != reminder.rqid:
            rewritten.append(line)
            continue
        stored, channel_id = parse_line(line)
        if stored.repeats == 0:
            continue
        following = Reminder(
            end=reminder.end + reminder.period,
            start=reminder.end,
            message=reminder.message,
            author=reminder.author,
            target=reminder.target,
            rqid=reminder.rqid,
            request=reminder.request,
            repeats=max(reminder.repeats - 1, -1),
            period=reminder.period,
            fires_at=now + reminder.period,
        )
        rewritten.append(following.to_line(channel_id))
        manager.reminders.append(following)

    manager.remove(reminder)
    _write_lines(manager.path, rewritten)