"""The table of chat commands and their aliases."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable

from .dice import roll
from .imaging import (
    apply_image_processing,
    lament_mourn_and_despair,
    speech_bubble_command,
)
from .limbus import limbus_roll
from .misc import bod, help_command, sanchoball, send_img
from .remindcmd import delete_reminder, list_reminders, set_reminder, set_timezone


@dataclass(frozen=True)
class BotCommand:
    """A chat command: the names it answers to and its handler."""

    aliases: tuple[str, ...]
    func: Callable


BOT_COMMANDS = (
    BotCommand(("help",), help_command),
    BotCommand(("roll",), roll),
    BotCommand(("bod",), bod),
    BotCommand(("nacho", "badword", "rye", "ryeldhunt", "pet", "sanitize"), send_img),
    BotCommand(("remind", "remindme"), set_reminder),
    BotCommand(("reminders",), list_reminders),
    BotCommand(("deremind", "forget"), delete_reminder),
    BotCommand(("lmd",), lament_mourn_and_despair),
    BotCommand(("said", "speechbubble"), speech_bubble_command),
    BotCommand(("sanchoball", "8ball"), sanchoball),
    BotCommand(("settz",), set_timezone),
    BotCommand(("yesod", "jpeg", "corru"), apply_image_processing),
    BotCommand(("limbusroll", "skill", "skillroll"), limbus_roll),
)


def find_bot_commands(name):
    """Return every command answering to ``name``, in table order."""
    return [command for command in BOT_COMMANDS if name in command.aliases]