"""A Discord chat bot with dice rolls, reminders, image filters and an operator console."""

__version__ = "0.1.0"