"""Shared bot state and the data that flows between the bot and its chat session."""

from __future__ import annotations

import itertools
import queue
from dataclasses import dataclass, field
from datetime import datetime, timezone


@dataclass
class User:
    """A chat user."""

    id: str
    username: str = ""


@dataclass
class Attachment:
    """A file attached to an incoming message."""

    url: str
    content_type: str = ""
    filename: str = ""


@dataclass
class OutgoingFile:
    """A file to upload along with a message."""

    name: str
    data: bytes


@dataclass
class Message:
    """A chat message, either received or sent by the bot."""

    id: str
    channel_id: str
    author: User
    content: str = ""
    attachments: list[Attachment] = field(default_factory=list)
    mentions: list[User] = field(default_factory=list)
    referenced: Message | None = None
    reference_id: str | None = None
    files: list[OutgoingFile] = field(default_factory=list)
    ephemeral: bool = False
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def text_command(self) -> str:
        """Return the first word after the leading command character."""
        return self.content[1:].split(" ")[0]


class Session:
    """An in-memory chat session that keeps every message it sees or sends."""

    def __init__(self, me: User | None = None) -> None:
        self.me = me or User("0", "sancho")
        self.messages: list[Message] = []
        self.sent: list[Message] = []
        self.users: dict[str, User] = {}
        self.avatars: dict[str, bytes] = {}
        self.guilds: dict[str, dict] = {}
        self.channels: dict[str, list[dict]] = {}
        self.dm_channels: dict[str, str] = {}
        self.status = ""
        self._ids = itertools.count(1)

    def _find(self, channel_id: str, message_id: str) -> Message | None:
        return next(
            (m for m in self.messages if m.channel_id == channel_id and m.id == message_id),
            None,
        )

    def send(self, channel_id, content="", reply_to=None, files=None, ephemeral=False):
        """Post a message, optionally as a reply to the message with id ``reply_to``."""
        message = Message(
            id=f"sent-{next(self._ids)}",
            channel_id=channel_id,
            author=self.me,
            content=content,
            referenced=self._find(channel_id, reply_to) if reply_to else None,
            reference_id=reply_to,
            files=list(files or []),
            ephemeral=ephemeral,
        )
        self.messages.append(message)
        self.sent.append(message)
        return message

    def edit(self, channel_id, message_id, content):
        """Replace the text of an existing message."""
        message = self._find(channel_id, message_id)
        if message is None:
            raise LookupError(f"unknown message {message_id} in channel {channel_id}")
        message.content = content
        return message

    def user(self, user_id):
        """Look up a user by id."""
        try:
            return self.users[user_id]
        except KeyError:
            raise LookupError(f"unknown user {user_id}") from None

    def avatar(self, user):
        """Return the avatar image bytes of a user."""
        try:
            return self.avatars[user.id]
        except KeyError:
            raise LookupError(f"no avatar for user {user.id}") from None

    def channel_messages(self, channel_id, limit, around):
        """Return up to ``limit`` messages of a channel centred on message ``around``."""
        history = [m for m in self.messages if m.channel_id == channel_id]
        ids = [m.id for m in history]
        if around not in ids:
            return history[-limit:] if limit > 0 else []
        start = max(0, ids.index(around) - limit // 2)
        return history[start:start + limit]

    def guild(self, guild_id):
        """Return a guild record with at least ``id``, ``name`` and ``member_count``."""
        try:
            return self.guilds[guild_id]
        except KeyError:
            raise LookupError(f"unknown guild {guild_id}") from None

    def guild_channels(self, guild_id):
        """Return the channel records of a guild."""
        try:
            return self.channels[guild_id]
        except KeyError:
            raise LookupError(f"unknown guild {guild_id}") from None

    def dm_channel(self, user_id):
        """Return the id of the direct-message channel with a user."""
        return self.dm_channels.setdefault(user_id, f"dm-{user_id}")

    def set_status(self, text):
        """Set the bot's custom status."""
        self.status = text


@dataclass
class Instance:
    """Everything a command handler needs: the session, reminders and an error sink."""

    session: Session
    reminders: object = None
    errors: queue.Queue = field(default_factory=queue.Queue)

    def report(self, error):
        """Queue an error for the main loop to log; ``None`` is ignored."""
        if error is not None:
            self.errors.put(error)

    def drain_errors(self):
        """Remove and return every queued error."""
        drained = []
        while True:
            try:
                drained.append(self.errors.get_nowait())
            except queue.Empty:
                return drained