"""A chat session that talks to Discord over its REST API and gateway websocket."""

from __future__ import annotations

import json
import logging
import sys
import threading
import time
from datetime import datetime, timezone

import requests
import websocket

from .instance import Attachment, Message, User

API_VERSION = "9"
API_BASE = f"https://discord.com/api/v{API_VERSION}"
CDN_BASE = "https://cdn.discordapp.com"
REQUEST_TIMEOUT = 30
RECONNECT_DELAY = 5
EPHEMERAL = 1 << 6
ADMINISTRATOR = 1 << 3
ALL_PERMISSIONS = (1 << 53) - 1

_OP_DISPATCH = 0
_OP_HEARTBEAT = 1
_OP_IDENTIFY = 2
_OP_PRESENCE = 3
_OP_RECONNECT = 7
_OP_INVALID_SESSION = 9
_OP_HELLO = 10

_log = logging.getLogger(__name__)


class _ApiError(LookupError):
    """An API request that Discord refused."""


def _parse_timestamp(value):
    if isinstance(value, str):
        try:
            return datetime.fromisoformat(value)
        except ValueError:
            pass
    return datetime.now(timezone.utc)


def _overwrite(perms, overwrite):
    return (perms & ~int(overwrite.get("deny", 0))) | int(overwrite.get("allow", 0))


def _channel_permissions(guild, channel, user_id):
    """Compute the permission bits a user has in a channel of a guild."""
    guild_id = str(guild.get("id", ""))
    if str(guild.get("owner_id", "")) == user_id:
        return ALL_PERMISSIONS
    roles = {str(role["id"]): int(role.get("permissions", 0)) for role in guild.get("roles", [])}
    member = next(
        (m for m in guild.get("members", []) if str(m.get("user", {}).get("id", "")) == user_id),
        {},
    )
    member_roles = [str(role) for role in member.get("roles", [])]
    perms = roles.get(guild_id, 0)
    for role in member_roles:
        perms |= roles.get(role, 0)
    if perms & ADMINISTRATOR:
        return ALL_PERMISSIONS

    overwrites = {str(o["id"]): o for o in channel.get("permission_overwrites", [])}
    if guild_id in overwrites:
        perms = _overwrite(perms, overwrites[guild_id])
    allow = deny = 0
    for role in member_roles:
        if role in overwrites:
            allow |= int(overwrites[role].get("allow", 0))
            deny |= int(overwrites[role].get("deny", 0))
    perms = (perms & ~deny) | allow
    if user_id in overwrites:
        perms = _overwrite(perms, overwrites[user_id])
    return perms


class DiscordSession:
    """Sends and edits messages over REST and feeds gateway events to a handler."""

    def __init__(self, token, intents):
        self.token = token
        self.intents = intents
        self.http = requests.Session()
        self.me = User("", "")
        self.status = ""
        self._avatar_hashes: dict[str, str | None] = {}
        self._guilds: dict[str, dict] = {}
        self._seq = None
        self._ws = None
        self._send_lock = threading.Lock()
        self._closed = threading.Event()
        self._heartbeat_stop = threading.Event()

    # REST

    def _headers(self):
        return {"Authorization": f"Bot {self.token}"}

    def _call(self, method, url, **kwargs):
        try:
            response = self.http.request(
                method, url, headers=self._headers(), timeout=REQUEST_TIMEOUT, **kwargs
            )
        except requests.RequestException as exc:
            raise _ApiError(f"{method} {url} failed: {exc}") from exc
        if response.status_code >= 400:
            raise _ApiError(
                f"{method} {url} failed with status {response.status_code}: {response.text}"
            )
        return response

    def _request(self, method, path, **kwargs):
        response = self._call(method, API_BASE + path, **kwargs)
        return response.json() if response.content else None

    def _parse_user(self, data):
        user = User(str(data.get("id", "")), data.get("username", ""))
        if "avatar" in data:
            self._avatar_hashes[user.id] = data.get("avatar")
        return user

    def _parse_message(self, data):
        referenced = data.get("referenced_message")
        reference = data.get("message_reference") or {}
        return Message(
            id=str(data.get("id", "")),
            channel_id=str(data.get("channel_id", "")),
            author=self._parse_user(data.get("author") or {}),
            content=data.get("content") or "",
            attachments=[
                Attachment(
                    url=a.get("url", ""),
                    content_type=a.get("content_type", ""),
                    filename=a.get("filename", ""),
                )
                for a in data.get("attachments") or []
            ],
            mentions=[self._parse_user(u) for u in data.get("mentions") or []],
            referenced=self._parse_message(referenced) if referenced else None,
            reference_id=reference.get("message_id"),
            timestamp=_parse_timestamp(data.get("timestamp")),
        )

    def send(self, channel_id, content="", reply_to=None, files=None, ephemeral=False):
        """Post a message, optionally replying to message ``reply_to`` and with files."""
        payload = {"content": content}
        if reply_to:
            payload["message_reference"] = {
                "message_id": reply_to,
                "channel_id": channel_id,
                "fail_if_not_exists": False,
            }
        if ephemeral:
            payload["flags"] = EPHEMERAL
        path = f"/channels/{channel_id}/messages"
        files = list(files or [])
        if files:
            payload["attachments"] = [
                {"id": number, "filename": f.name} for number, f in enumerate(files)
            ]
            parts = {"payload_json": (None, json.dumps(payload), "application/json")}
            for number, f in enumerate(files):
                parts[f"files[{number}]"] = (f.name, f.data)
            data = self._request("POST", path, files=parts)
        else:
            data = self._request("POST", path, json=payload)
        return self._parse_message(data or {})

    def edit(self, channel_id, message_id, content):
        """Replace the text of a message."""
        data = self._request(
            "PATCH", f"/channels/{channel_id}/messages/{message_id}", json={"content": content}
        )
        return self._parse_message(data or {})

    def user(self, user_id):
        """Look up a user by id."""
        return self._parse_user(self._request("GET", f"/users/{user_id}") or {})

    def avatar(self, user):
        """Download a user's avatar as PNG bytes."""
        if user.id not in self._avatar_hashes:
            self.user(user.id)
        avatar_hash = self._avatar_hashes.get(user.id)
        if avatar_hash:
            url = f"{CDN_BASE}/avatars/{user.id}/{avatar_hash}.png"
        else:
            try:
                index = (int(user.id) >> 22) % 6
            except ValueError:
                index = 0
            url = f"{CDN_BASE}/embed/avatars/{index}.png"
        return self._call("GET", url).content

    def channel_messages(self, channel_id, limit, around):
        """Return up to ``limit`` messages around message ``around``, oldest first."""
        data = self._request(
            "GET",
            f"/channels/{channel_id}/messages",
            params={"limit": limit, "around": around},
        )
        return [self._parse_message(m) for m in reversed(data or [])]

    def guild(self, guild_id):
        """Return a guild record with ``id``, ``name`` and ``member_count``."""
        if guild_id in self._guilds:
            return self._guilds[guild_id]
        data = self._request("GET", f"/guilds/{guild_id}", params={"with_counts": "true"}) or {}
        return {
            "id": str(data.get("id", guild_id)),
            "name": data.get("name", ""),
            "member_count": data.get("approximate_member_count", 0),
        }

    def guild_channels(self, guild_id):
        """Return the channel records of a guild."""
        return [
            {"id": str(c.get("id", "")), "name": c.get("name", ""), "type": c.get("type")}
            for c in self._request("GET", f"/guilds/{guild_id}/channels") or []
        ]

    def dm_channel(self, user_id):
        """Open (or reuse) the direct-message channel with a user and return its id."""
        data = self._request("POST", "/users/@me/channels", json={"recipient_id": user_id})
        return str((data or {}).get("id", ""))

    def set_status(self, text):
        """Set the bot's custom status."""
        self.status = text
        if self._ws is not None:
            try:
                self._send({"op": _OP_PRESENCE, "d": self._presence()})
            except (websocket.WebSocketException, OSError) as exc:
                _log.warning("could not update status: %s", exc)

    # Gateway

    def _presence(self):
        activities = []
        if self.status:
            activities.append({"name": "Custom Status", "type": 4, "state": self.status})
        return {"since": None, "activities": activities, "status": "online", "afk": False}

    def _send(self, payload):
        with self._send_lock:
            if self._ws is None:
                raise ConnectionError("gateway is not connected")
            self._ws.send(json.dumps(payload))

    def _heartbeat(self, interval):
        while not self._heartbeat_stop.wait(interval):
            try:
                self._send({"op": _OP_HEARTBEAT, "d": self._seq})
            except (websocket.WebSocketException, OSError) as exc:
                _log.warning("heartbeat failed: %s", exc)
                return

    def _store_guild(self, data):
        guild_id = str(data.get("id", ""))
        channels = [
            {
                "id": str(c.get("id", "")),
                "name": c.get("name", ""),
                "type": c.get("type"),
                "permissions": _channel_permissions(data, c, self.me.id),
            }
            for c in data.get("channels") or []
        ]
        guild = {
            "id": guild_id,
            "name": data.get("name", ""),
            "unavailable": bool(data.get("unavailable", False)),
            "member_count": data.get("member_count", 0),
            "joined_at": _parse_timestamp(data.get("joined_at")),
            "channels": channels,
        }
        if not guild["unavailable"]:
            self._guilds[guild_id] = guild
        return guild

    def _dispatch(self, kind, data, events):
        data = data or {}
        if kind == "READY":
            self.me = self._parse_user(data.get("user") or {})
            events.on_ready()
        elif kind == "GUILD_CREATE":
            events.on_guild_create(self._store_guild(data))
        elif kind in ("GUILD_MEMBER_ADD", "GUILD_MEMBER_REMOVE"):
            guild = self._guilds.get(str(data.get("guild_id", "")))
            if guild is not None:
                guild["member_count"] += 1 if kind == "GUILD_MEMBER_ADD" else -1
        elif kind == "MESSAGE_CREATE":
            events.on_message_create(self._parse_message(data))
        elif kind == "MESSAGE_UPDATE":
            events.on_message_update(self._parse_message(data))
        elif kind == "PRESENCE_UPDATE":
            user_id = str((data.get("user") or {}).get("id", ""))
            events.on_presence_update(user_id, data.get("status", ""))

    def _handle_payload(self, payload, events):
        """Act on one gateway payload; return False when the connection must be redone."""
        op = payload.get("op")
        if payload.get("s") is not None:
            self._seq = payload["s"]
        if op == _OP_DISPATCH:
            self._dispatch(payload.get("t"), payload.get("d"), events)
        elif op == _OP_HEARTBEAT:
            self._send({"op": _OP_HEARTBEAT, "d": self._seq})
        elif op in (_OP_RECONNECT, _OP_INVALID_SESSION):
            return False
        return True

    def _identify(self):
        self._send(
            {
                "op": _OP_IDENTIFY,
                "d": {
                    "token": self.token,
                    "intents": self.intents,
                    "properties": {"os": sys.platform, "browser": "sancho", "device": "sancho"},
                    "presence": self._presence(),
                },
            }
        )

    def _connection(self, events):
        hello = json.loads(self._ws.recv())
        if hello.get("op") != _OP_HELLO:
            raise ConnectionError("gateway did not say hello")
        self._heartbeat_stop.clear()
        beat = threading.Thread(
            target=self._heartbeat,
            args=(hello["d"]["heartbeat_interval"] / 1000,),
            daemon=True,
        )
        beat.start()
        self._identify()
        while not self._closed.is_set():
            raw = self._ws.recv()
            if not raw:
                raise ConnectionError("gateway closed the connection")
            if not self._handle_payload(json.loads(raw), events):
                return

    def run(self, events):
        """Stay connected to the gateway, feeding events to ``events``, until closed."""
        self._closed.clear()
        while not self._closed.is_set():
            try:
                url = (self._request("GET", "/gateway/bot") or {}).get("url")
                if not url:
                    raise ConnectionError("no gateway address")
                self._ws = websocket.create_connection(
                    f"{url}/?v={API_VERSION}&encoding=json"
                )
                self._connection(events)
            except (websocket.WebSocketException, OSError, LookupError, ValueError) as exc:
                if self._closed.is_set():
                    break
                _log.warning("gateway connection lost: %s", exc)
                self._closed.wait(RECONNECT_DELAY)
            finally:
                self._heartbeat_stop.set()
                ws, self._ws = self._ws, None
                if ws is not None:
                    try:
                        ws.close()
                    except (websocket.WebSocketException, OSError):
                        pass

    def close(self):
        """Stop the gateway loop and drop the connection."""
        self._closed.set()
        self._heartbeat_stop.set()
        ws = self._ws
        if ws is not None:
            try:
                ws.close()
            except (websocket.WebSocketException, OSError):
                pass