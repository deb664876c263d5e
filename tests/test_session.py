import json

import pytest

from sancho.events import SEND_MESSAGES
from sancho.instance import OutgoingFile, User
from sancho.session import EPHEMERAL, DiscordSession


class FakeResponse:
    def __init__(self, status_code=200, payload=None, content=None):
        self.status_code = status_code
        if content is None:
            content = b"" if payload is None else json.dumps(payload).encode()
        self.content = content
        self.text = content.decode("utf-8", "replace")

    def json(self):
        return json.loads(self.content)


class FakeHttp:
    def __init__(self, *responses):
        self.responses = list(responses)
        self.calls = []

    def request(self, method, url, **kwargs):
        self.calls.append((method, url, kwargs))
        return self.responses.pop(0)


class RecordingEvents:
    def __init__(self):
        self.seen = []

    def on_ready(self):
        self.seen.append(("ready",))

    def on_guild_create(self, guild):
        self.seen.append(("guild", guild))

    def on_message_create(self, message):
        self.seen.append(("create", message))

    def on_message_update(self, message):
        self.seen.append(("update", message))

    def on_presence_update(self, user_id, status):
        self.seen.append(("presence", user_id, status))


def message_data(message_id="7", channel_id="42", content="hi"):
    return {
        "id": message_id,
        "channel_id": channel_id,
        "author": {"id": "1", "username": "sancho"},
        "content": content,
    }


def make_session(*responses):
    session = DiscordSession("token", 0)
    session.http = FakeHttp(*responses)
    return session


def test_send_posts_json_with_authorization():
    session = make_session(FakeResponse(payload=message_data()))
    sent = session.send("42", "hi")
    assert (sent.id, sent.channel_id, sent.content) == ("7", "42", "hi")
    method, url, kwargs = session.http.calls[0]
    assert method == "POST"
    assert url.endswith("/channels/42/messages")
    assert kwargs["json"]["content"] == "hi"
    assert kwargs["headers"]["Authorization"] == "Bot token"


def test_send_reply_and_ephemeral():
    session = make_session(FakeResponse(payload=message_data()))
    session.send("42", "hi", reply_to="9", ephemeral=True)
    payload = session.http.calls[0][2]["json"]
    assert payload["message_reference"]["message_id"] == "9"
    assert payload["message_reference"]["fail_if_not_exists"] is False
    assert payload["flags"] & EPHEMERAL == EPHEMERAL


def test_send_files_uses_multipart():
    session = make_session(FakeResponse(payload=message_data()))
    session.send("42", "look", files=[OutgoingFile("a.png", b"data")])
    kwargs = session.http.calls[0][2]
    assert "json" not in kwargs
    parts = kwargs["files"]
    payload = json.loads(parts["payload_json"][1])
    assert payload["content"] == "look"
    assert payload["attachments"][0]["filename"] == "a.png"
    assert parts["files[0]"] == ("a.png", b"data")


def test_error_status_raises_lookup_error():
    session = make_session(FakeResponse(status_code=404, content=b"missing"))
    with pytest.raises(LookupError):
        session.user("5")


def test_user_is_parsed():
    session = make_session(FakeResponse(payload={"id": "5", "username": "alice"}))
    assert session.user("5") == User("5", "alice")


def test_avatar_fetches_from_cdn():
    session = make_session(
        FakeResponse(payload={"id": "5", "username": "alice", "avatar": "abc"}),
        FakeResponse(content=b"PNGDATA"),
    )
    assert session.avatar(User("5", "alice")) == b"PNGDATA"
    assert "/avatars/5/abc" in session.http.calls[1][1]


def test_channel_messages_are_oldest_first():
    session = make_session(
        FakeResponse(payload=[message_data("3"), message_data("2")])
    )
    history = session.channel_messages("42", 100, "2")
    assert [m.id for m in history] == ["2", "3"]
    assert session.http.calls[0][2]["params"] == {"limit": 100, "around": "2"}


def test_edit_returns_new_content():
    session = make_session(FakeResponse(payload=message_data(content="changed")))
    edited = session.edit("42", "7", "changed")
    assert edited.content == "changed"
    assert session.http.calls[0][1].endswith("/channels/42/messages/7")
    assert session.http.calls[0][2]["json"] == {"content": "changed"}


def test_dm_channel_returns_channel_id():
    session = make_session(FakeResponse(payload={"id": "77"}))
    assert session.dm_channel("5") == "77"
    assert session.http.calls[0][2]["json"] == {"recipient_id": "5"}


def test_set_status_without_connection_is_remembered():
    session = make_session()
    session.set_status("resting")
    assert session.status == "resting"
    assert session.http.calls == []


def test_ready_sets_own_user():
    session = make_session()
    events = RecordingEvents()
    session._dispatch("READY", {"user": {"id": "100", "username": "sancho"}}, events)
    assert session.me == User("100", "sancho")
    assert events.seen == [("ready",)]


def test_message_create_parses_reference_and_attachments():
    session = make_session()
    events = RecordingEvents()
    data = message_data("8", content=".jpeg")
    data["attachments"] = [{"url": "https://example.com/a.png", "content_type": "image/png"}]
    data["referenced_message"] = message_data("3", content="earlier")
    data["message_reference"] = {"message_id": "3"}
    session._dispatch("MESSAGE_CREATE", data, events)
    kind, message = events.seen[0]
    assert kind == "create"
    assert message.attachments[0].url == "https://example.com/a.png"
    assert message.referenced.content == "earlier"
    assert message.reference_id == "3"


def test_guild_create_computes_channel_permissions():
    session = make_session()
    session.me = User("100", "sancho")
    events = RecordingEvents()
    data = {
        "id": "g1",
        "name": "Family",
        "member_count": 12,
        "roles": [{"id": "g1", "permissions": "0"}],
        "members": [{"user": {"id": "100"}, "roles": []}],
        "channels": [
            {
                "id": "c1",
                "name": "open",
                "type": 0,
                "permission_overwrites": [
                    {"id": "g1", "type": 0, "allow": str(SEND_MESSAGES), "deny": "0"}
                ],
            },
            {"id": "c2", "name": "closed", "type": 0, "permission_overwrites": []},
        ],
    }
    session._dispatch("GUILD_CREATE", data, events)
    guild = events.seen[0][1]
    open_channel, closed_channel = guild["channels"]
    assert open_channel["permissions"] & SEND_MESSAGES == SEND_MESSAGES
    assert closed_channel["permissions"] & SEND_MESSAGES == 0
    assert session.guild("g1")["member_count"] == 12
    assert session.http.calls == []


def test_presence_update_is_forwarded():
    session = make_session()
    events = RecordingEvents()
    session._dispatch("PRESENCE_UPDATE", {"user": {"id": "5"}, "status": "offline"}, events)
    assert events.seen == [("presence", "5", "offline")]


def test_reconnect_request_ends_connection():
    session = make_session()
    events = RecordingEvents()
    assert session._handle_payload({"op": 7, "d": None}, events) is False
    assert session._handle_payload({"op": 11}, events) is True