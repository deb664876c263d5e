import pytest

from sancho.bot import Secrets, _Supervisor, load_secrets, main
from sancho.cli import Console
from sancho.events import BotConfig, Events
from sancho.instance import Instance, Session
from sancho.reminders import Reminder, ReminderManager

SECRETS_LINES = [
    "token",
    "bowl",
    "matt",
    "whoops",
    "me",
    "femmo",
    "greed",
    "ender",
    "c1 c2",
]


def write_secrets(path, newline="\r\n"):
    path.write_text(newline.join(SECRETS_LINES), encoding="utf-8")
    return path


def make_secrets():
    return Secrets(*SECRETS_LINES[:8], bad_channels=("c1", "c2"))


def make_supervisor(tmp_path):
    session = Session()
    inst = Instance(session, ReminderManager(tmp_path / "timers.txt"))
    console = Console(session)
    events = Events(inst, console, BotConfig(femmo_id="femmo"))
    return _Supervisor(inst, events, console, make_secrets(), clock=lambda: 0.0)


def test_load_secrets_reads_crlf_file(tmp_path):
    secrets = load_secrets(write_secrets(tmp_path / "secrets.txt"))
    assert secrets == make_secrets()


def test_load_secrets_reads_plain_newlines(tmp_path):
    secrets = load_secrets(write_secrets(tmp_path / "secrets.txt", "\n"))
    assert secrets.token == "token"
    assert secrets.bad_channels == ("c1", "c2")


def test_load_secrets_rejects_short_file(tmp_path):
    path = tmp_path / "secrets.txt"
    path.write_text("token\nbowl\n", encoding="utf-8")
    with pytest.raises(ValueError):
        load_secrets(path)


def test_load_secrets_missing_file(tmp_path):
    with pytest.raises(OSError):
        load_secrets(tmp_path / "missing.txt")


def test_main_without_secrets_fails(tmp_path):
    assert main(["--secrets", str(tmp_path / "missing.txt")]) == 1


def test_tick_delivers_due_reminder(tmp_path):
    supervisor = make_supervisor(tmp_path)
    reminder = Reminder(
        end=100, start=50, message="drink water", author="u1", target="u1", rqid="r1"
    )
    supervisor.inst.reminders.append(reminder, "chan")
    supervisor.tick(mono=0.0, wall=200)
    sent = supervisor.inst.session.sent
    assert [(m.channel_id, m.content) for m in sent] == [("chan", reminder.format_notice())]
    assert supervisor.inst.reminders.reminders == []


def test_tick_leaves_future_reminder(tmp_path):
    supervisor = make_supervisor(tmp_path)
    reminder = Reminder(end=500, start=50, message="later", author="u1", target="u1", rqid="r2")
    supervisor.inst.reminders.append(reminder, "chan")
    supervisor.tick(mono=0.0, wall=200)
    assert supervisor.inst.session.sent == []
    assert supervisor.inst.reminders.reminders == [reminder]


def test_tick_reports_offline_watched_user(tmp_path):
    supervisor = make_supervisor(tmp_path)
    supervisor.tick(mono=24 * 60 * 60, wall=0)
    sent = supervisor.inst.session.sent
    assert len(sent) == 1
    assert sent[0].channel_id == supervisor.inst.session.dm_channel("greed")
    assert sent[0].content == "Breadfemmo has been offline for 24 consecutive hours."


def test_tick_resets_when_watched_user_online(tmp_path):
    supervisor = make_supervisor(tmp_path)
    supervisor.events.femmo_online = True
    supervisor.tick(mono=24 * 60 * 60, wall=0)
    assert supervisor.inst.session.sent == []
    assert supervisor.femmo_deadline > 24 * 60 * 60


def test_tick_drains_reported_errors(tmp_path):
    supervisor = make_supervisor(tmp_path)
    supervisor.inst.report(ValueError("broken"))
    logged = supervisor.tick(mono=0.0, wall=0)
    assert [str(error) for error in logged] == ["broken"]
    assert supervisor.inst.drain_errors() == []


def test_handle_line_goodnight_requests_shutdown(tmp_path):
    supervisor = make_supervisor(tmp_path)
    image_dir = tmp_path / "img"
    image_dir.mkdir()
    (image_dir / "goodnight.png").write_bytes(b"picture")
    supervisor.console.image_dir = image_dir
    assert supervisor.handle_line("gn") is True
    assert supervisor.inst.session.sent[0].files[0].data == b"picture"
    assert supervisor.handle_line("unknown words") is False