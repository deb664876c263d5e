from datetime import datetime, timedelta, timezone

import pytest

from sancho.instance import Instance, Message, Session, User
from sancho.misc import SADNESS
from sancho.reminders import Reminder, ReminderManager, parse_line
from sancho.remindcmd import (
    ReminderFormatError,
    ReminderRequest,
    delete_reminder,
    list_reminders,
    lookup_timezone,
    normalize_timezone,
    parse_duration,
    parse_reminder,
    set_reminder,
    set_timezone,
)

NOW_2025 = int(datetime(2025, 3, 10, 12, 0, tzinfo=timezone.utc).timestamp())


def utc(_user_id):
    return timezone.utc


def seconds(*words, now=0):
    return parse_duration(list(words), now)[0]


@pytest.fixture
def inst(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    return Instance(Session(), ReminderManager(tmp_path / "timers.txt"))


def make_message(content, author="42", message_id="m1"):
    return Message(id=message_id, channel_id="c1", author=User(author), content=content)


def test_duration_spellings_agree():
    assert seconds("5", "minutes") == seconds("5m") == seconds("5", "min")
    assert seconds("an", "hour") == seconds("1", "h") == seconds("a", "hour")


def test_duration_hour_equals_sixty_minutes():
    assert seconds("1", "hour") == seconds("60", "minutes")


def test_duration_day_and_week_on_calendar():
    assert seconds("1", "day") == seconds("24", "hours")
    assert seconds("1", "week") == seconds("7", "days")


def test_duration_month_overflows_like_calendar():
    now = int(datetime(2021, 1, 31, tzinfo=timezone.utc).timestamp())
    expected = int(datetime(2021, 3, 3, tzinfo=timezone.utc).timestamp()) - now
    assert seconds("1", "month", now=now) == expected


def test_duration_keeps_leftover_words():
    total, rest = parse_duration(["2", "hours", "buy", "milk"], 0)
    assert rest == ["buy", "milk"]
    assert total == seconds("2", "hours")


def test_duration_stops_on_plain_words():
    assert parse_duration(["buy", "milk"], 0) == (0, ["buy", "milk"])


def test_relative_reminder():
    request = parse_reminder(".remind me to drink water in 10 minutes", "42", now=1000)
    assert request == ReminderRequest(
        end=1000 + seconds("10", "minutes", now=1000),
        message="drink water",
        target="42",
        repeats=1,
        period=0,
        relative=True,
    )


def test_mention_sets_target():
    request = parse_reminder(".remind <@77> to eat in 5 minutes", "42", now=0)
    assert request.target == "77"
    assert request.message == "eat"


def test_no_keywords_is_an_error():
    with pytest.raises(ReminderFormatError) as info:
        parse_reminder(".remind me something", "42", now=0)
    assert "forgot the time interval" in info.value.reply


def test_absolute_reminder_in_utc():
    request = parse_reminder(
        ".remind me to sleep at 22:30 on 5/6/2030", "42", now=NOW_2025, timezone_lookup=utc
    )
    assert request.end == int(datetime(2030, 6, 5, 22, 30, tzinfo=timezone.utc).timestamp())
    assert request.message == "sleep"
    assert request.relative is False


def test_two_digit_year_and_separators_agree():
    ends = {
        parse_reminder(f".remind me to go at 10:00 on {day}", "42", NOW_2025, utc).end
        for day in ("5/6/2030", "5/6/30", "5.6.2030", "5-6-2030")
    }
    assert len(ends) == 1


def test_timezone_offset_shifts_end():
    text = ".remind me to go at 10:00 on 5/6/2030"
    plus_two = timezone(timedelta(hours=2))
    in_utc = parse_reminder(text, "42", NOW_2025, utc).end
    shifted = parse_reminder(text, "42", NOW_2025, lambda _uid: plus_two).end
    assert in_utc - shifted == seconds("2", "hours")


def test_time_only_uses_today():
    now = int(datetime(2030, 1, 2, 8, 0, tzinfo=timezone.utc).timestamp())
    request = parse_reminder(".remind me to go at 09:15", "42", now, utc)
    assert request.end == int(datetime(2030, 1, 2, 9, 15, tzinfo=timezone.utc).timestamp())


def test_absolute_without_timezone():
    with pytest.raises(ReminderFormatError) as info:
        parse_reminder(".remind me to go at 10:00", "42", NOW_2025, lambda _uid: None)
    assert ".settz" in info.value.reply


@pytest.mark.parametrize("clock", ["25", "xx:yy", "1:2:3:4"])
def test_bad_clock(clock):
    with pytest.raises(ReminderFormatError) as info:
        parse_reminder(f".remind me to go at {clock}", "42", NOW_2025, utc)
    assert info.value.reply == "I know what you are."


def test_bad_date():
    with pytest.raises(ReminderFormatError):
        parse_reminder(".remind me to go on tomorrow", "42", NOW_2025, utc)


def test_every_and_times():
    request = parse_reminder(
        ".remind me to stretch in 1 hour every 2 hours 3 times", "42", now=0
    )
    assert request.repeats == 3
    assert request.period == seconds("2", "hours")
    assert request.message == "stretch"


def test_forever_needs_a_period():
    endless = parse_reminder(".remind me to drink in 1 hour every 1 hour forever", "42", 0)
    once = parse_reminder(".remind me to drink in 1 hour forever", "42", 0)
    assert endless.repeats == -1
    assert endless.period == seconds("1", "hour")
    assert once.repeats == 1


def test_lookup_timezone_last_entry_wins(tmp_path):
    path = tmp_path / "timezones.txt"
    path.write_text("42 Europe/Paris\n7 Asia/Tokyo\n42 America/Lima\n", encoding="utf-8")
    assert lookup_timezone(path, "42") == "America/Lima"
    assert lookup_timezone(path, "7") == "Asia/Tokyo"
    assert lookup_timezone(path, "99") is None


def test_normalize_timezone():
    assert normalize_timezone("utc+2") == "Etc/GMT+2"
    assert normalize_timezone("Europe/Paris") == "Europe/Paris"


def test_set_reminder_stores_and_replies(inst, tmp_path):
    message = make_message(".remind me to eat in 5 minutes")
    set_reminder(inst, message)
    [stored] = inst.reminders.reminders
    assert stored.message == "eat"
    assert stored.rqid == "m1"
    assert stored.repeats == 0
    line = (tmp_path / "timers.txt").read_text(encoding="utf-8").strip()
    parsed, channel = parse_line(line)
    assert channel == "c1"
    assert parsed.end == stored.end
    assert inst.session.sent[-1].content == f"...As you wish. I shall send a reminder at <t:{stored.end}>."


def test_set_reminder_without_keywords(inst):
    set_reminder(inst, make_message(".remind me nothing"))
    assert "forgot the time interval" in inst.session.sent[-1].content
    assert inst.reminders.reminders == []


def test_set_reminder_absolute_without_timezone_file(inst):
    set_reminder(inst, make_message(".remind me to go at 10:00"))
    assert inst.session.sent[-1].content == SADNESS
    errors = inst.drain_errors()
    assert len(errors) == 1 and isinstance(errors[0], FileNotFoundError)


def test_list_reminders(inst):
    list_reminders(inst, make_message(".reminders"))
    assert inst.session.sent[-1].content == "No reminders set."
    inst.reminders.append(
        Reminder(end=5000, start=0, message="eat", author="42", target="42", rqid="r1"), "c1"
    )
    list_reminders(inst, make_message(".reminders"))
    assert inst.session.sent[-1].content == "1: eat @ <t:5000>\n"
    assert inst.session.sent[-1].ephemeral is True


def test_delete_reminder(inst):
    inst.reminders.append(
        Reminder(end=5000, start=0, message="eat", author="42", target="42", rqid="r1"), "c1"
    )
    delete_reminder(inst, make_message(".forget 1"))
    assert inst.session.sent[-1].content == "...Reminder to eat successfully deleted."
    assert inst.reminders.reminders == []


@pytest.mark.parametrize("content", [".forget", ".forget x"])
def test_delete_reminder_bad_index(inst, content):
    delete_reminder(inst, make_message(content))
    assert inst.session.sent[-1].content == "I know what you are."


def test_set_timezone_rejects_unknown(inst, tmp_path):
    set_timezone(inst, make_message(".settz nowhere"))
    assert inst.session.sent[-1].content == '"Etc/NOWHERE" is apparently not a valid timezone'
    assert not (tmp_path / "timezones.txt").exists()