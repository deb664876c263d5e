"""Start the bot: read the secrets, connect, and run the console and timer loop."""

from __future__ import annotations

import argparse
import logging
import queue
import signal
import sys
import threading
import time
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

from .cli import Console
from .events import BotConfig, Events
from .instance import Instance
from .reminders import TIMERS_FILE, ReminderManager, remind
from .session import API_VERSION, DiscordSession

SECRETS_FILE = "secrets.txt"
TICK = 0.1
FEMMO_PERIOD = 24 * 60 * 60
INTENTS = 335666240 | 1 | 2 | 256 | 512 | 1024 | 2048

_log = logging.getLogger(__name__)


@dataclass(frozen=True)
class Secrets:
    """The bot token and the ids of users and channels the bot treats specially."""

    token: str
    nacho_bowl: str
    mattager_id: str
    whoops_id: str
    my_id: str
    femmo_id: str
    greed_id: str
    ender_id: str
    bad_channels: tuple[str, ...]


def load_secrets(path):
    """Read the secrets file: one value per line, bad channels space-separated last."""
    lines = Path(path).read_text(encoding="utf-8").splitlines()
    if len(lines) < 9:
        raise ValueError(f"secrets file {path} has {len(lines)} lines, needs 9")
    return Secrets(*lines[:8], bad_channels=tuple(lines[8].split(" ")))


class _Supervisor:
    """The periodic work of the main loop."""

    def __init__(self, inst, events, console, secrets, clock=time.monotonic):
        self.inst = inst
        self.events = events
        self.console = console
        self.secrets = secrets
        self.clock = clock
        self.femmo_deadline = clock() + FEMMO_PERIOD
        self.femmo_times = 0

    def handle_line(self, line):
        """Run a console line; True means shut down."""
        return self.console.dispatch(line)

    def _femmo(self, mono):
        if self.events.femmo_online:
            self.femmo_deadline = mono + FEMMO_PERIOD
            self.femmo_times = 0
            return
        if mono < self.femmo_deadline:
            return
        self.femmo_deadline = mono + FEMMO_PERIOD
        self.femmo_times += 1
        session = self.inst.session
        try:
            channel = session.dm_channel(self.secrets.greed_id)
            session.send(
                channel,
                f"Breadfemmo has been offline for {24 * self.femmo_times} consecutive hours.",
            )
        except LookupError as exc:
            _log.error("%s", exc)

    def tick(self, mono=None, wall=None):
        """Do one round of periodic work; return the errors that were logged."""
        self._femmo(self.clock() if mono is None else mono)
        errors = self.inst.drain_errors()
        for error in errors:
            _log.error("%s", error)
        for reminder in self.inst.reminders.due(wall):
            remind(self.inst, reminder, wall)
        return errors


def _read_stdin(lines):
    for line in sys.stdin:
        lines.put(line.rstrip("\r\n"))


def _stop(signum, frame):
    raise KeyboardInterrupt


def _stamp():
    return datetime.now().strftime("%H:%M:%S")


def main(argv=None):
    """Run the bot until the console says good night or the process is stopped."""
    parser = argparse.ArgumentParser(prog="sancho", description="Run the chat bot.")
    parser.add_argument("--secrets", default=SECRETS_FILE, help="path of the secrets file")
    args = parser.parse_args(argv)
    logging.basicConfig(level=logging.INFO)

    print(f"[{_stamp()}] I shall pronounce the bot started.")
    try:
        secrets = load_secrets(args.secrets)
    except (OSError, ValueError) as exc:
        _log.error("no secrets file: %s", exc)
        return 1

    session = DiscordSession(secrets.token, INTENTS)
    Path(TIMERS_FILE).touch(exist_ok=True)
    inst = Instance(session, ReminderManager(TIMERS_FILE))
    console = Console(session, echo_channel=secrets.nacho_bowl, listen_channel=secrets.nacho_bowl)
    config = BotConfig(
        crash_channel=secrets.nacho_bowl,
        owner_id=secrets.my_id,
        whoops_id=secrets.whoops_id,
        mattager_id=secrets.mattager_id,
        ender_id=secrets.ender_id,
        femmo_id=secrets.femmo_id,
        bad_channels=secrets.bad_channels,
    )
    events = Events(inst, console, config)

    gateway = threading.Thread(target=session.run, args=(events,), daemon=True)
    gateway.start()
    print(f"[{_stamp()}] The onus has fallen onto me. Started on API version {API_VERSION}")

    lines = queue.Queue()
    threading.Thread(target=_read_stdin, args=(lines,), daemon=True).start()
    try:
        signal.signal(signal.SIGTERM, _stop)
    except (ValueError, OSError):
        pass

    supervisor = _Supervisor(inst, events, console, secrets)
    try:
        while True:
            time.sleep(TICK)
            try:
                line = lines.get_nowait()
            except queue.Empty:
                pass
            else:
                if supervisor.handle_line(line):
                    break
            if not gateway.is_alive():
                _log.error("the gateway connection stopped")
                return 1
            supervisor.tick()
    except KeyboardInterrupt:
        pass
    finally:
        session.close()
    return 0