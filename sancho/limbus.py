"""The coin-flip skill roll command."""

from __future__ import annotations

import random
import re

_SYSTEM_RANDOM = random.SystemRandom()
_INT = re.compile(r"[+-]?\d+")
_LIMIT = 2000
USAGE = "Incorrect roll formatting (<# of coins> <base power> <coin power> [sp])"


class LimbusRollError(ValueError):
    """Raised when the skill roll arguments are malformed."""


def _atoi(text):
    if not _INT.fullmatch(text):
        raise LimbusRollError(USAGE)
    return int(text)


def parse_limbus_args(text):
    """Return ``(coins, base_power, coin_power, sp)`` from a command line."""
    args = text.split(" ")[1:]
    if not 3 <= len(args) <= 4:
        raise LimbusRollError(USAGE)
    coins, base_power, coin_power = (_atoi(arg) for arg in args[:3])
    sp = _atoi(args[3].replace("sp", "", 1)) if len(args) == 4 else 0
    return coins, base_power, coin_power, sp


def format_limbus_roll(coins, base_power, coin_power, sp=0, rng=None):
    """Flip the coins and describe the outcome, shortening it to fit a message."""
    rng = rng or _SYSTEM_RANDOM
    power = base_power
    raw = ""
    raw_damage = 0
    for _ in range(coins):
        if rng.randrange(100) < 50 + sp:
            power += coin_power
            raw += ":yellow_circle: "
        else:
            raw += ":brown_circle: "
        raw_damage += power
    power = max(power, 0)

    candidates = (
        f"**You rolled: {power} **({raw[:-1]})\nRaw damage: {raw_damage}",
        f"**You rolled: {power}**\nRaw damage: {raw_damage}",
        f"**You rolled: {power}**",
    )
    for out in candidates:
        if len(out) <= _LIMIT:
            return out
    return "Sorry, your roll is literally too big to display."


def limbus_roll(inst, message):
    """Answer a skill roll command."""
    try:
        coins, base_power, coin_power, sp = parse_limbus_args(message.content)
    except LimbusRollError as exc:
        inst.session.send(message.channel_id, str(exc), reply_to=message.id)
        return
    out = format_limbus_roll(coins, base_power, coin_power, sp)
    inst.session.send(message.channel_id, out, reply_to=message.id)