"""Dice expressions such as ``2d6+3`` and the ``.roll`` command."""

from __future__ import annotations

import math
import random
import re

_SYSTEM_RANDOM = random.SystemRandom()
_OPERATORS = "+-*^_"
_INT = re.compile(r"[+-]?\d+")
_LIMIT = 2000


class RollError(ValueError):
    """Raised when a roll expression cannot be evaluated."""


def _atoi(text):
    return int(text) if _INT.fullmatch(text) else None


def _next_operator(rest):
    positions = [pos for pos in (rest.find(op, 1) for op in _OPERATORS) if pos != -1]
    return min(positions) if positions else len(rest)


def _power(base, exponent):
    try:
        value = math.pow(base, exponent)
    except (OverflowError, ValueError) as exc:
        raise RollError("the roll result is out of range") from exc
    if not math.isfinite(value):
        raise RollError("the roll result is out of range")
    return int(value)


def _roll_dice(bit, rng):
    count_text, _, max_text = bit.partition("d")
    if count_text:
        count = _atoi(count_text)
        if count is None:
            raise RollError(f'"{count_text}" is not a valid number for dice count')
    else:
        count = 1
    sides = _atoi(max_text)
    if sides is None or sides < 1:
        raise RollError(f'"{max_text}" is not a valid number for dice maximum')
    return [rng.randint(1, sides) for _ in range(count)]


def compose_roll(text, rng=None):
    """Evaluate a roll command and return the text that follows "Your roll is"."""
    rng = rng or _SYSTEM_RANDOM
    spec = text.removeprefix(".roll ")
    single = _atoi(spec)
    if single is not None and single > 0:
        return str(rng.randint(1, single))
    if "d" not in spec:
        raise RollError("no d found! dummy")

    total = 0
    raw = ""
    rest = "+" + spec
    while rest:
        end = _next_operator(rest)
        sign, bit = rest[0], rest[1:end]
        rest = rest[end:]
        if "d" in bit:
            if raw:
                raw += "| "
            faces = _roll_dice(bit, rng)
            raw += "".join(f"{face} " for face in faces)
            value = sum(faces)
        else:
            value = _atoi(bit)
            if value is None:
                raise RollError(f'"{bit}" is not a valid number for modifier')
        if sign == "+":
            total += value
        elif sign == "-":
            total -= value
        elif sign == "*":
            total *= value
        elif sign == "^":
            total = _power(total, value)
        elif sign == "_":
            total = _power(value, total)

    out = f"{total} ({raw[:-1]})"
    if len(f"Your roll is {out}.") > _LIMIT:
        return str(total)
    return out


def roll(inst, message):
    """Answer a ``.roll`` command."""
    if "bread" in message.content:
        return
    try:
        result = compose_roll(message.content)
    except RollError as exc:
        inst.report(exc)
        return
    inst.session.send(message.channel_id, f"Your roll is {result}.", reply_to=message.id)


def edit_roll(inst, message, reply):
    """Rewrite the bot's earlier ``reply`` after the roll command was edited."""
    if "bread" in message.content:
        return
    try:
        result = compose_roll(message.content)
    except RollError:
        inst.session.edit(message.channel_id, reply.id, "I know what you are.")
        return
    inst.session.edit(message.channel_id, reply.id, f"Your roll is {result}.")