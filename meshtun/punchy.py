"""NAT hole punching settings: whether to punch, whether to respond, and how long to wait."""

from __future__ import annotations

import copy
import logging
import re
from collections.abc import Mapping
from datetime import timedelta
from fractions import Fraction
from typing import Any

_MISSING = object()

_UNIT_NANOSECONDS = {
    "ns": 1,
    "us": 1_000,
    "\u00b5s": 1_000,
    "\u03bcs": 1_000,
    "ms": 1_000_000,
    "s": 1_000_000_000,
    "m": 60 * 1_000_000_000,
    "h": 3600 * 1_000_000_000,
}

_PART = re.compile(r"(\d+(?:\.\d*)?|\.\d+)([^\d.]*)")

_TRUE_WORDS = {"true", "t", "1", "yes", "y", "on"}
_FALSE_WORDS = {"false", "f", "0", "no", "n", "off"}


def parse_duration(text: str) -> timedelta:
    """Parse a duration such as ``"1m"``, ``"1h30m"`` or ``"-1.5s"``.

    Raises ValueError when the text is not a valid duration.
    """
    original = text
    sign = 1
    if text[:1] in ("+", "-"):
        sign = -1 if text[0] == "-" else 1
        text = text[1:]

    if text == "0":
        return timedelta(0)
    if not text:
        raise ValueError(f'time: invalid duration "{original}"')

    total = Fraction(0)
    pos = 0
    while pos < len(text):
        match = _PART.match(text, pos)
        if match is None:
            raise ValueError(f'time: invalid duration "{original}"')
        number, unit = match.groups()
        if not unit:
            raise ValueError(f'time: missing unit in duration "{original}"')
        if unit not in _UNIT_NANOSECONDS:
            raise ValueError(f'time: unknown unit "{unit}" in duration "{original}"')
        total += Fraction(number) * _UNIT_NANOSECONDS[unit]
        pos = match.end()

    return timedelta(microseconds=round(sign * total / 1000))


def _lookup(settings: Any, key: str) -> Any:
    node = settings
    for part in key.split("."):
        if not isinstance(node, Mapping) or part not in node:
            return _MISSING
        node = node[part]
    return node


def _is_set(settings: Any, key: str) -> bool:
    value = _lookup(settings, key)
    return value is not _MISSING and value is not None


def _get_bool(settings: Any, key: str, default: bool) -> bool:
    value = _lookup(settings, key)
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        word = value.strip().lower()
        if word in _TRUE_WORDS:
            return True
        if word in _FALSE_WORDS:
            return False
    return default


def _get_duration(settings: Any, key: str, default: timedelta) -> timedelta:
    value = _lookup(settings, key)
    if isinstance(value, timedelta):
        return value
    if isinstance(value, str):
        try:
            return parse_duration(value)
        except ValueError:
            return default
    return default


class Punchy:
    """Hole punching settings read from a nested settings mapping.

    ``punchy.punch`` (or the older top level ``punchy``) is only read once;
    ``punchy.respond`` (or ``punch_back``) and ``punchy.delay`` follow reloads.
    """

    def __init__(self, settings: Mapping[str, Any], logger: logging.Logger | None = None) -> None:
        self._log = logger or logging.getLogger(__name__)
        self._settings: Mapping[str, Any] = {}
        self._punch = False
        self._respond = False
        self._delay = timedelta(seconds=1)
        self.reload(settings, True)

    def reload(self, settings: Mapping[str, Any], initial: bool) -> None:
        """Apply ``settings``; when not ``initial``, only changed keys take effect."""
        previous = self._settings
        current = copy.deepcopy(settings)
        self._settings = current

        def changed(key: str) -> bool:
            return _lookup(previous, key) != _lookup(current, key)

        if initial:
            if _is_set(current, "punchy.punch"):
                self._punch = _get_bool(current, "punchy.punch", False)
            else:
                self._punch = _get_bool(current, "punchy", False)
        elif changed("punchy.punch") or changed("punchy"):
            self._log.warning("Changing punchy.punch with reload is not supported, ignoring.")

        if initial or changed("punchy.respond") or changed("punch_back"):
            if _is_set(current, "punchy.respond"):
                self._respond = _get_bool(current, "punchy.respond", False)
            else:
                self._respond = _get_bool(current, "punch_back", False)
            if not initial:
                self._log.info("punchy.respond changed to %s", str(self._respond).lower())

        # Applies to the next punch only, not to one already in progress.
        if initial or changed("punchy.delay"):
            self._delay = _get_duration(current, "punchy.delay", timedelta(seconds=1))
            if not initial:
                self._log.info("punchy.delay changed to %s", self._delay)

    @property
    def punch(self) -> bool:
        return self._punch

    @property
    def respond(self) -> bool:
        return self._respond

    @property
    def delay(self) -> timedelta:
        return self._delay