"""Hashed timer wheels that expire values after a coarse timeout.

Timeouts are rounded up to whole ticks and capped at the span of the wheel.
Expired values are collected lazily when the wheel is advanced and handed
out one at a time by ``purge``.
"""

from __future__ import annotations

import threading
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Generic, Iterator, TypeVar, Union

T = TypeVar("T")

Duration = Union[timedelta, int, float]

# Smallest step of a timedelta; used to round timeouts up to whole ticks.
_RESOLUTION = timedelta(microseconds=1)


def _as_timedelta(value: Duration) -> timedelta:
    if isinstance(value, timedelta):
        return value
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return timedelta(seconds=value)
    raise TypeError(f"expected a timedelta or a number of seconds, got {type(value).__name__}")


@dataclass
class TimeoutItem(Generic[T]):
    """A value waiting in the wheel."""

    value: T


class TimeoutList(Generic[T]):
    """An ordered bucket of timeout items: one tick of the wheel, or the expired queue."""

    def __init__(self) -> None:
        self._items: deque[TimeoutItem[T]] = deque()

    @property
    def head(self) -> TimeoutItem[T] | None:
        return self._items[0] if self._items else None

    @property
    def tail(self) -> TimeoutItem[T] | None:
        return self._items[-1] if self._items else None

    def append(self, item: TimeoutItem[T]) -> None:
        self._items.append(item)

    def appendleft(self, item: TimeoutItem[T]) -> None:
        self._items.appendleft(item)

    def popleft(self) -> TimeoutItem[T] | None:
        return self._items.popleft() if self._items else None

    def take(self, other: TimeoutList[T]) -> None:
        """Move every item of ``other`` onto the end of this list, emptying ``other``."""
        self._items.extend(other._items)
        other._items.clear()

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[TimeoutItem[T]]:
        return iter(self._items)


class _Wheel(Generic[T]):
    def _setup(self, tick: Duration, span: Duration) -> None:
        tick = _as_timedelta(tick)
        span = _as_timedelta(span)
        if tick <= timedelta(0):
            raise ValueError("tick must be a positive duration")

        # Round down and add one so the wheel can still hold a full span.
        self.wheel_len: int = span // tick + 1
        self.tick: timedelta = tick
        self.span: timedelta = span
        self.current: int = 0
        self.last_tick: datetime | None = None
        self.wheel: list[TimeoutList[T]] = [TimeoutList() for _ in range(self.wheel_len)]
        self.expired: TimeoutList[T] = TimeoutList()

    def _slot_for(self, timeout: Duration) -> int:
        timeout = _as_timedelta(timeout)
        if timeout < self.tick:
            # Nothing below the resolution of the wheel can be tracked.
            timeout = self.tick
        elif timeout > self.span:
            timeout = self.span

        ticks = (timeout - _RESOLUTION) // self.tick + 1
        # One extra tick since the current one may be nearly over.
        return (ticks + self.current + 1) % self.wheel_len

    def _elapsed_ticks(self, now: datetime) -> int:
        if self.last_tick is None:
            self.last_tick = now
        # Truncate towards zero.
        return int((now - self.last_tick) / self.tick)

    def _turn(self, ticks: int) -> None:
        if ticks <= 0:
            return
        # After one full turn every slot is empty; only the position still moves.
        for _ in range(min(ticks, self.wheel_len)):
            self.current = (self.current + 1) % self.wheel_len
            self.expired.take(self.wheel[self.current])
        if ticks > self.wheel_len:
            self.current = (self.current + ticks - self.wheel_len) % self.wheel_len

    def _pop_expired(self) -> T | None:
        item = self.expired.popleft()
        return None if item is None else item.value


class TimerWheel(_Wheel[T]):
    """A single-threaded timer wheel that advances itself on every ``add``."""

    def __init__(self, tick: Duration, span: Duration) -> None:
        self._setup(tick, span)

    def find_slot(self, timeout: Duration) -> int:
        """Return the index of the wheel slot a value with this timeout belongs to."""
        return self._slot_for(timeout)

    def add(self, value: T, timeout: Duration) -> TimeoutItem[T]:
        """Schedule ``value`` to expire after ``timeout``."""
        self.advance(datetime.now())
        item = TimeoutItem(value)
        self.wheel[self.find_slot(timeout)].append(item)
        return item

    def purge(self) -> T | None:
        """Return the oldest expired value, or None when nothing has expired."""
        return self._pop_expired()

    def advance(self, now: datetime) -> None:
        """Move the wheel forward by the whole ticks elapsed up to ``now``."""
        elapsed = self._elapsed_ticks(now)
        # Never turn more than once around the wheel.
        for _ in range(max(0, min(elapsed, self.wheel_len))):
            self.current = (self.current + 1) % self.wheel_len
            self.expired.take(self.wheel[self.current])
        # Step by whole ticks so that no accuracy is lost.
        self.last_tick = self.last_tick + self.tick * elapsed


class SystemTimerWheel(_Wheel[T]):
    """A thread-safe timer wheel that is advanced explicitly by its owner."""

    def __init__(self, tick: Duration, span: Duration) -> None:
        self._setup(tick, span)
        self._lock = threading.Lock()

    def find_slot(self, timeout: Duration) -> int:
        """Return the index of the wheel slot a value with this timeout belongs to."""
        return self._slot_for(timeout)

    def add(self, value: T, timeout: Duration) -> TimeoutItem[T]:
        """Schedule ``value`` to expire after ``timeout``; newest values go first in a slot."""
        with self._lock:
            item = TimeoutItem(value)
            self.wheel[self.find_slot(timeout)].appendleft(item)
            return item

    def purge(self) -> T | None:
        """Return the next expired value, or None when nothing has expired."""
        with self._lock:
            return self._pop_expired()

    def advance(self, now: datetime) -> None:
        """Move the wheel forward by the whole ticks elapsed up to ``now``."""
        with self._lock:
            elapsed = self._elapsed_ticks(now)
            if elapsed > 0:
                self._turn(elapsed)
                self.last_tick = now