from datetime import datetime, timedelta

import pytest

from meshtun.timerwheel import SystemTimerWheel, TimeoutItem, TimeoutList, TimerWheel

SECOND = timedelta(seconds=1)


def test_new_wheel():
    for tw in (TimerWheel(SECOND, SECOND * 10), SystemTimerWheel(SECOND, SECOND * 10)):
        assert tw.wheel_len == 11
        assert tw.current == 0
        assert tw.last_tick is None
        assert tw.tick == SECOND
        assert tw.span == SECOND * 10
        assert len(tw.wheel) == 11

    assert TimerWheel(SECOND * 3, SECOND * 10).wheel_len == 4
    assert SystemTimerWheel(SECOND * 3, SECOND * 10).wheel_len == 4
    assert TimerWheel(SECOND * 120, timedelta(minutes=10)).wheel_len == 6
    assert SystemTimerWheel(SECOND * 120, timedelta(minutes=10)).wheel_len == 6


def test_numbers_are_seconds():
    for tw in (TimerWheel(1, 10), SystemTimerWheel(1, 10)):
        assert tw.tick == SECOND
        assert tw.wheel_len == 11


def test_zero_tick_rejected():
    with pytest.raises(ValueError):
        TimerWheel(timedelta(0), SECOND)
    with pytest.raises(ValueError):
        SystemTimerWheel(timedelta(0), SECOND)


def test_find_slot():
    for tw in (TimerWheel(SECOND, SECOND * 10), SystemTimerWheel(SECOND, SECOND * 10)):
        assert len(tw.wheel) == 11

        assert tw.find_slot(SECOND) == 2
        assert tw.find_slot(timedelta(milliseconds=1)) == 2
        assert tw.find_slot(SECOND * 10) == 0
        assert tw.find_slot(SECOND * 11) == 0

        tw.current = 1
        assert tw.find_slot(SECOND) == 3
        assert tw.find_slot(SECOND * 10) == 1


def test_find_slot_stays_in_range():
    for tw in (TimerWheel(SECOND * 3, SECOND * 10), SystemTimerWheel(SECOND * 3, SECOND * 10)):
        for current in range(tw.wheel_len):
            tw.current = current
            assert 0 <= tw.find_slot(SECOND * 10) < tw.wheel_len


def test_timer_wheel_add_appends_to_tail():
    tw = TimerWheel(SECOND, SECOND * 10)

    first = tw.add("first", SECOND)
    assert isinstance(first, TimeoutItem)
    assert tw.wheel[2].head.value == "first"
    assert tw.wheel[2].tail.value == "first"
    assert len(tw.wheel[2]) == 1

    tw.add("second", SECOND)
    assert tw.wheel[2].head.value == "first"
    assert tw.wheel[2].tail.value == "second"
    assert [item.value for item in tw.wheel[2]] == ["first", "second"]


def test_system_timer_wheel_add_prepends_to_head():
    tw = SystemTimerWheel(SECOND, SECOND * 10)
    ip1 = 0x01020304
    ip2 = 0x05060708

    tw.add(ip1, SECOND)
    assert tw.wheel[2].head.value == ip1
    assert tw.wheel[2].tail.value == ip1
    assert len(tw.wheel[2]) == 1

    tw.add(ip2, SECOND)
    assert tw.wheel[2].head.value == ip2
    assert tw.wheel[2].tail.value == ip1
    assert [item.value for item in tw.wheel[2]] == [ip2, ip1]


def test_timer_wheel_purge():
    tw = TimerWheel(SECOND, SECOND * 10)
    assert tw.last_tick is None
    tw.advance(datetime.now())
    assert tw.last_tick is not None
    assert tw.current == 0

    packets = [{"local_ip": 1}, {"local_ip": 2}, {"local_ip": 3}, {"local_ip": 4}]
    tw.add(packets[0], SECOND)
    tw.add(packets[1], SECOND)
    tw.add(packets[2], SECOND * 2)
    tw.add(packets[3], SECOND * 2)

    ta = datetime.now() + SECOND * 3
    last_tick = tw.last_tick
    tw.advance(ta)
    assert tw.current == 3
    assert tw.last_tick > last_tick

    for expected in packets:
        assert tw.purge() == expected

    assert tw.purge() is None
    assert tw.expired.head is None
    assert tw.expired.tail is None

    ta += SECOND * 5
    tw.advance(ta)
    assert tw.current == 8

    ta += SECOND * 2
    tw.advance(ta)
    assert tw.current == 10

    ta += SECOND
    tw.advance(ta)
    assert tw.current == 0


def test_system_timer_wheel_purge():
    tw = SystemTimerWheel(SECOND, SECOND * 10)
    assert tw.last_tick is None
    tw.advance(datetime.now())
    assert tw.last_tick is not None
    assert tw.current == 0

    ips = [9, 10, 11, 12]
    tw.add(ips[0], SECOND)
    tw.add(ips[1], SECOND)
    tw.add(ips[2], SECOND * 2)
    tw.add(ips[3], SECOND * 2)

    ta = datetime.now() + SECOND * 3
    last_tick = tw.last_tick
    tw.advance(ta)
    assert tw.current == 3
    assert tw.last_tick > last_tick

    purged = [tw.purge() for _ in range(4)]
    assert all(p in ips for p in purged)
    assert sorted(purged) == ips

    assert tw.purge() is None
    assert tw.expired.head is None
    assert tw.expired.tail is None

    ta += SECOND * 5
    tw.advance(ta)
    assert tw.current == 8

    ta += SECOND * 2
    tw.advance(ta)
    assert tw.current == 10

    ta += SECOND
    tw.advance(ta)
    assert tw.current == 0


def test_value_expires_only_after_its_slot():
    for tw in (TimerWheel(SECOND, SECOND * 10), SystemTimerWheel(SECOND, SECOND * 10)):
        start = datetime.now()
        tw.advance(start)
        tw.add("late", SECOND * 2)

        tw.advance(start + SECOND * 2)
        assert tw.purge() is None

        tw.advance(start + SECOND * 3)
        assert tw.purge() == "late"
        assert tw.purge() is None


def test_timer_wheel_caps_ticks_at_one_turn():
    tw = TimerWheel(SECOND, SECOND * 10)
    start = datetime.now()
    tw.advance(start)
    tw.advance(start + SECOND * 100)
    assert tw.current == 0
    assert tw.last_tick == start + SECOND * 100


def test_system_timer_wheel_sets_last_tick_to_now():
    tw = SystemTimerWheel(SECOND, SECOND * 10)
    start = datetime.now()
    tw.advance(start)
    later = start + timedelta(milliseconds=2500)
    tw.advance(later)
    assert tw.current == 2
    assert tw.last_tick == later


def test_system_timer_wheel_keeps_last_tick_without_a_whole_tick():
    tw = SystemTimerWheel(SECOND, SECOND * 10)
    start = datetime.now()
    tw.advance(start)
    tw.advance(start + timedelta(milliseconds=500))
    assert tw.current == 0
    assert tw.last_tick == start


def test_timeout_list_take_moves_items():
    a = TimeoutList()
    b = TimeoutList()
    a.append(TimeoutItem(1))
    b.append(TimeoutItem(2))
    b.append(TimeoutItem(3))
    a.take(b)
    assert [item.value for item in a] == [1, 2, 3]
    assert len(b) == 0
    assert b.head is None
    assert a.popleft().value == 1