from replay.clock import SessionClock, format_duration


def test_frozen_until_resumed():
    c = SessionClock(now=lambda: 0.0)
    assert c.advance(5.0) == 0.0
    c.resume(10.0)
    assert c.advance(10.25) == 0.25
    assert c.advance(11.0) == 1.0


def test_pause_keeps_elapsed():
    c = SessionClock()
    c.resume(0.0)
    c.advance(2.0)
    c.pause()
    assert c.advance(50.0) == 2.0
    c.resume(60.0)
    assert c.advance(61.0) == 3.0


def test_reset_zeroes_and_remarks_running_clock():
    c = SessionClock()
    c.resume(0.0)
    c.advance(4.0)
    c.reset(4.5)
    assert c.elapsed == 0.0
    assert c.advance(5.0) == 0.5


def test_stale_tick_never_runs_backwards():
    c = SessionClock()
    c.resume(10.0)
    c.advance(12.0)
    assert c.advance(11.0) == 2.0


def test_format():
    assert format_duration(0) == "00:00:00.00"
    assert format_duration(3723.456) == "01:02:03.45"
    c = SessionClock()
    c.resume(0.0)
    c.advance(61.5)
    assert c.format_elapsed() == "00:01:01.50"
    assert c.elapsed_ms == 61500
