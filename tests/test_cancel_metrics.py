from hopfetch.cancel import CancelToken
from hopfetch.metrics import FIRST_BYTE, TCP_CONNECTION, TimingRecorder, Timings


class FakeClock:
    def __init__(self):
        self.now = 100.0

    def __call__(self):
        return self.now


def test_cancel_runs_listeners_once_in_order():
    token = CancelToken()
    calls = []
    token.add_listener(lambda: calls.append("first"))
    token.add_listener(lambda: calls.append("second"))

    token.cancel("stop")
    token.cancel("again")

    assert calls == ["first", "second"]
    assert token.cancelled
    assert token.reason == "stop"


def test_removed_listener_does_not_fire():
    token = CancelToken()
    calls = []

    def listener():
        calls.append(1)

    token.add_listener(listener)
    token.remove_listener(listener)
    token.remove_listener(listener)
    token.cancel()

    assert calls == []


def test_recorder_marks_relative_to_start_once():
    clock = FakeClock()
    recorder = TimingRecorder(clock)

    clock.now = 100.25
    assert recorder.mark(TCP_CONNECTION)
    clock.now = 101.0
    assert not recorder.mark(TCP_CONNECTION)
    recorder.mark(FIRST_BYTE)

    assert recorder.timings.tcp_connection_time == 0.25
    assert recorder.timings.first_byte_time == 1.0
    assert recorder.timings.dns_lookup_time is None


def test_snapshot_is_independent():
    clock = FakeClock()
    recorder = TimingRecorder(clock)
    snapshot = recorder.snapshot()
    recorder.mark(FIRST_BYTE)

    assert snapshot.first_byte_time is None
    assert snapshot.as_dict() == {}
    assert recorder.snapshot().as_dict() == {"first_byte_time": 0.0}


def test_timings_as_dict_skips_missing_phases():
    timings = Timings(dns_lookup_time=0.1, total_time=0.5)
    assert timings.as_dict() == {"dns_lookup_time": 0.1, "total_time": 0.5}
