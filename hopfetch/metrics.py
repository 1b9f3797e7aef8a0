import time
from dataclasses import dataclass, asdict, replace
from typing import Callable

DNS_LOOKUP = "dns_lookup_time"
TCP_CONNECTION = "tcp_connection_time"
TLS_HANDSHAKE = "tls_handshake_time"
FIRST_BYTE = "first_byte_time"
TOTAL = "total_time"


@dataclass
class Timings:
    """
    Per-hop latency breakdown attached to every Response and FetchError.

    Fields (seconds since the hop started, None when the phase never happened):
        dns_lookup_time     : Host name resolved.
        tcp_connection_time : Connection established.
        tls_handshake_time  : TLS handshake finished (https only).
        first_byte_time     : Status line and headers received.
        total_time          : Response handed to the caller.
    """
    dns_lookup_time: float | None = None
    tcp_connection_time: float | None = None
    tls_handshake_time: float | None = None
    first_byte_time: float | None = None
    total_time: float | None = None

    def as_dict(self) -> dict[str, float]:
        return {k: v for k, v in asdict(self).items() if v is not None}


class TimingRecorder:
    """
    Fills a Timings record as transport milestones happen.

    Each field is written at most once; the first mark wins.
    """

    def __init__(self, clock: Callable[[], float] = time.perf_counter):
        self._clock = clock
        self._start = clock()
        self.timings = Timings()

    def elapsed(self) -> float:
        return self._clock() - self._start

    def mark(self, field: str) -> bool:
        if getattr(self.timings, field) is not None:
            return False
        setattr(self.timings, field, self.elapsed())
        return True

    def snapshot(self) -> Timings:
        return replace(self.timings)
