import time


class Timer:
    """Stopwatch for "complete in S.mmm s." stage messages."""

    def __init__(self):
        self.t0 = 0
        self.td = 0

    def start(self) -> int:
        self.t0 = time.perf_counter_ns()
        return self.t0

    def stop_ns(self) -> int:
        self.td = time.perf_counter_ns() - self.t0
        return self.td

    def stop_s(self) -> int:
        return self.stop_ns() // 1_000_000_000

    def fms(self) -> int:
        """Milliseconds past the whole second of the last stop."""
        return self.td // 1_000_000 % 1000
