import pytest


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


class ClockWaiter:
    """Waiter that advances a fake clock instead of sleeping.

    ``actions`` run one per wait, which lets a test interleave a "writer"
    with the session's backoff without threads.
    """

    def __init__(self, clock: FakeClock, limit: int = 10_000):
        self.clock = clock
        self.waits: list[float] = []
        self.actions: list = []
        self.closed = False
        self._limit = limit

    def wait(self, seconds: float) -> None:
        self.waits.append(seconds)
        self.clock.now += seconds
        if self.actions:
            self.actions.pop(0)()
        if len(self.waits) > self._limit:
            raise AssertionError("session kept waiting without producing a record")

    def close(self) -> None:
        self.closed = True


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def waiter(clock):
    return ClockWaiter(clock)
