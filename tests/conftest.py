"""Shared fixtures: a non-sleeping tick clock and simulated boards."""

import pytest

from caterina_flasher.protocol import (
    CaterinaProtocol,
    ProtocolTimeouts,
    SimulatedCaterina,
    SimulatedTransport,
    TickClock,
)


class FakeClock(TickClock):
    """Counts ticks instead of sleeping; optionally runs a hook per tick."""

    def __init__(self, on_tick=None):
        super().__init__(tick_seconds=0)
        self.ticks = 0
        self.on_tick = on_tick

    def sleep(self) -> None:
        self.ticks += 1
        if self.on_tick is not None:
            self.on_tick(self.ticks)


class Recorder:
    """Progress sink that keeps every message."""

    def __init__(self):
        self.messages = []

    def __call__(self, message: str) -> None:
        self.messages.append(message)

    @property
    def ticks(self) -> int:
        return self.messages.count(".")

    @property
    def statuses(self):
        return [m for m in self.messages if m != "."]


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def timeouts():
    return ProtocolTimeouts(default_ticks=5, erase_ticks=50)


@pytest.fixture
def progress():
    return Recorder()


@pytest.fixture
def connect(clock, timeouts, progress):
    """Return a factory that opens a protocol against a simulated board."""

    def _connect(device=None):
        device = device or SimulatedCaterina()
        transport = SimulatedTransport(device)
        protocol = CaterinaProtocol(transport, clock=clock, timeouts=timeouts, progress=progress)
        transport.open()
        return protocol, device

    return _connect
