import asyncio
from typing import List, Optional, Sequence

import pytest

from common.config import PlaybackSettings
from common.schemas import Sample
from replay.clock import SessionClock
from replay.frame_builder import FrameBuilder
from replay.scheduler import PlaybackScheduler
from replay.track_index import from_points

RED = (255, 0, 0)
GREEN = (0, 255, 0)
BLUE = (0, 0, 255)
WHITE = (255, 255, 255)
YELLOW = (255, 255, 0)

COLORS = {1: RED, 2: GREEN, 3: BLUE, 4: WHITE, 5: YELLOW}


class FakeFetcher:
    """Returns queued results in order, then empty lists. Exceptions are raised."""

    def __init__(self, *results):
        self.results = list(results)
        self.calls: List[Optional[int]] = []

    async def fetch_batch(self, participant_ids: Sequence[int], batch_size: int,
                          per_participant_limit: int, after_ms: Optional[int] = None):
        self.calls.append(after_ms)
        r = self.results.pop(0) if self.results else []
        if isinstance(r, Exception):
            raise r
        return r


class GatedFetcher:
    """Holds the fetch until release() so tests can act while it is in flight."""

    def __init__(self, samples):
        self.samples = samples
        self._gate = None

    @property
    def gate(self) -> asyncio.Event:
        if self._gate is None:
            self._gate = asyncio.Event()
        return self._gate

    def release(self):
        self.gate.set()

    async def fetch_batch(self, participant_ids, batch_size, per_participant_limit, after_ms=None):
        await self.gate.wait()
        return self.samples


def s(pid: int, x: float, ts: int, y: float = 0.0) -> Sample:
    return Sample(participant_id=pid, position=(x, y), timestamp_ms=ts)


@pytest.fixture
def track():
    # markers 1, 2, 3 along the x axis
    return from_points([(0.0, 0.0), (10.0, 0.0), (20.0, 0.0)])


@pytest.fixture
def builder(track):
    return FrameBuilder(track, COLORS)


@pytest.fixture
def fake_time():
    return {"now": 100.0}


@pytest.fixture
def make_scheduler(builder, fake_time):
    def _make(fetcher, **kw):
        clock = SessionClock(now=lambda: fake_time["now"])
        # timers effectively never fire; tests post Tick/Blink by hand
        settings = kw.pop("settings", PlaybackSettings(tick_ms=3_600_000, blink_ms=3_600_000, refill_delay_ms=0))
        return PlaybackScheduler(
            fetcher, builder, participant_ids=list(COLORS), batch_size=2,
            per_participant_limit=50, settings=settings, clock=clock, **kw,
        )
    return _make
