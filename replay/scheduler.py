# replay/scheduler.py
from __future__ import annotations
import asyncio
from collections import deque
from dataclasses import dataclass, field
from typing import Callable, Deque, FrozenSet, List, Optional, Protocol, Sequence, Set, Tuple, Union

from common.config import PlaybackSettings
from common.logging import get_logger
from common.schemas import Frame, PlaybackView, Sample
from replay.clock import SessionClock
from replay.errors import FetchError

log = get_logger("replay.scheduler")


class Fetcher(Protocol):
    async def fetch_batch(
        self, participant_ids: Sequence[int], batch_size: int, per_participant_limit: int,
        after_ms: Optional[int] = None,
    ) -> List[Sample]: ...


class Builder(Protocol):
    def build(self, samples: Sequence[Sample]) -> List[Frame]: ...


# ----------------- states -----------------
@dataclass(frozen=True)
class Idle:
    name: str = "idle"


@dataclass(frozen=True)
class Fetching:
    generation: int
    name: str = "fetching"


@dataclass(frozen=True)
class Playing:
    generation: int
    name: str = "playing"


State = Union[Idle, Fetching, Playing]

TRANSITIONS: FrozenSet[Tuple[str, str]] = frozenset({
    ("idle", "fetching"),
    ("fetching", "playing"),
    ("fetching", "idle"),
    ("playing", "idle"),
})

STATUS = {"idle": "Start", "fetching": "DOWNLOADING DATA...", "playing": "Stop"}


# ----------------- messages -----------------
@dataclass(frozen=True)
class Toggle:
    pass


@dataclass(frozen=True)
class Reset:
    pass


@dataclass(frozen=True)
class Tick:
    now: float


@dataclass(frozen=True)
class Blink:
    pass


@dataclass(frozen=True)
class DataFetched:
    generation: int
    refill: bool
    frames: List[Frame] = field(default_factory=list)
    error: Optional[str] = None


@dataclass(frozen=True)
class Shutdown:
    pass


Message = Union[Toggle, Reset, Tick, Blink, DataFetched, Shutdown]


class InvalidTransition(RuntimeError):
    pass


# ----------------- scheduler -----------------
class PlaybackScheduler:
    """
    Idle -> Fetching -> Playing -> Idle.

    All mutation of frames / cursor / blink / clock happens in handle(), fed
    from a single inbox. Timers and fetches are tasks that only post messages.
    """

    def __init__(
        self,
        fetcher: Fetcher,
        builder: Builder,
        participant_ids: Sequence[int],
        batch_size: int,
        per_participant_limit: int,
        settings: PlaybackSettings | None = None,
        clock: SessionClock | None = None,
        on_frame: Callable[[PlaybackView], None] | None = None,
    ):
        self._fetcher = fetcher
        self._builder = builder
        self._participants = list(participant_ids)
        self._batch_size = batch_size
        self._limit = per_participant_limit
        self._settings = settings or PlaybackSettings()
        self._clock = clock or SessionClock()
        self._on_frame = on_frame

        self._inbox: asyncio.Queue[Message] = asyncio.Queue()
        self._state: State = Idle()
        self._generation = 0
        self._frames: List[Frame] = []
        self._cursor = 0
        self._blink = False
        self._timers: List[asyncio.Task] = []
        self._fetches: Set[asyncio.Task] = set()
        self.history: Deque[Tuple[str, str]] = deque(maxlen=64)

    # ---------- read side ----------
    @property
    def state(self) -> State:
        return self._state

    @property
    def frames(self) -> Tuple[Frame, ...]:
        return tuple(self._frames)

    @property
    def frame_count(self) -> int:
        return len(self._frames)

    @property
    def cursor(self) -> int:
        return self._cursor

    @property
    def blink(self) -> bool:
        return self._blink

    @property
    def clock(self) -> SessionClock:
        return self._clock

    def current_frame(self) -> Optional[Frame]:
        if not self._frames:
            return None
        return self._frames[self._cursor]

    def snapshot(self) -> PlaybackView:
        return PlaybackView(
            state=self._state.name,
            status=STATUS[self._state.name],
            frame_index=self._cursor,
            frame_count=len(self._frames),
            blink=self._blink,
            elapsed_ms=self._clock.elapsed_ms,
            elapsed_text=self._clock.format_elapsed(),
            frame=self.current_frame(),
        )

    # ---------- command surface ----------
    def post(self, msg: Message) -> None:
        self._inbox.put_nowait(msg)

    def toggle(self) -> None:
        self.post(Toggle())

    def start(self) -> None:
        if isinstance(self._state, Idle):
            self.post(Toggle())

    def stop(self) -> None:
        if not isinstance(self._state, Idle):
            self.post(Toggle())

    def reset(self) -> None:
        self.post(Reset())

    # ---------- loop ----------
    async def run(self) -> None:
        log.info("scheduler loop started")
        while True:
            msg = await self._inbox.get()
            if isinstance(msg, Shutdown):
                break
            try:
                self.handle(msg)
            except InvalidTransition as e:
                log.error(f"[loop] rejected {type(msg).__name__}: {e}")
        log.info("scheduler loop stopped")

    def drain(self) -> int:
        """Handle everything already queued; for hosts that own their frame loop."""
        n = 0
        while True:
            try:
                msg = self._inbox.get_nowait()
            except asyncio.QueueEmpty:
                return n
            if isinstance(msg, Shutdown):
                return n
            self.handle(msg)
            n += 1

    async def wait_fetches(self) -> None:
        while self._fetches:
            await asyncio.gather(*list(self._fetches))

    async def close(self) -> None:
        self._cancel_timers()
        self.post(Shutdown())
        # let in-flight fetches finish; their results are discarded
        self._generation += 1
        await self.wait_fetches()

    # ---------- transitions ----------
    def _transition(self, new: State) -> None:
        edge = (self._state.name, new.name)
        if edge not in TRANSITIONS:
            raise InvalidTransition(f"{edge[0]} -> {edge[1]}")
        self.history.append(edge)
        log.info(f"[state] {edge[0]} -> {edge[1]} frames={len(self._frames)}")
        self._state = new

    def handle(self, msg: Message) -> None:
        if isinstance(msg, Toggle):
            self._on_toggle()
        elif isinstance(msg, Reset):
            self._clock.reset()
            self._cursor = 0
            self._blink = False
            log.info(f"[reset] state={self._state.name}")
        elif isinstance(msg, Tick):
            if isinstance(self._state, Playing):
                self._clock.advance(msg.now)
        elif isinstance(msg, Blink):
            self._on_blink()
        elif isinstance(msg, DataFetched):
            self._on_data(msg)

    def _on_toggle(self) -> None:
        if isinstance(self._state, Idle):
            self._generation += 1
            self._frames.clear()
            self._cursor = 0
            self._transition(Fetching(self._generation))
            self._spawn_fetch(self._generation, refill=False, delay=0.0, after_ms=None)
        else:
            # in-flight fetches finish on their own; the bump makes their results stale
            self._generation += 1
            self._cancel_timers()
            self._clock.pause()
            self._blink = False
            self._transition(Idle())

    def _on_blink(self) -> None:
        if not isinstance(self._state, Playing):
            return
        n = len(self._frames)  # read fresh; refills may have grown it
        if n == 0:
            return
        self._blink = not self._blink
        self._cursor = (self._cursor + 1) % n
        if self._on_frame is not None:
            try:
                self._on_frame(self.snapshot())
            except Exception as e:
                log.error(f"[blink] on_frame callback failed: {e}")

    def _on_data(self, msg: DataFetched) -> None:
        if msg.generation != self._generation or isinstance(self._state, Idle):
            log.debug(f"[data] discarding stale result generation={msg.generation} refill={msg.refill}")
            return

        if not msg.refill:
            if msg.error is not None:
                log.error(f"[data] initial fetch failed: {msg.error}")
                self._transition(Idle())
                return
            self._frames.extend(msg.frames)
            if not self._frames:
                log.warning("[data] initial fetch produced no frames; nothing to play")
                self._transition(Idle())
                return
            self._transition(Playing(self._generation))
            self._clock.resume()
            self._start_timers()
            self._schedule_refill()
            return

        if msg.error is not None:
            log.error(f"[refill] failed, no further refills: {msg.error}")
            return
        last_ts = self._frames[-1].timestamp_ms if self._frames else None
        fresh = [f for f in msg.frames if last_ts is None or f.timestamp_ms > last_ts]
        if len(fresh) < len(msg.frames):
            log.debug(f"[refill] dropped {len(msg.frames) - len(fresh)} frames at or before ts={last_ts}")
        if not fresh:
            log.info(f"[refill] no further data; looping over {len(self._frames)} frames")
            return
        self._frames.extend(fresh)
        log.info(f"[refill] appended={len(fresh)} total={len(self._frames)}")
        if isinstance(self._state, Playing):
            self._schedule_refill()

    # ---------- effects ----------
    def _schedule_refill(self) -> None:
        after = self._frames[-1].timestamp_ms if self._frames else None
        self._spawn_fetch(self._generation, refill=True, delay=self._settings.refill_delay_ms / 1000, after_ms=after)

    def _spawn_fetch(self, generation: int, refill: bool, delay: float, after_ms: Optional[int]) -> None:
        task = asyncio.get_running_loop().create_task(self._fetch(generation, refill, delay, after_ms))
        self._fetches.add(task)
        task.add_done_callback(self._fetches.discard)

    async def _fetch(self, generation: int, refill: bool, delay: float, after_ms: Optional[int]) -> None:
        if delay > 0:
            await asyncio.sleep(delay)
        if generation != self._generation:
            return  # stopped while waiting; skip the request
        try:
            samples = await self._fetcher.fetch_batch(
                self._participants, self._batch_size, self._limit, after_ms=after_ms
            )
            frames = self._builder.build(samples)
            self.post(DataFetched(generation, refill, frames=frames))
        except FetchError as e:
            self.post(DataFetched(generation, refill, error=str(e)))
        except Exception as e:
            log.exception(f"[fetch] unexpected failure refill={refill}")
            self.post(DataFetched(generation, refill, error=repr(e)))

    def _start_timers(self) -> None:
        self._cancel_timers()
        loop = asyncio.get_running_loop()
        tick_s = self._settings.tick_ms / 1000
        blink_s = self._settings.blink_ms / 1000
        self._timers = [
            loop.create_task(self._every(tick_s, lambda: Tick(loop.time()))),
            loop.create_task(self._every(blink_s, Blink)),
        ]

    async def _every(self, period: float, make: Callable[[], Message]) -> None:
        while True:
            await asyncio.sleep(period)
            self.post(make())

    def _cancel_timers(self) -> None:
        for t in self._timers:
            t.cancel()
        self._timers = []
