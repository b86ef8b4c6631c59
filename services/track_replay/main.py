# services/track_replay/main.py
from __future__ import annotations
import asyncio
from contextlib import asynccontextmanager
from typing import Any, Dict, Set

import uvicorn
from fastapi import FastAPI, Query
from fastapi.responses import JSONResponse

from common import logging as logsetup
from common.bus import EventBus, frame_event
from common.config import (
    load_config, load_markers, load_participants, playback_settings, telemetry_settings,
)
from common.logging import get_logger
from common.schemas import PlaybackView
from replay.fetcher import TelemetryFetcher
from replay.frame_builder import FrameBuilder
from replay.scheduler import Fetcher, PlaybackScheduler
from replay.track_index import TrackIndex

log = get_logger("track_replay")


class FramePublisher:
    """Bridges the scheduler's sync on_frame hook to async XADDs."""

    def __init__(self, bus: EventBus, stream: str):
        self._bus = bus
        self._stream = stream
        self._pending: Set[asyncio.Task] = set()

    def __call__(self, view: PlaybackView) -> None:
        if not self._bus.connected:
            return
        task = asyncio.get_running_loop().create_task(self._send(view.model_dump()))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _send(self, view: Dict[str, Any]) -> None:
        try:
            await self._bus.xadd_json(self._stream, frame_event(view))
        except Exception as e:
            log.warning(f"[publish] XADD to {self._stream} failed: {e}")

    async def flush(self) -> None:
        if self._pending:
            await asyncio.gather(*list(self._pending))


def build_app(cfg: Dict[str, Any], fetcher: Fetcher | None = None, bus: EventBus | None = None) -> FastAPI:
    """
    Wire track index, fetcher, builder and scheduler into an HTTP surface.
    `fetcher` / `bus` are injectable for tests and alternate sources.
    """
    rt = cfg.get("runtime", {}) or {}
    tele = telemetry_settings(cfg)
    track = TrackIndex(load_markers((cfg.get("track", {}) or {}).get("markers_file", "config/track.yaml")))
    participants = load_participants(cfg)
    builder = FrameBuilder(track, participants)

    publish = bool(rt.get("publish_frames", False))
    if bus is None and publish:
        bus = EventBus(rt.get("redis_url", "redis://127.0.0.1:6379/0"))
    publisher = FramePublisher(bus, rt.get("stream_played", "track.frames")) if bus is not None else None

    owned_fetcher = fetcher is None
    state: Dict[str, Any] = {}

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        f = fetcher if fetcher is not None else TelemetryFetcher(tele)
        sched = PlaybackScheduler(
            f, builder,
            participant_ids=[p.id for p in participants],
            batch_size=tele.batch_size,
            per_participant_limit=tele.per_participant_limit,
            settings=playback_settings(cfg),
            on_frame=publisher,
        )
        if bus is not None and publish:
            try:
                await bus.connect()
            except Exception as e:
                log.warning(f"Frame publishing disabled: {e}")
        loop_task = asyncio.create_task(sched.run())
        state["scheduler"] = sched
        log.info(f"track_replay ready markers={len(track)} participants={len(participants)} "
                 f"session={tele.session_key} batch={tele.batch_size} limit={tele.per_participant_limit}")
        try:
            yield
        finally:
            await sched.close()
            await loop_task
            if publisher is not None:
                await publisher.flush()
            if owned_fetcher:
                await f.aclose()
            if bus is not None:
                await bus.close()

    app = FastAPI(title="Track Replay", lifespan=lifespan)

    def _sched() -> PlaybackScheduler:
        return state["scheduler"]

    # ----------------------- read side -----------------------
    @app.get("/state", response_model=PlaybackView)
    async def get_state():
        return _sched().snapshot()

    @app.get("/frames", response_class=JSONResponse)
    async def get_frames(start: int = Query(0, ge=0), limit: int = Query(100, ge=1, le=5000)):
        frames = _sched().frames
        chunk = frames[start:start + limit]
        return JSONResponse({
            "start": start,
            "total": len(frames),
            "frames": [f.model_dump(mode="json") for f in chunk],
        })

    @app.get("/frames/current", response_class=JSONResponse)
    async def get_current():
        s = _sched()
        table = track.color_table(s.current_frame(), frame_index=s.cursor)
        return JSONResponse(table.model_dump(mode="json"))

    @app.get("/track", response_class=JSONResponse)
    async def get_track():
        min_x, max_x, min_y, max_y = track.bounds()
        return JSONResponse({
            "bounds": {"min_x": min_x, "max_x": max_x, "min_y": min_y, "max_y": max_y},
            "markers": [{"id": m.id, "x": m.position[0], "y": m.position[1]} for m in track.markers],
        })

    # ----------------------- commands -----------------------
    # commands are queued; the returned view is the state before they are handled
    @app.post("/start", response_model=PlaybackView)
    async def post_start():
        _sched().start()
        return _sched().snapshot()

    @app.post("/stop", response_model=PlaybackView)
    async def post_stop():
        _sched().stop()
        return _sched().snapshot()

    @app.post("/toggle", response_model=PlaybackView)
    async def post_toggle():
        _sched().toggle()
        return _sched().snapshot()

    @app.post("/reset", response_model=PlaybackView)
    async def post_reset():
        _sched().reset()
        return _sched().snapshot()

    return app


def create_app() -> FastAPI:
    cfg = load_config()
    logsetup.configure_from(cfg)
    return build_app(cfg)


# ----------------------- main -----------------------
if __name__ == "__main__":
    cfg = load_config()
    logsetup.configure_from(cfg)
    api = cfg.get("api", {}) or {}
    host = api.get("host", "0.0.0.0")
    port = int(api.get("port", 9191))
    level = str((cfg.get("runtime", {}) or {}).get("log_level", "INFO"))
    log.info("Track replay starting on %s:%d (config=%s)", host, port, cfg.get("_path"))
    uvicorn.run("services.track_replay.main:create_app", factory=True,
                host=host, port=port, reload=False, log_level=level.lower())
