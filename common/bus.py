# common/bus.py
from __future__ import annotations
import json
from typing import Any, Dict
from redis import asyncio as aioredis
from common.logging import get_logger

log = get_logger("bus")


class EventBus:
    """Redis stream publisher for played frames. Renderers consume with XREADGROUP."""

    def __init__(self, redis_url: str, maxlen: int = 10000):
        self._redis_url = redis_url
        self._maxlen = maxlen
        self._redis = None

    @property
    def connected(self) -> bool:
        return self._redis is not None

    async def connect(self):
        if self._redis is None:
            log.info(f"Connecting to Redis: {self._redis_url}")
            self._redis = aioredis.from_url(self._redis_url, encoding="utf-8", decode_responses=True)
            try:
                pong = await self._redis.ping()
                log.info(f"Redis ping: {pong}")
            except Exception as e:
                log.error(f"Redis connection failed: {e}")
                self._redis = None
                raise
        return self

    async def close(self):
        if self._redis is not None:
            log.info("Closing Redis connection")
            await self._redis.aclose()
            self._redis = None

    async def xadd_json(self, stream: str, payload: Dict[str, Any]) -> str:
        assert self._redis is not None, "Call connect() first"
        data = {"json": json.dumps(payload, separators=(",", ":"))}
        msg_id = await self._redis.xadd(stream, data, maxlen=self._maxlen, approximate=True)
        log.debug(f"XADD stream={stream} id={msg_id}")
        return msg_id


def frame_event(view: Dict[str, Any]) -> Dict[str, Any]:
    """Compact frame.played payload built from a PlaybackView dump."""
    frame = view.get("frame") or {}
    return {
        "event": "frame.played",
        "frame_index": view.get("frame_index"),
        "frame_count": view.get("frame_count"),
        "blink": view.get("blink"),
        "elapsed_ms": view.get("elapsed_ms"),
        "timestamp_ms": frame.get("timestamp_ms"),
        # JSON object keys are strings; keep marker ids explicit
        "markers": [[int(k), list(v)] for k, v in (frame.get("marker_color") or {}).items()],
    }
