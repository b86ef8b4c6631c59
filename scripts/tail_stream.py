import asyncio, json
from redis import asyncio as aioredis
from common.config import load_config
from common.logging import get_logger

GROUP = "dev"
CONSUMER = "tail01"

log = get_logger("tail_stream")


async def ensure_group(r, stream: str):
    try:
        await r.xgroup_create(stream, GROUP, id="$", mkstream=True)
        log.info(f"Created consumer group '{GROUP}' on stream '{stream}'")
    except Exception as e:
        if "BUSYGROUP" not in str(e):
            raise


def describe(payload: dict) -> str:
    lit = payload.get("markers") or []
    return (f"frame={payload.get('frame_index')}/{payload.get('frame_count')} "
            f"ts={payload.get('timestamp_ms')} lit={len(lit)} blink={payload.get('blink')}")


async def main():
    rt = load_config().get("runtime", {}) or {}
    stream = rt.get("stream_played", "track.frames")
    log.info(f"Tailing stream={stream} as group={GROUP} consumer={CONSUMER}")
    r = aioredis.from_url(rt.get("redis_url", "redis://127.0.0.1:6379/0"), encoding="utf-8", decode_responses=True)
    await ensure_group(r, stream)
    while True:
        resp = await r.xreadgroup(GROUP, CONSUMER, streams={stream: ">"}, count=10, block=5000)
        if not resp:
            continue
        for _stream, messages in resp:
            for msg_id, kv in messages:
                payload = json.loads(kv.get("json", "{}"))
                log.info(f"{msg_id} {describe(payload)}")
                await r.xack(stream, GROUP, msg_id)

if __name__ == "__main__":
    asyncio.run(main())
