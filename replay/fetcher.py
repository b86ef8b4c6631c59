# replay/fetcher.py
from __future__ import annotations
import asyncio, re
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence, Tuple

import httpx
from pydantic import ValidationError

from common.config import TelemetrySettings
from common.logging import get_logger
from common.schemas import LocationRecord, Sample
from replay.errors import DataError, SourceError, TransportError

log = get_logger("replay.fetcher")

SENTINEL = (0.0, 0.0)
_FRACTION = re.compile(r"(\d{2}:\d{2}:\d{2})\.(\d+)")


# ----------------- timestamp helpers -----------------
def _six_digit_fraction(value: str) -> str:
    # fromisoformat on 3.10 only takes 3 or 6 fractional digits
    return _FRACTION.sub(lambda m: f"{m.group(1)}.{m.group(2)[:6].ljust(6, '0')}", value, count=1)


def parse_ts_ms(value: str) -> int:
    """ISO8601 -> epoch milliseconds. Naive timestamps are UTC."""
    try:
        dt = datetime.fromisoformat(_six_digit_fraction(value.replace("Z", "+00:00")))
    except (TypeError, ValueError) as e:
        raise DataError(f"bad timestamp {value!r}") from e
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return int(round(dt.timestamp() * 1000))


def format_ts_ms(ms: int) -> str:
    dt = datetime.fromtimestamp(ms // 1000, tz=timezone.utc)
    return dt.strftime("%Y-%m-%dT%H:%M:%S.") + f"{ms % 1000:03d}"


def _to_sample(raw: Any) -> Tuple[Sample, int]:
    """Validate one record. Returns (sample, ts); raises DataError on junk."""
    try:
        rec = LocationRecord.model_validate(raw)
    except ValidationError as e:
        raise DataError(f"invalid record: {e.error_count()} errors") from e
    ts = parse_ts_ms(rec.date)
    return Sample(participant_id=rec.driver_number, position=(rec.x, rec.y), timestamp_ms=ts), ts


def _batches(ids: Sequence[int], size: int) -> List[Sequence[int]]:
    return [ids[i:i + size] for i in range(0, len(ids), size)]


# ----------------- fetcher -----------------
class TelemetryFetcher:
    """
    Pulls location samples per participant from the telemetry HTTP source.
    One pooled AsyncClient for the lifetime of the fetcher; otherwise stateless.
    """

    def __init__(self, settings: TelemetrySettings, client: httpx.AsyncClient | None = None):
        self._settings = settings
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=settings.timeout_sec)
        self._window_start_ms = parse_ts_ms(settings.window_start)
        self._window_end = settings.window_end

    @property
    def settings(self) -> TelemetrySettings:
        return self._settings

    async def aclose(self):
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        await self.aclose()

    def _params(self, participant_id: int, after_ms: int) -> Dict[str, Any]:
        return {
            "session_key": self._settings.session_key,
            "driver_number": participant_id,
            "date>": format_ts_ms(after_ms),
            "date<": self._window_end,
        }

    async def _request(self, participant_id: int, after_ms: int) -> List[Any]:
        url = f"{self._settings.base_url}/location"
        try:
            resp = await self._client.get(url, params=self._params(participant_id, after_ms))
        except httpx.HTTPError as e:
            raise TransportError(f"GET {url} participant={participant_id}: {e}") from e
        if not resp.is_success:
            raise SourceError(participant_id, resp.status_code)
        try:
            data = resp.json()
        except ValueError as e:
            raise TransportError(f"participant={participant_id}: body is not JSON") from e
        if not isinstance(data, list):
            raise TransportError(f"participant={participant_id}: expected a JSON list, got {type(data).__name__}")
        return data

    async def _collect(self, participant_id: int, limit: int, after_ms: int) -> List[Sample]:
        collected: List[Sample] = []
        dropped = 0
        cursor = after_ms

        while len(collected) < limit:
            try:
                records = await self._request(participant_id, cursor)
            except SourceError as e:
                log.warning(f"[fetch] source error participant={participant_id} status={e.status_code}; skipping this pass")
                break
            if not records:
                break  # exhausted

            latest = cursor
            for raw in records:
                try:
                    sample, ts = _to_sample(raw)
                except DataError as e:
                    dropped += 1
                    log.debug(f"[fetch] drop participant={participant_id}: {e}")
                    continue
                latest = max(latest, ts)
                if sample.position == SENTINEL:
                    dropped += 1
                    continue
                collected.append(sample)

            if latest <= cursor:
                break  # nothing newer than what we asked for
            cursor = latest

        if len(collected) > limit:
            collected = sorted(collected, key=lambda s: s.timestamp_ms)[:limit]
        log.info(f"[fetch] participant={participant_id} samples={len(collected)} dropped={dropped}")
        return collected

    async def fetch_batch(
        self,
        participant_ids: Sequence[int],
        batch_size: int,
        per_participant_limit: int,
        after_ms: Optional[int] = None,
    ) -> List[Sample]:
        """
        Fetch every participant, `batch_size` at a time (concurrently within a
        batch). SourceError drops one participant for this pass; TransportError
        aborts the call. Output is unsorted: participant order, then arrival.
        """
        if batch_size < 1:
            raise ValueError("batch_size must be >= 1")
        start = self._window_start_ms if after_ms is None else max(after_ms, self._window_start_ms)

        out: List[Sample] = []
        for batch in _batches(list(participant_ids), batch_size):
            log.info(f"[fetch] batch={list(batch)} after={format_ts_ms(start)} limit={per_participant_limit}")
            tasks = [asyncio.ensure_future(self._collect(pid, per_participant_limit, start)) for pid in batch]
            try:
                results = await asyncio.gather(*tasks)
            except BaseException:
                # first failure ends the call; siblings must not keep requesting
                for t in tasks:
                    t.cancel()
                await asyncio.gather(*tasks, return_exceptions=True)
                raise
            for samples in results:
                out.extend(samples)
        return out
