# replay/frame_builder.py
from __future__ import annotations
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Set

from common.logging import get_logger
from common.schemas import Color, Frame, Participant, Sample
from replay.track_index import MarkerLocator

log = get_logger("replay.frame_builder")


class FrameBuilder:
    """
    samples -> frames. Pure: no I/O apart from diagnostics, same input gives
    the same output. Last write to a marker within one timestamp wins.
    """

    def __init__(self, locator: MarkerLocator, participants: Mapping[int, Color] | Iterable[Participant]):
        self._locator = locator
        if isinstance(participants, Mapping):
            self._colors: Dict[int, Color] = dict(participants)
        else:
            self._colors = {p.id: p.color for p in participants}

    @property
    def participant_ids(self) -> List[int]:
        return list(self._colors)

    def build(self, samples: Sequence[Sample]) -> List[Frame]:
        # sorted() is stable: equal timestamps keep arrival order
        ordered = sorted(samples, key=lambda s: s.timestamp_ms)

        frames: List[Frame] = []
        open_ts: Optional[int] = None
        open_colors: Dict[int, Color] = {}
        unknown: Set[int] = set()

        for s in ordered:
            color = self._colors.get(s.participant_id)
            if color is None:
                if s.participant_id not in unknown:
                    unknown.add(s.participant_id)
                    log.warning(f"[build] unknown participant={s.participant_id}, skipping its samples")
                continue

            if open_ts is not None and s.timestamp_ms != open_ts:
                frames.append(Frame(timestamp_ms=open_ts, marker_color=open_colors))
                open_colors = {}
            open_ts = s.timestamp_ms
            open_colors[self._locator.nearest(s.position)] = color

        if open_ts is not None:
            frames.append(Frame(timestamp_ms=open_ts, marker_color=open_colors))

        log.debug(f"[build] samples={len(ordered)} frames={len(frames)} unknown={sorted(unknown)}")
        return frames
