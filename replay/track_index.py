# replay/track_index.py
from __future__ import annotations
from typing import Iterable, List, Protocol, Sequence, Tuple

import numpy as np

from common.schemas import Frame, FrameTable, Marker, MarkerColor, Position


class MarkerLocator(Protocol):
    def nearest(self, position: Position) -> int: ...


class TrackIndex:
    """
    Immutable ordered marker set. nearest() is a brute-force scan; the track
    has at most a few hundred markers. Ties resolve to the marker that comes
    first in table order (np.argmin returns the first minimum).
    """

    def __init__(self, markers: Iterable[Marker]):
        self._markers: Tuple[Marker, ...] = tuple(markers)
        if not self._markers:
            raise ValueError("track index needs at least one marker")
        ids = [m.id for m in self._markers]
        if len(set(ids)) != len(ids):
            raise ValueError("duplicate marker id in track table")
        self._ids = np.asarray(ids, dtype=np.int64)
        self._xy = np.asarray([m.position for m in self._markers], dtype=np.float64)
        self._xy.setflags(write=False)

    @property
    def markers(self) -> Tuple[Marker, ...]:
        return self._markers

    def __len__(self) -> int:
        return len(self._markers)

    def nearest(self, position: Position) -> int:
        d = self._xy - np.asarray(position, dtype=np.float64)
        # squared distance keeps the same ordering as Euclidean
        dist2 = np.einsum("ij,ij->i", d, d)
        return int(self._ids[int(np.argmin(dist2))])

    def bounds(self) -> Tuple[float, float, float, float]:
        """(min_x, max_x, min_y, max_y) for scaling onto a canvas."""
        mn = self._xy.min(axis=0)
        mx = self._xy.max(axis=0)
        return float(mn[0]), float(mx[0]), float(mn[1]), float(mx[1])

    def color_table(self, frame: Frame | None, frame_index: int = 0) -> FrameTable:
        """Expand a sparse frame into every marker's color; unlit markers are black."""
        rows: List[MarkerColor] = []
        for m in self._markers:
            color = frame.color_of(m.id) if frame is not None else (0, 0, 0)
            rows.append(MarkerColor(id=m.id, x=m.position[0], y=m.position[1], color=color))
        return FrameTable(
            frame_index=frame_index,
            timestamp_ms=frame.timestamp_ms if frame is not None else None,
            markers=rows,
        )


def from_points(points: Sequence[Tuple[float, float]], first_id: int = 1) -> TrackIndex:
    """Convenience for tests and tools: markers numbered in point order."""
    return TrackIndex(Marker(id=first_id + i, position=(float(x), float(y))) for i, (x, y) in enumerate(points))
