from __future__ import annotations
from types import MappingProxyType
from typing import Dict, List, Mapping, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator

Color = Tuple[int, int, int]
Position = Tuple[float, float]

UNLIT: Color = (0, 0, 0)


class Marker(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    position: Position


class Participant(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    code: str = ""
    color: Color

    @field_validator("color")
    @classmethod
    def _rgb_range(cls, v: Color) -> Color:
        if any(c < 0 or c > 255 for c in v):
            raise ValueError(f"color components must be 0-255, got {v}")
        return v


class LocationRecord(BaseModel):
    """One record of the remote /location endpoint."""
    x: float
    y: float
    date: str             # ISO8601, offset optional
    driver_number: int


class Sample(BaseModel):
    model_config = ConfigDict(frozen=True)

    participant_id: int
    position: Position
    timestamp_ms: int


class Frame(BaseModel):
    model_config = ConfigDict(frozen=True)

    timestamp_ms: int
    marker_color: Mapping[int, Color] = Field(default_factory=dict, validate_default=True)

    @field_validator("marker_color", mode="after")
    @classmethod
    def _read_only(cls, v: Mapping[int, Color]) -> Mapping[int, Color]:
        # frames are shared between the scheduler, the API and the bus
        return MappingProxyType(dict(v))

    @field_serializer("marker_color")
    def _as_dict(self, v: Mapping[int, Color]) -> Dict[int, Color]:
        return dict(v)

    def color_of(self, marker_id: int) -> Color:
        return self.marker_color.get(marker_id, UNLIT)


class PlaybackView(BaseModel):
    """Read-only snapshot handed to renderers."""
    state: str            # idle | fetching | playing
    status: str           # toggle label / download banner
    frame_index: int
    frame_count: int
    blink: bool
    elapsed_ms: int
    elapsed_text: str     # HH:MM:SS.cc
    frame: Optional[Frame] = None


class MarkerColor(BaseModel):
    id: int
    x: float
    y: float
    color: Color


class FrameTable(BaseModel):
    """Every marker of the track with the color it shows in one frame."""
    frame_index: int
    timestamp_ms: Optional[int] = None
    markers: List[MarkerColor] = Field(default_factory=list)
