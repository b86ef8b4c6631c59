import pytest

from common.schemas import Frame, Marker
from replay.track_index import TrackIndex, from_points


def test_nearest_picks_closest_marker(track):
    assert track.nearest((1.0, 0.5)) == 1
    assert track.nearest((11.0, -2.0)) == 2
    assert track.nearest((100.0, 100.0)) == 3


def test_nearest_is_deterministic(track):
    p = (13.7, 4.2)
    assert track.nearest(p) == track.nearest(p)


def test_tie_goes_to_first_marker_in_table_order():
    idx = TrackIndex([
        Marker(id=7, position=(10.0, 0.0)),
        Marker(id=3, position=(0.0, 0.0)),
    ])
    # equidistant from both; id 7 comes first in the table
    assert idx.nearest((5.0, 0.0)) == 7


def test_ids_do_not_need_to_be_contiguous():
    idx = TrackIndex([Marker(id=101, position=(0.0, 0.0)), Marker(id=55, position=(50.0, 50.0))])
    assert idx.nearest((49.0, 49.0)) == 55


def test_empty_and_duplicate_tables_rejected():
    with pytest.raises(ValueError):
        TrackIndex([])
    with pytest.raises(ValueError):
        TrackIndex([Marker(id=1, position=(0.0, 0.0)), Marker(id=1, position=(1.0, 1.0))])


def test_bounds(track):
    assert track.bounds() == (0.0, 20.0, 0.0, 0.0)


def test_color_table_fills_unlit_markers():
    idx = from_points([(0.0, 0.0), (5.0, 5.0)])
    table = idx.color_table(Frame(timestamp_ms=10, marker_color={2: (9, 9, 9)}), frame_index=4)
    assert table.frame_index == 4
    assert table.timestamp_ms == 10
    assert [(m.id, m.color) for m in table.markers] == [(1, (0, 0, 0)), (2, (9, 9, 9))]


def test_color_table_without_frame_is_all_dark(track):
    table = track.color_table(None)
    assert table.timestamp_ms is None
    assert all(m.color == (0, 0, 0) for m in table.markers)
