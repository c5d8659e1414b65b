import threading
import time

import numpy as np

from hausfinder import imaging
from hausfinder.match import PoseSearch, TranslationSearch
from hausfinder.models import Offset, SweepRange

from conftest import TRUE_OFFSET

NO_ROTATION = SweepRange(0, 0, 1)
NO_SCALE = SweepRange(1.0, 1.0, 1.0)


def _pose_search(needle, haystack, **kwargs):
    return PoseSearch(
        needle,
        imaging.build_distance_field(needle),
        haystack,
        imaging.build_distance_field(haystack),
        **kwargs,
    )


def test_identity_sweep_reduces_to_translation_search(needle_edges, haystack_edges, random_edges):
    warp_calls = []

    def warp(*args):
        warp_calls.append(args)
        return imaging.warp_edge_mask(*args)

    for needle, haystack in [
        (needle_edges, haystack_edges),
        (random_edges(8, 8, 0.2), random_edges(40, 30, 0.05)),
    ]:
        search = _pose_search(needle, haystack, warp=warp)
        expected = TranslationSearch(
            search.needle_edges,
            search.needle_field,
            search.haystack_edges,
            search.haystack_field,
        ).search_hierarchical(4)

        result = search.search_pose_space(4, NO_ROTATION, NO_SCALE)
        assert result.offset == expected.offset
        assert result.score == expected.score
        assert result.pose.rotation == 0 and result.pose.scale == 1
    assert warp_calls == []


def test_recovers_rotated_needle(needle_edges, rotated_haystack_edges):
    search = _pose_search(needle_edges, rotated_haystack_edges)
    result = search.search_pose_space(4, SweepRange(0, 90, 90), NO_SCALE)

    assert result.found
    assert result.pose.rotation == 90
    assert result.pose.scale == 1
    assert result.offset == Offset(*TRUE_OFFSET)
    assert result.score == 0


def test_needle_mask_is_left_untouched(needle_edges, rotated_haystack_edges):
    before = needle_edges.cells.copy()
    search = _pose_search(needle_edges, rotated_haystack_edges)
    search.search_pose_space(4, SweepRange(-90, 90, 45), SweepRange(0.5, 1.5, 0.5))

    assert search.needle_edges is needle_edges
    np.testing.assert_array_equal(needle_edges.cells, before)


def test_candidates_sweep_rotation_outermost():
    candidates = PoseSearch.candidates(SweepRange(0, 10, 5), SweepRange(0.5, 1.0, 0.5))
    assert candidates == [
        (0, 0.5),
        (0, 1.0),
        (5, 0.5),
        (5, 1.0),
        (10, 0.5),
        (10, 1.0),
    ]


def test_warped_candidate_uses_matching_distance_field(needle_edges):
    search = _pose_search(needle_edges, needle_edges)
    edges, field = search.needle_for(45, 0.75)
    assert edges is not needle_edges
    xs, ys = edges.edge_coords
    assert xs.size > 0
    # the recomputed field is zero exactly on the warped edges
    assert np.all(field.values[ys, xs] == 0)


def test_empty_ranges_return_no_result(needle_edges, haystack_edges):
    search = _pose_search(needle_edges, haystack_edges)
    assert not search.search_pose_space(4, SweepRange(10, 0, 5), NO_SCALE).found
    assert not search.search_pose_space(4, NO_ROTATION, SweepRange(0.5, 1.0, 0)).found
    assert not search.search_pose_space(4, NO_ROTATION, SweepRange(0.0, 1.0, 0.5)).found


def test_parallel_sweep_matches_serial(needle_edges, rotated_haystack_edges):
    search = _pose_search(needle_edges, rotated_haystack_edges)
    rotations = SweepRange(0, 90, 45)
    scales = SweepRange(0.75, 1.0, 0.25)

    serial = search.search_pose_space(4, rotations, scales)
    parallel = search.search_pose_space(4, rotations, scales, max_workers=3)
    assert parallel == serial


def test_cancel_before_start_returns_no_result(needle_edges, haystack_edges):
    cancel = threading.Event()
    cancel.set()
    search = _pose_search(needle_edges, haystack_edges)

    result = search.search_pose_space(4, SweepRange(0, 90, 45), NO_SCALE, cancel=cancel)
    assert result.cancelled
    assert not result.found


def test_expired_deadline_stops_sweep(needle_edges, haystack_edges):
    search = _pose_search(needle_edges, haystack_edges)
    result = search.search_pose_space(
        4, SweepRange(0, 90, 45), NO_SCALE, deadline=time.monotonic() - 1
    )
    assert result.cancelled


def test_cancel_mid_sweep_keeps_best_so_far(needle_edges, haystack_edges):
    cancel = threading.Event()
    calls = []

    def warp(*args):
        # first warped candidate triggers cancellation
        calls.append(args)
        cancel.set()
        return imaging.warp_edge_mask(*args)

    search = _pose_search(needle_edges, haystack_edges, warp=warp)
    result = search.search_pose_space(
        4, SweepRange(0, 90, 45), NO_SCALE, cancel=cancel
    )
    assert result.cancelled
    assert result.pose.rotation == 0
    assert result.offset == Offset(*TRUE_OFFSET)
    assert len(calls) == 1


def test_scale_sweep_hits_identity_exactly(needle_edges, haystack_edges):
    warp_calls = []

    def warp(edges, rotation, scale, fill_value):
        warp_calls.append(scale)
        return imaging.warp_edge_mask(edges, rotation, scale, fill_value)

    search = _pose_search(needle_edges, haystack_edges, warp=warp)
    result = search.search_pose_space(4, NO_ROTATION, SweepRange(0.7, 1.3, 0.1))

    assert 1.0 not in warp_calls
    assert warp_calls == [0.7, 0.8, 0.9, 1.1, 1.2, 1.3]
    assert result.pose.scale == 1.0
    assert result.offset == Offset(*TRUE_OFFSET)
