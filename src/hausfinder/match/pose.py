"""Sweep over needle rotation and scale, each candidate solved for translation."""

import dataclasses
import functools
import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Iterable, List, Optional, Tuple

import tqdm

from .. import config, imaging
from ..grids import DistanceField, EdgeMask
from ..models import SearchResult, SweepRange
from .translation import TranslationSearch

log = logging.getLogger(__name__)

WarpFunc = Callable[[EdgeMask, float, float, bool], EdgeMask]
DistanceFunc = Callable[[EdgeMask], DistanceField]


def make_stop_check(
    cancel: Optional[threading.Event] = None, deadline: Optional[float] = None
) -> Callable[[], bool]:
    """Combines a cancel event and a `time.monotonic()` deadline."""

    def should_stop() -> bool:
        if cancel is not None and cancel.is_set():
            return True
        return deadline is not None and time.monotonic() >= deadline

    return should_stop


class PoseSearch:
    """
    Finds the rotation, scale and translation of the needle with the smallest
    combined Hausdorff distance to the haystack.

    The needle mask handed in is never modified. Every non-identity candidate
    gets its own warped mask and a distance field recomputed from it, so the
    forward and reverse distances always describe the same candidate shape.
    """

    def __init__(
        self,
        needle_edges: EdgeMask,
        needle_field: DistanceField,
        haystack_edges: EdgeMask,
        haystack_field: DistanceField,
        warp: WarpFunc = imaging.warp_edge_mask,
        distance: Optional[DistanceFunc] = None,
        distance_metric: str = config.DISTANCE_METRIC,
    ):
        self.needle_edges = needle_edges
        self.needle_field = needle_field
        self.haystack_edges = haystack_edges
        self.haystack_field = haystack_field
        self.warp = warp
        if distance is None:
            distance = functools.partial(
                imaging.build_distance_field, metric=distance_metric
            )
        self.distance = distance

    @staticmethod
    def candidates(
        rotation_range: SweepRange, scale_range: SweepRange
    ) -> List[Tuple[float, float]]:
        """`(rotation, scale)` pairs in sweep order, rotation outermost."""
        return [
            (rotation, scale)
            for rotation in rotation_range.values()
            for scale in scale_range.values()
        ]

    def needle_for(self, rotation: float, scale: float) -> Tuple[EdgeMask, DistanceField]:
        if rotation == 0 and scale == 1:
            return self.needle_edges, self.needle_field
        warped = self.warp(self.needle_edges, rotation, scale, False)
        return warped, self.distance(warped)

    def search_candidate(
        self,
        rotation: float,
        scale: float,
        initial_step: int,
        cancel: Optional[Callable[[], bool]] = None,
    ) -> SearchResult:
        needle_edges, needle_field = self.needle_for(rotation, scale)
        translation = TranslationSearch(
            needle_edges, needle_field, self.haystack_edges, self.haystack_field
        )
        result = translation.search_hierarchical(initial_step, cancel=cancel)
        log.debug(
            f"Candidate rotation={rotation:g} scale={scale:g}: "
            f"offset {result.offset} score {result.score:.3f}"
        )
        if result.pose is None:
            return result
        pose = dataclasses.replace(result.pose, rotation=rotation, scale=scale)
        return dataclasses.replace(result, pose=pose)

    def search_pose_space(
        self,
        initial_step: int,
        rotation_range: SweepRange,
        scale_range: SweepRange,
        cancel: Optional[threading.Event] = None,
        deadline: Optional[float] = None,
        max_workers: int = 1,
        progress: bool = False,
    ) -> SearchResult:
        """
        Sweeps every `(rotation, scale)` candidate and returns the best pose.

        Args:
            initial_step: First translation step of each hierarchical search.
            rotation_range: Inclusive rotation range in degrees.
            scale_range: Inclusive scale range; every value must be positive.
            cancel: Event checked between passes and between candidates.
            deadline: `time.monotonic()` value after which the sweep stops.
            max_workers: Candidates evaluated concurrently when above 1.
            progress: Show a tqdm progress bar over candidates.

        Returns:
            The strictly best result in sweep order. A stopped sweep returns the
            best result seen so far with `cancelled=True`.
        """
        candidates = self.candidates(rotation_range, scale_range)
        if not candidates:
            log.warning(
                f"Empty pose sweep: rotation {rotation_range}, scale {scale_range}"
            )
            return SearchResult.empty()
        if any(not scale > 0 for _, scale in candidates):
            log.warning(f"Scale range {scale_range} contains non-positive scales")
            return SearchResult.empty()

        should_stop = make_stop_check(cancel, deadline)
        log.info(f"Searching {len(candidates)} pose candidate(s)")

        if max_workers > 1:
            results = self._run_parallel(candidates, initial_step, should_stop, max_workers)
        else:
            results = self._run_serial(candidates, initial_step, should_stop)
        results = tqdm.tqdm(
            results, total=len(candidates), desc="Pose candidates", disable=not progress
        )

        best = SearchResult.empty()
        cancelled = False
        for result in results:
            cancelled = cancelled or result.cancelled
            if result.improves_on(best):
                best = result
        if cancelled:
            log.info("Pose search stopped before completing the sweep")
        return dataclasses.replace(best, cancelled=cancelled)

    def _run_serial(
        self,
        candidates: List[Tuple[float, float]],
        initial_step: int,
        should_stop: Callable[[], bool],
    ) -> Iterable[SearchResult]:
        for rotation, scale in candidates:
            if should_stop():
                yield SearchResult.empty(cancelled=True)
                return
            result = self.search_candidate(rotation, scale, initial_step, should_stop)
            yield result
            if result.cancelled:
                return

    def _run_parallel(
        self,
        candidates: List[Tuple[float, float]],
        initial_step: int,
        should_stop: Callable[[], bool],
        max_workers: int,
    ) -> Iterable[SearchResult]:
        def run(candidate):
            if should_stop():
                return SearchResult.empty(cancelled=True)
            rotation, scale = candidate
            return self.search_candidate(rotation, scale, initial_step, should_stop)

        # map() yields in submission order, which keeps sweep-order tie-breaking
        with ThreadPoolExecutor(max_workers=max_workers) as executor:
            yield from executor.map(run, candidates)
