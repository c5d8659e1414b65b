"""Coarse-to-fine search over integer translations of the needle."""

import dataclasses
import logging
from typing import Callable, Iterator, Optional

from ..grids import DistanceField, EdgeMask
from ..models import Offset, Pose, SearchBounds, SearchResult
from .hausdorff import combined_distance

log = logging.getLogger(__name__)


class TranslationSearch:
    """Finds the offset of the needle minimising the combined distance."""

    def __init__(
        self,
        needle_edges: EdgeMask,
        needle_field: DistanceField,
        haystack_edges: EdgeMask,
        haystack_field: DistanceField,
    ):
        self.needle_edges = needle_edges
        self.needle_field = needle_field
        self.haystack_edges = haystack_edges
        self.haystack_field = haystack_field

    def default_bounds(self) -> SearchBounds:
        return SearchBounds(
            0,
            0,
            self.haystack_field.width - self.needle_edges.width,
            self.haystack_field.height - self.needle_edges.height,
        )

    def evaluate(self, offset: Offset) -> float:
        return combined_distance(
            self.needle_edges,
            self.needle_field,
            self.haystack_edges,
            self.haystack_field,
            offset,
        )

    def search_grid(
        self, step: int, bounds: Optional[SearchBounds] = None
    ) -> SearchResult:
        """
        Scans `bounds` (default bounds when omitted) every `step` pixels.

        The first offset reaching the smallest score wins. Empty bounds or a
        non-positive step give `SearchResult.empty()`.
        """
        if step <= 0:
            log.debug(f"Non-positive translation step {step}; nothing to scan")
            return SearchResult.empty()
        if bounds is None:
            bounds = self.default_bounds()

        best = SearchResult.empty()
        for offset in bounds.offsets(step):
            score = self.evaluate(offset)
            if best.pose is None or score < best.score:
                best = SearchResult(pose=Pose(offset), score=score)
        return best

    def iter_passes(self, initial_step: int) -> Iterator[SearchResult]:
        """
        Yields the running best after every pass of the coarse-to-fine search.

        Each pass halves the step. When a pass improves on the running best,
        the next pass is restricted to `[best - step, best + step)` around it,
        clamped to the default bounds.
        """
        absolute = self.default_bounds()
        if initial_step <= 0 or absolute.is_empty:
            return

        best = SearchResult.empty()
        bounds = absolute
        step = initial_step
        while step > 0:
            result = self.search_grid(step, bounds)
            if result.improves_on(best):
                best = result
                bounds = SearchBounds.around(best.offset, step).clamp(absolute)
            log.debug(
                f"Translation pass step={step}: best {best.offset} score {best.score:.3f}"
            )
            yield best
            step //= 2

    def search_hierarchical(
        self, initial_step: int, cancel: Optional[Callable[[], bool]] = None
    ) -> SearchResult:
        """
        Runs all passes, stopping early when `cancel()` returns True.

        `cancel` is only consulted while another pass remains, so a search
        that ran every pass is never reported as cancelled.
        """
        # halving down to a step of 1 takes bit_length() passes
        n_passes = initial_step.bit_length() if initial_step > 0 else 0
        best = SearchResult.empty()
        for ii, best in enumerate(self.iter_passes(initial_step), start=1):
            if ii < n_passes and cancel is not None and cancel():
                log.info("Translation search cancelled")
                return dataclasses.replace(best, cancelled=True)
        return best
