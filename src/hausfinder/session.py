"""Explicit matching context shared by the CLI and the QC renderer."""

import dataclasses
import logging
import threading
import time
from typing import Optional

from . import config, imaging
from .grids import ColorImage, DistanceField, EdgeMask
from .match import PoseSearch, TranslationSearch
from .models import MatchTask, Offset, Pose, SearchResult

log = logging.getLogger(__name__)


@dataclasses.dataclass(frozen=True, eq=False)
class MatchSession:
    """Needle and haystack grids, built once and shared read-only."""

    needle_edges: EdgeMask
    needle_field: DistanceField
    haystack_edges: EdgeMask
    haystack_field: DistanceField
    needle_image: Optional[ColorImage] = None
    haystack_image: Optional[ColorImage] = None
    distance_metric: str = config.DISTANCE_METRIC

    @classmethod
    def from_edges(
        cls,
        needle_edges: EdgeMask,
        haystack_edges: EdgeMask,
        distance_metric: str = config.DISTANCE_METRIC,
        **kwargs,
    ) -> "MatchSession":
        return cls(
            needle_edges=needle_edges,
            needle_field=imaging.build_distance_field(needle_edges, distance_metric),
            haystack_edges=haystack_edges,
            haystack_field=imaging.build_distance_field(
                haystack_edges, distance_metric
            ),
            distance_metric=distance_metric,
            **kwargs,
        )

    @classmethod
    def from_images(
        cls,
        needle_image: ColorImage,
        haystack_image: ColorImage,
        canny_low: int = config.CANNY_LOW_THRESHOLD,
        canny_high: int = config.CANNY_HIGH_THRESHOLD,
        distance_metric: str = config.DISTANCE_METRIC,
    ) -> "MatchSession":
        needle_edges = imaging.edge_mask_from_image(needle_image, canny_low, canny_high)
        haystack_edges = imaging.edge_mask_from_image(
            haystack_image, canny_low, canny_high
        )
        log.info(
            f"Needle {needle_edges.width}x{needle_edges.height} "
            f"({needle_edges.edge_count} edge px), haystack "
            f"{haystack_edges.width}x{haystack_edges.height} "
            f"({haystack_edges.edge_count} edge px)"
        )
        return cls.from_edges(
            needle_edges,
            haystack_edges,
            distance_metric=distance_metric,
            needle_image=needle_image,
            haystack_image=haystack_image,
        )

    @classmethod
    def from_task(cls, task: MatchTask) -> "MatchSession":
        """Loads both images of `task`; raises ImageLoadError on failure."""
        log.info(f"Opening {task.haystack_path}")
        haystack_image = imaging.load_color_image(task.haystack_path)
        log.info(f"Opening {task.needle_path}")
        needle_image = imaging.load_color_image(task.needle_path)
        return cls.from_images(
            needle_image,
            haystack_image,
            canny_low=task.canny_low,
            canny_high=task.canny_high,
            distance_metric=task.distance_metric,
        )

    def translation_search(self) -> TranslationSearch:
        return TranslationSearch(
            self.needle_edges, self.needle_field, self.haystack_edges, self.haystack_field
        )

    def pose_search(self) -> PoseSearch:
        return PoseSearch(
            self.needle_edges,
            self.needle_field,
            self.haystack_edges,
            self.haystack_field,
            distance_metric=self.distance_metric,
        )

    def evaluate(self, offset: Offset) -> SearchResult:
        """Combined distance of the unwarped needle placed at `offset`."""
        score = self.translation_search().evaluate(offset)
        return SearchResult(pose=Pose(offset), score=score)

    def find(
        self,
        task: MatchTask,
        cancel: Optional[threading.Event] = None,
        progress: bool = False,
    ) -> SearchResult:
        deadline = None
        if task.timeout is not None:
            deadline = time.monotonic() + task.timeout
        start = time.perf_counter()
        result = self.pose_search().search_pose_space(
            task.initial_step,
            task.rotation_range,
            task.scale_range,
            cancel=cancel,
            deadline=deadline,
            max_workers=task.workers,
            progress=progress,
        )
        log.info(
            f"Search took {time.perf_counter() - start:.2f} secs: "
            f"{result.pose} score {result.score:.2f}"
        )
        return result

    def needle_edges_for(self, pose: Pose) -> EdgeMask:
        """The needle mask as placed by `pose`, for rendering."""
        if pose.is_identity_warp:
            return self.needle_edges
        return imaging.warp_edge_mask(self.needle_edges, pose.rotation, pose.scale)
