"""Core data structures for the hausfinder application."""

import dataclasses
import math
from typing import Iterator, Optional, Tuple

from . import config

SWEEP_DECIMALS = 9


@dataclasses.dataclass(frozen=True)
class Offset:
    """Integer translation of the needle frame inside the haystack frame."""

    dx: int
    dy: int

    def __neg__(self) -> "Offset":
        return Offset(-self.dx, -self.dy)

    def __iter__(self):
        return iter((self.dx, self.dy))


@dataclasses.dataclass(frozen=True)
class Pose:
    """A candidate placement of the needle: translation, rotation and scale."""

    offset: Offset
    rotation: float = 0.0  # degrees, counter-clockwise
    scale: float = 1.0

    def __post_init__(self):
        if not self.scale > 0:
            raise ValueError(f"Pose scale must be positive, got {self.scale}")

    @property
    def is_identity_warp(self) -> bool:
        return self.rotation == 0 and self.scale == 1


@dataclasses.dataclass(frozen=True)
class SearchBounds:
    """Half-open rectangle of offsets, `[min_x, max_x) x [min_y, max_y)`."""

    min_x: int
    min_y: int
    max_x: int
    max_y: int

    @property
    def is_empty(self) -> bool:
        return self.max_x <= self.min_x or self.max_y <= self.min_y

    @classmethod
    def around(cls, offset: Offset, radius: int) -> "SearchBounds":
        return cls(
            offset.dx - radius,
            offset.dy - radius,
            offset.dx + radius,
            offset.dy + radius,
        )

    def clamp(self, outer: "SearchBounds") -> "SearchBounds":
        return SearchBounds(
            max(self.min_x, outer.min_x),
            max(self.min_y, outer.min_y),
            min(self.max_x, outer.max_x),
            min(self.max_y, outer.max_y),
        )

    def offsets(self, step: int) -> Iterator[Offset]:
        """Row-major scan: y is the outer loop."""
        for y in range(self.min_y, self.max_y, step):
            for x in range(self.min_x, self.max_x, step):
                yield Offset(x, y)


@dataclasses.dataclass(frozen=True)
class SweepRange:
    """Inclusive `[minimum, maximum]` range walked in `step` increments."""

    minimum: float
    maximum: float
    step: float

    @property
    def count(self) -> int:
        if self.maximum == self.minimum:
            return 1
        if self.maximum < self.minimum or not self.step > 0:
            return 0
        # small epsilon absorbs representation error, e.g. (2.0 - 0.5) / 0.1
        return int(math.floor((self.maximum - self.minimum) / self.step + 1e-9)) + 1

    def values(self) -> Tuple[float, ...]:
        # rounding drops float noise such as 0.7 + 0.1 == 0.7999999999999999
        return tuple(
            round(self.minimum + ii * self.step, SWEEP_DECIMALS)
            for ii in range(self.count)
        )


# Named views for readability at call sites
RotationRange = SweepRange
ScaleRange = SweepRange


@dataclasses.dataclass(frozen=True)
class SearchResult:
    """Best pose of a search and its combined Hausdorff distance."""

    pose: Optional[Pose] = None
    score: float = config.MAX_HAUSDORFF_DISTANCE
    cancelled: bool = False

    @classmethod
    def empty(cls, cancelled: bool = False) -> "SearchResult":
        return cls(pose=None, score=config.MAX_HAUSDORFF_DISTANCE, cancelled=cancelled)

    @property
    def found(self) -> bool:
        """False for no pose, and for a pose scored with the no-overlap sentinel."""
        return self.pose is not None and self.score < config.MAX_HAUSDORFF_DISTANCE

    @property
    def offset(self) -> Optional[Offset]:
        return self.pose.offset if self.pose is not None else None

    def improves_on(self, other: "SearchResult") -> bool:
        """Strictly better than `other`; an empty `other` is beaten by any result."""
        if self.pose is None:
            return False
        return other.pose is None or self.score < other.score


@dataclasses.dataclass
class MatchTask:
    """Parameters for a single needle/haystack search."""

    needle_path: str
    haystack_path: str
    initial_step: int = config.INITIAL_TRANSLATION_STEP
    min_rotation: float = config.MIN_ROTATION
    max_rotation: float = config.MAX_ROTATION
    rotation_step: float = config.ROTATION_STEP
    min_scale: float = config.MIN_SCALE
    max_scale: float = config.MAX_SCALE
    scale_step: float = config.SCALE_STEP
    canny_low: int = config.CANNY_LOW_THRESHOLD
    canny_high: int = config.CANNY_HIGH_THRESHOLD
    distance_metric: str = config.DISTANCE_METRIC
    workers: int = 1
    timeout: Optional[float] = None
    qc_out_dir: Optional[str] = config.QC_OUT_DIR
    row_num: Optional[int] = None  # For batch mode context

    @property
    def rotation_range(self) -> SweepRange:
        return SweepRange(self.min_rotation, self.max_rotation, self.rotation_step)

    @property
    def scale_range(self) -> SweepRange:
        return SweepRange(self.min_scale, self.max_scale, self.scale_step)


@dataclasses.dataclass
class MatchReport:
    """Outcome of a single MatchTask."""

    needle_path: str
    haystack_path: str
    success: bool
    message: str
    result: Optional[SearchResult] = None
    duration: Optional[float] = None
    qc_plot_path: Optional[str] = None
    row_num: Optional[int] = None
