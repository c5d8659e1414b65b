"""OpenCV-backed producers of the grids consumed by the matching engine."""

import logging
import pathlib
from typing import Union

import cv2
import numpy as np

from . import config
from .grids import ColorImage, DistanceField, EdgeMask

log = logging.getLogger(__name__)


class ImageLoadError(RuntimeError):
    """Raised when an input image is missing or cannot be decoded."""


def load_color_image(path: Union[str, pathlib.Path]) -> ColorImage:
    """Reads an image file as 8-bit BGR, converting grayscale inputs."""
    path = pathlib.Path(path)
    if not path.is_file():
        raise ImageLoadError(f"Image file not found: {path}")
    # cv2.imread returns None instead of raising on decode failure
    pixels = cv2.imread(str(path), cv2.IMREAD_COLOR)
    if pixels is None:
        raise ImageLoadError(f"Failed to decode image: {path}")
    log.debug(f"Loaded {path} ({pixels.shape[1]}x{pixels.shape[0]})")
    return ColorImage(pixels)


def to_gray(image: ColorImage) -> np.ndarray:
    return cv2.cvtColor(image.pixels, cv2.COLOR_BGR2GRAY)


def edge_mask_from_image(
    image: ColorImage,
    low_threshold: int = config.CANNY_LOW_THRESHOLD,
    high_threshold: int = config.CANNY_HIGH_THRESHOLD,
    smooth: bool = config.SMOOTH_BEFORE_CANNY,
) -> EdgeMask:
    """Smooths, then runs Canny; Canny's non-zero output marks edges."""
    gray = to_gray(image)
    if smooth:
        gray = cv2.GaussianBlur(gray, (3, 3), 0)
    edges = cv2.Canny(gray, low_threshold, high_threshold)
    return EdgeMask(edges > 0)


def build_distance_field(
    edge_mask: EdgeMask, metric: str = config.DISTANCE_METRIC
) -> DistanceField:
    """
    Distance from every cell to the nearest edge cell of `edge_mask`.

    Args:
        edge_mask: Source mask.
        metric: "l1" for city block distances, "l2" for precise euclidean.

    Returns:
        DistanceField with the mask's dimensions. A mask without edges has no
        defined distances and yields a field filled with
        `MAX_HAUSDORFF_DISTANCE`.
    """
    if metric not in config.DISTANCE_METRICS:
        raise ValueError(
            f"Unknown distance metric {metric!r}; expected one of {config.DISTANCE_METRICS}"
        )
    if edge_mask.edge_count == 0:
        log.debug("Edge mask is empty; distance field filled with sentinel")
        return DistanceField.filled(
            edge_mask.width, edge_mask.height, config.MAX_HAUSDORFF_DISTANCE
        )
    # distanceTransform measures the distance to the nearest zero pixel,
    # which is the edge polarity of the mask image
    src = edge_mask.to_polarity_image()
    if metric == "l1":
        # L1 ignores the mask size beyond 3x3
        values = cv2.distanceTransform(src, cv2.DIST_L1, 3)
    else:
        values = cv2.distanceTransform(src, cv2.DIST_L2, cv2.DIST_MASK_PRECISE)
    return DistanceField.from_edges(edge_mask, values)


def warp_edge_mask(
    edge_mask: EdgeMask,
    rotation: float,
    scale: float,
    fill_value: bool = False,
) -> EdgeMask:
    """
    Rotates (degrees, counter-clockwise) and scales `edge_mask` about its
    center, keeping its dimensions. Pixels introduced by the transform take
    `fill_value`. Returns a new mask; the input is left untouched.
    """
    if not scale > 0:
        raise ValueError(f"Warp scale must be positive, got {scale}")
    width, height = edge_mask.width, edge_mask.height
    center = (float(width // 2), float(height // 2))
    mx = cv2.getRotationMatrix2D(center, float(rotation), float(scale))
    warped = cv2.warpAffine(
        edge_mask.cells.astype("uint8"),
        mx,
        (width, height),
        flags=cv2.INTER_NEAREST,
        borderMode=cv2.BORDER_CONSTANT,
        borderValue=int(bool(fill_value)),
    )
    return EdgeMask(warped > 0)
