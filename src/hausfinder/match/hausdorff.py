"""Directed and combined Hausdorff distances between an edge set and a field."""

import numpy as np

from .. import config
from ..grids import DistanceField, EdgeMask
from ..models import Offset


def directed_distance(
    edge_mask: EdgeMask, distance_field: DistanceField, offset: Offset
) -> float:
    """
    Worst distance from any edge cell of `edge_mask`, shifted by `offset`, to
    the nearest edge behind `distance_field`.

    Edge cells landing outside `[0, width) x [0, height)` of the field are
    skipped. When no edge cell lands inside the field (or the mask has no
    edges) the result is `MAX_HAUSDORFF_DISTANCE`.
    """
    xs, ys = edge_mask.edge_coords
    if xs.size == 0:
        return config.MAX_HAUSDORFF_DISTANCE

    tx = xs + offset.dx
    ty = ys + offset.dy
    inside = (
        (tx >= 0)
        & (tx < distance_field.width)
        & (ty >= 0)
        & (ty < distance_field.height)
    )
    if not np.any(inside):
        return config.MAX_HAUSDORFF_DISTANCE
    return float(distance_field.values[ty[inside], tx[inside]].max())


def combined_distance(
    needle_edges: EdgeMask,
    needle_field: DistanceField,
    haystack_edges: EdgeMask,
    haystack_field: DistanceField,
    offset: Offset,
) -> float:
    """Symmetric distance: needle against haystack and haystack against needle."""
    forward = directed_distance(needle_edges, haystack_field, offset)
    reverse = directed_distance(haystack_edges, needle_field, -offset)
    return max(forward, reverse)
