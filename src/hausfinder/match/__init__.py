"""Hausdorff matching engine: metric, translation search and pose search."""

from .hausdorff import combined_distance, directed_distance
from .pose import PoseSearch
from .translation import TranslationSearch

__all__ = [
    "PoseSearch",
    "TranslationSearch",
    "combined_distance",
    "directed_distance",
]
