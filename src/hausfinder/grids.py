"""Fixed-size 2D grids: edge masks, distance fields and colour images.

The three variants are deliberately separate classes. Conversions between
them are named functions in `hausfinder.imaging`, never implicit
constructors.
"""

import dataclasses
from functools import cached_property
from typing import Iterable, Tuple

import numpy as np

from . import config


def _read_only(array: np.ndarray, dtype) -> np.ndarray:
    out = np.array(array, dtype=dtype, copy=True)
    out.flags.writeable = False
    return out


class _Grid:
    """Bounds-checked access shared by all grid variants."""

    def _buffer(self) -> np.ndarray:
        raise NotImplementedError

    @property
    def height(self) -> int:
        return self._buffer().shape[0]

    @property
    def width(self) -> int:
        return self._buffer().shape[1]

    @property
    def shape(self) -> Tuple[int, int]:
        return self.height, self.width

    def contains(self, x: int, y: int) -> bool:
        return 0 <= x < self.width and 0 <= y < self.height

    def at(self, x: int, y: int):
        if not self.contains(x, y):
            raise IndexError(
                f"Grid coordinates ({x}, {y}) out of range for "
                f"{self.width}x{self.height} grid"
            )
        return self._buffer()[y, x]

    def row(self, y: int) -> np.ndarray:
        """Read-only view of row `y`."""
        if not 0 <= y < self.height:
            raise IndexError(f"Row {y} out of range for grid of height {self.height}")
        return self._buffer()[y]


@dataclasses.dataclass(frozen=True, eq=False)
class EdgeMask(_Grid):
    """Binary edge classification; `cells[y, x]` is True on edge cells."""

    cells: np.ndarray

    def __post_init__(self):
        if np.ndim(self.cells) != 2:
            raise ValueError(f"EdgeMask must be 2D, got shape {np.shape(self.cells)}")
        object.__setattr__(self, "cells", _read_only(self.cells, bool))

    def _buffer(self) -> np.ndarray:
        return self.cells

    @classmethod
    def from_polarity_image(cls, image: np.ndarray) -> "EdgeMask":
        """Builds a mask from a grey image where `EDGE_VALUE` pixels are edges."""
        return cls(np.asarray(image) == config.EDGE_VALUE)

    @classmethod
    def from_points(
        cls, width: int, height: int, points: Iterable[Tuple[int, int]]
    ) -> "EdgeMask":
        cells = np.zeros((height, width), dtype=bool)
        for x, y in points:
            cells[y, x] = True
        return cls(cells)

    @classmethod
    def blank(cls, width: int, height: int) -> "EdgeMask":
        return cls(np.zeros((height, width), dtype=bool))

    def to_polarity_image(self) -> np.ndarray:
        return np.where(
            self.cells, config.EDGE_VALUE, config.BACKGROUND_VALUE
        ).astype("uint8")

    @cached_property
    def edge_coords(self) -> Tuple[np.ndarray, np.ndarray]:
        """`(xs, ys)` of all edge cells in row-major order."""
        ys, xs = np.nonzero(self.cells)
        return xs.astype("int64"), ys.astype("int64")

    @property
    def edge_count(self) -> int:
        return int(self.edge_coords[0].size)


@dataclasses.dataclass(frozen=True, eq=False)
class DistanceField(_Grid):
    """Per-cell distance to the nearest edge cell of a source EdgeMask."""

    values: np.ndarray

    def __post_init__(self):
        if np.ndim(self.values) != 2:
            raise ValueError(
                f"DistanceField must be 2D, got shape {np.shape(self.values)}"
            )
        values = _read_only(self.values, "float32")
        if values.size and values.min() < 0:
            raise ValueError("DistanceField values must be non-negative")
        object.__setattr__(self, "values", values)

    def _buffer(self) -> np.ndarray:
        return self.values

    @classmethod
    def from_edges(cls, edge_mask: EdgeMask, values: np.ndarray) -> "DistanceField":
        """Pairs `values` with the mask they were derived from."""
        if np.shape(values) != edge_mask.shape:
            raise ValueError(
                f"DistanceField shape {np.shape(values)} does not match "
                f"EdgeMask shape {edge_mask.shape}"
            )
        return cls(values)

    @classmethod
    def filled(cls, width: int, height: int, value: float) -> "DistanceField":
        return cls(np.full((height, width), value, dtype="float32"))


@dataclasses.dataclass(frozen=True, eq=False)
class ColorImage(_Grid):
    """8-bit BGR image as produced by OpenCV."""

    pixels: np.ndarray

    def __post_init__(self):
        pixels = np.asarray(self.pixels)
        if pixels.ndim == 2:
            pixels = np.repeat(pixels[..., np.newaxis], 3, axis=2)
        if pixels.ndim != 3 or pixels.shape[2] != 3:
            raise ValueError(f"ColorImage must be HxWx3, got shape {pixels.shape}")
        object.__setattr__(self, "pixels", _read_only(pixels, "uint8"))

    def _buffer(self) -> np.ndarray:
        return self.pixels
