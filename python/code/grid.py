"""
Grid views over dense 2D sample buffers.
Replicate-border addressing is kept as pure coordinate remapping so it can be
tested without any storage behind it.
"""
from __future__ import annotations

from typing import Any, Tuple

import numpy as np
from numba import cuda

# Targets a grid can live on
TARGET_CPU = "cpu"
TARGET_CUDA = "cuda"

_REAL_KINDS = ("i", "u", "f")
# numba has no float16 or extended-precision arithmetic
_FLOAT_DTYPES = (np.dtype(np.float32), np.dtype(np.float64))


def clamp_index(i: int, size: int) -> int:
    """
    Map an index onto [0, size - 1], replicating the nearest edge.
    """
    if i < 0:
        return 0
    if i >= size:
        return size - 1
    return i


def clamp_coordinates(x: int, y: int, width: int, height: int) -> Tuple[int, int]:
    """Clamp an (x, y) coordinate pair into a width x height grid."""
    return clamp_index(x, width), clamp_index(y, height)


class Grid:
    """
    Non-owning view over a 2D array laid out row-major as ``array[y, x]``.

    The array may be a host numpy array or a CUDA device array; the view
    never copies or allocates.
    """

    def __init__(self, array: Any):
        ndim = getattr(array, "ndim", None)
        if ndim != 2:
            raise ValueError(f"Grid requires a 2D array, got ndim={ndim}")
        dtype = np.dtype(array.dtype)
        if dtype.kind not in _REAL_KINDS:
            raise ValueError(f"Grid requires a real numeric dtype, got {dtype}")
        if dtype.kind == "f" and dtype.newbyteorder("=") not in _FLOAT_DTYPES:
            raise ValueError(f"Grid requires float32 or float64 floats, got {dtype}")
        if not dtype.isnative:
            raise ValueError(f"Grid requires native byte order, got {dtype.str}")
        self._array = array
        self._target = TARGET_CUDA if cuda.is_cuda_array(array) else TARGET_CPU

    @property
    def array(self) -> Any:
        return self._array

    @property
    def width(self) -> int:
        return int(self._array.shape[1])

    @property
    def height(self) -> int:
        return int(self._array.shape[0])

    @property
    def shape(self) -> Tuple[int, int]:
        """(height, width), matching the underlying array."""
        return self.height, self.width

    @property
    def dtype(self) -> np.dtype:
        return np.dtype(self._array.dtype)

    @property
    def target(self) -> str:
        return self._target

    @property
    def writeable(self) -> bool:
        """Device arrays are always writeable; host arrays follow their flags."""
        if self._target == TARGET_CUDA:
            return True
        return bool(self._array.flags.writeable)

    @property
    def is_empty(self) -> bool:
        return self.width == 0 or self.height == 0

    def in_bounds(self, x: int, y: int) -> bool:
        return 0 <= x < self.width and 0 <= y < self.height

    def __getitem__(self, xy: Tuple[int, int]):
        x, y = xy
        if not self.in_bounds(x, y):
            raise IndexError(
                f"({x}, {y}) out of bounds for {self.width}x{self.height} grid"
            )
        return self._array[y, x]

    def get_clamped(self, x: int, y: int):
        """Read with out-of-range coordinates resolved to the nearest edge sample."""
        if self.is_empty:
            raise IndexError("cannot read from an empty grid")
        cx, cy = clamp_coordinates(x, y, self.width, self.height)
        return self._array[cy, cx]

    def shares_memory(self, other: "Grid") -> bool:
        """
        True when both views may overlap in memory.
        Device arrays are compared by their base pointer range.
        """
        if self.target != other.target:
            return False
        if self.target == TARGET_CPU:
            return bool(np.may_share_memory(self._array, other._array))
        lo_a, hi_a = _device_extent(self._array)
        lo_b, hi_b = _device_extent(other._array)
        return lo_a < hi_b and lo_b < hi_a

    def __repr__(self) -> str:
        return f"Grid({self.width}x{self.height}, dtype={self.dtype}, target={self.target})"


def _device_extent(array: Any) -> Tuple[int, int]:
    iface = array.__cuda_array_interface__
    start = int(iface["data"][0])
    itemsize = np.dtype(array.dtype).itemsize
    strides = iface.get("strides") or (array.shape[1] * itemsize, itemsize)
    span = sum((n - 1) * abs(s) for n, s in zip(array.shape, strides)) + itemsize
    return start, start + span


def as_grid(obj: Any) -> Grid:
    """Wrap an array as a Grid; Grids pass through unchanged."""
    if isinstance(obj, Grid):
        return obj
    if not cuda.is_cuda_array(obj):
        obj = np.asarray(obj)
    return Grid(obj)
