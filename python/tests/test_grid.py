"""Tests for grid views and replicate-border addressing."""
import sys
from pathlib import Path

import numpy as np
import pytest

PROJECT_ROOT = Path(__file__).resolve().parents[1]
sys.path.append(str(PROJECT_ROOT / "code"))
import grid  # noqa: E402


# =============================================================================
# Coordinate Clamp Tests
# =============================================================================

@pytest.mark.parametrize(
    "i, size, expected",
    [(-5, 4, 0), (-1, 4, 0), (0, 4, 0), (2, 4, 2), (3, 4, 3), (4, 4, 3), (100, 4, 3), (0, 1, 0), (-1, 1, 0), (1, 1, 0)],
)
def test_clamp_index(i, size, expected):
    assert grid.clamp_index(i, size) == expected


def test_clamp_coordinates_clamps_each_axis_independently():
    assert grid.clamp_coordinates(-3, 10, 5, 4) == (0, 3)
    assert grid.clamp_coordinates(7, -1, 5, 4) == (4, 0)
    assert grid.clamp_coordinates(2, 1, 5, 4) == (2, 1)


# =============================================================================
# Grid View Tests
# =============================================================================

def test_grid_dimensions_follow_row_major_layout():
    """array[y, x]: shape (height, width)."""
    g = grid.Grid(np.zeros((3, 5)))
    assert g.width == 5
    assert g.height == 3
    assert g.shape == (3, 5)
    assert g.target == grid.TARGET_CPU


def test_grid_is_a_view_not_a_copy():
    data = np.zeros((2, 2))
    g = grid.Grid(data)
    data[1, 0] = 4.0
    assert g[0, 1] == 4.0
    assert g.array is data


def test_grid_indexing_is_bounds_checked():
    g = grid.Grid(np.arange(6.0).reshape(2, 3))
    assert g[2, 1] == 5.0
    with pytest.raises(IndexError):
        g[3, 0]
    with pytest.raises(IndexError):
        g[-1, 0]
    with pytest.raises(IndexError):
        g[0, 2]


def test_get_clamped_replicates_edges():
    data = np.arange(12.0).reshape(3, 4)  # data[y, x] = 4*y + x
    g = grid.Grid(data)
    assert g.get_clamped(-2, -2) == data[0, 0]
    assert g.get_clamped(10, 1) == data[1, 3]
    assert g.get_clamped(1, 10) == data[2, 1]
    assert g.get_clamped(2, 1) == data[1, 2]


def test_get_clamped_on_empty_grid_raises():
    g = grid.Grid(np.zeros((0, 3)))
    assert g.is_empty
    with pytest.raises(IndexError):
        g.get_clamped(0, 0)


def test_in_bounds():
    g = grid.Grid(np.zeros((2, 3)))
    assert g.in_bounds(0, 0)
    assert g.in_bounds(2, 1)
    assert not g.in_bounds(3, 1)
    assert not g.in_bounds(0, 2)
    assert not g.in_bounds(-1, 0)


def test_shares_memory_detects_views():
    data = np.zeros((4, 4))
    a = grid.Grid(data)
    assert a.shares_memory(grid.Grid(data[1:, 1:]))
    assert not a.shares_memory(grid.Grid(np.zeros((4, 4))))


@pytest.mark.parametrize(
    "array",
    [
        np.zeros(5),
        np.zeros((2, 2, 2)),
        np.zeros((2, 2), dtype=bool),
        np.zeros((2, 2), dtype=complex),
        np.zeros((2, 2), dtype=np.float16),
        np.zeros((2, 2), dtype=">f8" if sys.byteorder == "little" else "<f8"),
        np.zeros((2, 2), dtype=">i4" if sys.byteorder == "little" else "<i4"),
    ],
)
def test_grid_rejects_unsupported_arrays(array):
    with pytest.raises(ValueError):
        grid.Grid(array)


@pytest.mark.parametrize("dtype", [np.uint8, np.int16, np.int32, np.uint64, np.float32, np.float64])
def test_grid_accepts_kernel_dtypes(dtype):
    assert grid.Grid(np.zeros((2, 3), dtype=dtype)).dtype == np.dtype(dtype)


def test_grid_writeable_follows_host_flags():
    data = np.zeros((2, 2))
    assert grid.Grid(data).writeable
    data.setflags(write=False)
    assert not grid.Grid(data).writeable


def test_as_grid_wraps_arrays_and_passes_grids_through():
    g = grid.as_grid([[1, 2], [3, 4]])
    assert isinstance(g, grid.Grid)
    assert g.width == 2
    assert grid.as_grid(g) is g
