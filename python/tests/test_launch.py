import sys
from pathlib import Path

import pytest

PROJECT_ROOT = Path(__file__).resolve().parents[1]
sys.path.append(str(PROJECT_ROOT / "code"))
import launch  # noqa: E402


@pytest.mark.parametrize("width, height", [(1, 1), (16, 16), (17, 5), (640, 480), (1000, 3)])
def test_geometry_covers_every_element(width, height) -> None:
    geom = launch.compute_geometry(width, height)
    assert geom.covered_width >= width
    assert geom.covered_height >= height
    # No whole block lies past the edge
    assert geom.covered_width - width < geom.block_dim[0]
    assert geom.covered_height - height < geom.block_dim[1]


def test_geometry_rounds_up_to_whole_blocks() -> None:
    geom = launch.compute_geometry(17, 5, block_dim=(8, 4))
    assert geom.block_dim == (8, 4)
    assert geom.grid_dim == (3, 2)
    assert geom.total_workers == 24 * 8


def test_geometry_exact_multiple_has_no_spare_blocks() -> None:
    geom = launch.compute_geometry(32, 48)
    assert geom.grid_dim == (2, 3)


def test_geometry_empty_buffer() -> None:
    geom = launch.compute_geometry(0, 10)
    assert geom.grid_dim[0] == 0
    assert geom.total_workers == 0


@pytest.mark.parametrize("block_dim", [(0, 16), (16, -1), (64, 32)])
def test_geometry_rejects_bad_blocks(block_dim) -> None:
    with pytest.raises(ValueError):
        launch.compute_geometry(10, 10, block_dim=block_dim)


def test_geometry_rejects_negative_extent() -> None:
    with pytest.raises(ValueError):
        launch.compute_geometry(-1, 10)
