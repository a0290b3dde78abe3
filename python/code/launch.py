"""
Worker-grid geometry for data-parallel dispatch.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Tuple

DEFAULT_BLOCK_DIM = (16, 16)
MAX_WORKERS_PER_BLOCK = 1024


@dataclass(frozen=True)
class LaunchGeometry:
    block_dim: Tuple[int, int]  # workers per block (x, y)
    grid_dim: Tuple[int, int]  # blocks per grid (x, y)

    @property
    def covered_width(self) -> int:
        return self.block_dim[0] * self.grid_dim[0]

    @property
    def covered_height(self) -> int:
        return self.block_dim[1] * self.grid_dim[1]

    @property
    def total_workers(self) -> int:
        return self.covered_width * self.covered_height


def _blocks_needed(extent: int, block: int) -> int:
    return (extent + block - 1) // block


def compute_geometry(
    width: int,
    height: int,
    block_dim: Tuple[int, int] = DEFAULT_BLOCK_DIM,
) -> LaunchGeometry:
    """
    Size a worker grid that covers every element of a width x height buffer.

    The grid is rounded up to whole blocks, so workers past the right and
    bottom edges exist and must be treated as no-ops by the kernel.

    Parameters
    ----------
    width, height : int
        Buffer extent in elements
    block_dim : tuple
        Workers per block along (x, y) (default 16x16)

    Returns
    -------
    LaunchGeometry
        Block and grid dimensions
    """
    if width < 0 or height < 0:
        raise ValueError(f"Buffer extent must be non-negative, got {width}x{height}")
    bx, by = (int(v) for v in block_dim)
    if bx <= 0 or by <= 0:
        raise ValueError(f"block_dim must be positive, got {block_dim}")
    if bx * by > MAX_WORKERS_PER_BLOCK:
        raise ValueError(
            f"block_dim {block_dim} exceeds {MAX_WORKERS_PER_BLOCK} workers per block"
        )
    return LaunchGeometry(
        block_dim=(bx, by),
        grid_dim=(_blocks_needed(width, bx), _blocks_needed(height, by)),
    )
