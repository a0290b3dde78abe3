"""
Numba kernels for the bilateral filter.

One logical worker per output element. Each worker reads the whole input
(replicate-border addressing) and writes exactly one output element, so no
worker ever synchronizes with another. The per-pixel math is written once
and compiled both for the host and as CUDA device functions.
"""
from __future__ import annotations

import math
from typing import Sequence

import numpy as np
from numba import cuda, njit, prange

from grid import TARGET_CUDA, Grid, clamp_index
from launch import LaunchGeometry

VARIANT_BILATERAL = "bilateral"
VARIANT_LIMITED = "limited"


def _compile_pixel_functions(jit):
    """
    Build (bilateral_pixel, bilateral_limited_pixel) with the given jit decorator.

    Accumulation is float64 regardless of the element type; narrowing happens
    on the caller's store. 0/0 must come out as NaN, so the decorator has to
    use numpy's error model.
    """
    clamp = jit(clamp_index)

    def bilateral_pixel(img, x, y, gs, gr, dim):
        height, width = img.shape
        p = float(img[y, x])
        spatial_denom = 2.0 * gs * gs
        range_denom = 2.0 * gr * gr
        total = 0.0
        weights = 0.0
        for r in range(-dim, dim + 1):
            row = clamp(y + r, height)
            for c in range(-dim, dim + 1):
                q = float(img[row, clamp(x + c, width)])
                d = p - q
                w = math.exp(-(r * r + c * c) / spatial_denom) * math.exp(-(d * d) / range_denom)
                weights += w
                total += w * q
        return total / weights

    def bilateral_limited_pixel(img, x, y, gs, gr, minval, dim):
        height, width = img.shape
        p = float(img[y, x])
        spatial_denom = 2.0 * gs * gs
        range_denom = 2.0 * gr * gr
        total = 0.0
        weights = 0.0
        if p >= minval:
            for r in range(-dim, dim + 1):
                row = clamp(y + r, height)
                for c in range(-dim, dim + 1):
                    q = float(img[row, clamp(x + c, width)])
                    if q >= minval:
                        d = p - q
                        w = math.exp(-(r * r + c * c) / spatial_denom) * math.exp(-(d * d) / range_denom)
                        weights += w
                        total += w * q
        # center below minval (or no qualifying neighbor) leaves 0/0 -> NaN
        return total / weights

    return jit(bilateral_pixel), jit(bilateral_limited_pixel)


bilateral_pixel, bilateral_limited_pixel = _compile_pixel_functions(njit(error_model="numpy"))
_device_pixel, _device_limited_pixel = _compile_pixel_functions(cuda.jit(device=True))


# =============================================================================
# Host kernels (worker grid emulated with prange)
# =============================================================================

@njit(parallel=True, error_model="numpy")
def bilateral_cpu(img_in, img_out, gs, gr, dim, block_x, block_y, grid_x, grid_y):
    height, width = img_in.shape
    span_x = block_x * grid_x
    total = span_x * block_y * grid_y
    for i in prange(total):
        worker = np.int64(i)
        x = worker % span_x
        y = worker // span_x
        if x < width and y < height:
            img_out[y, x] = bilateral_pixel(img_in, x, y, gs, gr, dim)


@njit(parallel=True, error_model="numpy")
def bilateral_limited_cpu(img_in, img_out, gs, gr, minval, dim, block_x, block_y, grid_x, grid_y):
    height, width = img_in.shape
    span_x = block_x * grid_x
    total = span_x * block_y * grid_y
    for i in prange(total):
        worker = np.int64(i)
        x = worker % span_x
        y = worker // span_x
        if x < width and y < height:
            img_out[y, x] = bilateral_limited_pixel(img_in, x, y, gs, gr, minval, dim)


# =============================================================================
# CUDA kernels
# =============================================================================

@cuda.jit
def bilateral_cuda(img_in, img_out, gs, gr, dim):
    x, y = cuda.grid(2)
    height, width = img_in.shape
    if x < width and y < height:
        img_out[y, x] = _device_pixel(img_in, x, y, gs, gr, dim)


@cuda.jit
def bilateral_limited_cuda(img_in, img_out, gs, gr, minval, dim):
    x, y = cuda.grid(2)
    height, width = img_in.shape
    if x < width and y < height:
        img_out[y, x] = _device_limited_pixel(img_in, x, y, gs, gr, minval, dim)


_CPU_KERNELS = {
    VARIANT_BILATERAL: bilateral_cpu,
    VARIANT_LIMITED: bilateral_limited_cpu,
}

_CUDA_KERNELS = {
    VARIANT_BILATERAL: bilateral_cuda,
    VARIANT_LIMITED: bilateral_limited_cuda,
}


def launch(
    variant: str,
    src: Grid,
    dst: Grid,
    geometry: LaunchGeometry,
    params: Sequence,
) -> None:
    """
    Dispatch one kernel variant over ``geometry`` and block until it finishes.

    ``params`` is ``(gs, gr, dim)`` for the plain variant and
    ``(gs, gr, minval, dim)`` for the limited one. Driver and compiler
    exceptions are left to the caller.
    """
    if variant not in _CPU_KERNELS:
        raise KeyError(f"Unknown kernel variant: {variant}")

    if src.target == TARGET_CUDA:
        kernel = _CUDA_KERNELS[variant]
        kernel[geometry.grid_dim, geometry.block_dim](src.array, dst.array, *params)
        cuda.synchronize()
    else:
        kernel = _CPU_KERNELS[variant]
        kernel(src.array, dst.array, *params, *geometry.block_dim, *geometry.grid_dim)
