"""
Host orchestration for the bilateral filter.

Each call validates the in/out pair, sizes a worker grid, dispatches the
kernel and blocks until every worker has finished. Calls are stateless and
one-shot: nothing is retried and nothing is kept between calls.
"""
from __future__ import annotations

import logging
import math
from enum import Enum
from typing import Any, Optional, Tuple

import numpy as np
from numba.core.errors import NumbaError
from numba.cuda.cudadrv.driver import CudaAPIError
from numba.cuda.cudadrv.error import CudaDriverError, CudaSupportError, NvvmError

import kernels
from grid import Grid, as_grid
from launch import DEFAULT_BLOCK_DIM, compute_geometry

logger = logging.getLogger(__name__)

# Exceptions raised by numba or the CUDA driver during launch or the wait
DEVICE_EXCEPTIONS = (NumbaError, NvvmError, CudaAPIError, CudaDriverError, CudaSupportError)


# =============================================================================
# Custom Exceptions
# =============================================================================

class DeviceStatus(Enum):
    SUCCESS = "success"
    LAUNCH_REJECTED = "launch_rejected"
    EXECUTION_FAULT = "execution_fault"
    DEVICE_UNAVAILABLE = "device_unavailable"


class BilateralError(Exception):
    """Base exception for bilateral filter errors."""
    pass


class ValidationError(BilateralError, ValueError):
    """Raised before any dispatch when the in/out pair or parameters are invalid."""
    pass


class ExecutionError(BilateralError, RuntimeError):
    """Raised when the parallel computation fails; output contents are unspecified."""
    def __init__(self, status: DeviceStatus, message: str, code: Optional[int] = None):
        self.status = status
        self.code = code
        self.message = message
        msg = f"{message} [{status.value}"
        if code is not None:
            msg += f", code {code}"
        msg += "]"
        super().__init__(msg)


def translate_status(exc: BaseException, message: str) -> ExecutionError:
    """
    Map a numba / CUDA driver exception onto an ExecutionError.

    CUDA driver API errors keep their numeric code. Compilation and typing
    failures mean the kernel was never launched.
    """
    if isinstance(exc, CudaAPIError):
        return ExecutionError(DeviceStatus.EXECUTION_FAULT, f"{message}: {exc}", code=exc.code)
    if isinstance(exc, CudaSupportError):
        return ExecutionError(DeviceStatus.DEVICE_UNAVAILABLE, f"{message}: {exc}")
    if isinstance(exc, (NumbaError, NvvmError)):
        return ExecutionError(DeviceStatus.LAUNCH_REJECTED, f"{message}: {exc}")
    return ExecutionError(DeviceStatus.EXECUTION_FAULT, f"{message}: {exc}")


# =============================================================================
# Validation
# =============================================================================

def _as_output_grid(obj: Any) -> Grid:
    # A list or tuple would be copied by as_grid and the result lost
    if not isinstance(obj, (Grid, np.ndarray)) and not hasattr(obj, "__cuda_array_interface__"):
        raise ValidationError(f"Output must be an array or Grid, got {type(obj).__name__}")
    return _wrap(obj)


def _wrap(obj: Any) -> Grid:
    try:
        return as_grid(obj)
    except ValueError as e:
        raise ValidationError(str(e)) from e


def _as_float(name: str, value: Any) -> float:
    try:
        return float(value)
    except (TypeError, ValueError) as e:
        raise ValidationError(f"{name} must be a number, got {value!r}") from e


def _check_sigma(name: str, value: Any) -> float:
    value = _as_float(name, value)
    if not math.isfinite(value) or value <= 0.0:
        raise ValidationError(f"{name} must be positive and finite, got {value}")
    return value


def _check_radius(dim: Any) -> int:
    if isinstance(dim, (bool, np.bool_)) or not isinstance(dim, (int, np.integer)):
        raise ValidationError(f"dim must be an integer, got {type(dim).__name__}")
    if dim < 0:
        raise ValidationError(f"dim must be non-negative, got {dim}")
    return int(dim)


def _validate_pair(img_in: Any, img_out: Any) -> Tuple[Grid, Grid]:
    src = _wrap(img_in)
    dst = _as_output_grid(img_out)
    if src.width != dst.width or src.height != dst.height:
        raise ValidationError(
            f"In/Out dimensions don't match: {src.width}x{src.height} vs {dst.width}x{dst.height}"
        )
    if src.target != dst.target:
        raise ValidationError(f"In/Out targets don't match: {src.target} vs {dst.target}")
    if not dst.writeable:
        raise ValidationError("Out buffer is read-only")
    if not src.is_empty and src.shares_memory(dst):
        raise ValidationError("In/Out buffers must not overlap")
    return src, dst


# =============================================================================
# Dispatch
# =============================================================================

def _run(variant: str, src: Grid, dst: Grid, params: tuple, block_dim: Tuple[int, int]) -> None:
    if src.is_empty:
        logger.debug("Empty %s grid, nothing to dispatch", src.shape)
        return

    try:
        geometry = compute_geometry(src.width, src.height, block_dim)
    except ValueError as e:
        raise ValidationError(str(e)) from e
    logger.debug(
        "Dispatching %s on %s: grid %s x block %s for %dx%d",
        variant, src.target, geometry.grid_dim, geometry.block_dim, src.width, src.height,
    )
    try:
        kernels.launch(variant, src, dst, geometry, params)
    except DEVICE_EXCEPTIONS as e:
        raise translate_status(e, "Error launching the kernel") from e


def apply_bilateral(
    img_in: Any,
    img_out: Any,
    gs: float,
    gr: float,
    dim: int,
    block_dim: Tuple[int, int] = DEFAULT_BLOCK_DIM,
) -> None:
    """
    Bilateral-filter ``img_in`` into ``img_out``.

    Parameters
    ----------
    img_in : Grid or array (H, W)
        Input samples; read-only for the duration of the call
    img_out : Grid or array (H, W)
        Destination, same shape and target as img_in, not overlapping it
    gs : float
        Spatial sigma
    gr : float
        Range (intensity) sigma
    dim : int
        Window half-extent; the window is (2*dim+1)^2 samples
    block_dim : tuple
        Workers per block (x, y)

    Raises
    ------
    ValidationError
        Shape/target mismatch, overlap or bad parameters; nothing dispatched
    ExecutionError
        The launch or the wait for completion failed
    """
    src, dst = _validate_pair(img_in, img_out)
    params = (_check_sigma("gs", gs), _check_sigma("gr", gr), _check_radius(dim))
    _run(kernels.VARIANT_BILATERAL, src, dst, params, block_dim)


def apply_bilateral_limited(
    img_in: Any,
    img_out: Any,
    gs: float,
    gr: float,
    minval: float,
    dim: int,
    block_dim: Tuple[int, int] = DEFAULT_BLOCK_DIM,
) -> None:
    """
    Bilateral filter that treats samples below ``minval`` as missing.

    An output whose center sample is below ``minval`` gets no contributions
    and is NaN for float outputs. Otherwise neighbors below ``minval`` are
    skipped. Arguments and errors as for :func:`apply_bilateral`.
    """
    src, dst = _validate_pair(img_in, img_out)
    minval = _as_float("minval", minval)
    if math.isnan(minval):
        raise ValidationError("minval must not be NaN")
    params = (_check_sigma("gs", gs), _check_sigma("gr", gr), minval, _check_radius(dim))
    _run(kernels.VARIANT_LIMITED, src, dst, params, block_dim)
