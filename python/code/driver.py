"""
Driver layer: configuration, logging and whole-array / frame-stack runs.
This keeps allocation and host/device transfers out of the filter core and
composes the pure entry points from bilateral.py.
"""
from __future__ import annotations

import json
import logging
import math
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Tuple

import numpy as np
from numba import cuda
from tqdm import tqdm

import bilateral
from bilateral import DeviceStatus, ExecutionError
from grid import TARGET_CPU, TARGET_CUDA
from launch import DEFAULT_BLOCK_DIM

logger = logging.getLogger(__name__)

TARGET_AUTO = "auto"
VALID_TARGETS = (TARGET_AUTO, TARGET_CPU, TARGET_CUDA)


@dataclass(frozen=True)
class FilterConfig:
    spatial_sigma: float
    range_sigma: float
    radius: int
    min_value: Optional[float] = None  # set -> threshold-limited variant
    target: str = TARGET_AUTO
    block_dim: Tuple[int, int] = DEFAULT_BLOCK_DIM

    @property
    def limited(self) -> bool:
        return self.min_value is not None


def load_config(path: Path) -> FilterConfig:
    """
    Load filter configuration from JSON and coerce to strong types.
    Required keys: spatialSigma, rangeSigma, radius.
    Optional keys: minValue, target ("auto", "cpu", "cuda"), blockDim ([x, y]).
    """
    with open(path, "r", encoding="utf-8") as f:
        raw = json.load(f)

    required = ["spatialSigma", "rangeSigma", "radius"]
    missing = [k for k in required if k not in raw]
    if missing:
        raise ValueError(f"Config missing keys: {', '.join(missing)}")

    spatial_sigma = float(raw["spatialSigma"])
    range_sigma = float(raw["rangeSigma"])
    for name, value in (("spatialSigma", spatial_sigma), ("rangeSigma", range_sigma)):
        if not math.isfinite(value) or value <= 0:
            raise ValueError(f"{name} must be positive, got {value}")

    radius = raw["radius"]
    if isinstance(radius, bool) or not isinstance(radius, int) or radius < 0:
        raise ValueError(f"radius must be a non-negative integer, got {radius!r}")

    min_value = raw.get("minValue")
    if min_value is not None:
        min_value = float(min_value)

    target = raw.get("target", TARGET_AUTO)
    if target not in VALID_TARGETS:
        raise ValueError(f"target must be one of {VALID_TARGETS}, got {target!r}")

    block_dim = tuple(int(v) for v in raw.get("blockDim", DEFAULT_BLOCK_DIM))
    if len(block_dim) != 2:
        raise ValueError(f"blockDim must have two entries, got {block_dim}")

    return FilterConfig(
        spatial_sigma=spatial_sigma,
        range_sigma=range_sigma,
        radius=radius,
        min_value=min_value,
        target=target,
        block_dim=block_dim,
    )


@dataclass
class BatchProgress:
    """Progress information for stack processing."""
    total_items: int
    completed: int = 0
    failed: int = 0
    errors: List[Tuple[int, str]] = field(default_factory=list)

    @property
    def success_rate(self) -> float:
        if self.completed + self.failed == 0:
            return 0.0
        return self.completed / (self.completed + self.failed)


@dataclass
class StackResult:
    frames: np.ndarray  # (n_frames, H, W); failed frames are NaN
    progress: BatchProgress


# =============================================================================
# Logging Configuration
# =============================================================================

# Modules that log dispatch geometry, target choice and batch progress
FILTER_LOGGERS = ("bilateral", "driver")
# numba's compiler logs every pass at DEBUG
COMPILER_LOGGER = "numba"


def configure_logging(
    verbose: bool = False,
    log_file: Optional[Path] = None,
    quiet: bool = False,
    compiler_debug: bool = False,
) -> None:
    """
    Route filter logs to the console and optionally a file.

    Parameters
    ----------
    verbose : bool
        Show debug records (dispatch geometry, target selection) on the console
    log_file : Path, optional
        Also write to this file; it receives the filter loggers' debug
        records even when the console does not
    quiet : bool
        Console shows errors only
    compiler_debug : bool
        Let numba's compiler debug records through (off by default, the
        root logger is kept at WARNING for third-party loggers)
    """
    console_level = logging.ERROR if quiet else (logging.DEBUG if verbose else logging.INFO)
    fmt = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s", datefmt="%H:%M:%S")

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(console_level)
    console_handler.setFormatter(fmt)
    handlers = [console_handler]

    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(fmt)
        handlers.append(file_handler)

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.WARNING)
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
    for handler in handlers:
        root_logger.addHandler(handler)

    filter_level = logging.DEBUG if (verbose or log_file is not None) else logging.INFO
    for name in FILTER_LOGGERS:
        logging.getLogger(name).setLevel(filter_level)
    logging.getLogger(COMPILER_LOGGER).setLevel(logging.DEBUG if compiler_debug else logging.WARNING)


# =============================================================================
# Filtering
# =============================================================================

def resolve_target(requested: str = TARGET_AUTO) -> str:
    """
    Pick the execution target. "auto" falls back to the host when no CUDA
    device is present; an explicit "cuda" request without one is an error.
    """
    if requested not in VALID_TARGETS:
        raise ValueError(f"target must be one of {VALID_TARGETS}, got {requested!r}")
    if requested == TARGET_CPU:
        return TARGET_CPU
    if cuda.is_available():
        return TARGET_CUDA
    if requested == TARGET_CUDA:
        raise ExecutionError(DeviceStatus.DEVICE_UNAVAILABLE, "CUDA target requested but no device found")
    logger.debug("No CUDA device available, filtering on the host")
    return TARGET_CPU


def _apply(src, dst, config: FilterConfig) -> None:
    if config.limited:
        bilateral.apply_bilateral_limited(
            src, dst, config.spatial_sigma, config.range_sigma,
            config.min_value, config.radius, block_dim=config.block_dim,
        )
    else:
        bilateral.apply_bilateral(
            src, dst, config.spatial_sigma, config.range_sigma,
            config.radius, block_dim=config.block_dim,
        )


def filter_array(
    image: np.ndarray,
    config: FilterConfig,
    target: Optional[str] = None,
) -> np.ndarray:
    """
    Filter a host array and return a new array of the same shape and dtype.

    Parameters
    ----------
    image : array (H, W)
        Input samples
    config : FilterConfig
        Filter parameters and preferred target
    target : str, optional
        Resolved target; resolved from config.target if None

    Returns
    -------
    np.ndarray
        Filtered copy of image
    """
    image = np.asarray(image)
    if target is None:
        target = resolve_target(config.target)

    if target == TARGET_CUDA:
        d_in = cuda.to_device(np.ascontiguousarray(image))
        d_out = cuda.device_array_like(d_in)
        _apply(d_in, d_out, config)
        return d_out.copy_to_host()

    out = np.empty_like(image)
    _apply(image, out, config)
    return out


def filter_stack(
    frames: np.ndarray,
    config: FilterConfig,
    show_progress: bool = True,
) -> StackResult:
    """
    Filter every frame of a (n_frames, H, W) stack.

    A frame whose run fails with ExecutionError is logged, recorded in the
    progress and left NaN in the output; remaining frames still run.
    ValidationError is not caught since it would hit every frame.

    Parameters
    ----------
    frames : array (n_frames, H, W)
        Frame stack
    config : FilterConfig
        Filter parameters
    show_progress : bool
        Show progress bar (default True)

    Returns
    -------
    StackResult
        Filtered frames (float64) and batch progress
    """
    frames = np.asarray(frames)
    if frames.ndim != 3:
        raise ValueError(f"frames must have shape (n_frames, H, W), got {frames.shape}")

    target = resolve_target(config.target)
    n_frames = frames.shape[0]
    result = np.full(frames.shape, np.nan, dtype=float)
    progress = BatchProgress(total_items=n_frames)

    logger.info("Filtering %d frames of %dx%d on %s", n_frames, frames.shape[2], frames.shape[1], target)

    frame_iter = range(n_frames)
    if show_progress:
        frame_iter = tqdm(frame_iter, desc="Filtering frames", unit="frame")

    for i in frame_iter:
        try:
            result[i] = filter_array(frames[i], config, target=target)
        except ExecutionError as e:
            logger.error("Frame %d failed: %s", i, e)
            progress.failed += 1
            progress.errors.append((i, str(e)))
            continue
        progress.completed += 1

    if progress.failed:
        logger.warning("%d of %d frames failed", progress.failed, n_frames)
    return StackResult(frames=result, progress=progress)
