"""
Validation utilities for checking kernel output against an independent
reference implementation.

This module provides:
- A float64 reference bilateral filter built on scipy.ndimage
- Comparison metrics that treat NaN as a value that must match
- A comparison report with JSON export

Usage
-----
from validation import reference_bilateral, compare_arrays
expected = reference_bilateral(image, gs=1.0, gr=0.5, dim=2)
comparison = compare_arrays(filtered, expected, field_name="bilateral")
print(comparison.max_abs_diff)
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple
import json
import logging

import numpy as np
from scipy import ndimage

logger = logging.getLogger(__name__)

DEFAULT_TOLERANCE = 1e-5


# =============================================================================
# Reference Implementation
# =============================================================================

def spatial_weights(gs: float, dim: int) -> np.ndarray:
    """
    Spatial Gaussian over a (2*dim+1)^2 window, unnormalized.
    Row index is the y offset, column index the x offset.
    """
    offsets = np.arange(-dim, dim + 1, dtype=float)
    rr, cc = np.meshgrid(offsets, offsets, indexing="ij")
    return np.exp(-(rr ** 2 + cc ** 2) / (2.0 * gs * gs))


def reference_bilateral(
    image: np.ndarray,
    gs: float,
    gr: float,
    dim: int,
    min_value: Optional[float] = None,
) -> np.ndarray:
    """
    Bilateral filter evaluated window by window in float64.

    Border samples are replicated (ndimage mode="nearest"). With min_value
    set, a center below the threshold contributes nothing and neighbors
    below it are skipped, leaving 0/0 = NaN where nothing qualifies.

    Parameters
    ----------
    image : array (H, W)
        Input samples
    gs, gr : float
        Spatial and range sigma
    dim : int
        Window half-extent
    min_value : float, optional
        Inclusion threshold (threshold-limited variant)

    Returns
    -------
    np.ndarray
        Filtered image, float64
    """
    image = np.asarray(image, dtype=float)
    if image.ndim != 2:
        raise ValueError(f"image must be 2D, got shape {image.shape}")

    sw = spatial_weights(gs, dim).ravel()
    center = sw.size // 2
    range_denom = 2.0 * gr * gr

    def _window(values: np.ndarray) -> float:
        p = values[center]
        w = sw * np.exp(-((p - values) ** 2) / range_denom)
        if min_value is not None:
            keep = values >= min_value
            if p < min_value:
                keep[:] = False
            w = np.where(keep, w, 0.0)
        with np.errstate(invalid="ignore", divide="ignore"):
            return np.sum(w * values) / np.sum(w)

    return ndimage.generic_filter(
        image, _window, size=2 * dim + 1, mode="nearest", output=np.float64
    )


# =============================================================================
# Comparison Metrics
# =============================================================================

def nan_masks_match(a: np.ndarray, b: np.ndarray) -> bool:
    """True when both arrays are NaN at exactly the same positions."""
    return bool(np.array_equal(np.isnan(np.asarray(a, dtype=float)),
                               np.isnan(np.asarray(b, dtype=float))))


def compute_rmse(a: np.ndarray, b: np.ndarray) -> float:
    """
    Compute Root Mean Square Error between two arrays.

    NaN values are ignored (pairwise complete).

    Returns
    -------
    float
        RMSE value, or NaN if no valid points
    """
    a = np.asarray(a, dtype=float).flatten()
    b = np.asarray(b, dtype=float).flatten()

    valid = ~(np.isnan(a) | np.isnan(b))
    if not np.any(valid):
        return np.nan

    diff = a[valid] - b[valid]
    return float(np.sqrt(np.mean(diff ** 2)))


def compute_max_abs_diff(a: np.ndarray, b: np.ndarray) -> float:
    """
    Compute maximum absolute difference, ignoring NaN pairs.
    """
    a = np.asarray(a, dtype=float).flatten()
    b = np.asarray(b, dtype=float).flatten()

    valid = ~(np.isnan(a) | np.isnan(b))
    if not np.any(valid):
        return np.nan

    return float(np.max(np.abs(a[valid] - b[valid])))


@dataclass
class FieldComparison:
    """Comparison result for one filtered output against its reference."""
    field_name: str
    actual_shape: Tuple[int, ...]
    expected_shape: Tuple[int, ...]
    rmse: float
    max_abs_diff: float
    nan_match: bool
    n_valid_points: int
    n_total_points: int
    notes: str = ""

    @property
    def shapes_match(self) -> bool:
        return self.actual_shape == self.expected_shape

    def within(self, tolerance: float = DEFAULT_TOLERANCE) -> bool:
        """Shapes and NaN positions agree and every valid point is within tolerance."""
        if not (self.shapes_match and self.nan_match):
            return False
        if self.n_valid_points == 0:
            return True
        return self.max_abs_diff <= tolerance

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON export."""
        return {
            "field_name": self.field_name,
            "actual_shape": list(self.actual_shape),
            "expected_shape": list(self.expected_shape),
            "rmse": float(self.rmse) if not np.isnan(self.rmse) else None,
            "max_abs_diff": float(self.max_abs_diff) if not np.isnan(self.max_abs_diff) else None,
            "nan_match": self.nan_match,
            "n_valid_points": self.n_valid_points,
            "n_total_points": self.n_total_points,
            "notes": self.notes,
        }


def compare_arrays(
    actual: np.ndarray,
    expected: np.ndarray,
    field_name: str = "unknown",
) -> FieldComparison:
    """
    Compare a filtered output with its reference and compute all metrics.
    """
    actual = np.asarray(actual, dtype=float)
    expected = np.asarray(expected, dtype=float)

    if actual.shape != expected.shape:
        return FieldComparison(
            field_name=field_name,
            actual_shape=actual.shape,
            expected_shape=expected.shape,
            rmse=np.nan,
            max_abs_diff=np.nan,
            nan_match=False,
            n_valid_points=0,
            n_total_points=int(actual.size),
            notes=f"Shape mismatch: {actual.shape} vs {expected.shape}",
        )

    valid_mask = ~(np.isnan(actual) | np.isnan(expected))
    return FieldComparison(
        field_name=field_name,
        actual_shape=actual.shape,
        expected_shape=expected.shape,
        rmse=compute_rmse(actual, expected),
        max_abs_diff=compute_max_abs_diff(actual, expected),
        nan_match=nan_masks_match(actual, expected),
        n_valid_points=int(np.sum(valid_mask)),
        n_total_points=int(actual.size),
    )


@dataclass
class ValidationReport:
    """Set of comparisons for one validation run."""
    name: str
    tolerance: float = DEFAULT_TOLERANCE
    field_comparisons: List[FieldComparison] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def passed(self) -> bool:
        return all(fc.within(self.tolerance) for fc in self.field_comparisons)

    def add(self, comparison: FieldComparison) -> None:
        if not comparison.within(self.tolerance):
            logger.warning(
                "%s: %s outside tolerance (max diff %s, NaN match %s)",
                self.name, comparison.field_name, comparison.max_abs_diff, comparison.nan_match,
            )
        self.field_comparisons.append(comparison)

    def summary(self) -> str:
        """Generate human-readable summary."""
        lines = [
            f"Validation Report: {self.name}",
            "=" * 60,
            f"Tolerance: {self.tolerance:g}",
            f"Overall Status: {'PASSED' if self.passed else 'FAILED'}",
            "",
            "Field Comparisons:",
            "-" * 60,
        ]
        for fc in self.field_comparisons:
            lines.append(
                f"  {fc.field_name}: RMSE={fc.rmse:.3e}, max|diff|={fc.max_abs_diff:.3e}, "
                f"NaN match={fc.nan_match}"
            )
            if fc.notes:
                lines.append(f"    Note: {fc.notes}")
        return "\n".join(lines)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON export."""
        return {
            "name": self.name,
            "tolerance": self.tolerance,
            "passed": self.passed,
            "field_comparisons": [fc.to_dict() for fc in self.field_comparisons],
            "metadata": self.metadata,
        }

    def save_json(self, path: Path) -> None:
        """Save report to JSON file."""
        with open(path, "w") as f:
            json.dump(self.to_dict(), f, indent=2)
