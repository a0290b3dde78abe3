#!/usr/bin/env python3
"""
Example: Basic Bilateral Filtering

Filters a synthetic noisy step image, once with the plain filter and once
with the threshold-limited variant, and checks both against the reference
implementation.

Usage:
    python basic_filtering.py [/path/to/filter_config.json]
"""

import sys
from pathlib import Path

import numpy as np

# Add code directory to path
sys.path.insert(0, str(Path(__file__).parent.parent / "code"))

from driver import FilterConfig, configure_logging, filter_array, load_config, resolve_target
from validation import ValidationReport, compare_arrays, reference_bilateral


def make_test_image(height: int = 64, width: int = 96, seed: int = 0) -> np.ndarray:
    """Step edge plus Gaussian noise, with a block of missing (negative) samples."""
    rng = np.random.default_rng(seed)
    img = np.zeros((height, width))
    img[:, width // 2:] = 1.0
    img += rng.normal(scale=0.05, size=img.shape)
    img[10:16, 10:16] = -1.0
    return img


def main():
    configure_logging(verbose=True)

    if len(sys.argv) > 1:
        config = load_config(Path(sys.argv[1]))
    else:
        config = FilterConfig(spatial_sigma=2.0, range_sigma=0.15, radius=3)

    target = resolve_target(config.target)
    print(f"Filtering on: {target}")

    img = make_test_image()
    report = ValidationReport(name="basic_filtering", tolerance=1e-4, metadata={"target": target})

    plain = filter_array(img, FilterConfig(
        spatial_sigma=config.spatial_sigma,
        range_sigma=config.range_sigma,
        radius=config.radius,
        block_dim=config.block_dim,
    ), target=target)
    expected = reference_bilateral(img, config.spatial_sigma, config.range_sigma, config.radius)
    report.add(compare_arrays(plain, expected, field_name="bilateral"))

    min_value = config.min_value if config.limited else 0.0
    limited = filter_array(img, FilterConfig(
        spatial_sigma=config.spatial_sigma,
        range_sigma=config.range_sigma,
        radius=config.radius,
        min_value=min_value,
        block_dim=config.block_dim,
    ), target=target)
    expected = reference_bilateral(
        img, config.spatial_sigma, config.range_sigma, config.radius, min_value=min_value
    )
    report.add(compare_arrays(limited, expected, field_name="bilateral_limited"))

    print(f"\nNoise std before: {img[:, :40].std():.4f}, after: {plain[:, :40].std():.4f}")
    print(f"Missing samples in limited output: {int(np.isnan(limited).sum())}")
    print()
    print(report.summary())
    return 0 if report.passed else 1


if __name__ == "__main__":
    sys.exit(main())
