"""
Mask-aware separable Gaussian smoothing of level grids.

Non-finite cells are "no data": they are never smoothed and never
contribute to their neighbours.
"""

import numpy as np


def gaussian_kernel_1d(size: int, sigma: float) -> np.ndarray:
    """Normalised 1D Gaussian kernel; even sizes are bumped to the next odd size."""
    k = max(1, int(size))
    if k % 2 == 0:
        k += 1
    s = max(1e-4, float(sigma))
    half = k // 2
    x = np.arange(-half, half + 1, dtype=np.float64)
    weights = np.exp(-(x * x) / (2.0 * s * s))
    return weights / weights.sum()


def _convolve_axis(
    data: np.ndarray,
    valid: np.ndarray,
    kernel: np.ndarray,
    axis: int
) -> np.ndarray:
    """One separable pass. Out-of-range taps are clamped to the edge."""
    n = data.shape[axis]
    half = len(kernel) // 2
    index = np.arange(n)
    filled = np.where(valid, data, 0.0)

    acc = np.zeros_like(data)
    weight_sum = np.zeros_like(data)
    for offset, weight in zip(range(-half, half + 1), kernel):
        taps = np.clip(index + offset, 0, n - 1)
        acc += weight * np.take(filled, taps, axis=axis)
        weight_sum += weight * np.take(valid, taps, axis=axis)

    has_weight = weight_sum > 0
    smoothed = np.where(has_weight, acc / np.where(has_weight, weight_sum, 1.0), data)
    return np.where(valid, smoothed, np.nan)


def gaussian_smooth(data, size: int, sigma: float) -> np.ndarray:
    """
    Smooth a 2D grid with a separable Gaussian (horizontal, then vertical).

    Args:
        data: 2D array of levels, non-finite entries mark "no data"
        size: Kernel size in cells (forced odd); <= 1 returns a copy
        sigma: Gaussian standard deviation in cells, independent of size

    Returns:
        New array of the same shape. "No data" cells are NaN; valid cells
        are averaged over valid neighbours only, and keep their own value
        when no valid neighbour carries weight.
    """
    grid = np.array(data, dtype=np.float64, copy=True)
    if grid.ndim != 2:
        raise ValueError(f"Expected a 2D grid, got shape {grid.shape}")

    valid = np.isfinite(grid)
    grid[~valid] = np.nan
    if grid.size == 0 or int(size) <= 1:
        return grid

    kernel = gaussian_kernel_1d(size, sigma)
    horizontal = _convolve_axis(grid, valid, kernel, axis=1)
    return _convolve_axis(horizontal, valid, kernel, axis=0)
