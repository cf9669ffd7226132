"""
Baseline handling for bolus-passage TACs.

The pre- and post-bolus baseline window sizes are derived once per
acquisition from a representative (global) curve. Per voxel, the baseline
levels are measured over those windows and a linear drift between them is
removed across the bolus.
"""

import warnings
from dataclasses import dataclass
from typing import Dict

import numpy as np

from .curves import array_mean_and_stdev
from .errors import ConfigurationError, VoxelComputationError


# Fraction of the drop from the curve edge to its minimum that ends a baseline
PRE_N_THR = 0.95
POST_N_THR = 0.95


@dataclass(frozen=True)
class BaselineWindows:
    """Number of leading (pre) and trailing (post) baseline samples."""
    pre_n: int
    post_n: int
    pre_converged: bool = True
    post_converged: bool = True

    @property
    def converged(self) -> bool:
        return self.pre_converged and self.post_converged


def _walk_to_minimum(curve: np.ndarray, fraction: float):
    """
    Count samples from the start of ``curve`` until it comes within
    ``fraction`` of the drop to the curve minimum.

    Returns (count, converged). When the threshold is never met the count is
    capped at ``len(curve) - 1``.
    """
    minimum = np.min(curve)
    threshold = (curve[0] - minimum) * fraction

    hits = np.nonzero(curve[1:] - minimum < threshold)[0]
    if hits.size:
        return int(hits[0]) + 1, True
    return len(curve) - 1, False


def estimate_baseline_windows(reference_curve: np.ndarray,
                              working_length: int,
                              pre_fraction: float = PRE_N_THR,
                              post_fraction: float = POST_N_THR,
                              strict: bool = False) -> BaselineWindows:
    """
    Determine pre- and post-baseline window sizes from a reference curve.

    Walks forward from the first sample (and backward from the last) until
    the curve has fallen by ``fraction`` of its drop to the global minimum.

    Parameters
    ----------
    reference_curve : np.ndarray
        Representative curve, already offset past the discarded samples
    working_length : int
        Length of the per-voxel working curve
    pre_fraction, post_fraction : float
        Fraction of the edge-to-minimum drop that ends each baseline
    strict : bool
        Raise instead of warning when a walk does not converge or the
        windows leave no room for a bolus

    Returns
    -------
    BaselineWindows
        Window sizes; unconverged sides are capped at ``len(reference_curve) - 1``

    Raises
    ------
    ConfigurationError
        If the reference curve is unusable, or in strict mode on degeneracy
    """
    reference_curve = np.asarray(reference_curve, dtype=float)

    if reference_curve.ndim != 1 or len(reference_curve) < 3:
        raise ConfigurationError("Reference curve needs at least 3 working samples")

    if not np.all(np.isfinite(reference_curve)):
        raise ConfigurationError("Reference curve contains non-finite values")

    pre_n, pre_ok = _walk_to_minimum(reference_curve, pre_fraction)
    post_n, post_ok = _walk_to_minimum(reference_curve[::-1], post_fraction)
    windows = BaselineWindows(pre_n, post_n, pre_ok, post_ok)

    problems = []
    if not pre_ok:
        problems.append(f"pre-baseline walk did not converge (capped at {pre_n})")
    if not post_ok:
        problems.append(f"post-baseline walk did not converge (capped at {post_n})")
    if pre_n + post_n >= working_length:
        problems.append(f"pre_n + post_n = {pre_n + post_n} leaves no bolus room "
                        f"in {working_length} working samples")

    if problems:
        message = "Baseline window estimation: " + "; ".join(problems)
        if strict:
            raise ConfigurationError(message)
        warnings.warn(message)

    return windows


def baseline_statistics(working_curve: np.ndarray, windows: BaselineWindows) -> Dict[str, float]:
    """
    Measure baseline levels of a working curve.

    Returns
    -------
    dict
        'pre_baseline' and 'post_baseline' means, and 'noise' (standard
        deviation of the pre-baseline samples)
    """
    pre_mean, noise = array_mean_and_stdev(working_curve[:windows.pre_n])
    post_mean, _ = array_mean_and_stdev(working_curve[len(working_curve) - windows.post_n:])
    return {
        'pre_baseline': pre_mean,
        'post_baseline': post_mean,
        'noise': noise,
    }


def correct_baseline_drift(working_curve: np.ndarray, working_time: np.ndarray,
                           start: int, end: int,
                           pre_baseline: float, post_baseline: float) -> np.ndarray:
    """
    Remove the linear drift between the pre- and post-baseline across the bolus.

    Samples inside [start, end] have the ramp
    ``(post - pre) / (t[end] - t[start]) * (t - t[start])`` subtracted.
    Samples outside the window are copied unchanged.

    Raises
    ------
    VoxelComputationError
        If the bolus window spans zero time
    """
    duration = working_time[end] - working_time[start]
    if duration == 0:
        raise VoxelComputationError(
            f"Bolus window [{start}, {end}] spans zero time; cannot estimate drift",
            reason='degenerate_time_window', window=(start, end))

    slope = (post_baseline - pre_baseline) / duration

    corrected = np.array(working_curve, dtype=float)
    segment = slice(start, end + 1)
    corrected[segment] -= slope * (working_time[segment] - working_time[start])
    return corrected
