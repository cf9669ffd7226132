"""
Voxel classification and bolus localization.
"""

from typing import NamedTuple

import numpy as np

from .errors import BolusNotFoundError


def is_air(curve: np.ndarray, threshold: float) -> bool:
    """
    Classify a raw TAC as air (no tissue signal).

    A curve is air when its smallest absolute sample lies below ``threshold``.
    """
    curve = np.asarray(curve, dtype=float)
    return bool(np.min(np.abs(curve)) < threshold)


class BolusWindow(NamedTuple):
    """Bolus passage indices into the working curve."""
    start: int
    end: int
    peak: int


def find_bolus_position(working_curve: np.ndarray, pre_n: int, post_n: int,
                        noise: float, pre_baseline: float,
                        post_baseline: float) -> BolusWindow:
    """
    Locate start and end of the bolus passage in a working TAC.

    The global minimum is taken as the bolus peak (DSC signal drops while the
    contrast agent passes).

    - Start: scanning back from the peak, the first index whose predecessor
      rises above ``pre_baseline - noise``. Never goes below ``pre_n``.
    - End: scanning forward from ``peak + 2``, stop at the first sample above
      ``post_baseline - noise`` or more than ``noise`` below the running
      maximum (a second dip). The end is the sample before the stop, clamped
      to ``len(working_curve) - post_n - 1``.

    Parameters
    ----------
    working_curve : np.ndarray
        Raw TAC after skipping the initial frames
    pre_n, post_n : int
        Baseline window sizes
    noise : float
        Noise estimate
    pre_baseline, post_baseline : float
        Baseline means

    Returns
    -------
    BolusWindow
        (start, end, peak); the caller must check validity
    """
    working_length = len(working_curve)

    peak = int(np.argmin(working_curve))
    peak_value = working_curve[peak]

    cutoff = pre_baseline - noise
    start = peak
    while start > pre_n:
        if working_curve[start - 1] > cutoff:
            break
        start -= 1

    cutoff = post_baseline - noise
    last = working_length - post_n
    running_max = peak_value
    stop = peak + 2
    while stop < last:
        value = working_curve[stop]
        if value > running_max:
            running_max = value
        if value > cutoff or value < running_max - noise:
            break
        stop += 1

    end = min(stop - 1, last - 1)
    return BolusWindow(start, end, peak)


def validate_bolus_window(window: BolusWindow, pre_n: int, post_n: int,
                          working_length: int) -> BolusWindow:
    """
    Check that ``pre_n <= start < end <= working_length - post_n - 1``.

    Raises
    ------
    BolusNotFoundError
        If the window is empty or overlaps a baseline
    """
    start, end = window.start, window.end
    upper = working_length - post_n - 1

    if start >= end:
        raise BolusNotFoundError(f"No bolus found: start {start} >= end {end}",
                                 window=(start, end))
    if start < pre_n or end > upper:
        raise BolusNotFoundError(
            f"Bolus window [{start}, {end}] outside baseline limits [{pre_n}, {upper}]",
            window=(start, end))
    return window
