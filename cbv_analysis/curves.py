"""
Basic curve helpers shared by the CBV model.

Time-base construction, array statistics, piecewise-linear integration and
signal-to-concentration conversion for time-activity curves (TACs).
"""

import numpy as np
from scipy.integrate import trapezoid
from typing import Tuple


CONCENTRATION_MODES = ('none', 'relative', 'delta_r')

# Open interval of S/S0 ratios for which -ln(S/S0) is evaluated
MIN_SIGNAL_RATIO = 0.01
MAX_SIGNAL_RATIO = 1.0


def make_relative_time_array(absolute_times: np.ndarray) -> np.ndarray:
    """
    Convert absolute frame times to times relative to the first frame.

    Parameters
    ----------
    absolute_times : np.ndarray
        Frame acquisition times, ordered by acquisition

    Returns
    -------
    np.ndarray
        Time array starting at zero, same length as the input

    Raises
    ------
    ValueError
        If the array is empty or timestamps decrease
    """
    absolute_times = np.asarray(absolute_times, dtype=float)
    if absolute_times.ndim != 1 or absolute_times.size == 0:
        raise ValueError("Time array must be a non-empty 1D sequence")

    if not np.all(np.isfinite(absolute_times)):
        raise ValueError("Time array contains non-finite values")

    if np.any(np.diff(absolute_times) < 0):
        raise ValueError("Frame times must be non-decreasing")

    return absolute_times - absolute_times[0]


def array_mean_and_stdev(values: np.ndarray) -> Tuple[float, float]:
    """Return the mean and population standard deviation of a curve segment."""
    values = np.asarray(values, dtype=float)
    if values.size == 0:
        raise ValueError("Cannot compute statistics of an empty segment")
    return float(np.mean(values)), float(np.std(values))


def definite_integral(values: np.ndarray, times: np.ndarray) -> float:
    """
    Integrate samples over time with the trapezoidal rule.

    Irregular frame spacing is supported. Repeated timestamps produce
    zero-width panels and contribute nothing.

    Parameters
    ----------
    values : np.ndarray
        Curve samples
    times : np.ndarray
        Matching time points

    Returns
    -------
    float
        Definite integral over the full span of ``times``
    """
    values = np.asarray(values, dtype=float)
    times = np.asarray(times, dtype=float)
    if len(values) != len(times):
        raise ValueError("Values and times must have same length")

    if len(values) < 2:
        return 0.0

    return float(trapezoid(values, x=times))


def clamped_negative_log(ratio: np.ndarray) -> np.ndarray:
    """-ln(ratio) inside the open interval (0.01, 1.0), zero elsewhere."""
    ratio = np.asarray(ratio, dtype=float)
    valid = (ratio > MIN_SIGNAL_RATIO) & (ratio < MAX_SIGNAL_RATIO)
    result = np.zeros_like(ratio)
    result[valid] = -np.log(ratio[valid])
    return result


def signal_to_concentration(signal: np.ndarray, mode: str = 'relative',
                            num_baseline: int = 1) -> np.ndarray:
    """
    Convert a raw signal curve to a concentration-like curve.

    Parameters
    ----------
    signal : np.ndarray
        Raw TAC
    mode : str
        'none' returns a copy, 'relative' gives (S - S0) / S0 and
        'delta_r' gives -ln(S / S0) with the same clamp as the CBV model
    num_baseline : int
        Number of leading samples averaged to obtain S0

    Returns
    -------
    np.ndarray
        New curve, same length as ``signal``
    """
    signal = np.asarray(signal, dtype=float)

    if mode not in CONCENTRATION_MODES:
        raise ValueError(f"Unknown concentration mode '{mode}'. "
                         f"Choose from {', '.join(CONCENTRATION_MODES)}")

    if mode == 'none':
        return signal.copy()

    if num_baseline < 1 or num_baseline > len(signal):
        raise ValueError(f"num_baseline must be between 1 and {len(signal)}")

    s0, _ = array_mean_and_stdev(signal[:num_baseline])
    if s0 == 0:
        raise ValueError("Baseline signal is zero; cannot normalize")

    if mode == 'relative':
        return (signal - s0) / s0

    return clamped_negative_log(signal / s0)
