"""
Model-free measurements on a single time-activity curve.

These routines share the curve helpers of the CBV model and are evaluated
voxel by voxel in the same way:

- basic_measurements: summary statistics over a frame segment
- area_under_curve: time integral over a frame segment
- interleaved_profile: statistics of odd and even frames
- reference_curve_comparison: L1/L2 distance and correlation to a reference curve
- active_rise_time: time and slope of the rise between two peak fractions

Frame segments are given as a zero-based ``start`` index and a ``length``;
a length of 0 selects every frame from ``start`` to the end.
"""

from typing import Dict, Optional, Tuple

import numpy as np
from scipy import stats

from .curves import (CONCENTRATION_MODES, array_mean_and_stdev, definite_integral,
                     make_relative_time_array, signal_to_concentration)
from .errors import ConfigurationError, VoxelComputationError


# Default fractions of the peak bounding the active rise
RISE_LOW_THRESHOLD = 0.2
RISE_HIGH_THRESHOLD = 0.95


def segment_indices(start: int, length: int, num_timepoints: int) -> Tuple[int, int]:
    """
    Resolve a (start, length) frame segment to inclusive indices.

    Returns
    -------
    tuple of int
        (first, last) frame of the segment

    Raises
    ------
    ConfigurationError
        If the segment does not fit inside ``num_timepoints`` frames
    """
    try:
        integral = int(start) == start and int(length) == length
    except (TypeError, ValueError, OverflowError):
        integral = False
    if not integral:
        raise ConfigurationError(f"Segment start and length must be integers, got {start}, {length}")
    start, length = int(start), int(length)

    if not 0 <= start < num_timepoints:
        raise ConfigurationError(f"Start index {start} outside 0..{num_timepoints - 1}")
    if length < 0:
        raise ConfigurationError(f"Segment length must be non-negative, got {length}")

    end = num_timepoints - 1 if length == 0 else start + length - 1
    if end >= num_timepoints:
        raise ConfigurationError(
            f"Segment of {length} frames from {start} exceeds {num_timepoints} frames")
    return start, end


def _to_concentration(signal, conversion: str) -> np.ndarray:
    if conversion not in CONCENTRATION_MODES:
        raise ConfigurationError(f"Unknown concentration mode '{conversion}'. "
                                 f"Choose from {', '.join(CONCENTRATION_MODES)}")
    try:
        signal = np.asarray(signal, dtype=float)
    except (TypeError, ValueError) as e:
        raise VoxelComputationError(f"Curve is not numeric: {e}", reason='invalid_curve') from e

    if signal.ndim != 1 or signal.size == 0 or not np.all(np.isfinite(signal)):
        raise VoxelComputationError("Curve must be a non-empty finite 1D array",
                                    reason='invalid_curve')

    try:
        return signal_to_concentration(signal, mode=conversion)
    except ValueError as e:
        raise VoxelComputationError(str(e), reason='invalid_baseline') from e


def _check_time_array(time_array, num_timepoints: int) -> np.ndarray:
    try:
        time_array = make_relative_time_array(time_array)
    except ValueError as e:
        raise ConfigurationError(f"Invalid frame times: {e}") from e
    if len(time_array) != num_timepoints:
        raise ConfigurationError(
            f"Time array has {len(time_array)} frames, curve has {num_timepoints}")
    return time_array


def basic_measurements(signal: np.ndarray, start: int = 0, length: int = 0,
                       conversion: str = 'relative') -> Dict[str, float]:
    """
    Summary statistics of a curve segment after concentration conversion.

    Parameters
    ----------
    signal : np.ndarray
        Raw TAC in time order
    start, length : int
        Frame segment (length 0 = to the end)
    conversion : str
        Concentration mode passed to signal_to_concentration

    Returns
    -------
    dict
        'max', 'spread' (max - min), 'median', 'mean', 'std' (population),
        'cv' (std / mean), 'skewness' and 'kurtosis' (excess). Shape
        statistics are NaN for a constant segment and cv is NaN for a zero mean.
    """
    conc = _to_concentration(signal, conversion)
    first, last = segment_indices(start, length, len(conc))
    segment = conc[first:last + 1]

    mean, sd = array_mean_and_stdev(segment)
    if sd > 0:
        skewness = float(stats.skew(segment))
        kurtosis = float(stats.kurtosis(segment))
    else:
        skewness = kurtosis = np.nan

    return {
        'max': float(np.max(segment)),
        'spread': float(np.max(segment) - np.min(segment)),
        'median': float(np.median(segment)),
        'mean': mean,
        'std': sd,
        'cv': sd / mean if mean != 0 else np.nan,
        'skewness': skewness,
        'kurtosis': kurtosis,
    }


def area_under_curve(signal: np.ndarray, time_array: np.ndarray, start: int = 0,
                     length: int = 0, conversion: str = 'relative') -> float:
    """Trapezoidal integral of the converted curve over a frame segment."""
    conc = _to_concentration(signal, conversion)
    time_array = _check_time_array(time_array, len(conc))
    first, last = segment_indices(start, length, len(conc))
    return definite_integral(conc[first:last + 1], time_array[first:last + 1])


def interleaved_profile(signal: np.ndarray, conversion: str = 'none') -> Dict[str, float]:
    """
    Mean and standard deviation of odd and even frames.

    Frames are numbered from 1, so odd frames sit at indices 0, 2, 4, ...
    and even frames at indices 1, 3, 5, ...
    """
    conc = _to_concentration(signal, conversion)
    if len(conc) < 2:
        raise VoxelComputationError("Interleaved profile needs at least 2 frames",
                                    reason='invalid_curve')

    odd_mean, odd_std = array_mean_and_stdev(conc[0::2])
    even_mean, even_std = array_mean_and_stdev(conc[1::2])
    return {
        'odd_mean': odd_mean,
        'odd_std': odd_std,
        'even_mean': even_mean,
        'even_std': even_std,
    }


def _piecewise_linear_distance(diff: np.ndarray, times: np.ndarray, norm: int) -> float:
    """Exact integral of |d(t)| (norm 1) or sqrt of the integral of d(t)^2 (norm 2)."""
    d0, d1 = diff[:-1], diff[1:]
    dt = np.diff(times)

    if norm == 2:
        return float(np.sqrt(np.sum(dt * (d0 ** 2 + d0 * d1 + d1 ** 2) / 3.0)))

    a0, a1 = np.abs(d0), np.abs(d1)
    same_sign = d0 * d1 >= 0
    # Opposite signs: two triangles either side of the zero crossing
    denominator = np.where(same_sign, 1.0, a0 + a1)
    panels = np.where(same_sign, dt * (a0 + a1) / 2.0,
                      dt * (d0 ** 2 + d1 ** 2) / (2.0 * denominator))
    return float(np.sum(panels))


def _pearson_correlation(a: np.ndarray, b: np.ndarray) -> float:
    a = a - np.mean(a)
    b = b - np.mean(b)
    denominator = np.sqrt(np.sum(a ** 2) * np.sum(b ** 2))
    if denominator == 0:
        return np.nan
    return float(np.sum(a * b) / denominator)


def reference_curve_comparison(signal: np.ndarray, reference_curve: np.ndarray,
                               time_array: np.ndarray, norm: int = 2, start: int = 0,
                               length: int = 0,
                               conversion: str = 'relative') -> Dict[str, float]:
    """
    Compare a converted TAC with a reference curve over a frame segment.

    Parameters
    ----------
    signal : np.ndarray
        Raw TAC
    reference_curve : np.ndarray
        Reference curve in the same units as the converted TAC
    time_array : np.ndarray
        Frame times
    norm : int
        1 for the integral of |TAC - ref|, 2 for the root of the integral
        of (TAC - ref)^2; both treat the curves as piecewise linear
    start, length : int
        Frame segment (length 0 = to the end)
    conversion : str
        Concentration mode passed to signal_to_concentration

    Returns
    -------
    dict
        'distance' and 'correlation' (Pearson, NaN if either segment is constant)
    """
    if norm not in (1, 2):
        raise ConfigurationError(f"Distance norm must be 1 or 2, got {norm}")

    conc = _to_concentration(signal, conversion)
    reference_curve = np.asarray(reference_curve, dtype=float)
    if reference_curve.shape != conc.shape:
        raise ConfigurationError(
            f"Reference curve has {reference_curve.size} samples, curve has {conc.size}")

    time_array = _check_time_array(time_array, len(conc))
    first, last = segment_indices(start, length, len(conc))
    window = slice(first, last + 1)

    distance = _piecewise_linear_distance(conc[window] - reference_curve[window],
                                          time_array[window], norm)
    correlation = _pearson_correlation(reference_curve[window], conc[window])
    return {'distance': distance, 'correlation': correlation}


def _rising_crossing_time(values: np.ndarray, times: np.ndarray,
                          threshold: float) -> Optional[float]:
    """Linearly interpolated time at which values first reach threshold."""
    above = np.nonzero(values >= threshold)[0]
    if above.size == 0:
        return None

    i = above[0]
    if i == 0:
        return float(times[0])

    y0, y1 = values[i - 1], values[i]
    t0, t1 = times[i - 1], times[i]
    return float(t0 + (threshold - y0) * (t1 - t0) / (y1 - y0))


def active_rise_time(signal: np.ndarray, time_array: np.ndarray,
                     low_threshold: float = RISE_LOW_THRESHOLD,
                     high_threshold: float = RISE_HIGH_THRESHOLD,
                     conversion: str = 'relative') -> Dict[str, float]:
    """
    Time for the converted TAC to rise from a low to a high fraction of its peak.

    Only the rising part of the curve, up to and including the peak sample,
    is searched.

    Returns
    -------
    dict
        'rise_time' (time units of ``time_array``) and 'slope'
        ((high - low) * peak / rise_time)

    Raises
    ------
    VoxelComputationError
        If a threshold is never reached on the rise or both are reached
        at the same time
    """
    if not 0 <= low_threshold < high_threshold <= 1:
        raise ConfigurationError(
            f"Rise thresholds must satisfy 0 <= low < high <= 1, got {low_threshold}, {high_threshold}")

    conc = _to_concentration(signal, conversion)
    time_array = _check_time_array(time_array, len(conc))

    peak_index = int(np.argmax(conc))
    peak = conc[peak_index]
    if peak <= 0:
        raise VoxelComputationError("Curve never rises above zero",
                                    reason='threshold_not_crossed')
    rising = conc[:peak_index + 1]
    rising_times = time_array[:peak_index + 1]

    low_level = peak * low_threshold
    high_level = peak * high_threshold
    t_low = _rising_crossing_time(rising, rising_times, low_level)
    t_high = _rising_crossing_time(rising, rising_times, high_level)

    if t_low is None or t_high is None:
        raise VoxelComputationError("Rise thresholds not crossed before the peak",
                                    reason='threshold_not_crossed')
    if np.isclose(t_low, t_high):
        raise VoxelComputationError(f"Rise thresholds crossed at the same time ({t_low})",
                                    reason='degenerate_time_window')

    rise_time = t_high - t_low
    return {'rise_time': rise_time, 'slope': (high_level - low_level) / rise_time}
