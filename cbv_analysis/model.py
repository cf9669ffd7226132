"""
Cerebral blood volume (CBV) baseline-integral model for DSC time-activity curves.
"""

import numpy as np
import matplotlib.pyplot as plt
from typing import Dict, Optional

from .baseline import BaselineWindows, baseline_statistics, correct_baseline_drift
from .bolus import find_bolus_position, validate_bolus_window
from .curves import clamped_negative_log, definite_integral
from .errors import VoxelComputationError


def set_cbv_style():
    """Apply consistent plot styling to matplotlib."""
    plt.rcParams.update({
        'font.family': 'DejaVu Sans',
        'font.size': 11,
        'font.weight': 'normal',
        'axes.titleweight': 'bold',
        'axes.titlesize': 12,
        'axes.labelsize': 11,
        'xtick.labelsize': 10,
        'ytick.labelsize': 10,
        'legend.fontsize': 10,
        'figure.facecolor': 'white',
        'axes.facecolor': 'white',
        'grid.alpha': 0.3,
        'axes.grid': True,
        'grid.linewidth': 0.5
    })


def delta_r_transform(corrected_curve: np.ndarray, s0: float) -> np.ndarray:
    """
    Convert a baseline-corrected signal to a relaxation-rate change.

    dR(t) = -ln(S(t) / S0), evaluated only where S(t) / S0 lies in the open
    interval (0.01, 1.0). All other samples are exactly 0.

    Parameters
    ----------
    corrected_curve : np.ndarray
        Working TAC with drift removed across the bolus
    s0 : float
        Pre-bolus baseline signal

    Returns
    -------
    np.ndarray
        Concentration-like curve, same length as the input
    """
    return clamped_negative_log(np.asarray(corrected_curve, dtype=float) / s0)


def integrate_bolus(delta_r: np.ndarray, working_time: np.ndarray,
                    start: int, end: int, normalization: float = 1.0) -> float:
    """Integrate dR over the closed index range [start, end] and scale it."""
    segment = slice(start, end + 1)
    return definite_integral(delta_r[segment], working_time[segment]) * normalization


def compute_cbv_integral(curve: np.ndarray, time_array: np.ndarray,
                         windows: BaselineWindows, skip_times: int = 0,
                         normalization: float = 1.0) -> Dict:
    """
    Compute the CBV baseline integral of a single non-air TAC.

    Steps: drop the skipped frames, measure the baselines, locate the bolus,
    remove baseline drift, convert to dR and integrate over the bolus.

    Parameters
    ----------
    curve : np.ndarray
        Raw TAC, one sample per frame
    time_array : np.ndarray
        Relative frame times, same length as ``curve``
    windows : BaselineWindows
        Acquisition-level baseline window sizes
    skip_times : int
        Number of leading frames to ignore
    normalization : float
        Factor applied to the integral

    Returns
    -------
    dict
        'cbv' (normalized integral), 'integral' (raw integral) and the
        intermediate quantities used to obtain it

    Raises
    ------
    VoxelComputationError
        If the curve is malformed, no bolus is found or a numeric guard trips
    """
    curve = np.asarray(curve, dtype=float)
    if curve.ndim != 1 or len(curve) != len(time_array):
        raise VoxelComputationError(
            f"Curve has {curve.size} samples, expected {len(time_array)}",
            reason='invalid_curve')

    if not np.all(np.isfinite(curve)):
        raise VoxelComputationError("Curve contains non-finite samples", reason='invalid_curve')

    working_curve = curve[skip_times:]
    working_time = time_array[skip_times:]
    working_length = len(working_curve)

    stats = baseline_statistics(working_curve, windows)
    s0 = stats['pre_baseline']
    if not np.isfinite(s0) or s0 <= 0:
        raise VoxelComputationError(f"Pre-bolus baseline {s0} is not positive",
                                    reason='invalid_baseline')

    window = find_bolus_position(working_curve, windows.pre_n, windows.post_n,
                                 stats['noise'], stats['pre_baseline'],
                                 stats['post_baseline'])
    validate_bolus_window(window, windows.pre_n, windows.post_n, working_length)

    corrected = correct_baseline_drift(working_curve, working_time,
                                       window.start, window.end,
                                       stats['pre_baseline'], stats['post_baseline'])
    delta_r = delta_r_transform(corrected, s0)

    integral = integrate_bolus(delta_r, working_time, window.start, window.end)
    if not np.isfinite(integral):
        raise VoxelComputationError(f"Integral over [{window.start}, {window.end}] is not finite",
                                    reason='non_finite_integral',
                                    window=(window.start, window.end))

    return {
        'cbv': integral * normalization,
        'integral': integral,
        'normalization': normalization,
        'bolus_start': window.start,
        'bolus_end': window.end,
        'bolus_peak': window.peak,
        'pre_baseline': stats['pre_baseline'],
        'post_baseline': stats['post_baseline'],
        'noise': stats['noise'],
        'pre_n': windows.pre_n,
        'post_n': windows.post_n,
        'skip_times': skip_times,
        'working_time': working_time,
        'working_curve': working_curve,
        'corrected_curve': corrected,
        'delta_r': delta_r,
    }


def plot_cbv_results(cbv_results: Dict, time_units: str = 'seconds',
                     save_path: Optional[str] = None, show: bool = True):
    """
    Plot the working TAC with baselines and bolus window, and the dR curve.

    Parameters
    ----------
    cbv_results : dict
        Results from compute_cbv_integral
    time_units : str
        Units for the time axis label
    save_path : str, optional
        Path to save the plot
    show : bool
        Call plt.show() after drawing

    Returns
    -------
    matplotlib.figure.Figure
    """
    set_cbv_style()

    time = cbv_results['working_time']
    signal = cbv_results['working_curve']
    start, end = cbv_results['bolus_start'], cbv_results['bolus_end']
    pre_n, post_n = cbv_results['pre_n'], cbv_results['post_n']

    fig, (ax1, ax2) = plt.subplots(2, 1, figsize=(10, 8), height_ratios=[3, 2], sharex=True)
    fig.subplots_adjust(top=0.9, bottom=0.1, left=0.1, right=0.95, hspace=0.15)
    fig.suptitle('CBV Baseline Integral', fontsize=14, fontweight='bold', y=0.95)

    ax1.plot(time, signal, 'bo-', markersize=4, linewidth=2, label='Signal')
    ax1.plot(time[start:end + 1], cbv_results['corrected_curve'][start:end + 1],
             'r--', linewidth=1.5, label='Drift corrected')
    ax1.axhline(cbv_results['pre_baseline'], color='gray', linestyle=':', label='Pre-baseline')
    ax1.axhline(cbv_results['post_baseline'], color='k', linestyle=':', label='Post-baseline')
    ax1.axvspan(time[start], time[end], color='orange', alpha=0.2, label='Bolus window')
    ax1.axvspan(time[0], time[pre_n - 1], color='green', alpha=0.1)
    ax1.axvspan(time[len(time) - post_n], time[-1], color='green', alpha=0.1)
    ax1.set_ylabel('Signal Intensity')
    ax1.legend()

    param_text = (
        f"CBV = {cbv_results['cbv']:.4f}\n"
        f"Integral = {cbv_results['integral']:.4f} {time_units}\n"
        f"Bolus = [{start}, {end}] (peak {cbv_results['bolus_peak']})"
    )
    ax1.text(0.02, 0.05, param_text, transform=ax1.transAxes,
             verticalalignment='bottom', bbox=dict(boxstyle="round,pad=0.3",
             facecolor="white", alpha=0.8))

    ax2.plot(time, cbv_results['delta_r'], 'go-', markersize=3)
    ax2.fill_between(time[start:end + 1], cbv_results['delta_r'][start:end + 1],
                     color='green', alpha=0.3)
    ax2.set_xlabel(f'Time ({time_units})')
    ax2.set_ylabel('ΔR = -ln(S/S0)')

    if save_path:
        plt.savefig(save_path, dpi=150, bbox_inches='tight')
        print(f"Plot saved to: {save_path}")

    if show:
        plt.show()

    return fig


def print_cbv_summary(cbv_results: Dict) -> None:
    """
    Print a summary of a single-voxel CBV evaluation.

    Parameters
    ----------
    cbv_results : dict
        Results from compute_cbv_integral
    """
    print("\n" + "="*50)
    print("CBV BASELINE INTEGRAL RESULTS")
    print("="*50)
    print("Model: CBV = norm * integral over bolus of -ln(S(t)/S0) dt")
    print()
    print("Baselines:")
    print(f"  Pre-baseline ({cbv_results['pre_n']} frames):   {cbv_results['pre_baseline']:.3f}")
    print(f"  Post-baseline ({cbv_results['post_n']} frames):  {cbv_results['post_baseline']:.3f}")
    print(f"  Noise (pre-baseline SD):  {cbv_results['noise']:.3f}")
    print()
    print("Bolus:")
    print(f"  Start index:  {cbv_results['bolus_start']}")
    print(f"  Peak index:   {cbv_results['bolus_peak']}")
    print(f"  End index:    {cbv_results['bolus_end']}")
    print()
    print("Result:")
    print(f"  Integral:       {cbv_results['integral']:.4f}")
    print(f"  Normalization:  {cbv_results['normalization']:.4f}")
    print(f"  CBV:            {cbv_results['cbv']:.4f}")
    print("="*50)
