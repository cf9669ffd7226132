"""
CBV mapping over a 4D dynamic image held in memory.

Every voxel curve is evaluated independently against one CBVModel. Voxel
failures are recorded and mapping continues with the next voxel.
"""

import time
from typing import Callable, Dict, Optional

import numpy as np
import matplotlib.pyplot as plt

from .errors import VoxelComputationError
from .model import set_cbv_style
from .pipeline import CBVModel


STATUS_NOT_PROCESSED = -1
STATUS_OK = 0
STATUS_VOID = 1
STATUS_FAILED = 2

_STATUS_CODES = {'ok': STATUS_OK, 'void': STATUS_VOID, 'failed': STATUS_FAILED}


def create_cbv_map(image_4d: np.ndarray,
                   model: CBVModel,
                   z_slice: Optional[int] = None,
                   roi_mask: Optional[np.ndarray] = None,
                   progress_callback: Optional[Callable[[float, int, int], None]] = None) -> Dict:
    """
    Create a CBV map by evaluating each voxel curve.

    Parameters
    ----------
    image_4d : np.ndarray
        Dynamic data with shape [x, y, z, t]
    model : CBVModel
        Initialized acquisition state; t must equal model.num_timepoints
    z_slice : int, optional
        If provided, only process this z-slice (2D mapping)
    roi_mask : np.ndarray, optional
        2D boolean mask [x, y]; voxels outside it are not processed
    progress_callback : callable, optional
        Called with (progress_pct, current_position, total_positions)

    Returns
    -------
    dict
        - 'cbv_map': CBV values, NaN where no value was produced
        - 'status_map': 0 ok, 1 void, 2 failed, -1 not processed
        - 'mask': Boolean mask of voxels with a CBV value
        - 'failures': {(x, y, z): reason} for failed voxels
        - 'metadata': processing summary
        - 'roi_mask': Copy of input ROI mask (if provided)
    """
    x_size, y_size, z_size, t_size = image_4d.shape
    if t_size != model.num_timepoints:
        raise ValueError(f"Image has {t_size} time points, model expects {model.num_timepoints}")

    if z_slice is not None:
        if not 0 <= z_slice < z_size:
            raise IndexError(f"Z-index {z_slice} exceeds available slices ({z_size})")
        z_start, z_end = z_slice, z_slice + 1
        output_shape = (x_size, y_size, 1)
    else:
        z_start, z_end = 0, z_size
        output_shape = (x_size, y_size, z_size)

    if roi_mask is not None and roi_mask.shape != (x_size, y_size):
        raise ValueError(f"ROI mask shape {roi_mask.shape} does not match image ({x_size}, {y_size})")

    cbv_map = np.full(output_shape, np.nan)
    status_map = np.full(output_shape, STATUS_NOT_PROCESSED, dtype=int)
    failures = {}

    in_plane = np.ones((x_size, y_size), dtype=bool) if roi_mask is None else roi_mask.astype(bool)
    total_positions = int(np.sum(in_plane)) * (z_end - z_start)

    print(f"Creating CBV map ({model.working_length} working frames, "
          f"pre_n={model.windows.pre_n}, post_n={model.windows.post_n})...")
    print(f"Processing {'single slice' if z_slice is not None else 'all slices'}: {total_positions} positions")
    print(f"Air threshold: {model.air_threshold:.2f}")

    current_position = 0
    start_time = time.time()

    for z in range(z_start, z_end):
        z_idx = z if z_slice is None else 0

        for x in range(x_size):
            for y in range(y_size):
                if not in_plane[x, y]:
                    continue

                current_position += 1
                if progress_callback and current_position % 100 == 0:
                    progress_pct = 100.0 * current_position / total_positions
                    progress_callback(progress_pct, current_position, total_positions)

                result = model.evaluate_safely(image_4d[x, y, z, :])
                status_map[x, y, z_idx] = _STATUS_CODES[result.status]

                if result.ok:
                    cbv_map[x, y, z_idx] = result.value
                elif result.status == 'failed':
                    failures[(x, y, z)] = result.reason

    if progress_callback and total_positions:
        progress_callback(100.0, current_position, total_positions)

    elapsed_time = time.time() - start_time
    fit_mask = status_map == STATUS_OK
    successful = int(np.sum(fit_mask))
    void_count = int(np.sum(status_map == STATUS_VOID))
    failed_count = int(np.sum(status_map == STATUS_FAILED))
    success_rate = 100.0 * successful / total_positions if total_positions else 0.0

    print(f"CBV mapping completed in {elapsed_time:.1f} seconds")
    print(f"Successful: {successful}/{total_positions} ({success_rate:.1f}%), "
          f"void: {void_count}, failed: {failed_count}")

    maps = {
        'cbv_map': cbv_map,
        'status_map': status_map,
        'mask': fit_mask,
        'failures': failures,
        'metadata': {
            'z_slice': z_slice,
            'skip_times': model.skip_times,
            'pre_n': model.windows.pre_n,
            'post_n': model.windows.post_n,
            'air_threshold': model.air_threshold,
            'normalization': model.normalization,
            'normalization_source': model.normalization_source,
            'success_rate': success_rate,
            'processing_time': elapsed_time,
            'total_positions': total_positions,
            'successful_voxels': successful,
            'void_voxels': void_count,
            'failed_voxels': failed_count,
        }
    }

    if roi_mask is not None:
        maps['roi_mask'] = roi_mask.copy()

    return maps


def create_measurement_maps(image_4d: np.ndarray,
                            measure: Callable[[np.ndarray], Dict[str, float]],
                            z_slice: Optional[int] = None,
                            roi_mask: Optional[np.ndarray] = None) -> Dict:
    """
    Map a per-curve measurement over a 4D image.

    Parameters
    ----------
    image_4d : np.ndarray
        Dynamic data with shape [x, y, z, t]
    measure : callable
        Takes one curve and returns a dict of named values, e.g.
        ``functools.partial(basic_measurements, start=2)``
    z_slice : int, optional
        If provided, only process this z-slice
    roi_mask : np.ndarray, optional
        2D boolean mask [x, y]; voxels outside it are not processed

    Returns
    -------
    dict
        - 'maps': {name: array} with NaN where no value was produced
        - 'status_map': 0 ok, 2 failed, -1 not processed
        - 'failures': {(x, y, z): reason} for failed voxels
        - 'metadata': processing summary
    """
    x_size, y_size, z_size, _ = image_4d.shape

    if z_slice is not None:
        if not 0 <= z_slice < z_size:
            raise IndexError(f"Z-index {z_slice} exceeds available slices ({z_size})")
        z_start, z_end = z_slice, z_slice + 1
        output_shape = (x_size, y_size, 1)
    else:
        z_start, z_end = 0, z_size
        output_shape = (x_size, y_size, z_size)

    if roi_mask is not None and roi_mask.shape != (x_size, y_size):
        raise ValueError(f"ROI mask shape {roi_mask.shape} does not match image ({x_size}, {y_size})")
    in_plane = np.ones((x_size, y_size), dtype=bool) if roi_mask is None else roi_mask.astype(bool)

    maps = {}
    status_map = np.full(output_shape, STATUS_NOT_PROCESSED, dtype=int)
    failures = {}

    for z in range(z_start, z_end):
        z_idx = z if z_slice is None else 0
        for x in range(x_size):
            for y in range(y_size):
                if not in_plane[x, y]:
                    continue

                try:
                    values = measure(image_4d[x, y, z, :])
                except VoxelComputationError as e:
                    status_map[x, y, z_idx] = STATUS_FAILED
                    failures[(x, y, z)] = e.reason
                    continue

                status_map[x, y, z_idx] = STATUS_OK
                for name, value in values.items():
                    if name not in maps:
                        maps[name] = np.full(output_shape, np.nan)
                    maps[name][x, y, z_idx] = value

    successful = int(np.sum(status_map == STATUS_OK))
    print(f"Measurement maps: {successful} ok, {len(failures)} failed "
          f"({', '.join(sorted(maps)) or 'no outputs'})")

    return {
        'maps': maps,
        'status_map': status_map,
        'failures': failures,
        'metadata': {
            'z_slice': z_slice,
            'successful_voxels': successful,
            'failed_voxels': len(failures),
        }
    }


def visualize_cbv_map(cbv_results: Dict, z_slice: Optional[int] = None,
                      save_path: Optional[str] = None, show: bool = True):
    """
    Show the CBV map next to the per-voxel status map.

    Parameters
    ----------
    cbv_results : dict
        Output of create_cbv_map()
    z_slice : int, optional
        Image slice to show (middle slice by default). For a single-slice
        map only the slice it was created from is accepted
    save_path : str, optional
        Path to save the figure
    show : bool
        Call plt.show() after drawing

    Returns
    -------
    matplotlib.figure.Figure
    """
    cbv_map = cbv_results['cbv_map']
    status_map = cbv_results['status_map']
    metadata = cbv_results['metadata']

    mapped_slice = metadata['z_slice']
    if mapped_slice is not None:
        if z_slice is not None and z_slice != mapped_slice:
            raise IndexError(f"Map holds only slice {mapped_slice}, got z_slice={z_slice}")
        z_slice, z_idx = mapped_slice, 0
    else:
        if z_slice is None:
            z_slice = cbv_map.shape[2] // 2
        if not 0 <= z_slice < cbv_map.shape[2]:
            raise IndexError(f"Z-index {z_slice} exceeds available slices ({cbv_map.shape[2]})")
        z_idx = z_slice
    cbv_slice = cbv_map[:, :, z_idx].T
    status_slice = status_map[:, :, z_idx].T

    set_cbv_style()

    fig, axes = plt.subplots(1, 2, figsize=(13, 6))
    fig.subplots_adjust(top=0.85, bottom=0.1, left=0.06, right=0.95, wspace=0.25)
    fig.suptitle(f"CBV Map (z={z_slice}) - {metadata['normalization_source']} normalization",
                 fontsize=14, fontweight='bold', y=0.96)

    roi_overlay = cbv_results['roi_mask'].T.astype(float) if 'roi_mask' in cbv_results else None

    ax = axes[0]
    im1 = ax.imshow(cbv_slice, cmap='rainbow', origin='lower')
    ax.set_title('CBV baseline integral')
    ax.set_xlabel('X (voxels)')
    ax.set_ylabel('Y (voxels)')
    if roi_overlay is not None:
        ax.contour(roi_overlay, levels=[0.5], colors='red', linewidths=2, alpha=0.8)
    plt.colorbar(im1, ax=ax, fraction=0.046)

    ax = axes[1]
    im2 = ax.imshow(status_slice, cmap='viridis', vmin=STATUS_NOT_PROCESSED,
                    vmax=STATUS_FAILED, origin='lower')
    ax.set_title('Status (-1 skipped, 0 ok, 1 void, 2 failed)')
    ax.set_xlabel('X (voxels)')
    ax.set_ylabel('Y (voxels)')
    cbar = plt.colorbar(im2, ax=ax, fraction=0.046,
                        ticks=[STATUS_NOT_PROCESSED, STATUS_OK, STATUS_VOID, STATUS_FAILED])
    cbar.ax.set_yticklabels(['skipped', 'ok', 'void', 'failed'])

    stats_text = (f"Success: {metadata['successful_voxels']}/{metadata['total_positions']} "
                  f"({metadata['success_rate']:.1f}%)\n"
                  f"Void: {metadata['void_voxels']}  Failed: {metadata['failed_voxels']}")
    fig.text(0.5, 0.02, stats_text, ha='center', fontsize=10,
             bbox=dict(boxstyle="round,pad=0.3", facecolor="lightyellow"))

    if save_path:
        plt.savefig(save_path, dpi=150, bbox_inches='tight')
        print(f"CBV map saved to: {save_path}")

    if show:
        plt.show()

    return fig


def print_progress(progress_pct: float, current: int, total: int) -> None:
    """Example progress callback that prints progress."""
    if current % 1000 == 0 or progress_pct >= 100:
        print(f"  Progress: {progress_pct:.1f}% ({current}/{total})")
