"""
Acquisition-level setup and per-voxel evaluation of the CBV model.

``init_cbv_model`` runs once per acquisition: it builds the relative time
base, derives the baseline windows from the global curve, sets the air
threshold and computes the white-matter normalization. The returned
``CBVModel`` is read-only and can be shared by any number of voxel
evaluations.
"""

from dataclasses import dataclass
from typing import Dict, NamedTuple, Optional, Sequence, Tuple, Union

import numpy as np

from .baseline import BaselineWindows, PRE_N_THR, POST_N_THR, estimate_baseline_windows
from .bolus import is_air
from .curves import make_relative_time_array
from .errors import ConfigurationError, VoxelComputationError
from .model import compute_cbv_integral


# Samples of the global curve discarded before estimating baseline windows
PASS_START = 2

MIN_WORKING_LENGTH = 3


class _VoidVoxel:
    """Marker returned for voxels without measurable signal."""

    def __repr__(self):
        return 'VOID_VOXEL'

    def __bool__(self):
        return False


VOID_VOXEL = _VoidVoxel()


def _finite_number(value, name: str) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"{name} must be a number, got {value!r}") from e
    if not np.isfinite(number):
        raise ConfigurationError(f"{name} must be finite, got {value!r}")
    return number


@dataclass(frozen=True)
class CBVConfig:
    """
    Scalar settings of the CBV model.

    Parameters
    ----------
    background_threshold : float
        Multiplier of the noise level below which a TAC is treated as air
    skip_initial_time_points : int
        Number of leading frames ignored for every voxel
    pre_baseline_fraction, post_baseline_fraction : float
        Fraction of the drop to the global-curve minimum ending each baseline
    strict_baseline_windows : bool
        Fail initialization instead of warning on degenerate baseline windows
    """
    background_threshold: float = 20.0
    skip_initial_time_points: int = 0
    pre_baseline_fraction: float = PRE_N_THR
    post_baseline_fraction: float = POST_N_THR
    strict_baseline_windows: bool = False

    def __post_init__(self):
        if _finite_number(self.background_threshold, 'background_threshold') < 0:
            raise ConfigurationError("background_threshold must be a non-negative number")
        skip = _finite_number(self.skip_initial_time_points, 'skip_initial_time_points')
        if skip != int(skip) or skip < 0:
            raise ConfigurationError("skip_initial_time_points must be a non-negative integer")
        for name in ('pre_baseline_fraction', 'post_baseline_fraction'):
            value = _finite_number(getattr(self, name), name)
            if not 0 < value <= 1:
                raise ConfigurationError(f"{name} must be in (0, 1], got {value}")


class VoxelResult(NamedTuple):
    """Tagged outcome of one voxel: status is 'ok', 'void' or 'failed'."""
    status: str
    value: Optional[float] = None
    reason: Optional[str] = None
    window: Optional[Tuple[int, int]] = None

    @property
    def ok(self) -> bool:
        return self.status == 'ok'


def _read_only(array: np.ndarray) -> np.ndarray:
    array = np.array(array, dtype=float)
    array.setflags(write=False)
    return array


class CBVModel:
    """
    Read-only acquisition state shared by all voxel evaluations.

    Create with ``init_cbv_model``. Usable as a context manager; after
    ``close()`` evaluations raise ``RuntimeError``.
    """

    def __init__(self, time_array: np.ndarray, windows: BaselineWindows,
                 air_threshold: float, skip_times: int,
                 normalization: float = 1.0, normalization_source: str = 'none',
                 noise_level: float = 0.0, config: Optional[CBVConfig] = None):
        self._time_array = _read_only(time_array)
        self._num_timepoints = len(self._time_array)
        self._windows = windows
        self._air_threshold = float(air_threshold)
        self._skip_times = int(skip_times)
        self._normalization = float(normalization)
        self._normalization_source = normalization_source
        self._noise_level = float(noise_level)
        self._config = config or CBVConfig()
        self._closed = False

    @property
    def time_array(self) -> np.ndarray:
        self._check_open()
        return self._time_array

    @property
    def windows(self) -> BaselineWindows:
        return self._windows

    @property
    def air_threshold(self) -> float:
        return self._air_threshold

    @property
    def skip_times(self) -> int:
        return self._skip_times

    @property
    def normalization(self) -> float:
        return self._normalization

    @property
    def normalization_source(self) -> str:
        return self._normalization_source

    @property
    def noise_level(self) -> float:
        return self._noise_level

    @property
    def config(self) -> CBVConfig:
        return self._config

    @property
    def num_timepoints(self) -> int:
        return self._num_timepoints

    @property
    def working_length(self) -> int:
        return self._num_timepoints - self._skip_times

    @property
    def closed(self) -> bool:
        return self._closed

    def _check_open(self):
        if self._closed:
            raise RuntimeError("CBV model has been closed")

    def evaluate_details(self, curve: np.ndarray) -> Union[Dict, _VoidVoxel]:
        """Evaluate one raw TAC, returning the full results dict or VOID_VOXEL."""
        self._check_open()
        try:
            curve = np.asarray(curve, dtype=float)
        except (TypeError, ValueError) as e:
            raise VoxelComputationError(f"Curve is not numeric: {e}", reason='invalid_curve') from e
        if curve.ndim != 1 or len(curve) != self.num_timepoints:
            raise VoxelComputationError(
                f"Curve has {curve.size} samples, expected {self.num_timepoints}",
                reason='invalid_curve')

        if is_air(curve, self._air_threshold):
            return VOID_VOXEL

        return compute_cbv_integral(curve, self._time_array, self._windows,
                                    self._skip_times, self._normalization)

    def evaluate(self, curve: np.ndarray) -> Union[float, _VoidVoxel]:
        """
        Evaluate one raw TAC.

        Returns
        -------
        float or VOID_VOXEL
            Normalized CBV integral, or VOID_VOXEL for air voxels

        Raises
        ------
        VoxelComputationError
            If no valid bolus is found or a numeric guard trips
        """
        result = self.evaluate_details(curve)
        if result is VOID_VOXEL:
            return VOID_VOXEL
        return float(result['cbv'])

    def evaluate_safely(self, curve: np.ndarray) -> VoxelResult:
        """Evaluate one raw TAC, converting per-voxel failures to a tagged result."""
        try:
            value = self.evaluate(curve)
        except VoxelComputationError as e:
            return VoxelResult('failed', reason=e.reason, window=e.window)

        if value is VOID_VOXEL:
            return VoxelResult('void', reason='air')
        return VoxelResult('ok', value=value)

    def close(self) -> None:
        self._time_array = None
        self._closed = True

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_value, traceback):
        self.close()
        return False

    def __repr__(self):
        state = 'closed' if self._closed else f'{self.num_timepoints} frames'
        return (f"CBVModel({state}, skip={self._skip_times}, "
                f"pre_n={self._windows.pre_n}, post_n={self._windows.post_n}, "
                f"norm={self._normalization:.4g} [{self._normalization_source}])")


def _white_matter_normalization(model: CBVModel, roi_curves) -> Tuple[float, str]:
    """Compute 1 / integral of the white-matter ROI curve, or 1 without an ROI."""
    if roi_curves is None:
        return 1.0, 'none'

    roi_curves = list(roi_curves)
    if len(roi_curves) == 0:
        return 1.0, 'none'

    if len(roi_curves) > 1:
        raise ConfigurationError("This model requires no more than one white matter ROI")

    roi_tac = np.abs(np.asarray(roi_curves[0], dtype=float))
    if roi_tac.ndim != 1 or len(roi_tac) != model.num_timepoints:
        raise ConfigurationError(
            f"White matter ROI TAC must have {model.num_timepoints} samples")

    if is_air(roi_tac, model.air_threshold):
        raise ConfigurationError("White matter ROI TAC is incorrect (classified as air)")

    try:
        integral = model.evaluate(roi_tac)
    except VoxelComputationError as e:
        raise ConfigurationError(f"White matter ROI TAC could not be evaluated: {e}") from e

    if not np.isfinite(integral) or integral <= 0:
        raise ConfigurationError(f"White matter ROI integral must be positive, got {integral}")

    return 1.0 / integral, 'reference'


def init_cbv_model(global_curve: np.ndarray, absolute_times: np.ndarray,
                   noise_level: float, config: Optional[CBVConfig] = None,
                   num_timepoints: Optional[int] = None,
                   roi_curves: Optional[Sequence[np.ndarray]] = None) -> CBVModel:
    """
    Initialize the CBV model for one acquisition.

    Parameters
    ----------
    global_curve : np.ndarray
        Representative TAC of the acquisition (e.g. whole-volume average)
    absolute_times : np.ndarray
        Frame acquisition times
    noise_level : float
        Voxel noise estimate; the air threshold is
        ``config.background_threshold * noise_level``
    config : CBVConfig, optional
        Scalar settings, defaults to CBVConfig()
    num_timepoints : int, optional
        Expected frame count; defaults to ``len(absolute_times)``
    roi_curves : sequence of np.ndarray, optional
        At most one white-matter ROI TAC used for normalization

    Returns
    -------
    CBVModel
        Read-only acquisition state

    Raises
    ------
    ConfigurationError
        On any invalid acquisition-level input
    """
    config = config or CBVConfig()

    try:
        time_array = make_relative_time_array(absolute_times)
    except ValueError as e:
        raise ConfigurationError(f"Invalid frame times: {e}") from e

    if num_timepoints is None:
        num_timepoints = len(time_array)
    elif num_timepoints != len(time_array):
        raise ConfigurationError(
            f"Frame count {num_timepoints} does not match {len(time_array)} frame times")

    global_curve = np.asarray(global_curve, dtype=float)
    if global_curve.ndim != 1 or len(global_curve) != num_timepoints:
        raise ConfigurationError(f"Global curve must have {num_timepoints} samples")

    noise_level = _finite_number(noise_level, 'noise_level')
    if noise_level < 0:
        raise ConfigurationError("noise_level must be a non-negative number")

    skip_times = int(config.skip_initial_time_points)
    if skip_times >= num_timepoints:
        raise ConfigurationError(
            f"Cannot skip {skip_times} of {num_timepoints} time points")

    working_length = num_timepoints - skip_times
    if working_length < MIN_WORKING_LENGTH:
        raise ConfigurationError(
            f"Need at least {MIN_WORKING_LENGTH} working time points, got {working_length}")

    reference_curve = global_curve[PASS_START:PASS_START + working_length]
    windows = estimate_baseline_windows(reference_curve, working_length,
                                        config.pre_baseline_fraction,
                                        config.post_baseline_fraction,
                                        strict=config.strict_baseline_windows)

    air_threshold = config.background_threshold * noise_level

    model = CBVModel(time_array, windows, air_threshold, skip_times,
                     noise_level=noise_level, config=config)

    normalization, source = _white_matter_normalization(model, roi_curves)
    if source == 'none':
        return model

    model.close()
    return CBVModel(time_array, windows, air_threshold, skip_times,
                    normalization=normalization, normalization_source=source,
                    noise_level=noise_level, config=config)


def close_cbv_model(model: CBVModel) -> None:
    """Release the acquisition state."""
    model.close()


def evaluate_cbv(model: CBVModel, curve: np.ndarray) -> Union[float, _VoidVoxel]:
    """Evaluate one raw TAC; see CBVModel.evaluate."""
    return model.evaluate(curve)


def evaluate_cbv_safely(model: CBVModel, curve: np.ndarray) -> VoxelResult:
    """Evaluate one raw TAC; see CBVModel.evaluate_safely."""
    return model.evaluate_safely(curve)
