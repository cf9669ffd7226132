"""
Exception types raised by the CBV model.
"""

from typing import Optional, Tuple


class ConfigurationError(ValueError):
    """Invalid acquisition-level input. Raised before any voxel is evaluated."""


class VoxelComputationError(ValueError):
    """
    Evaluation of a single voxel failed.

    Parameters
    ----------
    message : str
        Human readable description
    reason : str
        Short machine readable tag, e.g. 'bolus_not_found'
    window : tuple of int, optional
        (start, end) bolus window involved in the failure
    """

    def __init__(self, message: str, reason: str = 'computation_failed',
                 window: Optional[Tuple[int, int]] = None):
        super().__init__(message)
        self.reason = reason
        self.window = window


class BolusNotFoundError(VoxelComputationError):
    """The located bolus window is empty or lies outside the baselines."""

    def __init__(self, message: str, window: Optional[Tuple[int, int]] = None):
        super().__init__(message, reason='bolus_not_found', window=window)
