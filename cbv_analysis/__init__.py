"""
CBVAnalysis - cerebral blood volume baseline integral for dynamic susceptibility contrast MRI.

This package provides tools for:
- Deriving pre/post bolus baseline windows from a global time-activity curve
- Rejecting air voxels and locating the bolus passage per voxel
- Drift correction, dR = -ln(S/S0) conversion and bolus integration
- White-matter normalization and CBV mapping over 4D data
- Model-free curve measurements (statistics, AUC, interleaved profile,
  reference-curve comparison, active rise time) and their maps
"""

from .errors import ConfigurationError, VoxelComputationError, BolusNotFoundError
from .model import compute_cbv_integral, plot_cbv_results, print_cbv_summary
from .pipeline import (CBVConfig, CBVModel, VoxelResult, VOID_VOXEL, init_cbv_model,
                       close_cbv_model, evaluate_cbv, evaluate_cbv_safely)
from .measurements import (basic_measurements, area_under_curve, interleaved_profile,
                           reference_curve_comparison, active_rise_time)
from .parameter_mapping import create_cbv_map, create_measurement_maps, visualize_cbv_map

__version__ = "1.0.0"
__all__ = [
    "ConfigurationError",
    "VoxelComputationError",
    "BolusNotFoundError",
    "compute_cbv_integral",
    "plot_cbv_results",
    "print_cbv_summary",
    "CBVConfig",
    "CBVModel",
    "VoxelResult",
    "VOID_VOXEL",
    "init_cbv_model",
    "close_cbv_model",
    "evaluate_cbv",
    "evaluate_cbv_safely",
    "basic_measurements",
    "area_under_curve",
    "interleaved_profile",
    "reference_curve_comparison",
    "active_rise_time",
    "create_cbv_map",
    "create_measurement_maps",
    "visualize_cbv_map"
]
