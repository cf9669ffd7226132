"""
Shared fixtures for CBV model tests.
"""

import matplotlib
matplotlib.use('Agg')

import numpy as np
import pytest


# Bolus passage dipping to 35 at working index 6
SCENARIO_CURVE = [100, 100, 100, 98, 60, 40, 35, 42, 70, 95, 100, 100]


@pytest.fixture
def scenario_curve():
    """12-sample working TAC with a single bolus dip."""
    return np.array(SCENARIO_CURVE, dtype=float)


@pytest.fixture
def absolute_times():
    """14 frame times, 1.5 s apart, offset from zero."""
    return 1000.0 + np.arange(14) * 1.5


@pytest.fixture
def global_curve(scenario_curve):
    """Full 14-frame acquisition curve: two lead-in frames then the bolus."""
    return np.concatenate([[100.0, 100.0], scenario_curve])


@pytest.fixture
def air_curve(global_curve):
    """Curve whose smallest sample sits below the default air threshold."""
    return global_curve * 0.1


@pytest.fixture
def early_dip_curve():
    """Curve whose minimum falls inside the pre-baseline window."""
    working = [100, 50] + [100] * 10
    return np.array([100.0, 100.0] + working)


@pytest.fixture
def acquisition(global_curve, absolute_times):
    """Keyword arguments for a standard acquisition (skip 2, noise 1)."""
    from cbv_analysis.pipeline import CBVConfig

    return {
        'global_curve': global_curve,
        'absolute_times': absolute_times,
        'noise_level': 1.0,
        'config': CBVConfig(background_threshold=20.0, skip_initial_time_points=2),
    }


@pytest.fixture
def model(acquisition):
    from cbv_analysis.pipeline import init_cbv_model

    m = init_cbv_model(**acquisition)
    yield m
    m.close()
