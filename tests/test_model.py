"""
Tests for the per-voxel CBV integral, the dR transform and result reporting.
"""

from pathlib import Path

import numpy as np
import pytest
import matplotlib.pyplot as plt

from cbv_analysis.baseline import BaselineWindows
from cbv_analysis.errors import BolusNotFoundError, VoxelComputationError
from cbv_analysis.model import (
    delta_r_transform,
    integrate_bolus,
    compute_cbv_integral,
    plot_cbv_results,
    print_cbv_summary,
)


def _trapezoid(values, times):
    return float(np.sum((values[1:] + values[:-1]) / 2.0 * np.diff(times)))


@pytest.fixture
def scenario_results(scenario_curve):
    time = np.arange(12, dtype=float) * 1.5
    return compute_cbv_integral(scenario_curve, time, BaselineWindows(4, 2))


class TestDeltaRTransform:

    def test_log_of_ratio(self):
        np.testing.assert_allclose(delta_r_transform([50.0, 25.0], 100.0),
                                   [np.log(2), np.log(4)])

    def test_upper_bound_exactly_one(self):
        assert delta_r_transform([100.0], 100.0)[0] == 0.0
        assert delta_r_transform([99.999], 100.0)[0] > 0.0

    def test_lower_bound(self):
        assert delta_r_transform([1.0], 100.0)[0] == 0.0
        assert delta_r_transform([1.01], 100.0)[0] > 0.0

    def test_non_positive_signal(self):
        result = delta_r_transform([0.0, -10.0], 100.0)
        assert np.all(result == 0.0)


class TestIntegrateBolus:

    def test_closed_index_range(self):
        delta_r = np.array([9.0, 1.0, 1.0, 1.0, 9.0])
        time = np.arange(5, dtype=float)
        assert integrate_bolus(delta_r, time, 1, 3) == pytest.approx(2.0)

    def test_normalization_scales(self):
        delta_r = np.array([1.0, 1.0, 1.0])
        time = np.array([0.0, 1.0, 2.0])
        assert integrate_bolus(delta_r, time, 0, 2, normalization=0.5) == pytest.approx(1.0)


class TestComputeCBVIntegral:

    def test_bolus_window(self, scenario_results):
        assert scenario_results['bolus_peak'] == 6
        assert scenario_results['bolus_start'] == 4
        assert scenario_results['bolus_end'] == 9

    def test_integral_matches_hand_computation(self, scenario_curve, scenario_results):
        time = np.arange(12, dtype=float) * 1.5
        pre_bl, post_bl = 99.5, 100.0
        slope = (post_bl - pre_bl) / (time[9] - time[4])
        corrected = scenario_curve[4:10] - slope * (time[4:10] - time[4])
        delta_r = -np.log(corrected / pre_bl)

        expected = _trapezoid(delta_r, time[4:10])
        assert scenario_results['integral'] == pytest.approx(expected)
        assert scenario_results['integral'] > 0

    def test_samples_outside_window_not_detrended(self, scenario_curve, scenario_results):
        corrected = scenario_results['corrected_curve']
        np.testing.assert_array_equal(corrected[:4], scenario_curve[:4])
        np.testing.assert_array_equal(corrected[10:], scenario_curve[10:])

    def test_normalization_applied(self, scenario_curve):
        time = np.arange(12, dtype=float)
        raw = compute_cbv_integral(scenario_curve, time, BaselineWindows(4, 2))
        scaled = compute_cbv_integral(scenario_curve, time, BaselineWindows(4, 2), normalization=2.0)
        assert scaled['cbv'] == pytest.approx(2.0 * raw['integral'])
        assert scaled['integral'] == raw['integral']

    def test_skip_times(self, scenario_curve):
        curve = np.concatenate([[5.0, 500.0], scenario_curve])
        time = np.arange(14, dtype=float)
        skipped = compute_cbv_integral(curve, time, BaselineWindows(4, 2), skip_times=2)
        direct = compute_cbv_integral(scenario_curve, time[2:], BaselineWindows(4, 2))
        assert skipped['integral'] == pytest.approx(direct['integral'])

    def test_flat_curve_integral_near_zero(self):
        curve = np.array([100.2, 99.9, 100.1, 100.0, 99.95, 99.8,
                          100.05, 99.9, 100.1, 100.0, 99.95, 100.1])
        results = compute_cbv_integral(curve, np.arange(12, dtype=float), BaselineWindows(3, 3))
        assert 0.0 <= results['integral'] < 0.01

    def test_bolus_inside_baseline_fails(self):
        curve = np.array([100, 50] + [100] * 10, dtype=float)
        with pytest.raises(BolusNotFoundError):
            compute_cbv_integral(curve, np.arange(12, dtype=float), BaselineWindows(4, 2))

    def test_zero_duration_bolus_fails(self, scenario_curve):
        with pytest.raises(VoxelComputationError) as excinfo:
            compute_cbv_integral(scenario_curve, np.zeros(12), BaselineWindows(4, 2))
        assert excinfo.value.reason == 'degenerate_time_window'

    def test_non_positive_baseline_fails(self):
        curve = -np.array([100, 100, 100, 98, 60, 40, 35, 42, 70, 95, 100, 100], dtype=float)
        with pytest.raises(VoxelComputationError) as excinfo:
            compute_cbv_integral(curve, np.arange(12, dtype=float), BaselineWindows(4, 2))
        assert excinfo.value.reason == 'invalid_baseline'

    def test_wrong_length_fails(self, scenario_curve):
        with pytest.raises(VoxelComputationError) as excinfo:
            compute_cbv_integral(scenario_curve[:10], np.arange(12, dtype=float), BaselineWindows(4, 2))
        assert excinfo.value.reason == 'invalid_curve'

    def test_non_finite_sample_fails(self, scenario_curve):
        scenario_curve[3] = np.nan
        with pytest.raises(VoxelComputationError, match="non-finite"):
            compute_cbv_integral(scenario_curve, np.arange(12, dtype=float), BaselineWindows(4, 2))


class TestReporting:

    def test_print_summary(self, scenario_results, capsys):
        print_cbv_summary(scenario_results)
        out = capsys.readouterr().out
        assert "CBV BASELINE INTEGRAL RESULTS" in out
        assert "Start index:  4" in out
        assert "End index:    9" in out

    def test_plot_saves_figure(self, scenario_results, tmp_path):
        save_path = tmp_path / "cbv_fit.png"
        fig = plot_cbv_results(scenario_results, save_path=str(save_path), show=False)
        try:
            assert Path(save_path).exists()
            assert len(fig.axes) == 2
        finally:
            plt.close(fig)
