"""
Tests for CBV mapping over a 4D image.
"""

from functools import partial
from pathlib import Path

import numpy as np
import pytest
import matplotlib.pyplot as plt

from cbv_analysis.parameter_mapping import (
    STATUS_NOT_PROCESSED,
    STATUS_OK,
    STATUS_VOID,
    STATUS_FAILED,
    create_cbv_map,
    create_measurement_maps,
    visualize_cbv_map,
    print_progress,
)
from cbv_analysis.measurements import active_rise_time, interleaved_profile


@pytest.fixture
def image_4d(global_curve, air_curve, early_dip_curve):
    """3x2x2 image: tissue, air and bolus-failure voxels on two slices."""
    image = np.zeros((3, 2, 2, 14))
    for z in range(2):
        image[0, 0, z] = global_curve
        image[0, 1, z] = global_curve * 1.1
        image[1, 0, z] = air_curve
        image[1, 1, z] = early_dip_curve
        image[2, 0, z] = global_curve
        image[2, 1, z] = air_curve
    return image


class TestCreateCBVMap:

    def test_status_per_voxel(self, image_4d, model):
        results = create_cbv_map(image_4d, model)

        status = results['status_map']
        assert status.shape == (3, 2, 2)
        assert np.all(status[0, :, :] == STATUS_OK)
        assert np.all(status[1, 0, :] == STATUS_VOID)
        assert np.all(status[1, 1, :] == STATUS_FAILED)

    def test_values_only_for_ok_voxels(self, image_4d, model, global_curve):
        results = create_cbv_map(image_4d, model)

        cbv = results['cbv_map']
        assert cbv[0, 0, 0] == model.evaluate(global_curve)
        assert np.isnan(cbv[1, 0, 0])
        assert np.isnan(cbv[1, 1, 0])
        np.testing.assert_array_equal(results['mask'], ~np.isnan(cbv))

    def test_failures_recorded(self, image_4d, model):
        results = create_cbv_map(image_4d, model)
        assert results['failures'] == {(1, 1, 0): 'bolus_not_found',
                                       (1, 1, 1): 'bolus_not_found'}
        assert results['metadata']['failed_voxels'] == 2
        assert results['metadata']['void_voxels'] == 4
        assert results['metadata']['successful_voxels'] == 6

    def test_single_slice(self, image_4d, model):
        results = create_cbv_map(image_4d, model, z_slice=1)
        assert results['cbv_map'].shape == (3, 2, 1)
        assert results['failures'] == {(1, 1, 1): 'bolus_not_found'}

    def test_roi_mask_limits_processing(self, image_4d, model):
        roi_mask = np.zeros((3, 2), dtype=bool)
        roi_mask[0, 0] = True
        results = create_cbv_map(image_4d, model, z_slice=0, roi_mask=roi_mask)

        assert results['metadata']['total_positions'] == 1
        assert results['status_map'][0, 0, 0] == STATUS_OK
        assert results['status_map'][1, 0, 0] == STATUS_NOT_PROCESSED
        np.testing.assert_array_equal(results['roi_mask'], roi_mask)

    def test_progress_callback(self, image_4d, model):
        calls = []
        create_cbv_map(image_4d, model, progress_callback=lambda *args: calls.append(args))
        assert calls[-1] == (100.0, 12, 12)

    def test_time_dimension_mismatch(self, image_4d, model):
        with pytest.raises(ValueError, match="time points"):
            create_cbv_map(image_4d[..., :10], model)

    def test_z_slice_out_of_range(self, image_4d, model):
        with pytest.raises(IndexError):
            create_cbv_map(image_4d, model, z_slice=5)

    def test_prints_summary(self, image_4d, model, capsys):
        create_cbv_map(image_4d, model)
        out = capsys.readouterr().out
        assert "Successful: 6/12" in out


class TestVisualizeCBVMap:

    def test_saves_figure(self, image_4d, model, tmp_path):
        results = create_cbv_map(image_4d, model)
        save_path = tmp_path / "cbv_map.png"

        fig = visualize_cbv_map(results, save_path=str(save_path), show=False)
        try:
            assert Path(save_path).exists()
        finally:
            plt.close(fig)

    def test_with_roi_overlay(self, image_4d, model):
        roi_mask = np.ones((3, 2), dtype=bool)
        roi_mask[2, 1] = False
        results = create_cbv_map(image_4d, model, roi_mask=roi_mask)

        fig = visualize_cbv_map(results, z_slice=0, show=False)
        plt.close(fig)

    def test_single_slice_map_accepts_its_slice(self, image_4d, model):
        results = create_cbv_map(image_4d, model, z_slice=1)
        fig = visualize_cbv_map(results, z_slice=1, show=False)
        try:
            assert len(fig.axes) == 4
        finally:
            plt.close(fig)

    def test_single_slice_map_rejects_other_slice(self, image_4d, model):
        results = create_cbv_map(image_4d, model, z_slice=1)
        with pytest.raises(IndexError, match="only slice 1"):
            visualize_cbv_map(results, z_slice=0, show=False)

    def test_slice_beyond_full_map(self, image_4d, model):
        results = create_cbv_map(image_4d, model)
        with pytest.raises(IndexError, match="exceeds"):
            visualize_cbv_map(results, z_slice=2, show=False)


def test_print_progress(capsys):
    print_progress(50.0, 500, 1000)
    assert capsys.readouterr().out == ""
    print_progress(100.0, 1000, 1000)
    assert "100.0%" in capsys.readouterr().out


class TestCreateMeasurementMaps:

    def test_named_maps_and_failures(self, image_4d, absolute_times):
        measure = partial(active_rise_time, time_array=absolute_times, conversion='delta_r')
        results = create_measurement_maps(image_4d, measure)

        assert set(results['maps']) == {'rise_time', 'slope'}
        assert results['maps']['rise_time'].shape == (3, 2, 2)
        assert np.all(results['status_map'] == STATUS_OK)
        assert results['failures'] == {}
        assert results['maps']['rise_time'][1, 0, 0] == pytest.approx(results['maps']['rise_time'][0, 0, 0])

    def test_failures_leave_nan(self, absolute_times):
        image = np.zeros((2, 1, 1, 14))
        image[0, 0, 0] = 100.0
        image[1, 0, 0] = np.linspace(100.0, 200.0, 14)
        measure = partial(active_rise_time, time_array=absolute_times)
        results = create_measurement_maps(image, measure)

        assert results['failures'] == {(0, 0, 0): 'threshold_not_crossed'}
        assert results['status_map'][0, 0, 0] == STATUS_FAILED
        assert np.isnan(results['maps']['rise_time'][0, 0, 0])
        assert results['maps']['rise_time'][1, 0, 0] > 0

    def test_roi_and_single_slice(self, image_4d):
        roi_mask = np.zeros((3, 2), dtype=bool)
        roi_mask[0, :] = True
        results = create_measurement_maps(image_4d, interleaved_profile, z_slice=1,
                                          roi_mask=roi_mask)

        assert results['maps']['odd_mean'].shape == (3, 2, 1)
        assert results['metadata']['successful_voxels'] == 2
        assert results['status_map'][2, 0, 0] == STATUS_NOT_PROCESSED
