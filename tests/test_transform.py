"""
Calibration transform tests: affine, bilinear residual grid, viewport
rescaling and clamping.
"""

import math

import pytest

from gaze_system.sensors.eye_tracking.transform import (
    AffineTransform,
    CalibrationModel,
    GazePoint,
    ResidualGrid,
    Viewport,
    apply_affine,
    apply_calibration,
    apply_grid_residual,
    bilinear,
    calibrate_point,
)

FULL_HD = Viewport(1920, 1080)


def grid_model(size, dx, dy, ref=(0, 0), transform=None):
    return CalibrationModel(
        transform=transform,
        grid=ResidualGrid.from_lists(size, dx, dy),
        reference_width=ref[0],
        reference_height=ref[1],
    )


def test_no_model_is_identity():
    assert apply_calibration(100.0, 200.0, None, FULL_HD) == (100.0, 200.0)


def test_empty_model_is_identity():
    assert apply_calibration(321.5, 42.0, CalibrationModel(), FULL_HD) == (321.5, 42.0)


def test_affine_applies_all_coefficients():
    t = AffineTransform(a=2.0, b=0.5, c=10.0, d=-1.0, e=3.0, f=4.0)
    assert apply_affine(10.0, 20.0, t) == (2 * 10 + 0.5 * 20 + 10, -10 + 3 * 20 + 4)


def test_bilinear_exact_at_lattice_nodes():
    values = [float(i) for i in range(9)]
    for row in range(3):
        for col in range(3):
            assert bilinear(values, 3, col / 2, row / 2) == pytest.approx(row * 3 + col)


def test_bilinear_midpoint_averages_corners():
    assert bilinear([0.0, 10.0, 20.0, 30.0], 2, 0.5, 0.5) == pytest.approx(15.0)


def test_grid_offset_at_right_edge_node():
    model = grid_model(2, [0, 10, 0, 10], [0, 0, 0, 0], ref=(100, 100))
    x, y = apply_grid_residual(100.0, 0.0, model, Viewport(100, 100))
    assert x == pytest.approx(110.0)
    assert y == pytest.approx(0.0)


def test_symmetric_grid_leaves_center_unchanged():
    model = grid_model(2, [5, -5, 5, -5], [0, 0, 0, 0], ref=(1920, 1080))
    assert apply_calibration(960.0, 540.0, model, FULL_HD) == pytest.approx((960.0, 540.0))


def test_grid_offsets_scale_with_viewport():
    model = grid_model(2, [10, 10, 10, 10], [5, 5, 5, 5], ref=(100, 100))
    x, y = apply_grid_residual(50.0, 50.0, model, Viewport(200, 200))
    assert x == pytest.approx(70.0)
    assert y == pytest.approx(60.0)


def test_missing_reference_size_uses_viewport():
    model = grid_model(2, [4, 4, 4, 4], [0, 0, 0, 0])
    x, _ = apply_grid_residual(10.0, 10.0, model, Viewport(400, 300))
    assert x == pytest.approx(14.0)


def test_invalid_grid_is_ignored():
    short = grid_model(2, [1, 2, 3], [1, 2, 3], ref=(100, 100))
    tiny = grid_model(1, [50], [50], ref=(100, 100))
    assert apply_grid_residual(10.0, 10.0, short, Viewport(100, 100)) == (10.0, 10.0)
    assert apply_grid_residual(10.0, 10.0, tiny, Viewport(100, 100)) == (10.0, 10.0)


def test_result_is_clamped_to_viewport():
    push_right = CalibrationModel(transform=AffineTransform(c=5000.0, f=-5000.0))
    assert apply_calibration(100.0, 100.0, push_right, FULL_HD) == (1920.0, 0.0)


def test_affine_then_grid():
    model = grid_model(
        2, [1, 1, 1, 1], [2, 2, 2, 2], ref=(100, 100),
        transform=AffineTransform(c=10.0, f=20.0),
    )
    assert apply_calibration(0.0, 0.0, model, Viewport(100, 100)) == pytest.approx((11.0, 22.0))


def test_calibrate_point_keeps_metadata():
    point = GazePoint(x=5000.0, y=-10.0, confidence=0.7, timestamp_ms=1234, source='fake')
    out = calibrate_point(point, None, FULL_HD)
    assert (out.x, out.y) == (1920.0, 0.0)
    assert out.confidence == 0.7
    assert out.timestamp_ms == 1234
    assert out.source == 'fake'


def test_from_dict_drops_malformed_grid():
    model = CalibrationModel.from_dict({
        'transform': {'a': 1, 'b': 0, 'c': 3, 'd': 0, 'e': 1, 'f': 4},
        'grid': {'size': 3, 'dx': [0, 1], 'dy': [0, 1]},
        'referenceWidth': 800,
        'referenceHeight': 600,
    })
    assert model.grid is None
    assert model.transform.c == 3.0
    assert (model.reference_width, model.reference_height) == (800, 600)


def test_model_dict_form_restores_grid():
    original = grid_model(2, [1, 2, 3, 4], [5, 6, 7, 8], ref=(640, 480))
    restored = CalibrationModel.from_dict(original.to_dict())
    assert restored.grid.size == 2
    assert restored.grid.dx.tolist() == [1.0, 2.0, 3.0, 4.0]
    assert restored.grid.dy.tolist() == [5.0, 6.0, 7.0, 8.0]
    assert restored.transform is None


@pytest.mark.parametrize('x, y', [
    (math.nan, 100.0),
    (100.0, math.nan),
    (math.inf, 100.0),
    (-math.inf, math.inf),
])
def test_non_finite_input_is_clamped_without_grid(x, y):
    out = apply_calibration(x, y, CalibrationModel(transform=AffineTransform()), Viewport(1000, 800))
    assert all(math.isfinite(v) for v in out)
    assert 0.0 <= out[0] <= 1000.0
    assert 0.0 <= out[1] <= 800.0


@pytest.mark.parametrize('x, y', [
    (math.nan, 100.0),
    (math.inf, 100.0),
    (100.0, -math.inf),
])
def test_non_finite_input_is_clamped_with_grid(x, y):
    model = grid_model(2, [5, 5, 5, 5], [5, 5, 5, 5], ref=(1000, 800))
    out = apply_calibration(x, y, model, Viewport(1000, 800))
    assert all(math.isfinite(v) for v in out)
    assert 0.0 <= out[0] <= 1000.0
    assert 0.0 <= out[1] <= 800.0


def test_nan_clamps_to_lower_edge_and_inf_to_upper():
    assert apply_calibration(math.nan, math.inf, None, Viewport(1000, 800)) == (0.0, 800.0)


def test_non_finite_grid_offset_is_skipped():
    model = grid_model(2, [math.nan] * 4, [2, 2, 2, 2], ref=(100, 100))
    assert apply_calibration(50.0, 50.0, model, Viewport(100, 100)) == pytest.approx((50.0, 52.0))


def test_bilinear_tolerates_nan_coordinates():
    assert bilinear([1.0, 2.0, 3.0, 4.0], 2, math.nan, math.nan) == 1.0
