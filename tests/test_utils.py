"""
FaceMesh helper tests: iris features, the raw viewport mapping and the
face framing box.
"""

from types import SimpleNamespace

import pytest

from gaze_system.coordinator.clock import CentralClock
from gaze_system.sensors.eye_tracking.config import EyeTrackingConfig
from gaze_system.sensors.eye_tracking.utils import (
    extract_features,
    face_center,
    feedback_box,
    features_to_viewport,
    point_in_box,
)


def landmarks_with_centered_iris():
    config = EyeTrackingConfig()
    points = [SimpleNamespace(x=0.5, y=0.5) for _ in range(478)]
    # Eyes 0.1 wide, iris halfway between the corners.
    points[config.left_eye_outer] = SimpleNamespace(x=0.30, y=0.40)
    points[config.left_eye_inner] = SimpleNamespace(x=0.40, y=0.40)
    points[config.left_iris_idx] = SimpleNamespace(x=0.35, y=0.40)
    points[config.right_eye_inner] = SimpleNamespace(x=0.60, y=0.40)
    points[config.right_eye_outer] = SimpleNamespace(x=0.70, y=0.40)
    points[config.right_iris_idx] = SimpleNamespace(x=0.65, y=0.40)
    return points


def test_centered_iris_features():
    features = extract_features(landmarks_with_centered_iris(), 640, 480, EyeTrackingConfig())
    assert features.tolist() == pytest.approx([0.5, 0.0, 0.5, 0.0], abs=1e-4)


def test_centered_features_map_to_viewport_center():
    config = EyeTrackingConfig()
    features = extract_features(landmarks_with_centered_iris(), 640, 480, config)
    x, y = features_to_viewport(features, (1920, 1080), config)
    assert x == pytest.approx(960.0, abs=1.0)
    assert y == pytest.approx(540.0, abs=1.0)


def test_feature_mapping_clips_and_mirrors():
    config = EyeTrackingConfig(mirror_x=True)
    far_left = [0.0, -5.0, 0.0, -5.0]
    assert features_to_viewport(far_left, (100, 50), config) == (100.0, 0.0)

    config.mirror_x = False
    assert features_to_viewport(far_left, (100, 50), config) == (0.0, 0.0)


def test_face_center_averages_landmarks():
    points = [SimpleNamespace(x=0.2, y=0.4), SimpleNamespace(x=0.6, y=0.8)]
    assert face_center(points) == pytest.approx((0.4, 0.6))
    assert face_center(points, [1]) == pytest.approx((0.6, 0.8))


def test_feedback_box_is_clipped_to_frame():
    box = feedback_box(1280, 720, 2.0)
    assert box == (0, 0, 1280, 720)
    assert point_in_box(10, 10, box)


def test_feedback_box_unit_ratio_is_centered_square():
    box = feedback_box(1280, 720, 1.0)
    assert box == (280, 0, 720, 720)
    assert not point_in_box(100, 360, box)
    assert point_in_box(640, 360, box)


def test_clock_is_strictly_increasing():
    clock = CentralClock()
    stamps = [clock.now_ms() for _ in range(1000)]
    assert all(b > a for a, b in zip(stamps, stamps[1:]))
    assert clock.get_stats()['total_calls'] == 1000
