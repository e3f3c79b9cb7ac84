"""
Eye Tracking Utility Functions
Iris feature extraction and the uncalibrated feature -> viewport mapping
used by the FaceMesh engine
"""

from typing import Optional, Sequence, Tuple

import numpy as np

from .config import EyeTrackingConfig


def extract_features(landmarks, img_w: int, img_h: int, config: EyeTrackingConfig) -> np.ndarray:
    """
    Iris position relative to each eye's corners

    Args:
        landmarks: FaceMesh landmark list (normalized x/y)
        img_w:     Frame width in pixels
        img_h:     Frame height in pixels
        config:    Landmark indices

    Returns:
        [left_x, left_y, right_x, right_y]; x in eye-width units from the
        outer corner, y scaled offset from the eye centre line
    """
    def norm_iris(iris_idx, inner_idx, outer_idx):
        iris = landmarks[iris_idx]
        inner = landmarks[inner_idx]
        outer = landmarks[outer_idx]
        ix, iy = iris.x * img_w, iris.y * img_h
        inx = inner.x * img_w
        outx = outer.x * img_w
        eye_w = abs(inx - outx) + 1e-6
        eye_cy = (inner.y + outer.y) / 2 * img_h
        return abs(ix - outx) / eye_w, ((iy - eye_cy) * 5) / eye_w

    lx, ly = norm_iris(config.left_iris_idx, config.left_eye_inner, config.left_eye_outer)
    rx, ry = norm_iris(config.right_iris_idx, config.right_eye_inner, config.right_eye_outer)
    return np.array([lx, ly, rx, ry], dtype=np.float32)


def features_to_viewport(
    features: np.ndarray,
    viewport: Tuple[int, int],
    config: EyeTrackingConfig,
) -> Tuple[float, float]:
    """
    Linear map from averaged iris features to viewport pixels

    This is the engine's raw, uncalibrated estimate; the calibration model
    corrects it downstream.
    """
    fx = float((features[0] + features[2]) / 2)
    fy = float((features[1] + features[3]) / 2)

    x_lo, x_hi = config.iris_x_range
    y_lo, y_hi = config.iris_y_range
    nx = float(np.clip((fx - x_lo) / (x_hi - x_lo), 0.0, 1.0))
    ny = float(np.clip((fy - y_lo) / (y_hi - y_lo), 0.0, 1.0))
    if config.mirror_x:
        nx = 1.0 - nx

    width, height = viewport
    return nx * width, ny * height


def face_center(landmarks, indices: Optional[Sequence[int]] = None) -> Tuple[float, float]:
    """Mean normalized position of the given landmarks (all of them by default)"""
    points = [landmarks[i] for i in indices] if indices else list(landmarks)
    xs = np.fromiter((p.x for p in points), dtype=np.float64)
    ys = np.fromiter((p.y for p in points), dtype=np.float64)
    return float(xs.mean()), float(ys.mean())


def feedback_box(frame_w: int, frame_h: int, ratio: float) -> Tuple[int, int, int, int]:
    """
    Centered framing box (x, y, w, h) for the face

    Side is the short frame side times ratio, clipped to the frame. A ratio
    of long/short makes the box span the full frame width.
    """
    side = min(frame_w, frame_h) * max(ratio, 0.0)
    box_w = int(min(frame_w, side))
    box_h = int(min(frame_h, side))
    return (frame_w - box_w) // 2, (frame_h - box_h) // 2, box_w, box_h


def point_in_box(x: float, y: float, box: Tuple[int, int, int, int]) -> bool:
    bx, by, bw, bh = box
    return bx <= x <= bx + bw and by <= y <= by + bh
