"""
Gaze Coordinate Transform
Affine correction followed by a bilinear residual grid, rescaled to the viewport.

Every function here is pure and cheap enough to run once per engine frame.
Missing calibration pieces degrade to identity instead of raising.
"""

import math
import logging
from dataclasses import dataclass, field
from typing import NamedTuple, Optional, Sequence, Tuple

import numpy as np

logger = logging.getLogger(__name__)


class Viewport(NamedTuple):
    width: int
    height: int


class GazePoint(NamedTuple):
    """One gaze estimate in viewport pixels; raw and calibrated points share it"""
    x: float
    y: float
    confidence: float
    timestamp_ms: int
    source: str


@dataclass(frozen=True)
class AffineTransform:
    """(x, y) -> (a*x + b*y + c, d*x + e*y + f)"""
    a: float = 1.0
    b: float = 0.0
    c: float = 0.0
    d: float = 0.0
    e: float = 1.0
    f: float = 0.0

    @classmethod
    def identity(cls) -> 'AffineTransform':
        return cls()

    def to_dict(self) -> dict:
        return {'a': self.a, 'b': self.b, 'c': self.c, 'd': self.d, 'e': self.e, 'f': self.f}

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> Optional['AffineTransform']:
        if not data:
            return None
        return cls(**{k: float(data.get(k, getattr(cls, k))) for k in 'abcdef'})


@dataclass(frozen=True, eq=False)
class ResidualGrid:
    """Row-major size x size lattice of per-axis offsets over normalized [0,1]^2"""
    size: int
    dx: np.ndarray = field(repr=False)
    dy: np.ndarray = field(repr=False)

    @classmethod
    def from_lists(cls, size: int, dx: Sequence[float], dy: Sequence[float]) -> 'ResidualGrid':
        return cls(
            size=int(size),
            dx=np.asarray(dx, dtype=np.float64),
            dy=np.asarray(dy, dtype=np.float64),
        )

    @property
    def is_valid(self) -> bool:
        n = self.size * self.size
        return self.size >= 2 and self.dx.size == n and self.dy.size == n

    def to_dict(self) -> dict:
        return {'size': self.size, 'dx': self.dx.tolist(), 'dy': self.dy.tolist()}


@dataclass(frozen=True)
class CalibrationModel:
    """
    Immutable calibration snapshot.

    Replaced as a whole whenever calibration changes, so a frame being
    transformed always sees a complete model.
    """
    transform: Optional[AffineTransform] = None
    grid: Optional[ResidualGrid] = None
    reference_width: int = 0
    reference_height: int = 0

    def to_dict(self) -> dict:
        return {
            'transform': self.transform.to_dict() if self.transform else None,
            'grid': self.grid.to_dict() if self.grid else None,
            'referenceWidth': self.reference_width,
            'referenceHeight': self.reference_height,
        }

    @classmethod
    def from_dict(cls, data: dict) -> 'CalibrationModel':
        """
        Build a model from its stored dict form.

        A grid that fails the size/length invariant is dropped with a warning
        rather than rejected, so the affine part still applies.
        """
        grid = None
        raw_grid = data.get('grid')
        if raw_grid:
            grid = ResidualGrid.from_lists(
                raw_grid.get('size', 0), raw_grid.get('dx', ()), raw_grid.get('dy', ())
            )
            if not grid.is_valid:
                logger.warning(f"Discarding malformed residual grid (size={grid.size})")
                grid = None
        return cls(
            transform=AffineTransform.from_dict(data.get('transform')),
            grid=grid,
            reference_width=int(data.get('referenceWidth') or 0),
            reference_height=int(data.get('referenceHeight') or 0),
        )


def _clamp(value: float, lower: float, upper: float) -> float:
    if math.isnan(value):
        return lower
    return lower if value < lower else upper if value > upper else value


def _finite(x: float, y: float) -> bool:
    return math.isfinite(x) and math.isfinite(y)


def apply_affine(x: float, y: float, transform: Optional[AffineTransform]) -> Tuple[float, float]:
    if transform is None:
        return x, y
    t = transform
    return t.a * x + t.b * y + t.c, t.d * x + t.e * y + t.f


def bilinear(values: np.ndarray, size: int, nx: float, ny: float) -> float:
    """
    Interpolate a row-major size x size lattice at normalized (nx, ny).

    Returns the stored value exactly when (nx, ny) falls on a lattice node.
    """
    top = size - 1
    gx = _clamp(nx * top, 0.0, float(top))
    gy = _clamp(ny * top, 0.0, float(top))
    x0 = int(math.floor(gx))
    y0 = int(math.floor(gy))
    x1 = min(top, x0 + 1)
    y1 = min(top, y0 + 1)
    tx = gx - x0
    ty = gy - y0

    v00 = float(values[y0 * size + x0])
    v10 = float(values[y0 * size + x1])
    v01 = float(values[y1 * size + x0])
    v11 = float(values[y1 * size + x1])

    upper = v00 + (v10 - v00) * tx
    lower = v01 + (v11 - v01) * tx
    return upper + (lower - upper) * ty


def apply_grid_residual(
    x: float,
    y: float,
    model: Optional[CalibrationModel],
    viewport: Viewport,
) -> Tuple[float, float]:
    if model is None or model.grid is None or not model.grid.is_valid:
        return x, y
    if not _finite(x, y):
        return x, y

    ref_w = model.reference_width or viewport.width
    ref_h = model.reference_height or viewport.height
    if ref_w <= 0 or ref_h <= 0:
        return x, y

    grid = model.grid
    nx = x / ref_w
    ny = y / ref_h
    offset_x = bilinear(grid.dx, grid.size, nx, ny) * (viewport.width / ref_w)
    offset_y = bilinear(grid.dy, grid.size, nx, ny) * (viewport.height / ref_h)
    # A non-finite stored offset contributes nothing.
    return (
        x + offset_x if math.isfinite(offset_x) else x,
        y + offset_y if math.isfinite(offset_y) else y,
    )


def apply_calibration(
    x: float,
    y: float,
    model: Optional[CalibrationModel],
    viewport: Viewport,
) -> Tuple[float, float]:
    """
    Affine, then residual grid, then clamp to the visible viewport.

    Non-finite input skips the correction; a stage that produces a
    non-finite result is skipped as well. NaN clamps to the lower edge.
    """
    cx, cy = x, y
    if _finite(x, y):
        ax, ay = apply_affine(x, y, model.transform if model is not None else None)
        if _finite(ax, ay):
            cx, cy = ax, ay
        gx, gy = apply_grid_residual(cx, cy, model, viewport)
        if _finite(gx, gy):
            cx, cy = gx, gy
    return (
        _clamp(cx, 0.0, float(viewport.width)),
        _clamp(cy, 0.0, float(viewport.height)),
    )


def calibrate_point(
    point: GazePoint,
    model: Optional[CalibrationModel],
    viewport: Viewport,
) -> GazePoint:
    cx, cy = apply_calibration(point.x, point.y, model, viewport)
    return point._replace(x=cx, y=cy)
