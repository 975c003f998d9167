"""
POSTUREIQ Posture Service - Geometry Primitives

Pure functions over normalized image-space points (0-1, y grows downward).
Degenerate inputs return NaN instead of raising; callers treat NaN as
insufficient data.
"""

import math
from dataclasses import dataclass
from typing import Iterable, List, Optional

import numpy as np

from core.config import settings

_EPS = 1e-9


@dataclass(frozen=True)
class Point:
    """Virtual point (midpoints, projections) that quacks like a Landmark."""
    x: float
    y: float
    z: Optional[float] = None


def _vectors(*points) -> List[np.ndarray]:
    """Points as numpy vectors; 3D only when every point carries z."""
    use_z = all(getattr(p, "z", None) is not None for p in points)
    if use_z:
        return [np.array([p.x, p.y, p.z], dtype=float) for p in points]
    return [np.array([p.x, p.y], dtype=float) for p in points]


def angle_between(a, vertex, b) -> float:
    """
    Angle in degrees at `vertex` subtended by `a` and `b`.

    Returns NaN when either arm has zero length.
    """
    pa, pv, pb = _vectors(a, vertex, b)
    v1 = pa - pv
    v2 = pb - pv

    n1 = np.linalg.norm(v1)
    n2 = np.linalg.norm(v2)
    if n1 < _EPS or n2 < _EPS:
        return float("nan")

    cos_angle = np.clip(np.dot(v1, v2) / (n1 * n2), -1.0, 1.0)
    return float(np.degrees(np.arccos(cos_angle)))


def bend_angle(a, vertex, b) -> float:
    """Deviation from a straight line through a, vertex, b (0 when collinear)."""
    return 180.0 - angle_between(a, vertex, b)


def distance(a, b) -> float:
    pa, pb = _vectors(a, b)
    return float(np.linalg.norm(pb - pa))


def midpoint(a, b) -> Point:
    z = None
    if getattr(a, "z", None) is not None and getattr(b, "z", None) is not None:
        z = (a.z + b.z) / 2
    return Point((a.x + b.x) / 2, (a.y + b.y) / 2, z)


def level_difference(left, right, reference_scale: float = 1.0, axis: str = "y") -> float:
    """
    Signed difference between bilateral landmarks in real-world units.

    For the y axis a positive result means the left landmark sits higher
    (image y grows downward). `reference_scale` converts normalized units
    to millimetres.
    """
    if axis == "y":
        diff = right.y - left.y
    elif axis == "x":
        diff = right.x - left.x
    else:
        raise ValueError(f"Invalid axis '{axis}'. Valid axes: ['x', 'y']")
    return diff * reference_scale


def inclination_from_vertical(lower, upper) -> float:
    """
    Signed angle (degrees) of the segment lower -> upper from straight up.

    Positive when `upper` lies towards +x of `lower`.
    """
    dx = upper.x - lower.x
    dy = upper.y - lower.y
    if abs(dx) < _EPS and abs(dy) < _EPS:
        return float("nan")
    return math.degrees(math.atan2(dx, -dy))


def tilt_from_horizontal(left, right) -> float:
    """
    Signed tilt (degrees) of the line joining a bilateral pair.

    Positive when the right landmark sits lower than the left one,
    independent of which side of the image each appears on.
    """
    dx = abs(right.x - left.x)
    dy = right.y - left.y
    if dx < _EPS and abs(dy) < _EPS:
        return float("nan")
    return math.degrees(math.atan2(dy, dx))


def horizontal_offset_from_line(point, line_start, line_end) -> float:
    """x-offset of `point` from the line start -> end, measured at point.y."""
    dy = line_end.y - line_start.y
    if abs(dy) < _EPS:
        return float("nan")
    t = (point.y - line_start.y) / dy
    line_x = line_start.x + t * (line_end.x - line_start.x)
    return point.x - line_x


def vertical_extent(points: Iterable) -> float:
    ys = [p.y for p in points]
    if not ys:
        return 0.0
    return max(ys) - min(ys)


# ═══════════════════════════════════════════════════════════════════════════════
# REFERENCE SCALE
# ═══════════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class ScaleContext:
    """Millimetres per normalized image unit for one photo."""
    mm_per_unit: float
    patient_height_cm: float
    vertical_extent: float = 0.0
    from_landmarks: bool = False

    @classmethod
    def for_height(cls, patient_height_cm: Optional[float] = None) -> "ScaleContext":
        """Body assumed to fill the frame vertically."""
        height_cm = patient_height_cm or settings.DEFAULT_PATIENT_HEIGHT_CM
        return cls(mm_per_unit=height_cm * 10.0, patient_height_cm=height_cm)

    @classmethod
    def from_landmark_extent(
        cls,
        landmarks: Iterable,
        patient_height_cm: Optional[float] = None,
        min_confidence: Optional[float] = None,
    ) -> "ScaleContext":
        """
        Derive the scale from the patient's height and how much of the
        frame the detected landmarks span.

        Ears to heels cover roughly STATURE_LANDMARK_FRACTION of standing
        height. Too small an extent (partial-body photo) falls back to the
        full-frame assumption.
        """
        height_cm = patient_height_cm or settings.DEFAULT_PATIENT_HEIGHT_CM
        threshold = settings.MIN_LANDMARK_CONFIDENCE if min_confidence is None else min_confidence
        trusted = [lm for lm in landmarks if getattr(lm, "confidence", 1.0) >= threshold]
        extent = vertical_extent(trusted)

        if extent < settings.MIN_REFERENCE_EXTENT:
            return cls(
                mm_per_unit=height_cm * 10.0,
                patient_height_cm=height_cm,
                vertical_extent=extent,
            )

        mm_per_unit = height_cm * 10.0 * settings.STATURE_LANDMARK_FRACTION / extent
        return cls(
            mm_per_unit=mm_per_unit,
            patient_height_cm=height_cm,
            vertical_extent=extent,
            from_landmarks=True,
        )

    def to_dict(self) -> dict:
        return {
            "mm_per_unit": self.mm_per_unit,
            "patient_height_cm": self.patient_height_cm,
            "vertical_extent": self.vertical_extent,
            "from_landmarks": self.from_landmarks,
        }


def reference_scale(patient_height_cm: Optional[float], landmarks: Iterable) -> float:
    """Shortcut for ScaleContext.from_landmark_extent(...).mm_per_unit."""
    return ScaleContext.from_landmark_extent(landmarks, patient_height_cm).mm_per_unit
