"""
POSTUREIQ Posture Service - Overlay Aligner

Similarity transform (scale, rotation, translation) that maps the previous
photo's landmarks onto the current photo of the same view, so the two
images can be overlaid. Closed-form least squares (Umeyama) over the
landmark names both images share.
"""

import logging
import math
from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Sequence, Tuple

import numpy as np

from core.config import settings

from .errors import ViewMismatchError
from .landmark_catalog import LANDMARK_DEFINITIONS, LandmarkName, PostureView

logger = logging.getLogger(__name__)

MIN_RELIABLE_POINTS = 3


@dataclass
class SimilarityTransform:
    scale: float = 1.0
    rotation_degrees: float = 0.0
    translation_x: float = 0.0
    translation_y: float = 0.0

    @classmethod
    def identity(cls) -> "SimilarityTransform":
        return cls()

    @property
    def rotation_matrix(self) -> np.ndarray:
        theta = math.radians(self.rotation_degrees)
        return np.array([[math.cos(theta), -math.sin(theta)], [math.sin(theta), math.cos(theta)]])

    def as_matrix(self) -> List[List[float]]:
        """2x3 affine matrix [sR | t] (CSS / canvas friendly)."""
        sr = self.scale * self.rotation_matrix
        return [
            [float(sr[0, 0]), float(sr[0, 1]), self.translation_x],
            [float(sr[1, 0]), float(sr[1, 1]), self.translation_y],
        ]

    def apply(self, points: Sequence[Tuple[float, float]]) -> List[Tuple[float, float]]:
        if len(points) == 0:
            return []
        arr = np.asarray(points, dtype=float)
        mapped = self.scale * arr @ self.rotation_matrix.T + np.array([self.translation_x, self.translation_y])
        return [(float(x), float(y)) for x, y in mapped]

    def to_dict(self) -> dict:
        return {
            "scale": self.scale,
            "rotation_degrees": self.rotation_degrees,
            "translation_x": self.translation_x,
            "translation_y": self.translation_y,
            "matrix": self.as_matrix(),
        }


@dataclass
class OverlayAlignment:
    transform: SimilarityTransform
    common_landmark_count: int
    common_landmarks: List[str] = field(default_factory=list)
    low_confidence: bool = False
    rms_error: float = 0.0
    warnings: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "transform": self.transform.to_dict(),
            "common_landmark_count": self.common_landmark_count,
            "common_landmarks": list(self.common_landmarks),
            "low_confidence": self.low_confidence,
            "rms_error": self.rms_error,
            "warnings": list(self.warnings),
        }


def fit_similarity(source: np.ndarray, target: np.ndarray) -> SimilarityTransform:
    """
    Least-squares similarity transform mapping source onto target (Umeyama, 1991).

    Falls back to translation only for fewer than two points or when all
    source points coincide.
    """
    n = len(source)
    if n == 0:
        return SimilarityTransform.identity()

    mu_source = source.mean(axis=0)
    mu_target = target.mean(axis=0)
    centered_source = source - mu_source
    centered_target = target - mu_target
    variance = float((centered_source ** 2).sum() / n)

    if n == 1 or variance < 1e-12:
        shift = mu_target - mu_source
        return SimilarityTransform(translation_x=float(shift[0]), translation_y=float(shift[1]))

    covariance = centered_target.T @ centered_source / n
    u, s, vt = np.linalg.svd(covariance)
    reflection = np.sign(np.linalg.det(u) * np.linalg.det(vt)) or 1.0
    d = np.diag([1.0, reflection])

    rotation = u @ d @ vt
    scale = float(np.trace(np.diag(s) @ d) / variance)
    translation = mu_target - scale * rotation @ mu_source

    return SimilarityTransform(
        scale=scale,
        rotation_degrees=float(math.degrees(math.atan2(rotation[1, 0], rotation[0, 0]))),
        translation_x=float(translation[0]),
        translation_y=float(translation[1]),
    )


class OverlayAligner:
    """Aligns two landmark sets of the same view."""

    def __init__(self, min_confidence: Optional[float] = None):
        self.min_confidence = settings.MIN_LANDMARK_CONFIDENCE if min_confidence is None else min_confidence

    def _usable(self, landmarks: Iterable) -> dict:
        return {
            LandmarkName(lm.name): lm
            for lm in landmarks
            if getattr(lm, "confidence", 1.0) >= self.min_confidence
        }

    def align(
        self,
        previous_landmarks: Iterable,
        current_landmarks: Iterable,
        previous_view: Optional[PostureView] = None,
        current_view: Optional[PostureView] = None,
    ) -> OverlayAlignment:
        if previous_view is not None and current_view is not None and PostureView(previous_view) != PostureView(current_view):
            raise ViewMismatchError(
                "Overlay alignment requires two images of the same view",
                {"previous_view": PostureView(previous_view).value, "current_view": PostureView(current_view).value},
            )

        previous = self._usable(previous_landmarks)
        current = self._usable(current_landmarks)
        # Catalog order keeps the fit deterministic
        common = [name for name in LANDMARK_DEFINITIONS if name in previous and name in current]

        source = np.array([[previous[n].x, previous[n].y] for n in common], dtype=float).reshape(-1, 2)
        target = np.array([[current[n].x, current[n].y] for n in common], dtype=float).reshape(-1, 2)
        transform = fit_similarity(source, target)

        rms = 0.0
        if common:
            mapped = np.asarray(transform.apply([tuple(p) for p in source]))
            rms = float(np.sqrt(np.mean(np.sum((mapped - target) ** 2, axis=1))))

        warnings = []
        low_confidence = len(common) < MIN_RELIABLE_POINTS
        if low_confidence:
            warnings.append(
                f"Only {len(common)} common landmark(s); at least {MIN_RELIABLE_POINTS} are needed for a reliable overlay"
            )
            logger.warning(f"⚠️ {warnings[-1]}")

        return OverlayAlignment(
            transform=transform,
            common_landmark_count=len(common),
            common_landmarks=[n.value for n in common],
            low_confidence=low_confidence,
            rms_error=rms,
            warnings=warnings,
        )


_aligner_instance: Optional[OverlayAligner] = None


def get_overlay_aligner() -> OverlayAligner:
    global _aligner_instance
    if _aligner_instance is None:
        _aligner_instance = OverlayAligner()
    return _aligner_instance


def align_overlay(
    previous_landmarks: Iterable,
    current_landmarks: Iterable,
    previous_view: Optional[PostureView] = None,
    current_view: Optional[PostureView] = None,
) -> OverlayAlignment:
    return get_overlay_aligner().align(previous_landmarks, current_landmarks, previous_view, current_view)
