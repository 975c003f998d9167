"""
POSTUREIQ Posture Service - Trend Analyzer

Longitudinal series per deviation type (and side) across two or more
completed assessments of one patient.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np

from core.config import settings

from .entities import Assessment, Deviation
from .errors import CrossPatientComparisonError, InvalidOrderingError, PreconditionNotMetError
from .landmark_catalog import DEVIATION_DEFINITIONS, DEVIATION_ORDER, VIEW_ORDER, DeviationType
from .severity import Severity

logger = logging.getLogger(__name__)

SeriesKey = Tuple[DeviationType, Optional[str]]


class TrendDirection(str, Enum):
    IMPROVING = "improving"
    WORSENING = "worsening"
    STABLE = "stable"


class TrendStatus(str, Enum):
    OK = "ok"
    INSUFFICIENT_DATA = "insufficient_data"


@dataclass
class TrendPoint:
    assessment_id: str
    date: datetime
    value: float
    severity: Severity
    deviation_amount: float

    def to_dict(self) -> dict:
        return {
            "assessment_id": self.assessment_id,
            "date": self.date.isoformat(),
            "value": self.value,
            "severity": self.severity.value,
            "deviation_amount": self.deviation_amount,
        }


@dataclass
class TrendSeries:
    deviation_type: DeviationType
    side: Optional[str]
    normal_range_min: float
    normal_range_max: float
    points: List[TrendPoint] = field(default_factory=list)
    status: TrendStatus = TrendStatus.OK
    direction: Optional[TrendDirection] = None
    change_from_first: Optional[float] = None
    change_from_previous: Optional[float] = None
    slope_per_day: Optional[float] = None

    @property
    def name(self) -> str:
        return DEVIATION_DEFINITIONS[self.deviation_type].name

    def to_dict(self) -> dict:
        return {
            "deviation_type": self.deviation_type.value,
            "name": self.name,
            "side": self.side,
            "unit": DEVIATION_DEFINITIONS[self.deviation_type].unit.value,
            "normal_range_min": self.normal_range_min,
            "normal_range_max": self.normal_range_max,
            "status": self.status.value,
            "direction": self.direction.value if self.direction else None,
            "change_from_first": self.change_from_first,
            "change_from_previous": self.change_from_previous,
            "slope_per_day": self.slope_per_day,
            "points": [p.to_dict() for p in self.points],
        }


class TrendAnalyzer:
    """Builds per-deviation time series and classifies their direction."""

    def __init__(self, stable_threshold: Optional[float] = None):
        self.stable_threshold = settings.TREND_STABLE_THRESHOLD if stable_threshold is None else stable_threshold

    @staticmethod
    def validate(assessments: Sequence[Assessment]):
        if len(assessments) < 2:
            raise PreconditionNotMetError(
                "Trend analysis requires at least two assessments",
                {"assessment_count": len(assessments)},
            )
        patients = {a.patient_id for a in assessments}
        if len(patients) > 1:
            raise CrossPatientComparisonError(
                "Trend analysis requires assessments of a single patient",
                {"patient_ids": sorted(patients)},
            )
        for earlier, later in zip(assessments, assessments[1:]):
            if earlier.assessment_date >= later.assessment_date:
                raise InvalidOrderingError(
                    "Assessments must be in strictly ascending date order",
                    {"assessment_ids": [earlier.id, later.id]},
                )
        incomplete = [a.id for a in assessments if not a.is_complete]
        if incomplete:
            raise PreconditionNotMetError(
                "All assessments must be completed before trend analysis",
                {"incomplete_assessment_ids": incomplete},
            )
        unanalyzed = [a.id for a in assessments if not a.has_analysis]
        if unanalyzed:
            raise PreconditionNotMetError(
                "All assessments must be analyzed before trend analysis",
                {"unanalyzed_assessment_ids": unanalyzed},
            )

    @staticmethod
    def _worst_by_key(deviations: List[Deviation]) -> Dict[SeriesKey, Deviation]:
        """One reading per key when several views measured the same deviation."""
        worst: Dict[SeriesKey, Deviation] = {}
        for deviation in sorted(deviations, key=lambda d: VIEW_ORDER.index(d.view)):
            existing = worst.get(deviation.match_key)
            if existing is None or (deviation.deviation_amount, deviation.severity.rank) > (
                existing.deviation_amount, existing.severity.rank
            ):
                worst[deviation.match_key] = deviation
        return worst

    def classify(self, points: List[TrendPoint], normal_midpoint: float) -> TrendDirection:
        first, last = points[0], points[-1]
        if abs(last.value - first.value) < self.stable_threshold:
            return TrendDirection.STABLE

        amount_change = last.deviation_amount - first.deviation_amount
        if amount_change > 1e-9:
            return TrendDirection.WORSENING
        if amount_change < -1e-9:
            return TrendDirection.IMPROVING

        # Equal amounts: judge by drift from the midpoint
        drift = abs(last.value - normal_midpoint) - abs(first.value - normal_midpoint)
        if drift > 1e-9:
            return TrendDirection.WORSENING
        if drift < -1e-9:
            return TrendDirection.IMPROVING
        return TrendDirection.STABLE

    @staticmethod
    def slope(points: List[TrendPoint]) -> float:
        """Least-squares slope of value against days since the first point."""
        origin = points[0].date
        days = np.array([(p.date - origin).total_seconds() / 86400 for p in points], dtype=float)
        values = np.array([p.value for p in points], dtype=float)
        return float(np.polyfit(days, values, 1)[0])

    def trend(self, assessments: Sequence[Assessment], deviation_type: Optional[DeviationType] = None) -> List[TrendSeries]:
        """Trend series for every deviation seen across the assessments (or one type)."""
        assessments = list(assessments)
        self.validate(assessments)
        wanted = DeviationType(deviation_type) if deviation_type is not None else None

        series: Dict[SeriesKey, TrendSeries] = {}
        for assessment in assessments:
            for key, deviation in self._worst_by_key(assessment.deviations).items():
                if wanted is not None and key[0] != wanted:
                    continue
                entry = series.get(key)
                if entry is None:
                    entry = series[key] = TrendSeries(
                        deviation_type=key[0],
                        side=key[1],
                        normal_range_min=deviation.normal_range_min,
                        normal_range_max=deviation.normal_range_max,
                    )
                entry.points.append(TrendPoint(
                    assessment_id=assessment.id,
                    date=assessment.assessment_date,
                    value=deviation.measurement_value,
                    severity=deviation.severity,
                    deviation_amount=deviation.deviation_amount,
                ))

        results = []
        for key in sorted(series, key=lambda k: (DEVIATION_ORDER[k[0]], k[1] or "")):
            entry = series[key]
            if len(entry.points) < 2:
                entry.status = TrendStatus.INSUFFICIENT_DATA
                results.append(entry)
                continue

            first, previous, last = entry.points[0], entry.points[-2], entry.points[-1]
            midpoint = (entry.normal_range_min + entry.normal_range_max) / 2
            entry.direction = self.classify(entry.points, midpoint)
            entry.change_from_first = round(last.value - first.value, 1)
            entry.change_from_previous = round(last.value - previous.value, 1)
            entry.slope_per_day = round(self.slope(entry.points), 4)
            results.append(entry)

        logger.info(
            f"📈 Trend over {len(assessments)} assessment(s): {len(results)} series, "
            f"{sum(1 for s in results if s.status == TrendStatus.INSUFFICIENT_DATA)} with insufficient data"
        )
        return results


_trend_instance: Optional[TrendAnalyzer] = None


def get_trend_analyzer() -> TrendAnalyzer:
    global _trend_instance
    if _trend_instance is None:
        _trend_instance = TrendAnalyzer()
    return _trend_instance


def trend(assessments: Sequence[Assessment], deviation_type: Optional[DeviationType] = None) -> List[TrendSeries]:
    return get_trend_analyzer().trend(assessments, deviation_type)
