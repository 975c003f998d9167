"""
POSTUREIQ Posture Service - Comparison Engine

Pairs two completed assessments of the same patient, matches their
deviations view by view, scores the overall improvement and writes the
progress narrative.

Improvement score (0-100, 50 = no net change):
    B   = sum over previous deviations of weight(prev severity) * prev amount
    net = sum of weight(prev) * (prev amount - current amount) for matched,
          + weight(prev) * prev amount for resolved,
          - weight(current) * current amount for new findings
    B > 0 : 50 + 50 * clamp(net / B, -1, 1)
    B == 0: 100 when nothing appeared, else 50 * K / (K + penalty)
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional, Tuple

from core.config import settings

from .entities import Assessment, Deviation
from .errors import CrossPatientComparisonError, InvalidOrderingError, PreconditionNotMetError
from .landmark_catalog import (
    DEVIATION_ORDER,
    VIEW_ORDER,
    DeviationType,
    MeasurementUnit,
    PostureView,
    view_deviation_types,
)
from .severity import Severity, max_severity

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════════
# ENUMS AND DATA CLASSES
# ═══════════════════════════════════════════════════════════════════════════════

class ChangeStatus(str, Enum):
    IMPROVED = "improved"
    WORSENED = "worsened"
    STABLE = "stable"
    RESOLVED = "resolved"
    NEW = "new"

    @property
    def label(self) -> str:
        return {
            "improved": "Improved",
            "worsened": "Worsened",
            "stable": "Stable",
            "resolved": "Resolved",
            "new": "New Finding",
        }[self.value]


@dataclass
class DeviationComparison:
    """One deviation type (and side) tracked across two assessments."""
    deviation_type: DeviationType
    view: PostureView
    status: ChangeStatus
    side: Optional[str] = None
    previous: Optional[Deviation] = None
    current: Optional[Deviation] = None
    value_delta: Optional[float] = None
    amount_delta: float = 0.0
    severity_delta: int = 0
    change_percent: Optional[float] = None

    @property
    def reference(self) -> Deviation:
        return self.current or self.previous

    @property
    def name(self) -> str:
        return self.reference.name

    @property
    def unit(self) -> MeasurementUnit:
        return self.reference.measurement_unit

    @property
    def previous_amount(self) -> float:
        return self.previous.deviation_amount if self.previous else 0.0

    @property
    def current_amount(self) -> float:
        return self.current.deviation_amount if self.current else 0.0

    def to_dict(self) -> dict:
        return {
            "deviation_type": self.deviation_type.value,
            "name": self.name,
            "view": self.view.value,
            "side": self.side,
            "status": self.status.value,
            "status_label": self.status.label,
            "unit": self.unit.value,
            "previous_value": self.previous.measurement_value if self.previous else None,
            "current_value": self.current.measurement_value if self.current else None,
            "previous_severity": self.previous.severity.value if self.previous else None,
            "current_severity": self.current.severity.value if self.current else None,
            "previous_amount": self.previous_amount,
            "current_amount": self.current_amount,
            "value_delta": self.value_delta,
            "amount_delta": self.amount_delta,
            "severity_delta": self.severity_delta,
            "change_percent": self.change_percent,
        }


@dataclass
class ViewComparison:
    view: PostureView
    comparable: bool
    previous_image_id: Optional[str] = None
    current_image_id: Optional[str] = None
    previous_image_url: Optional[str] = None
    current_image_url: Optional[str] = None
    comparisons: List[DeviationComparison] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "view": self.view.value,
            "view_label": self.view.label,
            "comparable": self.comparable,
            "previous_image_id": self.previous_image_id,
            "current_image_id": self.current_image_id,
            "previous_image_url": self.previous_image_url,
            "current_image_url": self.current_image_url,
            "deviations": [c.to_dict() for c in self.comparisons],
        }


@dataclass
class AssessmentSnapshot:
    id: str
    patient_id: str
    date: datetime
    overall_severity: Severity
    deviation_count: int

    @classmethod
    def of(cls, assessment: Assessment) -> "AssessmentSnapshot":
        return cls(
            id=assessment.id,
            patient_id=assessment.patient_id,
            date=assessment.assessment_date,
            overall_severity=max_severity(d.severity for d in assessment.deviations),
            deviation_count=len(assessment.deviations),
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "patient_id": self.patient_id,
            "date": self.date.isoformat(),
            "overall_severity": self.overall_severity.value,
            "deviation_count": self.deviation_count,
        }


@dataclass
class OverallProgress:
    total_previous: int
    total_current: int
    significant_previous: int
    significant_current: int
    previous_severity: Severity
    current_severity: Severity
    status_counts: Dict[str, int]
    improvement_score: float
    summary: str

    def to_dict(self) -> dict:
        return {
            "total_deviations": {"previous": self.total_previous, "current": self.total_current},
            "significant_deviations": {"previous": self.significant_previous, "current": self.significant_current},
            "overall_severity": {"previous": self.previous_severity.value, "current": self.current_severity.value},
            "status_counts": dict(self.status_counts),
            "improvement_score": self.improvement_score,
            "summary": self.summary,
        }


@dataclass
class ComparisonResult:
    """Derived comparison between two assessments; recomputed on demand."""
    previous: AssessmentSnapshot
    current: AssessmentSnapshot
    days_between: int
    view_comparisons: List[ViewComparison]
    overall_progress: OverallProgress
    recommendations: List[str]

    @property
    def comparisons(self) -> List[DeviationComparison]:
        return [c for vc in self.view_comparisons for c in vc.comparisons]

    def to_dict(self) -> dict:
        return {
            "previous_assessment": self.previous.to_dict(),
            "current_assessment": self.current.to_dict(),
            "days_between": self.days_between,
            "view_comparisons": [vc.to_dict() for vc in self.view_comparisons],
            "overall_progress": self.overall_progress.to_dict(),
            "recommendations": list(self.recommendations),
        }


# ═══════════════════════════════════════════════════════════════════════════════
# COMPARISON ENGINE
# ═══════════════════════════════════════════════════════════════════════════════

class ComparisonEngine:
    """Cross-assessment deviation matching and improvement scoring."""

    def __init__(self, stable_tolerance: Optional[float] = None, new_finding_scale: Optional[float] = None):
        self.stable_tolerance = settings.STABLE_TOLERANCE if stable_tolerance is None else stable_tolerance
        self.new_finding_scale = settings.NEW_FINDING_SCORE_SCALE if new_finding_scale is None else new_finding_scale

    # ========================================
    # Validation
    # ========================================

    @staticmethod
    def validate_pair(previous: Assessment, current: Assessment):
        """Reject pairs that must never produce a result."""
        if previous.patient_id != current.patient_id:
            raise CrossPatientComparisonError(
                "Cannot compare assessments of different patients",
                {"previous_patient_id": previous.patient_id, "current_patient_id": current.patient_id},
            )
        if previous.assessment_date >= current.assessment_date:
            raise InvalidOrderingError(
                "Previous assessment must be dated strictly before the current assessment",
                {
                    "previous_date": previous.assessment_date.isoformat(),
                    "current_date": current.assessment_date.isoformat(),
                },
            )
        incomplete = [a.id for a in (previous, current) if not a.is_complete]
        if incomplete:
            raise PreconditionNotMetError(
                "Both assessments must be completed before comparison",
                {"incomplete_assessment_ids": incomplete},
            )
        unanalyzed = [a.id for a in (previous, current) if not a.has_analysis]
        if unanalyzed:
            raise PreconditionNotMetError(
                "Both assessments must be analyzed before comparison",
                {"unanalyzed_assessment_ids": unanalyzed},
            )

    # ========================================
    # Matching
    # ========================================

    def classify(self, previous: Deviation, current: Deviation) -> DeviationComparison:
        """Compare the same deviation type measured in both assessments."""
        amount_delta = current.deviation_amount - previous.deviation_amount
        if abs(amount_delta) <= self.stable_tolerance:
            status = ChangeStatus.STABLE
        elif amount_delta < 0:
            status = ChangeStatus.IMPROVED
        else:
            status = ChangeStatus.WORSENED

        change_percent = None
        if previous.deviation_amount > 0:
            change_percent = round(amount_delta / previous.deviation_amount * 100, 1)

        return DeviationComparison(
            deviation_type=current.deviation_type,
            view=current.view,
            status=status,
            side=current.side,
            previous=previous,
            current=current,
            value_delta=current.measurement_value - previous.measurement_value,
            amount_delta=amount_delta,
            severity_delta=current.severity.rank - previous.severity.rank,
            change_percent=change_percent,
        )

    @staticmethod
    def _view_captured(assessment: Assessment, view: PostureView) -> bool:
        return assessment.get_image(view) is not None or bool(assessment.deviations_for_view(view))

    def compare_view(self, previous: Assessment, current: Assessment, view: PostureView) -> ViewComparison:
        previous_image = previous.get_image(view)
        current_image = current.get_image(view)
        result = ViewComparison(
            view=view,
            comparable=self._view_captured(previous, view) and self._view_captured(current, view),
            previous_image_id=previous_image.id if previous_image else None,
            current_image_id=current_image.id if current_image else None,
            previous_image_url=previous_image.image_url if previous_image else None,
            current_image_url=current_image.image_url if current_image else None,
        )
        if not result.comparable:
            return result

        applicable = set(view_deviation_types(view))
        previous_by_key = self._index(previous.deviations_for_view(view), applicable)
        current_by_key = self._index(current.deviations_for_view(view), applicable)

        keys = sorted(
            set(previous_by_key) | set(current_by_key),
            key=lambda key: (DEVIATION_ORDER[key[0]], key[1] or ""),
        )
        for key in keys:
            before = previous_by_key.get(key)
            after = current_by_key.get(key)
            if before is not None and after is not None:
                result.comparisons.append(self.classify(before, after))
            elif before is not None:
                result.comparisons.append(DeviationComparison(
                    deviation_type=before.deviation_type,
                    view=view,
                    status=ChangeStatus.RESOLVED,
                    side=before.side,
                    previous=before,
                    amount_delta=-before.deviation_amount,
                    severity_delta=-before.severity.rank,
                    change_percent=-100.0 if before.deviation_amount > 0 else None,
                ))
            else:
                result.comparisons.append(DeviationComparison(
                    deviation_type=after.deviation_type,
                    view=view,
                    status=ChangeStatus.NEW,
                    side=after.side,
                    current=after,
                    amount_delta=after.deviation_amount,
                    severity_delta=after.severity.rank,
                ))
        return result

    @staticmethod
    def _index(deviations: List[Deviation], applicable) -> Dict[Tuple[DeviationType, Optional[str]], Deviation]:
        indexed: Dict[Tuple[DeviationType, Optional[str]], Deviation] = {}
        for deviation in deviations:
            if deviation.deviation_type not in applicable:
                continue
            existing = indexed.get(deviation.match_key)
            if existing is None or deviation.deviation_amount > existing.deviation_amount:
                indexed[deviation.match_key] = deviation
        return indexed

    # ========================================
    # Scoring
    # ========================================

    def improvement_score(self, comparisons: List[DeviationComparison]) -> float:
        """Severity-weighted reduction in deviation amount, mapped onto 0-100."""
        baseline = 0.0
        net = 0.0
        for comparison in comparisons:
            if comparison.previous is not None:
                weight = comparison.previous.severity.weight
                baseline += weight * comparison.previous_amount
                net += weight * (comparison.previous_amount - comparison.current_amount)
            else:
                net -= comparison.current.severity.weight * comparison.current_amount

        if baseline > 0:
            ratio = max(-1.0, min(1.0, net / baseline))
            score = 50.0 + 50.0 * ratio
        else:
            penalty = max(0.0, -net)
            if penalty == 0:
                score = 100.0
            else:
                score = 50.0 * self.new_finding_scale / (self.new_finding_scale + penalty)

        score = round(min(100.0, max(0.0, score)), 1)
        logger.debug(f"Improvement score {score} (baseline={baseline:.2f}, net={net:.2f})")
        return score

    # ========================================
    # Narrative
    # ========================================

    @staticmethod
    def summarize(score: float, comparisons: List[DeviationComparison], days_between: int) -> str:
        counts = {status: 0 for status in ChangeStatus}
        for comparison in comparisons:
            counts[comparison.status] += 1

        summary = f"Over the {days_between}-day period between assessments, "
        if score >= 75:
            summary += "significant improvement has been observed. "
        elif score > 55:
            summary += "some improvement has been noted. "
        elif score >= 45:
            summary += "the posture has remained relatively stable. "
        elif score > 25:
            summary += "some decline has been observed. "
        else:
            summary += "significant decline has been noted. "

        def plural(n: int, word: str) -> str:
            return f"{n} {word}{'s' if n != 1 else ''}"

        changes = []
        if counts[ChangeStatus.IMPROVED]:
            changes.append(f"{plural(counts[ChangeStatus.IMPROVED], 'finding')} improved")
        if counts[ChangeStatus.WORSENED]:
            changes.append(f"{plural(counts[ChangeStatus.WORSENED], 'finding')} worsened")
        if counts[ChangeStatus.RESOLVED]:
            changes.append(f"{plural(counts[ChangeStatus.RESOLVED], 'finding')} resolved")
        if counts[ChangeStatus.NEW]:
            changes.append(f"{plural(counts[ChangeStatus.NEW], 'new finding')} identified")
        if counts[ChangeStatus.STABLE] and changes:
            changes.append(f"{counts[ChangeStatus.STABLE]} remained stable")
        if changes:
            summary += ", ".join(changes) + ". "

        improved = counts[ChangeStatus.IMPROVED] + counts[ChangeStatus.RESOLVED]
        summary += f"{improved} of {len(comparisons)} tracked deviations improved."
        return summary

    @staticmethod
    def recommend(comparisons: List[DeviationComparison], score: float) -> List[str]:
        """Ranked recommendations: most worsened first, then new findings, then general advice."""
        worsened = sorted(
            (c for c in comparisons if c.status == ChangeStatus.WORSENED),
            key=lambda c: -c.amount_delta,
        )
        new_findings = sorted(
            (c for c in comparisons if c.status == ChangeStatus.NEW),
            key=lambda c: -c.current_amount,
        )

        recommendations: List[str] = []
        for comparison in worsened + new_findings:
            recommendations.extend(_CHANGE_RECOMMENDATIONS.get(comparison.deviation_type, ()))
            if comparison.deviation_type == DeviationType.SCOLIOSIS and comparison.status == ChangeStatus.WORSENED:
                recommendations.append("Consider radiographic follow-up if curve has increased")

        if any(c.status in (ChangeStatus.IMPROVED, ChangeStatus.RESOLVED) for c in comparisons):
            recommendations.append("Continue current treatment protocol for maintaining improvements")

        if score >= 75:
            recommendations.append("Progress to next phase of treatment plan")
            recommendations.append("Consider extending follow-up interval if progress continues")
        elif score <= 25:
            recommendations.append("Review treatment plan and consider modifications")
            recommendations.append("Assess patient compliance with home exercises")
            recommendations.append("Schedule follow-up assessment in 2-4 weeks")
        else:
            recommendations.append("Continue current treatment plan with monitoring")
            recommendations.append("Follow up in 4-6 weeks to assess progress")

        return list(dict.fromkeys(recommendations))

    # ========================================
    # Entry point
    # ========================================

    def compare(self, previous: Assessment, current: Assessment) -> ComparisonResult:
        """Compare two completed assessments of one patient (previous strictly earlier)."""
        self.validate_pair(previous, current)

        view_comparisons = [self.compare_view(previous, current, view) for view in VIEW_ORDER]
        comparisons = [c for vc in view_comparisons for c in vc.comparisons]

        days_between = int(round((current.assessment_date - previous.assessment_date).total_seconds() / 86400))
        score = self.improvement_score(comparisons)

        status_counts = {status.value: 0 for status in ChangeStatus}
        for comparison in comparisons:
            status_counts[comparison.status.value] += 1

        progress = OverallProgress(
            total_previous=len(previous.deviations),
            total_current=len(current.deviations),
            significant_previous=sum(1 for d in previous.deviations if d.severity != Severity.MINIMAL),
            significant_current=sum(1 for d in current.deviations if d.severity != Severity.MINIMAL),
            previous_severity=max_severity(d.severity for d in previous.deviations),
            current_severity=max_severity(d.severity for d in current.deviations),
            status_counts=status_counts,
            improvement_score=score,
            summary=self.summarize(score, comparisons, days_between),
        )

        logger.info(
            f"📊 Compared {previous.id} -> {current.id}: score {score}, "
            f"{len(comparisons)} tracked deviation(s) over {days_between} day(s)"
        )
        return ComparisonResult(
            previous=AssessmentSnapshot.of(previous),
            current=AssessmentSnapshot.of(current),
            days_between=days_between,
            view_comparisons=view_comparisons,
            overall_progress=progress,
            recommendations=self.recommend(comparisons, score),
        )


_CHANGE_RECOMMENDATIONS: Dict[DeviationType, Tuple[str, ...]] = {
    DeviationType.HEAD_FORWARD: (
        "Increase cervical strengthening exercises frequency",
        "Re-evaluate workstation ergonomics",
    ),
    DeviationType.SHOULDER_UNEVEN: (
        "Assess for any leg length discrepancy changes",
        "Review core stabilization exercises",
    ),
    DeviationType.HIP_UNEVEN: (
        "Assess for any leg length discrepancy changes",
        "Review core stabilization exercises",
    ),
    DeviationType.KYPHOSIS: (
        "Intensify thoracic extension exercises",
        "Consider postural bracing evaluation",
    ),
    DeviationType.LORDOSIS: ("Review hip flexor and core exercise compliance",),
    DeviationType.KNEE_VALGUS: ("Reassess hip abductor strength and knee tracking",),
    DeviationType.KNEE_VARUS: ("Reassess hip abductor strength and knee tracking",),
    DeviationType.ANKLE_PRONATION: ("Re-evaluate foot orthotics and footwear",),
    DeviationType.ANKLE_SUPINATION: ("Re-evaluate foot orthotics and footwear",),
}


# ═══════════════════════════════════════════════════════════════════════════════
# SINGLETON
# ═══════════════════════════════════════════════════════════════════════════════

_engine_instance: Optional[ComparisonEngine] = None


def get_comparison_engine() -> ComparisonEngine:
    global _engine_instance
    if _engine_instance is None:
        _engine_instance = ComparisonEngine()
    return _engine_instance


def compare(previous: Assessment, current: Assessment) -> ComparisonResult:
    return get_comparison_engine().compare(previous, current)
