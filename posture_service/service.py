"""
POSTUREIQ Posture Service - Assessment Service

Application layer over the posture engine: loads and stores assessments
through the repository, fans per-image analysis out to the worker pool and
hands completed assessments to the comparison, trend, overlay and report
components.
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from core.threading import WorkerPool, get_analysis_pool
from shared.utils import get_now, log_execution_time

from .models.comparison_engine import ComparisonEngine, ComparisonResult, get_comparison_engine
from .models.deviation_analyzer import (
    AssessmentAnalysis,
    DeviationAnalyzer,
    get_deviation_analyzer,
    recommendations_for,
    summarize_deviations,
)
from .models.entities import Assessment, Landmark, LandmarkDetection, PostureImage
from .models.errors import CrossPatientComparisonError, PreconditionNotMetError
from .models.landmark_catalog import DeviationType, PostureView
from .models.overlay_aligner import OverlayAligner, OverlayAlignment, get_overlay_aligner
from .models.report_generator import build_assessment_report, build_report
from .models.severity import max_severity
from .models.trend_analyzer import TrendAnalyzer, TrendSeries, get_trend_analyzer
from .repository import AssessmentRepository, FirestoreAssessmentRepository

logger = logging.getLogger(__name__)


class PostureAssessmentService:
    """Assessment lifecycle plus comparison, trends, overlay and reports by id."""

    def __init__(
        self,
        repository: Optional[AssessmentRepository] = None,
        analyzer: Optional[DeviationAnalyzer] = None,
        engine: Optional[ComparisonEngine] = None,
        trend_analyzer: Optional[TrendAnalyzer] = None,
        aligner: Optional[OverlayAligner] = None,
        pool: Optional[WorkerPool] = None,
    ):
        self.repository = repository or FirestoreAssessmentRepository()
        self.analyzer = analyzer or get_deviation_analyzer()
        self.engine = engine or get_comparison_engine()
        self.trend_analyzer = trend_analyzer or get_trend_analyzer()
        self.aligner = aligner or get_overlay_aligner()
        self._pool = pool

    @property
    def pool(self) -> WorkerPool:
        return self._pool if self._pool is not None else get_analysis_pool()

    # ========================================
    # Assessment lifecycle
    # ========================================

    def create_assessment(
        self,
        patient_id: str,
        assessment_date: datetime,
        notes: Optional[str] = None,
        patient_height_cm: Optional[float] = None,
    ) -> Assessment:
        if not patient_id:
            raise ValueError("patient_id is required")
        if patient_height_cm is not None and patient_height_cm <= 0:
            raise ValueError("patient_height_cm must be positive")

        assessment = Assessment(
            patient_id=patient_id,
            assessment_date=assessment_date,
            notes=notes,
            patient_height_cm=patient_height_cm,
        )
        self.repository.save(assessment)
        logger.info(f"🆕 Assessment {assessment.id} created for patient {patient_id}")
        return assessment

    def get_assessment(self, assessment_id: str) -> Assessment:
        return self.repository.get(assessment_id)

    def list_assessments(self, patient_id: str) -> List[Assessment]:
        return self.repository.list_for_patient(patient_id)

    def delete_assessment(self, assessment_id: str):
        assessment = self.repository.get(assessment_id)
        assessment.ensure_mutable()
        self.repository.delete(assessment_id)

    def attach_image(
        self,
        assessment_id: str,
        view: PostureView,
        image_url: Optional[str] = None,
        notes: Optional[str] = None,
        landmarks: Optional[List[Landmark]] = None,
    ) -> PostureImage:
        """Attach (or replace) the photo for a view."""
        assessment = self.repository.get(assessment_id)
        image = PostureImage(view=PostureView(view), image_url=image_url, notes=notes)
        if landmarks:
            image.set_landmarks(landmarks)
            image.is_analyzed = True
            image.analysis_method = "manual"
            image.analyzed_at = get_now()

        replaced = assessment.attach_image(image)
        self.repository.save(assessment)
        if replaced is not None:
            logger.info(f"🔁 Replaced {image.view.value} image on assessment {assessment_id}")
        return image

    def attach_detection(self, assessment_id: str, view: PostureView, detection: LandmarkDetection) -> PostureImage:
        """Store detector output for a view."""
        assessment = self.repository.get(assessment_id)
        image = assessment.record_detection(view, detection, get_now())
        self.repository.save(assessment)
        logger.info(
            f"📍 {len(image.landmarks)} landmark(s) recorded for {image.view.value} "
            f"on assessment {assessment_id}"
        )
        return image

    def remove_image(self, assessment_id: str, view: PostureView) -> PostureImage:
        assessment = self.repository.get(assessment_id)
        image = assessment.remove_image(view)
        self.repository.save(assessment)
        return image

    def move_landmark(self, assessment_id: str, view: PostureView, name: str, x: float, y: float) -> Landmark:
        assessment = self.repository.get(assessment_id)
        landmark = assessment.move_landmark(view, name, x, y)
        self.repository.save(assessment)
        logger.info(f"✋ {landmark.name.value} moved manually on {PostureView(view).value} ({assessment_id})")
        return landmark

    def revert_landmark(self, assessment_id: str, view: PostureView, name: str) -> Landmark:
        assessment = self.repository.get(assessment_id)
        landmark = assessment.revert_landmark(view, name)
        self.repository.save(assessment)
        return landmark

    def complete(self, assessment_id: str) -> Assessment:
        assessment = self.repository.get(assessment_id)
        assessment.complete(get_now())
        self.repository.save(assessment)
        logger.info(f"🔒 Assessment {assessment_id} completed")
        return assessment

    # ========================================
    # Analysis
    # ========================================

    @staticmethod
    def stored_analysis(assessment: Assessment) -> AssessmentAnalysis:
        """Analysis fields already persisted on the assessment."""
        deviations = list(assessment.deviations)
        return AssessmentAnalysis(
            deviations=deviations,
            overall_severity=assessment.overall_severity or max_severity(d.severity for d in deviations),
            summary=assessment.summary or summarize_deviations(deviations),
            warnings=list(assessment.analysis_warnings),
            analyzed_views=[image.view for image in assessment.analyzed_images],
            recommendations=recommendations_for(deviations),
        )

    @log_execution_time
    def analyze(self, assessment_id: str, force: bool = False) -> AssessmentAnalysis:
        """
        Compute deviations for an assessment.

        Returns the stored result when the assessment was already analyzed,
        unless force is set, in which case the deviations are recomputed and
        replaced.
        """
        assessment = self.repository.get(assessment_id)
        if assessment.has_analysis and not force:
            logger.debug(f"Assessment {assessment_id} already analyzed, returning stored deviations")
            return self.stored_analysis(assessment)

        assessment.ensure_mutable()
        images = self.analyzer.analyzable_images(assessment.images)
        height = assessment.patient_height_cm

        view_results = self.pool.map(lambda image: self.analyzer.analyze_image(image, height), images)
        analysis = self.analyzer.aggregate(view_results)

        assessment.apply_analysis(analysis, get_now())
        self.repository.replace_deviations(assessment, analysis.deviations)
        return analysis

    # ========================================
    # Longitudinal
    # ========================================

    @log_execution_time
    def compare(self, previous_id: str, current_id: str) -> ComparisonResult:
        previous = self.repository.get(previous_id)
        current = self.repository.get(current_id)
        return self.engine.compare(previous, current)

    def trend_history(self, patient_id: str) -> List[Assessment]:
        """Completed assessments in date order, one per assessment date (the latest recorded wins)."""
        by_date: Dict[datetime, Assessment] = {}
        for assessment in self.repository.list_for_patient(patient_id):
            if not assessment.is_complete:
                continue
            replaced = by_date.get(assessment.assessment_date)
            if replaced is not None:
                logger.debug(
                    f"Assessments {replaced.id} and {assessment.id} share a date, trending {assessment.id}"
                )
            by_date[assessment.assessment_date] = assessment
        return sorted(by_date.values(), key=lambda a: a.assessment_date)

    def trends(self, patient_id: str, deviation_type: Optional[DeviationType] = None) -> List[TrendSeries]:
        """Trend series over the completed assessments of the patient."""
        return self.trend_analyzer.trend(self.trend_history(patient_id), deviation_type)

    def overlay(
        self,
        previous_id: str,
        current_id: str,
        view: PostureView,
        current_view: Optional[PostureView] = None,
    ) -> OverlayAlignment:
        """Align the previous photo of a view onto the current one."""
        previous = self.repository.get(previous_id)
        current = self.repository.get(current_id)
        if previous.patient_id != current.patient_id:
            raise CrossPatientComparisonError(
                "Overlay requires two assessments of the same patient",
                {"previous_patient_id": previous.patient_id, "current_patient_id": current.patient_id},
            )

        view = PostureView(view)
        current_view = PostureView(current_view) if current_view is not None else view
        previous_image = previous.get_image(view)
        current_image = current.get_image(current_view)
        missing = [
            a.id for a, img in ((previous, previous_image), (current, current_image)) if img is None
        ]
        if missing:
            raise PreconditionNotMetError(
                "Both assessments need an image of the requested view",
                {"missing_on": missing, "view": view.value},
            )

        return self.aligner.align(
            previous_image.landmarks,
            current_image.landmarks,
            previous_image.view,
            current_image.view,
        )

    # ========================================
    # Reports
    # ========================================

    def report(
        self,
        previous_id: str,
        current_id: str,
        identities: Dict[str, Any],
        goals: Optional[List[Dict[str, Any]]] = None,
    ) -> Dict[str, Any]:
        comparison = self.compare(previous_id, current_id)
        return build_report(comparison, identities, goals, generated_at=get_now())

    def assessment_report(self, assessment_id: str, patient_name: str, practitioner_name: str) -> Dict[str, Any]:
        assessment = self.repository.get(assessment_id)
        if not assessment.has_analysis:
            raise PreconditionNotMetError(
                "Assessment has not been analyzed yet",
                {"assessment_id": assessment_id},
            )
        return build_assessment_report(assessment, patient_name, practitioner_name)

    def patient_summary(self, patient_id: str) -> Dict[str, Any]:
        """Assessment history of a patient plus trends when there is enough of it."""
        assessments = self.repository.list_for_patient(patient_id)
        completed = [a for a in assessments if a.is_complete]
        latest = completed[-1] if completed else None

        history = self.trend_history(patient_id)
        trends: List[dict] = []
        if len(history) >= 2:
            trends = [series.to_dict() for series in self.trend_analyzer.trend(history)]

        return {
            "patient_id": patient_id,
            "assessment_count": len(assessments),
            "completed_count": len(completed),
            "first_assessment_date": completed[0].assessment_date.isoformat() if completed else None,
            "latest_assessment": latest.summary_dict() if latest else None,
            "assessments": [a.summary_dict() for a in assessments],
            "trends": trends,
        }


_service_instance: Optional[PostureAssessmentService] = None


def get_posture_service() -> PostureAssessmentService:
    global _service_instance
    if _service_instance is None:
        _service_instance = PostureAssessmentService()
    return _service_instance
