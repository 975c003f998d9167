"""
POSTUREIQ Posture Service - Assessment Repository

Firestore persistence for assessments. One document per assessment in
the configured collection; images, landmarks and deviations are nested.
"""

import logging
from typing import List, Optional, Protocol

from core.config import settings
from core.database import get_database

from .models.entities import Assessment, Deviation
from .models.errors import AssessmentNotFoundError

logger = logging.getLogger(__name__)


class AssessmentRepository(Protocol):
    def get(self, assessment_id: str) -> Assessment: ...

    def save(self, assessment: Assessment) -> Assessment: ...

    def list_for_patient(self, patient_id: str) -> List[Assessment]: ...

    def replace_deviations(self, assessment: Assessment, deviations: List[Deviation]) -> Assessment: ...

    def delete(self, assessment_id: str) -> None: ...


class FirestoreAssessmentRepository:
    """AssessmentRepository over a Firestore client (real or in-memory mock)."""

    def __init__(self, db=None, collection: Optional[str] = None):
        self._db = db
        self.collection_name = collection or settings.ASSESSMENTS_COLLECTION

    @property
    def collection(self):
        db = self._db if self._db is not None else get_database()
        return db.collection(self.collection_name)

    def get(self, assessment_id: str) -> Assessment:
        doc = self.collection.document(assessment_id).get()
        if not doc.exists:
            raise AssessmentNotFoundError(
                f"Assessment {assessment_id} not found",
                {"assessment_id": assessment_id},
            )
        return Assessment.from_dict(doc.to_dict())

    def save(self, assessment: Assessment) -> Assessment:
        self.collection.document(assessment.id).set(assessment.to_dict())
        logger.debug(f"Saved assessment {assessment.id}")
        return assessment

    def list_for_patient(self, patient_id: str) -> List[Assessment]:
        """All assessments of a patient, oldest first."""
        docs = self.collection.where("patient_id", "==", patient_id).stream()
        assessments = [Assessment.from_dict(doc.to_dict()) for doc in docs]
        assessments.sort(key=lambda a: (a.assessment_date, a.created_at))
        return assessments

    def replace_deviations(self, assessment: Assessment, deviations: List[Deviation]) -> Assessment:
        """Persist a new deviation set (and analysis fields) in one write."""
        assessment.deviations = list(deviations)
        data = assessment.to_dict()
        self.collection.document(assessment.id).set({
            "deviations": data["deviations"],
            "overall_severity": data["overall_severity"],
            "summary": data["summary"],
            "analysis_warnings": data["analysis_warnings"],
            "analyzed_at": data["analyzed_at"],
        }, merge=True)
        logger.info(f"💾 Stored {len(deviations)} deviation(s) for assessment {assessment.id}")
        return assessment

    def delete(self, assessment_id: str) -> None:
        ref = self.collection.document(assessment_id)
        if not ref.get().exists:
            raise AssessmentNotFoundError(
                f"Assessment {assessment_id} not found",
                {"assessment_id": assessment_id},
            )
        ref.delete()
        logger.info(f"🗑️ Deleted assessment {assessment_id}")
