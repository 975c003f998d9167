"""
POSTUREIQ Posture Service Router

Endpoints for posture assessments: landmark capture and correction,
deviation analysis, longitudinal comparison, trends, photo overlay and
progress reports.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Query
from fastapi.responses import HTMLResponse
from pydantic import BaseModel, Field

from shared.utils import handle_exceptions, success_response

from .models import (
    DeviationType,
    Landmark,
    LandmarkDetection,
    PostureImage,
    PostureView,
    get_catalog,
    get_deviation_analyzer,
    get_view_types,
)
from .service import PostureAssessmentService, get_posture_service

router = APIRouter()


def get_services() -> PostureAssessmentService:
    """Get or initialize the assessment service."""
    return get_posture_service()


# ============= Pydantic Models =============

class LandmarkIn(BaseModel):
    name: str
    x: float
    y: float
    z: Optional[float] = None
    confidence: float = Field(1.0, ge=0.0, le=1.0)

    def to_landmark(self) -> Landmark:
        return Landmark(name=self.name, x=self.x, y=self.y, z=self.z, confidence=self.confidence)


class AnalyzeViewRequest(BaseModel):
    view: PostureView
    landmarks: List[LandmarkIn]
    patient_height_cm: Optional[float] = Field(None, gt=0)


class CreateAssessmentRequest(BaseModel):
    patient_id: str = Field(..., min_length=1)
    assessment_date: datetime
    notes: Optional[str] = None
    patient_height_cm: Optional[float] = Field(None, gt=0)


class AttachImageRequest(BaseModel):
    image_url: Optional[str] = None
    notes: Optional[str] = None
    landmarks: List[LandmarkIn] = []


class DetectionRequest(BaseModel):
    landmarks: List[Dict[str, Any]]
    method: str = "ai"
    model_version: Optional[str] = None
    processing_time_ms: Optional[float] = None
    warnings: List[str] = []


class MoveLandmarkRequest(BaseModel):
    x: float
    y: float


class ReportIdentitiesIn(BaseModel):
    patient_name: str
    practitioner_name: str
    organization_name: str
    patient_mrn: Optional[str] = None
    patient_dob: Optional[str] = None
    practitioner_title: Optional[str] = None
    practitioner_credentials: Optional[str] = None
    organization_address: Optional[str] = None
    organization_phone: Optional[str] = None


class TreatmentGoalIn(BaseModel):
    goal: str
    baseline: Optional[float] = None
    target: Optional[float] = None
    current: Optional[float] = None
    unit: str = ""


class ReportRequest(BaseModel):
    previous_assessment_id: str
    current_assessment_id: str
    identities: ReportIdentitiesIn
    treatment_goals: List[TreatmentGoalIn] = []


# ============= Catalog Endpoints =============

@router.get("/views")
async def list_views():
    """Capture views with their guide points and measurable deviations."""
    return {"views": get_view_types()}


@router.get("/catalog")
async def catalog():
    """Landmark and deviation catalog."""
    return get_catalog()


@router.post("/analyze/view")
@handle_exceptions
async def analyze_view(request: AnalyzeViewRequest):
    """
    Analyze one view's landmarks without storing anything.

    Deviations that cannot be measured are reported in `warnings`.
    """
    image = PostureImage(view=request.view, landmarks=[lm.to_landmark() for lm in request.landmarks])
    result = get_deviation_analyzer().analyze_image(image, request.patient_height_cm)
    return {
        "view": result.view.value,
        "analyzed": result.analyzed,
        "deviations": [d.to_dict() for d in result.deviations],
        "warnings": result.warnings,
    }


# ============= Assessment Endpoints =============

@router.post("/assessments")
@handle_exceptions
async def create_assessment(request: CreateAssessmentRequest):
    service = get_services()
    assessment = service.create_assessment(
        patient_id=request.patient_id,
        assessment_date=request.assessment_date,
        notes=request.notes,
        patient_height_cm=request.patient_height_cm,
    )
    return assessment.to_dict()


@router.get("/assessments/{assessment_id}")
@handle_exceptions
async def get_assessment(assessment_id: str):
    return get_services().get_assessment(assessment_id).to_dict()


@router.delete("/assessments/{assessment_id}")
@handle_exceptions
async def delete_assessment(assessment_id: str):
    get_services().delete_assessment(assessment_id)
    return success_response({"assessment_id": assessment_id}, "Assessment deleted")


@router.put("/assessments/{assessment_id}/images/{view}")
@handle_exceptions
async def attach_image(assessment_id: str, view: PostureView, request: AttachImageRequest):
    """Attach or replace the photo for a view (optionally with hand-placed landmarks)."""
    image = get_services().attach_image(
        assessment_id,
        view,
        image_url=request.image_url,
        notes=request.notes,
        landmarks=[lm.to_landmark() for lm in request.landmarks],
    )
    return image.to_dict()


@router.delete("/assessments/{assessment_id}/images/{view}")
@handle_exceptions
async def remove_image(assessment_id: str, view: PostureView):
    image = get_services().remove_image(assessment_id, view)
    return success_response({"image_id": image.id, "view": image.view.value}, "Image removed")


@router.post("/assessments/{assessment_id}/images/{view}/detection")
@handle_exceptions
async def record_detection(assessment_id: str, view: PostureView, request: DetectionRequest):
    """Store landmark detector output for a view."""
    detection = LandmarkDetection.from_dict(request.model_dump())
    image = get_services().attach_detection(assessment_id, view, detection)
    return image.to_dict()


@router.patch("/assessments/{assessment_id}/images/{view}/landmarks/{name}")
@handle_exceptions
async def move_landmark(assessment_id: str, view: PostureView, name: str, request: MoveLandmarkRequest):
    """Manually reposition a landmark. The detected position is kept for revert."""
    landmark = get_services().move_landmark(assessment_id, view, name, request.x, request.y)
    return landmark.to_dict()


@router.post("/assessments/{assessment_id}/images/{view}/landmarks/{name}/revert")
@handle_exceptions
async def revert_landmark(assessment_id: str, view: PostureView, name: str):
    landmark = get_services().revert_landmark(assessment_id, view, name)
    return landmark.to_dict()


@router.post("/assessments/{assessment_id}/analyze")
@handle_exceptions
def analyze_assessment(assessment_id: str, force: bool = False):
    """
    Compute deviations for every analyzed image.

    Returns the stored deviations when the assessment has been analyzed
    before; pass `force=true` to recompute them.
    """
    analysis = get_services().analyze(assessment_id, force=force)
    return analysis.to_dict()


@router.post("/assessments/{assessment_id}/complete")
@handle_exceptions
async def complete_assessment(assessment_id: str):
    return get_services().complete(assessment_id).to_dict()


@router.get("/assessments/{assessment_id}/report")
@handle_exceptions
async def assessment_report(
    assessment_id: str,
    patient_name: str = Query(...),
    practitioner_name: str = Query(...),
):
    return get_services().assessment_report(assessment_id, patient_name, practitioner_name)


# ============= Patient Endpoints =============

@router.get("/patients/{patient_id}/assessments")
@handle_exceptions
async def list_patient_assessments(patient_id: str):
    assessments = get_services().list_assessments(patient_id)
    return {"patient_id": patient_id, "assessments": [a.summary_dict() for a in assessments]}


@router.get("/patients/{patient_id}/summary")
@handle_exceptions
async def patient_summary(patient_id: str):
    return get_services().patient_summary(patient_id)


@router.get("/patients/{patient_id}/trends")
@handle_exceptions
async def patient_trends(patient_id: str, deviation_type: Optional[DeviationType] = None):
    """Per-deviation trends across the patient's completed assessments."""
    series = get_services().trends(patient_id, deviation_type)
    return {"patient_id": patient_id, "trends": [s.to_dict() for s in series]}


# ============= Longitudinal Endpoints =============

@router.get("/compare")
@handle_exceptions
async def compare_assessments(previous_id: str = Query(...), current_id: str = Query(...)):
    """Compare two completed assessments of one patient (previous must be earlier)."""
    return get_services().compare(previous_id, current_id).to_dict()


@router.get("/overlay")
@handle_exceptions
async def overlay(
    previous_id: str = Query(...),
    current_id: str = Query(...),
    view: PostureView = Query(...),
    current_view: Optional[PostureView] = None,
):
    """Similarity transform mapping the previous photo onto the current one."""
    alignment = get_services().overlay(previous_id, current_id, view, current_view)
    return alignment.to_dict()


@router.post("/reports")
@handle_exceptions
async def comparison_report(request: ReportRequest, format: str = Query("json", pattern="^(json|html)$")):
    """Progress report for a pair of assessments, as JSON or printable HTML."""
    result = get_services().report(
        request.previous_assessment_id,
        request.current_assessment_id,
        request.identities.model_dump(),
        [goal.model_dump() for goal in request.treatment_goals],
    )
    if format == "html":
        return HTMLResponse(content=result["html"])
    return result
