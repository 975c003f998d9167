"""
POSTUREIQ Posture Service - Errors

Hard rejections raised before any computation happens. Missing or
low-confidence data is never raised; it travels as warnings next to a
partial result.
"""


class PostureError(Exception):
    """Base class for posture analysis errors."""
    code = "posture_error"

    def __init__(self, message: str, details: dict = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class InvalidOrderingError(PostureError):
    """Assessments are not in strictly ascending date order."""
    code = "invalid_ordering"


class CrossPatientComparisonError(InvalidOrderingError):
    """Assessments belong to different patients."""
    code = "cross_patient"


class ViewMismatchError(PostureError):
    """Two images of different views were paired."""
    code = "view_mismatch"


class PreconditionNotMetError(PostureError):
    """The input is not in a state the operation accepts."""
    code = "precondition_not_met"


class AssessmentLockedError(PostureError):
    """A completed assessment was asked to mutate."""
    code = "assessment_locked"


class AssessmentNotFoundError(PostureError):
    code = "not_found"
