"""
Pytest configuration for the posture service tests.

Puts the backend root on sys.path and provides shared fixtures:
landmark factories, an in-memory Firestore client, a dedicated worker
pool and a fully wired assessment service.
"""

import os
import sys
from datetime import datetime, timezone

import pytest

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from core.database import MockFirestoreClient
from core.threading import WorkerPool
from posture_service.models import Assessment, Landmark, PostureImage, PostureView
from posture_service.repository import FirestoreAssessmentRepository
from posture_service.service import PostureAssessmentService


# Upright, symmetric front-view landmarks (every measurement within normal limits)
NEUTRAL_ANTERIOR = {
    "left_ear": (0.55, 0.10),
    "right_ear": (0.45, 0.10),
    "nose": (0.50, 0.11),
    "left_shoulder": (0.62, 0.25),
    "right_shoulder": (0.38, 0.25),
    "left_hip": (0.58, 0.50),
    "right_hip": (0.42, 0.50),
    "left_knee": (0.57, 0.72),
    "right_knee": (0.43, 0.72),
    "left_ankle": (0.57, 0.94),
    "right_ankle": (0.43, 0.94),
}


def utc(year: int, month: int, day: int) -> datetime:
    return datetime(year, month, day, 9, 0, tzinfo=timezone.utc)


def make_landmarks(points: dict, confidence: float = 0.9):
    return [Landmark(name=name, x=x, y=y, confidence=confidence) for name, (x, y) in points.items()]


def detection_payload(points: dict, confidence: float = 0.9) -> dict:
    return {
        "landmarks": [{"name": name, "x": x, "y": y, "confidence": confidence} for name, (x, y) in points.items()],
        "method": "ai",
        "model_version": "pose-v2",
    }


def make_assessment(patient_id, when, deviations=(), views=(PostureView.ANTERIOR,), complete=True):
    """Assessment with empty images for `views` and pre-computed deviations."""
    return Assessment(
        patient_id=patient_id,
        assessment_date=when,
        images=[PostureImage(view=view) for view in views],
        deviations=list(deviations),
        is_complete=complete,
        analyzed_at=when if complete else None,
    )


@pytest.fixture
def neutral_landmarks():
    return make_landmarks(NEUTRAL_ANTERIOR)


@pytest.fixture
def mock_db():
    return MockFirestoreClient()


@pytest.fixture
def repository(mock_db):
    return FirestoreAssessmentRepository(db=mock_db, collection="test_assessments")


@pytest.fixture
def worker_pool():
    pool = WorkerPool(max_workers=2, name="test_analysis")
    yield pool
    pool.shutdown(wait=True)


@pytest.fixture
def service(repository, worker_pool):
    return PostureAssessmentService(repository=repository, pool=worker_pool)
