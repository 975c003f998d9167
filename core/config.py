"""
POSTUREIQ Configuration

Environment variables and application settings.
"""

from pydantic_settings import BaseSettings
from typing import List


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Application
    APP_NAME: str = "POSTUREIQ"
    DEBUG: bool = True
    LOG_LEVEL: str = "INFO"

    # Firebase
    FIREBASE_PROJECT_ID: str = "postureiq-dev"
    FIREBASE_CREDENTIALS_PATH: str = "service-account.json"
    ASSESSMENTS_COLLECTION: str = "posture_assessments"

    # CORS
    CORS_ORIGINS: List[str] = ["http://localhost:3000", "http://localhost:8080"]

    # Thread Pool
    THREAD_POOL_SIZE: int = 4

    # Landmark analysis
    MIN_LANDMARK_CONFIDENCE: float = 0.5
    MIN_LANDMARKS_PER_IMAGE: int = 3
    DEFAULT_PATIENT_HEIGHT_CM: float = 170.0

    # Scaling: fraction of stature between ear and floor, and the minimum
    # vertical landmark extent needed before it is trusted as a body reference
    STATURE_LANDMARK_FRACTION: float = 0.936
    MIN_REFERENCE_EXTENT: float = 0.5

    # Comparison / trends
    STABLE_TOLERANCE: float = 0.5
    TREND_STABLE_THRESHOLD: float = 0.5
    NEW_FINDING_SCORE_SCALE: float = 5.0

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


settings = Settings()
