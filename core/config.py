"""
FORMCOACH Configuration

Environment variables and analysis thresholds.
"""

from pydantic_settings import BaseSettings
from typing import List


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Application
    APP_NAME: str = "FORMCOACH"
    DEBUG: bool = True
    LOG_LEVEL: str = "INFO"

    # CORS
    CORS_ORIGINS: List[str] = ["http://localhost:3000", "http://localhost:8080", "http://10.0.2.2:8000"]

    # Error detection mode: "rules" or "scientific"
    DETECTION_MODE: str = "rules"

    # Input quality
    LANDMARK_VISIBILITY_THRESHOLD: float = 0.5
    ANGLE_MIN_VISIBILITY: float = 0.3
    MAX_FRAME_JUMP: float = 0.1

    # Readiness state machine
    READY_VISIBILITY_RATIO: float = 0.8
    EXERCISING_VISIBILITY_RATIO: float = 0.6
    READY_CONFIRMATION_FRAMES: int = 8
    READY_TOLERANCE_FRAMES: int = 20
    EXERCISING_TOLERANCE_FRAMES: int = 90
    START_MOVEMENT_THRESHOLD: float = 5.0  # degrees between consecutive frames

    # View classification (fraction of frame width)
    PROFILE_SPREAD_RATIO: float = 0.08

    # Phase detection
    SIDE_PREFERENCE_MARGIN: float = 0.1
    PHASE_SMOOTHING_WINDOW: int = 5
    ANGLE_SMOOTHING_WINDOW: int = 3
    HISTORY_CAPACITY: int = 30

    # Error detection
    MAX_RULES_PER_FRAME: int = 3
    ERROR_CONFIDENCE_THRESHOLD: float = 0.7
    ERROR_COOLDOWN_MS: int = 2000
    ALIGNMENT_COOLDOWN_MS: int = 1500
    CRITICAL_COOLDOWN_MS: int = 4000
    SETUP_SEVERITY_REDUCTION: int = 3

    # Quality scoring
    QUALITY_HISTORY_SIZE: int = 50
    QUALITY_TREND_WINDOW: int = 5
    QUALITY_TREND_MARGIN: float = 5.0

    # Precision validator
    VALIDATION_WINDOW: int = 30
    VALIDATION_INTERVAL: int = 10
    VALIDATION_HISTORY_SIZE: int = 100
    TARGET_ANGULAR_ACCURACY: float = 5.0  # degrees
    TARGET_FPS: int = 30
    MIN_FPS: int = 25
    MAX_LATENCY_MS: float = 100.0
    REPORT_INTERVAL_FRAMES: int = 30

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


settings = Settings()
