"""
Application configuration management using Pydantic Settings.
"""
from typing import List, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # Application
    APP_NAME: str = "Veriluxe Authenticity API"
    DEBUG: bool = False
    API_V1_PREFIX: str = "/api/v1"

    # Security
    TOKEN_EXPIRY_SECONDS: int = 86400  # 24 hours

    # CORS
    ALLOWED_ORIGINS: List[str] = ["http://localhost:5173", "http://localhost:3000"]

    # Database
    DATABASE_URL: str
    DB_ECHO: bool = False

    # Redis (bearer token store)
    REDIS_URL: str = "redis://localhost:6379/0"

    # Storage
    MINIO_ENDPOINT: str = "localhost:9000"
    MINIO_ACCESS_KEY: str
    MINIO_SECRET_KEY: str
    MINIO_BUCKET: str = "analysis-images"
    MINIO_SECURE: bool = False
    MINIO_PUBLIC_URL: Optional[str] = None  # e.g. https://cdn.example.com

    # Image Upload Limits
    MAX_IMAGE_SIZE_MB: int = 10

    # Inference services
    YOLO_API_URL: str = "http://localhost:8000"
    SEGFORMER_API_URL: str = "http://localhost:8100"
    LLM_API_URL: str = "http://localhost:8200"
    LLM_API_KEY: Optional[str] = None
    LLM_MODEL: str = "gpt-4o-mini"
    LLM_STREAMING: bool = True
    HTTP_TIMEOUT_SECONDS: Optional[float] = None  # None = wait for upstream to finish
    HEALTH_CHECK_TIMEOUT_SECONDS: float = 5.0

    # Pipeline
    DETECTION_CONFIDENCE_THRESHOLD: float = 0.62
    MIN_SEGMENT_COVERAGE_PERCENT: float = 1.0
    TRANSLATION_TARGET_LANGUAGE: str = "Korean"


settings = Settings()
