"""
Application configuration management with environment-based settings.
"""
from typing import List
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Main application settings."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # ============= Application Settings =============
    APP_NAME: str = "Exam Variants"
    APP_VERSION: str = "1.0.0"
    APP_DESCRIPTION: str = "Exam variant generation, result ingestion and item analysis"
    DEBUG: bool = Field(default=False)
    ENVIRONMENT: str = Field(default="development")
    LOG_LEVEL: str = Field(default="INFO")
    API_V1_PREFIX: str = "/v1"

    # CORS Settings
    CORS_ORIGINS: List[str] = ["*"]

    # ============= Database Settings =============
    DATABASE_URL: str = Field(default="sqlite:///./examvariants.db")
    DATABASE_ECHO: bool = False

    # ============= Variant Generation =============
    MAX_VARIANTS: int = 100
    MAX_POSSIBLE_VARIATIONS_CAP: int = 1_000_000
    UNIQUE_VARIANT_ATTEMPTS: int = 50

    # ============= Analysis Settings =============
    ANALYSIS_CONFIDENCE_LEVEL: float = 0.95
    ANALYSIS_GROUP_FRACTION: float = 0.27  # high/low groups for discrimination
    ANALYSIS_MIN_SAMPLE_SIZE: int = 10

    # ============= Integrity Flagging =============
    FLAG_HIGH_PROBABILITY: float = 0.8
    FLAG_MEDIUM_PROBABILITY: float = 0.7
    FLAG_LOW_PROBABILITY: float = 0.5

    def is_production(self) -> bool:
        return self.ENVIRONMENT.lower() == "production"


settings = Settings()
