"""
Runtime configuration settings
"""
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Settings with environment variable support (prefix RECALL_)"""

    # App
    APP_NAME: str = "recall-model"
    ENVIRONMENT: str = "development"  # development, staging, production

    # Monitoring
    LOG_LEVEL: str = "INFO"
    LOG_DIR: str = "logs"

    # Trainer defaults
    LEARNING_RATE: float = 4e-2
    BATCH_SIZE: int = 512
    MAX_EPOCHS: int = 5
    GRADIENT_CLIP_NORM: float = 1.0
    CONVERGENCE_TOLERANCE: float = 1e-5
    NUM_WORKERS: int = 1
    SEED: int = 2023

    # Scheduling
    DEFAULT_RETENTION: float = 0.9

    model_config = SettingsConfigDict(
        env_prefix="RECALL_",
        env_file=".env",
        case_sensitive=True,
        extra="ignore"
    )


settings = Settings()
