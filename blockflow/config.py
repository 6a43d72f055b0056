"""
Configuration settings for Blockflow.
"""

from pydantic_settings import BaseSettings
from typing import Optional


class Settings(BaseSettings):
    """Application settings with environment variable support."""

    # Application
    APP_NAME: str = "Blockflow"
    APP_VERSION: str = "0.1.0"
    DEBUG: bool = True

    # Server
    HOST: str = "0.0.0.0"
    PORT: int = 8000

    # Workflow Engine
    NETWORK_TIMEOUT: float = 30.0  # Default per-call limit, seconds
    NODE_TIMEOUT: Optional[float] = None  # Per-node limit, seconds
    RUN_TIMEOUT: Optional[float] = None  # Whole-run limit, seconds
    FAIL_FAST: bool = True  # Stop running siblings on first node failure

    # Logging
    LOG_LEVEL: str = "INFO"

    class Config:
        env_file = ".env"
        case_sensitive = True


# Global settings instance
settings = Settings()
