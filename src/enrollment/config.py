"""Enrollment service configuration loaded from environment variables."""

from pydantic import Field
from pydantic_settings import BaseSettings


class EnrollmentConfig(BaseSettings):
    """Enrollment configuration loaded from environment variables.

    Settings are loaded from environment variables with sensible defaults.
    For local development, create a .env file in the project root.
    """

    # Record store (conservatory backend REST API)
    records_api_url: str = Field(
        default="http://localhost:3001/api",
        description="Base URL of the records backend API",
    )
    records_api_token: str = Field(
        default="",
        description="Bearer token sent with every request (empty = anonymous)",
    )
    request_timeout_seconds: float = Field(
        default=30.0,
        description="Total timeout for a single API request",
    )

    # Retries apply to reads only; $inc/$push writes are not idempotent
    read_retry_attempts: int = Field(
        default=3,
        description="Attempts for a GET before giving up on transient errors",
    )
    read_retry_wait_seconds: float = Field(
        default=1.0,
        description="Fixed wait between GET retries",
    )

    # Critical error sink
    error_sink_path: str = Field(
        default="/system/errors",
        description="Store path that receives critical error reports",
    )
    service_name: str = Field(
        default="theory-enrollment",
        description="Service name stamped on critical error reports",
    )

    # Logging
    log_json: bool = Field(
        default=False,
        description="Output logs in JSON format (for production)",
    )
    log_level: str = Field(
        default="INFO",
        description="Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
    )

    model_config = {
        "env_prefix": "",
        "case_sensitive": False,
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }


# Singleton pattern
_config: EnrollmentConfig | None = None


def get_config() -> EnrollmentConfig:
    """Get the enrollment configuration singleton.

    Returns:
        EnrollmentConfig: Enrollment configuration instance
    """
    global _config
    if _config is None:
        _config = EnrollmentConfig()
    return _config
