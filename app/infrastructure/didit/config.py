"""Configuration for the Didit identity verification provider."""

from pydantic_settings import BaseSettings


class DiditSettings(BaseSettings):
    """Didit API configuration settings.

    Settings can be overridden via environment variables.
    """

    DIDIT_BASE_URL: str = "https://verification.didit.me/v2"
    DIDIT_API_KEY: str = ""
    DIDIT_WORKFLOW_ID: str = ""
    DIDIT_CALLBACK_URL: str | None = None
    DIDIT_LANGUAGE: str = "es"
    DIDIT_TIMEOUT: int = 30
    DIDIT_RETRY_ATTEMPTS: int = 3
    DIDIT_RETRY_DELAY: float = 1.0

    model_config = {
        "env_prefix": "",
        "case_sensitive": True,
    }


didit_settings = DiditSettings()
