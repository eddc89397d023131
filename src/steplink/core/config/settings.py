"""Application settings loaded from environment variables."""

from __future__ import annotations

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """steplink server configuration."""

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}

    # Server
    # Loopback by default; there is no auth layer in front of the tools.
    steplink_host: str = "127.0.0.1"
    steplink_port: int = 8001
    steplink_log_level: str = "info"
    steplink_allow_insecure_bind: bool = False

    # Provider identity
    provider_package: str = "com.google.android.apps.healthdata"
    store_package: str = "com.android.vending"
    onboarding_url: str = "healthconnect://onboarding"
    caller_package: str = "com.example.stepscountexample"

    # Local provider state
    provider_installed: bool = True
    provider_version_code: int = 1
    min_provider_version_code: int = 1

    # Storage (local provider store)
    db_path: str = "~/.steplink/steps.db"

    # Encryption
    encryption_key: str = ""

    # Rendering
    timezone: str = ""  # IANA name; empty uses the host zone
    steps_label_template: str = "{count}"
    steps_error_text: str = ""


def get_settings() -> Settings:
    """Create and return a Settings instance."""
    return Settings()
