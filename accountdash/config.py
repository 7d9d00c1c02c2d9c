"""
Application Configuration - Pydantic Settings for type-safe config.

NO DICTIONARIES - All configuration is strongly typed.
FAIL FAST - Critical config is validated at startup.
"""

import sys

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class ConfigurationError(Exception):
    """Raised when critical configuration is missing or invalid."""

    pass


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Backend API - NO DEFAULT, the dashboard is useless without it
    api_base: str = ""
    request_timeout_seconds: float = 30.0  # Dashboard payloads can be slow
    request_timeout_short_seconds: float = 10.0

    # Service identity
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    api_title: str = "Account Dashboard"
    api_version: str = "0.1.0"
    api_description: str = "Domains and license keys for an account"

    # Post-checkout reconciliation
    reconcile_max_cycles: int = 30
    reconcile_interval_seconds: float = 10.0
    reconcile_initial_delay_seconds: float = 5.0  # Backend needs time for the payment callback
    reconcile_settle_delay_seconds: float = 0.5
    intent_max_age_seconds: int = 86400  # Older pending purchases are discarded at startup

    # Auth provider acquisition
    auth_provider_module: str = ""  # Dotted import path, e.g. "memberstack_dom"
    auth_public_key: str = ""
    auth_use_cookies: bool = True
    auth_cookie_on_root_domain: bool = True
    auth_session_duration_days: int = 30
    handle_module_poll_attempts: int = 10
    handle_fallback_poll_attempts: int = 10
    handle_poll_interval_seconds: float = 0.1
    handle_ready_timeout_seconds: float = 1.0
    session_ready_timeout_seconds: float = 2.0
    auth_acquire_timeout_seconds: float = 5.0

    # Per-session storage for pending purchases: memory, file or none
    session_storage_backend: str = "memory"
    session_storage_dir: str = ".sessions"
    session_idle_timeout_seconds: float = 3600.0  # Idle dashboard sessions are evicted
    max_sessions: int = 10000

    # Purchases
    max_domains_per_purchase: int = 5

    # Logging
    log_level: str = "INFO"
    log_format: str = "json"  # json or console

    # Observability
    metrics_enabled: bool = True
    tracing_enabled: bool = False
    otlp_endpoint: str = "http://otel-collector:4317"
    otlp_insecure: bool = True
    service_name: str = "account-dashboard"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    @model_validator(mode="after")
    def validate_critical_config(self) -> "Settings":
        """
        FAIL FAST: Validate critical configuration at startup.

        The app MUST NOT start without a reachable backend URL or with
        reconciliation parameters that would never poll.
        """
        errors: list[str] = []

        if not self.api_base:
            errors.append("API_BASE is required but empty or missing")
        elif not self.api_base.startswith(("http://", "https://")):
            errors.append(f"API_BASE must be an http(s) URL, got: {self.api_base[:20]}...")

        if self.session_storage_backend not in ("memory", "file", "none"):
            errors.append(
                f"SESSION_STORAGE_BACKEND must be memory, file or none, got: {self.session_storage_backend}"
            )
        elif self.session_storage_backend == "file" and not self.session_storage_dir:
            errors.append("SESSION_STORAGE_DIR is required for the file storage backend")

        if self.reconcile_max_cycles < 1:
            errors.append("RECONCILE_MAX_CYCLES must be at least 1")
        if self.handle_module_poll_attempts < 0 or self.handle_fallback_poll_attempts < 0:
            errors.append("Handle poll attempts cannot be negative")
        if self.session_idle_timeout_seconds <= 0 or self.max_sessions < 1:
            errors.append("SESSION_IDLE_TIMEOUT_SECONDS and MAX_SESSIONS must be positive")

        if errors:
            error_msg = "\n".join(
                [
                    "",
                    "=" * 60,
                    "CRITICAL CONFIGURATION ERROR - APPLICATION CANNOT START",
                    "=" * 60,
                    *[f"  ✗ {e}" for e in errors],
                    "=" * 60,
                    "",
                ]
            )
            print(error_msg, file=sys.stderr)
            raise ConfigurationError(error_msg)

        return self

    @property
    def normalized_api_base(self) -> str:
        """Backend base URL without a trailing slash."""
        return self.api_base.rstrip("/")

    @property
    def provider_init_options(self) -> dict[str, object]:
        """Keyword options passed to the auth provider's init()."""
        return {
            "public_key": self.auth_public_key,
            "use_cookies": self.auth_use_cookies,
            "set_cookie_on_root_domain": self.auth_cookie_on_root_domain,
            "session_duration_days": self.auth_session_duration_days,
        }


# Global settings instance - validates at import time
settings = Settings()


def get_settings() -> Settings:
    """Get application settings instance."""
    return settings
