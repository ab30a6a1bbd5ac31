"""
Infrastate Settings - Configuration management using Pydantic Settings.

Loads configuration from environment variables and .env files.
"""

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from .models import RetryPolicy

# Find project root (where .env file is located)
PROJECT_ROOT = Path(__file__).parent.parent


class InfrastateSettings(BaseSettings):
    """
    Infrastate configuration settings.

    Settings are loaded from:
    1. Environment variables (highest priority)
    2. .env file in current directory
    3. Default values (lowest priority)
    """

    model_config = SettingsConfigDict(
        env_file=str(PROJECT_ROOT / ".env"),
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        env_prefix="INFRASTATE_",  # All Infrastate env vars must start with INFRASTATE_
    )

    # Record placement
    namespace: str = Field(
        default="d8-system",
        description="Namespace holding terraform state records (env: INFRASTATE_NAMESPACE)",
    )

    system_namespace: str = Field(
        default="kube-system",
        description="Namespace holding cluster UUID and provider configuration (env: INFRASTATE_SYSTEM_NAMESPACE)",
    )

    # Store backend
    store_backend: str = Field(
        default="kubectl",
        description="Remote store backend: kubectl or file (env: INFRASTATE_STORE_BACKEND)",
    )

    store_file: Path = Field(
        default=Path(".infrastate/records.joblib"),
        description="Records file used by the file backend (env: INFRASTATE_STORE_FILE)",
    )

    kubectl_binary: str = Field(
        default="kubectl",
        description="kubectl executable (env: INFRASTATE_KUBECTL_BINARY)",
    )

    kubeconfig: str | None = Field(
        default=None,
        description="Path to kubeconfig, defaults to kubectl's own lookup (env: INFRASTATE_KUBECONFIG)",
    )

    kube_context: str | None = Field(
        default=None,
        description="kubeconfig context to use (env: INFRASTATE_KUBE_CONTEXT)",
    )

    kubectl_timeout: int = Field(
        default=30,
        description="Seconds before a single kubectl call is abandoned (env: INFRASTATE_KUBECTL_TIMEOUT)",
    )

    # Retry budgets
    checkpoint_attempts: int = Field(
        default=45,
        description="Attempts for intermediate checkpoints (env: INFRASTATE_CHECKPOINT_ATTEMPTS)",
    )
    checkpoint_delay: float = Field(
        default=10.0,
        description="Seconds between checkpoint attempts (env: INFRASTATE_CHECKPOINT_DELAY)",
    )

    final_attempts: int = Field(
        default=45,
        description="Attempts for final state saves (env: INFRASTATE_FINAL_ATTEMPTS)",
    )
    final_delay: float = Field(
        default=10.0,
        description="Seconds between final save attempts (env: INFRASTATE_FINAL_DELAY)",
    )

    read_attempts: int = Field(
        default=5,
        description="Attempts for state reads (env: INFRASTATE_READ_ATTEMPTS)",
    )
    read_delay: float = Field(
        default=5.0,
        description="Seconds between read attempts (env: INFRASTATE_READ_DELAY)",
    )

    strict_group_settings: bool = Field(
        default=False,
        description="Fail reads when nodes of one group disagree on settings (env: INFRASTATE_STRICT_GROUP_SETTINGS)",
    )

    # Logging Configuration
    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR) (env: INFRASTATE_LOG_LEVEL)",
    )

    @property
    def checkpoint_policy(self) -> RetryPolicy:
        return RetryPolicy(attempts=self.checkpoint_attempts, delay=self.checkpoint_delay)

    @property
    def final_policy(self) -> RetryPolicy:
        return RetryPolicy(attempts=self.final_attempts, delay=self.final_delay)

    @property
    def read_policy(self) -> RetryPolicy:
        return RetryPolicy(attempts=self.read_attempts, delay=self.read_delay)


# Global settings instance
_settings: InfrastateSettings | None = None


def get_settings() -> InfrastateSettings:
    """
    Get the global settings instance.

    Creates the settings instance on first call, then returns cached instance.

    Returns:
        InfrastateSettings instance
    """
    global _settings
    if _settings is None:
        _settings = InfrastateSettings()
    return _settings


def reload_settings() -> InfrastateSettings:
    """
    Reload settings from environment/files.

    Useful for testing or when .env file changes.

    Returns:
        Fresh InfrastateSettings instance
    """
    global _settings
    _settings = InfrastateSettings()
    return _settings
