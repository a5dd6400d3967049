from typing import Optional
from pathlib import Path
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict
from dotenv import load_dotenv

# Load environment variables from .env into os.environ
load_dotenv()


class Settings(BaseSettings):
    """SDK configuration settings backed by environment variables."""

    base_url: Optional[str] = Field(default=None, validation_alias="QUERYPANEL_BASE_URL")
    organization_id: Optional[str] = Field(default=None, validation_alias="QUERYPANEL_ORGANIZATION_ID")
    private_key: Optional[str] = Field(
        default=None,
        validation_alias="QUERYPANEL_PRIVATE_KEY",
        description="PEM encoded PKCS#8 private key used to sign service tokens."
    )
    private_key_path: Optional[str] = Field(
        default=None,
        validation_alias="QUERYPANEL_PRIVATE_KEY_PATH",
        description="Path to the PEM private key; used when QUERYPANEL_PRIVATE_KEY is unset."
    )
    default_tenant_id: Optional[str] = Field(default=None, validation_alias="QUERYPANEL_DEFAULT_TENANT_ID")
    databases_config_path: str = Field(
        default="configs/databases.yaml",
        validation_alias="QUERYPANEL_DATABASES_CONFIG",
        description="Path to the YAML file listing database attachments."
    )

    max_retry: int = Field(
        default=0,
        validation_alias="QUERYPANEL_MAX_RETRY",
        description="Number of repair attempts after the first failed execution."
    )
    chart_max_retries: int = Field(
        default=3,
        validation_alias="QUERYPANEL_CHART_MAX_RETRIES",
        description="Retry budget forwarded to the chart service."
    )
    http_timeout_sec: float = Field(
        default=30.0,
        validation_alias="QUERYPANEL_HTTP_TIMEOUT_SEC",
        description="Timeout for calls to the remote query service."
    )
    cancellable_workers: int = Field(
        default=8,
        validation_alias="QUERYPANEL_CANCELLABLE_WORKERS",
        description="Max workers for the pool running cancellable blocking calls."
    )

    breaker_fail_max: int = Field(
        default=5,
        validation_alias="QUERYPANEL_BREAKER_FAIL_MAX",
        description="Consecutive transport failures before the circuit opens."
    )
    breaker_reset_timeout_sec: int = Field(
        default=30,
        validation_alias="QUERYPANEL_BREAKER_RESET_TIMEOUT_SEC",
        description="Seconds an open circuit waits before letting a trial call through."
    )

    log_level: str = Field(default="INFO", validation_alias="QUERYPANEL_LOG_LEVEL")
    observability_exporter: str = Field(
        default="none",
        validation_alias="OBSERVABILITY_EXPORTER",
        description="Exporter for logs/traces: 'none', 'console', 'otlp'."
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    def resolve_private_key(self) -> Optional[str]:
        """Returns the inline private key, or reads it from private_key_path."""
        if self.private_key:
            return self.private_key
        if self.private_key_path:
            return Path(self.private_key_path).read_text()
        return None

    def configure_env(self, env: str) -> None:
        """Loads environment-specific variables and reloads settings."""
        if not env:
            return

        load_dotenv(f".env.{env}", override=True)
        new_settings = Settings()
        self.__dict__.update(new_settings.__dict__)


settings = Settings()
