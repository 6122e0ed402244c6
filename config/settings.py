"""
PhoneBridge Configuration Settings
"""
from pathlib import Path
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    # Paths (use PHONEBRIDGE_ prefix)
    data_path: Path = Field(
        default=Path("./data"),
        alias="PHONEBRIDGE_DATA_PATH",
        description="Directory holding the directory/call-details SQLite database"
    )
    overrides_path: Path = Field(
        default=Path(__file__).parent / "direct_overrides.yaml",
        alias="PHONEBRIDGE_OVERRIDES_PATH",
        description="YAML file with direct phone -> email/contact overrides"
    )

    # Server
    port: int = Field(default=8000, alias="PHONEBRIDGE_PORT")
    host: str = Field(default="0.0.0.0", alias="PHONEBRIDGE_HOST")

    # Public base URL of this deployment (used in startup logs and health output)
    site_url: str = Field(default="http://localhost:8000", alias="SITE_URL")

    # SalesNexus CRM (no prefix - standard env var names)
    salesnexus_api_key: str = Field(default="", alias="SALESNEXUS_API_KEY")
    salesnexus_api_url: str = Field(
        default="https://logon.salesnexus.com/api/call-v1",
        alias="SALESNEXUS_API_URL"
    )
    crm_timeout_seconds: float = Field(
        default=10.0,
        alias="PHONEBRIDGE_CRM_TIMEOUT",
        description="Timeout for each SalesNexus API call (seconds)"
    )

    # Contact that receives notes when no better match is found.
    # Must be set in production; the webhook relay refuses to start without it.
    fallback_contact_id: str = Field(default="", alias="FALLBACK_CONTACT_ID")

    # Resolution
    lookup_timeout_seconds: float = Field(
        default=2.0,
        alias="PHONEBRIDGE_LOOKUP_TIMEOUT",
        description="Upper bound on the directory lookup during contact resolution"
    )
    call_context_ttl_seconds: int = Field(
        default=3600,
        alias="PHONEBRIDGE_CALL_CONTEXT_TTL",
        description="How long from/to numbers for a call are kept for later webhook events"
    )

    # Bulk import
    import_batch_size: int = Field(default=500, alias="PHONEBRIDGE_IMPORT_BATCH_SIZE")

    @property
    def crm_configured(self) -> bool:
        """Check if the SalesNexus API key is set."""
        return bool(self.salesnexus_api_key and self.salesnexus_api_key.strip())

    @property
    def directory_db_path(self) -> Path:
        """Path to the directory SQLite database."""
        return self.data_path / "directory.db"


settings = Settings()
