"""
Application settings loaded from environment variables.

Uses pydantic-settings for validation and type safety.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field
from functools import lru_cache


class Settings(BaseSettings):
    """
    Application settings.

    All values loaded from .env file or environment variables.
    Validation happens automatically on startup.
    """

    model_config = SettingsConfigDict(
        env_file=(".env", "../.env"),  # Check current dir, then parent
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"  # Ignore extra env vars
    )

    # ===================
    # SUPABASE
    # ===================
    supabase_url: str = Field(
        ...,
        description="Supabase project URL"
    )
    supabase_key: str = Field(
        ...,
        description="Supabase anon/public key"
    )

    # ===================
    # IMPORT BATCHING
    # ===================
    import_batch_size: int = Field(
        default=100,
        ge=1,
        le=5000,
        description="Rows per reconciliation chunk for invoice imports"
    )
    import_sales_receipt_batch_size: int = Field(
        default=500,
        ge=1,
        le=5000,
        description="Rows per reconciliation chunk for sales receipt imports"
    )
    import_line_item_lookup_page_size: int = Field(
        default=200,
        ge=1,
        le=1000,
        description="Max (document, product) pairs per existing line item lookup"
    )

    # ===================
    # PRODUCT MATCHING
    # ===================
    import_similarity_threshold: float = Field(
        default=0.8,
        ge=0,
        le=1,
        description="Minimum description similarity accepted as a fuzzy product match"
    )

    # ===================
    # REMOTE CALLS
    # ===================
    import_remote_max_attempts: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Attempts per remote store call before the chunk records an error"
    )
    import_remote_backoff_seconds: float = Field(
        default=0.5,
        ge=0,
        le=30,
        description="Initial backoff between attempts (doubles each retry)"
    )

    # ===================
    # RUN BEHAVIOUR
    # ===================
    import_error_policy: str = Field(
        default="abort",
        pattern="^(abort|pause)$",
        description="What a run does on an unexpected chunk failure"
    )
    import_mapping_store_path: str = Field(
        default=".import_mappings.json",
        description="Local file holding saved column mappings"
    )

    # ===================
    # APP SETTINGS
    # ===================
    environment: str = Field(
        default="development",
        pattern="^(development|staging|production)$",
        description="Application environment"
    )
    debug: bool = Field(
        default=True,
        description="Enable debug mode"
    )
    log_level: str = Field(
        default="INFO",
        pattern="^(DEBUG|INFO|WARNING|ERROR|CRITICAL)$",
        description="Logging level"
    )
    api_host: str = Field(
        default="0.0.0.0",
        description="API host"
    )
    api_port: int = Field(
        default=8000,
        ge=1000,
        le=65535,
        description="API port"
    )

    # ===================
    # COMPUTED PROPERTIES
    # ===================
    @property
    def is_production(self) -> bool:
        """Check if running in production."""
        return self.environment == "production"

    def batch_size_for(self, import_type: str) -> int:
        """Chunk size used for an import surface."""
        if import_type == "sales_receipts":
            return self.import_sales_receipt_batch_size
        return self.import_batch_size


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Uses lru_cache to ensure settings are only loaded once.
    Call get_settings.cache_clear() to reload.

    Returns:
        Settings: Application settings

    Raises:
        ValidationError: If required env vars are missing or invalid
    """
    return Settings()


# For convenient imports: from config.settings import settings
settings = get_settings()
