"""
Application configuration using Pydantic settings.
"""
from pydantic_settings import BaseSettings
from pydantic import Field


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""
    
    # Storage Configuration
    storage_backend: str = Field(
        default="local",
        description="Storage provider to use: 'local' (JSON files) or 'remote' (PostgREST)"
    )
    local_data_dir: str = Field(
        default="data",
        description="Directory holding one JSON file per collection for the local provider"
    )
    remote_api_base_url: str = Field(
        default="https://example.supabase.co",
        description="Base URL of the remote relational service"
    )
    remote_api_key: str = Field(
        default="",
        description="API key for the remote relational service"
    )
    request_timeout: float = Field(
        default=30.0,
        description="Timeout in seconds for remote storage requests"
    )
    
    # Retry Configuration
    max_retry_attempts: int = Field(
        default=3,
        description="Maximum number of retry attempts for remote storage calls"
    )
    retry_backoff_multiplier: int = Field(
        default=1,
        description="Multiplier for exponential backoff"
    )
    retry_min_wait: int = Field(
        default=4,
        description="Minimum wait time in seconds between retries"
    )
    retry_max_wait: int = Field(
        default=10,
        description="Maximum wait time in seconds between retries"
    )
    
    # Inventory behaviour
    audit_actor: str = Field(
        default="system",
        description="Actor recorded on audit entries when the caller names none"
    )
    seed_demo_data: bool = Field(
        default=False,
        description="Seed a small demo hierarchy when the store is empty at startup"
    )
    export_filename_prefix: str = Field(
        default="orchard360_export",
        description="Prefix of downloaded CSV export file names"
    )
    
    # Logging
    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR)"
    )
    
    # CORS Configuration
    cors_origins: list[str] = Field(
        default=["*"],
        description="Allowed CORS origins (use specific origins in production)"
    )
    
    # Rate Limiting
    rate_limit_requests: int = Field(
        default=100,
        description="Maximum import/export requests per minute per client"
    )
    
    # Application Settings
    app_name: str = Field(
        default="Orchard360 Inventory",
        description="Application name"
    )
    app_version: str = Field(
        default="1.0.0",
        description="Application version"
    )
    debug: bool = Field(
        default=False,
        description="Debug mode"
    )
    
    class Config:
        env_file = ".env"
        case_sensitive = False


# Global settings instance
settings = Settings()
