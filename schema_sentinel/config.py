"""
Configuration management for Schema Sentinel.
"""

from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings."""

    # Application
    app_name: str = Field(default="Schema Sentinel", env="APP_NAME")
    debug: bool = Field(default=False, env="DEBUG")
    environment: str = Field(default="development", env="ENVIRONMENT")

    # Run ledger
    database_url: str = Field(
        default="sqlite:///./schema_sentinel.db", env="DATABASE_URL"
    )

    # Logging
    log_level: str = Field(default="INFO", env="LOG_LEVEL")
    log_format: str = Field(
        default="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        env="LOG_FORMAT",
    )

    # Text-completion collaborator
    completion_api_key: Optional[str] = Field(default=None, env="COMPLETION_API_KEY")
    completion_base_url: str = Field(
        default="https://api.openai.com/v1", env="COMPLETION_BASE_URL"
    )
    completion_model: str = Field(default="gpt-4o-mini", env="COMPLETION_MODEL")
    completion_timeout_seconds: float = Field(
        default=60.0, env="COMPLETION_TIMEOUT_SECONDS"
    )

    # Audit budgets
    max_queries_per_module: int = Field(default=10, env="MAX_QUERIES_PER_MODULE")
    max_rows_per_query: int = Field(default=10000, env="MAX_ROWS_PER_QUERY")
    statement_timeout_ms: int = Field(default=30000, env="STATEMENT_TIMEOUT_MS")
    sample_threshold_rows: int = Field(default=100000, env="SAMPLE_THRESHOLD_ROWS")
    sample_row_limit: int = Field(default=50000, env="SAMPLE_ROW_LIMIT")
    severity_escalation_rows: int = Field(default=100, env="SEVERITY_ESCALATION_ROWS")
    duplicate_escalation_rows: int = Field(default=50, env="DUPLICATE_ESCALATION_ROWS")

    # Collaborator inputs
    max_issues_for_ai: int = Field(default=30, env="MAX_ISSUES_FOR_AI")
    investigation_row_limit: int = Field(default=20, env="INVESTIGATION_ROW_LIMIT")

    # Stage timeouts
    run_timeout_seconds: int = Field(default=900, env="RUN_TIMEOUT_SECONDS")
    introspection_timeout_seconds: int = Field(
        default=120, env="INTROSPECTION_TIMEOUT_SECONDS"
    )
    module_timeout_seconds: int = Field(default=600, env="MODULE_TIMEOUT_SECONDS")
    fix_generation_timeout_seconds: int = Field(
        default=120, env="FIX_GENERATION_TIMEOUT_SECONDS"
    )

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


# Global settings instance
settings = Settings()


def get_settings() -> Settings:
    """Get application settings."""
    return settings
