"""
Configuration for the temporal-tables tools.

All settings come from environment variables prefixed ``TEMPORAL_TABLES_``,
e.g. ``TEMPORAL_TABLES_DATABASE_URL``.
"""

from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """CLI and listener configuration."""

    # PostgreSQL
    database_url: str = Field(default="postgresql+psycopg2://postgres@localhost:5432/postgres")

    # Configuration store; None keeps it in the search_path schema
    metadata_schema: Optional[str] = Field(default=None)

    # Logging
    log_level: str = Field(default="INFO")
    log_format: str = Field(default="text", description="text or json")

    model_config = {"env_prefix": "TEMPORAL_TABLES_"}
