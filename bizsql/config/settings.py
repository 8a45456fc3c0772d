"""
Configuration management for the pipeline.
Loads settings from environment variables and the project .env file.
"""

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings
from dotenv import load_dotenv
from loguru import logger

# Find project root (where .env and artifacts/ live)
# This file is at bizsql/config/settings.py, so project root is 3 levels up
_project_root = Path(__file__).resolve().parent.parent.parent

# Export for use by catalog, registry and logger paths
PROJECT_ROOT = _project_root

_env_file = _project_root / ".env"
if _env_file.exists():
    load_dotenv(dotenv_path=_env_file, override=True)
    logger.debug(f"Loaded .env from: {_env_file}")
else:
    load_dotenv(override=False)


class Settings(BaseSettings):
    """Application settings from environment variables."""

    # LLM Provider Selection
    llm_provider: str = Field(default="openai")  # Options: "openai" | "ollama"
    openai_api_key: str = Field(default="")
    openai_model: str = Field(default="gpt-4o-mini")
    openai_temperature: float = Field(default=0.0)
    openai_embedding_model: str = Field(default="text-embedding-3-small")
    ollama_base_url: str = Field(default="http://localhost:11434")
    ollama_model: str = Field(default="llama3")
    max_output_tokens: int = Field(default=1000)

    # Metadata artifacts
    business_registry_path: str = Field(default="artifacts/business_registry.json")
    catalog_snapshot_path: str = Field(default="artifacts/catalog_snapshot.json")
    default_schema_name: str = Field(default="dbo")

    # Business context analysis
    max_question_length: int = Field(default=500)
    analysis_timeout_seconds: float = Field(default=2.0)
    intent_confidence_weight: float = Field(default=0.3)
    domain_confidence_weight: float = Field(default=0.3)
    entity_confidence_weight: float = Field(default=0.4)
    domain_min_score: float = Field(default=0.3)  # Below this the domain falls back to General
    general_domain_confidence: float = Field(default=0.2)
    fuzzy_match_cutoff: float = Field(default=0.82)  # difflib ratio for schema-name fallback

    # Schema retrieval
    semantic_strategy_weight: float = Field(default=0.30)
    domain_strategy_weight: float = Field(default=0.20)
    entity_strategy_weight: float = Field(default=0.35)
    glossary_strategy_weight: float = Field(default=0.15)
    relevance_floor: float = Field(default=0.15)  # Minimum merged score (0.0-1.0)
    semantic_min_similarity: float = Field(default=0.35)
    strategy_timeout_seconds: float = Field(default=3.0)
    bridge_score_factor: float = Field(default=0.8)  # Bridge table score relative to its endpoints

    # Token budget
    max_total_tokens: int = Field(default=4000)
    reserved_response_tokens: int = Field(default=500)
    max_examples_in_prompt: int = Field(default=3)

    # SQL generation and validation
    sql_dialect: str = Field(default="mysql")
    sql_correction_max_attempts: int = Field(default=3)  # Total generation attempts, first one included
    dry_run_database_url: str = Field(default="")  # Empty disables the dry-run sandbox
    dry_run_timeout_seconds: float = Field(default=5.0)
    dry_run_max_rows: int = Field(default=5_000_000)  # Estimated rows above this fail the dry run

    # Resilience for model and sandbox calls
    model_timeout_seconds: float = Field(default=30.0)
    retry_max_attempts: int = Field(default=3)
    retry_base_delay: float = Field(default=0.5)
    circuit_breaker_threshold: int = Field(default=5)
    circuit_breaker_reset_seconds: float = Field(default=30.0)

    # Logging
    log_level: str = Field(default="INFO")

    class Config:
        env_file = str(_project_root / ".env")
        env_file_encoding = "utf-8"
        extra = "allow"  # Allow extra fields from .env


# Create global settings instance
settings = Settings()


def resolve_project_path(path: str) -> Path:
    """Resolve a settings path relative to the project root."""
    resolved = Path(path)
    if not resolved.is_absolute():
        resolved = _project_root / resolved
    return resolved
