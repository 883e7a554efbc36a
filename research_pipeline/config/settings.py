"""Application settings using Pydantic."""

from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Pipeline configuration loaded from environment variables (prefix RP_)."""

    model_config = SettingsConfigDict(
        env_prefix="RP_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Storage
    database_url: str = "sqlite:///data/research.db"
    reports_dir: str = "data/reports"

    # Scoring policy
    high_bucket_threshold: float = 70.0
    medium_bucket_threshold: float = 40.0
    scoring_batch_size: int = 10

    # Fan-out
    generation_top_k: int = 5
    max_concurrent_llm_calls: int = 2

    # Open-access full text fetched from PMC before Generation
    full_text_enrichment: bool = True
    full_text_max_items: int = 5
    full_text_max_chars: int = 4000

    # Validation evidence gathering
    validation_query_max_chars: int = 200
    validation_max_results: int = 15
    validation_providers: list[str] = ["pubmed", "semantic_scholar"]

    # Discovery
    discovery_providers: list[str] = ["pubmed", "semantic_scholar", "clinical_trials"]
    discovery_days_back: int = 7
    discovery_max_results: int = 20

    # Cross-connector deduplication
    dedup_similarity_threshold: float = 97.0
    dedup_min_title_length: int = 24

    # Externally supplied personas and organizational context
    stage_config_dir: Optional[str] = None
    context_file: Optional[str] = None

    # Connectors
    ncbi_api_key: Optional[str] = None
    connector_timeout: float = 30.0
    pubmed_min_interval: float = 0.35
    semantic_scholar_min_interval: float = 1.0
    clinical_trials_min_interval: float = 0.0

    # Logging
    log_level: str = "INFO"
    log_json: bool = False


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
