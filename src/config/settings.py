"""Application settings loaded from environment variables via pydantic-settings.

# ─── HOW SETTINGS WORK (Junior Developer Guide) ───────────────────────
#
# This class uses pydantic-settings to read configuration from TWO
# sources (in priority order):
#
#   1. **Environment variables** - e.g., OPENAI_API_KEY=sk-abc123
#      (highest priority - always wins)
#   2. **.env file** - key=value lines in the project root .env file
#      (lower priority - used for local development)
#
# Field `dedup_threshold` maps to env var `DEDUP_THRESHOLD`, and so on.
#
# Every threshold and limit is its own field.  The duplicate-detection
# threshold and the direct-match threshold are deliberately separate
# values: tune one without touching the other.
# ──────────────────────────────────────────────────────────────────────
"""

from pydantic_settings import BaseSettings, SettingsConfigDict

_MIB = 1024 * 1024


class Settings(BaseSettings):
    """KB ingestion + answer routing settings.

    Environment variables override defaults. Loaded from .env file when present.
    """

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    # === LLM / Embedding Providers ===
    # Empty string = "not configured".
    openai_api_key: str = ""
    openai_base_url: str = ""  # OpenAI-compatible endpoint override
    openai_answer_model: str = "gpt-4o-mini"
    openai_vision_model: str = "gpt-4o"
    openai_embedding_model: str = "text-embedding-3-small"
    anthropic_api_key: str = ""
    anthropic_model: str = "claude-sonnet-4-20250514"

    # === KB Store ===
    chromadb_persist_dir: str = "./data/chromadb"
    chromadb_collection: str = "knowledge_items"

    # === Durable image store (Cloudflare R2, S3-compatible) ===
    r2_account_id: str = ""
    r2_access_key_id: str = ""
    r2_secret_access_key: str = ""
    r2_bucket_name: str = ""
    r2_public_url: str = ""

    # === Chunking ===
    chunk_max_length: int = 1000
    chunk_overlap: int = 200
    chunk_min_length: int = 50  # chunks must be strictly longer than this

    # === Page rendering ===
    render_target_width: int = 1200
    render_max_pages: int = 100

    # === Deduplication ===
    dedup_threshold: float = 0.85

    # === Answer routing ===
    match_threshold: float = 0.8
    search_threshold: float = 0.3
    search_max_results: int = 3
    context_retry_max_results: int = 3
    image_overlap_floor: float = 0.2
    answer_timeout_ms: int = 4500

    # === Ingestion jobs ===
    job_ttl_seconds: int = 3600
    job_gc_interval_seconds: int = 600
    max_file_size: int = 50 * _MIB
    max_total_size: int = 200 * _MIB
    max_concurrent_jobs: int = 3
    # Prefix for server-served image URLs; empty keeps them relative.
    public_base_url: str = ""

    # === App Config ===
    app_host: str = "0.0.0.0"
    app_port: int = 8000
    app_env: str = "development"
    log_level: str = "INFO"

    def r2_configured(self) -> bool:
        """Return ``True`` when every R2 credential and the public URL are set."""
        return all(
            (
                self.r2_account_id,
                self.r2_access_key_id,
                self.r2_secret_access_key,
                self.r2_bucket_name,
                self.r2_public_url,
            )
        )

    def get_available_llm_providers(self) -> list[str]:
        """Return a list of LLM provider names that have non-empty API keys configured."""
        providers: list[str] = []
        if self.anthropic_api_key:
            providers.append("anthropic")
        if self.openai_api_key:
            providers.append("openai")
        return providers
