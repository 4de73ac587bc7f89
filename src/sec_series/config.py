"""Configuration management via environment variables.

Reads from .env file (via pydantic-settings) with sensible defaults.
All values can be overridden via environment variables.

Required:
    EDGAR_IDENTITY  — Your name + email for SEC EDGAR API User-Agent header

Optional:
    PORT                        — API server port
    LOG_LEVEL                   — Root log level for the API entry point
    QUARTER_MIN_DAYS / QUARTER_MAX_DAYS
                                — Duration window that counts as "one quarter"
    FILING_DELAY_WARNING_DAYS   — Filing delta above this is flagged filing_delayed
    DEDUP_WEIGHT_* / DEDUP_PENALTY_FY
                                — Anchor dedup scoring magnitudes
"""

from pydantic import field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # SEC EDGAR API identity (name + email, required by SEC)
    edgar_identity: str = "sec-series sec-series@example.com"

    # API server
    port: int = 8877
    log_level: str = "INFO"

    # Series depth: default when the caller gives none, hard ceiling otherwise
    series_default_limit: int = 16
    series_max_limit: int = 40

    # Start→end duration (days) treated as approximately one fiscal quarter
    quarter_min_days: int = 70
    quarter_max_days: int = 120

    # Filing arriving later than this after quarter end is flagged
    filing_delay_warning_days: int = 60

    # Max distance (days) for a "nearest end date" fact match
    period_match_tolerance_days: int = 7

    # Anchor dedup scoring; only the relative order matters:
    # 10-Q form dominates, FY label penalty dominates negatively
    dedup_weight_10q: int = 10
    dedup_weight_filed: int = 5
    dedup_weight_frame: int = 1
    dedup_penalty_fy: int = 50

    # SEC client cache TTLs (seconds)
    tickers_cache_ttl: int = 1800
    facts_cache_ttl: int = 300
    submissions_cache_ttl: int = 120

    # Strip whitespace and stray quotes from string fields
    @field_validator("edgar_identity", "log_level", mode="before")
    @classmethod
    def strip_whitespace(cls, v: str) -> str:
        if isinstance(v, str):
            return v.strip().strip('"').strip("'").strip()
        return v

    @field_validator("quarter_max_days")
    @classmethod
    def window_ordered(cls, v: int, info) -> int:
        lo = info.data.get("quarter_min_days")
        if lo is not None and v < lo:
            raise ValueError("quarter_max_days must be >= quarter_min_days")
        return v

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


_config: Settings | None = None


def get_config() -> Settings:
    """Get or create the shared Settings singleton."""
    global _config
    if _config is None:
        _config = Settings()
    return _config
