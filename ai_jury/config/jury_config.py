"""
Tunables for layer execution, persistence, progress retention and the
GitHub accessibility client.
"""
import os
from dataclasses import dataclass, field
from typing import Optional


def get_int_env(key: str, default: int) -> int:
    """Get an integer from environment variable, falling back on bad input."""
    raw = os.getenv(key)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def get_float_env(key: str, default: float) -> float:
    """Get a float from environment variable, falling back on bad input."""
    raw = os.getenv(key)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        return default


@dataclass(frozen=True)
class JuryConfig:
    # Batch processing
    batch_size: int = field(default_factory=lambda: get_int_env("JURY_BATCH_SIZE", 50))
    batch_cooldown_seconds: float = field(
        default_factory=lambda: get_float_env("JURY_BATCH_COOLDOWN_SECONDS", 0.1)
    )

    # Results writer
    insert_chunk_size: int = field(default_factory=lambda: get_int_env("JURY_INSERT_CHUNK_SIZE", 1000))

    # Final aggregation
    top_n_per_category: int = field(default_factory=lambda: get_int_env("JURY_TOP_N_PER_CATEGORY", 5))

    # Progress tracker retention
    progress_retention_seconds: float = field(
        default_factory=lambda: get_float_env("JURY_PROGRESS_RETENTION_SECONDS", 3600.0)
    )
    progress_max_sessions: int = field(
        default_factory=lambda: get_int_env("JURY_PROGRESS_MAX_SESSIONS", 200)
    )
    progress_recent_events: int = field(
        default_factory=lambda: get_int_env("JURY_PROGRESS_RECENT_EVENTS", 50)
    )

    # GitHub accessibility checks
    github_api_base: str = field(
        default_factory=lambda: os.getenv("GITHUB_API_BASE", "https://api.github.com")
    )
    github_token: Optional[str] = field(default_factory=lambda: os.getenv("GITHUB_TOKEN") or None)
    github_timeout_seconds: float = field(
        default_factory=lambda: get_float_env("GITHUB_TIMEOUT_SECONDS", 10.0)
    )


jury_config = JuryConfig()
