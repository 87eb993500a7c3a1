"""Settings read from the environment.

Entry scripts load .env/env with python-dotenv before calling Settings.from_env().
Limits here are advisory; nothing enforces repository size or commit counts.
"""
import os
from dataclasses import dataclass, field
from typing import Optional

from repo_timeline.domain.exceptions import InvalidOptionsError
from repo_timeline.domain.models import AnalyzeOptions


def _get_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError as e:
        raise InvalidOptionsError(f"{name} must be an integer, got {raw!r}") from e


def _get_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError as e:
        raise InvalidOptionsError(f"{name} must be a number, got {raw!r}") from e


def _get_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _default_options_from_env() -> AnalyzeOptions:
    filters = os.getenv("ANALYZE_PATH_FILTERS", "")
    return AnalyzeOptions.from_dict({
        "depth": _get_int("ANALYZE_DEPTH", 500),
        "since": os.getenv("ANALYZE_SINCE") or None,
        "until": os.getenv("ANALYZE_UNTIL") or None,
        "pathFilters": [f for f in filters.split(",") if f.strip()],
        "shallow": _get_bool("ANALYZE_SHALLOW", True),
        "singleBranch": _get_bool("ANALYZE_SINGLE_BRANCH", True),
    })


@dataclass(frozen=True)
class Settings:
    """Runtime configuration for the ingestion pipeline."""
    postgres_host: str = "localhost"
    postgres_port: str = "5432"
    postgres_db: str = "repo_timeline"
    postgres_user: str = "postgres"
    postgres_password: str = "postgres"
    repo_storage_path: str = "./repos"
    batch_size: int = 200
    diff_batch_size: int = 200
    max_workers: int = 4
    clone_timeout: float = 600.0
    fetch_timeout: float = 300.0
    git_timeout: float = 120.0
    stats_timeout: float = 30.0
    rename_threshold: int = 50
    include_line_counts: bool = False
    store_snapshots: bool = False
    content_cache_size: int = 1000
    content_cache_ttl: float = 3600.0
    timeline_cache_size: int = 200
    timeline_cache_ttl: float = 1800.0
    poll_interval: float = 1.0
    log_level: str = "INFO"
    default_options: AnalyzeOptions = field(default_factory=AnalyzeOptions.recommended)

    def __post_init__(self):
        if self.batch_size <= 0 or self.diff_batch_size <= 0:
            raise InvalidOptionsError("batch sizes must be positive")
        if self.max_workers <= 0:
            raise InvalidOptionsError("MAX_WORKERS must be positive")
        if not 0 <= self.rename_threshold <= 100:
            raise InvalidOptionsError("RENAME_THRESHOLD must be between 0 and 100")

    @property
    def connection_string(self) -> str:
        """PostgreSQL connection string."""
        return (
            f"host={self.postgres_host} port={self.postgres_port} dbname={self.postgres_db} "
            f"user={self.postgres_user} password={self.postgres_password}"
        )

    @classmethod
    def from_env(cls, repo_storage_path: Optional[str] = None) -> 'Settings':
        """Build settings from environment variables."""
        return cls(
            postgres_host=os.getenv("POSTGRES_HOST", "localhost"),
            postgres_port=os.getenv("POSTGRES_PORT", "5432"),
            postgres_db=os.getenv("POSTGRES_DB", "repo_timeline"),
            postgres_user=os.getenv("POSTGRES_USER", "postgres"),
            postgres_password=os.getenv("POSTGRES_PASSWORD", "postgres"),
            repo_storage_path=repo_storage_path or os.getenv("REPO_STORAGE_PATH", "./repos"),
            batch_size=_get_int("BATCH_SIZE", 200),
            diff_batch_size=_get_int("DIFF_BATCH_SIZE", 200),
            max_workers=_get_int("MAX_WORKERS", 4),
            clone_timeout=_get_float("CLONE_TIMEOUT", 600.0),
            fetch_timeout=_get_float("FETCH_TIMEOUT", 300.0),
            git_timeout=_get_float("GIT_TIMEOUT", 120.0),
            stats_timeout=_get_float("STATS_TIMEOUT", 30.0),
            rename_threshold=_get_int("RENAME_THRESHOLD", 50),
            include_line_counts=_get_bool("INCLUDE_LINE_COUNTS", False),
            store_snapshots=_get_bool("STORE_SNAPSHOTS", False),
            content_cache_size=_get_int("CONTENT_CACHE_SIZE", 1000),
            content_cache_ttl=_get_float("CONTENT_CACHE_TTL", 3600.0),
            timeline_cache_size=_get_int("TIMELINE_CACHE_SIZE", 200),
            timeline_cache_ttl=_get_float("TIMELINE_CACHE_TTL", 1800.0),
            poll_interval=_get_float("POLL_INTERVAL", 1.0),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
            default_options=_default_options_from_env(),
        )
