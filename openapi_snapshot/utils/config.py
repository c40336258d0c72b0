"""
Configuration Utility - Environment Variables and Run Configuration

Process defaults are loaded from the environment (prefix OPENAPI_SNAPSHOT_) and
an optional .env file using pydantic-settings. Command-line values are merged
over those defaults into a SnapshotConfig, the validated value consumed by the
fetch, projection and write components.

Usage:
    from openapi_snapshot.utils.config import build_config, get_settings

    config = build_config(settings=get_settings(), url="http://localhost:3000/openapi.json")
"""

import logging
from functools import lru_cache
from pathlib import Path

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from openapi_snapshot.utils.errors import ConflictingProjection, InvalidReduceList, UsageError
from openapi_snapshot.utils.schemas import (
    ProjectionKind,
    ProjectionRequest,
    ReduceKey,
    RetryPolicy,
    WatchPolicy,
)

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """Process defaults loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="OPENAPI_SNAPSHOT_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # Source
    URL: str = Field(default="http://localhost:3000/api-docs/openapi.json")
    TIMEOUT_MS: int = Field(default=10_000)

    # Outputs
    OUT: str = Field(default="openapi/backend_openapi.json")
    OUTLINE_OUT: str = Field(default="openapi/backend_openapi.outline.json")
    REDUCE: str = Field(default="paths,components")

    # Fetch retry
    FETCH_MAX_RETRIES: int = Field(default=3)
    FETCH_RETRY_BASE_MS: int = Field(default=250)
    FETCH_RETRY_MAX_MS: int = Field(default=4000)
    BODY_SNIPPET_BYTES: int = Field(default=512)

    # Watch loop
    INTERVAL_MS: int = Field(default=2000)
    MIN_INTERVAL_MS: int = Field(default=250)
    BACKOFF_MULTIPLIER: float = Field(default=2.0)
    BACKOFF_CAP: int = Field(default=3)
    BACKOFF_MAX_MS: int = Field(default=10_000)

    # Logging
    LOG_LEVEL: str = Field(default="INFO")
    LOG_FORMAT: str = Field(default="text")


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance.

    Returns:
        Singleton Settings instance
    """
    return Settings()


class SnapshotConfig(BaseModel):
    """Validated configuration for one-shot and watch runs."""

    url: str
    url_from_default: bool = False
    out: Path | None = None
    outline_out: Path | None = None
    stdout: bool = False
    projection: ProjectionRequest = Field(default_factory=ProjectionRequest.full)
    minify: bool = False
    timeout_ms: int = Field(default=10_000, gt=0)
    headers: dict[str, str] = Field(default_factory=dict)
    retry: RetryPolicy = Field(default_factory=RetryPolicy)


def parse_reduce_list(value: str) -> list[ReduceKey]:
    """
    Parse a comma separated reduce list such as "paths,components".

    Args:
        value: Raw option value

    Returns:
        Unique keys in the order given

    Raises:
        InvalidReduceList: If the list is empty, mixed case or names an unknown key
    """
    keys: list[ReduceKey] = []
    for raw in value.split(","):
        item = raw.strip()
        if not item:
            continue
        if item.lower() != item:
            raise InvalidReduceList(f"reduce values must be lowercase: {item}")
        try:
            key = ReduceKey(item)
        except ValueError:
            raise InvalidReduceList(f"unsupported reduce value: {item}") from None
        if key not in keys:
            keys.append(key)

    if not keys:
        raise InvalidReduceList("reduce list cannot be empty")
    return keys


def parse_headers(raw_headers: list[str]) -> dict[str, str]:
    """
    Parse repeated "Name: value" header options.

    Later occurrences of the same name replace earlier ones.

    Raises:
        UsageError: If an entry has no colon or an empty name
    """
    headers: dict[str, str] = {}
    for raw in raw_headers:
        name, sep, value = raw.partition(":")
        name = name.strip()
        if not sep or not name:
            raise UsageError(f"invalid header format: {raw}")
        headers[name] = value.strip()
    return headers


def validate_config(config: SnapshotConfig) -> None:
    """
    Reject configurations the pipeline cannot honour.

    Raises:
        UsageError: If no destination is configured or stdout is combined with an outline file
        ConflictingProjection: If the outline profile is paired with a second outline file
    """
    if not config.stdout and config.out is None:
        raise UsageError("--out is required unless --stdout is set.")
    if config.stdout and config.outline_out is not None:
        raise UsageError("--outline-out cannot be combined with --stdout.")
    if config.projection.kind == ProjectionKind.OUTLINE and config.outline_out is not None:
        raise ConflictingProjection("--outline-out is not supported with --profile outline.")


def build_config(
    *,
    settings: Settings,
    url: str | None = None,
    out: str | None = None,
    outline_out: str | None = None,
    reduce: str | None = None,
    profile: str = "full",
    minify: bool = False,
    timeout_ms: int | None = None,
    headers: list[str] | None = None,
    stdout: bool = False,
    watch: bool = False,
    no_outline: bool = False,
) -> SnapshotConfig:
    """
    Merge command-line values over settings into a validated SnapshotConfig.

    Watch mode with the full profile applies the default reduce list and the
    default outline destination unless they are given or disabled.

    Raises:
        ConflictingProjection: If a reduce list is combined with the outline profile
        InvalidReduceList: If the reduce list is malformed
        UsageError: If headers or destinations are invalid
    """
    reduce_value = reduce
    if reduce_value is None and watch and profile == "full":
        reduce_value = settings.REDUCE

    if profile == "outline":
        if reduce_value is not None:
            raise ConflictingProjection("--reduce is not supported with --profile outline.")
        projection = ProjectionRequest.outline()
    elif reduce_value is not None:
        projection = ProjectionRequest.reduce(parse_reduce_list(reduce_value))
    else:
        projection = ProjectionRequest.full()

    if stdout and out is not None:
        logger.warning("--out is ignored because --stdout is set.")

    out_path: Path | None = None
    if not stdout:
        out_path = Path(out or settings.OUT)

    outline_path: Path | None = Path(outline_out) if outline_out else None
    if outline_path is None and watch and profile == "full" and not stdout and not no_outline:
        outline_path = Path(settings.OUTLINE_OUT)

    config = SnapshotConfig(
        url=url or settings.URL,
        url_from_default=url is None,
        out=out_path,
        outline_out=outline_path,
        stdout=stdout,
        projection=projection,
        minify=minify,
        timeout_ms=timeout_ms if timeout_ms is not None else settings.TIMEOUT_MS,
        headers=parse_headers(headers or []),
        retry=RetryPolicy(
            max_retries=settings.FETCH_MAX_RETRIES,
            base_delay_ms=settings.FETCH_RETRY_BASE_MS,
            max_delay_ms=settings.FETCH_RETRY_MAX_MS,
            body_snippet_bytes=settings.BODY_SNIPPET_BYTES,
        ),
    )
    validate_config(config)
    return config


def build_watch_policy(settings: Settings, interval_ms: int | None = None) -> WatchPolicy:
    """Build the watch timing policy from settings and an optional interval override."""
    return WatchPolicy(
        interval_ms=interval_ms if interval_ms is not None else settings.INTERVAL_MS,
        min_interval_ms=settings.MIN_INTERVAL_MS,
        backoff_multiplier=settings.BACKOFF_MULTIPLIER,
        backoff_cap=settings.BACKOFF_CAP,
        max_delay_ms=settings.BACKOFF_MAX_MS,
    )
