"""
Pydantic Schemas - Projection, Policy and Outline Models

Defines the value types passed between the snapshot components:
- Projection requests (full, reduce, outline)
- Retry and watch policies
- Watch controller state carried across cycles
- Outline entries emitted by the projector

Usage:
    from openapi_snapshot.utils.schemas import ProjectionRequest, ReduceKey

    request = ProjectionRequest.reduce([ReduceKey.PATHS, ReduceKey.COMPONENTS])
"""

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, model_validator


class ReduceKey(str, Enum):
    """Top-level keys a reduced projection may keep, in output order."""

    PATHS = "paths"
    COMPONENTS = "components"


REDUCE_ORDER: tuple[ReduceKey, ...] = (ReduceKey.PATHS, ReduceKey.COMPONENTS)


class ProjectionKind(str, Enum):
    FULL = "full"
    REDUCE = "reduce"
    OUTLINE = "outline"


class ProjectionRequest(BaseModel):
    """One projection applied to a fetched document.

    Keys are only meaningful for REDUCE and must be non-empty there.
    """

    model_config = ConfigDict(frozen=True)

    kind: ProjectionKind = Field(default=ProjectionKind.FULL)
    keys: tuple[ReduceKey, ...] = Field(default=())

    @model_validator(mode="after")
    def validate_keys(self) -> "ProjectionRequest":
        if self.kind == ProjectionKind.REDUCE and not self.keys:
            raise ValueError("reduce projection requires at least one key")
        if self.kind != ProjectionKind.REDUCE and self.keys:
            raise ValueError(f"{self.kind.value} projection does not take keys")
        return self

    @classmethod
    def full(cls) -> "ProjectionRequest":
        return cls(kind=ProjectionKind.FULL)

    @classmethod
    def reduce(cls, keys: list[ReduceKey]) -> "ProjectionRequest":
        return cls(kind=ProjectionKind.REDUCE, keys=tuple(keys))

    @classmethod
    def outline(cls) -> "ProjectionRequest":
        return cls(kind=ProjectionKind.OUTLINE)


class RetryPolicy(BaseModel):
    """Bounded retry for transient fetch failures.

    Delay before retry n (1-based) is base_delay_ms * 2^(n-1), capped at
    max_delay_ms.
    """

    model_config = ConfigDict(frozen=True)

    max_retries: int = Field(default=3, ge=0)
    base_delay_ms: int = Field(default=250, ge=0)
    max_delay_ms: int = Field(default=4000, ge=0)
    body_snippet_bytes: int = Field(default=512, gt=0)


class WatchPolicy(BaseModel):
    """Inter-cycle timing for watch mode."""

    model_config = ConfigDict(frozen=True)

    interval_ms: int = Field(default=2000, gt=0)
    min_interval_ms: int = Field(default=250, ge=0)
    backoff_multiplier: float = Field(default=2.0, ge=1.0)
    backoff_cap: int = Field(default=3, ge=1)
    max_delay_ms: int = Field(default=10_000, gt=0)


class WatchState(BaseModel):
    """Scalars carried between watch cycles.

    Mutated only by the watch controller at cycle boundaries. resolved_url is
    fixed once the startup resolution step has run.
    """

    resolved_url: str
    interval_ms: int
    failure_streak: int = 0
    cycles: int = 0
    prompted: bool = False
    cancelled: bool = False


class OutlineOperation(BaseModel):
    """Outline of one operation: query names, request and response refs."""

    query: list[str] = Field(default_factory=list)
    request: str | None = None
    responses: dict[str, str | None] = Field(default_factory=dict)


class OutlineSchema(BaseModel):
    """One level of a component schema. Nested detail stays as references."""

    type: str = "object"
    required: list[str] = Field(default_factory=list)
    properties: dict[str, str] = Field(default_factory=dict)
    items: str | None = None
    allOf: list[str] | None = None
    oneOf: list[str] | None = None
    anyOf: list[str] | None = None
