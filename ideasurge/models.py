"""
Pydantic models shared across the IdeaSurge core.

Two families live here:

* domain records (``Idea``, ``DeepDiveResult``, ``IdeaStoreState``,
  ``IdeaRecord``) that the rest of the package passes around, and
* payload schemas (``IdeaPayload``, ``IdeaEnvelope``, ``DeepDivePayload``, ...)
  used to structurally validate untrusted JSON coming from the model or from
  HTTP request bodies before any domain record is built.

Field names are snake_case in Python and camelCase on the wire; always dump
with ``by_alias=True``.
"""

from __future__ import annotations

import re
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

DEFAULT_CATEGORY = "Uncategorized"
STORE_VERSION = 1

_SOURCE_SPLIT = re.compile(r",|\n")


def utc_now_iso() -> str:
    """Current UTC time as an ISO-8601 string with millisecond precision."""
    return (
        datetime.now(timezone.utc)
        .isoformat(timespec="milliseconds")
        .replace("+00:00", "Z")
    )


def normalize_source(value: Any) -> list[str]:
    """Coerce a ``source`` value (list or delimited string) to clean strings.

    Order is preserved and duplicates are kept.

    Examples:
        >>> normalize_source(" a, b\\nc ")
        ['a', 'b', 'c']
        >>> normalize_source(["x ", "", "x"])
        ['x', 'x']
    """
    if value is None:
        return []
    if isinstance(value, str):
        parts = _SOURCE_SPLIT.split(value)
    elif isinstance(value, (list, tuple)):
        parts = [str(item) for item in value if item is not None]
    else:
        return []
    return [part.strip() for part in parts if part.strip()]


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ── Domain records ─────────────────────────────────────────────────────────


class Idea(_CamelModel):
    """A candidate SaaS concept extracted from model output."""

    id: str
    title: str
    one_liner: str = ""
    problem: str
    target_market: str = ""
    market_signal: str = ""
    revenue_model: str = ""
    source: list[str] = Field(default_factory=list)
    category: Optional[str] = None
    created_at: str

    def is_emittable(self) -> bool:
        """True when both ``title`` and ``problem`` carry text."""
        return bool(self.title.strip() and self.problem.strip())


class DeepDiveSection(_CamelModel):
    """One named section of a deep-dive report."""

    key: str
    title: str
    content: str


class DeepDiveResult(_CamelModel):
    """A research expansion tied to one Idea (weak reference by id)."""

    idea_id: str
    summary: str
    sections: list[DeepDiveSection]
    sources: list[str] = Field(default_factory=list)
    generated_at: str


class DeepDiveRequest(_CamelModel):
    """What the user asked a deep dive to focus on."""

    idea_id: str
    mode: Literal["preset", "custom"] = "preset"
    focus: Literal["market", "mvp", "risks", "pricing", "custom"] = "market"
    prompt: Optional[str] = None


class IdeaStoreState(_CamelModel):
    """Session-scoped state: the active batch, its picks and all deep dives."""

    version: int = STORE_VERSION
    ideas: list[Idea] = Field(default_factory=list)
    deep_dives: dict[str, list[DeepDiveResult]] = Field(default_factory=dict)
    picked: list[str] = Field(default_factory=list)


class IdeaStatus(str, Enum):
    """Durable status of an idea in the library."""

    PICKED = "PICKED"
    RECYCLED = "RECYCLED"


class IdeaRecord(_CamelModel):
    """A durable idea row, keyed by fingerprint."""

    id: str
    fingerprint: str
    title: str
    one_liner: str
    problem: str
    target_market: str
    market_signal: str
    revenue_model: str
    source: list[str]
    category: str = DEFAULT_CATEGORY
    status: IdeaStatus
    created_at: datetime
    picked_at: Optional[datetime] = None
    recycled_at: Optional[datetime] = None

    def to_idea(self) -> Idea:
        """Convert the row back into an Idea whose id is the record id."""
        return Idea(
            id=self.id,
            title=self.title,
            one_liner=self.one_liner,
            problem=self.problem,
            target_market=self.target_market,
            market_signal=self.market_signal,
            revenue_model=self.revenue_model,
            source=list(self.source),
            category=self.category,
            created_at=self.created_at.isoformat(),
        )


# ── Payload schemas (untrusted JSON) ───────────────────────────────────────


class IdeaPayload(_CamelModel):
    """One element of the ``ideas`` array as the model emits it."""

    title: Optional[str] = None
    one_liner: Optional[str] = None
    problem: Optional[str] = None
    target_market: Optional[str] = None
    market_signal: Optional[str] = None
    revenue_model: Optional[str] = None
    source: list[str] = Field(default_factory=list)
    category: Optional[str] = None

    @field_validator("source", mode="before")
    @classmethod
    def _coerce_source(cls, value: Any) -> list[str]:
        return normalize_source(value)


class IdeaEnvelope(BaseModel):
    """Top-level ``{"ideas": [...]}`` object; elements are validated one by one."""

    ideas: list[Any] = Field(default_factory=list)


class DeepDiveSectionPayload(BaseModel):
    key: Optional[str] = None
    title: str
    content: str


class DeepDivePayload(BaseModel):
    """Top-level deep-dive object as the model emits it."""

    summary: Optional[str] = None
    sections: list[Any] = Field(default_factory=list)
    sources: list[Any] = Field(default_factory=list)

    @field_validator("sections", "sources", mode="before")
    @classmethod
    def _list_or_empty(cls, value: Any) -> list[Any]:
        return value if isinstance(value, list) else []


class ChatMessage(BaseModel):
    role: Literal["user", "assistant"]
    content: str = Field(min_length=1)


class ChatRequest(BaseModel):
    """Body of a brainstorm chat call."""

    messages: list[ChatMessage] = Field(min_length=1)


class RecycleRequest(BaseModel):
    """Body of an explicit recycle call."""

    ideas: list[Idea]
