"""
Extraction of ideas and deep-dive reports from (partial) model text.

Both extractors are pure and never raise on malformed input: a miss is an
empty list or ``None``. They re-parse the full accumulated transcript on
every call, so they can run on each streamed token without keeping state.

Idea dialects, tried in priority order
──────────────────────────────────────
1. ``json``      ``{"ideas": [...]}``, optionally inside a ```json fence
2. ``markdown``  ``---``-separated sections with ``**Label:**`` fields

The first dialect that yields at least one valid idea wins.
"""

from __future__ import annotations

import hashlib
import json
import logging
import re
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional, Protocol

from pydantic import ValidationError

from ideasurge.models import (
    DeepDivePayload,
    DeepDiveResult,
    DeepDiveSection,
    DeepDiveSectionPayload,
    Idea,
    IdeaEnvelope,
    IdeaPayload,
    normalize_source,
    utc_now_iso,
)
from ideasurge.thinktags import strip_think_tags

logger = logging.getLogger(__name__)

_FENCE = re.compile(r"```(?:json)?\s*(.*?)\s*```", re.IGNORECASE | re.DOTALL)


# ── Shared helpers ─────────────────────────────────────────────────────────


def extract_json_text(text: str) -> Optional[str]:
    """Locate the JSON object inside *text*.

    Uses the first fenced block if there is one, otherwise the whole text,
    and returns the slice from the first ``{`` to the last ``}``.

    Examples:
        >>> extract_json_text('Sure! ```json\\n{"a": 1}\\n``` done')
        '{"a": 1}'
        >>> extract_json_text("no braces") is None
        True
    """
    clean = strip_think_tags(text)
    fence = _FENCE.search(clean)
    candidate = fence.group(1) if fence else clean
    start = candidate.find("{")
    end = candidate.rfind("}")
    if start == -1 or end <= start:
        return None
    return candidate[start : end + 1]


def _load_json(text: str) -> Any:
    json_text = extract_json_text(text)
    if json_text is None:
        return None
    try:
        return json.loads(json_text)
    except ValueError:
        return None


def _batch_millis(created_at: str) -> int:
    try:
        stamp = datetime.fromisoformat(created_at)
    except (TypeError, ValueError):
        return int(time.time() * 1000)
    if stamp.tzinfo is None:
        stamp = stamp.replace(tzinfo=timezone.utc)
    return int(stamp.timestamp() * 1000)


def make_idea_id(created_at: str, index: int, title: str, problem: str) -> str:
    """Session-local id: batch time, position in the batch, short content hash."""
    seed = f"{created_at}-{index}-{title}-{problem}"
    digest = hashlib.sha1(seed.encode("utf-8")).hexdigest()[:7]
    return f"{_batch_millis(created_at)}-{index}-{digest}"


def _build_idea(
    index: int,
    created_at: str,
    *,
    title: str,
    problem: str,
    one_liner: str = "",
    target_market: str = "",
    market_signal: str = "",
    revenue_model: str = "",
    source: Any = None,
    category: Optional[str] = None,
) -> Idea:
    title = title.strip()
    problem = problem.strip()
    return Idea(
        id=make_idea_id(created_at, index, title, problem),
        title=title,
        one_liner=one_liner.strip(),
        problem=problem,
        target_market=target_market.strip(),
        market_signal=market_signal.strip(),
        revenue_model=revenue_model.strip(),
        source=normalize_source(source),
        category=(category or "").strip() or None,
        created_at=created_at,
    )


# ── Dialects ───────────────────────────────────────────────────────────────


class IdeaDialect(Protocol):
    """A textual format ideas can be read from."""

    name: str

    def parse(self, text: str, created_at: str) -> list[Idea]:
        """Return every idea found, valid or not. Must not raise."""


class JsonEnvelopeDialect:
    """``{"ideas": [...]}``; each element is validated independently."""

    name = "json"

    def parse(self, text: str, created_at: str) -> list[Idea]:
        data = _load_json(text)
        if data is None:
            return []
        try:
            envelope = IdeaEnvelope.model_validate(data)
        except ValidationError:
            return []

        ideas: list[Idea] = []
        for index, item in enumerate(envelope.ideas):
            try:
                payload = IdeaPayload.model_validate(item)
            except ValidationError as exc:
                logger.debug("Skipping idea #%d: %s", index, exc.errors()[:1])
                continue
            ideas.append(
                _build_idea(
                    index,
                    created_at,
                    title=payload.title or "",
                    problem=payload.problem or "",
                    one_liner=payload.one_liner or "",
                    target_market=payload.target_market or "",
                    market_signal=payload.market_signal or "",
                    revenue_model=payload.revenue_model or "",
                    source=payload.source,
                    category=payload.category,
                )
            )
        return ideas


_RULE_LINE = re.compile(r"^---[ \t]*$", re.MULTILINE)
_HEADING = re.compile(r"^[ \t]*#{1,6}[ \t]+(💡[ \t]*)?(.*)$", re.MULTILINE)
_ANY_LABEL = re.compile(r"\*\*[^*\n]+:\*\*")


def _label(name: str) -> re.Pattern[str]:
    return re.compile(rf"\*\*{name}:\*\*[ \t]*(.*)", re.IGNORECASE)


_MARKDOWN_FIELDS: dict[str, re.Pattern[str]] = {
    "one_liner": _label("One-liner"),
    "problem": _label("Problem"),
    "target_market": _label("Target market"),
    "market_signal": _label("Market signal"),
    "revenue_model": _label("Revenue model"),
    "source": _label("Source"),
    "category": _label("Category"),
}


def _section_title(section: str) -> str:
    """Title of the idea in *section*.

    A 💡 heading wins. Otherwise the last heading before the first
    ``**Label:**`` line, so an intro heading above the first idea is skipped.
    """
    headings = list(_HEADING.finditer(section))
    if not headings:
        return ""
    for heading in headings:
        if heading.group(1):
            return heading.group(2)
    label = _ANY_LABEL.search(section)
    cutoff = label.start() if label else len(section)
    before = [h for h in headings if h.start() < cutoff]
    return (before[-1] if before else headings[0]).group(2)


class MarkdownBulletDialect:
    """Heading plus ``**Label:** value`` lines, sections split by ``---``."""

    name = "markdown"

    def parse(self, text: str, created_at: str) -> list[Idea]:
        sections = [s for s in _RULE_LINE.split(strip_think_tags(text)) if _HEADING.search(s)]

        ideas: list[Idea] = []
        for index, section in enumerate(sections):
            fields: dict[str, str] = {}
            for key, pattern in _MARKDOWN_FIELDS.items():
                match = pattern.search(section)
                fields[key] = match.group(1).strip() if match else ""
            ideas.append(
                _build_idea(index, created_at, title=_section_title(section), **fields)
            )
        return ideas


DIALECTS: tuple[IdeaDialect, ...] = (JsonEnvelopeDialect(), MarkdownBulletDialect())


# ── Idea extraction ────────────────────────────────────────────────────────


@dataclass(frozen=True)
class IdeaExtraction:
    """Which dialect produced the ideas, and the valid ideas themselves."""

    dialect: str
    ideas: list[Idea]


def extract_ideas(
    text: str,
    created_at: Optional[str] = None,
    dialects: tuple[IdeaDialect, ...] = DIALECTS,
) -> Optional[IdeaExtraction]:
    """Run the dialects in priority order and keep the first productive one.

    Args:
        text: The accumulated transcript so far.
        created_at: Batch timestamp (ISO-8601); defaults to now.
        dialects: Dialects to try, highest priority first.

    Returns:
        An ``IdeaExtraction``, or ``None`` when no dialect yields a valid idea.
    """
    if not text or not text.strip():
        return None
    created_at = created_at or utc_now_iso()

    for dialect in dialects:
        ideas = [idea for idea in dialect.parse(text, created_at) if idea.is_emittable()]
        if ideas:
            return IdeaExtraction(dialect=dialect.name, ideas=ideas)
    return None


def parse_ideas_from_text(text: str, created_at: Optional[str] = None) -> list[Idea]:
    """Best-effort list of valid ideas in *text* (empty list on a miss)."""
    extraction = extract_ideas(text, created_at)
    return extraction.ideas if extraction else []


# ── Deep-dive extraction ───────────────────────────────────────────────────


def parse_deep_dive_from_text(
    text: str,
    idea_id: str,
    generated_at: Optional[str] = None,
) -> Optional[DeepDiveResult]:
    """Parse a completed deep-dive response.

    JSON only. Returns ``None`` when the payload is missing, unparseable, has
    an empty summary, or has no usable section.
    """
    data = _load_json(text)
    if data is None:
        return None
    try:
        payload = DeepDivePayload.model_validate(data)
    except ValidationError:
        return None

    sections: list[DeepDiveSection] = []
    for raw in payload.sections:
        try:
            section = DeepDiveSectionPayload.model_validate(raw)
        except ValidationError:
            continue
        title, content = section.title.strip(), section.content.strip()
        if not (title and content):
            continue
        key = (section.key or "").strip() or f"section-{len(sections) + 1}"
        sections.append(DeepDiveSection(key=key, title=title, content=content))

    summary = (payload.summary or "").strip()
    if not summary or not sections:
        return None

    return DeepDiveResult(
        idea_id=idea_id,
        summary=summary,
        sections=sections,
        sources=[str(s).strip() for s in payload.sources if s is not None and str(s).strip()],
        generated_at=generated_at or utc_now_iso(),
    )
