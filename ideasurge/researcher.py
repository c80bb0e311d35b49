"""
AI researcher for IdeaSurge.

Uses Claude with the built-in web_search tool and re-encodes the streamed
response as the line-framed protocol of ``ideasurge.stream``, so that the
pipeline can consume it exactly as it would any other backend.

Flow
────
1. stream_idea_frames(query)
     → Claude searches for market signals and writes an ideas JSON envelope
     → yields protocol frames: text deltas, tool calls, tool results

2. stream_deep_dive_frames(idea, request)
     → same, for a deep-dive JSON report about one idea

3. brainstorm_reply(idea, deep_dive, messages)
     → non-streaming chat turn grounded in the idea and its latest deep dive
"""

from __future__ import annotations

import json
import logging
from collections.abc import Generator
from typing import Any, Optional

import anthropic

from config.settings import Settings
from ideasurge.models import ChatMessage, DeepDiveRequest, DeepDiveResult, Idea
from ideasurge.stream import TextDelta, ToolCall, ToolResult, encode_frame

logger = logging.getLogger(__name__)

WEB_SEARCH_BETA = "web-search-2025-03-05"
WEB_SEARCH_TOOL = {"type": "web_search_20250305", "name": "web_search"}

# ── System prompts ─────────────────────────────────────────────────────────

IDEAS_SYSTEM = """You are IdeaSurge, a SaaS opportunity research engine.
Search the web for real demand signals (recurring complaints, community
threads, trends, stats), then answer with one JSON object and nothing else:

{"ideas": [{"title": "...", "oneLiner": "...", "problem": "...",
  "targetMarket": "...", "marketSignal": "...", "revenueModel": "...",
  "source": ["url", "url"], "category": "..."}]}

Produce 3 to 5 distinct ideas. Keep every field concise and concrete.
marketSignal must cite specific evidence. category is 1-3 words."""

DEEP_DIVE_SYSTEM = """You are IdeaSurge DeepDive. Research the idea with the
web_search tool, then answer with one JSON object and nothing else:

{"summary": "...", "sections": [{"key": "...", "title": "...", "content": "..."}],
 "sources": ["url", "url"]}

Cover MVP & execution, market validation, risks & mitigations, and pricing.
Be concrete and implementation-ready. Include 3 to 8 sources."""

CHAT_SYSTEM = """You are IdeaSurge Brainstorm Assistant. Help the founder
refine the idea below. Be direct, practical and specific.

{context}"""

_FOCUS_LABELS: dict[str, str] = {
    "market": "market validation and demand",
    "mvp": "MVP scope and execution plan",
    "risks": "risks and mitigations",
    "pricing": "pricing and packaging",
}


def _client(settings: Settings) -> anthropic.Anthropic:
    return anthropic.Anthropic(api_key=settings.anthropic_api_key, max_retries=5)


def describe_idea(idea: Idea) -> str:
    """Plain-text rendering of an idea for use inside prompts."""
    return (
        f"Title: {idea.title}\n"
        f"One-liner: {idea.one_liner}\n"
        f"Problem: {idea.problem}\n"
        f"Target market: {idea.target_market}\n"
        f"Market signal: {idea.market_signal}\n"
        f"Revenue model: {idea.revenue_model}\n"
        f"Known sources: {', '.join(idea.source) or '(none)'}"
    )


# ── Event translation ──────────────────────────────────────────────────────


def _search_result_payload(block: Any) -> Any:
    content = getattr(block, "content", None)
    if not isinstance(content, list):
        return {"error": getattr(content, "error_code", "unknown")}
    return [
        {
            "title": getattr(item, "title", "") or "",
            "url": getattr(item, "url", "") or "",
            "pageAge": getattr(item, "page_age", None),
        }
        for item in content
        if getattr(item, "type", None) == "web_search_result"
    ]


def _tool_args(call: dict[str, Any]) -> dict[str, Any]:
    raw = "".join(call["json"])
    if not raw:
        return call["input"]
    try:
        args = json.loads(raw)
    except ValueError:
        logger.debug("Unparseable tool input for %s: %r", call["name"], raw[:120])
        return call["input"]
    return args if isinstance(args, dict) else call["input"]


def _stream_frames(
    settings: Settings,
    system: str,
    prompt: str,
    max_tokens: int,
) -> Generator[bytes, None, None]:
    """Run one web-search-enabled Claude stream and yield protocol frames."""
    client = _client(settings)
    tool = {**WEB_SEARCH_TOOL, "max_uses": settings.max_web_searches}
    # Tool inputs arrive as JSON fragments; a call is emitted when its block stops.
    pending: dict[Any, dict[str, Any]] = {}

    with client.beta.messages.stream(
        model=settings.research_model,
        max_tokens=max_tokens,
        betas=[WEB_SEARCH_BETA],
        tools=[tool],
        system=system,
        messages=[{"role": "user", "content": prompt}],
    ) as stream:
        for event in stream:
            event_type = getattr(event, "type", None)

            if event_type == "content_block_start":
                block = getattr(event, "content_block", None)
                block_type = getattr(block, "type", None)
                if block_type in ("server_tool_use", "tool_use"):
                    pending[getattr(event, "index", None)] = {
                        "id": block.id,
                        "name": block.name,
                        "input": getattr(block, "input", None) or {},
                        "json": [],
                    }
                elif block_type == "web_search_tool_result":
                    yield encode_frame(
                        ToolResult(block.tool_use_id, _search_result_payload(block))
                    )

            elif event_type == "content_block_delta":
                delta = getattr(event, "delta", None)
                delta_type = getattr(delta, "type", None)
                if delta_type == "text_delta":
                    yield encode_frame(TextDelta(delta.text))
                elif delta_type == "input_json_delta":
                    call = pending.get(getattr(event, "index", None))
                    if call is not None:
                        call["json"].append(delta.partial_json)

            elif event_type == "content_block_stop":
                call = pending.pop(getattr(event, "index", None), None)
                if call is not None:
                    logger.info("Tool call %s %s", call["name"], _tool_args(call))
                    yield encode_frame(ToolCall(call["id"], call["name"], _tool_args(call)))


# ── Public entry points ────────────────────────────────────────────────────


def stream_idea_frames(query: str, settings: Settings) -> Generator[bytes, None, None]:
    """Stream an idea search as protocol frames.

    Raises:
        ValueError: If query is blank.
        anthropic.APIError: On API errors.
    """
    query = query.strip()
    if not query:
        raise ValueError("Query must not be empty.")

    logger.info("Idea search query=%r", query)
    yield from _stream_frames(
        settings,
        IDEAS_SYSTEM,
        f'Find strong SaaS opportunities for: "{query}"',
        max_tokens=4000,
    )


def stream_deep_dive_frames(
    idea: Idea,
    request: DeepDiveRequest,
    settings: Settings,
) -> Generator[bytes, None, None]:
    """Stream a deep dive about *idea* as protocol frames."""
    if request.mode == "custom" and request.prompt:
        focus = f"Prioritize this user request: {request.prompt}"
    else:
        focus = f"Prioritize this focus area: {_FOCUS_LABELS.get(request.focus, request.focus)}"

    logger.info("Deep dive idea=%s focus=%s", idea.id, request.focus)
    yield from _stream_frames(
        settings,
        DEEP_DIVE_SYSTEM,
        f"Deepen this SaaS idea:\n{describe_idea(idea)}\n\n{focus}",
        max_tokens=6000,
    )


def brainstorm_reply(
    idea: Idea,
    deep_dive: Optional[DeepDiveResult],
    messages: list[ChatMessage],
    settings: Settings,
) -> str:
    """One brainstorm chat turn about *idea*.

    Args:
        idea: The idea under discussion.
        deep_dive: Latest deep dive for the idea, if any.
        messages: Conversation so far, ending with the user's message.

    Returns:
        The assistant's reply text.
    """
    if deep_dive is not None:
        sections = "\n".join(f"- {s.title}: {s.content}" for s in deep_dive.sections)
        context = (
            f"{describe_idea(idea)}\n\n"
            f"Deep-dive summary: {deep_dive.summary}\n"
            f"Deep-dive sections:\n{sections}\n"
            f"Deep-dive sources: {', '.join(deep_dive.sources)}"
        )
    else:
        context = f"{describe_idea(idea)}\n\nNo deep-dive context available yet."

    response = _client(settings).messages.create(
        model=settings.chat_model,
        max_tokens=1500,
        system=CHAT_SYSTEM.format(context=context),
        messages=[{"role": m.role, "content": m.content} for m in messages],
    )
    return "".join(
        getattr(block, "text", "")
        for block in response.content
        if getattr(block, "type", None) == "text"
    ).strip()
