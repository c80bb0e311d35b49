"""
Stream-to-records pipeline for IdeaSurge.

Flow
────
1. run_idea_search(chunks, lifecycle)
     → begins a new batch (recycles the previous one)
     → decodes frames, re-extracts ideas from the transcript on each token
     → yields events as they happen, activates the final batch at the end

2. run_deep_dive(chunks, idea, store)
     → decodes frames, yields the visible text as it grows
     → parses the finished transcript into a DeepDiveResult and stores it

Both yield ``(event_type, payload)`` tuples:

* ``("text",        str)``                  visible transcript so far, reasoning removed
* ``("tool_call",   ToolCall)``             the model called a tool
* ``("tool_result", ToolResult)``           the tool answered
* ``("ideas",       list[Idea])``           ideas changed (search only)
* ``("done",        list[Idea])``           final batch (search only)
* ``("deep_dive",   DeepDiveResult)``       parsed report (deep dive only)

``text`` is a cumulative snapshot, not a delta: clients replace what they
show. It is only emitted when it changes.

An aborted stream just stops: nothing is yielded or stored after the abort.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Generator, Iterable
from typing import Optional, Union

from ideasurge.lifecycle import IdeaLifecycle
from ideasurge.models import DeepDiveResult, Idea, utc_now_iso
from ideasurge.parsing import parse_deep_dive_from_text, parse_ideas_from_text
from ideasurge.session_store import SessionStore
from ideasurge.stream import StreamConsumer, TextDelta, ToolCall, ToolResult
from ideasurge.thinktags import visible_text

logger = logging.getLogger(__name__)

Chunks = Iterable[Union[bytes, str]]
PipelineEvent = tuple[str, object]


class DeepDiveError(RuntimeError):
    """The deep-dive response did not contain a usable report; retry is sensible."""


def _relay(consumer: StreamConsumer, chunks: Chunks) -> Generator[PipelineEvent, None, None]:
    """Yield tool events as-is and text as a cleaned cumulative snapshot.

    A text delta that leaves the visible text unchanged (for instance one
    inside a reasoning block) yields ``("text", None)``, which callers use
    as a "transcript grew" signal and never forward.
    """
    shown = ""
    for event in consumer.consume(chunks):
        if isinstance(event, TextDelta):
            current = visible_text(consumer.transcript)
            if current != shown:
                shown = current
                yield ("text", current)
            else:
                yield ("text", None)
        elif isinstance(event, ToolCall):
            yield ("tool_call", event)
        elif isinstance(event, ToolResult):
            yield ("tool_result", event)


def run_idea_search(
    chunks: Chunks,
    lifecycle: IdeaLifecycle,
    created_at: Optional[str] = None,
    cancel: Optional[threading.Event] = None,
) -> Generator[PipelineEvent, None, None]:
    """Consume one idea-search stream and keep the session batch in sync.

    Args:
        chunks: Raw frame-protocol chunks from the LLM layer.
        lifecycle: Lifecycle owning the session batch.
        created_at: Batch timestamp; defaults to now.
        cancel: Cancel token; defaults to a fresh one from
            ``lifecycle.begin_search()``, which also recycles the old batch.
            Pass one explicitly when the batch was already begun.

    Raises:
        StreamError: If the chunk source fails.
    """
    if cancel is None:
        cancel = lifecycle.begin_search()
    created_at = created_at or utc_now_iso()
    consumer = StreamConsumer(cancel)
    ideas: list[Idea] = []

    for event_type, payload in _relay(consumer, chunks):
        if event_type != "text":
            yield event_type, payload
            continue
        if payload is not None:
            yield event_type, payload
        current = parse_ideas_from_text(consumer.transcript, created_at)
        if current != ideas:
            ideas = current
            yield ("ideas", ideas)

    # activate() refuses a token that was cancelled or superseded meanwhile.
    if consumer.aborted or not lifecycle.activate(ideas, cancel):
        logger.info("Idea search aborted after %d chars", len(consumer.transcript))
        return

    yield ("done", ideas)


def run_deep_dive(
    chunks: Chunks,
    idea: Idea,
    store: SessionStore,
    cancel: Optional[threading.Event] = None,
) -> Generator[PipelineEvent, None, None]:
    """Consume one deep-dive stream and store the parsed report.

    Raises:
        StreamError: If the chunk source fails.
        DeepDiveError: If the finished response holds no valid report.
    """
    consumer = StreamConsumer(cancel)
    for event_type, payload in _relay(consumer, chunks):
        if payload is not None:
            yield event_type, payload

    if consumer.aborted:
        logger.info("Deep dive for idea=%s aborted", idea.id)
        return

    result: Optional[DeepDiveResult] = parse_deep_dive_from_text(consumer.transcript, idea.id)
    if result is None:
        logger.warning(
            "Unusable deep-dive response for idea=%s (%d chars)",
            idea.id, len(consumer.transcript),
        )
        raise DeepDiveError("Model returned an unexpected deep-dive format.")

    store.add_deep_dive(idea.id, result)
    yield ("deep_dive", result)
