"""
Line-framed streaming protocol between the LLM layer and the parsers.

Wire format
───────────
One frame per line, ``<tag>:<json>\\n``:

  0:"text"                                           text delta
  9:{"toolCallId": ..., "toolName": ..., "args": {}}  tool invocation
  a:{"toolCallId": ..., "result": ...}               tool result

Unknown tags are ignored. A line whose body is not the expected JSON is
dropped on its own; it never stops the lines after it.

Pieces
──────
decode / finish       pure chunk → events step with an explicit carry
decode_stream         generator over an iterable of chunks
encode_frame          inverse of decode, used by the researcher
StreamConsumer        transcript + tool-call ledger with abort support
"""

from __future__ import annotations

import json
import logging
import threading
from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field
from typing import Any, Optional, Union

logger = logging.getLogger(__name__)

TEXT_TAG = "0"
TOOL_CALL_TAG = "9"
TOOL_RESULT_TAG = "a"


class StreamError(RuntimeError):
    """The chunk source failed while a stream was being consumed."""


# ── Events ─────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class TextDelta:
    """A fragment of model text to append to the transcript."""

    text: str


@dataclass(frozen=True)
class ToolCall:
    """The model invoked a tool."""

    id: str
    name: str
    args: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ToolResult:
    """A tool returned; ``id`` refers back to a ``ToolCall``."""

    id: str
    result: Any = None


Event = Union[TextDelta, ToolCall, ToolResult]


@dataclass(frozen=True)
class DecoderState:
    """Bytes of a line that has not seen its newline yet."""

    buffer: bytes = b""


# ── Decoding ───────────────────────────────────────────────────────────────


def _parse_line(line: str) -> Optional[Event]:
    tag, sep, body = line.partition(":")
    if not sep:
        return None

    if tag not in (TEXT_TAG, TOOL_CALL_TAG, TOOL_RESULT_TAG):
        return None

    try:
        payload = json.loads(body)
    except ValueError:
        logger.debug("Dropping malformed frame: %r", line[:120])
        return None

    if tag == TEXT_TAG:
        if isinstance(payload, str):
            return TextDelta(payload)
    elif isinstance(payload, dict) and isinstance(payload.get("toolCallId"), str):
        call_id = payload["toolCallId"]
        if tag == TOOL_CALL_TAG:
            name = payload.get("toolName")
            args = payload.get("args")
            if isinstance(name, str):
                return ToolCall(call_id, name, args if isinstance(args, dict) else {})
        else:
            return ToolResult(call_id, payload.get("result"))

    logger.debug("Dropping frame with unexpected payload shape: %r", line[:120])
    return None


def decode(
    chunk: Union[bytes, str],
    carry: DecoderState,
) -> tuple[list[Event], DecoderState]:
    """Decode one chunk of the frame stream.

    Args:
        chunk: The next raw chunk (bytes, or already-decoded text).
        carry: The state returned by the previous call.

    Returns:
        ``(events, new_carry)``: events for every complete line in order,
        plus the trailing partial line to prepend to the next chunk.

    Examples:
        >>> events, carry = decode(b'0:"Hel', DecoderState())
        >>> events, carry.buffer
        ([], b'0:"Hel')
        >>> decode(b'lo"\\n', carry)[0]
        [TextDelta(text='Hello')]
    """
    if isinstance(chunk, str):
        chunk = chunk.encode("utf-8")

    data = carry.buffer + chunk
    *lines, rest = data.split(b"\n")

    events: list[Event] = []
    for raw in lines:
        # Newline bytes never occur inside a multi-byte UTF-8 sequence, so a
        # complete line always decodes cleanly unless the sender is broken.
        line = raw.decode("utf-8", errors="replace").rstrip("\r")
        if not line:
            continue
        event = _parse_line(line)
        if event is not None:
            events.append(event)

    return events, DecoderState(rest)


def finish(carry: DecoderState) -> None:
    """End of stream: an unterminated trailing line is not valid content."""
    if carry.buffer.strip():
        logger.debug("Discarding %d bytes of unterminated frame", len(carry.buffer))


def decode_stream(chunks: Iterable[Union[bytes, str]]) -> Iterator[Event]:
    """Decode a whole stream, yielding events in arrival order."""
    carry = DecoderState()
    for chunk in chunks:
        events, carry = decode(chunk, carry)
        yield from events
    finish(carry)


# ── Encoding ───────────────────────────────────────────────────────────────


def encode_frame(event: Event) -> bytes:
    """Serialise one event as a protocol line (newline included)."""
    if isinstance(event, TextDelta):
        tag, payload = TEXT_TAG, event.text
    elif isinstance(event, ToolCall):
        tag = TOOL_CALL_TAG
        payload = {"toolCallId": event.id, "toolName": event.name, "args": event.args}
    elif isinstance(event, ToolResult):
        tag, payload = TOOL_RESULT_TAG, {"toolCallId": event.id, "result": event.result}
    else:
        raise TypeError(f"Unsupported event type: {type(event)!r}")
    return f"{tag}:{json.dumps(payload, ensure_ascii=False)}\n".encode("utf-8")


# ── Consumer ───────────────────────────────────────────────────────────────


class StreamConsumer:
    """Apply decoded events to a running transcript and tool-call ledger.

    A tool result is only applied when its call was seen first; results for
    unknown ids are dropped. Once aborted (via :meth:`abort` or the injected
    ``cancel`` event) no further event is applied.
    """

    def __init__(self, cancel: Optional[threading.Event] = None) -> None:
        self.cancel = cancel or threading.Event()
        self.transcript = ""
        self.tool_calls: dict[str, ToolCall] = {}
        self.tool_results: dict[str, ToolResult] = {}
        self._carry = DecoderState()

    @property
    def aborted(self) -> bool:
        return self.cancel.is_set()

    def abort(self) -> None:
        self.cancel.set()

    def _apply(self, event: Event) -> bool:
        if isinstance(event, TextDelta):
            self.transcript += event.text
        elif isinstance(event, ToolCall):
            self.tool_calls[event.id] = event
        elif event.id in self.tool_calls:
            self.tool_results[event.id] = event
        else:
            logger.debug("Dropping result for unknown tool call id=%s", event.id)
            return False
        return True

    def feed(self, chunk: Union[bytes, str]) -> Iterator[Event]:
        """Decode *chunk* and yield each event as it is applied."""
        if self.aborted:
            return
        events, self._carry = decode(chunk, self._carry)
        for event in events:
            if self.aborted:
                return
            if self._apply(event):
                yield event

    def consume(self, chunks: Iterable[Union[bytes, str]]) -> Iterator[Event]:
        """Consume a chunk source until it ends or the consumer is aborted.

        Raises:
            StreamError: If reading from *chunks* fails.
        """
        iterator = iter(chunks)
        while not self.aborted:
            try:
                chunk = next(iterator)
            except StopIteration:
                finish(self._carry)
                self._carry = DecoderState()
                return
            except Exception as exc:
                raise StreamError(f"Stream read failed: {exc}") from exc
            yield from self.feed(chunk)
