"""Removal of inline reasoning markup from model output.

Some models emit ``<think>…</think>`` (or ``thinking`` / ``reasoning`` /
``reflection``) blocks inline. Nothing inside them may reach the user or the
structured parsers, including a block that is still open mid-stream.
"""

from __future__ import annotations

import re

REASONING_TAGS: tuple[str, ...] = ("think", "thinking", "reasoning", "reflection")

_NAMES = "|".join(REASONING_TAGS)

_CLOSED_BLOCK = re.compile(rf"<({_NAMES})>.*?</\1>", re.IGNORECASE | re.DOTALL)
_OPEN_TAG = re.compile(rf"<(?:{_NAMES})>", re.IGNORECASE)
_STRAY_CLOSE = re.compile(rf"</(?:{_NAMES})>", re.IGNORECASE)


def _strip_once(text: str) -> str:
    text = _CLOSED_BLOCK.sub("", text)

    # Still inside a reasoning block: drop everything from the opener on.
    match = _OPEN_TAG.search(text)
    if match:
        text = text[: match.start()]

    text = _STRAY_CLOSE.sub("", text)
    return text.strip()


def strip_think_tags(text: str) -> str:
    """Remove reasoning blocks, unterminated openers and stray closers.

    Passes repeat until the text is stable, because removing a stray closer
    can splice a new tag together (``<thi</think>nk>``). That makes the
    function idempotent.

    Examples:
        >>> strip_think_tags("<think>plan</think> Hello")
        'Hello'
        >>> strip_think_tags("Hi <THINKING>still going")
        'Hi'
    """
    current = text
    while True:
        stripped = _strip_once(current)
        if stripped == current:
            return stripped
        current = stripped


_PARTIAL_TAG = re.compile(r"</?([A-Za-z]*)$")


def visible_text(transcript: str) -> str:
    """What a user may see of a transcript that is still streaming.

    Same as :func:`strip_think_tags`, and also holds back a trailing
    fragment that could still grow into a reasoning tag (``"Hello <thi"``).
    """
    text = strip_think_tags(transcript)
    match = _PARTIAL_TAG.search(text)
    if match and any(tag.startswith(match.group(1).lower()) for tag in REASONING_TAGS):
        text = text[: match.start()].rstrip()
    return text
