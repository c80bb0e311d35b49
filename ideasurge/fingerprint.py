"""Content fingerprint used as the durable dedup key for ideas.

The fingerprint covers the four fields that define *what* an idea is
(title, problem, target market, revenue model). Session ids, sources,
categories and timestamps are deliberately left out: they vary between
otherwise identical submissions.
"""

from __future__ import annotations

import hashlib
import re

from ideasurge.models import Idea

_WHITESPACE = re.compile(r"\s+")


def _normalize(text: str) -> str:
    return _WHITESPACE.sub(" ", text.strip().lower())


def compute_fingerprint(idea: Idea) -> str:
    """Return the SHA-256 hex fingerprint of *idea*.

    Examples:
        >>> a = Idea(id="1", title=" PantryPal ", problem="Waste", created_at="")
        >>> b = Idea(id="2", title="pantrypal", problem="waste", created_at="")
        >>> compute_fingerprint(a) == compute_fingerprint(b)
        True
    """
    payload = "|".join(
        _normalize(value)
        for value in (idea.title, idea.problem, idea.target_market, idea.revenue_model)
    )
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()
