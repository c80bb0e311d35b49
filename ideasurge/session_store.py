"""
Session-scoped idea state.

``SessionStore`` holds one ``IdeaStoreState``: the active idea batch, the ids
picked from it, and every deep dive generated so far (newest first, per
idea). It is created once per session and handed to whatever needs it.

When a path is given the state is written through to a JSON file after every
mutation and reloaded from it on start-up. Anything in that file that fails
validation is dropped item by item rather than discarding the whole file.
"""

from __future__ import annotations

import json
import logging
import threading
from pathlib import Path
from typing import Any, Optional, Union

from pydantic import ValidationError

from ideasurge.models import DeepDiveResult, Idea, IdeaStoreState, STORE_VERSION

logger = logging.getLogger(__name__)


def _valid_items(model: Any, items: Any) -> list[Any]:
    if not isinstance(items, list):
        return []
    valid = []
    for item in items:
        try:
            valid.append(model.model_validate(item))
        except ValidationError:
            logger.debug("Dropping invalid %s from session state", model.__name__)
    return valid


def sanitize(raw: Any) -> IdeaStoreState:
    """Build a clean ``IdeaStoreState`` from arbitrary decoded JSON."""
    if not isinstance(raw, dict):
        return IdeaStoreState()

    deep_dives: dict[str, list[DeepDiveResult]] = {}
    raw_dives = raw.get("deepDives")
    if isinstance(raw_dives, dict):
        for idea_id, items in raw_dives.items():
            if isinstance(items, list):
                deep_dives[str(idea_id)] = _valid_items(DeepDiveResult, items)

    picked = raw.get("picked")
    return IdeaStoreState(
        version=STORE_VERSION,
        ideas=_valid_items(Idea, raw.get("ideas")),
        deep_dives=deep_dives,
        picked=[p for p in picked if isinstance(p, str)] if isinstance(picked, list) else [],
    )


class SessionStore:
    """Owner of the session's ``IdeaStoreState``."""

    def __init__(self, path: Optional[Union[str, Path]] = None) -> None:
        self.path = Path(path) if path else None
        self._lock = threading.RLock()
        self._state = self._load()

    # ── Persistence ────────────────────────────────────────────────────────

    def _load(self) -> IdeaStoreState:
        if self.path is None or not self.path.exists():
            return IdeaStoreState()
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            logger.warning("Ignoring unreadable session file %s: %s", self.path, exc)
            return IdeaStoreState()
        return sanitize(raw)

    def _save(self) -> None:
        if self.path is None:
            return
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(
            self._state.model_dump_json(by_alias=True), encoding="utf-8"
        )

    @property
    def state(self) -> IdeaStoreState:
        """A copy of the current state."""
        with self._lock:
            return self._state.model_copy(deep=True)

    # ── Ideas ──────────────────────────────────────────────────────────────

    def save_ideas(self, ideas: list[Idea]) -> None:
        """Replace the active batch wholesale; picks of the old batch go too."""
        with self._lock:
            self._state = self._state.model_copy(
                update={"ideas": list(ideas), "picked": []}
            )
            self._save()

    def get_ideas(self) -> list[Idea]:
        with self._lock:
            return list(self._state.ideas)

    def get_idea_by_id(self, idea_id: str) -> Optional[Idea]:
        with self._lock:
            return next((i for i in self._state.ideas if i.id == idea_id), None)

    def mark_picked(self, idea_id: str) -> None:
        with self._lock:
            if idea_id in self._state.picked:
                return
            self._state = self._state.model_copy(
                update={"picked": [*self._state.picked, idea_id]}
            )
            self._save()

    def picked_ids(self) -> set[str]:
        with self._lock:
            return set(self._state.picked)

    # ── Deep dives ─────────────────────────────────────────────────────────

    def add_deep_dive(self, idea_id: str, deep_dive: DeepDiveResult) -> None:
        """Prepend *deep_dive* to the idea's history."""
        with self._lock:
            dives = dict(self._state.deep_dives)
            dives[idea_id] = [deep_dive, *dives.get(idea_id, [])]
            self._state = self._state.model_copy(update={"deep_dives": dives})
            self._save()

    def get_deep_dives(self, idea_id: str) -> list[DeepDiveResult]:
        with self._lock:
            return list(self._state.deep_dives.get(idea_id, []))
