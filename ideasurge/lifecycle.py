"""
Idea lifecycle: ACTIVE → PICKED, or ACTIVE → RECYCLED.

State is implicit. An idea is ACTIVE while it sits in the session batch,
PICKED once the user opens it, and RECYCLED once a newer batch supersedes it
without a pick. PICKED is sticky: the library refuses to demote it.

Durable writes are fire-and-forget. They run in submission order on a single
background worker; a failure is logged and otherwise ignored, because the
session state stays the source of truth for the current session.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Executor, Future, ThreadPoolExecutor, wait
from typing import Any, Callable, Optional

from ideasurge import library as default_library
from ideasurge.models import Idea
from ideasurge.session_store import SessionStore

logger = logging.getLogger(__name__)


class IdeaLifecycle:
    """Tracks the active batch and drives pick/recycle persistence.

    Args:
        store: Session state holder.
        library: Persistence collaborator exposing ``mark_picked(idea)`` and
            ``recycle(ideas)``; defaults to :mod:`ideasurge.library`.
        recycle_on_pick: Also recycle the un-picked companions of a batch the
            moment one idea is picked, instead of waiting for the next search.
        executor: Where durable writes run. Defaults to a private
            single-worker pool so writes keep their order.
    """

    def __init__(
        self,
        store: SessionStore,
        library: Any = default_library,
        *,
        recycle_on_pick: bool = False,
        executor: Optional[Executor] = None,
    ) -> None:
        self.store = store
        self.library = library
        self.recycle_on_pick = recycle_on_pick
        self._executor = executor or ThreadPoolExecutor(
            max_workers=1, thread_name_prefix="ideasurge-persist"
        )
        self._owns_executor = executor is None
        self._pending: set[Future] = set()
        self._lock = threading.Lock()
        self._active_cancel: Optional[threading.Event] = None

    # ── Background writes ──────────────────────────────────────────────────

    def _submit(self, label: str, fn: Callable[..., Any], *args: Any) -> Future:
        future = self._executor.submit(fn, *args)
        with self._lock:
            self._pending.add(future)

        def _done(f: Future) -> None:
            with self._lock:
                self._pending.discard(f)
            exc = f.exception()
            if exc is not None:
                logger.error("Background %s failed: %s", label, exc, exc_info=exc)

        future.add_done_callback(_done)
        return future

    def flush(self, timeout: Optional[float] = None) -> None:
        """Block until every submitted write has finished (or *timeout*)."""
        with self._lock:
            pending = list(self._pending)
        wait(pending, timeout=timeout)

    def close(self) -> None:
        self.flush()
        if self._owns_executor:
            self._executor.shutdown(wait=True)

    # ── Transitions ────────────────────────────────────────────────────────

    def unpicked(self) -> list[Idea]:
        """Ideas of the active batch that have not been picked."""
        picked = self.store.picked_ids()
        return [idea for idea in self.store.get_ideas() if idea.id not in picked]

    def recycle(self, ideas: list[Idea]) -> None:
        """Submit *ideas* for archival (skipped if empty)."""
        if ideas:
            logger.info("Submitting %d idea(s) for recycling", len(ideas))
            self._submit("recycle", self.library.recycle, list(ideas))

    def begin_search(self) -> threading.Event:
        """Start a new batch.

        Aborts the stream of the previous search, if still running, recycles
        everything from the previous batch that was not picked, and clears
        the batch.

        Returns:
            The cancel token for the new search's stream.
        """
        with self._lock:
            if self._active_cancel is not None:
                self._active_cancel.set()
            cancel = threading.Event()
            self._active_cancel = cancel
            leftovers = self.unpicked()
            self.store.save_ideas([])

        self.recycle(leftovers)
        return cancel

    def activate(self, ideas: list[Idea], cancel: Optional[threading.Event] = None) -> bool:
        """Make *ideas* the active batch.

        Args:
            ideas: The finished batch.
            cancel: Token of the search that produced *ideas*. When given,
                the batch is only applied if that search is still the
                current one and was not cancelled.

        Returns:
            True if the batch was applied.
        """
        with self._lock:
            if cancel is not None and (cancel.is_set() or cancel is not self._active_cancel):
                logger.info("Discarding batch of %d idea(s) from a superseded search", len(ideas))
                return False
            self.store.save_ideas(ideas)
        logger.info("Activated batch of %d idea(s)", len(ideas))
        return True

    def pick(self, idea_id: str) -> Optional[Idea]:
        """Mark an idea of the active batch as picked.

        Returns:
            The picked idea, or None if it is not in the active batch.
        """
        idea = self.store.get_idea_by_id(idea_id)
        if idea is None:
            return None

        self.store.mark_picked(idea_id)
        self._submit("pick", self.library.mark_picked, idea)

        if self.recycle_on_pick:
            self.recycle(self.unpicked())
        return idea
