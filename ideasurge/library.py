"""
SQLite-backed idea library for IdeaSurge.

Durable home of picked and recycled ideas, keyed by content fingerprint so
that re-submitting the same idea merges into one row.

Schema
──────
table: idea_records
  id             TEXT PRIMARY KEY       (opaque record id)
  fingerprint    TEXT NOT NULL UNIQUE
  title … revenue_model  TEXT NOT NULL
  source         TEXT NOT NULL          (JSON array)
  category       TEXT NOT NULL
  status         TEXT NOT NULL          ('PICKED' | 'RECYCLED')
  created_at     TEXT NOT NULL          (ISO-8601 UTC)
  picked_at      TEXT
  recycled_at    TEXT

PICKED is sticky: a recycle never overwrites a PICKED row. The check and the
write are a single ``INSERT … ON CONFLICT … DO UPDATE … WHERE`` statement, so
the compare-and-set is atomic per row.
"""

from __future__ import annotations

import json
import logging
import os
import sqlite3
import uuid
from collections import defaultdict
from collections.abc import Iterable
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from ideasurge.fingerprint import compute_fingerprint
from ideasurge.models import DEFAULT_CATEGORY, Idea, IdeaRecord, IdeaStatus

logger = logging.getLogger(__name__)

DEFAULT_DB_PATH = Path(__file__).parent.parent / "data" / "ideas.db"

_COLUMNS = (
    "id, fingerprint, title, one_liner, problem, target_market, market_signal, "
    "revenue_model, source, category, status, created_at, picked_at, recycled_at"
)

_PICK_SQL = f"""
    INSERT INTO idea_records ({_COLUMNS})
    VALUES (:id, :fingerprint, :title, :one_liner, :problem, :target_market,
            :market_signal, :revenue_model, :source, :category, 'PICKED',
            :now, :now, NULL)
    ON CONFLICT(fingerprint) DO UPDATE SET
        status = 'PICKED',
        picked_at = excluded.picked_at,
        recycled_at = NULL
"""

_RECYCLE_SQL = f"""
    INSERT INTO idea_records ({_COLUMNS})
    VALUES (:id, :fingerprint, :title, :one_liner, :problem, :target_market,
            :market_signal, :revenue_model, :source, :category, 'RECYCLED',
            :now, NULL, :now)
    ON CONFLICT(fingerprint) DO UPDATE SET
        title = excluded.title,
        one_liner = excluded.one_liner,
        problem = excluded.problem,
        target_market = excluded.target_market,
        market_signal = excluded.market_signal,
        revenue_model = excluded.revenue_model,
        source = excluded.source,
        category = excluded.category,
        status = 'RECYCLED',
        recycled_at = excluded.recycled_at
    WHERE idea_records.status != 'PICKED'
"""


def _db_path() -> Path:
    """Return the database file path, honouring a DB_PATH env var if set."""
    env = os.getenv("DB_PATH")
    return Path(env) if env else DEFAULT_DB_PATH


@contextmanager
def _connect():
    """Yield a connected sqlite3.Connection, creating the file/dir if needed."""
    path = _db_path()
    path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(str(path))
    conn.row_factory = sqlite3.Row
    try:
        yield conn
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()


def init_db() -> None:
    """Create the idea_records table if it doesn't exist yet."""
    with _connect() as conn:
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS idea_records (
                id             TEXT PRIMARY KEY,
                fingerprint    TEXT NOT NULL UNIQUE,
                title          TEXT NOT NULL,
                one_liner      TEXT NOT NULL,
                problem        TEXT NOT NULL,
                target_market  TEXT NOT NULL,
                market_signal  TEXT NOT NULL,
                revenue_model  TEXT NOT NULL,
                source         TEXT NOT NULL,
                category       TEXT NOT NULL,
                status         TEXT NOT NULL,
                created_at     TEXT NOT NULL,
                picked_at      TEXT,
                recycled_at    TEXT
            )
            """
        )
        conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_idea_records_status "
            "ON idea_records (status, recycled_at)"
        )
    logger.info("Idea library initialised at %s", _db_path())


def _params(fingerprint: str, idea: Idea) -> dict[str, str]:
    return {
        "id": uuid.uuid4().hex,
        "fingerprint": fingerprint,
        "title": idea.title,
        "one_liner": idea.one_liner,
        "problem": idea.problem,
        "target_market": idea.target_market,
        "market_signal": idea.market_signal,
        "revenue_model": idea.revenue_model,
        "source": json.dumps(idea.source),
        "category": (idea.category or "").strip() or DEFAULT_CATEGORY,
        "now": datetime.now(timezone.utc).isoformat(),
    }


def _row_to_record(row: sqlite3.Row) -> IdeaRecord:
    def _stamp(value: Optional[str]) -> Optional[datetime]:
        return datetime.fromisoformat(value) if value else None

    return IdeaRecord(
        id=row["id"],
        fingerprint=row["fingerprint"],
        title=row["title"],
        one_liner=row["one_liner"],
        problem=row["problem"],
        target_market=row["target_market"],
        market_signal=row["market_signal"],
        revenue_model=row["revenue_model"],
        source=[str(s) for s in json.loads(row["source"] or "[]")],
        category=row["category"],
        status=IdeaStatus(row["status"]),
        created_at=datetime.fromisoformat(row["created_at"]),
        picked_at=_stamp(row["picked_at"]),
        recycled_at=_stamp(row["recycled_at"]),
    )


# ── Writes ─────────────────────────────────────────────────────────────────


def upsert_by_fingerprint(fingerprint: str, idea: Idea, status: IdeaStatus) -> bool:
    """Insert or merge the row for *fingerprint*.

    Args:
        fingerprint: Key computed by ``compute_fingerprint``.
        idea: Field values for the row.
        status: ``PICKED`` always wins; ``RECYCLED`` leaves PICKED rows alone.

    Returns:
        True if a row was written, False if a PICKED row blocked a recycle.
    """
    sql = _PICK_SQL if IdeaStatus(status) is IdeaStatus.PICKED else _RECYCLE_SQL
    with _connect() as conn:
        cursor = conn.execute(sql, _params(fingerprint, idea))
    return cursor.rowcount > 0


def mark_picked(idea: Idea) -> IdeaRecord:
    """Durably mark *idea* as picked and return the stored row."""
    fingerprint = compute_fingerprint(idea)
    upsert_by_fingerprint(fingerprint, idea, IdeaStatus.PICKED)
    logger.info("Picked idea %r (fingerprint=%s)", idea.title, fingerprint[:12])
    record = find_by_fingerprint(fingerprint)
    if record is None:
        raise RuntimeError(f"Picked idea vanished from the library: {fingerprint}")
    return record


def recycle(ideas: Iterable[Idea]) -> int:
    """Archive each idea, skipping any that is already PICKED.

    Idempotent: recycling the same idea twice updates one row.

    Returns:
        Number of rows written.
    """
    written = 0
    for idea in ideas:
        fingerprint = compute_fingerprint(idea)
        if upsert_by_fingerprint(fingerprint, idea, IdeaStatus.RECYCLED):
            written += 1
        else:
            logger.debug("Not recycling picked idea %r", idea.title)
    if written:
        logger.info("Recycled %d idea(s)", written)
    return written


# ── Reads ──────────────────────────────────────────────────────────────────


def find_by_fingerprint(fingerprint: str) -> Optional[IdeaRecord]:
    """Fetch the row for *fingerprint*, or None."""
    with _connect() as conn:
        row = conn.execute(
            f"SELECT {_COLUMNS} FROM idea_records WHERE fingerprint = ?",
            (fingerprint,),
        ).fetchone()
    return _row_to_record(row) if row else None


def get_by_id(record_id: str) -> Optional[IdeaRecord]:
    """Fetch a single record by its id, or None."""
    with _connect() as conn:
        row = conn.execute(
            f"SELECT {_COLUMNS} FROM idea_records WHERE id = ?", (record_id,)
        ).fetchone()
    return _row_to_record(row) if row else None


def list_by_status(status: IdeaStatus, limit: int = 200) -> list[IdeaRecord]:
    """Return records with *status*, most recently recycled/picked first.

    Rows that no longer validate are skipped with a warning.
    """
    order = "recycled_at" if IdeaStatus(status) is IdeaStatus.RECYCLED else "picked_at"
    with _connect() as conn:
        rows = conn.execute(
            f"SELECT {_COLUMNS} FROM idea_records WHERE status = ? "
            f"ORDER BY {order} DESC, created_at DESC LIMIT ?",
            (IdeaStatus(status).value, limit),
        ).fetchall()

    records: list[IdeaRecord] = []
    for row in rows:
        try:
            records.append(_row_to_record(row))
        except (ValueError, TypeError) as exc:
            logger.warning("Skipping corrupt idea record id=%s: %s", row["id"], exc)
    return records


def filter_records(records: list[IdeaRecord], query: str) -> list[IdeaRecord]:
    """Keep records whose title, one-liner or category contains *query*."""
    needle = query.strip().lower()
    if not needle:
        return list(records)
    return [
        r for r in records
        if needle in r.title.lower()
        or needle in r.one_liner.lower()
        or needle in r.category.lower()
    ]


def group_by_category(records: list[IdeaRecord]) -> list[tuple[str, list[IdeaRecord]]]:
    """Group records by category, largest group first.

    Ties keep the order in which each category was first seen.
    """
    groups: dict[str, list[IdeaRecord]] = defaultdict(list)
    for record in records:
        groups[record.category or DEFAULT_CATEGORY].append(record)
    return sorted(groups.items(), key=lambda item: len(item[1]), reverse=True)
