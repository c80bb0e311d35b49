"""
Tests for ideasurge/library.py

Uses a temporary SQLite file so the real library DB is never touched.

Run with: pytest tests/test_library.py
"""

import pytest

import ideasurge.library as lib
from ideasurge.fingerprint import compute_fingerprint
from ideasurge.models import Idea, IdeaStatus


@pytest.fixture(autouse=True)
def temp_db(tmp_path, monkeypatch):
    """Point DB_PATH to a fresh temp file for each test."""
    db_file = tmp_path / "test_ideas.db"
    monkeypatch.setenv("DB_PATH", str(db_file))
    lib.init_db()
    yield


@pytest.fixture
def sample_idea() -> Idea:
    return Idea(
        id="1772366400000-0-abc1234",
        title="PantryPal",
        one_liner="Inventory tracker for ghost kitchens",
        problem="Food waste from poor stock visibility",
        target_market="Ghost kitchen operators",
        market_signal="r/KitchenConfidential threads on spoilage",
        revenue_model="Per-location subscription",
        source=["https://reddit.com/r/KitchenConfidential/x"],
        created_at="2026-03-01T12:00:00.000Z",
    )


def count_rows() -> int:
    with lib._connect() as conn:
        return conn.execute("SELECT COUNT(*) FROM idea_records").fetchone()[0]


class TestUpsert:
    def test_insert_then_find(self, sample_idea):
        fp = compute_fingerprint(sample_idea)
        assert lib.upsert_by_fingerprint(fp, sample_idea, IdeaStatus.RECYCLED) is True

        record = lib.find_by_fingerprint(fp)
        assert record is not None
        assert record.title == "PantryPal"
        assert record.source == ["https://reddit.com/r/KitchenConfidential/x"]
        assert record.status is IdeaStatus.RECYCLED
        assert record.recycled_at is not None

    def test_find_missing_returns_none(self):
        assert lib.find_by_fingerprint("0" * 64) is None

    def test_blank_category_defaults(self, sample_idea):
        idea = sample_idea.model_copy(update={"category": "   "})
        lib.recycle([idea])
        assert lib.find_by_fingerprint(compute_fingerprint(idea)).category == "Uncategorized"

    def test_category_is_stored(self, sample_idea):
        idea = sample_idea.model_copy(update={"category": "Food Tech"})
        lib.recycle([idea])
        assert lib.find_by_fingerprint(compute_fingerprint(idea)).category == "Food Tech"


class TestRecycle:
    def test_recycle_twice_keeps_one_row(self, sample_idea):
        assert lib.recycle([sample_idea]) == 1
        assert lib.recycle([sample_idea]) == 1
        assert count_rows() == 1

    def test_case_variant_merges_into_same_row(self, sample_idea):
        lib.recycle([sample_idea])
        variant = sample_idea.model_copy(
            update={"id": "other", "title": "  pantrypal ", "one_liner": "Updated one-liner"}
        )
        lib.recycle([variant])

        assert count_rows() == 1
        record = lib.find_by_fingerprint(compute_fingerprint(sample_idea))
        assert record.one_liner == "Updated one-liner"

    def test_picked_idea_is_not_demoted(self, sample_idea):
        lib.mark_picked(sample_idea)
        assert lib.recycle([sample_idea]) == 0

        record = lib.find_by_fingerprint(compute_fingerprint(sample_idea))
        assert record.status is IdeaStatus.PICKED
        assert record.recycled_at is None

    def test_skip_is_per_record(self, sample_idea):
        other = sample_idea.model_copy(update={"title": "ShiftSwap", "problem": "Swaps"})
        lib.mark_picked(sample_idea)

        assert lib.recycle([sample_idea, other]) == 1
        assert lib.find_by_fingerprint(compute_fingerprint(other)).status is IdeaStatus.RECYCLED


class TestPick:
    def test_pick_new_idea(self, sample_idea):
        record = lib.mark_picked(sample_idea)
        assert record.status is IdeaStatus.PICKED
        assert record.picked_at is not None

    def test_pick_promotes_recycled(self, sample_idea):
        lib.recycle([sample_idea])
        record = lib.mark_picked(sample_idea)

        assert record.status is IdeaStatus.PICKED
        assert record.recycled_at is None
        assert count_rows() == 1

    def test_pick_twice_is_idempotent(self, sample_idea):
        first = lib.mark_picked(sample_idea)
        second = lib.mark_picked(sample_idea)
        assert first.id == second.id
        assert count_rows() == 1


class TestReads:
    def test_get_by_id(self, sample_idea):
        record = lib.mark_picked(sample_idea)
        assert lib.get_by_id(record.id).fingerprint == record.fingerprint
        assert lib.get_by_id("missing") is None

    def test_list_by_status(self, sample_idea):
        other = sample_idea.model_copy(update={"title": "ShiftSwap"})
        lib.recycle([sample_idea])
        lib.mark_picked(other)

        assert [r.title for r in lib.list_by_status(IdeaStatus.RECYCLED)] == ["PantryPal"]
        assert [r.title for r in lib.list_by_status(IdeaStatus.PICKED)] == ["ShiftSwap"]

    def test_list_respects_limit(self, sample_idea):
        lib.recycle(
            sample_idea.model_copy(update={"title": f"Idea {i}"}) for i in range(5)
        )
        assert len(lib.list_by_status(IdeaStatus.RECYCLED, limit=3)) == 3

    def test_record_converts_to_idea(self, sample_idea):
        record = lib.mark_picked(sample_idea)
        idea = record.to_idea()
        assert idea.id == record.id
        assert idea.title == sample_idea.title
        assert idea.category == "Uncategorized"


class TestGrouping:
    def _records(self, sample_idea):
        ideas = [
            sample_idea.model_copy(update={"title": "A", "category": "Food Tech"}),
            sample_idea.model_copy(update={"title": "B", "category": "Dev Tools"}),
            sample_idea.model_copy(update={"title": "C", "category": "Dev Tools"}),
        ]
        lib.recycle(ideas)
        return lib.list_by_status(IdeaStatus.RECYCLED)

    def test_largest_group_first(self, sample_idea):
        groups = lib.group_by_category(self._records(sample_idea))
        assert [(c, len(rs)) for c, rs in groups] == [("Dev Tools", 2), ("Food Tech", 1)]

    def test_filter_matches_title_or_category(self, sample_idea):
        records = self._records(sample_idea)
        assert {r.title for r in lib.filter_records(records, "dev")} == {"B", "C"}
        assert {r.title for r in lib.filter_records(records, "FOOD")} == {"A"}
        assert len(lib.filter_records(records, "  ")) == 3
