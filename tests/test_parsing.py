"""
Tests for ideasurge/parsing.py

Run with: pytest tests/test_parsing.py
"""

from __future__ import annotations

import json

import pytest

from ideasurge.parsing import (
    extract_ideas,
    extract_json_text,
    make_idea_id,
    parse_deep_dive_from_text,
    parse_ideas_from_text,
)

CREATED_AT = "2026-03-01T12:00:00.000Z"

PANTRYPAL = (
    '{"ideas":[{"title":"PantryPal","oneLiner":"Inventory tracker for ghost kitchens",'
    '"problem":"Food waste from poor stock visibility","targetMarket":"Ghost kitchen operators",'
    '"marketSignal":"r/KitchenConfidential threads on spoilage",'
    '"revenueModel":"Per-location subscription",'
    '"source":["https://reddit.com/r/KitchenConfidential/x"]}]}'
)

MARKDOWN = """## 💡 ShiftSwap
**One-liner:** Shift trading for hourly teams
**Problem:** Managers waste hours on swap requests
**Target market:** Restaurant managers
**Market signal:** Frequent complaints on r/restaurateur
**Revenue model:** Per-seat pricing
**Source:** https://reddit.com/r/restaurateur/a, https://example.com/b

---

## 💡 ClinicQueue
**One-liner:** Walk-in queue for small clinics
**Problem:** Patients wait without visibility
**Target market:** Independent clinics
**Market signal:** Reviews mention long waits
**Revenue model:** Monthly subscription
**Source:** https://example.com/c
"""


def ideas_json(*ideas: dict) -> str:
    return json.dumps({"ideas": list(ideas)})


def idea_dict(n: int) -> dict:
    return {
        "title": f"Idea {n}",
        "oneLiner": f"One liner {n}",
        "problem": f"Problem {n}",
        "targetMarket": f"Market {n}",
        "marketSignal": f"Signal {n}",
        "revenueModel": f"Revenue {n}",
        "source": [f"https://example.com/{n}"],
    }


# ── JSON dialect ───────────────────────────────────────────────────────────


class TestJsonDialect:
    def test_end_to_end_pantrypal(self):
        ideas = parse_ideas_from_text(PANTRYPAL, CREATED_AT)

        assert len(ideas) == 1
        idea = ideas[0]
        assert idea.title == "PantryPal"
        assert idea.source == ["https://reddit.com/r/KitchenConfidential/x"]
        assert idea.id
        assert idea.created_at == CREATED_AT
        assert idea.target_market == "Ghost kitchen operators"

    def test_fenced_block_with_surrounding_prose(self):
        text = f"Here you go:\n```json\n{PANTRYPAL}\n```\nEnjoy!"
        assert [i.title for i in parse_ideas_from_text(text, CREATED_AT)] == ["PantryPal"]

    def test_think_tags_are_ignored(self):
        text = '<think>{"ideas": [{"title": "Hidden", "problem": "x"}]}</think>' + PANTRYPAL
        assert [i.title for i in parse_ideas_from_text(text, CREATED_AT)] == ["PantryPal"]

    def test_fields_are_trimmed(self):
        text = ideas_json({"title": "  Spaced  ", "problem": "\n problem \n", "oneLiner": " x "})
        idea = parse_ideas_from_text(text, CREATED_AT)[0]
        assert (idea.title, idea.problem, idea.one_liner) == ("Spaced", "problem", "x")

    def test_source_string_is_split(self):
        text = ideas_json({"title": "T", "problem": "P", "source": "a.com, b.com\nc.com,, "})
        assert parse_ideas_from_text(text, CREATED_AT)[0].source == ["a.com", "b.com", "c.com"]

    def test_source_order_and_duplicates_preserved(self):
        text = ideas_json({"title": "T", "problem": "P", "source": ["b", " a ", "b", ""]})
        assert parse_ideas_from_text(text, CREATED_AT)[0].source == ["b", "a", "b"]

    def test_category_is_kept(self):
        text = ideas_json({"title": "T", "problem": "P", "category": " Food Tech "})
        assert parse_ideas_from_text(text, CREATED_AT)[0].category == "Food Tech"

    def test_missing_optional_fields_default_empty(self):
        idea = parse_ideas_from_text(ideas_json({"title": "T", "problem": "P"}), CREATED_AT)[0]
        assert idea.one_liner == ""
        assert idea.source == []
        assert idea.category is None

    def test_malformed_element_is_skipped_but_keeps_position(self):
        text = ideas_json({"title": 123, "problem": "bad"}, idea_dict(1))
        ideas = parse_ideas_from_text(text, CREATED_AT)
        assert [i.title for i in ideas] == ["Idea 1"]
        assert ideas[0].id.split("-")[1] == "1"

    def test_reports_dialect(self):
        extraction = extract_ideas(PANTRYPAL, CREATED_AT)
        assert extraction is not None
        assert extraction.dialect == "json"


# ── Validity filter ────────────────────────────────────────────────────────


class TestValidityFilter:
    @pytest.mark.parametrize(
        "item",
        [
            {"title": "", "problem": "P"},
            {"title": "   ", "problem": "P"},
            {"title": "T", "problem": ""},
            {"title": "T"},
            {"problem": "P"},
        ],
    )
    def test_invalid_ideas_never_returned(self, item):
        text = ideas_json(item, idea_dict(2))
        ideas = parse_ideas_from_text(text, CREATED_AT)
        assert [i.title for i in ideas] == ["Idea 2"]
        assert all(i.title and i.problem for i in ideas)

    def test_markdown_ideas_without_problem_dropped(self):
        text = "## 💡 Lonely\n**One-liner:** no problem field\n"
        assert parse_ideas_from_text(text, CREATED_AT) == []


# ── Markdown dialect and fallback ──────────────────────────────────────────


class TestMarkdownDialect:
    def test_parses_sections(self):
        ideas = parse_ideas_from_text(MARKDOWN, CREATED_AT)

        assert [i.title for i in ideas] == ["ShiftSwap", "ClinicQueue"]
        first = ideas[0]
        assert first.one_liner == "Shift trading for hourly teams"
        assert first.problem == "Managers waste hours on swap requests"
        assert first.target_market == "Restaurant managers"
        assert first.market_signal == "Frequent complaints on r/restaurateur"
        assert first.revenue_model == "Per-seat pricing"
        assert first.source == ["https://reddit.com/r/restaurateur/a", "https://example.com/b"]

    def test_reports_dialect(self):
        assert extract_ideas(MARKDOWN, CREATED_AT).dialect == "markdown"

    def test_sections_without_heading_are_skipped(self):
        text = "Intro text without heading\n---\n" + MARKDOWN
        assert len(parse_ideas_from_text(text, CREATED_AT)) == 2

    def test_intro_heading_is_not_an_idea_title(self):
        text = (
            "# SaaS opportunities in ghost kitchens\n\n"
            "## 💡 PantryPal\n**Problem:** Food waste\n"
            "---\n"
            "## 💡 ShiftSwap\n**Problem:** Shift gaps"
        )
        titles = [i.title for i in parse_ideas_from_text(text, CREATED_AT)]
        assert titles == ["PantryPal", "ShiftSwap"]

    def test_last_heading_before_fields_without_bulb(self):
        text = "# Results\n\n### Plain Title\n**Problem:** Something\n## Notes\n"
        assert parse_ideas_from_text(text, CREATED_AT)[0].title == "Plain Title"

    def test_empty_label_does_not_swallow_next_line(self):
        text = "## Title\n**One-liner:**\n**Problem:** Real problem\n"
        idea = parse_ideas_from_text(text, CREATED_AT)[0]
        assert idea.one_liner == ""
        assert idea.problem == "Real problem"

    def test_broken_json_falls_back_to_markdown(self):
        truncated = '{"ideas": [{"title": "Half", "problem": "cut off mid-'
        ideas = parse_ideas_from_text(truncated + "\n\n" + MARKDOWN, CREATED_AT)
        assert [i.title for i in ideas] == ["ShiftSwap", "ClinicQueue"]

    def test_json_without_valid_ideas_falls_back(self):
        text = ideas_json({"title": "No problem"}) + "\n---\n" + MARKDOWN
        assert [i.title for i in parse_ideas_from_text(text, CREATED_AT)] == [
            "ShiftSwap",
            "ClinicQueue",
        ]


# ── Edge cases ─────────────────────────────────────────────────────────────


class TestEdgeCases:
    @pytest.mark.parametrize("text", ["", "   ", "no structure at all", "{", "}{", "<think>"])
    def test_returns_empty_list(self, text):
        assert parse_ideas_from_text(text, CREATED_AT) == []

    def test_extract_ideas_none_on_miss(self):
        assert extract_ideas("", CREATED_AT) is None

    def test_default_created_at_is_set(self):
        idea = parse_ideas_from_text(PANTRYPAL)[0]
        assert idea.created_at.endswith("Z")

    def test_extract_json_text_uses_fence(self):
        assert extract_json_text('x {"a": 0} ```json\n{"b": 1}\n``` y') == '{"b": 1}'


# ── Ids and streaming ──────────────────────────────────────────────────────


class TestIdeaIds:
    def test_id_layout(self):
        idea_id = make_idea_id(CREATED_AT, 3, "T", "P")
        millis, index, digest = idea_id.split("-")
        assert millis == "1772366400000"
        assert index == "3"
        assert len(digest) == 7

    def test_ids_unique_within_batch(self):
        text = ideas_json(*(idea_dict(n) for n in range(5)))
        ids = [i.id for i in parse_ideas_from_text(text, CREATED_AT)]
        assert len(set(ids)) == 5

    def test_same_content_same_id(self):
        assert parse_ideas_from_text(PANTRYPAL, CREATED_AT)[0].id == (
            parse_ideas_from_text(PANTRYPAL, CREATED_AT)[0].id
        )

    def test_unparseable_timestamp_still_yields_id(self):
        idea = parse_ideas_from_text(PANTRYPAL, "not-a-date")[0]
        assert idea.id.split("-")[0].isdigit()


class TestStreamingPrefixes:
    def test_growing_prefixes_are_monotonic(self):
        full = "```json\n" + ideas_json(idea_dict(1), idea_dict(2), idea_dict(3)) + "\n```\nDone."
        cuts = [len(full) * k // 10 for k in range(1, 11)]

        first_valid = None
        for cut in cuts:
            ideas = parse_ideas_from_text(full[:cut], CREATED_AT)
            if first_valid is None:
                if ideas:
                    first_valid = ideas
                continue
            assert ideas[: len(first_valid)] == first_valid

        assert first_valid is not None
        assert [i.title for i in first_valid] == ["Idea 1", "Idea 2", "Idea 3"]

    def test_every_prefix_is_safe(self):
        full = ideas_json(idea_dict(1), idea_dict(2))
        for cut in range(len(full) + 1):
            for idea in parse_ideas_from_text(full[:cut], CREATED_AT):
                assert idea.title and idea.problem


# ── Deep dives ─────────────────────────────────────────────────────────────


DEEP_DIVE = json.dumps(
    {
        "summary": "  Strong wedge into ghost kitchens. ",
        "sections": [
            {"key": "mvp", "title": "MVP & execution", "content": "Barcode scanning first."},
            {"title": "Market validation", "content": "Interview 20 operators."},
            {"title": "No content"},
        ],
        "sources": ["https://a.com", " ", "https://b.com "],
    }
)


class TestDeepDive:
    def test_parses_report(self):
        result = parse_deep_dive_from_text(DEEP_DIVE, "idea-1", generated_at=CREATED_AT)

        assert result is not None
        assert result.idea_id == "idea-1"
        assert result.summary == "Strong wedge into ghost kitchens."
        assert [s.key for s in result.sections] == ["mvp", "section-2"]
        assert result.sources == ["https://a.com", "https://b.com"]
        assert result.generated_at == CREATED_AT

    def test_generated_at_not_taken_from_payload(self):
        payload = json.loads(DEEP_DIVE)
        payload["generatedAt"] = "1999-01-01T00:00:00Z"
        result = parse_deep_dive_from_text(json.dumps(payload), "i")
        assert result.generated_at != "1999-01-01T00:00:00Z"

    def test_empty_sections_returns_none(self):
        assert parse_deep_dive_from_text('{"summary": "ok", "sections": []}', "i") is None

    @pytest.mark.parametrize(
        "text",
        [
            "",
            "not json",
            '{"summary": "", "sections": [{"title": "t", "content": "c"}]}',
            '{"sections": [{"title": "t", "content": "c"}]}',
            '{"summary": "ok", "sections": "nope"}',
            '{"summary": "ok", "sections": [{"title": "t"}]}',
            '{"summary": 5, "sections": [{"title": "t", "content": "c"}]}',
            '{"summary": "ok", "sections": [{"title": "t", "content": "c"}',
        ],
    )
    def test_invalid_reports_return_none(self, text):
        assert parse_deep_dive_from_text(text, "i") is None

    def test_fenced_and_think_tagged(self):
        text = "<think>draft</think>\n```json\n" + DEEP_DIVE + "\n```"
        assert parse_deep_dive_from_text(text, "i") is not None

    def test_non_list_sources_become_empty(self):
        text = '{"summary": "ok", "sections": [{"title": "t", "content": "c"}], "sources": "x"}'
        assert parse_deep_dive_from_text(text, "i").sources == []
