"""
Tests for the journal tools and tool dispatch.
"""

from datetime import timedelta

import pytest

from clearmind.core.tools import (
    ToolContext,
    NO_USER_CONTEXT,
    TOOLS,
    TOOL_SPECS,
    run_tool,
    search_entries,
    find_related,
    get_entries,
)
from clearmind.core.retrieval import RetrievalPolicy
from clearmind.storage.db import EntryModel, utcnow


@pytest.fixture
def ctx(db, retrieval):
    return ToolContext(user_id="u1", db=db, retrieval=retrieval)


@pytest.fixture
def journal(entry_service, db):
    entries = {
        "bug": entry_service.create("u1", "debugging a database issue"),
        "ocean": entry_service.create("u1", "reading about ocean currents", title="Beach"),
        "old": entry_service.create("u1", "x" * 400),
    }
    db.update_entry_analysis("u1", entries["bug"]["id"], "frustrated", ["work"], "Bug hunt.")

    session = db.get_session()
    try:
        session.get(EntryModel, entries["old"]["id"]).created_at = utcnow() - timedelta(days=20)
        session.commit()
    finally:
        session.close()
    return entries


class TestNoUser:
    @pytest.mark.parametrize("tool,kwargs", [
        (search_entries, {"query": "x"}),
        (find_related, {"text": "x"}),
        (get_entries, {"scope": "recent"}),
    ])
    def test_requires_user(self, db, retrieval, tool, kwargs):
        ctx = ToolContext(user_id=None, db=db, retrieval=retrieval)
        assert tool(ctx, **kwargs) == NO_USER_CONTEXT


class TestSearchTools:
    def test_search_entries_hides_ids(self, ctx, journal):
        result = search_entries(ctx, "database debugging")
        assert result["count"] == 1
        item = result["results"][0]
        assert "id" not in item
        assert item["content"] == "debugging a database issue"
        assert item["mood"] == "frustrated"
        assert item["similarity"] == pytest.approx(0.7917, abs=1e-3)

    def test_find_related_defaults(self, ctx, journal):
        result = find_related(ctx, "database debugging")
        assert result["count"] == 1
        assert result["related"][0]["tags"] == ["work"]

    def test_find_related_unanalyzed_defaults(self, ctx, entry_service):
        entry_service.create("u1", "debugging a database issue")
        related = find_related(ctx, "database debugging")["related"][0]
        assert related["mood"] == "unknown"
        assert related["tags"] == []


class TestGetEntries:
    def test_recent(self, ctx, journal):
        result = get_entries(ctx, "recent")
        assert result["count"] == 3
        assert result["total"] == 3
        by_title = {e["title"]: e for e in result["entries"]}
        assert by_title["Beach"]["mood"] == "unknown"
        assert by_title["Beach"]["tags"] == []

    def test_week(self, ctx, journal):
        result = get_entries(ctx, "week")
        assert result["total"] == 2
        assert all(e["content"] != "x" * 300 for e in result["entries"])

    def test_analyzed(self, ctx, journal):
        result = get_entries(ctx, "analyzed")
        assert result["count"] == 1
        assert result["entries"][0]["summary"] == "Bug hunt."

    def test_summary_falls_back_to_excerpt(self, ctx, journal):
        old = [e for e in get_entries(ctx, "recent")["entries"] if e["content"].startswith("x")][0]
        assert old["summary"] == "x" * 200
        assert old["content"] == "x" * 300

    def test_limit(self, ctx, journal):
        result = get_entries(ctx, "recent", limit=1)
        assert result["count"] == 1
        assert result["total"] == 3

    def test_unknown_scope(self, ctx):
        assert get_entries(ctx, "forever") == {"error": "Unknown scope: forever"}


class TestRunTool:
    def test_json_string_arguments(self, ctx, journal):
        result = run_tool(ctx, "get_entries", '{"scope": "analyzed"}')
        assert result["count"] == 1

    def test_dict_arguments(self, ctx, journal):
        assert run_tool(ctx, "find_related", {"text": "database debugging", "limit": 1})["count"] == 1

    def test_unknown_tool(self, ctx):
        assert run_tool(ctx, "delete_everything", {}) == {"error": "Unknown tool: delete_everything"}

    def test_bad_json(self, ctx):
        assert "error" in run_tool(ctx, "get_entries", "{scope:")

    def test_non_object_arguments(self, ctx):
        assert run_tool(ctx, "get_entries", "[1, 2]") == {"error": "Tool arguments must be an object"}

    def test_unexpected_argument(self, ctx):
        assert run_tool(ctx, "search_entries", {"q": "x"}) == {"error": "Invalid arguments for search_entries"}

    @pytest.mark.parametrize("name,arguments,error", [
        ("find_related", {"text": 123}, "find_related: text must be a string"),
        ("find_related", {"text": None}, "find_related: text must be a string"),
        ("search_entries", {"query": ["a"]}, "search_entries: query must be a string"),
        ("search_entries", {"query": "x", "limit": "3"}, "search_entries: limit must be an integer"),
        ("find_related", {"text": "x", "limit": True}, "find_related: limit must be an integer"),
        ("get_entries", {"scope": "recent", "limit": 2.5}, "get_entries: limit must be an integer"),
        ("get_entries", {"scope": ["recent"]}, "Unknown scope: ['recent']"),
    ])
    def test_wrong_argument_types(self, ctx, journal, name, arguments, error):
        assert run_tool(ctx, name, arguments) == {"error": error}

    def test_deeply_nested_arguments(self, ctx):
        assert run_tool(ctx, "get_entries", "[" * 100000 + "]" * 100000) == {"error": "Tool arguments are not valid JSON"}

    def test_specs_cover_every_tool(self):
        assert sorted(spec["function"]["name"] for spec in TOOL_SPECS) == sorted(TOOLS)


class TestConfiguredPolicy:
    def test_related_floor_from_context(self, db, retrieval, journal):
        strict = RetrievalPolicy("find_related", 0.8, 5, 300)
        ctx = ToolContext(user_id="u1", db=db, retrieval=retrieval, related_policy=strict)
        assert find_related(ctx, "database debugging")["count"] == 0
        assert search_entries(ctx, "database debugging")["count"] == 0

    def test_search_policy_keeps_own_cap(self, db, retrieval):
        ctx = ToolContext(user_id="u1", db=db, retrieval=retrieval,
                          related_policy=RetrievalPolicy("find_related", 0.3, 2, 100))
        policy = ctx.search_policy()
        assert (policy.name, policy.min_similarity, policy.limit, policy.excerpt_chars) == ("search_entries", 0.3, 5, 100)

    def test_related_excerpt_from_context(self, db, retrieval, journal):
        short = RetrievalPolicy("find_related", 0.15, 5, 9)
        ctx = ToolContext(user_id="u1", db=db, retrieval=retrieval, related_policy=short)
        assert find_related(ctx, "database debugging")["related"][0]["content"] == "debugging"
