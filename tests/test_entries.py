"""
Tests for EntryService: CRUD with embeddings kept in step with content.
"""

import pytest
from unittest.mock import MagicMock

from clearmind.core.embedding import embed
from clearmind.core.entries import EntryService, DEFAULT_TITLE


def stored_embedding(db, user_id, entry_id):
    for candidate in db.get_entries_with_embeddings(user_id):
        if candidate["id"] == entry_id:
            return candidate["embedding"]
    return None


class TestCreate:
    def test_create_embeds_stripped_content(self, entry_service, db):
        entry = entry_service.create("u1", "  Started a new internship today  ")
        assert entry["content"] == "Started a new internship today"
        assert entry["title"] == DEFAULT_TITLE
        assert stored_embedding(db, "u1", entry["id"]) == embed("Started a new internship today")

    def test_create_with_title(self, entry_service):
        assert entry_service.create("u1", "text", title="Day one")["title"] == "Day one"

    @pytest.mark.parametrize("content", ["", "   ", None])
    def test_create_requires_content(self, entry_service, content):
        with pytest.raises(ValueError, match="Content is required"):
            entry_service.create("u1", content)


class TestUpdate:
    def test_content_change_reembeds(self, entry_service, db):
        entry = entry_service.create("u1", "first draft")
        entry_service.update("u1", entry["id"], content="second draft")
        assert stored_embedding(db, "u1", entry["id"]) == embed("second draft")

    def test_empty_content_ignored(self, entry_service, db):
        entry = entry_service.create("u1", "keep me")
        updated = entry_service.update("u1", entry["id"], content="   ", title="New title")
        assert updated["content"] == "keep me"
        assert updated["title"] == "New title"
        assert stored_embedding(db, "u1", entry["id"]) == embed("keep me")

    def test_update_missing_entry(self, entry_service):
        assert entry_service.update("u1", "nope", content="x") is None

    def test_update_other_user(self, entry_service):
        entry = entry_service.create("alice", "private")
        assert entry_service.update("bob", entry["id"], content="hacked") is None
        assert entry_service.get("alice", entry["id"])["content"] == "private"


class TestReadDelete:
    def test_list_and_get(self, entry_service):
        entry = entry_service.create("u1", "hello")
        assert [e["id"] for e in entry_service.list("u1")] == [entry["id"]]
        assert entry_service.get("u1", entry["id"])["content"] == "hello"
        assert entry_service.get("u1", "missing") is None

    def test_delete(self, entry_service):
        entry = entry_service.create("u1", "bye")
        assert entry_service.delete("u1", entry["id"]) is True
        assert entry_service.delete("u1", entry["id"]) is False


class TestReindex:
    def test_backfills_missing_embeddings(self, entry_service, db):
        legacy = db.create_entry("u1", "legacy entry without vector", embedding=None)
        fresh = entry_service.create("u1", "fresh entry")

        assert entry_service.reindex() == 1
        assert stored_embedding(db, "u1", legacy["id"]) == embed("legacy entry without vector")
        assert stored_embedding(db, "u1", fresh["id"]) == embed("fresh entry")

    def test_reindex_single_user(self, entry_service, db):
        db.create_entry("alice", "a", embedding=None)
        db.create_entry("bob", "b", embedding=None)
        assert entry_service.reindex(user_id="alice") == 1
        assert len(db.get_entries_missing_embedding()) == 1

    def test_nothing_to_do(self, entry_service):
        assert entry_service.reindex() == 0

    def test_uses_batched_embeddings(self, db):
        embedder = MagicMock()
        embedder.get_embeddings_batched.return_value = [[0.6, 0.8], [0.8, 0.6]]
        db.create_entry("u1", "one", embedding=None)
        db.create_entry("u1", "two", embedding=None)

        service = EntryService(db, embedder)
        assert service.reindex(batch_size=1) == 2

        args, kwargs = embedder.get_embeddings_batched.call_args
        assert sorted(args[0]) == ["one", "two"]
        assert kwargs["batch_size"] == 1
