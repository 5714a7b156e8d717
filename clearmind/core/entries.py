# clearmind/core/entries.py
from typing import Any, Dict, List, Optional

from clearmind.core.embedding import TrigramEmbeddingClient
from clearmind.storage.db import Database
from clearmind.core.syslog2 import *

DEFAULT_TITLE = "Untitled Entry"


class EntryService:
    """
    Entry CRUD that keeps embeddings in step with content.

    Every write that changes content recomputes the embedding before the row
    is written, so readers never see a vector computed from older text.
    """

    def __init__(self, db: Database, embedding_client: Optional[TrigramEmbeddingClient] = None):
        self.db = db
        self.embedding_client = embedding_client or TrigramEmbeddingClient()

    def create(self, user_id: str, content: Optional[str], title: Optional[str] = None) -> Dict[str, Any]:
        content = (content or "").strip()
        if not content:
            raise ValueError("Content is required")

        entry = self.db.create_entry(
            user_id=user_id,
            content=content,
            embedding=self.embedding_client.get_embedding(content),
            title=title or DEFAULT_TITLE,
        )
        syslog2(LOG_INFO, "entry created", user_id=user_id, entry_id=entry["id"], chars=len(content))
        return entry

    def list(self, user_id: str) -> List[Dict[str, Any]]:
        return self.db.get_entries(user_id)

    def get(self, user_id: str, entry_id: str) -> Optional[Dict[str, Any]]:
        return self.db.get_entry(user_id, entry_id)

    def update(
        self,
        user_id: str,
        entry_id: str,
        content: Optional[str] = None,
        title: Optional[str] = None,
    ) -> Optional[Dict[str, Any]]:
        """
        Empty or missing content leaves content and embedding untouched.
        Returns None when the entry does not belong to the user.
        """
        new_content = None
        embedding = None
        if content and content.strip():
            new_content = content.strip()
            embedding = self.embedding_client.get_embedding(new_content)

        entry = self.db.update_entry(user_id, entry_id, content=new_content, embedding=embedding, title=title)
        if entry:
            syslog2(LOG_INFO, "entry updated", user_id=user_id, entry_id=entry_id, content_changed=new_content is not None)
        return entry

    def delete(self, user_id: str, entry_id: str) -> bool:
        deleted = self.db.delete_entry(user_id, entry_id)
        if deleted:
            syslog2(LOG_INFO, "entry deleted", user_id=user_id, entry_id=entry_id)
        return deleted

    def reindex(self, user_id: Optional[str] = None, batch_size: int = 128) -> int:
        """
        Computes embeddings for entries stored without one.

        Returns:
            Number of entries updated.
        """
        missing = self.db.get_entries_missing_embedding(user_id)
        if not missing:
            syslog2(LOG_INFO, "reindex: nothing to do", user_id=user_id)
            return 0

        syslog2(LOG_NOTICE, "reindex started", user_id=user_id, entries=len(missing))
        embeddings = self.embedding_client.get_embeddings_batched(
            [e["content"] for e in missing],
            batch_size=batch_size,
            show_progress=True,
        )

        updated = 0
        for entry, embedding in zip(missing, embeddings):
            if self.db.set_entry_embedding(entry["id"], embedding):
                updated += 1

        syslog2(LOG_NOTICE, "reindex finished", user_id=user_id, updated=updated)
        return updated
