from sqlalchemy import create_engine, Column, String, Text, DateTime, ForeignKey, or_, text
from sqlalchemy.orm import declarative_base, sessionmaker
from datetime import datetime, timezone
from typing import List, Optional, Dict, Any
import json
import uuid
from clearmind.core.syslog2 import *

Base = declarative_base()


def utcnow() -> datetime:
    """naive utc timestamp (sqlite keeps no tzinfo)"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def new_id() -> str:
    return uuid.uuid4().hex[:16]

# ============================================================================
# Models
# ============================================================================

class UserModel(Base):
    """Journal owner. Identity comes from the auth layer, rows are provisioned on first use."""
    __tablename__ = 'users'

    id = Column(String, primary_key=True)
    api_key = Column(Text, nullable=True)  # per-user completion service key
    created_at = Column(DateTime, default=utcnow)


class EntryModel(Base):
    """Journal entry with derived analysis and cached embedding."""
    __tablename__ = 'entries'

    id = Column(String, primary_key=True)
    user_id = Column(String, ForeignKey('users.id', ondelete='CASCADE'), nullable=False, index=True)
    title = Column(Text, nullable=False, default='Untitled Entry')
    content = Column(Text, nullable=False)

    # Set by the mood analyst
    mood = Column(String, nullable=True)
    tags_json = Column(Text, nullable=True)
    summary = Column(Text, nullable=True)
    encouragement = Column(Text, nullable=True)
    analyzed_at = Column(DateTime, nullable=True)

    # JSON array of floats computed from the current content
    embedding_json = Column(Text, nullable=True)

    created_at = Column(DateTime, default=utcnow, index=True)
    updated_at = Column(DateTime, default=utcnow)


class ConfigModel(Base):
    """Key/value settings shared by the whole service."""
    __tablename__ = 'config'

    key = Column(String, primary_key=True)
    value = Column(Text, nullable=True)


def _loads_list(raw: Optional[str]) -> Optional[list]:
    if not raw:
        return None
    try:
        value = json.loads(raw)
    except (json.JSONDecodeError, TypeError):
        return None
    return value if isinstance(value, list) else None


def entry_to_dict(entry: EntryModel, with_embedding: bool = False) -> Dict[str, Any]:
    result = {
        "id": entry.id,
        "user_id": entry.user_id,
        "title": entry.title,
        "content": entry.content,
        "mood": entry.mood,
        "tags": _loads_list(entry.tags_json),
        "summary": entry.summary,
        "encouragement": entry.encouragement,
        "analyzed_at": entry.analyzed_at,
        "created_at": entry.created_at,
        "updated_at": entry.updated_at,
    }
    if with_embedding:
        result["embedding"] = _loads_list(entry.embedding_json)
    return result


# ============================================================================
# Database Class
# ============================================================================

class Database:
    def __init__(self, db_url: str):
        if not db_url:
            raise ValueError("db_url must be provided")
        self.db_url = db_url
        self.engine = create_engine(db_url)
        Base.metadata.create_all(self.engine)
        self.Session = sessionmaker(bind=self.engine)

        self._ensure_schema()

    def _ensure_schema(self):
        """Adds the embedding column to entries tables created before embeddings existed."""
        with self.engine.connect() as conn:
            try:
                conn.execute(text("SELECT embedding_json FROM entries LIMIT 1"))
            except Exception:
                conn.rollback()
                try:
                    conn.execute(text("ALTER TABLE entries ADD COLUMN embedding_json TEXT"))
                    conn.commit()
                    syslog2(LOG_NOTICE, "schema updated", table="entries", column="embedding_json")
                except Exception as e:
                    syslog2(LOG_WARNING, "schema update warning (entries embedding_json)", error=str(e))

    def get_session(self):
        return self.Session()

    # ========================================================================
    # User Methods
    # ========================================================================

    def _ensure_user(self, session, user_id: str) -> UserModel:
        user = session.get(UserModel, user_id)
        if user is None:
            user = UserModel(id=user_id)
            session.add(user)
            session.flush()
            syslog2(LOG_INFO, "user provisioned", user_id=user_id)
        return user

    def ensure_user(self, user_id: str) -> None:
        """Creates the user row if it does not exist yet."""
        if not user_id:
            raise ValueError("user_id must be provided")
        session = self.get_session()
        try:
            self._ensure_user(session, user_id)
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def set_user_api_key(self, user_id: str, api_key: str) -> None:
        session = self.get_session()
        try:
            user = self._ensure_user(session, user_id)
            user.api_key = api_key
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def get_user_api_key(self, user_id: str) -> Optional[str]:
        session = self.get_session()
        try:
            user = session.get(UserModel, user_id)
            return user.api_key if user and user.api_key else None
        finally:
            session.close()

    # ========================================================================
    # Entry Methods
    # ========================================================================

    def count_entries(self, user_id: Optional[str] = None) -> int:
        session = self.get_session()
        try:
            query = session.query(EntryModel)
            if user_id is not None:
                query = query.filter(EntryModel.user_id == user_id)
            return query.count()
        finally:
            session.close()

    def create_entry(
        self,
        user_id: str,
        content: str,
        embedding: Optional[List[float]],
        title: Optional[str] = None,
        entry_id: Optional[str] = None,
        created_at: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        """
        Inserts an entry and returns it as dict.

        embedding must have been computed from content by the caller.
        """
        session = self.get_session()
        try:
            self._ensure_user(session, user_id)
            now = created_at or utcnow()
            entry = EntryModel(
                id=entry_id or new_id(),
                user_id=user_id,
                title=title or 'Untitled Entry',
                content=content,
                embedding_json=json.dumps(embedding) if embedding is not None else None,
                created_at=now,
                updated_at=now,
            )
            session.add(entry)
            session.commit()
            return entry_to_dict(entry)
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def get_entries(self, user_id: str) -> List[Dict[str, Any]]:
        """All entries of a user, newest first."""
        session = self.get_session()
        try:
            entries = session.query(EntryModel).filter(
                EntryModel.user_id == user_id
            ).order_by(EntryModel.created_at.desc()).all()
            return [entry_to_dict(e) for e in entries]
        finally:
            session.close()

    def get_entry(self, user_id: str, entry_id: str) -> Optional[Dict[str, Any]]:
        session = self.get_session()
        try:
            entry = session.query(EntryModel).filter(
                EntryModel.id == entry_id,
                EntryModel.user_id == user_id
            ).first()
            return entry_to_dict(entry) if entry else None
        finally:
            session.close()

    def update_entry(
        self,
        user_id: str,
        entry_id: str,
        content: Optional[str] = None,
        embedding: Optional[List[float]] = None,
        title: Optional[str] = None,
    ) -> Optional[Dict[str, Any]]:
        """
        Updates content and/or title. A content change must come with the
        embedding of the new content, otherwise ValueError is raised.
        Returns None when the entry does not exist for this user.
        """
        if content is not None and embedding is None:
            raise ValueError("content update requires a fresh embedding")

        session = self.get_session()
        try:
            entry = session.query(EntryModel).filter(
                EntryModel.id == entry_id,
                EntryModel.user_id == user_id
            ).first()
            if not entry:
                return None
            if content is not None:
                entry.content = content
                entry.embedding_json = json.dumps(embedding)
            if title is not None:
                entry.title = title
            entry.updated_at = utcnow()
            session.commit()
            return entry_to_dict(entry)
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def delete_entry(self, user_id: str, entry_id: str) -> bool:
        session = self.get_session()
        try:
            deleted = session.query(EntryModel).filter(
                EntryModel.id == entry_id,
                EntryModel.user_id == user_id
            ).delete()
            session.commit()
            return deleted > 0
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def get_entries_with_embeddings(self, user_id: str) -> List[Dict[str, Any]]:
        """
        Retrieval candidates: entries of a user that have an embedding,
        oldest first. Rows whose stored vector does not decode are left out.
        """
        session = self.get_session()
        try:
            entries = session.query(EntryModel).filter(
                EntryModel.user_id == user_id,
                EntryModel.embedding_json.isnot(None)
            ).order_by(EntryModel.created_at, EntryModel.id).all()

            results = []
            for entry in entries:
                item = entry_to_dict(entry, with_embedding=True)
                if not item["embedding"]:
                    syslog2(LOG_WARNING, "entry embedding unreadable, skipped", entry_id=entry.id)
                    continue
                results.append(item)
            return results
        finally:
            session.close()

    def get_entries_in_date_range(self, user_id: str, start: datetime, end: datetime) -> List[Dict[str, Any]]:
        """Entries created within [start, end], newest first."""
        session = self.get_session()
        try:
            entries = session.query(EntryModel).filter(
                EntryModel.user_id == user_id,
                EntryModel.created_at >= start,
                EntryModel.created_at <= end
            ).order_by(EntryModel.created_at.desc()).all()
            return [entry_to_dict(e) for e in entries]
        finally:
            session.close()

    def get_analyzed_entries(self, user_id: str) -> List[Dict[str, Any]]:
        """Entries carrying any analysis field, newest first."""
        session = self.get_session()
        try:
            entries = session.query(EntryModel).filter(
                EntryModel.user_id == user_id,
                or_(
                    EntryModel.tags_json.isnot(None),
                    EntryModel.mood.isnot(None),
                    EntryModel.summary.isnot(None),
                )
            ).order_by(EntryModel.created_at.desc()).all()
            return [entry_to_dict(e) for e in entries]
        finally:
            session.close()

    def update_entry_analysis(
        self,
        user_id: str,
        entry_id: str,
        mood: Optional[str],
        tags: Optional[List[str]],
        summary: Optional[str],
        encouragement: Optional[str] = None,
    ) -> Optional[Dict[str, Any]]:
        session = self.get_session()
        try:
            entry = session.query(EntryModel).filter(
                EntryModel.id == entry_id,
                EntryModel.user_id == user_id
            ).first()
            if not entry:
                return None
            entry.mood = mood
            entry.tags_json = json.dumps(tags) if tags is not None else None
            entry.summary = summary
            entry.encouragement = encouragement
            entry.analyzed_at = utcnow()
            session.commit()
            return entry_to_dict(entry)
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def get_entries_missing_embedding(self, user_id: Optional[str] = None) -> List[Dict[str, Any]]:
        """Entries written without an embedding (legacy rows)."""
        session = self.get_session()
        try:
            query = session.query(EntryModel).filter(EntryModel.embedding_json.is_(None))
            if user_id is not None:
                query = query.filter(EntryModel.user_id == user_id)
            return [entry_to_dict(e) for e in query.order_by(EntryModel.created_at).all()]
        finally:
            session.close()

    def set_entry_embedding(self, entry_id: str, embedding: List[float]) -> bool:
        session = self.get_session()
        try:
            entry = session.get(EntryModel, entry_id)
            if not entry:
                return False
            entry.embedding_json = json.dumps(embedding)
            session.commit()
            return True
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    # ========================================================================
    # Config Methods
    # ========================================================================

    def get_config(self, key: str) -> Optional[str]:
        session = self.get_session()
        try:
            row = session.get(ConfigModel, key)
            return row.value if row and row.value else None
        finally:
            session.close()

    def set_config(self, key: str, value: str) -> None:
        session = self.get_session()
        try:
            row = session.get(ConfigModel, key)
            if row is None:
                session.add(ConfigModel(key=key, value=value))
            else:
                row.value = value
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()
