# clearmind/core/retrieval.py
from dataclasses import dataclass, replace
from datetime import date, datetime
from typing import Any, Dict, Iterable, List, Optional, Protocol, Sequence

from clearmind.core.embedding import TrigramEmbeddingClient, cosine_similarity
from clearmind.core.syslog2 import *


class RetrievalError(Exception):
    """Candidate corpus could not be fetched."""


class CandidateStore(Protocol):
    def get_entries_with_embeddings(self, user_id: str) -> List[Dict[str, Any]]:
        ...


@dataclass(frozen=True)
class RetrievalPolicy:
    """
    Threshold, cap and output shaping for one retrieval consumer.

    Attributes:
        name: policy name used in logs
        min_similarity: strict floor, a candidate needs similarity > floor
        limit: maximum number of results (None = unbounded)
        excerpt_chars: content is cut to this many characters
        ellipsis: append "..." when content was cut
    """
    name: str
    min_similarity: float
    limit: Optional[int]
    excerpt_chars: int
    ellipsis: bool = False

    def with_limit(self, limit: Optional[int]) -> "RetrievalPolicy":
        return replace(self, limit=limit)


# explicit user queries tolerate looser recall than prompt context
SEARCH_POLICY = RetrievalPolicy("search", 0.1, 10, 200, ellipsis=True)
REFLECT_POLICY = RetrievalPolicy("reflect", 0.15, 5, 300)
COACH_POLICY = RetrievalPolicy("coach", 0.15, 3, 200)
RELATED_POLICY = RetrievalPolicy("find_related", 0.15, 5, 300)


@dataclass
class ScoredCandidate:
    candidate: Dict[str, Any]
    similarity: float


def rank_candidates(
    query_embedding: Sequence[float],
    candidates: Iterable[Dict[str, Any]],
    min_similarity: float,
    limit: Optional[int] = None,
) -> List[ScoredCandidate]:
    """
    Score every candidate against the query, keep those strictly above
    min_similarity, sort by similarity descending and cut to limit.

    Candidates without an embedding are skipped, not scored. The sort is
    stable, so equal scores keep the order the candidates came in.
    """
    if limit is not None and limit <= 0:
        return []

    scored: List[ScoredCandidate] = []
    for candidate in candidates:
        embedding = candidate.get("embedding")
        if not embedding:
            continue
        similarity = cosine_similarity(query_embedding, embedding)
        if similarity > min_similarity:
            scored.append(ScoredCandidate(candidate, similarity))

    scored.sort(key=lambda s: s.similarity, reverse=True)
    if limit is not None:
        scored = scored[:limit]
    return scored


def excerpt(text: Optional[str], max_chars: int, ellipsis: bool = False) -> str:
    text = text or ""
    if len(text) <= max_chars:
        return text
    cut = text[:max_chars]
    return cut + "..." if ellipsis else cut


def format_date(value: Any) -> Optional[str]:
    """datetime -> YYYY-MM-DD, iso strings are cut to the date part"""
    if value is None:
        return None
    if isinstance(value, (datetime, date)):
        return value.strftime("%Y-%m-%d")
    return str(value)[:10]


def format_timestamp(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return str(value)


class RetrievalService:
    """Semantic retrieval over one user's journal entries."""

    def __init__(self, store: CandidateStore, embedding_client: Optional[TrigramEmbeddingClient] = None):
        """
        Args:
            store: persistence collaborator providing get_entries_with_embeddings
            embedding_client: computes query embeddings (must be the same
                embedder that produced the stored vectors)
        """
        self.store = store
        self.embedding_client = embedding_client or TrigramEmbeddingClient()

    def _fetch_candidates(self, user_id: str) -> List[Dict[str, Any]]:
        try:
            return list(self.store.get_entries_with_embeddings(user_id))
        except Exception as e:
            syslog2(LOG_ERR, "candidate fetch failed", user_id=user_id, error=str(e))
            raise RetrievalError("failed to load entries for retrieval") from e

    def rank(self, user_id: str, text: str, policy: RetrievalPolicy) -> List[ScoredCandidate]:
        """embed text, fetch the user's candidates and rank them under policy"""
        candidates = self._fetch_candidates(user_id)
        if not candidates:
            return []

        query_embedding = self.embedding_client.get_embedding(text)
        ranked = rank_candidates(query_embedding, candidates, policy.min_similarity, policy.limit)

        syslog2(
            LOG_DEBUG,
            "retrieval ranked",
            policy=policy.name,
            candidates=len(candidates),
            results=len(ranked),
            top=round(ranked[0].similarity, 4) if ranked else None,
        )
        return ranked

    def search(self, user_id: str, query: str, policy: RetrievalPolicy = SEARCH_POLICY) -> List[Dict[str, Any]]:
        """User-facing search results."""
        results = []
        for scored in self.rank(user_id, query, policy):
            entry = scored.candidate
            results.append({
                "id": entry.get("id"),
                "title": entry.get("title"),
                "content": excerpt(entry.get("content"), policy.excerpt_chars, policy.ellipsis),
                "createdAt": format_timestamp(entry.get("created_at")),
                "mood": entry.get("mood"),
                "tags": entry.get("tags"),
                "similarity": scored.similarity,
            })
        return results

    def _context_results(self, ranked: List[ScoredCandidate], policy: RetrievalPolicy) -> List[Dict[str, Any]]:
        results = []
        for scored in ranked:
            entry = scored.candidate
            results.append({
                "id": entry.get("id"),
                "content": excerpt(entry.get("content"), policy.excerpt_chars, policy.ellipsis),
                "mood": entry.get("mood"),
                "tags": entry.get("tags"),
                "date": format_date(entry.get("created_at")),
                "similarity": scored.similarity,
            })
        return results

    def related_for_reflection(self, user_id: str, text: str, policy: RetrievalPolicy = REFLECT_POLICY) -> List[Dict[str, Any]]:
        """Past entries injected into the reflection prompt."""
        return self._context_results(self.rank(user_id, text, policy), policy)

    def related_for_coach(self, user_id: str, text: str, policy: RetrievalPolicy = COACH_POLICY) -> List[Dict[str, Any]]:
        """Past entries relevant to the coach conversation's last user message."""
        return self._context_results(self.rank(user_id, text, policy), policy)

    def find_related(
        self,
        user_id: str,
        text: str,
        limit: Optional[int] = None,
        policy: RetrievalPolicy = RELATED_POLICY,
    ) -> List[Dict[str, Any]]:
        """
        Generic discovery used by the agent tools. limit overrides the policy
        cap; mood and tags get display defaults.
        """
        if limit is not None:
            policy = policy.with_limit(limit)
        results = self._context_results(self.rank(user_id, text, policy), policy)
        for item in results:
            item["mood"] = item["mood"] or "unknown"
            item["tags"] = item["tags"] or []
        return results
