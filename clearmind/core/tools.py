# clearmind/core/tools.py
"""
Tools the agents can call to look into a user's journal.

Each tool takes a ToolContext (who is asking, where to look) and returns a
json-serializable dict, errors included, so results can go straight back to
the model as a tool message.
"""

import json
from dataclasses import dataclass, replace
from datetime import timedelta
from typing import Any, Callable, Dict, List, Optional

from clearmind.core.retrieval import RetrievalService, RetrievalPolicy, RELATED_POLICY, excerpt, format_date
from clearmind.storage.db import Database, utcnow
from clearmind.core.syslog2 import *

NO_USER_CONTEXT = {"error": "No user context available"}

SEARCH_TOOL_LIMIT = 5

ENTRY_SCOPES = ("recent", "week", "analyzed")


@dataclass
class ToolContext:
    user_id: Optional[str]
    db: Database
    retrieval: RetrievalService
    related_policy: RetrievalPolicy = RELATED_POLICY

    def search_policy(self) -> RetrievalPolicy:
        """search_entries shares the related floor and excerpt size, with its own name and cap"""
        return replace(self.related_policy, name="search_entries", limit=SEARCH_TOOL_LIMIT)


def _valid_limit(limit: Any) -> bool:
    return limit is None or (isinstance(limit, int) and not isinstance(limit, bool))


def _invalid_arguments(name: str, text_arg: str, text: Any, limit: Any) -> Optional[Dict[str, Any]]:
    """model-supplied arguments: a string to embed and an optional integer limit"""
    if not isinstance(text, str):
        return {"error": f"{name}: {text_arg} must be a string"}
    if not _valid_limit(limit):
        return {"error": f"{name}: limit must be an integer"}
    return None


def search_entries(ctx: ToolContext, query: str, limit: Optional[int] = None) -> Dict[str, Any]:
    """Searches the user's entries by meaning."""
    if not ctx.user_id:
        return dict(NO_USER_CONTEXT)
    error = _invalid_arguments("search_entries", "query", query, limit)
    if error:
        return error
    policy = ctx.search_policy()
    results = ctx.retrieval.find_related(ctx.user_id, query, limit=limit or policy.limit, policy=policy)
    for item in results:
        item.pop("id", None)
    return {"results": results, "count": len(results)}


def find_related(ctx: ToolContext, text: str, limit: Optional[int] = None) -> Dict[str, Any]:
    """Finds past entries connected to the given text."""
    if not ctx.user_id:
        return dict(NO_USER_CONTEXT)
    error = _invalid_arguments("find_related", "text", text, limit)
    if error:
        return error
    policy = ctx.related_policy
    related = ctx.retrieval.find_related(ctx.user_id, text, limit=limit or policy.limit, policy=policy)
    for item in related:
        item.pop("id", None)
    return {"related": related, "count": len(related)}


def get_entries(ctx: ToolContext, scope: str = "recent", limit: Optional[int] = None) -> Dict[str, Any]:
    """Fetches recent, this week's or analyzed entries."""
    if not ctx.user_id:
        return dict(NO_USER_CONTEXT)
    if not isinstance(scope, str) or scope not in ENTRY_SCOPES:
        return {"error": f"Unknown scope: {scope}"}
    if not _valid_limit(limit):
        return {"error": "get_entries: limit must be an integer"}

    max_results = limit or 10
    if scope == "week":
        now = utcnow()
        entries = ctx.db.get_entries_in_date_range(ctx.user_id, now - timedelta(days=7), now)
    elif scope == "analyzed":
        entries = ctx.db.get_analyzed_entries(ctx.user_id)
    else:
        entries = ctx.db.get_entries(ctx.user_id)

    results = [
        {
            "date": format_date(e.get("created_at")),
            "title": e.get("title") or "Untitled",
            "mood": e.get("mood") or "unknown",
            "tags": e.get("tags") or [],
            "summary": e.get("summary") or excerpt(e.get("content"), 200),
            "content": excerpt(e.get("content"), 300),
        }
        for e in entries[:max_results]
    ]
    return {"entries": results, "count": len(results), "total": len(entries)}


TOOLS: Dict[str, Callable[..., Dict[str, Any]]] = {
    "search_entries": search_entries,
    "find_related": find_related,
    "get_entries": get_entries,
}

# OpenAI function-calling declarations
TOOL_SPECS: List[Dict[str, Any]] = [
    {
        "type": "function",
        "function": {
            "name": "search_entries",
            "description": "Searches the user's journal entries by meaning using semantic similarity. "
                           "Returns the most relevant entries with their content, mood, tags, and similarity scores.",
            "parameters": {
                "type": "object",
                "properties": {
                    "query": {"type": "string", "description": "The search query to find semantically similar entries"},
                    "limit": {"type": "integer", "description": "Maximum number of results to return (default 5)"},
                },
                "required": ["query"],
            },
        },
    },
    {
        "type": "function",
        "function": {
            "name": "find_related",
            "description": "Finds journal entries that are semantically related to the given text.",
            "parameters": {
                "type": "object",
                "properties": {
                    "text": {"type": "string", "description": "The text to find related entries for"},
                    "limit": {"type": "integer", "description": "Maximum number of related entries (default 5)"},
                },
                "required": ["text"],
            },
        },
    },
    {
        "type": "function",
        "function": {
            "name": "get_entries",
            "description": "Fetches journal entries from the user's history: recent entries, entries from "
                           "the past week, or only analyzed entries with mood and tags.",
            "parameters": {
                "type": "object",
                "properties": {
                    "scope": {"type": "string", "enum": list(ENTRY_SCOPES)},
                    "limit": {"type": "integer", "description": "Maximum number of entries to return (default 10)"},
                },
                "required": ["scope"],
            },
        },
    },
]


def run_tool(ctx: ToolContext, name: str, arguments: Any) -> Dict[str, Any]:
    """
    Dispatch a tool call by name. arguments may be a dict or the raw json
    string a model sends; bad arguments come back as an error payload.
    """
    tool = TOOLS.get(name)
    if tool is None:
        return {"error": f"Unknown tool: {name}"}

    if isinstance(arguments, str):
        try:
            arguments = json.loads(arguments or "{}")
        except (ValueError, RecursionError):
            return {"error": "Tool arguments are not valid JSON"}
    if not isinstance(arguments, dict):
        return {"error": "Tool arguments must be an object"}

    try:
        result = tool(ctx, **arguments)
    except TypeError as e:
        syslog2(LOG_WARNING, "tool call rejected", tool=name, error=str(e))
        return {"error": f"Invalid arguments for {name}"}

    syslog2(LOG_DEBUG, "tool call", tool=name, user_id=ctx.user_id, count=result.get("count"))
    return result
