"""
ClearMind HTTP API.

- Journal entry CRUD with embeddings kept in step with content
- Semantic search and related-entry discovery
- AI features (analysis, clarity, reflection, recap, insights, coach)
- Server-sent event streaming for the long-running AI features

User identity comes from the auth layer in front of this service through the
X-User-Id header.
"""

import json
from typing import Any, Dict, Iterator, List, Optional

import uvicorn
from fastapi import Body, Depends, FastAPI, Header, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel, field_validator

from clearmind.app.config import AppConfig, get_db_url
from clearmind.core.agents import JournalAgents, AgentResponseError, MissingAPIKeyError, StreamEvent
from clearmind.core.embedding import TrigramEmbeddingClient
from clearmind.core.entries import EntryService
from clearmind.core.llm import LLMClientFactory
from clearmind.core.retrieval import RetrievalService, RetrievalError
from clearmind.storage.db import Database
from clearmind.core.syslog2 import *


# ============================================================================
# Request models
# ============================================================================

class EntryRequest(BaseModel):
    content: Optional[str] = None
    title: Optional[str] = None


class ContentRequest(BaseModel):
    content: Optional[str] = None


class AnalyzeRequest(BaseModel):
    content: Optional[str] = None
    entryId: Optional[str] = None


class SearchRequest(BaseModel):
    query: Optional[str] = None


class RelatedRequest(BaseModel):
    text: Optional[str] = None
    limit: Optional[int] = None

    @field_validator('limit')
    @classmethod
    def limit_must_be_positive(cls, v):
        if v is not None and v < 1:
            raise ValueError('limit must be a positive integer')
        return v


class ChatMessage(BaseModel):
    role: str
    content: str = ""

    @field_validator('role')
    @classmethod
    def role_must_be_valid(cls, v):
        if v not in ('user', 'assistant'):
            raise ValueError('role must be user or assistant')
        return v


class CoachRequest(BaseModel):
    messages: Optional[List[ChatMessage]] = None


class TimeCapsuleRequest(BaseModel):
    daysAgo: Optional[int] = None


class ApiKeyRequest(BaseModel):
    apiKey: Optional[str] = None


# ============================================================================
# Helpers
# ============================================================================

def error_response(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


def sse_format(event: StreamEvent) -> str:
    if event.kind == "token":
        payload = json.dumps({"token": event.data})
    elif event.kind == "error":
        payload = json.dumps({"error": event.data})
    elif event.kind == "done":
        payload = "[DONE]"
    else:
        payload = json.dumps(event.data)
    return f"data: {payload}\n\n"


def sse_response(events: Iterator[StreamEvent]) -> StreamingResponse:
    return StreamingResponse(
        (sse_format(event) for event in events),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "Connection": "keep-alive"},
    )


def require_text(value: Optional[str], message: str) -> str:
    if not value or not value.strip():
        raise ValueError(message)
    return value


# ============================================================================
# Application factory
# ============================================================================

def create_app(
    db: Optional[Database] = None,
    llm_factory=None,
    config: Optional[AppConfig] = None,
) -> FastAPI:
    """
    Build the API around the given collaborators.

    Args:
        db: storage (default: DATABASE_URL or sqlite:///clearmind.db)
        llm_factory: callable api_key -> completion client
            (default: LLMClientFactory for the configured model)
        config: AppConfig (default: config dir from CLEARMIND_CONFIG_DIR)
    """
    config = config or AppConfig()
    db = db or Database(get_db_url())
    llm_factory = llm_factory or LLMClientFactory(model=config.llm_model)

    embedding_client = TrigramEmbeddingClient()
    entries = EntryService(db, embedding_client)
    retrieval = RetrievalService(db, embedding_client)
    agents = JournalAgents(db, retrieval, llm_factory, config)

    app = FastAPI(title="ClearMind", version="0.3.0")
    app.state.db = db
    app.state.config = config
    app.state.entries = entries
    app.state.retrieval = retrieval
    app.state.agents = agents

    # ------------------------------------------------------------------
    # error mapping
    # ------------------------------------------------------------------

    @app.exception_handler(HTTPException)
    async def http_error_handler(request: Request, exc: HTTPException):
        return error_response(exc.status_code, str(exc.detail))

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        errors = exc.errors()
        message = errors[0].get("msg", "Invalid request") if errors else "Invalid request"
        syslog2(LOG_WARNING, "request validation failed", path=request.url.path, error=message)
        return error_response(400, message)

    @app.exception_handler(ValueError)
    async def value_error_handler(request: Request, exc: ValueError):
        syslog2(LOG_WARNING, "bad request", path=request.url.path, error=str(exc))
        return error_response(400, str(exc))

    @app.exception_handler(MissingAPIKeyError)
    async def missing_key_handler(request: Request, exc: MissingAPIKeyError):
        return error_response(400, str(exc))

    @app.exception_handler(AgentResponseError)
    async def agent_error_handler(request: Request, exc: AgentResponseError):
        syslog2(LOG_ERR, "agent response error", path=request.url.path, error=str(exc))
        return error_response(500, str(exc))

    @app.exception_handler(RetrievalError)
    async def retrieval_error_handler(request: Request, exc: RetrievalError):
        syslog2(LOG_ERR, "retrieval failed", path=request.url.path, error=str(exc))
        return error_response(500, "Server error")

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        syslog2(LOG_ERR, "unhandled exception", path=request.url.path, error=str(exc), type=type(exc).__name__)
        return error_response(500, "Server error")

    # ------------------------------------------------------------------
    # identity
    # ------------------------------------------------------------------

    def current_user(x_user_id: Optional[str] = Header(None)) -> str:
        if not x_user_id or not x_user_id.strip():
            raise HTTPException(status_code=401, detail="Not authenticated")
        user_id = x_user_id.strip()
        db.ensure_user(user_id)
        return user_id

    @app.get("/health")
    def health_check():
        """Health check endpoint for monitoring."""
        return {"status": "ok"}

    # ------------------------------------------------------------------
    # entries
    # ------------------------------------------------------------------

    @app.post("/api/entries")
    def create_entry(req: EntryRequest, user_id: str = Depends(current_user)):
        return {"entry": entries.create(user_id, req.content, req.title)}

    @app.get("/api/entries")
    def list_entries(user_id: str = Depends(current_user)):
        return {"entries": entries.list(user_id)}

    @app.get("/api/entries/{entry_id}")
    def get_entry(entry_id: str, user_id: str = Depends(current_user)):
        entry = entries.get(user_id, entry_id)
        if not entry:
            raise HTTPException(status_code=404, detail="Entry not found")
        return {"entry": entry}

    @app.put("/api/entries/{entry_id}")
    def update_entry(entry_id: str, req: EntryRequest, user_id: str = Depends(current_user)):
        entry = entries.update(user_id, entry_id, content=req.content, title=req.title)
        if not entry:
            raise HTTPException(status_code=404, detail="Entry not found")
        return {"entry": entry}

    @app.delete("/api/entries/{entry_id}")
    def delete_entry(entry_id: str, user_id: str = Depends(current_user)):
        if not entries.delete(user_id, entry_id):
            raise HTTPException(status_code=404, detail="Entry not found")
        return {"success": True}

    # ------------------------------------------------------------------
    # retrieval
    # ------------------------------------------------------------------

    @app.post("/api/search")
    def search(req: SearchRequest, user_id: str = Depends(current_user)):
        query = require_text(req.query, "Query is required")
        return {"results": retrieval.search(user_id, query, config.search_policy())}

    @app.post("/api/related")
    def related(req: RelatedRequest, user_id: str = Depends(current_user)):
        text = require_text(req.text, "Text is required")
        results = retrieval.find_related(user_id, text, limit=req.limit, policy=config.related_policy())
        return {"related": results, "count": len(results)}

    @app.post("/api/tools/{name}")
    def call_tool(name: str, arguments: Optional[Dict[str, Any]] = Body(None), user_id: str = Depends(current_user)):
        result = agents.run_tool(user_id, name, arguments or {})
        if "error" in result:
            return error_response(400, result["error"])
        return result

    # ------------------------------------------------------------------
    # ai features
    # ------------------------------------------------------------------

    @app.post("/api/analyze")
    def analyze(req: AnalyzeRequest, user_id: str = Depends(current_user)):
        return {"analysis": agents.analyze(user_id, req.content, entry_id=req.entryId)}

    @app.post("/api/clarity")
    def clarity(req: ContentRequest, user_id: str = Depends(current_user)):
        return {"clarity": agents.clarity(user_id, req.content)}

    @app.post("/api/reflect")
    def reflect(req: ContentRequest, user_id: str = Depends(current_user)):
        reflection, related_count = agents.reflect(user_id, req.content)
        return {"reflection": reflection, "relatedEntries": related_count}

    @app.get("/api/recap")
    def recap(user_id: str = Depends(current_user)):
        result, entry_count = agents.recap(user_id)
        return {"recap": result, "entryCount": entry_count}

    @app.get("/api/insights/mood-trends")
    def mood_trends(user_id: str = Depends(current_user)):
        return agents.mood_trends(user_id)

    @app.post("/api/insights/growth-patterns")
    def growth_patterns(user_id: str = Depends(current_user)):
        return {"patterns": agents.growth_patterns(user_id)}

    @app.post("/api/coach")
    def coach(req: CoachRequest, user_id: str = Depends(current_user)):
        messages = [m.model_dump() for m in req.messages or []]
        return {"response": agents.coach(user_id, messages)}

    @app.get("/api/prompts")
    def writing_prompts(user_id: str = Depends(current_user)):
        return {"prompts": agents.writing_prompts(user_id)}

    @app.post("/api/time-capsule")
    def time_capsule(req: TimeCapsuleRequest, user_id: str = Depends(current_user)):
        return agents.time_capsule(user_id, req.daysAgo)

    # ------------------------------------------------------------------
    # streaming
    # ------------------------------------------------------------------

    @app.post("/api/stream/analyze")
    def stream_analyze(req: AnalyzeRequest, user_id: str = Depends(current_user)):
        return sse_response(agents.stream_analyze(user_id, req.content, entry_id=req.entryId))

    @app.post("/api/stream/clarity")
    def stream_clarity(req: ContentRequest, user_id: str = Depends(current_user)):
        return sse_response(agents.stream_clarity(user_id, req.content))

    @app.post("/api/stream/reflect")
    def stream_reflect(req: ContentRequest, user_id: str = Depends(current_user)):
        return sse_response(agents.stream_reflect(user_id, req.content))

    @app.post("/api/stream/coach")
    def stream_coach(req: CoachRequest, user_id: str = Depends(current_user)):
        messages = [m.model_dump() for m in req.messages or []]
        return sse_response(agents.stream_coach(user_id, messages))

    # ------------------------------------------------------------------
    # settings and status
    # ------------------------------------------------------------------

    @app.post("/api/settings/api-key")
    def save_api_key(req: ApiKeyRequest, user_id: str = Depends(current_user)):
        agents.set_api_key(user_id, req.apiKey)
        return {"success": True}

    @app.get("/api/settings/has-key")
    def has_api_key(user_id: str = Depends(current_user)):
        return {"hasKey": agents.has_api_key(user_id)}

    @app.get("/api/agents")
    def agent_status():
        return agents.agent_status()

    return app


def run_server(host: str = "127.0.0.1", port: int = 8000, log_level: int = LOG_WARNING):
    """
    Run the API server in the foreground.

    Args:
        host: Host to bind
        port: Port to bind
        log_level: syslog level 1..7, mapped onto uvicorn's level names
    """
    app = create_app()
    syslog2(LOG_NOTICE, "server starting", host=host, port=port, entries=app.state.db.count_entries())
    uvicorn.run(
        app,
        host=host,
        port=port,
        log_level=uvicorn_log_level(log_level),
        access_log=log_level >= LOG_INFO,
    )
