from collections import Counter
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple
import os

from clearmind.core.llm import CompletionClient
from clearmind.core.json_recovery import safe_parse_json, parse_json_object
from clearmind.core.prompt import (
    PromptEngine,
    MOOD_ANALYST_PROMPT,
    CLARITY_COACH_PROMPT,
    REFLECTOR_PROMPT,
    RECAP_WRITER_PROMPT,
    GROWTH_ANALYST_PROMPT,
    DEFAULT_WRITING_PROMPTS,
)
from clearmind.core.retrieval import RetrievalService, format_timestamp, excerpt
from clearmind.core.tools import ToolContext, run_tool
from clearmind.storage.db import Database, utcnow
from clearmind.core.syslog2 import *

EMPTY_RECAP = {
    "summary": "No entries this week. Start journaling to get your weekly recap!",
    "highlights": [],
    "mood": "N/A",
}

NOT_ENOUGH_PATTERNS = {
    "growthAreas": ["Not enough analyzed entries yet. Analyze more journal entries to detect growth patterns."],
    "blindSpots": [],
    "recurringThemes": [],
    "suggestion": "Write and analyze at least 3-5 entries to start seeing patterns.",
}

AGENTS = [
    {"name": "mood_analyst", "label": "Mood Analyst", "description": "Detects mood, tags, summary"},
    {"name": "clarity_coach", "label": "Clarity Coach", "description": "Reflection + questions"},
    {"name": "reflector", "label": "Reflector", "description": "RAG-powered pattern detection"},
    {"name": "recap_writer", "label": "Recap Writer", "description": "Weekly recap generation"},
    {"name": "growth_analyst", "label": "Growth Analyst", "description": "Long-term growth analysis"},
    {"name": "coach", "label": "Coach", "description": "Interactive coaching"},
]

CHAT_ROLES = ("user", "assistant")
WEEK = timedelta(days=7)


class AgentError(Exception):
    """Base class for agent failures the HTTP layer reports to the user."""


class AgentResponseError(AgentError):
    """The completion could not be turned into the expected JSON."""


class MissingAPIKeyError(AgentError):
    """Neither the user nor the environment provides a completion service key."""


@dataclass
class StreamEvent:
    """
    One server-sent event.

    kind is "token" (data: str), "json" (data: dict), "error" (data: str)
    or "done" (data: None).
    """
    kind: str
    data: Any = None


class JournalAgents:
    """AI features over one user's journal: analysis, reflection, recaps and coaching."""

    def __init__(
        self,
        store: Database,
        retrieval: RetrievalService,
        llm_factory: Callable[[Optional[str]], CompletionClient],
        config=None,
    ):
        """
        Args:
            store: persistence collaborator
            retrieval: semantic retrieval over the same store
            llm_factory: builds a completion client from a user's api key
                (None means fall back to the environment)
            config: AppConfig with thresholds and limits
        """
        if config is None:
            from clearmind.app.config import AppConfig
            config = AppConfig()

        self.store = store
        self.retrieval = retrieval
        self.llm_factory = llm_factory
        self.config = config
        self.prompt_engine = PromptEngine()

    # ------------------------------------------------------------------
    # plumbing
    # ------------------------------------------------------------------

    def _client(self, user_id: str) -> CompletionClient:
        api_key = self.store.get_user_api_key(user_id)
        try:
            return self.llm_factory(api_key)
        except ValueError as e:
            syslog2(LOG_WARNING, "no completion api key", user_id=user_id, error=str(e))
            raise MissingAPIKeyError("No API key configured. Add your Groq API key in settings.") from e

    def _complete_json(
        self,
        user_id: str,
        agent: str,
        messages: List[Dict[str, str]],
        error_message: str,
        parse: Callable[[Any], Any] = safe_parse_json,
        **kwargs,
    ) -> Any:
        client = self._client(user_id)
        response = client.complete(messages, **kwargs)
        parsed = parse(response)
        if parsed is None:
            syslog2(LOG_ERR, "unparseable agent response", agent=agent, user_id=user_id, chars=len(response or ""))
            raise AgentResponseError(error_message)
        syslog2(LOG_INFO, "agent finished", agent=agent, user_id=user_id)
        return parsed

    def _stream(
        self,
        agent: str,
        client: CompletionClient,
        messages: List[Dict[str, str]],
        finish: Callable[[str], Optional[Dict[str, Any]]],
        **kwargs,
    ) -> Iterator[StreamEvent]:
        """
        Relay tokens, then hand the full text to finish() for the final json
        event. A failure while streaming or in finish() ends with an error event
        and no done event.
        """
        full = ""
        try:
            for token in client.stream_complete(messages, **kwargs):
                full += token
                yield StreamEvent("token", token)
            payload = finish(full)
        except Exception as e:
            syslog2(LOG_ERR, "agent stream failed", agent=agent, error=str(e))
            yield StreamEvent("error", "Stream failed")
            return

        if payload is not None:
            yield StreamEvent("json", payload)
        yield StreamEvent("done")

    @staticmethod
    def _require_content(content: Optional[str]) -> str:
        if not content or not content.strip():
            raise ValueError("Content is required")
        return content

    # ------------------------------------------------------------------
    # entry analysis
    # ------------------------------------------------------------------

    def _save_analysis(self, user_id: str, entry_id: Optional[str], analysis: Any) -> None:
        if not entry_id or not isinstance(analysis, dict):
            return
        tags = analysis.get("tags")
        saved = self.store.update_entry_analysis(
            user_id,
            entry_id,
            mood=analysis.get("mood"),
            tags=tags if isinstance(tags, list) else None,
            summary=analysis.get("summary"),
            encouragement=analysis.get("encouragement"),
        )
        if saved is None:
            syslog2(LOG_WARNING, "analysis not saved, entry not found", user_id=user_id, entry_id=entry_id)

    def _analyze_messages(self, content: str) -> List[Dict[str, str]]:
        return [
            {"role": "system", "content": MOOD_ANALYST_PROMPT},
            {"role": "user", "content": content},
        ]

    def analyze(self, user_id: str, content: str, entry_id: Optional[str] = None) -> Dict[str, Any]:
        """
        Mood, tags, summary and encouragement for one entry. With entry_id the
        analysis is stored on that entry.
        """
        content = self._require_content(content)
        analysis = self._complete_json(user_id, "mood_analyst", self._analyze_messages(content), "Failed to parse analysis")
        self._save_analysis(user_id, entry_id, analysis)
        return analysis

    def stream_analyze(self, user_id: str, content: str, entry_id: Optional[str] = None) -> Iterator[StreamEvent]:
        content = self._require_content(content)
        client = self._client(user_id)

        def finish(full: str) -> Optional[Dict[str, Any]]:
            analysis = safe_parse_json(full)
            if analysis is None:
                return None
            self._save_analysis(user_id, entry_id, analysis)
            return {"parsed": analysis}

        return self._stream("mood_analyst", client, self._analyze_messages(content), finish)

    def _clarity_messages(self, content: str) -> List[Dict[str, str]]:
        return [
            {"role": "system", "content": CLARITY_COACH_PROMPT},
            {"role": "user", "content": content},
        ]

    def clarity(self, user_id: str, content: str) -> Dict[str, Any]:
        content = self._require_content(content)
        return self._complete_json(user_id, "clarity_coach", self._clarity_messages(content), "Failed to parse clarity response")

    def stream_clarity(self, user_id: str, content: str) -> Iterator[StreamEvent]:
        content = self._require_content(content)
        client = self._client(user_id)

        def finish(full: str) -> Optional[Dict[str, Any]]:
            clarity = safe_parse_json(full)
            return {"parsed": clarity} if clarity is not None else None

        return self._stream("clarity_coach", client, self._clarity_messages(content), finish)

    def _reflect_messages(self, user_id: str, content: str) -> Tuple[List[Dict[str, str]], int]:
        related = self.retrieval.related_for_reflection(user_id, content, self.config.reflect_policy())
        messages = [
            {"role": "system", "content": REFLECTOR_PROMPT},
            {"role": "user", "content": self.prompt_engine.reflection_message(content, related)},
        ]
        return messages, len(related)

    def reflect(self, user_id: str, content: str) -> Tuple[Dict[str, Any], int]:
        """
        Reflection that ties the entry to related past entries.

        Returns:
            (reflection, number of related entries used as context)
        """
        content = self._require_content(content)
        messages, related_count = self._reflect_messages(user_id, content)
        reflection = self._complete_json(user_id, "reflector", messages, "Failed to parse reflection", temperature=0.5)
        return reflection, related_count

    def stream_reflect(self, user_id: str, content: str) -> Iterator[StreamEvent]:
        content = self._require_content(content)
        messages, related_count = self._reflect_messages(user_id, content)
        client = self._client(user_id)

        def finish(full: str) -> Optional[Dict[str, Any]]:
            reflection = safe_parse_json(full)
            if reflection is None:
                return None
            return {"parsed": reflection, "relatedEntries": related_count}

        return self._stream("reflector", client, messages, finish, temperature=0.5)

    # ------------------------------------------------------------------
    # insights
    # ------------------------------------------------------------------

    def recap(self, user_id: str, days: Optional[int] = None) -> Tuple[Dict[str, Any], int]:
        days = days or self.config.recap_days
        now = utcnow()
        entries = self.store.get_entries_in_date_range(user_id, now - timedelta(days=days), now)
        if not entries:
            return dict(EMPTY_RECAP), 0

        messages = [
            {"role": "system", "content": RECAP_WRITER_PROMPT},
            {"role": "user", "content": "This week's entries:\n" + self.prompt_engine.format_entry_lines(entries)},
        ]
        recap = self._complete_json(user_id, "recap_writer", messages, "Failed to generate recap", temperature=0.5)
        return recap, len(entries)

    def mood_trends(self, user_id: str) -> Dict[str, Any]:
        """Mood timeline (oldest first) and frequency over analyzed entries. No completion call."""
        with_mood = [e for e in self.store.get_entries(user_id) if e.get("mood")]
        with_mood.sort(key=lambda e: e["created_at"])

        timeline = [{"date": format_timestamp(e["created_at"]), "mood": e["mood"]} for e in with_mood]
        frequency = Counter(e["mood"].lower() for e in with_mood)
        return {"timeline": timeline, "frequency": dict(frequency), "total": len(timeline)}

    def growth_patterns(self, user_id: str) -> Dict[str, Any]:
        analyzed = self.store.get_analyzed_entries(user_id)
        if len(analyzed) < 2:
            return dict(NOT_ENOUGH_PATTERNS)

        context = self.prompt_engine.format_entry_lines(analyzed, with_mood=True, with_tags=True)
        messages = [
            {"role": "system", "content": GROWTH_ANALYST_PROMPT},
            {"role": "user", "content": f"All journal entries:\n{context}"},
        ]
        return self._complete_json(
            user_id, "growth_analyst", messages, "Failed to parse growth patterns",
            temperature=0.7, max_tokens=1024,
        )

    # ------------------------------------------------------------------
    # coach
    # ------------------------------------------------------------------

    def _validate_chat(self, messages: Any) -> List[Dict[str, str]]:
        if not isinstance(messages, list) or not messages:
            raise ValueError("Messages array is required")
        chat = []
        for message in messages:
            if not isinstance(message, dict) or message.get("role") not in CHAT_ROLES:
                raise ValueError("Each message needs a role of user or assistant")
            chat.append({"role": message["role"], "content": str(message.get("content") or "")})
        return chat

    def _coach_messages(self, user_id: str, messages: Any, client: CompletionClient) -> List[Dict[str, str]]:
        chat = self._validate_chat(messages)

        last_user = next((m["content"] for m in reversed(chat) if m["role"] == "user"), None)
        relevant = self.retrieval.related_for_coach(user_id, last_user, self.config.coach_policy()) if last_user else []
        context = self.prompt_engine.build_coach_context(self.store.get_entries(user_id), relevant)

        system = {"role": "system", "content": self.prompt_engine.coach_system_prompt(context)}
        history = chat[-self.config.coach_history_limit:]

        # oldest turns go first when over budget, the latest message always stays
        while len(history) > 1 and client.count_tokens([system] + history) > self.config.max_context_tokens:
            history = history[1:]

        syslog2(LOG_DEBUG, "coach prompt built", user_id=user_id, history=len(history), relevant=len(relevant))
        return [system] + history

    def coach(self, user_id: str, messages: List[Dict[str, str]]) -> str:
        client = self._client(user_id)
        prompt = self._coach_messages(user_id, messages, client)
        response = client.complete(prompt, temperature=0.7, max_tokens=1024)
        syslog2(LOG_INFO, "agent finished", agent="coach", user_id=user_id)
        return response

    def stream_coach(self, user_id: str, messages: List[Dict[str, str]]) -> Iterator[StreamEvent]:
        client = self._client(user_id)
        prompt = self._coach_messages(user_id, messages, client)
        return self._stream("coach", client, prompt, lambda full: {"response": full}, temperature=0.7, max_tokens=1024)

    # ------------------------------------------------------------------
    # prompts and time capsule
    # ------------------------------------------------------------------

    def writing_prompts(self, user_id: str) -> List[Dict[str, Any]]:
        """Three journal prompts steered away from recent topics."""
        recent = self.store.get_entries(user_id)[:15]
        if not recent:
            return [dict(p) for p in DEFAULT_WRITING_PROMPTS]

        tag_counts: Counter = Counter()
        moods = []
        summaries = []
        for e in recent:
            tag_counts.update(e.get("tags") or [])
            if e.get("mood"):
                moods.append(e["mood"])
            summaries.append(e.get("summary") or excerpt(e.get("content"), 150))

        system_prompt = self.prompt_engine.writing_prompts_system_prompt(
            [tag for tag, _ in tag_counts.most_common(5)],
            moods[:5],
            summaries[:5],
        )
        client = self._client(user_id)
        response = client.complete(
            [{"role": "system", "content": system_prompt}, {"role": "user", "content": "Generate prompts"}],
            temperature=0.8,
            max_tokens=512,
        )
        parsed = safe_parse_json(response)
        if not isinstance(parsed, list):
            syslog2(LOG_WARNING, "writing prompts fell back to defaults", user_id=user_id)
            return [dict(p) for p in DEFAULT_WRITING_PROMPTS]
        return parsed[:3]

    def time_capsule(self, user_id: str, days_ago: int) -> Dict[str, Any]:
        """
        Compares the week centred days_ago days back with the past week.

        Raises:
            ValueError: days_ago is not a positive integer
        """
        if isinstance(days_ago, bool) or not isinstance(days_ago, int) or days_ago <= 0:
            raise ValueError("daysAgo is required and must be > 0")

        now = utcnow()
        recent = self.store.get_entries_in_date_range(user_id, now - WEEK, now)
        center = now - timedelta(days=days_ago)
        past = self.store.get_entries_in_date_range(user_id, center - WEEK / 2, center + WEEK / 2)

        periods = {
            "then": {"period": f"{days_ago} days ago", "entries": len(past)},
            "now": {"period": "This week", "entries": len(recent)},
        }
        if not recent and not past:
            return {
                "empty": True,
                "narrative": "Not enough entries to compare yet. Keep journaling and check back!",
                **periods,
            }

        messages = [
            {"role": "system", "content": self.prompt_engine.time_capsule_system_prompt(days_ago)},
            {"role": "user", "content": self.prompt_engine.time_capsule_message(days_ago, past, recent)},
        ]
        capsule = self._complete_json(
            user_id, "time_capsule", messages, "Failed to parse time capsule",
            parse=parse_json_object, temperature=0.6, max_tokens=1024,
        )
        return {**capsule, **periods}

    # ------------------------------------------------------------------
    # settings, tools, status
    # ------------------------------------------------------------------

    def set_api_key(self, user_id: str, api_key: Optional[str]) -> None:
        if not api_key or not api_key.strip():
            raise ValueError("API key is required")
        self.store.set_user_api_key(user_id, api_key.strip())
        syslog2(LOG_INFO, "user api key saved", user_id=user_id)

    def has_api_key(self, user_id: str) -> bool:
        return bool(self.store.get_user_api_key(user_id) or os.getenv("GROQ_API_KEY") or os.getenv("OPENAI_API_KEY"))

    def run_tool(self, user_id: Optional[str], name: str, arguments: Any) -> Dict[str, Any]:
        ctx = ToolContext(
            user_id=user_id,
            db=self.store,
            retrieval=self.retrieval,
            related_policy=self.config.related_policy(),
        )
        return run_tool(ctx, name, arguments)

    def agent_status(self) -> Dict[str, Any]:
        return {
            "provider": "groq",
            "model": self.config.llm_model,
            "agents": [dict(a) for a in AGENTS],
            "tools": ["search_entries", "find_related", "get_entries"],
        }
