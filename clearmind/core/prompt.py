from typing import Any, Dict, List, Optional

from clearmind.core.retrieval import excerpt, format_date

MOOD_ANALYST_PROMPT = """You are a personal growth journal analyst. Analyze this journal entry from a university student or recent graduate. Return JSON only:
{
  "mood": "one word mood (e.g. excited, frustrated, focused, anxious, confident, neutral)",
  "tags": ["3-5 relevant tags like academics, career, relationships, wellness, personal growth"],
  "summary": "2-3 sentence summary of the key points",
  "encouragement": "A brief encouraging note specific to what they wrote about"
}"""

CLARITY_COACH_PROMPT = """You are a thoughtful personal growth coach. Based on this journal entry, provide a brief reflection and 3 clarifying questions to help the writer think deeper. Return JSON only:
{
  "reflection": "A 2-3 sentence thoughtful reflection on what they wrote",
  "questions": ["question 1", "question 2", "question 3"]
}"""

REFLECTOR_PROMPT = """You are a personal growth coach with access to the writer's journal history. Based on their current entry and related past entries, provide a reflection that connects patterns and tracks growth. Return JSON only:
{
  "reflection": "A thoughtful 3-4 sentence reflection connecting current entry to past patterns",
  "patterns": ["pattern 1 you noticed", "pattern 2"],
  "growth": "One specific area where you see growth compared to earlier entries"
}"""

RECAP_WRITER_PROMPT = """You are a personal growth coach. Summarize this person's week based on their journal entries. Return JSON only:
{
  "summary": "3-4 sentence overview of their week",
  "highlights": ["highlight 1", "highlight 2", "highlight 3"],
  "mood": "overall mood for the week",
  "focusAreas": ["what they focused on most"],
  "suggestion": "one thing to focus on next week"
}"""

GROWTH_ANALYST_PROMPT = """You are a personal growth analyst. Analyze all of this person's journal entries to identify long-term patterns. Return JSON only:
{
  "growthAreas": ["specific area where the person has grown over time"],
  "blindSpots": ["recurring theme or issue the person hasn't addressed"],
  "recurringThemes": ["theme that appears across many entries"],
  "suggestion": "one specific thing to journal about next based on the patterns you see"
}
Provide 2-3 items for each array. Be specific and reference actual patterns from their entries."""

COACH_PROMPT_TEMPLATE = """You are ClearMind Coach, an empathetic AI growth coach. You have access to this person's journal history.

{context}

Reference specific entries by date/topic when relevant. Be warm but direct. Ask follow-up questions. Notice patterns. Keep responses 2-4 paragraphs."""

WRITING_PROMPTS_TEMPLATE = """Generate 3 personalized journal prompts for a university student or recent graduate. Their recent topics: {tags}. Recent moods: {moods}. Recent summaries: {summaries}

Suggest prompts that explore areas NOT already covered. Return JSON only:
[
  {{ "text": "prompt question", "category": "one-word category" }},
  {{ "text": "prompt question", "category": "one-word category" }},
  {{ "text": "prompt question", "category": "one-word category" }}
]"""

TIME_CAPSULE_TEMPLATE = """Compare two periods of a person's journal. "Then" is from {days_ago} days ago, "Now" is the past week. Return JSON only:
{{
  "narrative": "3-5 sentence second-person growth story",
  "changes": ["specific change 1", "specific change 2", "specific change 3"],
  "constants": ["consistent thing 1", "consistent thing 2"],
  "moodShift": "how emotional patterns changed",
  "advice": "forward-looking suggestion"
}}"""

DEFAULT_WRITING_PROMPTS = [
    {"text": "What challenge are you working through right now?", "category": "Reflection"},
    {"text": "Describe a recent win, big or small.", "category": "Wins"},
    {"text": "What is one thing you want to focus on this week and why?", "category": "Goals"},
]


class PromptEngine:
    """Formats journal entries and retrieved context into prompt text."""

    def format_related_context(self, related: List[Dict[str, Any]], max_chars: int = 300) -> str:
        """
        Numbered list of related past entries appended to the user message,
        or "" when nothing was retrieved.
        """
        if not related:
            return ""
        lines = []
        for i, item in enumerate(related):
            mood = item.get("mood") or "unknown"
            text = excerpt(item.get("content"), max_chars)
            lines.append(f"[{i + 1}] ({item.get('date')}, mood: {mood}): {text}")
        return "\n\nRelated past entries:\n" + "\n".join(lines)

    def reflection_message(self, content: str, related: List[Dict[str, Any]]) -> str:
        return f"Current entry: {content}{self.format_related_context(related)}"

    def format_entry_lines(
        self,
        entries: List[Dict[str, Any]],
        with_mood: bool = False,
        with_tags: bool = False,
        max_chars: int = 200,
    ) -> str:
        """One line per entry: [date] optional mood/tags, then summary or excerpt."""
        lines = []
        for e in entries:
            text = e.get("summary") or excerpt(e.get("content"), max_chars)
            parts = [f"[{format_date(e.get('created_at'))}]"]
            if with_mood and with_tags:
                tags = ", ".join(e.get("tags") or [])
                parts.append(f"mood: {e.get('mood') or 'unknown'}, tags: {tags}, summary: {text}")
            elif with_mood:
                parts.append(f"mood: {e.get('mood') or 'unknown'} | {text}")
            else:
                parts.append(text)
            lines.append(" ".join(parts))
        return "\n".join(lines)

    def build_coach_context(
        self,
        recent_entries: List[Dict[str, Any]],
        relevant: Optional[List[Dict[str, Any]]] = None,
        recent_limit: int = 10,
    ) -> str:
        context = ""
        recent = recent_entries[:recent_limit]
        if recent:
            context += "Recent journal entries:\n"
            context += "\n".join(
                f"[{format_date(e.get('created_at'))}] mood: {e.get('mood') or 'unknown'} | {excerpt(e.get('content'), 200)}"
                for e in recent
            )
        if relevant:
            context += "\n\nSemantically relevant entries:\n"
            context += "\n".join(f"[{r.get('date')}] {r.get('content')}" for r in relevant)
        return context

    def coach_system_prompt(self, context: str) -> str:
        return COACH_PROMPT_TEMPLATE.format(context=context)

    def writing_prompts_system_prompt(self, tags: List[str], moods: List[str], summaries: List[str]) -> str:
        return WRITING_PROMPTS_TEMPLATE.format(
            tags=", ".join(tags),
            moods=", ".join(moods),
            summaries=" | ".join(summaries),
        )

    def time_capsule_system_prompt(self, days_ago: int) -> str:
        return TIME_CAPSULE_TEMPLATE.format(days_ago=days_ago)

    def time_capsule_message(self, days_ago: int, past: List[Dict[str, Any]], recent: List[Dict[str, Any]]) -> str:
        then_text = self.format_entry_lines(past, with_mood=True) or "No entries"
        now_text = self.format_entry_lines(recent, with_mood=True) or "No entries"
        return f"THEN ({days_ago} days ago):\n{then_text}\n\nNOW (this week):\n{now_text}"
