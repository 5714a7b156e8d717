from openai import OpenAI
from typing import List, Dict, Optional, Iterator, Protocol
import os
import tiktoken
from clearmind.core.syslog2 import *

DEFAULT_MODEL = "llama-3.1-8b-instant"
DEFAULT_BASE_URL = "https://api.groq.com/openai/v1"


class CompletionClient(Protocol):
    """Text completion service consumed by the agent layer."""

    def count_tokens(self, messages: List[Dict[str, str]]) -> int:
        ...

    def complete(self, messages: List[Dict[str, str]], temperature: float = 0.3, max_tokens: int = 1024) -> str:
        ...

    def stream_complete(self, messages: List[Dict[str, str]], temperature: float = 0.3, max_tokens: int = 1024) -> Iterator[str]:
        ...


class LLMClient:
    """Client for OpenAI-compatible chat completion APIs (Groq by default)."""

    def __init__(self, model: str = DEFAULT_MODEL, api_key: Optional[str] = None, base_url: Optional[str] = None):
        """
        Initialize the LLM client.

        Args:
            model: Model name (e.g., "llama-3.1-8b-instant").
            api_key: Explicit key, e.g. the user's own key. Falls back to
                GROQ_API_KEY, then OPENAI_API_KEY.
            base_url: API base url. Falls back to GROQ_BASE_URL, OPENAI_BASE_URL.
        """
        self.api_key = api_key or os.getenv("GROQ_API_KEY") or os.getenv("OPENAI_API_KEY")
        if not self.api_key:
            raise ValueError("GROQ_API_KEY or OPENAI_API_KEY environment variable not set")

        self.base_url = base_url or os.getenv("GROQ_BASE_URL") or os.getenv("OPENAI_BASE_URL") or DEFAULT_BASE_URL
        self.model = model

        self.client = OpenAI(
            base_url=self.base_url,
            api_key=self.api_key,
        )

        try:
            self.encoding = tiktoken.encoding_for_model(model.split('/')[-1])
        except KeyError:
            # non-openai models: cl100k_base is close enough for budgeting
            self.encoding = tiktoken.get_encoding("cl100k_base")

    @property
    def model_name(self) -> str:
        return self.model

    def count_tokens(self, messages: List[Dict[str, str]]) -> int:
        """
        Count the number of tokens in a list of messages.

        Args:
            messages: List of message dictionaries (role, content).

        Returns:
            Total number of tokens.
        """
        num_tokens = 0
        for message in messages:
            num_tokens += 4  # message overhead
            for value in message.values():
                num_tokens += len(self.encoding.encode(str(value)))
        num_tokens += 2  # every reply is primed with <|start|>assistant
        return num_tokens

    def complete(self, messages: List[Dict[str, str]], temperature: float = 0.3, max_tokens: int = 1024) -> str:
        """
        Generates a completion for the given messages.

        Args:
            messages: List of message dictionaries (role, content).
            temperature: Sampling temperature.
            max_tokens: Maximum tokens to generate.

        Returns:
            The generated text response ("" when the model returned nothing).
        """
        syslog2(LOG_DEBUG, "llm request", model=self.model, messages=len(messages), temperature=temperature)

        response = self.client.chat.completions.create(
            model=self.model,
            messages=messages,  # type: ignore
            temperature=temperature,
            max_tokens=max_tokens,
        )

        content = response.choices[0].message.content
        if not content:
            finish_reason = response.choices[0].finish_reason
            syslog2(LOG_WARNING, "llm returned empty content", model=self.model, finish_reason=finish_reason)
            return ""

        syslog2(LOG_DEBUG, "llm response", model=self.model, chars=len(content))
        return content

    def stream_complete(self, messages: List[Dict[str, str]], temperature: float = 0.3, max_tokens: int = 1024) -> Iterator[str]:
        """
        Stream a completion from the LLM.

        Yields:
            Chunks of generated text.
        """
        syslog2(LOG_DEBUG, "llm stream request", model=self.model, messages=len(messages))
        stream = self.client.chat.completions.create(
            model=self.model,
            messages=messages,  # type: ignore
            temperature=temperature,
            max_tokens=max_tokens,
            stream=True,
        )
        for chunk in stream:
            if not chunk.choices:
                continue
            token = chunk.choices[0].delta.content
            if token:
                yield token


class LLMClientFactory:
    """Builds a client per request so each user can bring their own key."""

    def __init__(self, model: str = DEFAULT_MODEL, base_url: Optional[str] = None):
        self.model = model
        self.base_url = base_url

    def __call__(self, api_key: Optional[str] = None) -> LLMClient:
        return LLMClient(model=self.model, api_key=api_key, base_url=self.base_url)
