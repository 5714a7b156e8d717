"""
Pytest configuration and fixtures.
"""
import pytest
import tempfile
import shutil
from pathlib import Path
from unittest.mock import patch

from clearmind.app.config import AppConfig
from clearmind.core.embedding import TrigramEmbeddingClient
from clearmind.core.entries import EntryService
from clearmind.core.retrieval import RetrievalService
from clearmind.storage.db import Database


@pytest.fixture
def tmp_path():
    """Override tmp_path fixture to use /tmp directory."""
    temp_dir = tempfile.mkdtemp(prefix="clearmind_", dir="/tmp")
    path = Path(temp_dir)

    yield path

    if path.exists():
        shutil.rmtree(path, ignore_errors=True)


@pytest.fixture
def db(tmp_path):
    return Database(f"sqlite:///{tmp_path}/test.db")


@pytest.fixture
def config(tmp_path):
    return AppConfig(tmp_path / "config")


@pytest.fixture
def embedder():
    return TrigramEmbeddingClient()


@pytest.fixture
def entry_service(db, embedder):
    return EntryService(db, embedder)


@pytest.fixture
def retrieval(db, embedder):
    return RetrievalService(db, embedder)


@pytest.fixture
def no_env_keys():
    """Completion keys from the developer's shell must not leak into tests."""
    with patch.dict('os.environ', {}, clear=True):
        yield


class FakeLLM:
    """Scripted completion client. Records every prompt it receives."""

    def __init__(self, responses=None, tokens=None, stream_error=None, tokens_per_message=10):
        self.responses = list(responses or [])
        self.tokens = list(tokens or [])
        self.stream_error = stream_error
        self.tokens_per_message = tokens_per_message
        self.calls = []

    def count_tokens(self, messages):
        return len(messages) * self.tokens_per_message

    def complete(self, messages, temperature=0.3, max_tokens=1024):
        self.calls.append({"messages": messages, "temperature": temperature, "max_tokens": max_tokens})
        return self.responses.pop(0) if self.responses else ""

    def stream_complete(self, messages, temperature=0.3, max_tokens=1024):
        self.calls.append({"messages": messages, "temperature": temperature, "max_tokens": max_tokens})
        for token in self.tokens:
            yield token
        if self.stream_error:
            raise self.stream_error


class FakeLLMFactory:
    """llm_factory stand-in that hands out one FakeLLM and records the keys asked for."""

    def __init__(self, llm=None):
        self.llm = llm or FakeLLM()
        self.keys = []

    def __call__(self, api_key=None):
        self.keys.append(api_key)
        return self.llm


@pytest.fixture
def fake_llm():
    return FakeLLM()


@pytest.fixture
def llm_factory(fake_llm):
    return FakeLLMFactory(fake_llm)
