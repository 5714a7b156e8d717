"""
Tests for LLM Client functionality.
"""

import pytest
from unittest.mock import Mock, patch, MagicMock

from clearmind.core.llm import LLMClient, LLMClientFactory, DEFAULT_BASE_URL, DEFAULT_MODEL


@pytest.fixture
def mock_encoding():
    """tiktoken encodings are downloaded on first use; keep tests offline."""
    encoding = Mock()
    encoding.encode.side_effect = lambda text: text.split()
    with patch('clearmind.core.llm.tiktoken.encoding_for_model', side_effect=KeyError("unknown")), \
            patch('clearmind.core.llm.tiktoken.get_encoding', return_value=encoding) as get_encoding:
        yield get_encoding


class TestLLMInit:
    """Tests for LLMClient initialization."""

    def test_init_with_groq_api_key(self, mock_encoding):
        with patch.dict('os.environ', {'GROQ_API_KEY': 'groq-key'}, clear=True):
            with patch('clearmind.core.llm.OpenAI') as mock_openai:
                client = LLMClient(model="test-model")

                assert client.api_key == 'groq-key'
                assert client.model == 'test-model'
                mock_openai.assert_called_with(base_url=DEFAULT_BASE_URL, api_key='groq-key')

    def test_init_with_openai_api_key(self, mock_encoding):
        """OPENAI_API_KEY is the fallback."""
        with patch.dict('os.environ', {'OPENAI_API_KEY': 'openai-key'}, clear=True):
            with patch('clearmind.core.llm.OpenAI'):
                client = LLMClient(model="test-model")

                assert client.api_key == 'openai-key'

    def test_explicit_key_wins(self, mock_encoding):
        with patch.dict('os.environ', {'GROQ_API_KEY': 'env-key'}, clear=True):
            with patch('clearmind.core.llm.OpenAI'):
                client = LLMClient(model="test-model", api_key="user-key")

                assert client.api_key == 'user-key'

    def test_init_missing_api_key(self, mock_encoding):
        with patch.dict('os.environ', {}, clear=True):
            with pytest.raises(ValueError, match="API_KEY"):
                LLMClient(model="test-model")

    def test_init_custom_base_url(self, mock_encoding):
        with patch.dict('os.environ', {
            'GROQ_API_KEY': 'test-key',
            'GROQ_BASE_URL': 'https://custom.api.com/v1'
        }, clear=True):
            with patch('clearmind.core.llm.OpenAI') as mock_openai:
                client = LLMClient(model="test-model")

                assert client.base_url == 'https://custom.api.com/v1'
                mock_openai.assert_called_with(
                    base_url='https://custom.api.com/v1',
                    api_key='test-key'
                )

    def test_init_tokenizer_known_model(self):
        with patch.dict('os.environ', {'GROQ_API_KEY': 'test-key'}):
            with patch('clearmind.core.llm.OpenAI'):
                with patch('clearmind.core.llm.tiktoken.encoding_for_model') as mock_encoding_for:
                    mock_encoding_for.return_value = Mock()

                    LLMClient(model="openai/gpt-4o-mini")

                    mock_encoding_for.assert_called_with('gpt-4o-mini')

    def test_init_tokenizer_fallback(self, mock_encoding):
        with patch.dict('os.environ', {'GROQ_API_KEY': 'test-key'}):
            with patch('clearmind.core.llm.OpenAI'):
                LLMClient(model="llama-3.1-8b-instant")

                mock_encoding.assert_called_with("cl100k_base")


def make_client():
    with patch.dict('os.environ', {'GROQ_API_KEY': 'test-key'}):
        with patch('clearmind.core.llm.OpenAI') as mock_openai:
            client = LLMClient(model="test-model")
    client.client = mock_openai.return_value
    return client


def completion(content, finish_reason="stop"):
    response = MagicMock()
    response.choices = [MagicMock()]
    response.choices[0].message.content = content
    response.choices[0].finish_reason = finish_reason
    return response


def chunk(token):
    item = MagicMock()
    item.choices = [MagicMock()]
    item.choices[0].delta.content = token
    return item


class TestComplete:
    def test_complete(self, mock_encoding):
        client = make_client()
        client.client.chat.completions.create.return_value = completion('{"mood": "calm"}')

        messages = [{"role": "user", "content": "hi"}]
        assert client.complete(messages, temperature=0.5, max_tokens=100) == '{"mood": "calm"}'
        client.client.chat.completions.create.assert_called_once_with(
            model="test-model", messages=messages, temperature=0.5, max_tokens=100,
        )

    def test_empty_completion(self, mock_encoding):
        client = make_client()
        client.client.chat.completions.create.return_value = completion(None, finish_reason="length")
        assert client.complete([{"role": "user", "content": "hi"}]) == ""

    def test_api_error_propagates(self, mock_encoding):
        client = make_client()
        client.client.chat.completions.create.side_effect = RuntimeError("rate limited")
        with pytest.raises(RuntimeError):
            client.complete([{"role": "user", "content": "hi"}])

    def test_stream_complete(self, mock_encoding):
        client = make_client()
        empty = MagicMock()
        empty.choices = []
        client.client.chat.completions.create.return_value = iter([chunk("Hel"), empty, chunk(None), chunk("lo")])

        assert list(client.stream_complete([{"role": "user", "content": "hi"}])) == ["Hel", "lo"]
        assert client.client.chat.completions.create.call_args.kwargs["stream"] is True


class TestCountTokens:
    def test_count_tokens(self, mock_encoding):
        client = make_client()
        messages = [
            {"role": "system", "content": "be kind"},
            {"role": "user", "content": "one two three"},
        ]
        # per message: 4 overhead + role word + content words; plus 2 priming
        assert client.count_tokens(messages) == (4 + 1 + 2) + (4 + 1 + 3) + 2


class TestFactory:
    def test_factory_builds_client_with_key(self, mock_encoding):
        with patch.dict('os.environ', {}, clear=True):
            with patch('clearmind.core.llm.OpenAI'):
                factory = LLMClientFactory(model="m", base_url="https://example.test/v1")
                client = factory("user-key")

                assert client.api_key == "user-key"
                assert client.model == "m"
                assert client.base_url == "https://example.test/v1"

    def test_factory_without_key_fails(self, mock_encoding):
        with patch.dict('os.environ', {}, clear=True):
            with pytest.raises(ValueError):
                LLMClientFactory()(None)

    def test_default_model(self):
        assert LLMClientFactory().model == DEFAULT_MODEL
