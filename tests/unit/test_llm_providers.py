"""Unit tests for LLM and embedding provider adapters - OpenAI, Anthropic."""

from __future__ import annotations

import base64
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import anthropic
import httpx
import openai
import pytest

from src.config.settings import Settings
from src.providers.embedding.openai_embedding_provider import OpenAIEmbeddingProvider
from src.providers.llm.anthropic_provider import AnthropicLLMProvider
from src.providers.llm.openai_provider import OpenAILLMProvider
from src.utils.errors import EmbeddingError, LLMError
from tests.conftest import make_png, make_settings

_REQUEST = httpx.Request("POST", "https://api.example.com/v1")


# ======================================================================
# Shared helpers
# ======================================================================


def _openai_response(content: str | None) -> MagicMock:
    response = MagicMock()
    response.choices = [MagicMock(message=MagicMock(content=content))]
    response.usage = MagicMock(total_tokens=100)
    return response


def _openai_client(**create_kwargs) -> AsyncMock:
    client = AsyncMock()
    client.chat.completions.create = AsyncMock(**create_kwargs)
    return client


def _anthropic_response(*blocks: SimpleNamespace) -> SimpleNamespace:
    return SimpleNamespace(content=list(blocks), usage=SimpleNamespace(input_tokens=10, output_tokens=20))


def _text_block(text: str) -> SimpleNamespace:
    return SimpleNamespace(type="text", text=text)


# ======================================================================
# OpenAI LLM Provider
# ======================================================================


class TestOpenAILLMProvider:
    @pytest.fixture()
    def settings(self) -> Settings:
        return make_settings()

    def test_provider_name_reflects_endpoint(self, settings: Settings) -> None:
        assert OpenAILLMProvider(settings).get_provider_name() == "openai"
        custom = make_settings(openai_base_url="http://localhost:8080/v1")
        assert OpenAILLMProvider(custom).get_provider_name() == "openai-compatible"

    def test_is_available_without_key(self) -> None:
        assert OpenAILLMProvider(make_settings(openai_api_key="")).is_available() is False

    def test_vision_depends_on_vision_model(self, settings: Settings) -> None:
        assert OpenAILLMProvider(settings).supports_vision() is True
        assert OpenAILLMProvider(make_settings(openai_vision_model="")).supports_vision() is False

    @pytest.mark.asyncio
    async def test_complete_sends_system_and_user_messages(self, settings: Settings) -> None:
        client = _openai_client(return_value=_openai_response("답변입니다"))

        with patch("src.providers.llm.openai_provider.openai.AsyncOpenAI", return_value=client):
            provider = OpenAILLMProvider(settings)
            result = await provider.complete("system prompt", "user prompt", temperature=0.3, max_tokens=500)

        assert result == "답변입니다"
        kwargs = client.chat.completions.create.await_args.kwargs
        assert kwargs["model"] == "gpt-4o-mini"
        assert kwargs["messages"] == [
            {"role": "system", "content": "system prompt"},
            {"role": "user", "content": "user prompt"},
        ]
        assert kwargs["max_tokens"] == 500

    @pytest.mark.asyncio
    async def test_api_error_becomes_llm_error(self, settings: Settings) -> None:
        error = openai.APIError(message="Rate limit exceeded", request=_REQUEST, body=None)
        client = _openai_client(side_effect=error)

        with patch("src.providers.llm.openai_provider.openai.AsyncOpenAI", return_value=client):
            provider = OpenAILLMProvider(settings)
            with pytest.raises(LLMError) as exc_info:
                await provider.complete("system", "user")

        assert exc_info.value.provider_name == "openai"
        assert exc_info.value.__cause__ is error

    @pytest.mark.asyncio
    async def test_empty_content_is_an_error(self, settings: Settings) -> None:
        client = _openai_client(return_value=_openai_response(""))

        with patch("src.providers.llm.openai_provider.openai.AsyncOpenAI", return_value=client):
            provider = OpenAILLMProvider(settings)
            with pytest.raises(LLMError, match="empty response"):
                await provider.complete("system", "user")

    @pytest.mark.asyncio
    async def test_images_precede_prompt_as_data_uris(self, settings: Settings) -> None:
        png = make_png()
        client = _openai_client(return_value=_openai_response("[]"))

        with patch("src.providers.llm.openai_provider.openai.AsyncOpenAI", return_value=client):
            provider = OpenAILLMProvider(settings)
            await provider.complete_with_images("describe", [png, png])

        kwargs = client.chat.completions.create.await_args.kwargs
        assert kwargs["model"] == "gpt-4o"
        parts = kwargs["messages"][0]["content"]
        assert [p["type"] for p in parts] == ["image_url", "image_url", "text"]
        expected = f"data:image/png;base64,{base64.b64encode(png).decode('utf-8')}"
        assert parts[0]["image_url"]["url"] == expected

    @pytest.mark.asyncio
    async def test_images_without_vision_model(self) -> None:
        provider = OpenAILLMProvider(make_settings(openai_vision_model=""))
        with pytest.raises(LLMError, match="Vision not supported"):
            await provider.complete_with_images("describe", [make_png()])


# ======================================================================
# Anthropic LLM Provider
# ======================================================================


class TestAnthropicLLMProvider:
    @pytest.fixture()
    def settings(self) -> Settings:
        return make_settings()

    def test_metadata(self, settings: Settings) -> None:
        provider = AnthropicLLMProvider(settings)
        assert provider.get_provider_name() == "anthropic"
        assert provider.supports_vision() is True
        assert provider.is_available() is True
        assert AnthropicLLMProvider(make_settings(anthropic_api_key="")).is_available() is False

    @pytest.mark.asyncio
    async def test_complete_joins_text_blocks(self, settings: Settings) -> None:
        client = AsyncMock()
        client.messages.create = AsyncMock(
            return_value=_anthropic_response(
                _text_block("첫 줄"),
                SimpleNamespace(type="tool_use", text="ignored"),
                _text_block("둘째 줄"),
            )
        )

        with patch("src.providers.llm.anthropic_provider.anthropic.AsyncAnthropic", return_value=client):
            provider = AnthropicLLMProvider(settings)
            result = await provider.complete("system", "user")

        assert result == "첫 줄\n둘째 줄"
        kwargs = client.messages.create.await_args.kwargs
        assert kwargs["system"] == "system"
        assert kwargs["messages"] == [{"role": "user", "content": "user"}]

    @pytest.mark.asyncio
    async def test_system_omitted_when_blank(self, settings: Settings) -> None:
        client = AsyncMock()
        client.messages.create = AsyncMock(return_value=_anthropic_response(_text_block("ok")))

        with patch("src.providers.llm.anthropic_provider.anthropic.AsyncAnthropic", return_value=client):
            provider = AnthropicLLMProvider(settings)
            await provider.complete("", "user")

        assert "system" not in client.messages.create.await_args.kwargs

    @pytest.mark.asyncio
    async def test_no_text_blocks_is_an_error(self, settings: Settings) -> None:
        client = AsyncMock()
        client.messages.create = AsyncMock(return_value=_anthropic_response())

        with patch("src.providers.llm.anthropic_provider.anthropic.AsyncAnthropic", return_value=client):
            provider = AnthropicLLMProvider(settings)
            with pytest.raises(LLMError, match="no text content"):
                await provider.complete("system", "user")

    @pytest.mark.asyncio
    async def test_api_error_becomes_llm_error(self, settings: Settings) -> None:
        client = AsyncMock()
        client.messages.create = AsyncMock(
            side_effect=anthropic.APIError(message="overloaded", request=_REQUEST, body=None)
        )

        with patch("src.providers.llm.anthropic_provider.anthropic.AsyncAnthropic", return_value=client):
            provider = AnthropicLLMProvider(settings)
            with pytest.raises(LLMError) as exc_info:
                await provider.complete_with_images("describe", [make_png()])

        assert exc_info.value.provider_name == "anthropic"

    @pytest.mark.asyncio
    async def test_image_blocks_use_base64_source(self, settings: Settings) -> None:
        png = make_png()
        client = AsyncMock()
        client.messages.create = AsyncMock(return_value=_anthropic_response(_text_block("[]")))

        with patch("src.providers.llm.anthropic_provider.anthropic.AsyncAnthropic", return_value=client):
            provider = AnthropicLLMProvider(settings)
            await provider.complete_with_images("describe", [png])

        content = client.messages.create.await_args.kwargs["messages"][0]["content"]
        assert content[0]["source"]["media_type"] == "image/png"
        assert base64.b64decode(content[0]["source"]["data"]) == png
        assert content[-1] == {"type": "text", "text": "describe"}

    @pytest.mark.asyncio
    async def test_too_many_images_rejected_before_call(self, settings: Settings) -> None:
        client = AsyncMock()

        with patch("src.providers.llm.anthropic_provider.anthropic.AsyncAnthropic", return_value=client):
            provider = AnthropicLLMProvider(settings)
            with pytest.raises(LLMError, match="Too many images"):
                await provider.complete_with_images("describe", [b"x"] * 101)

        client.messages.create.assert_not_called()


# ======================================================================
# OpenAI Embedding Provider
# ======================================================================


class TestOpenAIEmbeddingProvider:
    @staticmethod
    def _client(dimension: int = 3) -> AsyncMock:
        async def create(input: list[str], model: str) -> SimpleNamespace:
            data = [
                SimpleNamespace(index=i, embedding=[float(len(text))] * dimension) for i, text in enumerate(input)
            ]
            # Out of order on purpose; the provider sorts by index.
            return SimpleNamespace(data=data[::-1], usage=SimpleNamespace(total_tokens=len(input)))

        client = AsyncMock()
        client.embeddings.create = AsyncMock(side_effect=create)
        return client

    def test_dimension_follows_model(self) -> None:
        assert OpenAIEmbeddingProvider(make_settings()).get_dimension() == 1536
        large = OpenAIEmbeddingProvider(make_settings(openai_embedding_model="text-embedding-3-large"))
        assert large.get_dimension() == 3072
        assert large.get_provider_name() == "openai-text-embedding-3-large"

    @pytest.mark.asyncio
    async def test_embed_preserves_order(self) -> None:
        client = self._client()
        with patch("src.providers.embedding.openai_embedding_provider.openai.AsyncOpenAI", return_value=client):
            provider = OpenAIEmbeddingProvider(make_settings())
            vectors = await provider.embed(["a", "bbb", "cc"])

        assert [v[0] for v in vectors] == [1.0, 3.0, 2.0]

    @pytest.mark.asyncio
    async def test_embed_batches_large_inputs(self) -> None:
        client = self._client()
        with patch("src.providers.embedding.openai_embedding_provider.openai.AsyncOpenAI", return_value=client):
            provider = OpenAIEmbeddingProvider(make_settings())
            vectors = await provider.embed(["q"] * 2050)

        assert len(vectors) == 2050
        assert client.embeddings.create.await_count == 2

    @pytest.mark.asyncio
    async def test_embed_empty_makes_no_call(self) -> None:
        client = self._client()
        with patch("src.providers.embedding.openai_embedding_provider.openai.AsyncOpenAI", return_value=client):
            provider = OpenAIEmbeddingProvider(make_settings())
            assert await provider.embed([]) == []

        client.embeddings.create.assert_not_called()

    @pytest.mark.asyncio
    async def test_embed_single(self) -> None:
        client = self._client(dimension=2)
        with patch("src.providers.embedding.openai_embedding_provider.openai.AsyncOpenAI", return_value=client):
            provider = OpenAIEmbeddingProvider(make_settings())
            assert await provider.embed_single("반품") == [2.0, 2.0]

    @pytest.mark.asyncio
    async def test_api_error_becomes_embedding_error(self) -> None:
        client = AsyncMock()
        client.embeddings.create = AsyncMock(
            side_effect=openai.APIError(message="bad key", request=_REQUEST, body=None)
        )
        with patch("src.providers.embedding.openai_embedding_provider.openai.AsyncOpenAI", return_value=client):
            provider = OpenAIEmbeddingProvider(make_settings())
            with pytest.raises(EmbeddingError):
                await provider.embed_single("반품")

    @pytest.mark.asyncio
    async def test_whitespace_collapsed_before_embedding(self) -> None:
        client = self._client()
        with patch("src.providers.embedding.openai_embedding_provider.openai.AsyncOpenAI", return_value=client):
            provider = OpenAIEmbeddingProvider(make_settings())
            await provider.embed(["  배송은\n 얼마나   걸리나요? "])

        assert client.embeddings.create.await_args.kwargs["input"] == ["배송은 얼마나 걸리나요?"]

    @pytest.mark.asyncio
    async def test_blank_text_rejected_without_call(self) -> None:
        client = self._client()
        with patch("src.providers.embedding.openai_embedding_provider.openai.AsyncOpenAI", return_value=client):
            provider = OpenAIEmbeddingProvider(make_settings())
            with pytest.raises(EmbeddingError, match="blank"):
                await provider.embed(["반품", " \n "])

        client.embeddings.create.assert_not_called()
