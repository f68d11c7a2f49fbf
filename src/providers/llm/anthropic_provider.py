"""Anthropic LLM provider adapter.

Wraps the ``anthropic`` async client to implement :class:`ILLMProvider`.
Claude is the preferred model for turning manuals and product pages into
Q&A candidates: page-batch mode sends every rendered page image of a
document in one Messages API call.

Key differences from the OpenAI adapter:
    - System prompt is a separate parameter, not a message in the list
    - Images use the "image" content type with a base64 source
    - Response content is a list of blocks; only text blocks are kept
"""

from __future__ import annotations

import base64

import anthropic
import structlog

from src.config.settings import Settings
from src.interfaces.llm_provider import ILLMProvider
from src.utils.errors import LLMError
from src.utils.media import detect_media_type

logger = structlog.get_logger(logger_name=__name__)

# The Messages API accepts at most this many images per request.
_MAX_IMAGES_PER_REQUEST = 100


class AnthropicLLMProvider(ILLMProvider):
    """LLM provider backed by the Anthropic Claude API."""

    def __init__(self, settings: Settings) -> None:
        self._api_key = settings.anthropic_api_key
        self._client = anthropic.AsyncAnthropic(api_key=self._api_key)
        self._model = settings.anthropic_model

    # ------------------------------------------------------------------
    # ILLMProvider implementation
    # ------------------------------------------------------------------

    async def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        temperature: float = 0.3,
        max_tokens: int = 4000,
    ) -> str:
        """Generate a text completion via the Anthropic Messages API."""
        kwargs: dict = {
            "model": self._model,
            "max_tokens": max_tokens,
            "messages": [{"role": "user", "content": user_prompt}],
            "temperature": temperature,
        }
        if system_prompt:
            kwargs["system"] = system_prompt

        try:
            response = await self._client.messages.create(**kwargs)
        except anthropic.APIError as exc:
            raise LLMError(
                message=f"Anthropic API error: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc

        result = self._join_text(response)
        logger.info(
            "anthropic_completion",
            model=self._model,
            input_tokens=response.usage.input_tokens,
            output_tokens=response.usage.output_tokens,
        )
        return result

    async def complete_with_images(
        self,
        prompt: str,
        images: list[bytes],
        max_tokens: int = 4000,
    ) -> str:
        """Send *images* (in order) and then *prompt* in one user message."""
        if len(images) > _MAX_IMAGES_PER_REQUEST:
            raise LLMError(
                message=f"Too many images for one request ({len(images)} > {_MAX_IMAGES_PER_REQUEST})",
                provider_name=self.get_provider_name(),
            )

        content: list[dict] = [
            {
                "type": "image",
                "source": {
                    "type": "base64",
                    "media_type": detect_media_type(img),
                    "data": base64.b64encode(img).decode("utf-8"),
                },
            }
            for img in images
        ]
        content.append({"type": "text", "text": prompt})

        try:
            response = await self._client.messages.create(
                model=self._model,
                max_tokens=max_tokens,
                messages=[{"role": "user", "content": content}],
            )
        except anthropic.APIError as exc:
            raise LLMError(
                message=f"Anthropic vision API error: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc

        result = self._join_text(response)
        logger.info(
            "anthropic_vision_completion",
            model=self._model,
            images=len(images),
            input_tokens=response.usage.input_tokens,
            output_tokens=response.usage.output_tokens,
        )
        return result

    def supports_vision(self) -> bool:
        return True

    def is_available(self) -> bool:
        """Return ``True`` if an Anthropic API key is configured."""
        return bool(self._api_key)

    def get_provider_name(self) -> str:
        return "anthropic"

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _join_text(self, response: anthropic.types.Message) -> str:
        text_blocks = [block.text for block in response.content if block.type == "text"]
        if not text_blocks:
            raise LLMError(
                message="Anthropic returned no text content",
                provider_name=self.get_provider_name(),
            )
        return "\n".join(text_blocks)
