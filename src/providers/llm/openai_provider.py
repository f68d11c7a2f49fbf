"""OpenAI-compatible LLM provider adapter.

Wraps the ``openai`` async client to implement :class:`ILLMProvider`.
Answers live customer questions with ``gpt-4o-mini`` by default and
handles image inputs with the vision model.  When ``openai_base_url`` is
configured, the client points at that OpenAI-compatible endpoint.
"""

from __future__ import annotations

# The vision endpoint takes images as base64 data URIs.
import base64

import openai
import structlog

from src.config.settings import Settings
from src.interfaces.llm_provider import ILLMProvider
from src.utils.errors import LLMError
from src.utils.media import detect_media_type

logger = structlog.get_logger(logger_name=__name__)


class OpenAILLMProvider(ILLMProvider):
    """LLM provider backed by an OpenAI-compatible chat completions API.

    The adapter is the only place that imports ``openai`` for chat; the
    rest of the app talks to :class:`ILLMProvider`.
    """

    def __init__(self, settings: Settings) -> None:
        self._api_key = settings.openai_api_key

        client_kwargs: dict = {
            "api_key": self._api_key,
            "timeout": openai.Timeout(60.0, connect=5.0),
        }
        if settings.openai_base_url:
            client_kwargs["base_url"] = settings.openai_base_url

        self._client = openai.AsyncOpenAI(**client_kwargs)
        self._text_model = settings.openai_answer_model or "gpt-4o-mini"
        self._vision_model = settings.openai_vision_model
        self._has_vision = bool(self._vision_model)
        self._provider_label = (
            "openai-compatible" if settings.openai_base_url else "openai"
        )

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
        """Generate a text completion via the chat completions API."""
        messages: list[dict] = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        messages.append({"role": "user", "content": user_prompt})

        try:
            response = await self._client.chat.completions.create(
                model=self._text_model,
                messages=messages,
                temperature=temperature,
                max_tokens=max_tokens,
            )
        except openai.APIError as exc:
            # Callers catch LLMError and never import openai themselves.
            raise LLMError(
                message=f"{self._provider_label} API error: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc

        content = response.choices[0].message.content
        if not content:
            raise LLMError(
                message=f"{self._provider_label} returned empty response",
                provider_name=self.get_provider_name(),
            )
        logger.info(
            "openai_completion",
            model=self._text_model,
            provider=self._provider_label,
            tokens=response.usage.total_tokens if response.usage else None,
        )
        return content

    async def complete_with_images(
        self,
        prompt: str,
        images: list[bytes],
        max_tokens: int = 4000,
    ) -> str:
        """Send *images* followed by *prompt* to the vision model."""
        if not self._has_vision:
            raise LLMError(
                message="Vision not supported by this provider configuration",
                provider_name=self.get_provider_name(),
            )

        # Multi-part content: one image_url part per image, then the text.
        content: list[dict] = [
            {
                "type": "image_url",
                "image_url": {
                    "url": f"data:{detect_media_type(img)};base64,"
                    f"{base64.b64encode(img).decode('utf-8')}",
                },
            }
            for img in images
        ]
        content.append({"type": "text", "text": prompt})

        try:
            response = await self._client.chat.completions.create(
                model=self._vision_model,
                messages=[{"role": "user", "content": content}],
                max_tokens=max_tokens,
            )
        except openai.APIError as exc:
            raise LLMError(
                message=f"{self._provider_label} vision API error: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc

        text = response.choices[0].message.content
        if not text:
            raise LLMError(
                message=f"{self._provider_label} vision returned empty response",
                provider_name=self.get_provider_name(),
            )
        logger.info(
            "openai_vision_completion",
            model=self._vision_model,
            images=len(images),
            tokens=response.usage.total_tokens if response.usage else None,
        )
        return text

    def supports_vision(self) -> bool:
        return self._has_vision

    def is_available(self) -> bool:
        """Return ``True`` if an API key is configured (doesn't verify it works)."""
        return bool(self._api_key)

    def get_provider_name(self) -> str:
        return self._provider_label
