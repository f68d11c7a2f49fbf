"""Abstract base class for LLM service providers.

Defines the contract for the language models that generate Q&A candidates
from documents, describe uploaded images, and answer live customer
questions.  Implementations wrap the Anthropic API (Claude) or an
OpenAI-compatible API; every call-site stays provider-agnostic.
"""

from __future__ import annotations

# ABC = Abstract Base Class - Python's way of defining interfaces.
# If a concrete class forgets to implement an abstractmethod, Python raises
# TypeError when you try to instantiate it.
from abc import ABC, abstractmethod


# Concrete implementations: AnthropicLLMProvider, OpenAILLMProvider
# Located in: src/providers/llm/
class ILLMProvider(ABC):
    """Contract for LLM services.

    Providers must support plain text completion; image inputs are optional
    and declared via :meth:`supports_vision`.
    """

    @abstractmethod
    async def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        temperature: float = 0.3,
        max_tokens: int = 4000,
    ) -> str:
        """Generate a text completion from the model.

        Parameters
        ----------
        system_prompt:
            The system/instruction message that sets the model's behaviour.
            May be empty.
        user_prompt:
            The prompt containing the actual request or data.
        temperature:
            Sampling temperature (0.0 = deterministic, 1.0 = creative).
        max_tokens:
            Upper bound on the number of tokens in the response.

        Returns
        -------
        str
            The model's text response.

        Raises
        ------
        src.utils.errors.LLMError
            If the API call fails or returns an empty response.
        """

    @abstractmethod
    async def complete_with_images(
        self,
        prompt: str,
        images: list[bytes],
        max_tokens: int = 4000,
    ) -> str:
        """Generate a completion from a prompt plus one or more images.

        Images are sent in list order, before the prompt text, so a prompt
        can refer to them as "image 1", "image 2" and so on.

        Raises
        ------
        src.utils.errors.LLMError
            If the provider has no vision support or the API call fails.
        """

    @abstractmethod
    def supports_vision(self) -> bool:
        """Return ``True`` if this provider can process image inputs."""

    @abstractmethod
    def get_provider_name(self) -> str:
        """Return a human-readable identifier for this LLM provider."""

    @abstractmethod
    def is_available(self) -> bool:
        """Return ``True`` if credentials are present (no network call)."""
