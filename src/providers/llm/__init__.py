"""LLM provider adapters.

Two concrete implementations of ILLMProvider (src/interfaces/llm_provider.py):
    - AnthropicLLMProvider - Claude (Q&A generation, image description)
    - OpenAILLMProvider    - gpt-4o-mini answers, gpt-4o vision

main.py builds the generation LLM (Anthropic first, OpenAI fallback) and
the answer LLM (OpenAI) and places both on app.state.
"""

from src.providers.llm.anthropic_provider import AnthropicLLMProvider
from src.providers.llm.openai_provider import OpenAILLMProvider

__all__ = ["AnthropicLLMProvider", "OpenAILLMProvider"]
