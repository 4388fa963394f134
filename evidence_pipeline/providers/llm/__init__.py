"""Completion provider adapters.

Three concrete implementations of ILLMProvider:
    - OpenAILLMProvider    -- OpenAI-compatible chat API (OpenRouter by default)
    - AnthropicLLMProvider -- Claude via the Messages API
    - MockLLMProvider      -- prompt echo, used when no key is configured
"""

from evidence_pipeline.providers.llm.anthropic_provider import AnthropicLLMProvider
from evidence_pipeline.providers.llm.mock_provider import MockLLMProvider
from evidence_pipeline.providers.llm.openai_provider import OpenAILLMProvider

__all__ = ["AnthropicLLMProvider", "MockLLMProvider", "OpenAILLMProvider"]
