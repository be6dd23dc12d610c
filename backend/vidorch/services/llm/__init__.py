"""LLM provider abstraction layer.

Usage:
    from vidorch.services.llm import get_adapter

    adapter = get_adapter("ollama/llama3.1")
    result = await adapter.generate_text(prompt, MySchema)
"""

from vidorch.services.llm.base import LLMAdapter
from vidorch.services.llm.registry import get_adapter

__all__ = ["LLMAdapter", "get_adapter"]
