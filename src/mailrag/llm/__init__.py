"""Provider clients for embeddings and chat completion."""

from mailrag.llm.client import LiteLLMClient, classify_error, validate_api_key

__all__ = ["LiteLLMClient", "classify_error", "validate_api_key"]
