"""Provider adapter implementations."""

from aigate.providers.adapters.http import HttpProviderAdapter
from aigate.providers.adapters.litellm_adapter import LiteLLMAdapter

__all__ = ["HttpProviderAdapter", "LiteLLMAdapter"]
