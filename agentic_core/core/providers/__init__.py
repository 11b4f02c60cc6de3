"""Model backend adapters. Importing this package registers them with ProviderFactory."""

from .base import BaseLLMProvider, ProviderFactory
from .openai_provider import OpenAIProvider
from .ollama import OllamaProvider

__all__ = ["BaseLLMProvider", "ProviderFactory", "OpenAIProvider", "OllamaProvider"]
