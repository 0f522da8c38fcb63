"""
Provider construction. The factory map is built explicitly and handed to new_provider;
there is no process-wide mutable registry.
"""

import os

from crawlsmith.llm.anthropic import AnthropicService
from crawlsmith.llm.base import ProviderConfig
from crawlsmith.llm.ollama import OllamaService
from crawlsmith.llm.openai import OpenAIService, new_openrouter_service

DEFAULT_MODELS = {
    "anthropic": "claude-opus-4-5-20251101",
    "openai": "gpt-4o",
    "openrouter": "xiaomi/mimo-v2-flash:free",
    "ollama": "llama3.2",
}

# Checked in order; the first key present wins
_KEY_ENV_VARS = [
    ("openrouter", "OPENROUTER_API_KEY"),
    ("anthropic", "ANTHROPIC_API_KEY"),
    ("openai", "OPENAI_API_KEY"),
]


def default_factories():
    return {
        "anthropic": lambda cfg: AnthropicService(cfg),
        "openai": lambda cfg: OpenAIService(cfg),
        "openrouter": lambda cfg: new_openrouter_service(cfg),
        "ollama": lambda cfg: OllamaService(cfg),
    }


def new_provider(name, config=None, factories=None):
    factories = default_factories() if factories is None else factories
    factory = factories.get(name)
    if factory is None:
        available = ", ".join(sorted(factories))
        raise ValueError(f"unknown provider: {name} (available: {available})")

    config = config or ProviderConfig()
    if not config.model:
        config.model = DEFAULT_MODELS.get(name, "")
    return factory(config)


def detect_provider():
    """Returns (provider_name, api_key) from the environment; falls back to keyless ollama."""
    for name, env_var in _KEY_ENV_VARS:
        key = os.getenv(env_var)
        if key:
            return name, key
    return "ollama", ""


def default_model(provider):
    return DEFAULT_MODELS.get(provider, "")


def env_api_key(provider):
    """The API key for one provider from its environment variable, or ""."""
    for name, env_var in _KEY_ENV_VARS:
        if name == provider:
            return os.getenv(env_var) or ""
    return ""
