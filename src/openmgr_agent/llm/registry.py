"""
Provider registry.

An explicit instance is built per process (or per test) and passed through
the runtime; there is no module-level registry.
"""

from typing import Callable

import structlog

from ..config import Settings
from .base import BaseLLM
from .factory import create_llm

logger = structlog.get_logger()

ProviderFactory = Callable[[], BaseLLM]


class ProviderRegistry:
    """Name -> provider factory, with one cached instance per name."""

    def __init__(self):
        self._factories: dict[str, ProviderFactory] = {}
        self._instances: dict[str, BaseLLM] = {}

    def register(self, name: str, factory: ProviderFactory) -> None:
        """Register a provider factory, replacing any previous one."""
        self._factories[name] = factory
        self._instances.pop(name, None)
        logger.debug("Provider registered", provider=name)

    def register_instance(self, name: str, llm: BaseLLM) -> None:
        """Register an already-built provider."""
        self.register(name, lambda: llm)

    def has(self, name: str) -> bool:
        return name in self._factories

    def names(self) -> list[str]:
        return list(self._factories.keys())

    def get(self, name: str) -> BaseLLM:
        """Get (creating on first use) the provider registered under name."""
        if name not in self._instances:
            factory = self._factories.get(name)
            if factory is None:
                raise KeyError(f"Unknown provider: {name}")
            self._instances[name] = factory()
        return self._instances[name]

    @classmethod
    def from_settings(cls, settings: Settings) -> "ProviderRegistry":
        """Registry with every built-in provider, created lazily from settings."""
        registry = cls()
        for name in ("anthropic", "openai", "google", "openrouter"):
            registry.register(
                name,
                lambda name=name: create_llm(settings.get_llm_config(name)),
            )
        return registry
