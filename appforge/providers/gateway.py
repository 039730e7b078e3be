"""Single entry point for model calls.

``ProviderGateway.invoke`` hides which backend serves a ``ProviderConfig``.
It raises ``ConfigError`` for a missing credential and ``ProviderError`` for
everything that goes wrong on the wire; it never retries.
"""

from __future__ import annotations

from ..errors import ConfigError
from ..models import Image, ProviderConfig, ProviderKind, ProviderResponse
from .anthropic import AnthropicBackend
from .base import ProviderBackend
from .google import GoogleBackend
from .openai import OpenAIBackend


class ProviderGateway:
    """Dispatches a call to the backend registered for the config's kind."""

    def __init__(
        self,
        backends: dict[ProviderKind, ProviderBackend] | None = None,
        timeout: float = 120.0,
    ) -> None:
        self.backends: dict[ProviderKind, ProviderBackend] = backends or {
            ProviderKind.GOOGLE: GoogleBackend(timeout=timeout),
            ProviderKind.OPENAI: OpenAIBackend(timeout=timeout),
            ProviderKind.ANTHROPIC: AnthropicBackend(timeout=timeout),
        }

    async def invoke(
        self,
        config: ProviderConfig,
        prompt: str,
        system_instruction: str = "",
        images: list[Image] | None = None,
    ) -> ProviderResponse:
        """Send one prompt to the provider described by *config*.

        Raises:
            ConfigError: If the config has no credential or no backend exists.
            ProviderError: On any transport or provider-side failure.
        """
        if not config.has_credential:
            raise ConfigError(f"API key missing for {config.label}")
        backend = self.backends.get(config.kind)
        if backend is None:
            raise ConfigError(f"No backend registered for provider '{config.kind.value}'")
        return await backend.generate(config, prompt, system_instruction, images or [])
