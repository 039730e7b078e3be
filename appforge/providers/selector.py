"""Active/fallback provider selection.

Provider configs are fetched from an injected resolver on every selection,
so an admin change between steps is picked up by the next step.
"""

from __future__ import annotations

from typing import Protocol

from ..errors import ConfigError
from ..models import ProviderConfig, ProviderKind
from .google import DEFAULT_MODEL as GOOGLE_DEFAULT_MODEL


class ProviderConfigResolver(Protocol):
    async def list_configs(self) -> list[ProviderConfig]: ...


class StaticProviderResolver:
    """Serves a fixed list of provider configs."""

    def __init__(self, configs: list[ProviderConfig]) -> None:
        self.configs = list(configs)

    async def list_configs(self) -> list[ProviderConfig]:
        return list(self.configs)


class ProviderSelector:
    """Chooses the provider for a step and its fallback.

    Args:
        resolver: Source of provider configs.
        default_api_key: Environment-default Google credential used when no
            configured provider has a key.
    """

    def __init__(
        self,
        resolver: ProviderConfigResolver,
        default_api_key: str | None = None,
    ) -> None:
        self.resolver = resolver
        self.default_api_key = default_api_key

    def _environment_default(self) -> ProviderConfig | None:
        if not self.default_api_key or not self.default_api_key.strip():
            return None
        return ProviderConfig(
            kind=ProviderKind.GOOGLE,
            name="Google Gemini (default)",
            api_key=self.default_api_key,
            model=GOOGLE_DEFAULT_MODEL,
            is_active=True,
        )

    async def select_active(self) -> ProviderConfig:
        """Return the config to use for the primary attempt.

        Order: active with credential, fallback with credential, environment
        default.

        Raises:
            ConfigError: If none of them is usable.
        """
        configs = await self.resolver.list_configs()
        for config in configs:
            if config.is_active and config.has_credential:
                return config
        for config in configs:
            if config.is_fallback and config.has_credential:
                return config
        default = self._environment_default()
        if default is not None:
            return default
        raise ConfigError("No AI provider is configured with an API key")

    async def select_fallback(self, active: ProviderConfig | None = None) -> ProviderConfig | None:
        """Return the fallback config, never the same provider as *active*."""
        configs = await self.resolver.list_configs()
        for config in configs:
            if not (config.is_fallback and config.has_credential):
                continue
            if active is not None and config.kind == active.kind:
                continue
            return config
        return None
