"""Provider layer: HTTP backends, pricing, gateway and active/fallback selection."""

from .anthropic import AnthropicBackend
from .base import ProviderBackend
from .gateway import ProviderGateway
from .google import GoogleBackend
from .openai import OpenAIBackend
from .pricing import calculate_cost
from .selector import ProviderConfigResolver, ProviderSelector, StaticProviderResolver

__all__ = [
    "AnthropicBackend",
    "GoogleBackend",
    "OpenAIBackend",
    "ProviderBackend",
    "ProviderConfigResolver",
    "ProviderGateway",
    "ProviderSelector",
    "StaticProviderResolver",
    "calculate_cost",
]
