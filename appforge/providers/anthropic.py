"""Anthropic Claude backend (``/messages``)."""

from __future__ import annotations

from typing import Any

from ..models import Image, ProviderConfig, ProviderKind, ProviderResponse, Usage
from .base import ProviderBackend
from .pricing import calculate_cost

DEFAULT_MODEL = "claude-3-5-sonnet-20241022"
API_VERSION = "2023-06-01"


def normalise_model(model: str) -> str:
    """Map the floating ``latest`` alias (or an empty name) to a pinned model."""
    if not model or model == "claude-3-5-sonnet-latest":
        return DEFAULT_MODEL
    return model


class AnthropicBackend(ProviderBackend):
    kind = ProviderKind.ANTHROPIC
    default_base_url = "https://api.anthropic.com/v1"

    @staticmethod
    def build_payload(
        model: str,
        prompt: str,
        system_instruction: str = "",
        images: list[Image] | None = None,
    ) -> dict[str, Any]:
        content: list[dict[str, Any]] = [
            {
                "type": "image",
                "source": {"type": "base64", "media_type": image.mime_type, "data": image.b64()},
            }
            for image in images or []
        ]
        content.append({"type": "text", "text": prompt})

        payload: dict[str, Any] = {
            "model": model,
            "max_tokens": 8192,
            "temperature": 0.2,
            "messages": [{"role": "user", "content": content}],
        }
        if system_instruction:
            payload["system"] = system_instruction
        return payload

    async def generate(
        self,
        config: ProviderConfig,
        prompt: str,
        system_instruction: str = "",
        images: list[Image] | None = None,
    ) -> ProviderResponse:
        api_key = self.require_credential(config)
        model = normalise_model(config.model)
        data = await self._post(
            config,
            "/messages",
            self.build_payload(model, prompt, system_instruction, images),
            headers={"x-api-key": api_key, "anthropic-version": API_VERSION},
        )

        blocks = data.get("content") or []
        text = next(
            (b.get("text", "") for b in blocks if isinstance(b, dict) and b.get("type") == "text"),
            "",
        )
        usage = data.get("usage") or {}
        input_tokens = int(usage.get("input_tokens") or 0)
        output_tokens = int(usage.get("output_tokens") or 0)
        return ProviderResponse(
            text=text,
            usage=Usage(
                input_tokens=input_tokens,
                output_tokens=output_tokens,
                cost_usd=calculate_cost(model, input_tokens, output_tokens, self.kind),
                provider=self.kind.value,
                model=model,
            ),
        )
