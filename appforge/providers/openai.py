"""OpenAI backend (``/chat/completions``)."""

from __future__ import annotations

from typing import Any

from ..errors import ProviderError
from ..models import Image, ProviderConfig, ProviderKind, ProviderResponse, Usage
from .base import ProviderBackend, wants_json
from .pricing import calculate_cost

DEFAULT_MODEL = "gpt-4o"


def is_reasoning_model(model: str) -> bool:
    return "o1" in model or "o3" in model


class OpenAIBackend(ProviderBackend):
    """Chat-completions backend with bearer-token auth."""

    kind = ProviderKind.OPENAI
    default_base_url = "https://api.openai.com/v1"

    @staticmethod
    def build_payload(
        model: str,
        prompt: str,
        system_instruction: str = "",
        images: list[Image] | None = None,
    ) -> dict[str, Any]:
        reasoning = is_reasoning_model(model)
        messages: list[dict[str, Any]] = []
        if system_instruction:
            messages.append(
                {"role": "developer" if reasoning else "system", "content": system_instruction}
            )

        user_content: list[dict[str, Any]] = [{"type": "text", "text": prompt}]
        for image in images or []:
            user_content.append({"type": "image_url", "image_url": {"url": image.data_uri()}})
        messages.append({"role": "user", "content": user_content})

        payload: dict[str, Any] = {"model": model, "messages": messages}
        if reasoning:
            payload["max_completion_tokens"] = 25000
            return payload

        payload["temperature"] = 0.2
        payload["max_tokens"] = 4096
        if wants_json(system_instruction):
            payload["response_format"] = {"type": "json_object"}
        return payload

    async def generate(
        self,
        config: ProviderConfig,
        prompt: str,
        system_instruction: str = "",
        images: list[Image] | None = None,
    ) -> ProviderResponse:
        api_key = self.require_credential(config)
        model = config.model or DEFAULT_MODEL
        data = await self._post(
            config,
            "/chat/completions",
            self.build_payload(model, prompt, system_instruction, images),
            headers={"Authorization": f"Bearer {api_key}"},
        )

        choices = data.get("choices") or []
        if not choices:
            raise ProviderError(self.kind.value, "Response contained no choices")
        text = (choices[0].get("message") or {}).get("content") or ""

        usage = data.get("usage") or {}
        input_tokens = int(usage.get("prompt_tokens") or 0)
        output_tokens = int(usage.get("completion_tokens") or 0)
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
