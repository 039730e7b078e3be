"""Google Gemini backend (``generateContent`` REST endpoint)."""

from __future__ import annotations

from typing import Any

from ..errors import ProviderError
from ..models import Image, ProviderConfig, ProviderKind, ProviderResponse, Usage
from .base import ProviderBackend, wants_json
from .pricing import calculate_cost

DEFAULT_MODEL = "gemini-2.5-flash"


class GoogleBackend(ProviderBackend):
    """Calls ``POST /models/{model}:generateContent?key=...``."""

    kind = ProviderKind.GOOGLE
    default_base_url = "https://generativelanguage.googleapis.com/v1beta"

    @staticmethod
    def build_payload(
        prompt: str,
        system_instruction: str = "",
        images: list[Image] | None = None,
    ) -> dict[str, Any]:
        parts: list[dict[str, Any]] = [{"text": prompt}]
        for image in images or []:
            parts.append({"inlineData": {"mimeType": image.mime_type, "data": image.b64()}})

        generation_config: dict[str, Any] = {"temperature": 0.2, "maxOutputTokens": 8192}
        if wants_json(system_instruction):
            generation_config["responseMimeType"] = "application/json"

        payload: dict[str, Any] = {
            "contents": [{"role": "user", "parts": parts}],
            "generationConfig": generation_config,
        }
        if system_instruction:
            payload["systemInstruction"] = {"parts": [{"text": system_instruction}]}
        return payload

    @staticmethod
    def _extract_text(data: dict[str, Any]) -> str:
        """Concatenate the text parts of the first candidate."""
        candidates = data.get("candidates") or []
        if not candidates:
            raise ProviderError(ProviderKind.GOOGLE.value, "Response contained no candidates")
        parts = (candidates[0].get("content") or {}).get("parts") or []
        return "".join(str(part.get("text", "")) for part in parts if isinstance(part, dict))

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
            f"/models/{model}:generateContent",
            self.build_payload(prompt, system_instruction, images),
            params={"key": api_key},
        )

        meta = data.get("usageMetadata") or {}
        input_tokens = int(meta.get("promptTokenCount") or 0)
        output_tokens = int(meta.get("candidatesTokenCount") or 0)
        return ProviderResponse(
            text=self._extract_text(data),
            usage=Usage(
                input_tokens=input_tokens,
                output_tokens=output_tokens,
                cost_usd=calculate_cost(model, input_tokens, output_tokens, self.kind),
                provider=self.kind.value,
                model=model,
            ),
        )
