"""Shared HTTP plumbing for provider backends.

Every backend opens one ``httpx.AsyncClient`` per call and translates every
transport or HTTP failure into :class:`~appforge.errors.ProviderError`.
Backends never retry; retry and fallback policy lives in the step executor.
"""

from __future__ import annotations

from typing import Any

import httpx

from ..errors import ConfigError, ProviderError
from ..models import Image, ProviderConfig, ProviderKind, ProviderResponse


class ProviderBackend:
    """Base class for one provider's request/response mapping."""

    kind: ProviderKind
    default_base_url: str = ""

    def __init__(self, timeout: float = 120.0) -> None:
        self.timeout = timeout

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _client(self, base_url: str) -> httpx.AsyncClient:
        """Return a fresh ``AsyncClient`` configured with *base_url* and our timeout."""
        return httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            timeout=httpx.Timeout(self.timeout, connect=10.0),
        )

    def base_url(self, config: ProviderConfig) -> str:
        return (config.base_url or self.default_base_url).rstrip("/")

    @staticmethod
    def _error_detail(response: httpx.Response) -> str:
        """Best-effort human-readable error text from a failed response."""
        try:
            data = response.json()
        except ValueError:
            return response.text[:500]
        if isinstance(data, dict):
            err = data.get("error")
            if isinstance(err, dict) and err.get("message"):
                return str(err["message"])
            if isinstance(err, str):
                return err
        return response.text[:500]

    async def _post(
        self,
        config: ProviderConfig,
        path: str,
        payload: dict[str, Any],
        headers: dict[str, str] | None = None,
        params: dict[str, str] | None = None,
    ) -> dict[str, Any]:
        """POST *payload* and return the decoded JSON envelope.

        Raises:
            ProviderError: On connect/timeout/HTTP errors or a non-JSON body.
        """
        base_url = self.base_url(config)
        provider = self.kind.value
        try:
            async with self._client(base_url) as client:
                response = await client.post(path, json=payload, headers=headers, params=params)
                response.raise_for_status()
                data = response.json()
        except httpx.ConnectError as exc:
            raise ProviderError(provider, f"Cannot connect to {base_url}: {exc}") from exc
        except httpx.TimeoutException as exc:
            raise ProviderError(provider, f"Request timed out after {self.timeout}s") from exc
        except httpx.HTTPStatusError as exc:
            raise ProviderError(
                provider,
                self._error_detail(exc.response),
                status=exc.response.status_code,
            ) from exc
        except httpx.HTTPError as exc:
            raise ProviderError(provider, f"Transport error: {exc}") from exc
        except ValueError as exc:
            raise ProviderError(provider, f"Malformed response body: {exc}") from exc

        if not isinstance(data, dict):
            raise ProviderError(provider, "Malformed response envelope")
        return data

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def require_credential(self, config: ProviderConfig) -> str:
        if not config.has_credential:
            raise ConfigError(f"API key missing for {config.label}")
        return config.api_key.strip()  # type: ignore[union-attr]

    async def generate(
        self,
        config: ProviderConfig,
        prompt: str,
        system_instruction: str = "",
        images: list[Image] | None = None,
    ) -> ProviderResponse:
        raise NotImplementedError


def wants_json(system_instruction: str) -> bool:
    """True when the system instruction asks for JSON output."""
    return "json" in (system_instruction or "").lower()
