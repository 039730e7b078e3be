"""Error taxonomy for the generation pipeline.

``ConfigError`` and ``StepFailed`` are terminal for the step that raised
them.  ``ProviderError`` (including ``StepTimeout``) and ``DecodeError`` are
retryable inside the step executor.  ``Cancelled`` is never conflated with a
failure: it only ever means the caller asked the run to stop.
"""

from __future__ import annotations


class AppForgeError(Exception):
    """Base class for every error raised by the orchestrator core."""


class ConfigError(AppForgeError):
    """A provider is missing its credential or is otherwise misconfigured."""


class DecodeError(AppForgeError):
    """A model response did not contain a usable JSON object."""


class ProviderError(AppForgeError):
    """Transport or provider-side failure of a single model call."""

    def __init__(self, provider: str, message: str, status: int | None = None) -> None:
        self.provider = provider
        self.status = status
        self.message = message
        prefix = f"{provider} error"
        if status is not None:
            prefix = f"{provider} error ({status})"
        super().__init__(f"{prefix}: {message}")


class StepTimeout(ProviderError):
    """A step exceeded its wall-clock budget."""

    def __init__(self, step: str, seconds: float) -> None:
        super().__init__(
            provider="timeout",
            message=f"Step '{step}' took longer than {seconds:g}s",
        )
        self.step = step
        self.seconds = seconds


class StepFailed(AppForgeError):
    """A step exhausted its retries (and fallback) without a usable result."""

    def __init__(self, kind: str, last_error: BaseException | None) -> None:
        self.kind = kind
        self.last_error = last_error
        detail = str(last_error) if last_error else "no attempt succeeded"
        super().__init__(f"Step '{kind}' failed: {detail}")


class Cancelled(AppForgeError):
    """The run's cancellation token was observed at a suspension point."""

    def __init__(self, reason: str = "cancelled by caller") -> None:
        self.reason = reason
        super().__init__(reason)
