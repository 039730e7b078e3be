"""Event contract between the orchestrator and its caller.

Subclass ``OrchestratorCallbacks`` and override only the events you care
about; every method defaults to an async no-op.  The orchestrator awaits
each callback in order, so a slow callback slows the run.
"""

from __future__ import annotations

from .models import AuditRecord, Message, Phase
from .usage import UsageSnapshot


class OrchestratorCallbacks:
    """No-op base for run observers."""

    async def on_plan_update(self, phases: list[Phase]) -> None:
        """Phase list finalised or a phase's status changed."""

    async def on_message(self, message: Message) -> None:
        """Narrative/status message, including the connect-backend action."""

    async def on_phase_start(self, index: int) -> None:
        pass

    async def on_phase_complete(self, index: int) -> None:
        pass

    async def on_step_start(self, index: int, label: str) -> None:
        pass

    async def on_step_complete(self, index: int) -> None:
        pass

    async def on_chunk_complete(
        self, files: dict[str, str], explanation: str, usage: UsageSnapshot
    ) -> None:
        """Incremental snapshot after each applied build step."""

    async def on_success(
        self,
        files: dict[str, str],
        explanation: str,
        audit: AuditRecord,
        usage: UsageSnapshot,
    ) -> None:
        pass

    async def on_error(self, message: str, retries_remaining: int) -> None:
        """Non-fatal failure; the step is about to be retried."""

    async def on_final_error(self, message: str, audit: AuditRecord | None = None) -> None:
        """Fatal failure; the run has ended."""

    async def on_cancelled(self) -> None:
        """The run observed cancellation and stopped. Emitted at most once."""
