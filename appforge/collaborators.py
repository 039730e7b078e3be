"""Interfaces to systems outside the orchestrator core.

The orchestrator talks to billing, backend provisioning, webhook delivery
and prompt storage only through the protocols below.  In-memory and null
implementations are provided for the CLI and for tests.  Side effects that
must not block or fail the run (billing, webhooks) are launched through a
``SideEffectDispatcher``.
"""

from __future__ import annotations

import asyncio
import time
import uuid
from collections.abc import Coroutine
from typing import Any, Protocol

from pydantic import BaseModel, Field

from .utils import print_warning

CREDITS_PER_USD = 10.0
MIN_CHARGE_CREDITS = 0.00001

# Webhook event types emitted by the orchestrator.
BUILD_STARTED = "build.started"
BUILD_PHASE_STARTED = "build.phase_started"
BUILD_PHASE_COMPLETED = "build.phase_completed"
BUILD_COMPLETED = "build.completed"
BUILD_FAILED = "build.failed"
CLOUD_CONNECTION_REQUESTED = "cloud.connection_requested"


# ---------------------------------------------------------------------------
# Protocols
# ---------------------------------------------------------------------------


class BillingCollaborator(Protocol):
    async def charge(
        self,
        user_id: str,
        project_id: str,
        op_type: str,
        model: str,
        input_tokens: int,
        output_tokens: int,
        cost_usd: float,
        meta: dict[str, Any] | None = None,
    ) -> float: ...


class BackendStatus(Protocol):
    async def is_backend_active(self, project_id: str) -> bool: ...


class WebhookNotifier(Protocol):
    async def notify(
        self,
        event_type: str,
        data: dict[str, Any],
        context: dict[str, Any] | None = None,
    ) -> None: ...


class PromptStore(Protocol):
    async def get(self, key: str) -> str | None: ...


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------


class ChargeRecord(BaseModel):
    """One billing ledger entry."""

    user_id: str
    project_id: str
    op_type: str
    model: str = Field(default="")
    input_tokens: int = Field(default=0)
    output_tokens: int = Field(default=0)
    cost_usd: float = Field(default=0.0)
    credits: float = Field(default=0.0)
    meta: dict[str, Any] = Field(default_factory=dict)


class WebhookEvent(BaseModel):
    """Envelope for an outgoing webhook event."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    type: str
    timestamp: float = Field(default_factory=time.time)
    context: dict[str, Any] = Field(default_factory=dict)
    data: dict[str, Any] = Field(default_factory=dict)
    source: str = Field(default="appforge")


def credits_for(cost_usd: float) -> float:
    """Convert a USD cost to credits, never charging less than the minimum."""
    return max(cost_usd * CREDITS_PER_USD, MIN_CHARGE_CREDITS)


# ---------------------------------------------------------------------------
# In-memory / null implementations
# ---------------------------------------------------------------------------


class InMemoryBilling:
    """Ledger kept in memory.

    Args:
        balance: Optional starting credit balance.  When set, each charge is
            deducted from it (the balance may go negative; enforcing quotas
            is the caller's concern).
    """

    def __init__(self, balance: float | None = None) -> None:
        self.balance = balance
        self.charges: list[ChargeRecord] = []

    async def charge(
        self,
        user_id: str,
        project_id: str,
        op_type: str,
        model: str,
        input_tokens: int,
        output_tokens: int,
        cost_usd: float,
        meta: dict[str, Any] | None = None,
    ) -> float:
        credits = credits_for(cost_usd)
        self.charges.append(
            ChargeRecord(
                user_id=user_id,
                project_id=project_id,
                op_type=op_type,
                model=model,
                input_tokens=input_tokens,
                output_tokens=output_tokens,
                cost_usd=cost_usd,
                credits=credits,
                meta=dict(meta or {}),
            )
        )
        if self.balance is not None:
            self.balance -= credits
        return credits

    @property
    def op_types(self) -> list[str]:
        return [c.op_type for c in self.charges]

    @property
    def total_credits(self) -> float:
        return sum(c.credits for c in self.charges)


class StaticBackendStatus:
    """Backend status that never changes unless ``active`` is reassigned."""

    def __init__(self, active: bool = False) -> None:
        self.active = active

    async def is_backend_active(self, project_id: str) -> bool:
        return self.active


class NullNotifier:
    async def notify(
        self,
        event_type: str,
        data: dict[str, Any],
        context: dict[str, Any] | None = None,
    ) -> None:
        return None


class RecordingNotifier:
    """Keeps every event it is asked to deliver."""

    def __init__(self) -> None:
        self.events: list[WebhookEvent] = []

    async def notify(
        self,
        event_type: str,
        data: dict[str, Any],
        context: dict[str, Any] | None = None,
    ) -> None:
        self.events.append(WebhookEvent(type=event_type, data=dict(data), context=dict(context or {})))

    @property
    def types(self) -> list[str]:
        return [e.type for e in self.events]


class DictPromptStore:
    """Prompt overrides held in a plain mapping."""

    def __init__(self, prompts: dict[str, str] | None = None) -> None:
        self.prompts = dict(prompts or {})
        self.lookups = 0

    async def get(self, key: str) -> str | None:
        self.lookups += 1
        return self.prompts.get(key)


# ---------------------------------------------------------------------------
# Fire-and-forget dispatch
# ---------------------------------------------------------------------------


class SideEffectDispatcher:
    """Runs side-effect coroutines as background tasks.

    Failures are reported on the console and kept in ``failures`` as
    ``(label, exception)`` pairs; they never propagate into the run.
    """

    def __init__(self) -> None:
        self._tasks: set[asyncio.Task[Any]] = set()
        self.failures: list[tuple[str, BaseException]] = []

    def spawn(self, coro: Coroutine[Any, Any, Any], label: str) -> asyncio.Task[Any]:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(lambda t: self._finished(t, label))
        return task

    def _finished(self, task: asyncio.Task[Any], label: str) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            self.failures.append((label, exc))
            print_warning(f"Side effect '{label}' failed: {exc}")

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def drain(self) -> None:
        """Wait for every outstanding side effect to settle."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
