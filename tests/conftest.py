"""Shared pytest fixtures for the AppForge test suite.

Provides reusable fixtures for:
- Build requests (empty project and a small existing 3-file project)
- Provider configs with an active and a fallback provider
- A scripted gateway that answers per step kind without any HTTP
- Recording callbacks that capture every orchestrator event in order
- Fast step policies so retry/backoff tests finish in milliseconds
"""

from __future__ import annotations

import asyncio
import json
from collections.abc import Callable
from typing import Any

import pytest

from appforge.callbacks import OrchestratorCallbacks
from appforge.config import Config, StepPolicy
from appforge.errors import ProviderError
from appforge.models import (
    AuditRecord,
    BuildRequest,
    Image,
    Message,
    Phase,
    ProviderConfig,
    ProviderKind,
    ProviderResponse,
    StepKind,
    Usage,
)
from appforge.prompts import DEFAULTS
from appforge.providers.selector import ProviderSelector, StaticProviderResolver
from appforge.usage import UsageSnapshot


# ---------------------------------------------------------------------------
# Canned step responses
# ---------------------------------------------------------------------------

DEFAULT_STEP_RESPONSES: dict[StepKind, dict[str, Any]] = {
    StepKind.DECISION: {
        "analysis": {"summary": "A small React app", "primary_goal": "ship", "complexity": "low"},
        "narrative_summary": "I'll build a small React app.",
    },
    StepKind.REQUIREMENTS: {"needs_backend": False, "explanation": "UI only"},
    StepKind.PHASE_PLANNER: {
        "phases": [{"id": "p1", "title": "Phase 1: UI", "goal": "Render the UI", "type": "ui"}]
    },
    StepKind.DESIGN: {"design_language": {"style": "modern"}, "routes": [{"path": "/"}]},
    StepKind.PLANNER: {
        "steps": [{"id": "s1", "path": "src/App.tsx", "action": "update", "title": "Update App"}]
    },
    StepKind.BUILDER: {
        "file_changes": [
            {"path": "src/App.tsx", "action": "update", "content": "export const App = () => null;"}
        ],
        "step_result": {"completed": True},
    },
    StepKind.SQL: {"sql": "CREATE TABLE todos (id uuid primary key, title text);"},
    StepKind.QA: {"status": "pass", "checks": [], "issues": [], "patches": []},
    StepKind.REPAIR: {"root_cause": "n/a", "patches": []},
}

KIND_BY_SYSTEM: dict[str, StepKind] = {text: kind for kind, text in DEFAULTS.items()}


def as_text(item: dict[str, Any] | str) -> str:
    return item if isinstance(item, str) else json.dumps(item)


# ---------------------------------------------------------------------------
# Scripted gateway
# ---------------------------------------------------------------------------


class ScriptedGateway:
    """Stand-in for ``ProviderGateway`` that answers by step kind.

    The step kind is recovered from the default system instruction.  Each
    kind has an optional queue of scripted items (response dicts, raw text,
    or exceptions to raise); once the queue is empty the default response
    is returned.  Providers listed in ``failing`` always raise
    ``ProviderError``.  ``delay`` applies to every provider, or only to the
    providers in ``slow`` when that set is given.
    """

    def __init__(
        self,
        script: dict[StepKind, list[Any]] | None = None,
        responses: dict[StepKind, dict[str, Any] | str] | None = None,
        failing: set[ProviderKind] | None = None,
        delay: float = 0.0,
        slow: set[ProviderKind] | None = None,
        on_call: Callable[[StepKind], None] | None = None,
    ) -> None:
        self.script = {k: list(v) for k, v in (script or {}).items()}
        self.responses: dict[StepKind, Any] = {**DEFAULT_STEP_RESPONSES, **(responses or {})}
        self.failing = set(failing or set())
        self.delay = delay
        self.slow = set(slow or set())
        self.on_call = on_call
        self.calls: list[tuple[ProviderKind, StepKind]] = []
        self.prompts: list[tuple[StepKind, str]] = []

    async def invoke(
        self,
        config: ProviderConfig,
        prompt: str,
        system_instruction: str = "",
        images: list[Image] | None = None,
    ) -> ProviderResponse:
        kind = KIND_BY_SYSTEM[system_instruction]
        self.calls.append((config.kind, kind))
        self.prompts.append((kind, prompt))
        if self.on_call is not None:
            self.on_call(kind)
        if self.delay and (not self.slow or config.kind in self.slow):
            await asyncio.sleep(self.delay)
        if config.kind in self.failing:
            raise ProviderError(config.kind.value, "service unavailable", status=503)

        queue = self.script.get(kind)
        item = queue.pop(0) if queue else self.responses[kind]
        if isinstance(item, BaseException):
            raise item
        return ProviderResponse(
            text=as_text(item),
            usage=Usage(
                input_tokens=100,
                output_tokens=50,
                cost_usd=0.001,
                provider=config.kind.value,
                model=config.model,
            ),
        )

    def kinds_called(self) -> list[StepKind]:
        return [kind for _, kind in self.calls]


# ---------------------------------------------------------------------------
# Recording callbacks
# ---------------------------------------------------------------------------


class RecordingCallbacks(OrchestratorCallbacks):
    """Captures every event as ``(name, payload)`` in arrival order."""

    def __init__(self) -> None:
        self.events: list[tuple[str, Any]] = []
        self.messages: list[Message] = []
        self.errors: list[tuple[str, int]] = []
        self.final_errors: list[tuple[str, AuditRecord | None]] = []
        self.successes: list[tuple[dict[str, str], str, AuditRecord, UsageSnapshot]] = []
        self.chunks: list[tuple[dict[str, str], str, UsageSnapshot]] = []
        self.cancelled = 0

    def names(self) -> list[str]:
        return [name for name, _ in self.events]

    async def on_plan_update(self, phases: list[Phase]) -> None:
        self.events.append(("plan_update", [p.model_copy() for p in phases]))

    async def on_message(self, message: Message) -> None:
        self.messages.append(message)
        self.events.append(("message", message))

    async def on_phase_start(self, index: int) -> None:
        self.events.append(("phase_start", index))

    async def on_phase_complete(self, index: int) -> None:
        self.events.append(("phase_complete", index))

    async def on_step_start(self, index: int, label: str) -> None:
        self.events.append(("step_start", (index, label)))

    async def on_step_complete(self, index: int) -> None:
        self.events.append(("step_complete", index))

    async def on_chunk_complete(self, files: dict[str, str], explanation: str, usage: UsageSnapshot) -> None:
        self.chunks.append((files, explanation, usage))
        self.events.append(("chunk_complete", explanation))

    async def on_success(
        self,
        files: dict[str, str],
        explanation: str,
        audit: AuditRecord,
        usage: UsageSnapshot,
    ) -> None:
        self.successes.append((files, explanation, audit, usage))
        self.events.append(("success", explanation))

    async def on_error(self, message: str, retries_remaining: int) -> None:
        self.errors.append((message, retries_remaining))
        self.events.append(("error", (message, retries_remaining)))

    async def on_final_error(self, message: str, audit: AuditRecord | None = None) -> None:
        self.final_errors.append((message, audit))
        self.events.append(("final_error", message))

    async def on_cancelled(self) -> None:
        self.cancelled += 1
        self.events.append(("cancelled", None))


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def build_request() -> BuildRequest:
    """Request against an empty project."""
    return BuildRequest(prompt="build a todo list", project_id="proj-1", user_id="user-1")


@pytest.fixture
def existing_files() -> dict[str, str]:
    """A small 3-file React project."""
    return {
        "index.html": "<div id=\"root\"></div>",
        "src/main.tsx": "import { App } from './App';",
        "src/App.tsx": "export const App = () => <button className=\"bg-red-500\" />;",
    }


@pytest.fixture
def provider_configs() -> list[ProviderConfig]:
    """Google active, OpenAI fallback, Anthropic unconfigured."""
    return [
        ProviderConfig(
            kind=ProviderKind.GOOGLE, name="Google Gemini", api_key="g-key",
            model="gemini-2.5-flash", is_active=True,
        ),
        ProviderConfig(
            kind=ProviderKind.OPENAI, name="OpenAI", api_key="o-key",
            model="gpt-4o", is_fallback=True,
        ),
        ProviderConfig(kind=ProviderKind.ANTHROPIC, name="Anthropic Claude", model="claude-3-5-sonnet-20241022"),
    ]


@pytest.fixture
def selector(provider_configs: list[ProviderConfig]) -> ProviderSelector:
    return ProviderSelector(StaticProviderResolver(provider_configs))


@pytest.fixture
def fast_policy() -> StepPolicy:
    """Three attempts, short timeout, near-zero backoff."""
    return StepPolicy(timeout_seconds=2.0, max_attempts=3, backoff_base_seconds=0.001)


@pytest.fixture
def fast_config(fast_policy: StepPolicy, tmp_path) -> Config:
    return Config(step=fast_policy, output_dir=tmp_path / "out")


@pytest.fixture
def gateway() -> ScriptedGateway:
    return ScriptedGateway()


@pytest.fixture
def callbacks() -> RecordingCallbacks:
    return RecordingCallbacks()


@pytest.fixture
def make_gateway() -> Callable[..., ScriptedGateway]:
    """Factory for gateways with a custom script, e.g. ``make_gateway(failing={...})``."""
    return ScriptedGateway
