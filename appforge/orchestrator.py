"""AppForge Generation Orchestrator.

Drives one build request through the generation pipeline:

Decision          -- high-level build strategy and narrative.
Requirements      -- does the project need a backend? (may halt the run)
Phase planning    -- ordered list of ui/logic/backend phases.
Design            -- global design spec shared by every build step.
Per phase         -- plan file-level steps, then build each file in order.
Schema            -- SQL schema, only when a backend is required.
QA / Repair       -- review the files; apply one round of repair patches.
Success           -- report files, summary, audit record and usage.

Each step goes through :class:`~appforge.executor.StepExecutor`, which owns
retry, timeout and fallback.  The orchestrator owns the state machine, the
callback contract and the mapping of step failures to run outcomes.

Usage::

    orchestrator = GenerationOrchestrator(request, callbacks, config=Config.from_env())
    outcome = await orchestrator.run()
    if outcome is RunOutcome.AWAITING_BACKEND:
        ...  # provision a backend, then
        outcome = await orchestrator.resume()
"""

from __future__ import annotations

import json
import time
import traceback
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import Any

from rich.panel import Panel

from .callbacks import OrchestratorCallbacks
from .cancellation import CancellationToken
from .collaborators import (
    BUILD_COMPLETED,
    BUILD_FAILED,
    BUILD_PHASE_COMPLETED,
    BUILD_PHASE_STARTED,
    BUILD_STARTED,
    CLOUD_CONNECTION_REQUESTED,
    BackendStatus,
    BillingCollaborator,
    NullNotifier,
    PromptStore,
    SideEffectDispatcher,
    StaticBackendStatus,
    WebhookNotifier,
)
from .config import Config
from .errors import Cancelled, StepFailed
from .executor import StepExecutor
from .models import (
    CONNECT_BACKEND,
    AuditRecord,
    BuildRequest,
    FileAction,
    FileChange,
    Message,
    Phase,
    PhaseStatus,
    PipelineState,
    RunOutcome,
    StepKind,
)
from .prompts import SystemPromptCache
from .providers.gateway import ProviderGateway
from .providers.selector import ProviderSelector, StaticProviderResolver
from .usage import UsageAccumulator
from .utils import (
    console,
    format_cost,
    format_duration,
    print_error,
    print_phase_header,
    print_success,
    print_summary_table,
    print_warning,
    save_json,
)

FINAL_STEP_INDEX = 99


def context_json(payload: dict[str, Any]) -> str:
    """Serialise a step's context document."""
    return json.dumps(payload, ensure_ascii=False, default=str)


class GenerationOrchestrator:
    """Runs the generation pipeline for a single ``BuildRequest``.

    An instance owns its ``PipelineState`` and usage totals; it is not
    shared between runs.  ``run()`` may be called once; ``resume()`` is
    only valid after ``run()`` halted with ``AWAITING_BACKEND``.

    Attributes:
        state: Working memory for the run (files, phases, step results).
        usage: Token/cost totals for successful steps.
        executor: Step executor bound to this run.
    """

    def __init__(
        self,
        request: BuildRequest,
        callbacks: OrchestratorCallbacks | None = None,
        *,
        config: Config | None = None,
        gateway: ProviderGateway | None = None,
        selector: ProviderSelector | None = None,
        billing: BillingCollaborator | None = None,
        backend_status: BackendStatus | None = None,
        notifier: WebhookNotifier | None = None,
        prompt_store: PromptStore | None = None,
        cancel_token: CancellationToken | None = None,
    ) -> None:
        self.request = request
        self.callbacks = callbacks or OrchestratorCallbacks()
        self.config = config or Config()
        self.backend_status = backend_status or StaticBackendStatus(active=False)
        self.notifier = notifier or NullNotifier()
        self.cancel_token = cancel_token or CancellationToken()
        self.dispatcher = SideEffectDispatcher()
        self.usage = UsageAccumulator()
        self.state = PipelineState(accumulated_files=dict(request.existing_files))

        if selector is None:
            providers = self.config.providers
            selector = ProviderSelector(
                StaticProviderResolver(providers.to_provider_configs()),
                default_api_key=providers.default_api_key or providers.google_api_key,
            )
        self.executor = StepExecutor(
            gateway or ProviderGateway(timeout=self.config.step.timeout_seconds),
            selector,
            request,
            policy=self.config.step,
            prompt_cache=SystemPromptCache(prompt_store),
            usage=self.usage,
            billing=billing,
            dispatcher=self.dispatcher,
            cancel_token=self.cancel_token,
            on_retryable_error=self.callbacks.on_error,
        )
        self._started = False
        self._terminal_emitted = False

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def run(self) -> RunOutcome:
        """Execute the pipeline from the Decision step.

        Returns:
            How the run ended.  Step failures and cancellation are reported
            through callbacks and the returned outcome, never raised.
        """
        if self._started:
            raise RuntimeError("run() can only be called once per orchestrator; use resume()")
        self._started = True

        console.print(
            Panel(
                f"[bold bright_cyan]AppForge Build[/bold bright_cyan]\n"
                f"Project : {self.request.project_id}\n"
                f"Files   : {len(self.state.accumulated_files)} existing\n"
                f"Request : {self.request.prompt[:120]}",
                title="[bold]Build Start[/bold]",
                border_style="bright_cyan",
            )
        )
        self._notify(BUILD_STARTED, {"prompt": self.request.prompt[:500]})
        return await self._drive(self._run_from_decision)

    async def resume(self) -> RunOutcome:
        """Continue a run that halted awaiting a backend connection.

        Re-checks the backend; if it is active, continues at phase planning
        with the retained decision and requirements.  Otherwise halts again.
        """
        if self.state.outcome is not RunOutcome.AWAITING_BACKEND:
            raise RuntimeError("resume() is only valid after the run halted awaiting a backend")
        self.state.outcome = None
        return await self._drive(self._gate_and_build)

    def audit(self) -> AuditRecord:
        """Summarise the run so far."""
        qa = self.state.qa
        return AuditRecord(
            passed=bool(qa and (qa.passed or self.state.repaired)),
            qa_status=qa.status if qa else "not_run",
            issues=list(qa.issues) if qa else [],
            repaired=self.state.repaired,
            phases_total=len(self.state.phases),
            phases_completed=self.state.phases_completed(),
            files_produced=len(self.state.accumulated_files),
            skipped_steps=list(self.state.skipped_steps),
            failed_steps=list(self.state.failed_steps),
            error=self.state.error,
        )

    async def save_state(self, path: str | Path | None = None) -> Path:
        """Persist the pipeline state, audit record and usage as JSON."""
        target = Path(path) if path else self.config.state_path
        payload = {
            "project_id": self.request.project_id,
            "state": self.state.model_dump(mode="json"),
            "audit": self.audit().model_dump(mode="json"),
            "usage": self.usage.snapshot().model_dump(mode="json"),
        }
        await save_json(payload, target)
        return target

    # ------------------------------------------------------------------
    # Outcome mapping
    # ------------------------------------------------------------------

    async def _drive(self, stage: Callable[[], Awaitable[RunOutcome]]) -> RunOutcome:
        started = time.monotonic()
        try:
            outcome = await stage()
        except Cancelled:
            outcome = await self._cancelled()
        except StepFailed as exc:
            outcome = await self._failed(str(exc))
        except Exception as exc:
            tb = traceback.format_exc()
            console.print(f"[dim]{tb}[/dim]")
            outcome = await self._failed(f"Unexpected error: {exc}", detail=tb)
        finally:
            await self.dispatcher.drain()

        self._print_final_summary(outcome, time.monotonic() - started)
        return outcome

    async def _cancelled(self) -> RunOutcome:
        self.state.outcome = RunOutcome.CANCELLED
        if not self._terminal_emitted:
            self._terminal_emitted = True
            print_warning(f"Build cancelled: {self.cancel_token.reason or 'cancelled by caller'}")
            await self.callbacks.on_cancelled()
        return RunOutcome.CANCELLED

    async def _failed(self, message: str, detail: str | None = None) -> RunOutcome:
        self.state.outcome = RunOutcome.FAILED
        self.state.error = detail or message
        if not self._terminal_emitted:
            self._terminal_emitted = True
            print_error(f"Build failed: {message}")
            audit = self.audit()
            await self.callbacks.on_final_error(message, audit)
            self._notify(BUILD_FAILED, {"error": message})
        return RunOutcome.FAILED

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    async def _run_from_decision(self) -> RunOutcome:
        prompt = self.request.prompt
        self.cancel_token.raise_if_cancelled()

        print_phase_header("decision", "Decision")
        await self.callbacks.on_step_start(0, "Analyzing Intent...")
        self.state.decision = await self.executor.run_step(
            StepKind.DECISION, f"USER REQUEST: {prompt}"
        )
        self.cancel_token.raise_if_cancelled()

        print_phase_header("requirements", "Requirements")
        await self.callbacks.on_step_start(0, "Checking Requirements...")
        self.state.requirements = await self.executor.run_step(
            StepKind.REQUIREMENTS,
            f"Analyze backend needs: {prompt}\n\n"
            f"DECISION_CONTEXT: {context_json(self.state.decision.model_dump())}",
        )
        return await self._gate_and_build()

    async def _gate_and_build(self) -> RunOutcome:
        self.cancel_token.raise_if_cancelled()
        requirements = self.state.requirements
        if requirements is not None and requirements.needs_backend:
            if not await self.backend_status.is_backend_active(self.request.project_id):
                return await self._halt_for_backend()
            console.print("  [green]+[/green] Backend connection active")
        return await self._build_from_planning()

    async def _halt_for_backend(self) -> RunOutcome:
        self.state.outcome = RunOutcome.AWAITING_BACKEND
        print_warning("Backend required but not connected -- halting until it is provisioned.")
        await self.callbacks.on_message(
            Message(
                content=(
                    "**Backend Required**\n\n"
                    "This project requires a database. Please connect a backend to proceed."
                ),
                requires_action=CONNECT_BACKEND,
            )
        )
        self._notify(CLOUD_CONNECTION_REQUESTED, {"reason": "backend_required"})
        return RunOutcome.AWAITING_BACKEND

    async def _build_from_planning(self) -> RunOutcome:
        decision = self.state.decision
        requirements = self.state.requirements
        prompt = self.request.prompt
        if decision is None or requirements is None:
            raise RuntimeError("planning needs the decision and requirements results")

        await self.callbacks.on_message(
            Message(content=f"**Plan Confirmed:**\n\n{decision.narrative()}")
        )
        self.cancel_token.raise_if_cancelled()

        print_phase_header("planning", "Phase Planning")
        await self.callbacks.on_step_start(0, "Planning Phases...")
        plan = await self.executor.run_step(
            StepKind.PHASE_PLANNER,
            context_json({
                "request": prompt,
                "analysis": decision.model_dump(),
                "requirements": requirements.model_dump(by_alias=True),
            }),
        )
        self.state.phases = [
            Phase(title=p.title, description=p.description, type=p.type) for p in plan.phases
        ]
        await self.callbacks.on_plan_update(self.state.phases)
        self.cancel_token.raise_if_cancelled()

        print_phase_header("design", "Design")
        await self.callbacks.on_step_start(0, "Designing UI/UX...")
        self.state.design = await self.executor.run_step(
            StepKind.DESIGN,
            context_json({
                "user_input": prompt,
                "decision": decision.model_dump(),
                "phases": plan.model_dump(mode="json"),
            }),
        )

        for index, phase in enumerate(self.state.phases):
            await self._run_phase(index, phase)

        if requirements.needs_backend:
            await self._generate_schema()

        await self._review()
        return await self._succeed()

    async def _run_phase(self, index: int, phase: Phase) -> None:
        """Plan and build one phase. Failures inside a phase never end the run."""
        self.cancel_token.raise_if_cancelled()
        print_phase_header("build", f"Phase {index + 1}: {phase.title or phase.type.value}")

        phase.status = PhaseStatus.ACTIVE
        await self.callbacks.on_phase_start(index)
        await self.callbacks.on_plan_update(self.state.phases)
        self._notify(BUILD_PHASE_STARTED, {"phase_index": index, "title": phase.title})

        await self.callbacks.on_step_start(index, f"Planning {phase.title}...")
        try:
            plan = await self.executor.run_step(
                StepKind.PLANNER,
                context_json({
                    "phase": phase.model_dump(mode="json"),
                    "design": self.state.design.model_dump() if self.state.design else {},
                    "user_request": self.request.prompt,
                    "existing_files": self.state.file_paths(),
                }),
            )
        except StepFailed as exc:
            phase.status = PhaseStatus.FAILED
            self.state.failed_steps.append(f"plan:{phase.title or phase.id}")
            print_error(f"  Planning failed for phase {index + 1}: {exc}")
            await self.callbacks.on_plan_update(self.state.phases)
            return

        for step in plan.steps:
            self.cancel_token.raise_if_cancelled()
            if step.path is None:
                label = step.id or step.title or "unnamed step"
                self.state.skipped_steps.append(label)
                print_warning(f"  Skipping build step '{label}': no file path")
                continue
            await self._build_file(index, phase, step.path, step.task())

        phase.status = PhaseStatus.DONE
        await self.callbacks.on_phase_complete(index)
        await self.callbacks.on_plan_update(self.state.phases)
        self._notify(BUILD_PHASE_COMPLETED, {"phase_index": index, "title": phase.title})

    async def _build_file(self, index: int, phase: Phase, path: str, task: str) -> None:
        await self.callbacks.on_step_start(index, f"Building {path}...")
        try:
            built = await self.executor.run_step(
                StepKind.BUILDER,
                context_json({
                    "task": task,
                    "file_path": path,
                    "design": self.state.design.model_dump() if self.state.design else {},
                    "existing_files": self.state.file_paths(),
                    "phase": phase.id,
                }),
            )
        except StepFailed as exc:
            self.state.failed_steps.append(path)
            print_error(f"  Build step for {path} failed: {exc}")
            return

        self.cancel_token.raise_if_cancelled()
        written = self.state.apply_changes(built.file_changes)
        console.print(f"  [green]+[/green] {path} ({len(written)} file change(s))")
        await self.callbacks.on_step_complete(index)
        await self.callbacks.on_chunk_complete(
            dict(self.state.accumulated_files), f"Built {path}", self.usage.snapshot()
        )

    async def _generate_schema(self) -> None:
        self.cancel_token.raise_if_cancelled()
        print_phase_header("schema", "Database Schema")
        await self.callbacks.on_step_start(len(self.state.phases), "Generating Database Schema...")
        schema = await self.executor.run_step(
            StepKind.SQL,
            context_json({
                "requirements": self.state.requirements.model_dump(by_alias=True),
                "decision": self.state.decision.model_dump(),
            }),
        )
        self.cancel_token.raise_if_cancelled()
        if schema.sql.strip():
            self.state.apply_changes([
                FileChange(path=self.config.schema_file_path, action=FileAction.CREATE, content=schema.sql)
            ])
            console.print(f"  [green]+[/green] {self.config.schema_file_path}")

    async def _review(self) -> None:
        self.cancel_token.raise_if_cancelled()
        print_phase_header("qa", "Final Review")
        await self.callbacks.on_step_start(FINAL_STEP_INDEX, "Final Review...")
        qa = await self.executor.run_step(
            StepKind.QA,
            context_json({
                "decision": self.state.decision.model_dump(),
                "files": self.state.accumulated_files,
            }),
        )
        self.state.qa = qa
        if qa.passed or not qa.patches:
            return

        self.cancel_token.raise_if_cancelled()
        print_phase_header("repair", "Repair")
        await self.callbacks.on_step_start(FINAL_STEP_INDEX, "Applying Repairs...")
        repair = await self.executor.run_step(
            StepKind.REPAIR,
            context_json({"issues": qa.issues, "files": self.state.accumulated_files}),
        )
        self.cancel_token.raise_if_cancelled()
        patched = self.state.apply_patches(repair.patches)
        self.state.repaired = True
        console.print(f"  Repair patched {len(patched)} file(s)")

    async def _succeed(self) -> RunOutcome:
        self.cancel_token.raise_if_cancelled()
        self.state.outcome = RunOutcome.SUCCEEDED
        self._terminal_emitted = True
        audit = self.audit()
        await self.callbacks.on_message(
            Message(content="**Build Complete**\n\nYour project is ready!")
        )
        await self.callbacks.on_success(
            dict(self.state.accumulated_files),
            f"**Build Complete**\n\n{self.state.decision.summary()}",
            audit,
            self.usage.snapshot(),
        )
        self._notify(BUILD_COMPLETED, {"files": len(self.state.accumulated_files)})
        return RunOutcome.SUCCEEDED

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _notify(self, event_type: str, data: dict[str, Any]) -> None:
        context = {"project_id": self.request.project_id, "user_id": self.request.user_id}
        self.dispatcher.spawn(
            self.notifier.notify(event_type, data, context), label=f"webhook:{event_type}"
        )

    def _print_final_summary(self, outcome: RunOutcome, elapsed: float) -> None:
        snapshot = self.usage.snapshot()
        audit = self.audit()
        print_summary_table(
            {
                "Outcome": outcome.value,
                "Duration": format_duration(elapsed),
                "Phases": f"{audit.phases_completed}/{audit.phases_total}",
                "Files": str(audit.files_produced),
                "Skipped steps": str(len(audit.skipped_steps)),
                "Failed steps": str(len(audit.failed_steps)),
                "QA": audit.qa_status,
                "Tokens": f"{snapshot.input_tokens} in / {snapshot.output_tokens} out",
                "Cost": format_cost(snapshot.cost_usd),
            },
            title="Build Summary",
        )
        if outcome is RunOutcome.SUCCEEDED:
            print_success("Build complete.")
