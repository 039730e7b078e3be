"""Step execution with timeout, retry, backoff and provider fallback.

One call to :meth:`StepExecutor.run_step` is one logical pipeline step:

1. Pick the active provider and call it.
2. If that call fails, make exactly one call to the fallback provider.
3. Bound each provider call by the step timeout; an expired call counts as a
   provider failure, so it can still reach the fallback.  The pair of calls
   is raced against the cancellation token.
4. Decode the reply into the typed result for the step kind.
5. On a retryable failure, notify the caller, back off and try again, up to
   ``max_attempts`` times.

Usage is recorded and billing dispatched only once a step has produced a
valid result.  Every attempt is kept in ``history`` for reporting.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from rich.panel import Panel
from rich.table import Table

from .cancellation import CancellationToken
from .collaborators import BillingCollaborator, SideEffectDispatcher
from .config import StepPolicy
from .decoder import decode_json_object
from .errors import Cancelled, ConfigError, DecodeError, ProviderError, StepFailed, StepTimeout
from .models import BuildRequest, ProviderConfig, ProviderResponse, StepKind, StepResult, parse_step_result
from .prompts import SystemPromptCache
from .providers.gateway import ProviderGateway
from .providers.selector import ProviderSelector
from .usage import UsageAccumulator
from .utils import console, format_duration, print_warning

RetryNotifier = Callable[[str, int], Awaitable[None]]


@dataclass
class StepAttempt:
    """Record of a single step attempt."""

    step: str
    attempt_number: int
    provider: str
    used_fallback: bool
    success: bool
    duration_seconds: float
    error: str | None = None
    backoff_seconds: float = 0.0


class StepExecutor:
    """Runs pipeline steps for one build request.

    Args:
        gateway: Provider gateway used for every model call.
        selector: Chooses the active and fallback provider per attempt.
        request: The build request; supplies images and billing identity.
        policy: Timeout/retry settings.
        prompt_cache: Resolves system instructions when none is passed.
        usage: Accumulator that receives usage of successful steps.
        billing: Optional billing collaborator, charged fire-and-forget.
        dispatcher: Runs billing side effects in the background.
        cancel_token: Token observed before and during every attempt.
        on_retryable_error: Awaited before each retry with the error
            message and the number of attempts remaining.
    """

    def __init__(
        self,
        gateway: ProviderGateway,
        selector: ProviderSelector,
        request: BuildRequest,
        *,
        policy: StepPolicy | None = None,
        prompt_cache: SystemPromptCache | None = None,
        usage: UsageAccumulator | None = None,
        billing: BillingCollaborator | None = None,
        dispatcher: SideEffectDispatcher | None = None,
        cancel_token: CancellationToken | None = None,
        on_retryable_error: RetryNotifier | None = None,
    ) -> None:
        self.gateway = gateway
        self.selector = selector
        self.request = request
        self.policy = policy or StepPolicy()
        self.prompt_cache = prompt_cache or SystemPromptCache()
        self.usage = usage or UsageAccumulator()
        self.billing = billing
        self.dispatcher = dispatcher or SideEffectDispatcher()
        self.cancel_token = cancel_token or CancellationToken()
        self.on_retryable_error = on_retryable_error
        self.history: list[StepAttempt] = []
        self._provider_label = ""
        self._used_fallback = False

    # ------------------------------------------------------------------
    # Provider call with single fallback
    # ------------------------------------------------------------------

    async def _invoke(
        self, kind: StepKind, config: ProviderConfig, prompt: str, system: str
    ) -> ProviderResponse:
        self._provider_label = config.label
        try:
            return await asyncio.wait_for(
                self.gateway.invoke(config, prompt, system, list(self.request.images)),
                timeout=self.policy.timeout_seconds,
            )
        except asyncio.TimeoutError as exc:
            raise StepTimeout(kind.value, self.policy.timeout_seconds) from exc

    async def _generate(
        self, kind: StepKind, prompt: str, system: str
    ) -> tuple[ProviderResponse, ProviderConfig, bool]:
        """Call the active provider, falling back once on a provider failure."""
        self._used_fallback = False
        active = await self.selector.select_active()
        try:
            return await self._invoke(kind, active, prompt, system), active, False
        except ProviderError as exc:
            fallback = await self.selector.select_fallback(active)
            if fallback is None:
                raise
            console.print(
                Panel(
                    f"[magenta]Primary provider failed, trying fallback[/magenta]\n"
                    f"  Primary : {active.label} ({exc})\n"
                    f"  Fallback: {fallback.label} / {fallback.model}",
                    title="Provider Fallback",
                    border_style="magenta",
                )
            )
            self._used_fallback = True
            return await self._invoke(kind, fallback, prompt, system), fallback, True

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def run_step(
        self,
        kind: StepKind | str,
        prompt: str,
        system_instruction: str | None = None,
        *,
        op_type: str | None = None,
    ) -> StepResult:
        """Execute one step and return its typed result.

        Args:
            kind: Step kind; selects the result variant and default prompt.
            prompt: User-side prompt (usually a JSON context document).
            system_instruction: Explicit system instruction. When omitted
                it is resolved through the prompt cache.
            op_type: Billing operation tag. Defaults to the step kind.

        Raises:
            Cancelled: The token fired before or during an attempt.
            StepFailed: Attempts exhausted, or a configuration error.
        """
        kind = StepKind(kind)
        op = op_type or kind.value
        if system_instruction is None:
            system_instruction = await self.prompt_cache.for_step(kind)

        max_attempts = self.policy.max_attempts
        last_error: Exception | None = None

        for attempt in range(1, max_attempts + 1):
            self.cancel_token.raise_if_cancelled()
            self._provider_label = ""
            self._used_fallback = False
            started = time.monotonic()
            try:
                response, config, used_fallback = await self.cancel_token.guard(
                    self._generate(kind, prompt, system_instruction)
                )
                result = parse_step_result(kind, decode_json_object(response.text))
            except Cancelled:
                raise
            except ConfigError as exc:
                self._record(kind, attempt, started, success=False, error=str(exc))
                raise StepFailed(kind.value, exc) from exc
            except (ProviderError, DecodeError) as exc:
                last_error = exc
            else:
                self._record(kind, attempt, started, success=True)
                self._commit(op, prompt, response, config, used_fallback)
                return result

            remaining = max_attempts - attempt
            delay = self.policy.backoff_delay(attempt) if remaining else 0.0
            self._record(kind, attempt, started, success=False, error=str(last_error), backoff=delay)
            print_warning(f"Step '{kind.value}' attempt {attempt}/{max_attempts} failed: {last_error}")
            if remaining:
                if self.on_retryable_error is not None:
                    await self.on_retryable_error(str(last_error), remaining)
                await self.cancel_token.sleep(delay)

        raise StepFailed(kind.value, last_error)

    # ------------------------------------------------------------------
    # Bookkeeping
    # ------------------------------------------------------------------

    def _record(
        self,
        kind: StepKind,
        attempt: int,
        started: float,
        *,
        success: bool,
        error: str | None = None,
        backoff: float = 0.0,
    ) -> None:
        self.history.append(
            StepAttempt(
                step=kind.value,
                attempt_number=attempt,
                provider=self._provider_label,
                used_fallback=self._used_fallback,
                success=success,
                duration_seconds=time.monotonic() - started,
                error=error,
                backoff_seconds=backoff,
            )
        )

    def _commit(
        self,
        op: str,
        prompt: str,
        response: ProviderResponse,
        config: ProviderConfig,
        used_fallback: bool,
    ) -> None:
        usage = response.usage
        model = usage.model or config.model
        self.usage.record(usage.input_tokens, usage.output_tokens, usage.cost_usd, model=model)
        if self.billing is None:
            return
        op_tag = f"{op}_fallback" if used_fallback else op
        meta = {"note": "Fallback"} if used_fallback else {"prompt": prompt[:500]}
        self.dispatcher.spawn(
            self.billing.charge(
                self.request.user_id,
                self.request.project_id,
                op_tag,
                model,
                usage.input_tokens,
                usage.output_tokens,
                usage.cost_usd,
                meta,
            ),
            label=f"billing:{op_tag}",
        )

    def attempts_for(self, kind: StepKind | str) -> list[StepAttempt]:
        kind = StepKind(kind)
        return [a for a in self.history if a.step == kind.value]

    def history_table(self) -> Table:
        """Render the attempt history as a Rich table."""
        table = Table(title="Step Attempts", show_header=True, header_style="bold cyan")
        table.add_column("Step", style="dim", no_wrap=True)
        table.add_column("#", justify="right")
        table.add_column("Provider")
        table.add_column("Result")
        table.add_column("Duration", justify="right")
        for a in self.history:
            provider = f"{a.provider} (fallback)" if a.used_fallback else a.provider
            outcome = "[green]ok[/green]" if a.success else f"[red]{(a.error or 'failed')[:60]}[/red]"
            table.add_row(a.step, str(a.attempt_number), provider, outcome, format_duration(a.duration_seconds))
        return table
