"""AppForge: a multi-step LLM generation orchestrator.

Turns a natural-language request into a multi-file project by driving a
sequence of provider calls (decision, requirements, phase planning,
design, per-phase plan/build, schema, QA and repair) with retries,
timeouts, provider fallback, cost accounting and cooperative cancellation.
"""

from .callbacks import OrchestratorCallbacks
from .cancellation import CancellationToken
from .config import Config, ProviderSettings, StepPolicy
from .errors import AppForgeError, Cancelled, ConfigError, DecodeError, ProviderError, StepFailed, StepTimeout
from .executor import StepAttempt, StepExecutor
from .models import BuildRequest, FileChange, Image, Phase, ProviderConfig, ProviderKind, RunOutcome, StepKind
from .orchestrator import GenerationOrchestrator
from .usage import UsageAccumulator, UsageSnapshot

__all__ = [
    "AppForgeError",
    "BuildRequest",
    "Cancelled",
    "CancellationToken",
    "Config",
    "ConfigError",
    "DecodeError",
    "FileChange",
    "GenerationOrchestrator",
    "Image",
    "OrchestratorCallbacks",
    "Phase",
    "ProviderConfig",
    "ProviderError",
    "ProviderKind",
    "ProviderSettings",
    "RunOutcome",
    "StepAttempt",
    "StepExecutor",
    "StepFailed",
    "StepKind",
    "StepPolicy",
    "StepTimeout",
    "UsageAccumulator",
    "UsageSnapshot",
]
