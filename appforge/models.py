"""Pydantic v2 models for the AppForge generation pipeline.

Defines the request and provider records, the orchestrator's working state,
and the closed set of tagged step results.  Raw model output is decoded into
a plain JSON object by :mod:`appforge.decoder` and then validated into the
variant that matches the step kind via :func:`parse_step_result`; nothing
past that boundary handles untyped dictionaries.
"""

from __future__ import annotations

import base64
import time
import uuid
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from .errors import DecodeError


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------

class ProviderKind(str, Enum):
    """Interchangeable LLM backends."""
    GOOGLE = "google"
    OPENAI = "openai"
    ANTHROPIC = "anthropic"


class PhaseType(str, Enum):
    """Coarse category of a build phase."""
    UI = "ui"
    LOGIC = "logic"
    BACKEND = "backend"


class PhaseStatus(str, Enum):
    PENDING = "pending"
    ACTIVE = "active"
    DONE = "done"
    FAILED = "failed"


class FileAction(str, Enum):
    CREATE = "create"
    UPDATE = "update"


class StepKind(str, Enum):
    """Every kind of model call the orchestrator makes."""
    DECISION = "decision"
    REQUIREMENTS = "requirements"
    PHASE_PLANNER = "phase_planner"
    DESIGN = "design"
    PLANNER = "planner"
    BUILDER = "builder"
    SQL = "sql"
    QA = "qa"
    REPAIR = "repair"


class RunOutcome(str, Enum):
    """How a call to ``run()`` / ``resume()`` ended."""
    SUCCEEDED = "succeeded"
    AWAITING_BACKEND = "awaiting_backend"
    FAILED = "failed"
    CANCELLED = "cancelled"


CONNECT_BACKEND = "CONNECT_BACKEND"


# ---------------------------------------------------------------------------
# Request & provider records
# ---------------------------------------------------------------------------

_MAGIC_PREFIXES: tuple[tuple[str, str], ...] = (
    ("iVBORw", "image/png"),
    ("R0lGOD", "image/gif"),
    ("UklGR", "image/webp"),
)


class Image(BaseModel):
    """An image attached to the user's request."""

    model_config = ConfigDict(frozen=True)

    data: bytes = Field(..., description="Raw image bytes")
    mime_type: str = Field(default="image/jpeg", description="Image MIME type")

    @classmethod
    def from_data_uri(cls, value: str) -> "Image":
        """Build an image from a ``data:`` URI or a bare base64 string.

        Bare strings have their MIME type sniffed from the base64 magic
        prefix; anything unrecognised is treated as JPEG.
        """
        mime_type = "image/jpeg"
        payload = value.strip()
        if "base64," in payload:
            prefix, payload = payload.split("base64,", 1)
            header = prefix.removeprefix("data:").rstrip(";")
            if header:
                mime_type = header
        else:
            for magic, sniffed in _MAGIC_PREFIXES:
                if payload.startswith(magic):
                    mime_type = sniffed
                    break
        return cls(data=base64.b64decode(payload), mime_type=mime_type)

    def b64(self) -> str:
        """Return the image content as base64 text."""
        return base64.b64encode(self.data).decode("ascii")

    def data_uri(self) -> str:
        return f"data:{self.mime_type};base64,{self.b64()}"


class BuildRequest(BaseModel):
    """One user request. Created once per invocation and never mutated."""

    model_config = ConfigDict(frozen=True)

    prompt: str = Field(..., description="Natural-language request")
    images: list[Image] = Field(default_factory=list)
    project_id: str = Field(..., description="Target project identity")
    user_id: str = Field(..., description="Owning user identity")
    existing_files: dict[str, str] = Field(
        default_factory=dict, description="Current project files (path -> content)"
    )


class ProviderConfig(BaseModel):
    """Connection details for one provider. Read-only during a run."""

    model_config = ConfigDict(frozen=True)

    kind: ProviderKind
    name: str = Field(default="")
    api_key: Optional[str] = Field(default=None, repr=False)
    model: str = Field(default="")
    is_active: bool = Field(default=False)
    is_fallback: bool = Field(default=False)
    base_url: Optional[str] = Field(default=None)

    @property
    def has_credential(self) -> bool:
        return bool(self.api_key and self.api_key.strip())

    @property
    def label(self) -> str:
        return self.name or self.kind.value


class Usage(BaseModel):
    """Token and cost accounting for a single provider call."""
    input_tokens: int = Field(default=0, ge=0)
    output_tokens: int = Field(default=0, ge=0)
    cost_usd: float = Field(default=0.0, ge=0.0)
    provider: str = Field(default="")
    model: str = Field(default="")


class ProviderResponse(BaseModel):
    """Raw text plus usage returned by the provider gateway."""
    text: str = Field(default="")
    usage: Usage = Field(default_factory=Usage)


# ---------------------------------------------------------------------------
# Pipeline records
# ---------------------------------------------------------------------------

class Phase(BaseModel):
    """A coarse stage of the build."""
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    title: str = Field(default="")
    description: str = Field(default="")
    status: PhaseStatus = Field(default=PhaseStatus.PENDING)
    type: PhaseType = Field(default=PhaseType.UI)


class FileChange(BaseModel):
    """Instruction to create or overwrite one file."""
    path: str = Field(..., min_length=1)
    action: FileAction = Field(default=FileAction.UPDATE)
    content: str = Field(default="")

    @field_validator("action", mode="before")
    @classmethod
    def _coerce_action(cls, value: Any) -> FileAction:
        # Anything we do not recognise is applied with update semantics.
        try:
            return FileAction(str(value).strip().lower())
        except ValueError:
            return FileAction.UPDATE


class Message(BaseModel):
    """Narrative/status message surfaced to the caller."""
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    role: str = Field(default="assistant")
    content: str = Field(default="")
    timestamp: float = Field(default_factory=time.time)
    requires_action: Optional[str] = Field(default=None)


class AuditRecord(BaseModel):
    """End-of-run summary used for the success/failure report."""
    passed: bool = Field(default=False)
    qa_status: str = Field(default="not_run")
    issues: list[Any] = Field(default_factory=list)
    repaired: bool = Field(default=False)
    phases_total: int = Field(default=0)
    phases_completed: int = Field(default=0)
    files_produced: int = Field(default=0)
    skipped_steps: list[str] = Field(default_factory=list)
    failed_steps: list[str] = Field(default_factory=list)
    error: Optional[str] = Field(default=None)


# ---------------------------------------------------------------------------
# Tagged step results
# ---------------------------------------------------------------------------

# Opaque context fields tolerate a drifted container type by falling back to
# their empty default.

def _dict_or_empty(value: Any) -> dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _list_or_empty(value: Any) -> list[Any]:
    return value if isinstance(value, list) else []


class DecisionResult(BaseModel):
    """High-level build strategy. Extra keys are kept as opaque context."""

    model_config = ConfigDict(extra="allow")

    analysis: dict[str, Any] = Field(default_factory=dict)
    narrative_summary: str = Field(default="")
    ui_first_strategy: dict[str, Any] = Field(default_factory=dict)
    backend_intent: dict[str, Any] = Field(default_factory=dict)

    @field_validator("analysis", "ui_first_strategy", "backend_intent", mode="before")
    @classmethod
    def _opaque_dicts(cls, value: Any) -> dict[str, Any]:
        return _dict_or_empty(value)

    @field_validator("narrative_summary", mode="before")
    @classmethod
    def _none_to_empty(cls, value: Any) -> str:
        return "" if value is None else str(value)

    def narrative(self) -> str:
        return (
            self.narrative_summary
            or str(self.analysis.get("summary") or "")
            or "I've analyzed your request and I'm starting the build now."
        )

    def summary(self) -> str:
        return str(self.analysis.get("summary") or "") or "Project built successfully."


class RequirementsResult(BaseModel):
    """Whether persistent backend/storage/auth is required."""

    model_config = ConfigDict(populate_by_name=True)

    needs_backend: bool = Field(default=False)
    required_backend_features: dict[str, Any] = Field(
        default_factory=dict, alias="requiredBackendFeatures"
    )
    data_entities: list[Any] = Field(default_factory=list, alias="dataEntities")
    explanation: str = Field(default="")

    @model_validator(mode="before")
    @classmethod
    def _merge_backend_flags(cls, data: Any) -> Any:
        if isinstance(data, dict) and "backendRequired" in data:
            data = dict(data)
            data["needs_backend"] = bool(data.get("needs_backend")) or bool(
                data.pop("backendRequired")
            )
        return data


class PlannedPhase(BaseModel):
    title: str = Field(default="")
    description: str = Field(default="")
    type: PhaseType = Field(default=PhaseType.UI)

    @model_validator(mode="before")
    @classmethod
    def _description_from_goal(cls, data: Any) -> Any:
        if isinstance(data, dict) and not data.get("description") and data.get("goal"):
            data = {**data, "description": data["goal"]}
        return data

    @field_validator("type", mode="before")
    @classmethod
    def _default_type(cls, value: Any) -> PhaseType:
        try:
            return PhaseType(value)
        except ValueError:
            return PhaseType.UI

    @field_validator("title", "description", mode="before")
    @classmethod
    def _none_to_empty(cls, value: Any) -> str:
        return "" if value is None else str(value)


class PhasePlanResult(BaseModel):
    phases: list[PlannedPhase] = Field(default_factory=list)

    @field_validator("phases", mode="before")
    @classmethod
    def _objects_only(cls, value: Any) -> Any:
        if isinstance(value, list):
            return [item for item in value if isinstance(item, dict)]
        return value


class DesignResult(BaseModel):
    """Global design specification, consumed read-only by build steps."""

    model_config = ConfigDict(extra="allow")

    design_language: dict[str, Any] = Field(default_factory=dict)
    routes: list[Any] = Field(default_factory=list)
    navigation: dict[str, Any] = Field(default_factory=dict)
    pages: list[Any] = Field(default_factory=list)

    @field_validator("design_language", "navigation", mode="before")
    @classmethod
    def _opaque_dicts(cls, value: Any) -> dict[str, Any]:
        return _dict_or_empty(value)

    @field_validator("routes", "pages", mode="before")
    @classmethod
    def _opaque_lists(cls, value: Any) -> list[Any]:
        return _list_or_empty(value)


_PATH_ALIASES = ("path", "file", "filepath")


class PlannedStep(BaseModel):
    """A file-level build step. ``path`` is ``None`` when no alias resolved."""
    id: str = Field(default="")
    path: Optional[str] = Field(default=None)
    action: FileAction = Field(default=FileAction.CREATE)
    title: str = Field(default="")
    description: str = Field(default="")
    outcome: str = Field(default="")

    @model_validator(mode="before")
    @classmethod
    def _resolve_path(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = dict(data)
        resolved = None
        for key in _PATH_ALIASES:
            candidate = data.pop(key, None)
            if resolved is None and isinstance(candidate, str) and candidate.strip():
                resolved = candidate.strip()
        data["path"] = resolved
        return data

    @field_validator("action", mode="before")
    @classmethod
    def _coerce_action(cls, value: Any) -> FileAction:
        try:
            return FileAction(str(value).strip().lower())
        except ValueError:
            return FileAction.UPDATE

    @field_validator("id", "title", "description", "outcome", mode="before")
    @classmethod
    def _none_to_empty(cls, value: Any) -> str:
        return "" if value is None else str(value)

    def task(self) -> str:
        return self.description or self.title or f"Build {self.path}"


class FilePlanResult(BaseModel):
    steps: list[PlannedStep] = Field(default_factory=list)

    @field_validator("steps", mode="before")
    @classmethod
    def _objects_only(cls, value: Any) -> Any:
        if isinstance(value, list):
            return [item for item in value if isinstance(item, dict)]
        return value


def _drop_pathless(value: Any) -> Any:
    if not isinstance(value, list):
        return value
    return [
        item for item in value
        if isinstance(item, dict) and isinstance(item.get("path"), str) and item["path"].strip()
    ]


class BuildResult(BaseModel):
    file_changes: list[FileChange] = Field(default_factory=list)
    step_result: dict[str, Any] = Field(default_factory=dict)

    @field_validator("file_changes", mode="before")
    @classmethod
    def _pathful_changes(cls, value: Any) -> Any:
        return _drop_pathless(value)


class SchemaResult(BaseModel):
    sql: str = Field(default="")
    notes: Any = Field(default=None)


class QAResult(BaseModel):
    status: str = Field(default="pass")
    checks: list[Any] = Field(default_factory=list)
    issues: list[Any] = Field(default_factory=list)
    patches: list[FileChange] = Field(default_factory=list)

    @field_validator("checks", "issues", mode="before")
    @classmethod
    def _opaque_lists(cls, value: Any) -> list[Any]:
        return _list_or_empty(value)

    @field_validator("status", mode="before")
    @classmethod
    def _normalise_status(cls, value: Any) -> str:
        return str(value or "pass").strip().lower()

    @field_validator("patches", mode="before")
    @classmethod
    def _pathful_patches(cls, value: Any) -> Any:
        return _drop_pathless(value)

    @property
    def passed(self) -> bool:
        return self.status == "pass"


class RepairResult(BaseModel):
    root_cause: str = Field(default="")
    patches: list[FileChange] = Field(default_factory=list)

    @field_validator("patches", mode="before")
    @classmethod
    def _pathful_patches(cls, value: Any) -> Any:
        return _drop_pathless(value)


StepResult = (
    DecisionResult
    | RequirementsResult
    | PhasePlanResult
    | DesignResult
    | FilePlanResult
    | BuildResult
    | SchemaResult
    | QAResult
    | RepairResult
)

RESULT_TYPES: dict[StepKind, type[BaseModel]] = {
    StepKind.DECISION: DecisionResult,
    StepKind.REQUIREMENTS: RequirementsResult,
    StepKind.PHASE_PLANNER: PhasePlanResult,
    StepKind.DESIGN: DesignResult,
    StepKind.PLANNER: FilePlanResult,
    StepKind.BUILDER: BuildResult,
    StepKind.SQL: SchemaResult,
    StepKind.QA: QAResult,
    StepKind.REPAIR: RepairResult,
}


def parse_step_result(kind: StepKind, data: dict[str, Any]) -> StepResult:
    """Validate a decoded JSON object into the variant for *kind*.

    Raises:
        DecodeError: If the object does not fit the variant's contract.
    """
    model = RESULT_TYPES[StepKind(kind)]
    try:
        return model.model_validate(data)  # type: ignore[return-value]
    except ValidationError as exc:
        raise DecodeError(f"Response for step '{StepKind(kind).value}' has wrong shape: {exc}") from exc


# ---------------------------------------------------------------------------
# Orchestrator working memory
# ---------------------------------------------------------------------------

class PipelineState(BaseModel):
    """Working memory for one run. Owned exclusively by that run."""

    decision: Optional[DecisionResult] = Field(default=None)
    requirements: Optional[RequirementsResult] = Field(default=None)
    design: Optional[DesignResult] = Field(default=None)
    phases: list[Phase] = Field(default_factory=list)
    accumulated_files: dict[str, str] = Field(default_factory=dict)
    skipped_steps: list[str] = Field(default_factory=list)
    failed_steps: list[str] = Field(default_factory=list)
    qa: Optional[QAResult] = Field(default=None)
    repaired: bool = Field(default=False)
    outcome: Optional[RunOutcome] = Field(default=None)
    error: Optional[str] = Field(default=None)

    def apply_changes(self, changes: list[FileChange]) -> list[str]:
        """Apply file changes in order; last write wins, nothing is deleted.

        Returns:
            The paths written, in application order.
        """
        written: list[str] = []
        for change in changes:
            self.accumulated_files[change.path] = change.content
            written.append(change.path)
        return written

    def apply_patches(self, patches: list[FileChange]) -> list[str]:
        """Overwrite existing files only; patches for unknown paths are ignored."""
        written: list[str] = []
        for patch in patches:
            if patch.path in self.accumulated_files:
                self.accumulated_files[patch.path] = patch.content
                written.append(patch.path)
        return written

    def file_paths(self) -> list[str]:
        return list(self.accumulated_files.keys())

    def phases_completed(self) -> int:
        return sum(1 for p in self.phases if p.status == PhaseStatus.DONE)
