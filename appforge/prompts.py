"""System instructions for each pipeline step.

Each step has a storage key (``PROMPT_KEYS``) and a built-in default
(``DEFAULTS``).  Operators can override any of them through a
``PromptStore``; ``SystemPromptCache`` looks overrides up lazily and keeps
them for the lifetime of the cache object.
"""

from __future__ import annotations

from .collaborators import PromptStore
from .models import StepKind
from .utils import print_warning

PROMPT_KEYS: dict[StepKind, str] = {
    StepKind.DECISION: "sys_prompt_decision_v2",
    StepKind.REQUIREMENTS: "sys_prompt_requirements_v2",
    StepKind.PHASE_PLANNER: "sys_prompt_phase_planner_v2",
    StepKind.DESIGN: "sys_prompt_design_v2",
    StepKind.PLANNER: "sys_prompt_planner_v2",
    StepKind.BUILDER: "sys_prompt_builder_v2",
    StepKind.SQL: "sys_prompt_sql_v2",
    StepKind.QA: "sys_prompt_qa_v2",
    StepKind.REPAIR: "sys_prompt_repair_v2",
}

DEFAULTS: dict[StepKind, str] = {
    StepKind.DECISION: """You are the DECISION layer.
Goal: Produce a stable build strategy.
Input: User request.
Return STRICT JSON:
{
  "analysis": { "summary": "...", "primary_goal": "...", "complexity": "low|medium|high" },
  "narrative_summary": "Friendly summary...",
  "ui_first_strategy": { "milestone_1_preview_definition": "...", "must_have_pages": ["..."], "must_have_components": ["..."] },
  "backend_intent": { "likely_needs_backend": boolean, "why": "..." }
}""",
    StepKind.REQUIREMENTS: """You are the REQUIREMENTS layer.
Definition: Backend required if auth, database, storage, or secrets needed.
Return STRICT JSON:
{
  "needs_backend": boolean,
  "requiredBackendFeatures": { "auth": boolean, "database": boolean, "storage": boolean },
  "dataEntities": [ { "name": "projects", "reason": "..." } ],
  "explanation": "..."
}""",
    StepKind.PHASE_PLANNER: """You are PHASE_PLANNER.
Hard rules:
- Phase 1: UI Skeleton (Routes + Layout + Empty Pages).
- Phase 2: UI Completion (Mock Data).
- Phase 3: Logic.
- Phase 4: Backend (only if required).
Return STRICT JSON:
{
  "phases": [
    { "id": "p1", "title": "Phase 1: UI Skeleton", "goal": "Render routes", "type": "ui" }
  ]
}""",
    StepKind.DESIGN: """You are DESIGN.
Return STRICT JSON:
{
  "design_language": { "style": "modern", "colors": { "primary": "..." } },
  "routes": [ { "path": "/", "name": "Home" } ],
  "navigation": { "items": [{ "label": "Home", "to": "/" }] },
  "pages": [ { "route": "/", "sections": [] } ]
}""",
    StepKind.PLANNER: """You are PLANNER.
Goal: Convert the phase plan into specific file generation steps.
Every step MUST include a 'path' field and an 'action' of 'create' or 'update'.
Input: Design, Phase, existing file paths.
Return STRICT JSON:
{
  "steps": [
    { "id": "s1", "path": "index.html", "action": "create", "title": "...", "description": "...", "outcome": "..." }
  ]
}""",
    StepKind.BUILDER: """You are BUILDER.
Goal: Write the complete code for the file named in the step. No placeholders.
Input: Task, file path, Design, existing file paths.
Return STRICT JSON:
{
  "file_changes": [ { "path": "string", "action": "create|update", "content": "FULL_CODE_HERE" } ],
  "step_result": { "completed": true, "visible_change": "..." }
}""",
    StepKind.SQL: """You are SQL.
Return STRICT JSON:
{ "sql": "CREATE TABLE...", "notes": { } }""",
    StepKind.QA: """You are QA.
Return STRICT JSON:
{ "status": "pass|fail", "checks": [], "issues": [], "patches": [] }""",
    StepKind.REPAIR: """You are REPAIR.
Input: QA issues and current files.
Return STRICT JSON:
{
  "root_cause": "...",
  "patches": [ { "path": "...", "action": "update", "content": "..." } ]
}""",
}


class SystemPromptCache:
    """Resolves system instructions through an optional ``PromptStore``.

    Overrides are fetched once per key and cached; a missing or blank
    override falls back to the built-in default and is not cached, so a
    later admin edit is picked up without an explicit invalidation.
    """

    def __init__(self, store: PromptStore | None = None) -> None:
        self.store = store
        self._cache: dict[str, str] = {}

    async def get(self, key: str, default: str) -> str:
        if key in self._cache:
            return self._cache[key]
        if self.store is None:
            return default
        try:
            value = await self.store.get(key)
        except Exception as exc:  # noqa: BLE001
            print_warning(f"Prompt store lookup for '{key}' failed, using default: {exc}")
            return default
        if value and value.strip():
            self._cache[key] = value
            return value
        return default

    async def for_step(self, kind: StepKind) -> str:
        """System instruction for *kind* (override if present, else default)."""
        kind = StepKind(kind)
        return await self.get(PROMPT_KEYS[kind], DEFAULTS[kind])

    def invalidate(self, key: str | None = None) -> None:
        """Drop one cached override, or all of them when *key* is ``None``."""
        if key is None:
            self._cache.clear()
        else:
            self._cache.pop(key, None)
