"""Unit tests for the data model (appforge.models).

Tests cover:
- Image.from_data_uri (data URI, bare base64 sniffing), b64, data_uri
- ProviderConfig.has_credential / label
- FileChange action coercion
- Tagged step results: aliases, defaults, dropped pathless entries
- parse_step_result shape errors; drifted opaque context fields fall back to defaults
- PipelineState.apply_changes (last write wins, idempotence) and apply_patches
"""

from __future__ import annotations

import base64

import pytest

from appforge.errors import DecodeError
from appforge.models import (
    BuildRequest,
    BuildResult,
    DecisionResult,
    FileAction,
    FileChange,
    FilePlanResult,
    Image,
    Phase,
    PhasePlanResult,
    PhaseStatus,
    PhaseType,
    PipelineState,
    ProviderConfig,
    ProviderKind,
    QAResult,
    RepairResult,
    RequirementsResult,
    StepKind,
    parse_step_result,
)

PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 8


# ---------------------------------------------------------------------------
# Request records
# ---------------------------------------------------------------------------


class TestImage:
    @pytest.mark.unit
    def test_from_data_uri(self):
        uri = "data:image/webp;base64," + base64.b64encode(b"webp-bytes").decode()
        image = Image.from_data_uri(uri)
        assert image.mime_type == "image/webp"
        assert image.data == b"webp-bytes"

    @pytest.mark.unit
    def test_bare_base64_png_sniffed(self):
        image = Image.from_data_uri(base64.b64encode(PNG_BYTES).decode())
        assert image.mime_type == "image/png"
        assert image.data == PNG_BYTES

    @pytest.mark.unit
    def test_bare_base64_unknown_defaults_to_jpeg(self):
        image = Image.from_data_uri(base64.b64encode(b"\xff\xd8\xff").decode())
        assert image.mime_type == "image/jpeg"

    @pytest.mark.unit
    def test_b64_and_data_uri(self):
        image = Image(data=b"abc", mime_type="image/gif")
        assert image.b64() == "YWJj"
        assert image.data_uri() == "data:image/gif;base64,YWJj"


class TestBuildRequest:
    @pytest.mark.unit
    def test_frozen(self):
        request = BuildRequest(prompt="x", project_id="p", user_id="u")
        with pytest.raises(Exception):
            request.prompt = "y"  # type: ignore[misc]

    @pytest.mark.unit
    def test_defaults(self):
        request = BuildRequest(prompt="x", project_id="p", user_id="u")
        assert request.images == []
        assert request.existing_files == {}


class TestProviderConfig:
    @pytest.mark.unit
    @pytest.mark.parametrize("key,expected", [(None, False), ("", False), ("  ", False), ("k", True)])
    def test_has_credential(self, key, expected):
        config = ProviderConfig(kind=ProviderKind.GOOGLE, api_key=key)
        assert config.has_credential is expected

    @pytest.mark.unit
    def test_label_falls_back_to_kind(self):
        assert ProviderConfig(kind=ProviderKind.OPENAI).label == "openai"
        assert ProviderConfig(kind=ProviderKind.OPENAI, name="OpenAI").label == "OpenAI"

    @pytest.mark.unit
    def test_api_key_not_in_repr(self):
        assert "sk-secret" not in repr(ProviderConfig(kind=ProviderKind.OPENAI, api_key="sk-secret"))


class TestFileChange:
    @pytest.mark.unit
    @pytest.mark.parametrize(
        "raw,expected",
        [("create", FileAction.CREATE), ("UPDATE", FileAction.UPDATE), ("delete", FileAction.UPDATE), (None, FileAction.UPDATE)],
    )
    def test_action_coercion(self, raw, expected):
        assert FileChange(path="a.ts", action=raw).action == expected

    @pytest.mark.unit
    def test_empty_path_rejected(self):
        with pytest.raises(Exception):
            FileChange(path="")


# ---------------------------------------------------------------------------
# Tagged step results
# ---------------------------------------------------------------------------


class TestDecisionResult:
    @pytest.mark.unit
    def test_narrative_preference(self):
        assert DecisionResult(narrative_summary="N", analysis={"summary": "S"}).narrative() == "N"
        assert DecisionResult(analysis={"summary": "S"}).narrative() == "S"
        assert "starting the build" in DecisionResult().narrative()

    @pytest.mark.unit
    def test_summary_default(self):
        assert DecisionResult().summary() == "Project built successfully."

    @pytest.mark.unit
    def test_extra_keys_kept(self):
        result = DecisionResult.model_validate({"analysis": {}, "custom": 1})
        assert result.model_dump()["custom"] == 1

    @pytest.mark.unit
    def test_drifted_context_shapes_default(self):
        result = parse_step_result(
            StepKind.DECISION,
            {"analysis": "Simple todo app", "narrative_summary": None, "backend_intent": ["db"]},
        )
        assert result.analysis == {}
        assert result.backend_intent == {}
        assert "starting the build" in result.narrative()


class TestRequirementsResult:
    @pytest.mark.unit
    def test_backend_required_alias(self):
        assert RequirementsResult.model_validate({"backendRequired": True}).needs_backend is True

    @pytest.mark.unit
    def test_either_flag_wins(self):
        data = {"needs_backend": False, "backendRequired": True}
        assert RequirementsResult.model_validate(data).needs_backend is True

    @pytest.mark.unit
    def test_camel_case_fields(self):
        result = RequirementsResult.model_validate(
            {"needs_backend": True, "requiredBackendFeatures": {"auth": True}, "dataEntities": [{"name": "todos"}]}
        )
        assert result.required_backend_features == {"auth": True}
        assert result.data_entities == [{"name": "todos"}]

    @pytest.mark.unit
    def test_defaults(self):
        assert RequirementsResult.model_validate({}).needs_backend is False


class TestPhasePlanResult:
    @pytest.mark.unit
    def test_goal_used_as_description(self):
        plan = PhasePlanResult.model_validate({"phases": [{"title": "UI", "goal": "Render routes"}]})
        assert plan.phases[0].description == "Render routes"

    @pytest.mark.unit
    @pytest.mark.parametrize("raw", ["database", None, 3, "UI"])
    def test_invalid_type_defaults_to_ui(self, raw):
        plan = PhasePlanResult.model_validate({"phases": [{"title": "x", "type": raw}]})
        assert plan.phases[0].type == PhaseType.UI

    @pytest.mark.unit
    def test_valid_types_kept(self):
        plan = PhasePlanResult.model_validate(
            {"phases": [{"type": "logic"}, {"type": "backend"}]}
        )
        assert [p.type for p in plan.phases] == [PhaseType.LOGIC, PhaseType.BACKEND]

    @pytest.mark.unit
    def test_non_object_phases_dropped(self):
        plan = PhasePlanResult.model_validate({"phases": ["junk", {"title": "ok"}]})
        assert [p.title for p in plan.phases] == ["ok"]


class TestFilePlanResult:
    @pytest.mark.unit
    @pytest.mark.parametrize("key", ["path", "file", "filepath"])
    def test_path_aliases(self, key):
        plan = FilePlanResult.model_validate({"steps": [{key: "src/App.tsx"}]})
        assert plan.steps[0].path == "src/App.tsx"

    @pytest.mark.unit
    def test_first_non_blank_alias_wins(self):
        plan = FilePlanResult.model_validate({"steps": [{"path": " ", "file": "a.ts", "filepath": "b.ts"}]})
        assert plan.steps[0].path == "a.ts"

    @pytest.mark.unit
    def test_missing_path_is_none(self):
        plan = FilePlanResult.model_validate({"steps": [{"title": "mystery"}]})
        assert plan.steps[0].path is None

    @pytest.mark.unit
    def test_task_fallbacks(self):
        plan = FilePlanResult.model_validate(
            {"steps": [{"path": "a", "description": "D"}, {"path": "b", "title": "T"}, {"path": "c"}]}
        )
        assert [s.task() for s in plan.steps] == ["D", "T", "Build c"]


class TestChangeLists:
    @pytest.mark.unit
    def test_build_result_drops_pathless_changes(self):
        result = BuildResult.model_validate(
            {"file_changes": [{"content": "x"}, {"path": "", "content": "y"}, {"path": "a.ts", "content": "z"}]}
        )
        assert [c.path for c in result.file_changes] == ["a.ts"]

    @pytest.mark.unit
    def test_qa_status_normalised(self):
        assert QAResult.model_validate({"status": "FAIL"}).passed is False
        assert QAResult.model_validate({}).passed is True

    @pytest.mark.unit
    def test_repair_patches(self):
        result = RepairResult.model_validate({"patches": [{"path": "a", "content": "1"}, {"junk": True}]})
        assert len(result.patches) == 1


class TestParseStepResult:
    @pytest.mark.unit
    def test_dispatch_by_kind(self):
        assert isinstance(parse_step_result(StepKind.QA, {"status": "pass"}), QAResult)
        assert isinstance(parse_step_result("builder", {}), BuildResult)

    @pytest.mark.unit
    def test_wrong_shape_is_decode_error(self):
        with pytest.raises(DecodeError):
            parse_step_result(StepKind.PHASE_PLANNER, {"phases": "not-a-list"})

    @pytest.mark.unit
    def test_design_context_shapes_default(self):
        design = parse_step_result(
            StepKind.DESIGN,
            {"design_language": "minimal", "routes": {"/": "home"}, "navigation": [], "pages": "all"},
        )
        assert (design.design_language, design.routes, design.navigation, design.pages) == ({}, [], {}, [])

    @pytest.mark.unit
    def test_qa_issue_lists_default(self):
        qa = parse_step_result(StepKind.QA, {"status": "fail", "issues": "none", "checks": {"lint": "ok"}})
        assert qa.issues == []
        assert qa.checks == []
        assert qa.passed is False


# ---------------------------------------------------------------------------
# PipelineState
# ---------------------------------------------------------------------------


class TestPipelineState:
    @pytest.mark.unit
    def test_last_write_wins(self):
        state = PipelineState()
        state.apply_changes([
            FileChange(path="a", content="1"),
            FileChange(path="b", content="2"),
            FileChange(path="a", content="3"),
        ])
        assert state.accumulated_files == {"a": "3", "b": "2"}

    @pytest.mark.unit
    def test_apply_twice_is_idempotent(self):
        changes = [FileChange(path="a", content="1"), FileChange(path="a", content="2")]
        once = PipelineState()
        once.apply_changes(changes)
        twice = PipelineState()
        twice.apply_changes(changes)
        twice.apply_changes(changes)
        assert once.accumulated_files == twice.accumulated_files

    @pytest.mark.unit
    def test_never_deletes(self):
        state = PipelineState(accumulated_files={"keep": "x"})
        state.apply_changes([FileChange(path="new", content="y")])
        assert set(state.file_paths()) == {"keep", "new"}

    @pytest.mark.unit
    def test_apply_patches_existing_only(self):
        state = PipelineState(accumulated_files={"a": "old"})
        written = state.apply_patches([FileChange(path="a", content="new"), FileChange(path="ghost", content="x")])
        assert written == ["a"]
        assert state.accumulated_files == {"a": "new"}

    @pytest.mark.unit
    def test_phases_completed(self):
        state = PipelineState(phases=[Phase(status=PhaseStatus.DONE), Phase(status=PhaseStatus.FAILED), Phase()])
        assert state.phases_completed() == 1
