"""AppForge configuration.

Centralised, typed configuration for the generation orchestrator. All
settings use Pydantic v2 models so they can be validated at construction
time and serialised to/from JSON or environment variables without
boiler-plate.  A ``Config`` is built once by the caller (or the CLI) and
passed explicitly into the orchestrator; nothing reads ambient globals.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Optional

from pydantic import BaseModel, Field

from .models import ProviderConfig, ProviderKind


class StepPolicy(BaseModel):
    """Timeout and retry knobs applied to every pipeline step."""

    timeout_seconds: float = Field(
        default=75.0, gt=0.0, description="Wall-clock budget per provider call"
    )
    max_attempts: int = Field(
        default=3, ge=1, description="Attempts per step before it is considered failed"
    )
    backoff_base_seconds: float = Field(
        default=2.0, gt=0.0, description="Delay before retry n is n * base seconds"
    )

    def backoff_delay(self, attempt: int) -> float:
        """Delay to wait after failed attempt number *attempt* (1-based)."""
        return attempt * self.backoff_base_seconds


DEFAULT_MODELS: dict[ProviderKind, str] = {
    ProviderKind.GOOGLE: "gemini-2.5-flash",
    ProviderKind.OPENAI: "gpt-4o",
    ProviderKind.ANTHROPIC: "claude-3-5-sonnet-20241022",
}

PROVIDER_NAMES: dict[ProviderKind, str] = {
    ProviderKind.GOOGLE: "Google Gemini",
    ProviderKind.OPENAI: "OpenAI",
    ProviderKind.ANTHROPIC: "Anthropic Claude",
}


class ProviderSettings(BaseModel):
    """Credentials and model choices for each provider kind."""

    google_api_key: Optional[str] = Field(default=None, repr=False)
    google_model: str = Field(default=DEFAULT_MODELS[ProviderKind.GOOGLE])
    openai_api_key: Optional[str] = Field(default=None, repr=False)
    openai_model: str = Field(default=DEFAULT_MODELS[ProviderKind.OPENAI])
    anthropic_api_key: Optional[str] = Field(default=None, repr=False)
    anthropic_model: str = Field(default=DEFAULT_MODELS[ProviderKind.ANTHROPIC])

    active: ProviderKind = Field(default=ProviderKind.GOOGLE)
    fallback: Optional[ProviderKind] = Field(default=None)

    default_api_key: Optional[str] = Field(
        default=None, repr=False, description="Environment-default credential (Google)"
    )

    def _key_for(self, kind: ProviderKind) -> Optional[str]:
        return {
            ProviderKind.GOOGLE: self.google_api_key,
            ProviderKind.OPENAI: self.openai_api_key,
            ProviderKind.ANTHROPIC: self.anthropic_api_key,
        }[kind]

    def _model_for(self, kind: ProviderKind) -> str:
        return {
            ProviderKind.GOOGLE: self.google_model,
            ProviderKind.OPENAI: self.openai_model,
            ProviderKind.ANTHROPIC: self.anthropic_model,
        }[kind]

    def to_provider_configs(self) -> list[ProviderConfig]:
        """Return one ``ProviderConfig`` per provider kind with its flags set."""
        return [
            ProviderConfig(
                kind=kind,
                name=PROVIDER_NAMES[kind],
                api_key=self._key_for(kind),
                model=self._model_for(kind),
                is_active=kind == self.active,
                is_fallback=self.fallback is not None and kind == self.fallback and kind != self.active,
            )
            for kind in ProviderKind
        ]


class Config(BaseModel):
    """Global AppForge configuration.

    Holds every tuneable parameter used by the orchestrator and the CLI.
    Instances are typically created once by the caller and then passed
    through the rest of the system.
    """

    step: StepPolicy = Field(default_factory=StepPolicy)
    providers: ProviderSettings = Field(default_factory=ProviderSettings)

    schema_file_path: str = Field(
        default="supabase/schema.sql",
        description="Virtual file path for the generated database schema",
    )
    output_dir: Path = Field(default=Path("./output"))
    state_file: str = Field(default=".appforge/pipeline-state.json")

    # ------------------------------------------------------------------
    # Derived paths (read-only properties)
    # ------------------------------------------------------------------

    @property
    def state_path(self) -> Path:
        """Path to the persisted pipeline state JSON file."""
        return self.output_dir / self.state_file

    # ------------------------------------------------------------------
    # Serialisation helpers
    # ------------------------------------------------------------------

    def save(self, path: Path | None = None) -> Path:
        """Persist the configuration to a JSON file.

        Credentials are excluded so the file is safe to keep next to the
        generated project.

        Args:
            path: Destination file. Defaults to ``<output_dir>/.appforge/config.json``.

        Returns:
            The resolved path where the file was written.
        """
        target = path or (self.output_dir / ".appforge" / "config.json")
        target.parent.mkdir(parents=True, exist_ok=True)
        payload = self.model_dump_json(
            indent=2,
            exclude={
                "providers": {
                    "google_api_key",
                    "openai_api_key",
                    "anthropic_api_key",
                    "default_api_key",
                }
            },
        )
        target.write_text(payload, encoding="utf-8")
        return target

    @classmethod
    def load(cls, path: Path) -> "Config":
        """Load a previously-saved configuration from JSON."""
        raw = Path(path).read_text(encoding="utf-8")
        return cls.model_validate_json(raw)

    @classmethod
    def from_env(cls) -> "Config":
        """Build a ``Config`` from environment variables.

        Recognised variables (all optional):
            APPFORGE_ACTIVE_PROVIDER, APPFORGE_FALLBACK_PROVIDER,
            APPFORGE_STEP_TIMEOUT, APPFORGE_MAX_ATTEMPTS, APPFORGE_BACKOFF_BASE,
            APPFORGE_OUTPUT_DIR, APPFORGE_SCHEMA_PATH,
            GEMINI_API_KEY, OPENAI_API_KEY, ANTHROPIC_API_KEY, API_KEY,
            APPFORGE_GOOGLE_MODEL, APPFORGE_OPENAI_MODEL, APPFORGE_ANTHROPIC_MODEL.
        """
        step_kwargs: dict[str, Any] = {}
        if os.environ.get("APPFORGE_STEP_TIMEOUT"):
            step_kwargs["timeout_seconds"] = float(os.environ["APPFORGE_STEP_TIMEOUT"])
        if os.environ.get("APPFORGE_MAX_ATTEMPTS"):
            step_kwargs["max_attempts"] = int(os.environ["APPFORGE_MAX_ATTEMPTS"])
        if os.environ.get("APPFORGE_BACKOFF_BASE"):
            step_kwargs["backoff_base_seconds"] = float(os.environ["APPFORGE_BACKOFF_BASE"])

        provider_kwargs: dict[str, Any] = {
            "google_api_key": os.environ.get("GEMINI_API_KEY") or None,
            "openai_api_key": os.environ.get("OPENAI_API_KEY") or None,
            "anthropic_api_key": os.environ.get("ANTHROPIC_API_KEY") or None,
            "default_api_key": os.environ.get("API_KEY") or None,
        }
        if os.environ.get("APPFORGE_GOOGLE_MODEL"):
            provider_kwargs["google_model"] = os.environ["APPFORGE_GOOGLE_MODEL"]
        if os.environ.get("APPFORGE_OPENAI_MODEL"):
            provider_kwargs["openai_model"] = os.environ["APPFORGE_OPENAI_MODEL"]
        if os.environ.get("APPFORGE_ANTHROPIC_MODEL"):
            provider_kwargs["anthropic_model"] = os.environ["APPFORGE_ANTHROPIC_MODEL"]
        if os.environ.get("APPFORGE_ACTIVE_PROVIDER"):
            provider_kwargs["active"] = ProviderKind(os.environ["APPFORGE_ACTIVE_PROVIDER"].lower())
        if os.environ.get("APPFORGE_FALLBACK_PROVIDER"):
            provider_kwargs["fallback"] = ProviderKind(os.environ["APPFORGE_FALLBACK_PROVIDER"].lower())

        kwargs: dict[str, Any] = {
            "step": StepPolicy(**step_kwargs),
            "providers": ProviderSettings(**provider_kwargs),
            "output_dir": Path(os.environ.get("APPFORGE_OUTPUT_DIR", "./output")),
        }
        if os.environ.get("APPFORGE_SCHEMA_PATH"):
            kwargs["schema_file_path"] = os.environ["APPFORGE_SCHEMA_PATH"]
        return cls(**kwargs)
