"""Token and cost accounting for a run."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class UsageSnapshot(BaseModel):
    """Immutable view of the accumulated usage at one point in time."""

    model_config = ConfigDict(frozen=True)

    input_tokens: int = Field(default=0)
    output_tokens: int = Field(default=0)
    cost_usd: float = Field(default=0.0)
    calls: int = Field(default=0)
    by_model: dict[str, float] = Field(
        default_factory=dict, description="Cost in USD per model name"
    )

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens


class UsageAccumulator:
    """Additive running totals. Owned by one run."""

    def __init__(self) -> None:
        self.input_tokens = 0
        self.output_tokens = 0
        self.cost_usd = 0.0
        self.calls = 0
        self._by_model: dict[str, float] = {}

    def record(
        self,
        input_tokens: int,
        output_tokens: int,
        cost_usd: float,
        model: str = "",
    ) -> None:
        """Add one successful call's usage to the totals."""
        self.input_tokens += max(0, int(input_tokens))
        self.output_tokens += max(0, int(output_tokens))
        self.cost_usd += max(0.0, float(cost_usd))
        self.calls += 1
        if model:
            self._by_model[model] = self._by_model.get(model, 0.0) + max(0.0, float(cost_usd))

    def snapshot(self) -> UsageSnapshot:
        return UsageSnapshot(
            input_tokens=self.input_tokens,
            output_tokens=self.output_tokens,
            cost_usd=self.cost_usd,
            calls=self.calls,
            by_model=dict(self._by_model),
        )
