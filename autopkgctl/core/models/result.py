"""
Step and pipeline results — the outcome side of the execution contract.

The runner turns every step into a StepResult, whatever happens. The
PipelineResult aggregates them in declaration order and is always
available to the caller, including when the run as a whole failed.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Literal

from pydantic import BaseModel, Field


def _now_iso() -> str:
    """Current UTC time as ISO string."""
    return datetime.now(UTC).isoformat()


class StepResult(BaseModel):
    """Outcome of one pipeline step."""

    name: str
    kind: str
    status: Literal["ok", "skipped", "failed", "not_run"] = "ok"

    started_at: str = Field(default_factory=_now_iso)
    duration_ms: int = 0

    output: str = ""
    error: str | None = None
    processed: list[str] = Field(default_factory=list)

    metadata: dict[str, Any] = Field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.status == "ok"

    @property
    def failed(self) -> bool:
        return self.status == "failed"

    @classmethod
    def success(cls, name: str, kind: str, output: str = "", **kwargs: Any) -> StepResult:
        return cls(name=name, kind=kind, status="ok", output=output, **kwargs)

    @classmethod
    def failure(cls, name: str, kind: str, error: str, **kwargs: Any) -> StepResult:
        return cls(name=name, kind=kind, status="failed", error=error, **kwargs)

    @classmethod
    def skip(cls, name: str, kind: str, reason: str = "", **kwargs: Any) -> StepResult:
        return cls(name=name, kind=kind, status="skipped", output=reason, **kwargs)


@dataclass
class PipelineResult:
    """Aggregate of every step in a pipeline run."""

    steps: list[StepResult] = field(default_factory=list)
    started_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    ended_at: datetime | None = None

    def _names(self, status: str) -> list[str]:
        return [s.name for s in self.steps if s.status == status]

    @property
    def completed_steps(self) -> list[str]:
        return self._names("ok")

    @property
    def failed_steps(self) -> list[str]:
        return self._names("failed")

    @property
    def skipped_steps(self) -> list[str]:
        return self._names("skipped")

    @property
    def not_run_steps(self) -> list[str]:
        """Steps never reached because an earlier failure stopped the run."""
        return self._names("not_run")

    @property
    def errors(self) -> dict[str, str]:
        return {s.name: s.error or "" for s in self.steps if s.failed}

    @property
    def processed_recipes(self) -> list[str]:
        """Every recipe touched by any step, first-seen order, no duplicates."""
        seen: dict[str, None] = {}
        for step in self.steps:
            for recipe in step.processed:
                seen.setdefault(recipe, None)
        return list(seen)

    @property
    def success(self) -> bool:
        return not self.failed_steps

    @property
    def elapsed_seconds(self) -> float:
        end = self.ended_at or datetime.now(UTC)
        return (end - self.started_at).total_seconds()

    def finish(self) -> None:
        self.ended_at = datetime.now(UTC)

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "started_at": self.started_at.isoformat(),
            "ended_at": self.ended_at.isoformat() if self.ended_at else None,
            "elapsed_seconds": round(self.elapsed_seconds, 3),
            "completed": self.completed_steps,
            "failed": self.failed_steps,
            "skipped": self.skipped_steps,
            "not_run": self.not_run_steps,
            "processed_recipes": self.processed_recipes,
            "steps": [s.model_dump(mode="json") for s in self.steps],
        }
