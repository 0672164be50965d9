"""
Pipeline step model — one declarative unit of work.

A step names an operation kind, its targets (recipes, a repository
URL, a search term, or nothing), a kind-specific options payload and
its error policy. Steps are frozen once built; the only sanctioned
change is attaching a gating predicate, which produces a new step.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Callable

from autopkgctl.core.models.options import (
    AuditOptions,
    BatchOptions,
    CleanupOptions,
    FilterCriteria,
    ImportRecipesFromRepoOptions,
    InstallOptions,
    ListRecipeOptions,
    MakeOverrideOptions,
    ParallelRunOptions,
    RepoOptions,
    RunOptions,
    SearchOptions,
    StepOptions,
    UpdateTrustOptions,
    ValidateOptions,
    VerifyTrustOptions,
)


class StepKind(str, Enum):
    """Every operation the pipeline knows how to dispatch."""

    VERIFY = "verify"
    UPDATE_TRUST = "update-trust"
    RUN = "run"
    PARALLEL_RUN = "parallel-run"
    BATCH = "batch"
    CLEANUP = "cleanup"
    VALIDATE = "validate"
    IMPORT = "import"
    AUDIT = "audit"
    INSTALL = "install"
    SEARCH = "search"
    LIST = "list"
    REPO_LIST = "repo-list"
    MAKE_OVERRIDE = "make-override"
    REPO_UPDATE = "repo-update"
    FILTER = "filter"
    CUSTOM = "custom"


# Target cardinality rules, checked by the orchestrator before execution.
SINGLE_TARGET_KINDS = frozenset({StepKind.IMPORT, StepKind.SEARCH})
TARGETED_KINDS = frozenset({
    StepKind.RUN,
    StepKind.PARALLEL_RUN,
    StepKind.BATCH,
    StepKind.VERIFY,
    StepKind.UPDATE_TRUST,
    StepKind.VALIDATE,
    StepKind.MAKE_OVERRIDE,
    StepKind.INSTALL,
    StepKind.AUDIT,
    StepKind.REPO_UPDATE,
})
# Remaining kinds (list, repo-list, cleanup, filter, custom) take no targets.

# Options payload type per built-in kind. Custom steps take any payload.
OPTION_TYPES: dict[StepKind, type[StepOptions]] = {
    StepKind.VERIFY: VerifyTrustOptions,
    StepKind.UPDATE_TRUST: UpdateTrustOptions,
    StepKind.RUN: RunOptions,
    StepKind.PARALLEL_RUN: ParallelRunOptions,
    StepKind.BATCH: BatchOptions,
    StepKind.CLEANUP: CleanupOptions,
    StepKind.VALIDATE: ValidateOptions,
    StepKind.IMPORT: ImportRecipesFromRepoOptions,
    StepKind.AUDIT: AuditOptions,
    StepKind.INSTALL: InstallOptions,
    StepKind.SEARCH: SearchOptions,
    StepKind.LIST: ListRecipeOptions,
    StepKind.REPO_LIST: RepoOptions,
    StepKind.MAKE_OVERRIDE: MakeOverrideOptions,
    StepKind.REPO_UPDATE: RepoOptions,
    StepKind.FILTER: FilterCriteria,
}


@dataclass(frozen=True)
class PipelineStep:
    """A single pipeline step.

    ``targets`` is stored as a tuple; lists are accepted and converted.
    ``custom_kind`` carries the caller's tag when ``kind`` is CUSTOM.
    """

    kind: StepKind
    targets: tuple[str, ...] = ()
    options: Any = None
    continue_on_error: bool = False
    name: str = ""
    description: str = ""
    condition: Callable[[], bool] | None = None
    custom_kind: str = ""

    def __post_init__(self) -> None:
        object.__setattr__(self, "kind", StepKind(self.kind))
        object.__setattr__(self, "targets", tuple(self.targets))

    @property
    def kind_label(self) -> str:
        """The dispatch tag: the custom tag for CUSTOM steps, else the kind value."""
        if self.kind is StepKind.CUSTOM:
            return self.custom_kind
        return self.kind.value

    def display_name(self, index: int) -> str:
        """Name used in logs and results (falls back to position + kind)."""
        return self.name or f"Step {index + 1} ({self.kind_label})"

    def with_condition(self, condition: Callable[[], bool]) -> PipelineStep:
        """Copy of this step gated by ``condition``."""
        return replace(self, condition=condition)

    def should_run(self) -> bool:
        """Evaluate the gating predicate (ungated steps always run)."""
        if self.condition is None:
            return True
        return bool(self.condition())
