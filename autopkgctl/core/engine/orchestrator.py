"""
Pipeline orchestrator — build, validate and execute a step sequence.

The orchestrator is a builder: each ``add_*_step`` call appends one
immutable step, filling in an options payload derived from the
pipeline-wide options when the caller supplies none. Execution is
delegated to a dispatcher (``StepRunner`` by default), which receives
the full step tuple plus a copy of the options.

    orchestrator = (
        PipelineOrchestrator(StepRunner(tool))
        .with_prefs_path("/tmp/autopkg.plist")
        .with_stop_on_first_error()
        .add_import_step("https://github.com/autopkg/recipes.git")
        .add_run_step(["Firefox.download"])
    )
    result = orchestrator.execute()
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Mapping, Sequence
from typing import Any, Protocol

from pydantic import BaseModel, ValidationError

from autopkgctl.adapters.autopkg.cli import AutoPkgCLI
from autopkgctl.adapters.base import RecipeTool
from autopkgctl.core.config.loader import ConfigError, PipelineDefinition, Settings
from autopkgctl.core.engine.executor import PipelineExecutionError, StepRunner
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
    PipelineOptions,
    RepoOptions,
    RunOptions,
    SearchOptions,
    UpdateTrustOptions,
    ValidateOptions,
    VerifyTrustOptions,
)
from autopkgctl.core.models.result import PipelineResult
from autopkgctl.core.models.step import (
    OPTION_TYPES,
    SINGLE_TARGET_KINDS,
    TARGETED_KINDS,
    PipelineStep,
    StepKind,
)

logger = logging.getLogger(__name__)


class PipelineValidationError(Exception):
    """Raised when a step sequence cannot be executed as built."""


class StepDispatcher(Protocol):
    def dispatch(self, steps: Sequence[PipelineStep], options: PipelineOptions) -> Any: ...


def _warn_unknown_keys(where: str, model: type[BaseModel], data: Mapping[str, Any]) -> None:
    """Log keys pydantic would silently drop (usually typos)."""
    unknown = sorted(set(data) - set(model.model_fields))
    if unknown:
        logger.warning("⚠ Ignoring unknown keys in %s: %s", where, ", ".join(unknown))


class PipelineOrchestrator:
    """Builder and executor for a pipeline of steps.

    Args:
        dispatcher: Runs the built steps. Required for ``execute``.
        options: Pipeline-wide options (copied).
    """

    def __init__(
        self,
        dispatcher: StepDispatcher | None = None,
        options: PipelineOptions | None = None,
    ):
        self._dispatcher = dispatcher
        self._options = options.model_copy() if options else PipelineOptions()
        self._steps: list[PipelineStep] = []

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        tool: RecipeTool | None = None,
        dispatcher: StepDispatcher | None = None,
    ) -> PipelineOrchestrator:
        """Orchestrator configured from environment settings.

        Without an explicit dispatcher, a StepRunner is created over
        ``tool`` (the autopkg CLI when no tool is given).
        """
        if dispatcher is None:
            if tool is None:
                tool = AutoPkgCLI(binary=settings.autopkg_bin)
            dispatcher = StepRunner(tool, cache_dir=settings.cache_dir)

        options = PipelineOptions(
            max_concurrent=settings.max_concurrent,
            timeout_seconds=settings.timeout_minutes * 60,
            stop_on_first_error=settings.stop_on_first_error,
            prefs_path=settings.prefs_path,
            report_file=settings.report_file,
            webhook_url=settings.webhook_url,
            notify_on_error=settings.notify_on_error,
            notify_on_completion=settings.notify_on_completion,
        )
        return cls(dispatcher, options)

    @classmethod
    def from_definition(
        cls,
        definition: PipelineDefinition,
        settings: Settings | None = None,
        tool: RecipeTool | None = None,
        dispatcher: StepDispatcher | None = None,
    ) -> PipelineOrchestrator:
        """Replay a loaded pipeline definition through the builder.

        Pipeline options from the definition override the settings.
        Step option mappings are merged over each kind's defaults.

        Raises:
            ConfigError: Unknown step kind or invalid options.
        """
        orchestrator = cls.from_settings(settings or Settings(), tool, dispatcher)

        _warn_unknown_keys("pipeline options", PipelineOptions, definition.options)
        try:
            orchestrator._options = PipelineOptions.model_validate(
                {**orchestrator._options.model_dump(), **definition.options}
            )
        except ValidationError as e:
            raise ConfigError(f"Invalid pipeline options: {e}") from e

        for index, step_def in enumerate(definition.steps):
            try:
                kind = StepKind(step_def.kind)
            except ValueError as e:
                raise ConfigError(f"step {index + 1}: unknown step kind '{step_def.kind}'") from e

            options: Any = step_def.options
            if kind is not StepKind.CUSTOM and options is not None:
                _warn_unknown_keys(
                    f"step {index + 1} ({kind.value}) options", OPTION_TYPES[kind], options
                )
                try:
                    options = OPTION_TYPES[kind].model_validate(
                        {**orchestrator._default_options(kind).model_dump(), **options}
                    )
                except ValidationError as e:
                    raise ConfigError(f"step {index + 1} ({kind.value}): invalid options: {e}") from e

            orchestrator._add(
                kind,
                step_def.targets,
                options,
                step_def.continue_on_error,
                name=step_def.name,
                description=step_def.description,
                custom_kind=step_def.custom_kind,
            )
        return orchestrator

    # ── Pipeline options ───────────────────────────────────────

    @property
    def options(self) -> PipelineOptions:
        return self._options.model_copy()

    @property
    def steps(self) -> tuple[PipelineStep, ...]:
        return tuple(self._steps)

    def with_prefs_path(self, prefs_path: str) -> PipelineOrchestrator:
        self._options.prefs_path = prefs_path
        return self

    def with_concurrency(self, max_concurrent: int) -> PipelineOrchestrator:
        self._options.max_concurrent = max_concurrent
        return self

    def with_timeout(self, seconds: float) -> PipelineOrchestrator:
        self._options.timeout_seconds = seconds
        return self

    def with_stop_on_first_error(self, stop: bool = True) -> PipelineOrchestrator:
        self._options.stop_on_first_error = stop
        return self

    def with_report_file(self, path: str) -> PipelineOrchestrator:
        self._options.report_file = path
        return self

    def with_webhook_notifications(
        self,
        url: str,
        notify_on_error: bool = True,
        notify_on_completion: bool = True,
    ) -> PipelineOrchestrator:
        self._options.webhook_url = url
        self._options.notify_on_error = notify_on_error
        self._options.notify_on_completion = notify_on_completion
        return self

    # ── Steps ──────────────────────────────────────────────────

    def _default_options(self, kind: StepKind) -> Any:
        """Options for ``kind`` derived from the current pipeline options."""
        opts = self._options
        if kind is StepKind.PARALLEL_RUN:
            return ParallelRunOptions(
                prefs_path=opts.prefs_path,
                max_concurrent=opts.max_concurrent,
                timeout_seconds=opts.timeout_seconds,
                stop_on_first_error=opts.stop_on_first_error,
            )
        if kind is StepKind.BATCH:
            return BatchOptions(
                prefs_path=opts.prefs_path,
                max_concurrent=opts.max_concurrent,
                stop_on_first_error=opts.stop_on_first_error,
            )
        if kind is StepKind.CLEANUP:
            return CleanupOptions(
                prefs_path=opts.prefs_path,
                remove_downloads=True,
                remove_recipe_cache=True,
            )
        return OPTION_TYPES[kind](prefs_path=opts.prefs_path)

    def _add(
        self,
        kind: StepKind,
        targets: Iterable[str] = (),
        options: Any = None,
        continue_on_error: bool = False,
        name: str = "",
        description: str = "",
        custom_kind: str = "",
    ) -> PipelineOrchestrator:
        if options is None and kind is not StepKind.CUSTOM:
            options = self._default_options(kind)
        step = PipelineStep(
            kind=kind,
            targets=tuple(targets),
            options=options,
            continue_on_error=continue_on_error,
            name=name,
            description=description,
            custom_kind=custom_kind,
        )
        self._steps.append(step)
        logger.debug("Added step %d: %s", len(self._steps), step.kind_label)
        return self

    def add_verify_step(
        self,
        overrides: Iterable[str],
        options: VerifyTrustOptions | None = None,
        continue_on_error: bool = False,
    ) -> PipelineOrchestrator:
        return self._add(StepKind.VERIFY, overrides, options, continue_on_error)

    def add_update_trust_step(
        self,
        overrides: Iterable[str],
        options: UpdateTrustOptions | None = None,
        continue_on_error: bool = False,
    ) -> PipelineOrchestrator:
        return self._add(StepKind.UPDATE_TRUST, overrides, options, continue_on_error)

    def add_run_step(
        self,
        recipes: Iterable[str],
        options: RunOptions | None = None,
        continue_on_error: bool = False,
    ) -> PipelineOrchestrator:
        return self._add(StepKind.RUN, recipes, options, continue_on_error)

    def add_parallel_run_step(
        self,
        recipes: Iterable[str],
        options: ParallelRunOptions | None = None,
        continue_on_error: bool = False,
    ) -> PipelineOrchestrator:
        """Run recipes concurrently (defaults: pipeline concurrency and timeout)."""
        return self._add(StepKind.PARALLEL_RUN, recipes, options, continue_on_error)

    def add_batch_step(
        self,
        recipes: Iterable[str],
        options: BatchOptions | None = None,
        continue_on_error: bool = False,
    ) -> PipelineOrchestrator:
        return self._add(StepKind.BATCH, recipes, options, continue_on_error)

    def add_validate_step(
        self,
        recipes: Iterable[str],
        options: ValidateOptions | None = None,
        continue_on_error: bool = False,
    ) -> PipelineOrchestrator:
        return self._add(StepKind.VALIDATE, recipes, options, continue_on_error)

    def add_make_override_step(
        self,
        recipes: Iterable[str],
        options: MakeOverrideOptions | None = None,
        continue_on_error: bool = False,
    ) -> PipelineOrchestrator:
        return self._add(StepKind.MAKE_OVERRIDE, recipes, options, continue_on_error)

    def add_install_step(
        self,
        recipes: Iterable[str],
        options: InstallOptions | None = None,
        continue_on_error: bool = False,
    ) -> PipelineOrchestrator:
        return self._add(StepKind.INSTALL, recipes, options, continue_on_error)

    def add_audit_step(
        self,
        recipes: Iterable[str],
        options: AuditOptions | None = None,
        continue_on_error: bool = False,
    ) -> PipelineOrchestrator:
        return self._add(StepKind.AUDIT, recipes, options, continue_on_error)

    def add_repo_update_step(
        self,
        repos: Iterable[str],
        options: RepoOptions | None = None,
        continue_on_error: bool = False,
    ) -> PipelineOrchestrator:
        return self._add(StepKind.REPO_UPDATE, repos, options, continue_on_error)

    def add_import_step(
        self,
        repo_url: str,
        options: ImportRecipesFromRepoOptions | None = None,
        continue_on_error: bool = False,
    ) -> PipelineOrchestrator:
        """Import every recipe of ``repo_url`` as a (trusted) override."""
        return self._add(StepKind.IMPORT, [repo_url], options, continue_on_error)

    def add_search_step(
        self,
        term: str,
        options: SearchOptions | None = None,
        continue_on_error: bool = False,
    ) -> PipelineOrchestrator:
        return self._add(StepKind.SEARCH, [term], options, continue_on_error)

    def add_cleanup_step(
        self,
        options: CleanupOptions | None = None,
        continue_on_error: bool = False,
    ) -> PipelineOrchestrator:
        return self._add(StepKind.CLEANUP, (), options, continue_on_error)

    def add_list_step(
        self,
        options: ListRecipeOptions | None = None,
        continue_on_error: bool = False,
    ) -> PipelineOrchestrator:
        return self._add(StepKind.LIST, (), options, continue_on_error)

    def add_repo_list_step(
        self,
        options: RepoOptions | None = None,
        continue_on_error: bool = False,
    ) -> PipelineOrchestrator:
        return self._add(StepKind.REPO_LIST, (), options, continue_on_error)

    def add_filter_step(
        self,
        criteria: FilterCriteria | None = None,
        continue_on_error: bool = False,
    ) -> PipelineOrchestrator:
        return self._add(StepKind.FILTER, (), criteria, continue_on_error)

    def add_custom_step(
        self,
        kind_tag: str,
        name: str = "",
        description: str = "",
        targets: Iterable[str] = (),
        options: Any = None,
        continue_on_error: bool = False,
    ) -> PipelineOrchestrator:
        """Append a step handled by the dispatcher's ``kind_tag`` handler."""
        return self._add(
            StepKind.CUSTOM,
            targets,
            options,
            continue_on_error,
            name=name,
            description=description,
            custom_kind=kind_tag,
        )

    def add_conditional_step(
        self,
        step: PipelineStep,
        condition: Callable[[], bool],
    ) -> PipelineOrchestrator:
        """Append a copy of ``step`` that only runs when ``condition()`` is true."""
        self._steps.append(step.with_condition(condition))
        return self

    # ── Build / validate / execute ─────────────────────────────

    def build(self) -> tuple[tuple[PipelineStep, ...], PipelineOptions]:
        """The built steps and a copy of the options."""
        return tuple(self._steps), self._options.model_copy()

    def validate(self) -> None:
        """Check the step sequence.

        Raises:
            PipelineValidationError: On the first problem found.
        """
        if not self._steps:
            raise PipelineValidationError("pipeline has no steps")

        for index, step in enumerate(self._steps):
            label = f"step {index + 1} ({step.name or step.kind_label or step.kind.value})"
            count = len(step.targets)

            if step.kind is StepKind.CUSTOM:
                if not step.custom_kind:
                    raise PipelineValidationError(f"{label}: custom step requires a kind tag")
                continue

            if step.kind in SINGLE_TARGET_KINDS:
                if count != 1:
                    raise PipelineValidationError(
                        f"{label}: {step.kind.value} step requires exactly one target, got {count}"
                    )
                if not step.targets[0].strip():
                    raise PipelineValidationError(f"{label}: {step.kind.value} target is empty")
            elif step.kind in TARGETED_KINDS and count == 0:
                raise PipelineValidationError(
                    f"{label}: {step.kind.value} step requires at least one target"
                )

            expected = OPTION_TYPES[step.kind]
            if step.options is not None and not isinstance(step.options, expected):
                raise PipelineValidationError(
                    f"{label}: options must be {expected.__name__}, "
                    f"got {type(step.options).__name__}"
                )

    def execute(self) -> PipelineResult:
        """Validate, then run every step through the dispatcher.

        Raises:
            PipelineValidationError: The sequence is invalid or there is
                no dispatcher.
            PipelineExecutionError: Raised by the dispatcher when a step failed.
        """
        self.validate()
        if self._dispatcher is None:
            raise PipelineValidationError("no dispatcher configured")

        steps, options = self.build()
        logger.info("Executing pipeline with %d steps", len(steps))
        return self._dispatcher.dispatch(steps, options)

    def execute_with_context(
        self,
        pre_hook: Callable[[], None] | None = None,
        post_hook: Callable[[PipelineResult | None, BaseException | None], None] | None = None,
    ) -> PipelineResult:
        """``execute`` wrapped in hooks.

        ``pre_hook()`` runs first. ``post_hook(result, error)`` always
        runs afterwards; on a step failure ``result`` is the partial
        result carried by the error. The error is re-raised after the
        post hook.
        """
        if pre_hook is not None:
            pre_hook()

        result: PipelineResult | None = None
        error: BaseException | None = None
        try:
            result = self.execute()
            return result
        except PipelineExecutionError as e:
            result, error = e.result, e
            raise
        except Exception as e:
            error = e
            raise
        finally:
            if post_hook is not None:
                post_hook(result, error)
