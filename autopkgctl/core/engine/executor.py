"""
Step runner — the default pipeline dispatcher.

Takes the ordered steps built by the orchestrator and runs them one
after another on the calling thread. Every step produces a StepResult,
whatever happens; the aggregate PipelineResult is returned, or carried
by PipelineExecutionError when any step failed.

Flow, per step:
    gate (condition) → resolve options → dispatch by kind → record result
        → on failure: notify, then continue or stop per error policy

After the loop: finish timing → write report → completion notification.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from autopkgctl.adapters.base import RecipeTool, ToolError
from autopkgctl.core.models.options import PipelineOptions
from autopkgctl.core.models.result import PipelineResult, StepResult
from autopkgctl.core.models.step import OPTION_TYPES, PipelineStep, StepKind
from autopkgctl.core.persistence.report import write_report
from autopkgctl.core.services.cache_cleanup import cleanup_cache
from autopkgctl.core.services.import_workflow import import_from_repository
from autopkgctl.core.services.notifications import NotificationError, WebhookNotifier
from autopkgctl.core.services.recipe_filter import filter_recipes
from autopkgctl.core.services.recipe_run import process_batch, run_parallel
from autopkgctl.core.services.validation import validate_recipe_list

logger = logging.getLogger(__name__)


class PipelineExecutionError(Exception):
    """Raised when one or more steps failed; ``result`` has the full picture."""

    def __init__(self, result: PipelineResult):
        failed = result.failed_steps
        super().__init__(f"pipeline failed: {len(failed)} step(s) failed ({', '.join(failed)})")
        self.result = result


class StepFailure(Exception):
    """Raised by a handler when its step failed for a reason other than a tool error."""

    def __init__(
        self,
        message: str,
        output: str = "",
        processed: Sequence[str] = (),
        metadata: dict[str, Any] | None = None,
    ):
        super().__init__(message)
        self.output = output
        self.processed = list(processed)
        self.metadata = metadata or {}


@dataclass
class StepOutcome:
    """What a handler hands back for a successful step."""

    output: str = ""
    processed: list[str] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)


StepHandler = Callable[[PipelineStep, PipelineOptions], StepOutcome | str | None]


def _as_outcome(value: StepOutcome | str | None) -> StepOutcome:
    if isinstance(value, StepOutcome):
        return value
    return StepOutcome(output=value or "")


class StepRunner:
    """Runs pipeline steps against a recipe tool.

    Args:
        tool: Recipe tool backend.
        notifier: Webhook notifier. When None, each dispatch creates one from
            ``PipelineOptions.webhook_url`` if notifications are enabled.
        report_writer: Called as ``report_writer(result, path)`` when a
            report file is configured. Defaults to ``write_report``.
        cache_dir: AutoPkg cache directory for cleanup steps.
    """

    def __init__(
        self,
        tool: RecipeTool,
        notifier: WebhookNotifier | None = None,
        report_writer: Callable[[PipelineResult, str], Any] | None = None,
        cache_dir: str | Path | None = None,
    ):
        self._tool = tool
        self._notifier = notifier
        self._report_writer = report_writer or write_report
        self._cache_dir = cache_dir
        self._custom: dict[str, StepHandler] = {}
        self._handlers: dict[StepKind, StepHandler] = {
            StepKind.VERIFY: self._verify,
            StepKind.UPDATE_TRUST: self._update_trust,
            StepKind.RUN: self._run,
            StepKind.PARALLEL_RUN: self._parallel_run,
            StepKind.BATCH: self._batch,
            StepKind.CLEANUP: self._cleanup,
            StepKind.VALIDATE: self._validate,
            StepKind.IMPORT: self._import,
            StepKind.AUDIT: self._audit,
            StepKind.INSTALL: self._install,
            StepKind.SEARCH: self._search,
            StepKind.LIST: self._list,
            StepKind.REPO_LIST: self._repo_list,
            StepKind.MAKE_OVERRIDE: self._make_override,
            StepKind.REPO_UPDATE: self._repo_update,
            StepKind.FILTER: self._filter,
            StepKind.CUSTOM: self._custom_step,
        }

    def register_handler(self, tag: str, handler: StepHandler) -> None:
        """Register the handler for custom steps tagged ``tag``."""
        if tag in self._custom:
            logger.warning("Overwriting handler for custom step kind: %s", tag)
        self._custom[tag] = handler
        logger.debug("Registered custom step handler: %s", tag)

    # ── Dispatch ───────────────────────────────────────────────

    def dispatch(self, steps: Sequence[PipelineStep], options: PipelineOptions) -> PipelineResult:
        """Run ``steps`` in order and aggregate their results.

        A failed step stops the pipeline unless it has
        ``continue_on_error`` and ``options.stop_on_first_error`` is off.
        Steps after the stop are recorded as not run.

        Raises:
            PipelineExecutionError: If any step failed.
        """
        result = PipelineResult()
        notifier = self._notifier_for(options)
        logger.info("Starting pipeline with %d steps", len(steps))

        stopped = False
        for index, step in enumerate(steps):
            name = step.display_name(index)
            if stopped:
                result.steps.append(StepResult(name=name, kind=step.kind_label, status="not_run"))
                continue

            step_result = self.run_step(step, index, options)
            result.steps.append(step_result)

            if step_result.failed:
                if options.notify_on_error:
                    self._notify(notifier, f"Pipeline step '{name}' failed: {step_result.error}")
                if not step.continue_on_error or options.stop_on_first_error:
                    logger.error("✗ Stopping pipeline after failed step: %s", name)
                    stopped = True

        result.finish()

        if options.report_file:
            self._report_writer(result, options.report_file)

        if options.notify_on_completion:
            status = "succeeded" if result.success else "failed"
            self._notify(
                notifier,
                f"Pipeline {status}: {len(result.completed_steps)} completed, "
                f"{len(result.failed_steps)} failed, {len(result.skipped_steps)} skipped, "
                f"{len(result.processed_recipes)} recipes processed",
            )

        marker = "✓" if result.success else "✗"
        logger.info(
            "%s Pipeline finished in %.1fs: %d completed, %d failed, %d skipped, %d not run",
            marker,
            result.elapsed_seconds,
            len(result.completed_steps),
            len(result.failed_steps),
            len(result.skipped_steps),
            len(result.not_run_steps),
        )

        if not result.success:
            raise PipelineExecutionError(result)
        return result

    def run_step(self, step: PipelineStep, index: int, options: PipelineOptions) -> StepResult:
        """Run one step. Never raises; failures come back as a failed StepResult."""
        name = step.display_name(index)
        label = step.kind_label
        start = time.monotonic()

        try:
            if not step.should_run():
                logger.info("⊘ %s skipped: condition not met", name)
                return StepResult.skip(name, label, reason="condition not met")

            logger.info("Running %s", name)
            outcome = _as_outcome(self._handlers[step.kind](step, options))
            step_result = StepResult.success(
                name,
                label,
                output=outcome.output,
                processed=outcome.processed,
                metadata=outcome.metadata,
            )
        except StepFailure as e:
            step_result = StepResult.failure(
                name,
                label,
                error=str(e),
                output=e.output,
                processed=e.processed,
                metadata=e.metadata,
            )
        except ToolError as e:
            step_result = StepResult.failure(name, label, error=str(e), output=e.output)
        except Exception as e:
            # Custom handlers and services may raise anything
            step_result = StepResult.failure(name, label, error=f"{label} failed: {e}")

        step_result.duration_ms = int((time.monotonic() - start) * 1000)
        if step_result.ok:
            logger.info("✓ %s completed in %dms", name, step_result.duration_ms)
        else:
            logger.error("✗ %s failed: %s", name, step_result.error)
        return step_result

    def _notifier_for(self, options: PipelineOptions) -> WebhookNotifier | None:
        """The injected notifier, else one for this dispatch's webhook URL."""
        if self._notifier is not None:
            return self._notifier
        if options.webhook_url:
            return WebhookNotifier(options.webhook_url)
        return None

    @staticmethod
    def _notify(notifier: WebhookNotifier | None, message: str) -> None:
        if notifier is None:
            return
        try:
            notifier.send(message)
        except NotificationError as e:
            logger.warning("⚠ Failed to send notification: %s", e)

    @staticmethod
    def _options(step: PipelineStep, options: PipelineOptions) -> Any:
        """Step payload, or the kind's defaults when the step has none."""
        if step.options is not None:
            return step.options
        return OPTION_TYPES[step.kind](prefs_path=options.prefs_path)

    # ── Trust ──────────────────────────────────────────────────

    def _verify(self, step: PipelineStep, options: PipelineOptions) -> StepOutcome:
        targets = list(step.targets)
        check = self._tool.verify_trust(targets, self._options(step, options))
        if not check.success:
            raise StepFailure(
                f"verify failed: trust verification failed for {', '.join(check.failed)}",
                output=check.output,
                processed=targets,
                metadata={"failed": check.failed, "reasons": check.reasons},
            )
        return StepOutcome(output=check.output, processed=targets)

    def _update_trust(self, step: PipelineStep, options: PipelineOptions) -> StepOutcome:
        targets = list(step.targets)
        output = self._tool.update_trust(targets, self._options(step, options))
        return StepOutcome(output=output, processed=targets)

    # ── Running recipes ────────────────────────────────────────

    def _run(self, step: PipelineStep, options: PipelineOptions) -> StepOutcome:
        targets = list(step.targets)
        output = self._tool.run_recipes(targets, self._options(step, options))
        return StepOutcome(output=output, processed=targets)

    def _parallel_run(self, step: PipelineStep, options: PipelineOptions) -> StepOutcome:
        report = run_parallel(self._tool, list(step.targets), self._options(step, options))
        processed = list(report.results)
        metadata = {
            "succeeded": report.succeeded,
            "failed": report.failed,
            "timed_out": report.timed_out,
        }
        output = "\n".join(r.output for r in report.results.values() if r.output)

        if report.timed_out:
            raise StepFailure(
                f"parallel-run failed: timed out with {len(step.targets) - len(processed)} "
                "recipe(s) unfinished",
                output=output,
                processed=processed,
                metadata=metadata,
            )
        if not report.all_ok:
            raise StepFailure(
                f"parallel-run failed: {len(report.failed)} of {len(step.targets)} recipes "
                f"failed: {', '.join(report.failed)}",
                output=output,
                processed=processed,
                metadata=metadata,
            )
        return StepOutcome(output=output, processed=processed, metadata=metadata)

    def _batch(self, step: PipelineStep, options: PipelineOptions) -> StepOutcome:
        results = process_batch(self._tool, list(step.targets), self._options(step, options))
        processed = [r.recipe for r in results.values() if r.executed]
        errors = {r.recipe: r.error or "not run" for r in results.values() if not r.ok}
        output = "\n".join(r.output for r in results.values() if r.output)
        metadata = {"errors": errors}

        if errors:
            raise StepFailure(
                f"batch failed: {len(errors)} of {len(results)} recipes failed: "
                f"{', '.join(errors)}",
                output=output,
                processed=processed,
                metadata=metadata,
            )
        return StepOutcome(output=output, processed=processed, metadata=metadata)

    def _install(self, step: PipelineStep, options: PipelineOptions) -> StepOutcome:
        targets = list(step.targets)
        output = self._tool.install(targets, self._options(step, options))
        return StepOutcome(output=output, processed=targets)

    def _audit(self, step: PipelineStep, options: PipelineOptions) -> StepOutcome:
        targets = list(step.targets)
        output = self._tool.audit(targets, self._options(step, options))
        return StepOutcome(output=output, processed=targets)

    # ── Recipe management ──────────────────────────────────────

    def _validate(self, step: PipelineStep, options: PipelineOptions) -> StepOutcome:
        report = validate_recipe_list(self._tool, list(step.targets), self._options(step, options))
        if not report.ok:
            problems = [f"{r} ({reason})" for r, reason in report.invalid.items()]
            problems += [f"{r} (untrusted)" for r in report.trust_failed]
            raise StepFailure(
                f"validate failed: {', '.join(problems)}",
                processed=report.valid,
                metadata=report.to_dict(),
            )
        return StepOutcome(
            output=f"{len(report.valid)} recipes valid",
            processed=report.valid,
            metadata=report.to_dict(),
        )

    def _import(self, step: PipelineStep, options: PipelineOptions) -> StepOutcome:
        repo_url = step.targets[0]
        imported = import_from_repository(self._tool, repo_url, self._options(step, options))
        return StepOutcome(
            output=f"Imported {len(imported)} recipes from {repo_url}",
            processed=imported,
            metadata={"repo": repo_url, "imported": imported},
        )

    def _make_override(self, step: PipelineStep, options: PipelineOptions) -> StepOutcome:
        step_options = self._options(step, options)
        outputs: list[str] = []
        done: list[str] = []
        for recipe in step.targets:
            try:
                outputs.append(self._tool.make_override(recipe, step_options))
            except ToolError as e:
                raise StepFailure(
                    str(e), output="\n".join(outputs), processed=done
                ) from e
            done.append(recipe)
        return StepOutcome(output="\n".join(outputs), processed=done)

    def _filter(self, step: PipelineStep, options: PipelineOptions) -> StepOutcome:
        report = filter_recipes(self._tool, self._options(step, options))
        return StepOutcome(
            output="\n".join(report.matching),
            metadata=report.to_dict(),
        )

    def _cleanup(self, step: PipelineStep, options: PipelineOptions) -> StepOutcome:
        report = cleanup_cache(self._options(step, options), self._cache_dir)
        return StepOutcome(
            output=f"Removed {len(report.removed)} cache entries",
            metadata={"removed": len(report.removed), "kept": report.kept, "errors": report.errors},
        )

    # ── Discovery ──────────────────────────────────────────────

    def _search(self, step: PipelineStep, options: PipelineOptions) -> StepOutcome:
        return StepOutcome(output=self._tool.search(step.targets[0], self._options(step, options)))

    def _list(self, step: PipelineStep, options: PipelineOptions) -> StepOutcome:
        opts = self._options(step, options)
        lines = self._tool.list_recipes(
            opts.prefs_path,
            with_identifiers=opts.with_identifiers,
            with_paths=opts.with_paths,
            show_all=opts.show_all,
        )
        return StepOutcome(output="\n".join(lines), metadata={"count": len(lines)})

    def _repo_list(self, step: PipelineStep, options: PipelineOptions) -> StepOutcome:
        return StepOutcome(output=self._tool.list_repos(self._options(step, options).prefs_path))

    def _repo_update(self, step: PipelineStep, options: PipelineOptions) -> StepOutcome:
        repos = list(step.targets)
        output = self._tool.update_repos(repos, self._options(step, options).prefs_path)
        return StepOutcome(output=output, metadata={"repos": repos})

    # ── Custom ─────────────────────────────────────────────────

    def _custom_step(self, step: PipelineStep, options: PipelineOptions) -> StepOutcome:
        tag = step.custom_kind
        handler = self._custom.get(tag)
        if handler is None:
            raise StepFailure(f"{tag} failed: no handler registered for custom step kind '{tag}'")
        return _as_outcome(handler(step, options))
