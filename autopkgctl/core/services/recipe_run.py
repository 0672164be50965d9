"""
Recipe runs — parallel and batch execution of many recipes.

Both fan out over a thread pool bounded by ``max_concurrent``; each
recipe is one blocking tool invocation. A failing recipe never raises
out of here, it is recorded in the returned report.
"""

from __future__ import annotations

import concurrent.futures
import logging
import threading
import time
from dataclasses import dataclass, field

from autopkgctl.adapters.base import RecipeTool, ToolError
from autopkgctl.core.models.options import BatchOptions, ParallelRunOptions, RunOptions
from autopkgctl.core.services.trust import reconcile_trust

logger = logging.getLogger(__name__)


@dataclass
class RecipeRunResult:
    """Outcome of running one recipe."""

    recipe: str
    success: bool
    output: str = ""
    error: str | None = None
    duration_ms: int = 0


@dataclass
class ParallelRunReport:
    """Outcome of a parallel run."""

    results: dict[str, RecipeRunResult] = field(default_factory=dict)
    timed_out: bool = False
    stopped: bool = False

    @property
    def succeeded(self) -> list[str]:
        return [r.recipe for r in self.results.values() if r.success]

    @property
    def failed(self) -> list[str]:
        return [r.recipe for r in self.results.values() if not r.success]

    @property
    def all_ok(self) -> bool:
        return not self.failed and not self.timed_out and not self.stopped


@dataclass
class BatchResult:
    """Outcome of one recipe in a batch."""

    recipe: str
    trust_verified: bool = False
    executed: bool = False
    output: str = ""
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.executed and self.error is None


def _run_options(options: RunOptions) -> RunOptions:
    """Narrow a parallel/batch payload down to plain run options."""
    return RunOptions.model_validate(options.model_dump(include=set(RunOptions.model_fields)))


def _run_one(tool: RecipeTool, recipe: str, options: RunOptions) -> RecipeRunResult:
    start = time.monotonic()
    try:
        output = tool.run_recipes([recipe], options)
        result = RecipeRunResult(recipe=recipe, success=True, output=output)
    except ToolError as e:
        result = RecipeRunResult(recipe=recipe, success=False, output=e.output, error=str(e))
    result.duration_ms = int((time.monotonic() - start) * 1000)

    if result.success:
        logger.info("✓ Recipe %s completed in %dms", recipe, result.duration_ms)
    else:
        logger.error("✗ Recipe %s failed after %dms: %s", recipe, result.duration_ms, result.error)
    return result


def run_parallel(
    tool: RecipeTool,
    recipes: list[str],
    options: ParallelRunOptions,
) -> ParallelRunReport:
    """Run recipes concurrently.

    At most ``options.max_concurrent`` recipes run at once. With
    ``stop_on_first_error`` a failure prevents queued recipes from
    starting. When ``options.timeout_seconds`` elapses, queued recipes
    are cancelled and the report is marked timed out; recipes already
    running are not waited for.
    """
    workers = max(1, options.max_concurrent)
    run_options = _run_options(options)
    stop = threading.Event()
    report = ParallelRunReport()

    logger.info("Running %d recipes in parallel (max %d concurrent)", len(recipes), workers)

    def worker(recipe: str) -> RecipeRunResult | None:
        if stop.is_set():
            return None
        result = _run_one(tool, recipe, run_options)
        if not result.success and options.stop_on_first_error:
            stop.set()
        return result

    pool = concurrent.futures.ThreadPoolExecutor(max_workers=workers)
    try:
        futures = [pool.submit(worker, r) for r in recipes]
        for future in concurrent.futures.as_completed(futures, timeout=options.timeout_seconds):
            result = future.result()
            if result is not None:
                report.results[result.recipe] = result
    except concurrent.futures.TimeoutError:
        logger.error("✗ Parallel run timed out after %ss", options.timeout_seconds)
        report.timed_out = True
        stop.set()
    finally:
        pool.shutdown(wait=not report.timed_out, cancel_futures=True)

    report.stopped = stop.is_set() and not report.timed_out
    logger.info(
        "Parallel run completed: %d succeeded, %d failed",
        len(report.succeeded),
        len(report.failed),
    )
    return report


def _process_one(tool: RecipeTool, recipe: str, options: BatchOptions) -> BatchResult:
    result = BatchResult(recipe=recipe)

    if options.verify_trust:
        try:
            result.trust_verified = reconcile_trust(
                tool,
                recipe,
                prefs_path=options.prefs_path,
                repair_on_failure=options.update_trust_on_failure,
                search_dirs=options.search_dirs,
                override_dirs=options.override_dirs,
            )
        except ToolError as e:
            result.error = f"trust update failed: {e}"
            return result
        if not result.trust_verified:
            result.error = "trust verification failed"
            return result

    run = _run_one(tool, recipe, _run_options(options))
    result.executed = True
    result.output = run.output
    result.error = run.error
    return result


def process_batch(
    tool: RecipeTool,
    recipes: list[str],
    options: BatchOptions,
) -> dict[str, BatchResult]:
    """Verify (optionally) and run each recipe.

    Returns a result for every recipe, keyed in input order. Recipes
    that never started because of ``stop_on_first_error`` keep an
    empty, unexecuted result.
    """
    logger.info("Running batch of %d recipes", len(recipes))
    results = {r: BatchResult(recipe=r) for r in recipes}
    stop = threading.Event()

    def worker(recipe: str) -> BatchResult | None:
        if stop.is_set():
            return None
        result = _process_one(tool, recipe, options)
        if result.error and options.stop_on_first_error:
            stop.set()
        return result

    workers = max(1, options.max_concurrent)
    with concurrent.futures.ThreadPoolExecutor(max_workers=workers) as pool:
        for result in pool.map(worker, recipes):
            if result is not None:
                results[result.recipe] = result

    ok = sum(1 for r in results.values() if r.ok)
    logger.info("Batch completed: %d of %d recipes succeeded", ok, len(recipes))
    return results
