"""
Pipeline report — plain-text summary of a pipeline run.

Written after every run when a report file is configured, so CI jobs
can attach it as an artifact. A report that cannot be written is a
warning, never a pipeline failure.
"""

from __future__ import annotations

import logging
from pathlib import Path

from autopkgctl.core.models.result import PipelineResult

logger = logging.getLogger(__name__)


def render_report(result: PipelineResult) -> str:
    """Render the summary text for ``result``."""
    lines = [
        "AutoPkg Pipeline Execution Report",
        "=================================",
        "",
        f"Start Time: {result.started_at.isoformat()}",
        f"End Time: {result.ended_at.isoformat() if result.ended_at else '-'}",
        f"Duration: {result.elapsed_seconds:.1f}s",
        f"Success: {result.success}",
        "",
        f"Completed Steps: {len(result.completed_steps)}",
        f"Failed Steps: {len(result.failed_steps)}",
        f"Skipped Steps: {len(result.skipped_steps)}",
        f"Not Run Steps: {len(result.not_run_steps)}",
        f"Processed Recipes: {len(result.processed_recipes)}",
    ]

    if result.errors:
        lines += ["", "Errors:"]
        for name, error in result.errors.items():
            lines.append(f"  - {name}: {error}")

    return "\n".join(lines) + "\n"


def write_report(result: PipelineResult, path: str | Path) -> bool:
    """Write the report for ``result`` to ``path``.

    Returns:
        True if the file was written.
    """
    target = Path(path)
    try:
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(render_report(result), encoding="utf-8")
    except OSError as e:
        logger.warning("⚠ Failed to write report file %s: %s", target, e)
        return False

    logger.info("Report written to %s", target)
    return True
