"""
autopkgctl — CLI entrypoint.

Usage:
    autopkgctl --help
    autopkgctl import https://github.com/autopkg/recipes.git --include Firefox
    autopkgctl verify-trust Firefox.download.override --repair
    autopkgctl pipeline run pipeline.yml
"""

from __future__ import annotations

import json
import sys
from pathlib import Path

import click
from pydantic import ValidationError

from autopkgctl import __version__
from autopkgctl.adapters.autopkg.cli import AutoPkgCLI
from autopkgctl.adapters.base import RecipeTool, ToolError
from autopkgctl.core.config.loader import PIPELINE_CONFIG_FILE, ConfigError, Settings, load_pipeline
from autopkgctl.core.engine.executor import PipelineExecutionError
from autopkgctl.core.engine.orchestrator import PipelineOrchestrator, PipelineValidationError
from autopkgctl.core.models.options import ImportRecipesFromRepoOptions
from autopkgctl.core.models.result import PipelineResult
from autopkgctl.core.observability.logging_config import resolve_level, setup_logging
from autopkgctl.core.services.import_workflow import ImportWorkflowError, import_from_repository
from autopkgctl.core.services.trust import reconcile_trust


@click.group()
@click.version_option(version=__version__, prog_name="autopkgctl")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output.")
@click.option("--quiet", "-q", is_flag=True, help="Suppress non-essential output.")
@click.option("--debug", is_flag=True, help="Enable debug logging (very verbose).")
@click.option(
    "--prefs",
    "prefs_path",
    type=click.Path(exists=False),
    default=None,
    help="AutoPkg preferences file (default: $AUTOPKG_PREFS).",
)
@click.pass_context
def cli(
    ctx: click.Context,
    verbose: bool,
    quiet: bool,
    debug: bool,
    prefs_path: str | None,
) -> None:
    """autopkgctl — AutoPkg recipe pipelines for CI."""
    ctx.ensure_object(dict)

    try:
        settings = Settings.from_env()
    except ConfigError as e:
        click.secho(f"❌ {e}", fg="red", err=True)
        sys.exit(1)

    if prefs_path:
        settings = settings.model_copy(update={"prefs_path": prefs_path})

    ctx.obj["settings"] = settings
    ctx.obj["quiet"] = quiet

    # ── Logging setup (once, at process start) ──────────────────
    setup_logging(
        level=resolve_level(verbose, debug, quiet, settings.log_level),
        log_file=settings.log_file,
    )


def _tool(ctx: click.Context) -> RecipeTool:
    """The recipe tool for this invocation (tests inject one via ``obj``)."""
    tool = ctx.obj.get("tool")
    if tool is None:
        settings: Settings = ctx.obj["settings"]
        tool = AutoPkgCLI(binary=settings.autopkg_bin, timeout=settings.timeout_minutes * 60)
        ctx.obj["tool"] = tool
    return tool


# ── import ──────────────────────────────────────────────────────


@cli.command("import")
@click.argument("repo_url")
@click.option("--include", "include", default="", help="Only import recipes matching this regex.")
@click.option("--exclude", "exclude", default="", help="Skip recipes matching this regex.")
@click.option("--require", "required", multiple=True, help="Always import this recipe (repeatable).")
@click.option(
    "--identifier-prefix",
    default=None,
    help="Strict repository membership: identifier must start with this prefix.",
)
@click.option("--no-verify-trust", is_flag=True, help="Skip trust verification of new overrides.")
@click.option("--no-repair", is_flag=True, help="Don't update trust info when verification fails.")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def import_cmd(
    ctx: click.Context,
    repo_url: str,
    include: str,
    exclude: str,
    required: tuple[str, ...],
    identifier_prefix: str | None,
    no_verify_trust: bool,
    no_repair: bool,
    as_json: bool,
) -> None:
    """Add a recipe repository and import its recipes as overrides."""
    settings: Settings = ctx.obj["settings"]

    try:
        options = ImportRecipesFromRepoOptions(
            prefs_path=settings.prefs_path,
            verify_trust=not no_verify_trust,
            update_trust_on_failure=not no_repair,
            required_recipes=list(required),
            recipe_pattern=include,
            ignore_recipe_pattern=exclude,
            identifier_prefix=identifier_prefix,
        )
        imported = import_from_repository(_tool(ctx), repo_url, options)
    except (ValidationError, ConfigError) as e:
        click.secho(f"❌ Invalid options: {e}", fg="red", err=True)
        sys.exit(1)
    except ImportWorkflowError as e:
        click.secho(f"❌ Import failed at {e.stage}: {e}", fg="red", err=True)
        sys.exit(1)

    if as_json:
        click.echo(json.dumps({"repo": repo_url, "imported": imported}, indent=2))
        return

    click.secho(f"✅ Imported {len(imported)} recipes from {repo_url}", fg="green", bold=True)
    if not ctx.obj.get("quiet"):
        for override in imported:
            click.echo(f"   • {override}")


# ── verify-trust ────────────────────────────────────────────────


@cli.command("verify-trust")
@click.argument("overrides", nargs=-1, required=True)
@click.option("--repair", is_flag=True, help="Update trust info once for failing overrides.")
@click.pass_context
def verify_trust_cmd(ctx: click.Context, overrides: tuple[str, ...], repair: bool) -> None:
    """Verify trust info for one or more overrides."""
    settings: Settings = ctx.obj["settings"]
    tool = _tool(ctx)

    untrusted = []
    for override in overrides:
        try:
            trusted = reconcile_trust(
                tool, override, prefs_path=settings.prefs_path, repair_on_failure=repair
            )
        except ToolError as e:
            click.secho(f"❌ {override}: {e}", fg="red")
            untrusted.append(override)
            continue

        if trusted:
            click.secho(f"✅ {override}", fg="green")
        else:
            click.secho(f"❌ {override}: trust verification failed", fg="red")
            untrusted.append(override)

    if untrusted:
        sys.exit(1)


# ── pipeline ────────────────────────────────────────────────────


@cli.group()
def pipeline() -> None:
    """Declarative pipeline commands."""


def _load_orchestrator(ctx: click.Context, path: str) -> PipelineOrchestrator:
    definition = load_pipeline(Path(path))
    return PipelineOrchestrator.from_definition(
        definition, settings=ctx.obj["settings"], tool=_tool(ctx)
    )


@pipeline.command("validate")
@click.argument("path", type=click.Path(exists=False), default=PIPELINE_CONFIG_FILE)
@click.pass_context
def pipeline_validate(ctx: click.Context, path: str) -> None:
    """Validate a pipeline file (default: pipeline.yml) without running it."""
    try:
        orchestrator = _load_orchestrator(ctx, path)
        orchestrator.validate()
    except (ConfigError, PipelineValidationError) as e:
        click.secho("❌ Pipeline is invalid:", fg="red", bold=True)
        click.echo(f"   • {e}")
        sys.exit(1)

    click.secho(f"✅ Pipeline is valid ({len(orchestrator.steps)} steps)", fg="green", bold=True)


def _print_result(result: PipelineResult) -> None:
    for step in result.steps:
        marker, color = {
            "ok": ("✓", "green"),
            "failed": ("✗", "red"),
            "skipped": ("⊘", "yellow"),
        }.get(step.status, ("·", "white"))
        click.secho(f"   {marker} {step.name}", fg=color, nl=False)
        click.echo(f" — {step.error}" if step.error else "")

    click.echo()
    if result.success:
        click.secho(
            f"✅ Pipeline succeeded in {result.elapsed_seconds:.1f}s "
            f"({len(result.processed_recipes)} recipes processed)",
            fg="green",
            bold=True,
        )
    else:
        click.secho(
            f"❌ Pipeline failed: {len(result.failed_steps)} step(s) failed",
            fg="red",
            bold=True,
        )


@pipeline.command("run")
@click.argument("path", type=click.Path(exists=False), default=PIPELINE_CONFIG_FILE)
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def pipeline_run(ctx: click.Context, path: str, as_json: bool) -> None:
    """Run a pipeline file (default: pipeline.yml)."""
    try:
        orchestrator = _load_orchestrator(ctx, path)
        result = orchestrator.execute()
    except (ConfigError, PipelineValidationError) as e:
        click.secho(f"❌ {e}", fg="red", err=True)
        sys.exit(1)
    except PipelineExecutionError as e:
        result = e.result

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
    else:
        _print_result(result)

    if not result.success:
        sys.exit(1)


if __name__ == "__main__":
    cli()
