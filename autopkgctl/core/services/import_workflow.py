"""
Repository import — add a recipe repo and turn its recipes into trusted overrides.

Flow:
    register repo → derive short name → compile filters → list recipes
        → resolve candidates → per recipe: make override → reconcile trust

Only three things abort the import: the repository cannot be added,
a filter pattern does not compile, or the recipe listing fails. Every
per-recipe problem is logged and that recipe is skipped.
"""

from __future__ import annotations

import logging
import re

from autopkgctl.adapters.base import RecipeTool, ToolError
from autopkgctl.core.config.loader import ConfigError
from autopkgctl.core.models.options import ImportRecipesFromRepoOptions, MakeOverrideOptions
from autopkgctl.core.models.recipe import override_name, parse_recipe_listing, repo_short_name
from autopkgctl.core.services.recipe_resolver import resolve_repository_recipes
from autopkgctl.core.services.trust import reconcile_trust

logger = logging.getLogger(__name__)


class ImportWorkflowError(Exception):
    """A fatal import failure; ``stage`` names the step that broke."""

    def __init__(self, stage: str, message: str):
        super().__init__(f"{stage}: {message}")
        self.stage = stage


def _compile_pattern(pattern: str, label: str) -> re.Pattern[str] | None:
    if not pattern:
        return None
    try:
        return re.compile(pattern)
    except re.error as e:
        raise ConfigError(f"invalid {label} pattern {pattern!r}: {e}") from e


def _import_recipe(
    tool: RecipeTool,
    recipe: str,
    options: ImportRecipesFromRepoOptions,
) -> str | None:
    """Make and (optionally) trust one override. Returns its name, or None if skipped."""
    try:
        output = tool.make_override(
            recipe, MakeOverrideOptions(prefs_path=options.prefs_path, force=True)
        )
    except ToolError as e:
        logger.warning("⚠ Failed to make override for %s: %s", recipe, e)
        if e.output:
            logger.debug("make-override output for %s:\n%s", recipe, e.output)
        return None

    logger.info("✓ Created override for recipe %s", recipe)
    logger.debug("Override output for %s:\n%s", recipe, output)

    override = override_name(recipe)
    if options.verify_trust:
        try:
            trusted = reconcile_trust(
                tool,
                override,
                prefs_path=options.prefs_path,
                repair_on_failure=options.update_trust_on_failure,
            )
        except ToolError as e:
            logger.warning("⚠ Failed to update trust info for %s: %s", recipe, e)
            return None
        if not trusted:
            return None

    logger.info("✓ Imported recipe %s", recipe)
    return override


def import_from_repository(
    tool: RecipeTool,
    repo_url: str,
    options: ImportRecipesFromRepoOptions | None = None,
) -> list[str]:
    """Add ``repo_url`` and import its recipes as overrides.

    Args:
        tool: Recipe tool backend.
        repo_url: Repository URL (``.git`` suffix optional).
        options: Import options. Defaults verify and repair trust.

    Returns:
        Names of the overrides that were created (and trusted, when
        verification is on), in processing order.

    Raises:
        ImportWorkflowError: Repository registration or recipe listing failed.
        ConfigError: A filter pattern does not compile.
    """
    if options is None:
        options = ImportRecipesFromRepoOptions()

    logger.info("Importing recipes from repo %s", repo_url)

    # ── Register repository ─────────────────────────────────────
    try:
        repo_output = tool.add_repo([repo_url], options.prefs_path)
    except ToolError as e:
        raise ImportWorkflowError("add repo", f"failed to add recipe repo {repo_url}: {e}") from e
    logger.debug("Repo add output:\n%s", repo_output)

    short_name = repo_short_name(repo_url)

    # ── Filters ──────────────────────────────────────────────────
    include = _compile_pattern(options.recipe_pattern, "recipe")
    exclude = _compile_pattern(options.ignore_recipe_pattern, "ignore recipe")

    # ── Enumerate recipes ────────────────────────────────────────
    try:
        lines = tool.list_recipes(options.prefs_path, with_identifiers=True)
    except ToolError as e:
        raise ImportWorkflowError("list recipes", f"failed to list recipes: {e}") from e

    candidates = resolve_repository_recipes(
        short_name,
        parse_recipe_listing(lines),
        include_pattern=include,
        exclude_pattern=exclude,
        required=options.required_recipes,
        identifier_prefix=options.identifier_prefix,
    )
    logger.info("Found %d candidate recipes in %s", len(candidates), short_name)

    # ── Overrides + trust, one recipe at a time ──────────────────
    imported: list[str] = []
    for recipe in candidates:
        override = _import_recipe(tool, recipe, options)
        if override is not None:
            imported.append(override)

    logger.info("✓ Imported %d recipes from repo %s", len(imported), repo_url)
    return imported
