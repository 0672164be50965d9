"""
Recipe list validation — do these recipes exist, and are overrides trusted?
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from autopkgctl.adapters.base import RecipeTool, ToolError
from autopkgctl.core.models.options import ValidateOptions
from autopkgctl.core.models.recipe import OVERRIDE_SUFFIX
from autopkgctl.core.services.trust import reconcile_trust

logger = logging.getLogger(__name__)


@dataclass
class ValidationReport:
    """Per-recipe validation outcome."""

    valid: list[str] = field(default_factory=list)
    invalid: dict[str, str] = field(default_factory=dict)
    trust_failed: list[str] = field(default_factory=list)
    missing: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.invalid and not self.trust_failed

    def to_dict(self) -> dict:
        return {
            "ok": self.ok,
            "valid": self.valid,
            "invalid": self.invalid,
            "trust_failed": self.trust_failed,
            "missing": self.missing,
        }


def validate_recipe_list(
    tool: RecipeTool,
    recipes: list[str],
    options: ValidateOptions | None = None,
) -> ValidationReport:
    """Check that each recipe is known and, for overrides, trusted.

    A recipe is known when the full listing (overrides included) names
    it, or names the recipe it overrides. Unknown recipes are invalid,
    unless ``allow_non_existent`` is set, in which case they are only
    recorded as missing.

    Raises:
        ToolError: If the recipe listing itself fails.
    """
    if options is None:
        options = ValidateOptions()

    logger.info("Validating %d recipes", len(recipes))
    known = set(tool.list_recipes(options.prefs_path, with_identifiers=False, show_all=True))
    report = ValidationReport()

    for recipe in recipes:
        base = recipe.removesuffix(OVERRIDE_SUFFIX)
        if recipe not in known and base not in known:
            if options.allow_non_existent:
                logger.warning("⚠ Recipe %s not found, continuing", recipe)
                report.missing.append(recipe)
            else:
                logger.error("✗ Recipe %s not found", recipe)
                report.invalid[recipe] = "recipe not found"
            continue

        if options.verify_trust and recipe.endswith(OVERRIDE_SUFFIX):
            try:
                trusted = reconcile_trust(
                    tool,
                    recipe,
                    prefs_path=options.prefs_path,
                    repair_on_failure=options.update_trust_on_failure,
                    search_dirs=options.search_dirs,
                    override_dirs=options.override_dirs,
                )
            except ToolError as e:
                logger.error("✗ Trust update failed for %s: %s", recipe, e)
                trusted = False
            if not trusted:
                report.trust_failed.append(recipe)
                continue

        report.valid.append(recipe)

    logger.info(
        "Validation finished: %d valid, %d invalid, %d untrusted, %d missing",
        len(report.valid),
        len(report.invalid),
        len(report.trust_failed),
        len(report.missing),
    )
    return report
