"""
Recipe filter — select recipes from the full listing by criteria.

Criteria are applied in this order, per listing line:

    name pattern → exclude pattern → disabled → type → trust → max count

Recipe type is taken from the name suffix (``Foo.download`` is a
download recipe). Disabled recipes are those with "disabled" in
their name.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field

from autopkgctl.adapters.base import RecipeTool, ToolError
from autopkgctl.core.models.options import FilterCriteria, VerifyTrustOptions
from autopkgctl.core.models.recipe import RecipeRef, parse_recipe_listing

logger = logging.getLogger(__name__)

RECIPE_TYPES = ("download", "pkg", "install", "munki", "jamf", "intune")


def recipe_type(name: str) -> str:
    """Type suffix of a recipe name, or "" if unrecognised."""
    for kind in RECIPE_TYPES:
        if name.endswith(f".{kind}"):
            return kind
    return ""


@dataclass
class FilterReport:
    """Recipes that passed the filter, with what was learned about them."""

    matching: list[str] = field(default_factory=list)
    info: dict[str, RecipeRef] = field(default_factory=dict)
    trust_status: dict[str, bool] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "matching": self.matching,
            "info": {k: v.model_dump() for k, v in self.info.items()},
            "trust_status": self.trust_status,
        }


def _trusted(tool: RecipeTool, name: str, prefs_path: str) -> bool:
    try:
        check = tool.verify_trust([name], VerifyTrustOptions(prefs_path=prefs_path))
    except ToolError as e:
        logger.warning("⚠ Trust verification error for %s: %s", name, e)
        return False
    if not check.success:
        logger.debug("Trust verification output for %s:\n%s", name, check.output)
    return check.success


def filter_recipes(tool: RecipeTool, criteria: FilterCriteria | None = None) -> FilterReport:
    """Filter the recipe listing.

    Raises:
        ToolError: If the recipe listing fails.
    """
    if criteria is None:
        criteria = FilterCriteria()

    logger.info("Filtering recipes")
    lines = tool.list_recipes(
        criteria.prefs_path,
        with_identifiers=True,
        with_paths=True,
        show_all=criteria.include_overrides,
    )

    include = re.compile(criteria.name_pattern) if criteria.name_pattern else None
    exclude = re.compile(criteria.exclude_pattern) if criteria.exclude_pattern else None
    check_trust = criteria.trust_info_required or criteria.verified_trust_only

    report = FilterReport()
    for ref in parse_recipe_listing(lines):
        name = ref.name
        if include is not None and not include.search(name):
            continue
        if exclude is not None and exclude.search(name):
            continue
        if "disabled" in name.lower() and not criteria.include_disabled:
            continue
        if criteria.recipe_types and recipe_type(name) not in criteria.recipe_types:
            continue
        if not criteria.include_overrides and ref.is_override:
            continue

        if check_trust:
            if ref.is_override:
                trusted = _trusted(tool, name, criteria.prefs_path)
                report.trust_status[name] = trusted
                if criteria.verified_trust_only and not trusted:
                    continue
            elif criteria.trust_info_required:
                # Only overrides carry trust info
                continue

        report.matching.append(name)
        report.info[name] = ref

        if criteria.max_recipes > 0 and len(report.matching) >= criteria.max_recipes:
            break

    logger.info("✓ Found %d matching recipes", len(report.matching))
    return report
