"""
Recipe resolver — which recipes does a repository contribute?

Membership is decided from the recipe identifier. By default a recipe
belongs to a repository when its identifier contains the repository's
short name. That is a heuristic: ``recipes`` also matches identifiers
from ``homebysix-recipes``. Callers who know the identifier namespace
can pass ``identifier_prefix`` for an exact prefix match instead.
"""

from __future__ import annotations

import logging
import re

from autopkgctl.core.models.recipe import RecipeRef

logger = logging.getLogger(__name__)


def belongs_to_repo(
    recipe: RecipeRef,
    repo_short_name: str,
    identifier_prefix: str | None = None,
) -> bool:
    """Whether ``recipe`` is attributed to the repository."""
    if identifier_prefix:
        prefix = identifier_prefix.rstrip(".")
        return recipe.identifier == prefix or recipe.identifier.startswith(prefix + ".")
    return repo_short_name in recipe.identifier


def _compile(pattern: str | re.Pattern[str] | None) -> re.Pattern[str] | None:
    if not pattern:
        return None
    if isinstance(pattern, re.Pattern):
        return pattern
    return re.compile(pattern)


def resolve_repository_recipes(
    repo_short_name: str,
    all_recipes: list[RecipeRef],
    include_pattern: str | re.Pattern[str] | None = None,
    exclude_pattern: str | re.Pattern[str] | None = None,
    required: list[str] | None = None,
    identifier_prefix: str | None = None,
) -> list[str]:
    """Select the recipe names a repository contributes.

    Args:
        repo_short_name: Repository short name (see ``repo_short_name``).
        all_recipes: Every known recipe, in discovery order.
        include_pattern: Keep only names matching this regex (search semantics).
        exclude_pattern: Drop names matching this regex.
        required: Names always included, bypassing membership and patterns.
        identifier_prefix: Strict membership mode (see module docstring).

    Returns:
        Matching names in discovery order, then missing required names
        in the order given. Each required name appears exactly once.

    Raises:
        re.error: If a string pattern does not compile.
    """
    include = _compile(include_pattern)
    exclude = _compile(exclude_pattern)

    selected: list[str] = []
    for recipe in all_recipes:
        if not belongs_to_repo(recipe, repo_short_name, identifier_prefix):
            continue
        if include is not None and not include.search(recipe.name):
            logger.debug("Skipping %s: does not match include pattern", recipe.name)
            continue
        if exclude is not None and exclude.search(recipe.name):
            logger.debug("Skipping %s: matches exclude pattern", recipe.name)
            continue
        selected.append(recipe.name)

    for name in required or []:
        if name not in selected:
            selected.append(name)

    logger.debug(
        "Resolved %d recipes for repository '%s'", len(selected), repo_short_name
    )
    return selected
