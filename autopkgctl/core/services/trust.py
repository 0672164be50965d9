"""
Trust reconciliation — verify an override, repair it at most once.

    verify ──pass──────────────────────────────► True
       │
       fail ──repair disabled─────────────────► False
       │
       └──repair──error──────────────────────► raise ToolError
             │
             ok ──verify again──pass/fail─────► True / False

Repair is never retried: the trust store is external and a loop
against it could run forever.
"""

from __future__ import annotations

import logging

from autopkgctl.adapters.base import RecipeTool, ToolError, TrustCheck
from autopkgctl.core.models.options import UpdateTrustOptions, VerifyTrustOptions

logger = logging.getLogger(__name__)


def _verify(tool: RecipeTool, override: str, options: VerifyTrustOptions) -> bool:
    """One verification; a broken invocation counts as a failed check."""
    try:
        check: TrustCheck = tool.verify_trust([override], options)
    except ToolError as e:
        logger.warning("⚠ Trust verification for %s could not run: %s", override, e)
        return False

    logger.debug("Trust verification output for %s:\n%s", override, check.output)
    if not check.success and check.detail:
        logger.debug("Trust failure detail for %s:\n%s", override, check.detail)
    return check.success


def reconcile_trust(
    tool: RecipeTool,
    override: str,
    prefs_path: str = "",
    repair_on_failure: bool = False,
    search_dirs: list[str] | None = None,
    override_dirs: list[str] | None = None,
) -> bool:
    """Verify trust for ``override``, optionally repairing once.

    Returns:
        True if the override is trusted (possibly after one repair).

    Raises:
        ToolError: If the repair itself fails.
    """
    verify_options = VerifyTrustOptions(
        prefs_path=prefs_path,
        search_dirs=search_dirs or [],
        override_dirs=override_dirs or [],
    )

    if _verify(tool, override, verify_options):
        logger.info("✓ Trust verification passed for %s", override)
        return True

    if not repair_on_failure:
        logger.warning("⚠ Trust verification failed for %s", override)
        return False

    logger.info("Updating trust info for %s", override)
    update_options = UpdateTrustOptions(
        prefs_path=prefs_path,
        search_dirs=search_dirs or [],
        override_dirs=override_dirs or [],
    )
    output = tool.update_trust([override], update_options)
    logger.debug("Trust update output for %s:\n%s", override, output)

    if _verify(tool, override, verify_options):
        logger.info("✓ Trust verification passed for %s after update", override)
        return True

    logger.warning("⚠ Trust verification failed for %s even after update", override)
    return False
