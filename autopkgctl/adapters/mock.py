"""
Mock recipe tool — test double for every packaging-tool operation.

Simulates a recipe tool without touching external processes. By
default everything succeeds; failures, untrusted overrides and the
recipe listing are configurable, and every call is recorded.
"""

from __future__ import annotations

from autopkgctl.adapters.base import RecipeTool, ToolError, TrustCheck
from autopkgctl.core.models.options import (
    AuditOptions,
    InstallOptions,
    MakeOverrideOptions,
    RunOptions,
    SearchOptions,
    UpdateTrustOptions,
    VerifyTrustOptions,
)


class MockRecipeTool(RecipeTool):
    """Universal mock recipe tool for testing.

    Args:
        tool_name: Reported backend name.
        available: What ``is_available`` returns.
        recipes: Lines returned by ``list_recipes``.
    """

    def __init__(
        self,
        tool_name: str = "mock",
        available: bool = True,
        recipes: list[str] | None = None,
        default_output: str = "[mock] executed",
    ):
        self._name = tool_name
        self._available = available
        self._default_output = default_output
        self.recipe_listing: list[str] = list(recipes or [])
        self._failures: dict[str, str] = {}
        self._untrusted: set[str] = set()
        self._unrepairable: set[str] = set()
        self._call_log: list[tuple[str, tuple[str, ...]]] = []

    @property
    def name(self) -> str:
        return self._name

    @property
    def call_log(self) -> list[tuple[str, tuple[str, ...]]]:
        """Every (operation, targets) pair this mock has received."""
        return self._call_log

    @property
    def call_count(self) -> int:
        return len(self._call_log)

    def calls_for(self, operation: str) -> list[tuple[str, ...]]:
        """Targets of every call to ``operation``, in order."""
        return [targets for op, targets in self._call_log if op == operation]

    def is_available(self) -> bool:
        return self._available

    # ── Configuration ──────────────────────────────────────────

    def set_failure(self, operation: str, target: str | None = None, error: str = "Mock failure") -> None:
        """Make ``operation`` raise ToolError (for every call, or one target)."""
        key = f"{operation}:{target}" if target else operation
        self._failures[key] = error

    def set_untrusted(self, *overrides: str, repairable: bool = True) -> None:
        """Make overrides fail trust verification until repaired."""
        self._untrusted.update(overrides)
        if not repairable:
            self._unrepairable.update(overrides)

    def reset(self) -> None:
        """Clear call log, failures and trust state."""
        self._call_log.clear()
        self._failures.clear()
        self._untrusted.clear()
        self._unrepairable.clear()

    def _record(self, operation: str, targets: list[str]) -> None:
        self._call_log.append((operation, tuple(targets)))
        if operation in self._failures:
            raise ToolError(f"{operation} failed: {self._failures[operation]}")
        for target in targets:
            key = f"{operation}:{target}"
            if key in self._failures:
                raise ToolError(f"{operation} {target} failed: {self._failures[key]}")

    # ── RecipeTool ─────────────────────────────────────────────

    def add_repo(self, repo_urls: list[str], prefs_path: str = "") -> str:
        self._record("add_repo", repo_urls)
        return self._default_output

    def list_repos(self, prefs_path: str = "") -> str:
        self._record("list_repos", [])
        return self._default_output

    def update_repos(self, repos: list[str], prefs_path: str = "") -> str:
        self._record("update_repos", repos)
        return self._default_output

    def list_recipes(
        self,
        prefs_path: str = "",
        with_identifiers: bool = True,
        with_paths: bool = False,
        show_all: bool = False,
    ) -> list[str]:
        self._record("list_recipes", [])
        if with_identifiers:
            return list(self.recipe_listing)
        return [line.split(" (", 1)[0] for line in self.recipe_listing]

    def make_override(self, recipe: str, options: MakeOverrideOptions) -> str:
        self._record("make_override", [recipe])
        return self._default_output

    def run_recipes(self, recipes: list[str], options: RunOptions) -> str:
        self._record("run_recipes", recipes)
        return self._default_output

    def audit(self, recipes: list[str], options: AuditOptions) -> str:
        self._record("audit", recipes)
        return self._default_output

    def install(self, recipes: list[str], options: InstallOptions) -> str:
        self._record("install", recipes)
        return self._default_output

    def search(self, term: str, options: SearchOptions) -> str:
        self._record("search", [term])
        return self._default_output

    def verify_trust(self, overrides: list[str], options: VerifyTrustOptions) -> TrustCheck:
        self._record("verify_trust", overrides)
        failed = [o for o in overrides if o in self._untrusted]
        if failed:
            return TrustCheck(
                success=False,
                failed=failed,
                reasons={o: ["No trust information present."] for o in failed},
                output="\n".join(f"{o}: FAILED" for o in failed),
            )
        return TrustCheck(success=True, output=self._default_output)

    def update_trust(self, overrides: list[str], options: UpdateTrustOptions) -> str:
        self._record("update_trust", overrides)
        for override in overrides:
            if override not in self._unrepairable:
                self._untrusted.discard(override)
        return self._default_output
