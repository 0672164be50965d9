"""
Recipe tool base — the contract between the pipeline and the packaging tool.

Every external command the pipeline needs is one method here. The
pipeline only talks to the packaging tool through this interface,
never by spawning processes itself, so control flow can be exercised
against ``MockRecipeTool``.

Failure convention: a command that exits non-zero (or cannot be
started) raises ``ToolError``. Trust verification is the exception:
a trust mismatch is an ordinary result (``TrustCheck.success=False``),
only a broken invocation raises.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from pydantic import BaseModel, Field

from autopkgctl.core.models.options import (
    AuditOptions,
    InstallOptions,
    MakeOverrideOptions,
    RunOptions,
    SearchOptions,
    UpdateTrustOptions,
    VerifyTrustOptions,
)


class ToolError(Exception):
    """Raised when an external tool invocation fails."""

    def __init__(self, message: str, output: str = "", return_code: int | None = None):
        super().__init__(message)
        self.output = output
        self.return_code = return_code


class TrustCheck(BaseModel):
    """Result of a trust verification run."""

    success: bool
    failed: list[str] = Field(default_factory=list)
    reasons: dict[str, list[str]] = Field(default_factory=dict)
    output: str = ""

    @property
    def detail(self) -> str:
        """One line per failed recipe with its reasons."""
        lines = []
        for recipe in self.failed:
            reasons = "; ".join(self.reasons.get(recipe, []))
            lines.append(f"{recipe}: {reasons}" if reasons else recipe)
        return "\n".join(lines)


class RecipeTool(ABC):
    """Abstract packaging-tool collaborator.

    To add a backend:
        1. Subclass RecipeTool
        2. Implement every abstract method
        3. Pass the instance to StepRunner / import_from_repository
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Backend identifier (e.g., 'autopkg', 'mock')."""

    @abstractmethod
    def is_available(self) -> bool:
        """Whether the underlying binary can be found. Never raises."""

    # ── Repositories ───────────────────────────────────────────

    @abstractmethod
    def add_repo(self, repo_urls: list[str], prefs_path: str = "") -> str:
        """Register recipe repositories."""

    @abstractmethod
    def list_repos(self, prefs_path: str = "") -> str:
        """List registered repositories."""

    @abstractmethod
    def update_repos(self, repos: list[str], prefs_path: str = "") -> str:
        """Pull the latest commits for registered repositories."""

    # ── Recipes ────────────────────────────────────────────────

    @abstractmethod
    def list_recipes(
        self,
        prefs_path: str = "",
        with_identifiers: bool = True,
        with_paths: bool = False,
        show_all: bool = False,
    ) -> list[str]:
        """List known recipes, one line per recipe."""

    @abstractmethod
    def make_override(self, recipe: str, options: MakeOverrideOptions) -> str:
        """Create an override for a recipe."""

    @abstractmethod
    def run_recipes(self, recipes: list[str], options: RunOptions) -> str:
        """Run recipes (sequentially, in one tool invocation)."""

    @abstractmethod
    def audit(self, recipes: list[str], options: AuditOptions) -> str:
        """Audit recipes for potential issues."""

    @abstractmethod
    def install(self, recipes: list[str], options: InstallOptions) -> str:
        """Run install recipes."""

    @abstractmethod
    def search(self, term: str, options: SearchOptions) -> str:
        """Search public recipe repositories."""

    # ── Trust ──────────────────────────────────────────────────

    @abstractmethod
    def verify_trust(self, overrides: list[str], options: VerifyTrustOptions) -> TrustCheck:
        """Verify parent trust info for overrides."""

    @abstractmethod
    def update_trust(self, overrides: list[str], options: UpdateTrustOptions) -> str:
        """Rewrite parent trust info for overrides."""

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} name={self.name!r}>"
