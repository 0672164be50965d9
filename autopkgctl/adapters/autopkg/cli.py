"""
AutoPkg adapter — drives the ``autopkg`` command line.

Each method builds an argv for one autopkg verb, runs it through
``run_command`` and returns the captured output. Non-zero exits raise
``ToolError`` with the operation name, except for trust verification
where a reported mismatch is returned as a failed ``TrustCheck``.
"""

from __future__ import annotations

import logging
import shutil

from autopkgctl.adapters.base import RecipeTool, ToolError, TrustCheck
from autopkgctl.adapters.shell.command import DEFAULT_TIMEOUT, run_command
from autopkgctl.core.models.options import (
    AuditOptions,
    InstallOptions,
    MakeOverrideOptions,
    RunOptions,
    SearchOptions,
    UpdateTrustOptions,
    VerifyTrustOptions,
)

logger = logging.getLogger(__name__)


def _prefs_args(prefs_path: str) -> list[str]:
    return ["--prefs", prefs_path] if prefs_path else []


def _dir_args(search_dirs: list[str], override_dirs: list[str]) -> list[str]:
    args: list[str] = []
    for d in search_dirs:
        args += ["--search-dir", d]
    for d in override_dirs:
        args += ["--override-dir", d]
    return args


def _run_args(options: RunOptions) -> list[str]:
    """Flags shared by ``run`` and ``install``."""
    args = _prefs_args(options.prefs_path)
    for p in options.pre_processors:
        args += ["--pre", p]
    for p in options.post_processors:
        args += ["--post", p]
    if options.check_only:
        args.append("--check")
    if options.ignore_parent_trust_errors:
        args.append("--ignore-parent-trust-verification-errors")
    for key, value in options.variables.items():
        args += ["-k", f"{key}={value}"]
    if options.report_plist:
        args += ["--report-plist", options.report_plist]
    if options.verbose:
        args.append("--verbose")
    if options.quiet:
        args.append("--quiet")
    args += _dir_args(options.search_dirs, options.override_dirs)
    return args


def parse_trust_output(output: str) -> tuple[list[str], dict[str, list[str]]]:
    """Extract failed recipes and their reasons from verify-trust-info output.

    Failure blocks look like::

        Foo.override: FAILED
            No trust information present.
            Audit the recipe, then run 'autopkg update-trust-info Foo.override'
    """
    failed: list[str] = []
    reasons: dict[str, list[str]] = {}
    current = ""

    for raw in output.splitlines():
        line = raw.strip()
        if line.endswith(": FAILED"):
            current = line.split(":", 1)[0]
            failed.append(current)
            reasons[current] = ["Unknown failure reason, rerun with -vvv for details"]
        elif line.startswith("No trust information present.") and current:
            reasons[current] = ["No trust information present."]
        elif current and (
            line.startswith("Audit the recipe") or "contents differ from expected" in line
        ):
            reasons[current].append(line)
        elif "processor path not found" in line:
            logger.warning("⚠ %s", line)

    return failed, reasons


class AutoPkgCLI(RecipeTool):
    """``autopkg`` command line backend.

    Args:
        binary: Executable name or path.
        timeout: Per-invocation timeout in seconds.
    """

    def __init__(self, binary: str = "autopkg", timeout: float = DEFAULT_TIMEOUT):
        self._binary = binary
        self._timeout = timeout

    @property
    def name(self) -> str:
        return "autopkg"

    def is_available(self) -> bool:
        return shutil.which(self._binary) is not None

    def _autopkg(self, args: list[str], operation: str) -> str:
        result = run_command([self._binary, *args], timeout=self._timeout)
        return result.check(operation).output

    # ── Repositories ───────────────────────────────────────────

    def add_repo(self, repo_urls: list[str], prefs_path: str = "") -> str:
        outputs = []
        failures = []
        for url in repo_urls:
            logger.info("Adding recipe repository %s", url)
            result = run_command(
                [self._binary, "repo-add", url, *_prefs_args(prefs_path)],
                timeout=self._timeout,
            )
            outputs.append(result.output)
            if result.ok:
                logger.info("✓ Added repository %s", url)
            else:
                logger.warning("⚠ Failed to add repo %s: %s", url, result.stderr.strip())
                failures.append(url)

        output = "\n".join(o for o in outputs if o)
        if failures:
            raise ToolError(f"repo-add failed for: {', '.join(failures)}", output=output)
        return output

    def list_repos(self, prefs_path: str = "") -> str:
        return self._autopkg(["repo-list", *_prefs_args(prefs_path)], "repo-list")

    def update_repos(self, repos: list[str], prefs_path: str = "") -> str:
        return self._autopkg(["repo-update", *repos, *_prefs_args(prefs_path)], "repo-update")

    # ── Recipes ────────────────────────────────────────────────

    def list_recipes(
        self,
        prefs_path: str = "",
        with_identifiers: bool = True,
        with_paths: bool = False,
        show_all: bool = False,
    ) -> list[str]:
        args = ["list-recipes", *_prefs_args(prefs_path)]
        if with_identifiers:
            args.append("--with-identifiers")
        if with_paths:
            args.append("--with-paths")
        if show_all:
            args.append("--show-all")
        result = run_command([self._binary, *args], timeout=self._timeout)
        result.check("list-recipes")
        return [line for line in result.stdout.splitlines() if line.strip()]

    def make_override(self, recipe: str, options: MakeOverrideOptions) -> str:
        args = ["make-override", *_prefs_args(options.prefs_path)]
        args += _dir_args(options.search_dirs, options.override_dirs)
        if options.name:
            args += ["--name", options.name]
        if options.force:
            args.append("--force")
        if options.pull:
            args.append("--pull")
        if options.ignore_deprecation:
            args.append("--ignore-deprecation")
        if options.format:
            args += ["--format", options.format]
        args.append(recipe)
        return self._autopkg(args, f"make-override {recipe}")

    def run_recipes(self, recipes: list[str], options: RunOptions) -> str:
        args = ["run", *_run_args(options)]
        if options.update_trust_info:
            args.append("--update-trust-info")
        return self._autopkg([*args, *recipes], "run")

    def audit(self, recipes: list[str], options: AuditOptions) -> str:
        args = ["audit", *_prefs_args(options.prefs_path)]
        args += _dir_args(options.search_dirs, options.override_dirs)
        if options.recipe_list:
            args += ["--recipe-list", options.recipe_list]
        if options.plist_output:
            args.append("--plist")
        return self._autopkg([*args, *recipes], "audit")

    def install(self, recipes: list[str], options: InstallOptions) -> str:
        args = ["install", *_run_args(options)]
        if options.pkg_or_dmg_path:
            args += ["--pkg", options.pkg_or_dmg_path]
        return self._autopkg([*args, *recipes], "install")

    def search(self, term: str, options: SearchOptions) -> str:
        if not term:
            raise ToolError("search failed: search term is required")
        args = ["search", *_prefs_args(options.prefs_path)]
        if options.user:
            args += ["--user", options.user]
        if options.path_only:
            args.append("--path-only")
        if options.use_token:
            args.append("--use-token")
        return self._autopkg([*args, term], "search")

    # ── Trust ──────────────────────────────────────────────────

    def verify_trust(self, overrides: list[str], options: VerifyTrustOptions) -> TrustCheck:
        if not overrides and not options.recipe_list:
            raise ToolError("verify-trust-info failed: no recipes given")

        args = ["verify-trust-info", *_prefs_args(options.prefs_path)]
        if options.recipe_list:
            args += ["--recipe-list", options.recipe_list]
        args += ["-v"] * options.verbose_level
        args += _dir_args(options.search_dirs, options.override_dirs)
        args += overrides

        result = run_command([self._binary, *args], timeout=self._timeout)
        output = result.output
        failed, reasons = parse_trust_output(output)

        if failed:
            return TrustCheck(success=False, failed=failed, reasons=reasons, output=output)
        # Non-zero exit without a parsable failure means the tool itself broke.
        result.check("verify-trust-info")
        return TrustCheck(success=True, output=output)

    def update_trust(self, overrides: list[str], options: UpdateTrustOptions) -> str:
        if not overrides:
            raise ToolError("update-trust-info failed: no recipes given")
        args = ["update-trust-info", *_prefs_args(options.prefs_path)]
        args += _dir_args(options.search_dirs, options.override_dirs)
        return self._autopkg([*args, *overrides], "update-trust-info")
