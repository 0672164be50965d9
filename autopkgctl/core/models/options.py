"""
Option models — per-kind configuration payloads for pipeline steps.

Every built-in payload carries ``prefs_path`` so the orchestrator can
default it from pipeline-wide settings. ``PipelineOptions`` holds those
settings; it is owned by the orchestrator and read-only to steps.
"""

from __future__ import annotations

import re

from pydantic import BaseModel, Field, field_validator


class StepOptions(BaseModel):
    """Base for all step option payloads."""

    prefs_path: str = ""


class _DirOptions(StepOptions):
    search_dirs: list[str] = Field(default_factory=list)
    override_dirs: list[str] = Field(default_factory=list)


class VerifyTrustOptions(_DirOptions):
    recipe_list: str = ""
    verbose_level: int = 0          # 0 = normal, 3 = -vvv


class UpdateTrustOptions(_DirOptions):
    pass


class MakeOverrideOptions(_DirOptions):
    name: str = ""
    force: bool = False
    pull: bool = False
    ignore_deprecation: bool = False
    format: str = ""                # "plist" or "yaml"


class RunOptions(_DirOptions):
    pre_processors: list[str] = Field(default_factory=list)
    post_processors: list[str] = Field(default_factory=list)
    variables: dict[str, str] = Field(default_factory=dict)
    check_only: bool = False
    ignore_parent_trust_errors: bool = False
    report_plist: str = ""
    update_trust_info: bool = False
    verbose: bool = False
    quiet: bool = False


class ParallelRunOptions(RunOptions):
    max_concurrent: int = 4
    timeout_seconds: float = 1800.0
    stop_on_first_error: bool = False


class BatchOptions(RunOptions):
    max_concurrent: int = 1
    verify_trust: bool = False
    update_trust_on_failure: bool = False
    stop_on_first_error: bool = False


class CleanupOptions(StepOptions):
    remove_downloads: bool = True
    remove_recipe_cache: bool = True
    keep_days: int = 0              # 0 = remove everything


class ValidateOptions(_DirOptions):
    verify_trust: bool = True
    update_trust_on_failure: bool = True
    allow_non_existent: bool = False


class AuditOptions(_DirOptions):
    recipe_list: str = ""
    plist_output: bool = False


class InstallOptions(RunOptions):
    pkg_or_dmg_path: str = ""


class SearchOptions(StepOptions):
    user: str = ""
    path_only: bool = False
    use_token: bool = False


class ListRecipeOptions(_DirOptions):
    with_identifiers: bool = False
    with_paths: bool = False
    plist_output: bool = False
    show_all: bool = False


class RepoOptions(StepOptions):
    """Options for repo-list and repo-update steps."""


def _check_pattern(value: str) -> str:
    if value:
        try:
            re.compile(value)
        except re.error as e:
            raise ValueError(f"invalid pattern {value!r}: {e}") from e
    return value


class ImportRecipesFromRepoOptions(StepOptions):
    """Options for importing every recipe of a repository as overrides.

    ``identifier_prefix`` switches repository membership from the
    default substring test to a strict prefix test.
    """

    verify_trust: bool = True
    update_trust_on_failure: bool = True
    required_recipes: list[str] = Field(default_factory=list)
    recipe_pattern: str = ""
    ignore_recipe_pattern: str = ""
    identifier_prefix: str | None = None

    @field_validator("recipe_pattern", "ignore_recipe_pattern")
    @classmethod
    def _patterns_compile(cls, value: str) -> str:
        return _check_pattern(value)


class FilterCriteria(StepOptions):
    name_pattern: str = ""
    exclude_pattern: str = ""
    recipe_types: list[str] = Field(default_factory=list)   # download, pkg, install, ...
    trust_info_required: bool = False
    verified_trust_only: bool = False
    include_overrides: bool = True
    include_disabled: bool = False
    max_recipes: int = 0            # 0 = all

    @field_validator("name_pattern", "exclude_pattern")
    @classmethod
    def _patterns_compile(cls, value: str) -> str:
        return _check_pattern(value)


class PipelineOptions(BaseModel):
    """Pipeline-wide settings shared by every step."""

    max_concurrent: int = 4
    timeout_seconds: float = 60 * 60
    stop_on_first_error: bool = False
    prefs_path: str = ""
    report_file: str | None = None
    webhook_url: str | None = None
    notify_on_error: bool = False
    notify_on_completion: bool = False
