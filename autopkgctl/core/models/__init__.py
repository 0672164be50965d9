"""
Domain models — pipeline steps, options, recipes and results.

All models are re-exported here for convenient access:

    from autopkgctl.core.models import PipelineStep, StepKind, PipelineOptions
"""

from autopkgctl.core.models.options import (
    AuditOptions,
    BatchOptions,
    CleanupOptions,
    FilterCriteria,
    ImportRecipesFromRepoOptions,
    InstallOptions,
    ListRecipeOptions,
    MakeOverrideOptions,
    ParallelRunOptions,
    PipelineOptions,
    RepoOptions,
    RunOptions,
    SearchOptions,
    StepOptions,
    UpdateTrustOptions,
    ValidateOptions,
    VerifyTrustOptions,
)
from autopkgctl.core.models.recipe import (
    RecipeRef,
    override_name,
    parse_recipe_listing,
    repo_short_name,
)
from autopkgctl.core.models.result import PipelineResult, StepResult
from autopkgctl.core.models.step import OPTION_TYPES, PipelineStep, StepKind

__all__ = [
    # options.py
    "AuditOptions",
    "BatchOptions",
    "CleanupOptions",
    "FilterCriteria",
    "ImportRecipesFromRepoOptions",
    "InstallOptions",
    "ListRecipeOptions",
    "MakeOverrideOptions",
    "ParallelRunOptions",
    "PipelineOptions",
    "RepoOptions",
    "RunOptions",
    "SearchOptions",
    "StepOptions",
    "UpdateTrustOptions",
    "ValidateOptions",
    "VerifyTrustOptions",
    # recipe.py
    "RecipeRef",
    "override_name",
    "parse_recipe_listing",
    "repo_short_name",
    # result.py
    "PipelineResult",
    "StepResult",
    # step.py
    "OPTION_TYPES",
    "PipelineStep",
    "StepKind",
]
