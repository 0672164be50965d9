"""Adapters — bindings for the external packaging tool.

Public re-exports for convenient access.
"""

from autopkgctl.adapters.base import RecipeTool, ToolError, TrustCheck
from autopkgctl.adapters.mock import MockRecipeTool

__all__ = [
    "MockRecipeTool",
    "RecipeTool",
    "ToolError",
    "TrustCheck",
]
