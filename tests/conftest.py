"""
Shared test fixtures and configuration.
"""

import os
from pathlib import Path

import pytest

from autopkgctl.adapters.mock import MockRecipeTool

SAMPLE_REPO = "https://example.com/org/sample-recipes.git"

SAMPLE_LISTING = [
    "Foo (com.example.sample-recipes.foo)",
    "Bar (com.other.bar)",
]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep AUTOPKG_* variables from the host out of every test."""
    for key in list(os.environ):
        if key.startswith("AUTOPKG_"):
            monkeypatch.delenv(key, raising=False)


@pytest.fixture
def mock_tool() -> MockRecipeTool:
    """A mock recipe tool that knows the sample listing."""
    return MockRecipeTool(recipes=list(SAMPLE_LISTING))


@pytest.fixture
def cache_dir(tmp_path: Path) -> Path:
    """A populated AutoPkg cache directory."""
    root = tmp_path / "Cache"
    (root / "downloads").mkdir(parents=True)
    (root / "downloads" / "Firefox.dmg").write_text("dmg")
    recipe_cache = root / "com.github.autopkg.download.firefox"
    (recipe_cache / "receipts").mkdir(parents=True)
    (recipe_cache / "receipts" / "receipt.plist").write_text("plist")
    (recipe_cache / "Firefox.pkg").write_text("pkg")
    return root
