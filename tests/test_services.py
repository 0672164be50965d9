"""
Tests for supporting services — parallel/batch runs, validation, filtering,
cache cleanup, reports and webhook notifications.
"""

import json
import os
import threading
import time
import urllib.error
import urllib.request
from pathlib import Path

import pytest

from autopkgctl.adapters.mock import MockRecipeTool
from autopkgctl.core.models.options import (
    BatchOptions,
    CleanupOptions,
    FilterCriteria,
    ParallelRunOptions,
    ValidateOptions,
)
from autopkgctl.core.models.result import PipelineResult, StepResult
from autopkgctl.core.persistence.report import render_report, write_report
from autopkgctl.core.services.cache_cleanup import CleanupError, cleanup_cache
from autopkgctl.core.services.notifications import NotificationError, WebhookNotifier
from autopkgctl.core.services.recipe_filter import filter_recipes, recipe_type
from autopkgctl.core.services.recipe_run import process_batch, run_parallel
from autopkgctl.core.services.validation import validate_recipe_list


class SlowTool(MockRecipeTool):
    """Mock whose runs take a while and which tracks peak concurrency."""

    def __init__(self, delay: float = 0.05, **kwargs):
        super().__init__(**kwargs)
        self.delay = delay
        self.active = 0
        self.peak = 0
        self._lock = threading.Lock()

    def run_recipes(self, recipes, options):
        with self._lock:
            self.active += 1
            self.peak = max(self.peak, self.active)
        try:
            time.sleep(self.delay)
            return super().run_recipes(recipes, options)
        finally:
            with self._lock:
                self.active -= 1


# ── Parallel run ─────────────────────────────────────────────────


class TestRunParallel:
    def test_all_succeed(self):
        tool = MockRecipeTool()
        report = run_parallel(tool, ["A", "B", "C"], ParallelRunOptions())
        assert sorted(report.succeeded) == ["A", "B", "C"]
        assert report.all_ok
        assert all(r.duration_ms >= 0 for r in report.results.values())

    def test_concurrency_bounded(self):
        tool = SlowTool(delay=0.05)
        run_parallel(tool, [f"R{i}" for i in range(6)], ParallelRunOptions(max_concurrent=2))
        assert tool.peak <= 2

    def test_failures_recorded(self):
        tool = MockRecipeTool()
        tool.set_failure("run_recipes", "B", error="download failed")
        report = run_parallel(tool, ["A", "B"], ParallelRunOptions())
        assert report.failed == ["B"]
        assert "download failed" in report.results["B"].error
        assert not report.all_ok

    def test_stop_on_first_error(self):
        tool = MockRecipeTool()
        tool.set_failure("run_recipes", "A")
        options = ParallelRunOptions(max_concurrent=1, stop_on_first_error=True)
        report = run_parallel(tool, ["A", "B", "C"], options)
        assert tool.calls_for("run_recipes") == [("A",)]
        assert list(report.results) == ["A"]
        assert report.stopped

    def test_timeout(self):
        tool = SlowTool(delay=0.3)
        options = ParallelRunOptions(max_concurrent=1, timeout_seconds=0.05)
        report = run_parallel(tool, ["A", "B", "C"], options)
        assert report.timed_out
        assert not report.all_ok
        assert "C" not in report.results

    def test_run_options_forwarded(self):
        seen = []

        class Recording(MockRecipeTool):
            def run_recipes(self, recipes, options):
                seen.append((options.prefs_path, options.check_only))
                return super().run_recipes(recipes, options)

        run_parallel(Recording(), ["A"], ParallelRunOptions(prefs_path="/p", check_only=True))
        assert seen == [("/p", True)]


# ── Batch ────────────────────────────────────────────────────────


class TestProcessBatch:
    def test_runs_every_recipe(self):
        tool = MockRecipeTool()
        results = process_batch(tool, ["A", "B"], BatchOptions())
        assert list(results) == ["A", "B"]
        assert all(r.ok for r in results.values())
        assert tool.calls_for("verify_trust") == []

    def test_trust_repaired_before_run(self):
        tool = MockRecipeTool()
        tool.set_untrusted("A.override")
        options = BatchOptions(verify_trust=True, update_trust_on_failure=True)
        results = process_batch(tool, ["A.override"], options)
        assert results["A.override"].trust_verified
        assert results["A.override"].ok
        assert tool.calls_for("update_trust") == [("A.override",)]

    def test_untrusted_not_run(self):
        tool = MockRecipeTool()
        tool.set_untrusted("A.override")
        results = process_batch(tool, ["A.override"], BatchOptions(verify_trust=True))
        assert not results["A.override"].executed
        assert results["A.override"].error == "trust verification failed"
        assert tool.calls_for("run_recipes") == []

    def test_trust_update_error(self):
        tool = MockRecipeTool()
        tool.set_untrusted("A.override")
        tool.set_failure("update_trust")
        options = BatchOptions(verify_trust=True, update_trust_on_failure=True)
        results = process_batch(tool, ["A.override"], options)
        assert results["A.override"].error.startswith("trust update failed")

    def test_stop_on_first_error(self):
        tool = MockRecipeTool()
        tool.set_failure("run_recipes", "A")
        results = process_batch(tool, ["A", "B"], BatchOptions(stop_on_first_error=True))
        assert results["A"].executed and results["A"].error
        assert not results["B"].executed
        assert results["B"].error is None
        assert tool.calls_for("run_recipes") == [("A",)]

    def test_concurrent_batch(self):
        tool = SlowTool(delay=0.02)
        results = process_batch(tool, ["A", "B", "C", "D"], BatchOptions(max_concurrent=2))
        assert all(r.ok for r in results.values())
        assert tool.peak <= 2


# ── Validation ───────────────────────────────────────────────────


class TestValidateRecipeList:
    @pytest.fixture
    def tool(self) -> MockRecipeTool:
        return MockRecipeTool(recipes=[
            "Firefox.download (com.github.autopkg.download.firefox)",
            "Chrome.download (com.github.autopkg.download.chrome)",
        ])

    def test_known_recipes_valid(self, tool: MockRecipeTool):
        report = validate_recipe_list(tool, ["Firefox.download", "Chrome.download"])
        assert report.valid == ["Firefox.download", "Chrome.download"]
        assert report.ok

    def test_unknown_recipe_invalid(self, tool: MockRecipeTool):
        report = validate_recipe_list(tool, ["Missing.pkg"])
        assert report.invalid == {"Missing.pkg": "recipe not found"}
        assert not report.ok

    def test_allow_non_existent(self, tool: MockRecipeTool):
        report = validate_recipe_list(
            tool, ["Missing.pkg"], ValidateOptions(allow_non_existent=True)
        )
        assert report.missing == ["Missing.pkg"]
        assert report.invalid == {}
        assert report.ok

    def test_override_trust_checked(self, tool: MockRecipeTool):
        tool.set_untrusted("Firefox.download.override", repairable=False)
        report = validate_recipe_list(tool, ["Firefox.download.override", "Chrome.download.override"])
        assert report.trust_failed == ["Firefox.download.override"]
        assert report.valid == ["Chrome.download.override"]

    def test_plain_recipes_not_trust_checked(self, tool: MockRecipeTool):
        validate_recipe_list(tool, ["Firefox.download"])
        assert tool.calls_for("verify_trust") == []

    def test_trust_check_disabled(self, tool: MockRecipeTool):
        tool.set_untrusted("Firefox.download.override")
        report = validate_recipe_list(
            tool, ["Firefox.download.override"], ValidateOptions(verify_trust=False)
        )
        assert report.valid == ["Firefox.download.override"]

    def test_to_dict(self, tool: MockRecipeTool):
        data = validate_recipe_list(tool, ["Firefox.download", "Nope"]).to_dict()
        assert data["ok"] is False
        assert data["valid"] == ["Firefox.download"]


# ── Filtering ────────────────────────────────────────────────────


class TestFilterRecipes:
    @pytest.fixture
    def tool(self) -> MockRecipeTool:
        return MockRecipeTool(recipes=[
            "Firefox.download (com.github.autopkg.download.firefox)",
            "Firefox.pkg (com.github.autopkg.pkg.firefox)",
            "Chrome-disabled.download (com.github.autopkg.download.chrome)",
            "Firefox.download.override (local.override.firefox)",
        ])

    def test_recipe_type(self):
        assert recipe_type("Firefox.download") == "download"
        assert recipe_type("Firefox.jamf") == "jamf"
        assert recipe_type("Firefox.download.override") == ""

    def test_defaults_skip_disabled(self, tool: MockRecipeTool):
        report = filter_recipes(tool)
        assert report.matching == ["Firefox.download", "Firefox.pkg", "Firefox.download.override"]

    def test_include_disabled(self, tool: MockRecipeTool):
        report = filter_recipes(tool, FilterCriteria(include_disabled=True, recipe_types=["download"]))
        assert report.matching == ["Firefox.download", "Chrome-disabled.download"]

    def test_name_and_exclude_patterns(self, tool: MockRecipeTool):
        report = filter_recipes(tool, FilterCriteria(name_pattern="Firefox", exclude_pattern="override"))
        assert report.matching == ["Firefox.download", "Firefox.pkg"]

    def test_exclude_overrides(self, tool: MockRecipeTool):
        report = filter_recipes(tool, FilterCriteria(include_overrides=False))
        assert "Firefox.download.override" not in report.matching

    def test_trust_info_required(self, tool: MockRecipeTool):
        report = filter_recipes(tool, FilterCriteria(trust_info_required=True))
        assert report.matching == ["Firefox.download.override"]
        assert report.trust_status == {"Firefox.download.override": True}

    def test_verified_trust_only(self, tool: MockRecipeTool):
        tool.set_untrusted("Firefox.download.override")
        report = filter_recipes(tool, FilterCriteria(verified_trust_only=True))
        assert report.matching == ["Firefox.download", "Firefox.pkg"]
        assert report.trust_status == {"Firefox.download.override": False}

    def test_max_recipes(self, tool: MockRecipeTool):
        report = filter_recipes(tool, FilterCriteria(max_recipes=1))
        assert report.matching == ["Firefox.download"]
        assert report.info["Firefox.download"].identifier == "com.github.autopkg.download.firefox"


# ── Cache cleanup ────────────────────────────────────────────────


class TestCleanupCache:
    def test_removes_everything(self, cache_dir: Path):
        report = cleanup_cache(CleanupOptions(), cache_dir)
        assert len(report.removed) == 3
        assert (cache_dir / "downloads").is_dir()
        assert list((cache_dir / "downloads").iterdir()) == []
        assert list((cache_dir / "com.github.autopkg.download.firefox").iterdir()) == []

    def test_downloads_only(self, cache_dir: Path):
        cleanup_cache(CleanupOptions(remove_recipe_cache=False), cache_dir)
        assert not (cache_dir / "downloads" / "Firefox.dmg").exists()
        assert (cache_dir / "com.github.autopkg.download.firefox" / "Firefox.pkg").exists()

    def test_keep_days(self, cache_dir: Path):
        old = cache_dir / "downloads" / "Old.dmg"
        old.write_text("old")
        three_days_ago = time.time() - 3 * 24 * 60 * 60
        os.utime(old, (three_days_ago, three_days_ago))

        report = cleanup_cache(CleanupOptions(keep_days=2), cache_dir)
        assert report.removed == [str(old)]
        assert report.kept == 3
        assert (cache_dir / "downloads" / "Firefox.dmg").exists()

    def test_missing_cache_dir(self, tmp_path: Path):
        with pytest.raises(CleanupError, match="does not exist"):
            cleanup_cache(CleanupOptions(), tmp_path / "missing")


# ── Report ───────────────────────────────────────────────────────


class TestReport:
    def _result(self) -> PipelineResult:
        result = PipelineResult(steps=[
            StepResult.success("import", "import", processed=["Foo.override"]),
            StepResult.failure("build", "run", error="run failed: exit code 1"),
        ])
        result.finish()
        return result

    def test_render(self):
        text = render_report(self._result())
        assert "Success: False" in text
        assert "Completed Steps: 1" in text
        assert "Failed Steps: 1" in text
        assert "Processed Recipes: 1" in text
        assert "  - build: run failed: exit code 1" in text

    def test_write_creates_parent(self, tmp_path: Path):
        path = tmp_path / "out" / "report.txt"
        assert write_report(self._result(), path) is True
        assert path.read_text().startswith("AutoPkg Pipeline Execution Report")

    def test_write_failure_is_reported(self, tmp_path: Path):
        assert write_report(self._result(), tmp_path) is False


# ── Webhook ──────────────────────────────────────────────────────


class FakeResponse:
    def __init__(self, status: int):
        self.status = status

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False


class TestWebhookNotifier:
    def test_posts_json(self, monkeypatch: pytest.MonkeyPatch):
        captured = {}

        def fake_urlopen(req, timeout=None):
            captured["req"] = req
            captured["timeout"] = timeout
            return FakeResponse(200)

        monkeypatch.setattr(urllib.request, "urlopen", fake_urlopen)
        WebhookNotifier("https://hooks.example.com/x", timeout=5).send("hello")

        req = captured["req"]
        body = json.loads(req.data.decode("utf-8"))
        assert req.full_url == "https://hooks.example.com/x"
        assert req.get_method() == "POST"
        assert req.get_header("Content-type") == "application/json"
        assert body["text"] == "hello"
        assert isinstance(body["timestamp"], int)
        assert captured["timeout"] == 5

    def test_error_status(self, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.setattr(urllib.request, "urlopen", lambda req, timeout=None: FakeResponse(500))
        with pytest.raises(NotificationError, match="500"):
            WebhookNotifier("https://hooks.example.com/x").send("hello")

    def test_http_error(self, monkeypatch: pytest.MonkeyPatch):
        def fake_urlopen(req, timeout=None):
            raise urllib.error.HTTPError(req.full_url, 404, "Not Found", {}, None)

        monkeypatch.setattr(urllib.request, "urlopen", fake_urlopen)
        with pytest.raises(NotificationError, match="404"):
            WebhookNotifier("https://hooks.example.com/x").send("hello")

    def test_transport_error(self, monkeypatch: pytest.MonkeyPatch):
        def fake_urlopen(req, timeout=None):
            raise urllib.error.URLError("connection refused")

        monkeypatch.setattr(urllib.request, "urlopen", fake_urlopen)
        with pytest.raises(NotificationError, match="connection refused"):
            WebhookNotifier("https://hooks.example.com/x").send("hello")

    def test_url_without_scheme(self, monkeypatch: pytest.MonkeyPatch):
        calls = []
        monkeypatch.setattr(urllib.request, "urlopen", lambda req, timeout=None: calls.append(req))
        with pytest.raises(NotificationError, match="invalid webhook URL 'hooks.example.com/x'"):
            WebhookNotifier("hooks.example.com/x").send("hello")
        assert calls == []
