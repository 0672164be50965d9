"""
Tests for the recipe tool contract, the mock tool, and the autopkg CLI adapter.
"""

import subprocess

import pytest

from autopkgctl.adapters.autopkg.cli import AutoPkgCLI, parse_trust_output
from autopkgctl.adapters.base import ToolError, TrustCheck
from autopkgctl.adapters.mock import MockRecipeTool
from autopkgctl.adapters.shell.command import CommandResult, run_command
from autopkgctl.core.models.options import (
    MakeOverrideOptions,
    RunOptions,
    SearchOptions,
    UpdateTrustOptions,
    VerifyTrustOptions,
)

TRUST_FAILURE = """\
Foo.override: FAILED
    No trust information present.
    Audit the recipe, then run 'autopkg update-trust-info Foo.override'
Bar.override: OK
"""


class FakeSubprocess:
    """Stands in for subprocess.run, replaying canned results."""

    def __init__(self, *results: tuple[int, str, str]):
        self._results = list(results) or [(0, "", "")]
        self.calls: list[list[str]] = []

    def __call__(self, args, **kwargs):
        self.calls.append(list(args))
        rc, out, err = self._results.pop(0) if len(self._results) > 1 else self._results[0]
        return subprocess.CompletedProcess(args, rc, stdout=out, stderr=err)


@pytest.fixture
def fake_run(monkeypatch: pytest.MonkeyPatch):
    def install(*results: tuple[int, str, str]) -> FakeSubprocess:
        fake = FakeSubprocess(*results)
        monkeypatch.setattr(subprocess, "run", fake)
        return fake
    return install


# ── Contract ─────────────────────────────────────────────────────


class TestTrustCheck:
    def test_detail_lists_reasons(self):
        check = TrustCheck(
            success=False,
            failed=["Foo.override", "Bar.override"],
            reasons={"Foo.override": ["No trust information present."]},
        )
        assert check.detail == "Foo.override: No trust information present.\nBar.override"

    def test_tool_error_carries_output(self):
        err = ToolError("run failed: exit code 1", output="log", return_code=1)
        assert str(err) == "run failed: exit code 1"
        assert err.output == "log"
        assert err.return_code == 1


# ── Mock ─────────────────────────────────────────────────────────


class TestMockRecipeTool:
    def test_default_success(self):
        mock = MockRecipeTool()
        assert mock.run_recipes(["A"], RunOptions()) == "[mock] executed"
        assert mock.call_count == 1
        assert repr(mock) == "<MockRecipeTool name='mock'>"

    def test_failure_for_every_call(self):
        mock = MockRecipeTool()
        mock.set_failure("search", error="offline")
        with pytest.raises(ToolError, match="offline"):
            mock.search("firefox", SearchOptions())

    def test_failure_for_one_target(self):
        mock = MockRecipeTool()
        mock.set_failure("make_override", "B")
        mock.make_override("A", MakeOverrideOptions())
        with pytest.raises(ToolError, match="make_override B failed"):
            mock.make_override("B", MakeOverrideOptions())

    def test_listing_without_identifiers(self):
        mock = MockRecipeTool(recipes=["Foo (com.example.foo)"])
        assert mock.list_recipes(with_identifiers=False) == ["Foo"]
        assert mock.list_recipes() == ["Foo (com.example.foo)"]

    def test_untrusted_until_repaired(self):
        mock = MockRecipeTool()
        mock.set_untrusted("Foo.override")
        check = mock.verify_trust(["Foo.override"], VerifyTrustOptions())
        assert not check.success
        assert check.failed == ["Foo.override"]

        mock.update_trust(["Foo.override"], UpdateTrustOptions())
        assert mock.verify_trust(["Foo.override"], VerifyTrustOptions()).success

    def test_unrepairable(self):
        mock = MockRecipeTool()
        mock.set_untrusted("Foo.override", repairable=False)
        mock.update_trust(["Foo.override"], UpdateTrustOptions())
        assert not mock.verify_trust(["Foo.override"], VerifyTrustOptions()).success

    def test_reset(self):
        mock = MockRecipeTool()
        mock.set_failure("audit")
        mock.set_untrusted("Foo.override")
        mock.list_repos()
        mock.reset()
        assert mock.call_count == 0
        assert mock.verify_trust(["Foo.override"], VerifyTrustOptions()).success


# ── Shell runner ─────────────────────────────────────────────────


class TestRunCommand:
    def test_captures_output(self, fake_run):
        fake_run((0, "hello\n", ""))
        result = run_command(["autopkg", "version"])
        assert result.ok
        assert result.output == "hello"
        assert result.args == ["autopkg", "version"]

    def test_check_raises_on_failure(self):
        result = CommandResult(args=["autopkg"], return_code=2, stdout="out", stderr="boom\n")
        with pytest.raises(ToolError) as exc_info:
            result.check("run")
        assert str(exc_info.value) == "run failed: boom"
        assert exc_info.value.output == "out\nboom"
        assert exc_info.value.return_code == 2

    def test_check_without_stderr(self):
        result = CommandResult(args=["autopkg"], return_code=1)
        with pytest.raises(ToolError, match="exit code 1"):
            result.check("audit")

    def test_missing_binary(self, monkeypatch: pytest.MonkeyPatch):
        def missing(args, **kwargs):
            raise FileNotFoundError(2, "No such file or directory")

        monkeypatch.setattr(subprocess, "run", missing)
        with pytest.raises(ToolError, match="autopkg not found"):
            run_command(["autopkg", "version"])

    def test_timeout(self, monkeypatch: pytest.MonkeyPatch):
        def slow(args, **kwargs):
            raise subprocess.TimeoutExpired(args, kwargs.get("timeout"))

        monkeypatch.setattr(subprocess, "run", slow)
        with pytest.raises(ToolError, match="timed out after 5s"):
            run_command(["autopkg", "run"], timeout=5)


# ── AutoPkg CLI ──────────────────────────────────────────────────


class TestParseTrustOutput:
    def test_failed_blocks(self):
        failed, reasons = parse_trust_output(TRUST_FAILURE)
        assert failed == ["Foo.override"]
        assert reasons["Foo.override"][0] == "No trust information present."
        assert reasons["Foo.override"][1].startswith("Audit the recipe")

    def test_unknown_reason(self):
        failed, reasons = parse_trust_output("Foo.override: FAILED\n")
        assert failed == ["Foo.override"]
        assert "rerun with -vvv" in reasons["Foo.override"][0]

    def test_clean_output(self):
        assert parse_trust_output("Foo.override: OK\n") == ([], {})


class TestAutoPkgCLI:
    def test_run_argv(self, fake_run):
        fake = fake_run((0, "done", ""))
        options = RunOptions(prefs_path="/p", check_only=True, variables={"A": "1"})
        assert AutoPkgCLI().run_recipes(["Foo", "Bar"], options) == "done"
        assert fake.calls == [["autopkg", "run", "--prefs", "/p", "--check", "-k", "A=1", "Foo", "Bar"]]

    def test_make_override_argv(self, fake_run):
        fake = fake_run()
        AutoPkgCLI().make_override("Foo", MakeOverrideOptions(prefs_path="/p", force=True))
        assert fake.calls == [["autopkg", "make-override", "--prefs", "/p", "--force", "Foo"]]

    def test_list_recipes_flags_and_lines(self, fake_run):
        fake = fake_run((0, "Foo (com.example.foo)\n\nBar (com.example.bar)\n", ""))
        lines = AutoPkgCLI().list_recipes(show_all=True)
        assert lines == ["Foo (com.example.foo)", "Bar (com.example.bar)"]
        assert fake.calls == [["autopkg", "list-recipes", "--with-identifiers", "--show-all"]]

    def test_custom_binary(self, fake_run):
        fake = fake_run()
        AutoPkgCLI(binary="/usr/local/bin/autopkg").list_repos()
        assert fake.calls[0][0] == "/usr/local/bin/autopkg"

    def test_nonzero_exit_raises(self, fake_run):
        fake_run((1, "", "Recipe not found"))
        with pytest.raises(ToolError, match="run failed: Recipe not found"):
            AutoPkgCLI().run_recipes(["Missing"], RunOptions())

    def test_add_repo_each_url(self, fake_run):
        fake = fake_run((0, "added", ""), (0, "added", ""))
        AutoPkgCLI().add_repo(["https://a", "https://b"], prefs_path="/p")
        assert fake.calls == [
            ["autopkg", "repo-add", "https://a", "--prefs", "/p"],
            ["autopkg", "repo-add", "https://b", "--prefs", "/p"],
        ]

    def test_add_repo_failure_names_url(self, fake_run):
        fake_run((0, "added", ""), (1, "", "clone failed"))
        with pytest.raises(ToolError, match="repo-add failed for: https://b"):
            AutoPkgCLI().add_repo(["https://a", "https://b"])

    def test_verify_trust_mismatch(self, fake_run):
        fake_run((1, TRUST_FAILURE, ""))
        check = AutoPkgCLI().verify_trust(["Foo.override", "Bar.override"], VerifyTrustOptions())
        assert not check.success
        assert check.failed == ["Foo.override"]
        assert "FAILED" in check.output

    def test_verify_trust_ok(self, fake_run):
        fake = fake_run((0, "Foo.override: OK", ""))
        check = AutoPkgCLI().verify_trust(["Foo.override"], VerifyTrustOptions(verbose_level=2))
        assert check.success
        assert fake.calls == [["autopkg", "verify-trust-info", "-v", "-v", "Foo.override"]]

    def test_verify_trust_broken_invocation(self, fake_run):
        fake_run((1, "", "Traceback"))
        with pytest.raises(ToolError, match="verify-trust-info failed"):
            AutoPkgCLI().verify_trust(["Foo.override"], VerifyTrustOptions())

    def test_verify_trust_requires_recipes(self):
        with pytest.raises(ToolError, match="no recipes given"):
            AutoPkgCLI().verify_trust([], VerifyTrustOptions())

    def test_search_requires_term(self):
        with pytest.raises(ToolError, match="search term is required"):
            AutoPkgCLI().search("", SearchOptions())

    def test_is_available(self, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.setattr("shutil.which", lambda name: None)
        assert AutoPkgCLI().is_available() is False
