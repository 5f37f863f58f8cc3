"""Integration tests for CLI commands."""

import json
from pathlib import Path

import pytest
from typer.testing import CliRunner

from conftest import FakeCompletionClient
from repolens import __version__, config_manager
from repolens.cli import app


runner = CliRunner()


class StubLLM(FakeCompletionClient):
    provider_name = "stub"
    model = "stub-model"


@pytest.fixture
def stub_llm(monkeypatch):
    client = StubLLM()
    monkeypatch.setattr("repolens.cli.LLMClient", lambda **kwargs: client)
    return client


class TestVersion:
    def test_version(self):
        result = runner.invoke(app, ["--version"])

        assert result.exit_code == 0
        assert f"RepoLens v{__version__}" in result.output


class TestReviewCommand:
    """Tests for 'repolens review'."""

    def test_review_writes_report(self, make_repo, temp_dir: Path, stub_llm):
        root = make_repo({"a.py": "from .b import x\n", "b.py": "x = 1\n"})
        output = temp_dir / "report.json"

        result = runner.invoke(app, ["review", str(root), "--no-assess", "--workers", "2", "-o", str(output)])

        assert result.exit_code == 0, result.output
        assert "Review Summary" in result.output
        assert "2 files reviewed" in result.output
        data = json.loads(output.read_text())
        assert sorted(data["files"]) == ["a.py", "b.py"]
        assert set(data["errors"]) == {"a.py", "b.py"}
        assert len(stub_llm.calls) == 2

    def test_review_with_assessment_and_records(self, make_repo, temp_dir: Path, stub_llm):
        root = make_repo({"a.py": "x = 1\n"})
        records = temp_dir / "records.jsonl"

        result = runner.invoke(app, ["review", str(root), "--records", str(records)])

        assert result.exit_code == 0, result.output
        assert "1 records appended" in result.output
        assert len(records.read_text().splitlines()) == 1
        assert len(stub_llm.calls) == 2

    def test_review_nonexistent_path(self, stub_llm):
        result = runner.invoke(app, ["review", "/nonexistent/path"])

        assert result.exit_code == 1
        assert "Path does not exist" in result.output

    def test_review_remote_reference(self, stub_llm):
        result = runner.invoke(app, ["review", "https://github.com/example/repo.git"])

        assert result.exit_code == 1

    def test_review_unknown_provider(self, make_repo):
        root = make_repo({"a.py": "x = 1\n"})

        result = runner.invoke(app, ["review", str(root), "--provider", "nope"])

        assert result.exit_code != 0


class TestTreeAndDeps:
    """Tests for 'repolens tree' and 'repolens deps'."""

    def test_tree(self, sample_project_path: Path):
        result = runner.invoke(app, ["tree", str(sample_project_path)])

        assert result.exit_code == 0
        assert "Files: 11 | Directories: 9" in result.output
        assert "config.js" in result.output

    def test_tree_invalid_path(self):
        result = runner.invoke(app, ["tree", "/nonexistent/path"])

        assert result.exit_code == 1

    def test_deps_table(self, sample_project_path: Path):
        result = runner.invoke(app, ["deps", str(sample_project_path)])

        assert result.exit_code == 0
        assert "Dependency Context" in result.output
        assert "Edges:" in result.output
        assert "Unresolved imports:" in result.output

    def test_deps_single_file(self, sample_project_path: Path):
        result = runner.invoke(app, ["deps", str(sample_project_path), "--file", "app/main.py"])

        assert result.exit_code == 0
        assert "taking: app/models.py, app/utils.py" in result.output
        assert "dependents: (none)" in result.output


class TestConfigCommands:
    """Tests for 'repolens config'."""

    def test_show_defaults(self):
        result = runner.invoke(app, ["config", "show-llm"])

        assert result.exit_code == 0
        assert "OLLAMA" in result.output
        assert "(not set)" in result.output

    def test_set_and_show_masks_key(self):
        result = runner.invoke(app, ["config", "set-llm", "groq", "-k", "gsk-123456789"])
        assert result.exit_code == 0
        assert "LLM provider set to: groq" in result.output

        shown = runner.invoke(app, ["config", "show-llm"])
        assert "GROQ" in shown.output
        assert "gsk-1234" in shown.output
        assert "gsk-123456789" not in shown.output

    def test_set_prompts_for_missing_key(self):
        result = runner.invoke(app, ["config", "set-llm", "openai"], input="sk-typed\n")

        assert result.exit_code == 0
        assert config_manager.load_config()["api_key"] == "sk-typed"

    def test_set_reuses_stored_key(self):
        runner.invoke(app, ["config", "set-llm", "openai", "-k", "sk-first"])

        result = runner.invoke(app, ["config", "set-llm", "openai", "-m", "gpt-4o"])

        assert "Reusing existing API key" in result.output
        assert config_manager.load_config() == {
            "provider": "openai",
            "model": "gpt-4o",
            "api_key": "sk-first",
            "endpoint": config_manager.DEFAULT_CONFIGS["openai"]["endpoint"],
        }

    def test_set_uses_environment_key_without_prompting(self, monkeypatch):
        monkeypatch.setenv("GROQ_API_KEY", "gsk-from-env")

        result = runner.invoke(app, ["config", "set-llm", "groq"])

        assert result.exit_code == 0
        assert "GROQ_API_KEY" in result.output
        assert "Enter your groq API key" not in result.output
        assert "api_key" not in config_manager.load_full_config()["llm"]
        assert config_manager.load_config()["api_key"] == "gsk-from-env"

    def test_set_does_not_persist_environment_key_of_stored_provider(self, monkeypatch):
        runner.invoke(app, ["config", "set-llm", "groq", "-k", "gsk-stored"])
        monkeypatch.setenv("GROQ_API_KEY", "gsk-from-env")

        result = runner.invoke(app, ["config", "set-llm", "groq", "-m", "llama-other"])

        assert result.exit_code == 0
        assert config_manager.load_full_config()["llm"]["api_key"] == "gsk-stored"

    def test_set_unknown_provider(self):
        result = runner.invoke(app, ["config", "set-llm", "bogus"])

        assert result.exit_code == 1

    def test_unset(self):
        runner.invoke(app, ["config", "set-llm", "groq", "-k", "gsk-1"])

        result = runner.invoke(app, ["config", "unset-llm", "--yes"])

        assert result.exit_code == 0
        assert "removed" in result.output
        assert config_manager.load_config()["provider"] == "ollama"

    def test_unset_without_config(self):
        result = runner.invoke(app, ["config", "unset-llm", "--yes"])

        assert result.exit_code == 0
        assert "Nothing to unset" in result.output
