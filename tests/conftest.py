"""Pytest configuration and fixtures for RepoLens tests."""

import json
import shutil
import tempfile
import threading
from pathlib import Path
from typing import Callable, Dict, Generator, List, Optional

import pytest

from repolens.errors import CompletionError


@pytest.fixture(autouse=True)
def _isolated_config(tmp_path_factory, monkeypatch):
    """Point the config file at an empty temp location and drop API key variables.

    Keeps a developer's ~/.repolens/config.toml and shell environment from
    leaking into test runs.
    """
    home = tmp_path_factory.mktemp("repolens_home")
    monkeypatch.setattr("repolens.config_manager.CONFIG_FILE", home / "config.toml")
    monkeypatch.setattr("repolens.config.DUMP_DIR", home / "evaluations")
    for name in (
        "REPOLENS_API_KEY", "GROQ_API_KEY", "OPENAI_API_KEY",
        "ANTHROPIC_API_KEY", "GEMINI_API_KEY", "OPENROUTER_API_KEY",
    ):
        monkeypatch.delenv(name, raising=False)
    return home


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for tests."""
    tmp = Path(tempfile.mkdtemp())
    yield tmp
    shutil.rmtree(tmp, ignore_errors=True)


@pytest.fixture
def sample_project_path() -> Path:
    """Get path to sample test project."""
    return Path(__file__).parent / "fixtures" / "sample_project"


@pytest.fixture
def make_repo(temp_dir: Path) -> Callable[[Dict[str, object]], Path]:
    """Write ``{relative path: str | bytes}`` under a fresh repository root."""

    def _make(files: Dict[str, object]) -> Path:
        root = temp_dir / "repo"
        root.mkdir(exist_ok=True)
        for rel, content in files.items():
            target = root / rel
            target.parent.mkdir(parents=True, exist_ok=True)
            if isinstance(content, bytes):
                target.write_bytes(content)
            else:
                target.write_text(content, encoding="utf-8")
        return root

    return _make


def evaluation_response(
    errors: Optional[dict] = None,
    improvements: Optional[dict] = None,
    things_done_right: Optional[dict] = None,
    summary: str = "Handles a small piece of the demo application.",
) -> str:
    body = {
        "errors": errors or {},
        "improvements": improvements or {},
        "thingsDoneRight": things_done_right or {},
    }
    return f"```json\n{json.dumps(body)}\n```\nSummary: {summary}"


class FakeCompletionClient:
    """Thread-safe stand-in for :class:`repolens.llm.LLMClient`.

    ``responder(system_prompt, user_prompt)`` returns the text or raises.
    """

    def __init__(self, responder: Optional[Callable[[str, str], str]] = None):
        self.responder = responder or (lambda system, user: evaluation_response())
        self.calls: List[Dict[str, object]] = []
        self._lock = threading.Lock()

    def complete(self, system_prompt, user_prompt, max_tokens=1024, temperature=0.2):
        with self._lock:
            self.calls.append({
                "system": system_prompt,
                "user": user_prompt,
                "max_tokens": max_tokens,
                "temperature": temperature,
            })
        return self.responder(system_prompt, user_prompt)

    def prompts_for(self, path: str) -> List[str]:
        marker = f"- filePath: {path}\n"
        return [call["user"] for call in self.calls if marker in call["user"]]


def failing_for(path: str, fallback: Callable[[str, str], str] = None):
    """Responder that raises CompletionError for one file and answers the rest."""
    fallback = fallback or (lambda system, user: evaluation_response())

    def _respond(system_prompt: str, user_prompt: str) -> str:
        if f"- filePath: {path}\n" in user_prompt:
            raise CompletionError("upstream unavailable")
        return fallback(system_prompt, user_prompt)

    return _respond


@pytest.fixture
def fake_client() -> FakeCompletionClient:
    return FakeCompletionClient()


@pytest.fixture
def sample_evaluation_response() -> str:
    """Model reply with one issue in each category."""
    return evaluation_response(
        errors={"app/main.py": [{
            "title": "SystemExit raised for invalid input",
            "lineStart": 9,
            "lineEnd": 10,
            "severity": "ERROR",
        }]},
        improvements={"app/main.py": [{
            "title": "Move the demo data out of main()",
            "lineStart": 8,
            "lineEnd": 12,
            "severity": "LOW",
        }]},
        things_done_right={"general": [{
            "title": "Clear separation of models and helpers",
            "severity": "LOW",
        }]},
        summary="Runs the order demo end to end.",
    )
