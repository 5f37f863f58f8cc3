"""Tests for concurrent per-file evaluation."""

import json
import time

import pytest

from conftest import FakeCompletionClient, evaluation_response, failing_for
from repolens.aggregator import aggregate
from repolens.config_manager import ReviewSettings
from repolens.dependency_extractor import extract
from repolens.dispatcher import EvaluationDispatcher, dump_name, is_eligible
from repolens.graph_context import FileGraphContext
from repolens.models import ERRORS, FileTreeNode, Severity
from repolens.rate_limiter import TokenBucket
from repolens.tree_walker import walk


def _prepare(root):
    tree = walk(root)
    context = FileGraphContext.build(extract(tree.root_path, tree.file_paths()))
    return tree, context


class TestEligibility:
    @pytest.mark.parametrize("name,size,expected", [
        ("main.py", 100, True),
        ("package-lock.json", 100, False),
        ("yarn.lock", 100, False),
        ("vendor.min.js", 100, False),
        ("site.min.css", 100, False),
        ("app.bundle.js", 100, False),
        ("app.js.map", 100, False),
        ("huge.py", 10_000, False),
    ])
    def test_is_eligible(self, name, size, expected):
        node = FileTreeNode(path=f"src/{name}", is_dir=False, size=size)

        assert is_eligible(node, max_bytes=5_000) is expected

    def test_directories_are_not_eligible(self):
        assert not is_eligible(FileTreeNode(path="src", is_dir=True), max_bytes=5_000)

    def test_dump_name(self):
        assert dump_name("src/app/main.py") == "src_app_main.py.json"


class TestDispatch:
    """Fan-out, failure containment, and deadlines."""

    def test_every_eligible_file_is_evaluated(self, make_repo, fake_client):
        root = make_repo({"a.py": "from .b import x\n", "b.py": "x = 1\n", "package-lock.json": "{}"})
        tree, context = _prepare(root)
        dispatcher = EvaluationDispatcher(fake_client, TokenBucket(10_000), root, ReviewSettings(workers=2))

        futures = dispatcher.dispatch(tree.files(), context)

        assert list(futures) == ["a.py", "b.py"]
        assert all(future.result().ok for future in futures.values())
        assert len(fake_client.calls) == 2

    def test_prompt_carries_dependency_context(self, make_repo, fake_client):
        root = make_repo({"a.py": "from .b import x\n", "b.py": "x = 1\ndef helper():\n    pass\n"})
        tree, context = _prepare(root)
        dispatcher = EvaluationDispatcher(fake_client, TokenBucket(10_000), root, ReviewSettings(workers=1))

        dispatcher.dispatch(tree.files(), context)
        [prompt] = fake_client.prompts_for("b.py")

        assert "- language: python" in prompt
        assert "  - a.py" in prompt
        assert "  - helper" in prompt
        assert "```python\nx = 1\n" in prompt

    def test_content_is_truncated(self, make_repo, fake_client):
        root = make_repo({"a.py": "A" * 50 + "B" * 50})
        tree, context = _prepare(root)
        settings = ReviewSettings(workers=1, max_chars=50)
        dispatcher = EvaluationDispatcher(fake_client, TokenBucket(10_000), root, settings)

        dispatcher.dispatch(tree.files(), context)
        [prompt] = fake_client.prompts_for("a.py")

        assert "A" * 50 in prompt
        assert "B" not in prompt.split("File content starts:")[1]

    def test_failure_is_contained_to_one_file(self, make_repo):
        root = make_repo({"a.py": "x = 1\n", "b.py": "y = 2\n", "c.py": "z = 3\n"})
        tree, context = _prepare(root)
        client = FakeCompletionClient(failing_for("b.py"))
        dispatcher = EvaluationDispatcher(client, TokenBucket(10_000), root, ReviewSettings(workers=3))

        report = aggregate(dispatcher.dispatch(tree.files(), context))

        assert report.errors["a.py"] == [] and report.errors["c.py"] == []
        [issue] = report.errors["b.py"]
        assert issue.severity is Severity.ERROR
        assert "upstream unavailable" in issue.title

    def test_summary_stored_on_node(self, make_repo):
        root = make_repo({"a.py": "x = 1\n"})
        tree, context = _prepare(root)
        client = FakeCompletionClient(lambda s, u: evaluation_response(summary="Defines x."))
        dispatcher = EvaluationDispatcher(client, TokenBucket(10_000), root, ReviewSettings(workers=1))

        dispatcher.dispatch(tree.files(), context)["a.py"].result()

        assert tree.find("a.py").summary == "Defines x."

    def test_batch_deadline_cancels_remaining_work(self, make_repo):
        files = {f"m{i}.py": f"v = {i}\n" for i in range(4)}
        root = make_repo(files)
        tree, context = _prepare(root)

        def _slow(system, user):
            time.sleep(0.3)
            return evaluation_response()

        limiter = TokenBucket(10_000)
        settings = ReviewSettings(workers=1, batch_timeout=0.05)
        dispatcher = EvaluationDispatcher(FakeCompletionClient(_slow), limiter, root, settings)

        futures = dispatcher.dispatch(tree.files(), context)
        report = aggregate(futures, result_timeout=5)

        assert limiter.closed
        assert report.files == sorted(files)
        for path in files:
            [issue] = report.errors[path]
            assert issue.severity is Severity.ERROR

    def test_dump_writes_parsed_evaluation(self, make_repo, temp_dir, sample_evaluation_response):
        root = make_repo({"app/main.py": "print(1)\n"})
        tree, context = _prepare(root)
        client = FakeCompletionClient(lambda s, u: sample_evaluation_response)
        dump_dir = temp_dir / "dumps"
        dispatcher = EvaluationDispatcher(
            client, TokenBucket(10_000), root, ReviewSettings(workers=1), dump_dir=dump_dir,
        )

        dispatcher.dispatch(tree.files(), context)["app/main.py"].result()
        dumped = json.loads((dump_dir / "app_main.py.json").read_text())

        assert dumped[ERRORS]["app/main.py"][0]["title"] == "SystemExit raised for invalid input"

    def test_tokens_are_drawn_from_limiter(self, make_repo, fake_client):
        root = make_repo({"a.py": "x = 1\n" * 100})
        tree, context = _prepare(root)
        limiter = TokenBucket(100_000, refill_per_second=0.001)
        dispatcher = EvaluationDispatcher(fake_client, limiter, root, ReviewSettings(workers=1))

        dispatcher.dispatch(tree.files(), context)["a.py"].result()

        assert limiter.available < 100_000 - 100
