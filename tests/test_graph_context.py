"""Tests for dependency graph queries."""

from pathlib import Path

from repolens.dependency_extractor import extract
from repolens.graph_context import FileGraphContext
from repolens.models import DependencyEdge
from repolens.tree_walker import walk


def _context(edges, exports=None, languages=None):
    return FileGraphContext([DependencyEdge(s, t) for s, t in edges], exports, languages)


class TestQueries:
    """Lookups over a hand-built graph."""

    def test_taking_and_dependents(self):
        ctx = _context([("a.py", "b.py"), ("c.py", "b.py"), ("a.py", "c.py")])

        assert ctx.taking("a.py") == ("b.py", "c.py")
        assert ctx.dependents("b.py") == ("a.py", "c.py")
        assert ctx.dependents("a.py") == ()

    def test_paths_are_normalized_on_lookup(self):
        ctx = _context([("src/a.js", "src/b.js")], exports={"./src/b.js": ["b"]})

        assert ctx.taking("./src/a.js") == ("src/b.js",)
        assert ctx.taking("/src/a.js") == ("src/b.js",)
        assert ctx.dependents("src\\b.js") == ("src/a.js",)
        assert ctx.calling("src/b.js/") == ("b",)

    def test_unknown_path_is_empty(self):
        ctx = _context([("a.py", "b.py")])

        assert ctx.taking("zzz.py") == ()
        assert ctx.dependents("zzz.py") == ()
        assert ctx.calling("zzz.py") == ()

    def test_results_are_immutable(self):
        ctx = _context([("a.py", "b.py")])

        assert isinstance(ctx.taking("a.py"), tuple)
        assert isinstance(ctx.dependents("b.py"), tuple)

    def test_language_falls_back_to_extension(self):
        ctx = _context([], languages={"a.py": "python"})

        assert ctx.language("a.py") == "python"
        assert ctx.language("b.ts") == "typescript"
        assert ctx.language("") is None

    def test_related_files_and_file_context(self):
        ctx = _context(
            [("pkg/a.py", "pkg/b.py"), ("pkg/c.py", "pkg/a.py"), ("other/d.py", "pkg/a.py")],
            exports={"pkg/a.py": ["run"]},
            languages={"pkg/a.py": "python", "pkg/b.py": "python", "pkg/c.py": "python", "other/d.py": "python"},
        )

        assert ctx.related_files("pkg/a.py") == ["pkg/b.py", "pkg/c.py", "other/d.py"]
        details = ctx.file_context("pkg/a.py")
        assert details["taking"] == ["pkg/b.py"]
        assert details["dependents"] == ["pkg/c.py", "other/d.py"]
        assert details["calling"] == ["run"]
        assert details["language"] == "python"
        assert details["filesInSameFolder"] == ["pkg/b.py", "pkg/c.py"]

    def test_dependent_counts(self):
        ctx = _context([("a", "z"), ("b", "z"), ("a", "y")])

        assert ctx.dependent_counts() == {"z": 2, "y": 1}


class TestReverseIndex:
    """dependents(X) is exactly the set of files whose taking() contains X."""

    def test_reverse_index_matches_forward_edges(self, sample_project_path: Path):
        tree = walk(sample_project_path)
        ctx = FileGraphContext.build(extract(tree.root_path, tree.file_paths()))

        for path in tree.file_paths():
            expected = {other for other in tree.file_paths() if path in ctx.taking(other)}
            assert set(ctx.dependents(path)) == expected

    def test_end_to_end_relative_python_import(self, make_repo):
        root = make_repo({"a.py": "from .b import x\n", "b.py": "x = 1\n"})
        ctx = FileGraphContext.build(extract(root, walk(root).file_paths()))

        assert ctx.taking("a.py") == ("b.py",)
        assert set(ctx.dependents("b.py")) == {"a.py"}
