"""Core data models shared by the walker, extractor, dispatcher and aggregator."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional

ERRORS = "errors"
IMPROVEMENTS = "improvements"
THINGS_DONE_RIGHT = "thingsDoneRight"
CATEGORIES = (ERRORS, IMPROVEMENTS, THINGS_DONE_RIGHT)


def normalize_path(path: str) -> str:
    """Normalize a repo-relative path to forward slashes with no leading ``./`` or ``/``."""
    if not path:
        return ""
    normalized = path.replace("\\", "/").strip()
    while normalized.startswith("./"):
        normalized = normalized[2:]
    normalized = normalized.lstrip("/")
    return normalized.rstrip("/")


# ------------------------------------------------------------------
# Repository tree
# ------------------------------------------------------------------

@dataclass(eq=False)
class FileTreeNode:
    """A file or directory inside a walked repository.

    ``path`` is repo-relative and normalized; the root node has ``path == ""``.
    ``content`` and ``summary`` are filled in after the walk.
    """

    path: str
    is_dir: bool
    size: int = 0
    parent: Optional["FileTreeNode"] = field(default=None, repr=False)
    children: List["FileTreeNode"] = field(default_factory=list, repr=False)
    content: Optional[str] = field(default=None, repr=False)
    summary: Optional[str] = None

    @property
    def name(self) -> str:
        return self.path.rsplit("/", 1)[-1]

    @property
    def extension(self) -> str:
        name = self.name
        if "." not in name.lstrip("."):
            return ""
        return name.rsplit(".", 1)[-1].lower()

    @property
    def folder(self) -> str:
        return self.path.rsplit("/", 1)[0] if "/" in self.path else ""

    @property
    def depth(self) -> int:
        return self.path.count("/") + 1 if self.path else 0

    def add_child(self, child: "FileTreeNode") -> None:
        if not self.is_dir:
            raise ValueError(f"Cannot add children to file node '{self.path}'")
        child.parent = self
        self.children.append(child)

    def load_content(self, root: Path) -> str:
        """Read the file body on first use and keep it on the node."""
        if self.content is None:
            data = (Path(root) / self.path).read_bytes()
            self.content = data.decode("utf-8", errors="replace")
        return self.content

    def iter_nodes(self) -> Iterator["FileTreeNode"]:
        yield self
        for child in self.children:
            yield from child.iter_nodes()

    def iter_files(self) -> Iterator["FileTreeNode"]:
        for node in self.iter_nodes():
            if not node.is_dir:
                yield node


@dataclass
class RepositoryTree:
    """Filtered view of a repository rooted at ``root_path``."""

    root_path: Path
    root: FileTreeNode
    _index: Dict[str, FileTreeNode] = field(default_factory=dict, init=False, repr=False)

    def __post_init__(self) -> None:
        self._index = {node.path: node for node in self.root.iter_nodes()}

    @property
    def file_count(self) -> int:
        return sum(1 for node in self._index.values() if not node.is_dir)

    @property
    def directory_count(self) -> int:
        return sum(1 for node in self._index.values() if node.is_dir and node.path)

    def find(self, path: str) -> Optional[FileTreeNode]:
        return self._index.get(normalize_path(path))

    def files(self) -> List[FileTreeNode]:
        return list(self.root.iter_files())

    def file_paths(self) -> List[str]:
        return [node.path for node in self.root.iter_files()]

    def render(self) -> str:
        lines = [f"{self.root_path.name}/"]
        for node in self.root.iter_nodes():
            if not node.path:
                continue
            indent = "  " * node.depth
            suffix = "/" if node.is_dir else ""
            lines.append(f"{indent}{node.name}{suffix}")
        return "\n".join(lines)


# ------------------------------------------------------------------
# Dependency graph
# ------------------------------------------------------------------

@dataclass(frozen=True)
class DependencyEdge:
    """Directed edge ``source -> target``; identity is the path pair only."""

    source: str
    target: str
    kind: str = field(default="import", compare=False)
    is_direct: bool = field(default=True, compare=False)


# ------------------------------------------------------------------
# Issues and outcomes
# ------------------------------------------------------------------

class Severity(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"
    ERROR = "ERROR"

    @classmethod
    def parse(cls, value: Any) -> "Severity":
        """Map a model-provided severity string onto the enum, defaulting to MEDIUM."""
        if isinstance(value, Severity):
            return value
        if not isinstance(value, str):
            return cls.MEDIUM
        key = value.strip().upper()
        key = _SEVERITY_ALIASES.get(key, key)
        try:
            return cls(key)
        except ValueError:
            return cls.MEDIUM


_SEVERITY_ALIASES = {
    "INFO": "MEDIUM",
    "WARN": "HIGH",
    "WARNING": "HIGH",
}


@dataclass(frozen=True)
class IssueItem:
    title: str
    file_path: str
    line_start: Optional[int] = None
    line_end: Optional[int] = None
    severity: Severity = Severity.MEDIUM
    code_snippet: Optional[str] = None

    @classmethod
    def failure(cls, file_path: str, message: str) -> "IssueItem":
        return cls(title=message, file_path=file_path, severity=Severity.ERROR)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "title": self.title,
            "filePath": self.file_path,
            "lineStart": self.line_start,
            "lineEnd": self.line_end,
            "severity": self.severity.value,
            "codeSnippet": self.code_snippet,
        }


def empty_categories() -> Dict[str, List[IssueItem]]:
    return {category: [] for category in CATEGORIES}


@dataclass
class EvaluationOutcome:
    """Result of evaluating one file.

    ``categories`` holds buckets the model already sorted; ``issues`` holds a
    flat list that still needs keyword categorization.
    """

    file_path: str
    ok: bool
    categories: Dict[str, List[IssueItem]] = field(default_factory=empty_categories)
    issues: List[IssueItem] = field(default_factory=list)
    summary: Optional[str] = None
    general_comments: List[str] = field(default_factory=list)
    error: Optional[str] = None
    parsed: Optional[Dict[str, Any]] = field(default=None, repr=False)

    @classmethod
    def success(
        cls,
        file_path: str,
        categories: Optional[Dict[str, List[IssueItem]]] = None,
        issues: Optional[List[IssueItem]] = None,
        summary: Optional[str] = None,
        general_comments: Optional[List[str]] = None,
        parsed: Optional[Dict[str, Any]] = None,
    ) -> "EvaluationOutcome":
        buckets = empty_categories()
        for name, items in (categories or {}).items():
            buckets.setdefault(name, []).extend(items)
        return cls(
            file_path=file_path,
            ok=True,
            categories=buckets,
            issues=list(issues or []),
            summary=summary,
            general_comments=list(general_comments or []),
            parsed=parsed,
        )

    @classmethod
    def failure(cls, file_path: str, message: str) -> "EvaluationOutcome":
        buckets = empty_categories()
        buckets[ERRORS].append(IssueItem.failure(file_path, f"Failed to evaluate file: {message}"))
        return cls(file_path=file_path, ok=False, categories=buckets, error=message)


@dataclass
class ReviewReport:
    """Aggregated, categorized review of a repository."""

    errors: Dict[str, List[IssueItem]] = field(default_factory=dict)
    improvements: Dict[str, List[IssueItem]] = field(default_factory=dict)
    things_done_right: Dict[str, List[IssueItem]] = field(default_factory=dict)
    general_comments: List[str] = field(default_factory=list)
    files: List[str] = field(default_factory=list)
    summaries: Dict[str, str] = field(default_factory=dict)
    folder_summaries: Dict[str, str] = field(default_factory=dict)
    root_summary: Optional[str] = None

    def bucket(self, category: str) -> Dict[str, List[IssueItem]]:
        if category == ERRORS:
            return self.errors
        if category == IMPROVEMENTS:
            return self.improvements
        if category == THINGS_DONE_RIGHT:
            return self.things_done_right
        raise KeyError(category)

    def add(self, category: str, path: str, items: List[IssueItem]) -> None:
        self.bucket(category).setdefault(path, []).extend(items)

    def issues_for(self, path: str) -> List[IssueItem]:
        found: List[IssueItem] = []
        for category in CATEGORIES:
            found.extend(self.bucket(category).get(path, []))
        return found

    def counts(self, path: str) -> Dict[str, int]:
        return {category: len(self.bucket(category).get(path, [])) for category in CATEGORIES}

    def to_dict(self) -> Dict[str, Any]:
        def _dump(bucket: Dict[str, List[IssueItem]]) -> Dict[str, List[Dict[str, Any]]]:
            return {path: [item.to_dict() for item in items] for path, items in bucket.items()}

        return {
            ERRORS: _dump(self.errors),
            IMPROVEMENTS: _dump(self.improvements),
            THINGS_DONE_RIGHT: _dump(self.things_done_right),
            "generalComments": list(self.general_comments),
            "files": list(self.files),
            "summaries": dict(self.summaries),
            "folderSummaries": dict(self.folder_summaries),
            "rootSummary": self.root_summary,
        }
