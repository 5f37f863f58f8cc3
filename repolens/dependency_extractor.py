"""Regex-based import/export extraction for Java, Python and the JS/TS family.

Each supported language is one :class:`LanguageSpec` row in
:data:`LANGUAGE_SPECS`: how to find import references, how to find exported
symbols, and how to resolve a reference to a repo-relative file. Adding a
language means adding a row.

This is deliberately shallow. Aliases, re-exports through barrels, build-tool
path mapping and package managers are not modelled; a reference that does not
land on an existing file is counted and dropped.
"""

from __future__ import annotations

import logging
import os
import posixpath
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from .errors import ExtractionWarning
from .models import DependencyEdge, normalize_path
from .tree_walker import is_ignored_dir

logger = logging.getLogger(__name__)

LANGUAGE_BY_EXTENSION = {
    "java": "java",
    "py": "python",
    "js": "javascript",
    "mjs": "javascript",
    "cjs": "javascript",
    "jsx": "jsx",
    "ts": "typescript",
    "tsx": "tsx",
    "css": "css",
    "html": "html",
    "htm": "html",
    "md": "markdown",
    "json": "json",
    "yml": "yaml",
    "yaml": "yaml",
    "xml": "xml",
    "go": "go",
    "rb": "ruby",
    "php": "php",
    "cs": "csharp",
}


def detect_language(path: str) -> Optional[str]:
    name = path.rsplit("/", 1)[-1]
    if "." not in name.lstrip("."):
        return None
    ext = name.rsplit(".", 1)[-1].lower()
    return LANGUAGE_BY_EXTENSION.get(ext, ext)


@dataclass(frozen=True)
class ImportRef:
    """One import statement: the module specifier plus any imported names."""

    specifier: str
    names: Tuple[str, ...] = ()


@dataclass
class ExtractionResult:
    edges: List[DependencyEdge] = field(default_factory=list)
    exports: Dict[str, List[str]] = field(default_factory=dict)
    languages: Dict[str, Optional[str]] = field(default_factory=dict)
    warnings: List[ExtractionWarning] = field(default_factory=list)
    unresolved: int = 0


class RepoIndex:
    """Existence checks against the repository, plus the Java class-name index."""

    def __init__(self, root: Path):
        self.root = Path(root)
        self._class_index: Optional[Dict[str, str]] = None

    def exists(self, rel_path: str) -> bool:
        if not rel_path or rel_path.startswith("../") or rel_path == "..":
            return False
        return (self.root / rel_path).is_file()

    def first_existing(self, candidates: Iterable[str]) -> Optional[str]:
        for candidate in candidates:
            candidate = posixpath.normpath(candidate) if candidate else candidate
            if self.exists(candidate):
                return candidate
        return None

    def find_java_class(self, simple_name: str) -> Optional[str]:
        """First ``<simple_name>.java`` in a sorted walk of the repository."""
        if self._class_index is None:
            self._class_index = self._build_class_index()
        return self._class_index.get(simple_name)

    def _build_class_index(self) -> Dict[str, str]:
        index: Dict[str, str] = {}
        for dirpath, dirnames, filenames in os.walk(self.root):
            dirnames[:] = sorted(d for d in dirnames if not is_ignored_dir(d))
            rel_dir = os.path.relpath(dirpath, self.root)
            for filename in sorted(filenames):
                if not filename.endswith(".java"):
                    continue
                rel = filename if rel_dir == "." else f"{rel_dir}/{filename}"
                index.setdefault(filename[: -len(".java")], normalize_path(rel))
        return index


Resolver = Callable[[ImportRef, str, RepoIndex], List[str]]


@dataclass(frozen=True)
class LanguageSpec:
    name: str
    extensions: Tuple[str, ...]
    find_imports: Callable[[str], List[ImportRef]]
    find_exports: Callable[[str], List[str]]
    resolve: Resolver
    find_inheritance: Optional[Callable[[str, str, RepoIndex], List[DependencyEdge]]] = None


def _ordered_unique(found: Sequence[Tuple[int, str]]) -> List[str]:
    """Deduplicate symbols, keeping the order they appear in the source."""
    seen = set()
    ordered: List[str] = []
    for _, name in sorted(found, key=lambda item: item[0]):
        if name and name not in seen:
            seen.add(name)
            ordered.append(name)
    return ordered


# ------------------------------------------------------------------
# Java
# ------------------------------------------------------------------

JAVA_SOURCE_ROOTS = ("", "src/main/java", "src/test/java", "src")

_JAVA_IMPORT = re.compile(r"^\s*import\s+(static\s+)?([\w.]+?)(\.\*)?\s*;", re.MULTILINE)
_JAVA_EXPORT = re.compile(
    r"\bpublic\s+(?:(?:abstract|final|static|sealed|non-sealed|strictfp)\s+)*(?:class|interface|enum)\s+(\w+)"
)
_JAVA_HEADER = re.compile(r"\b(?:class|interface|enum)\s+\w+([^{;]*)\{")
_JAVA_EXTENDS = re.compile(r"\bextends\s+(.+?)(?=\bimplements\b|$)", re.DOTALL)
_JAVA_IMPLEMENTS = re.compile(r"\bimplements\s+(.+)$", re.DOTALL)
_GENERIC_ARGS = re.compile(r"<[^<>]*>")


def _java_imports(text: str) -> List[ImportRef]:
    refs = []
    for match in _JAVA_IMPORT.finditer(text):
        if match.group(3):
            # Package wildcard, no single file to point at.
            refs.append(ImportRef(match.group(2) + ".*"))
            continue
        names = ("static",) if match.group(1) else ()
        refs.append(ImportRef(match.group(2), names))
    return refs


def _java_exports(text: str) -> List[str]:
    return _ordered_unique([(m.start(), m.group(1)) for m in _JAVA_EXPORT.finditer(text)])


def _java_candidates(qualified: str) -> List[str]:
    rel = qualified.replace(".", "/") + ".java"
    return [posixpath.join(root, rel) if root else rel for root in JAVA_SOURCE_ROOTS]


def _resolve_java(ref: ImportRef, source: str, repo: RepoIndex) -> List[str]:
    if ref.specifier.endswith(".*"):
        return []
    target = repo.first_existing(_java_candidates(ref.specifier))
    if target is None and "static" in ref.names and "." in ref.specifier:
        # import static a.b.Type.member -> a/b/Type.java
        target = repo.first_existing(_java_candidates(ref.specifier.rsplit(".", 1)[0]))
    return [target] if target else []


def _strip_generics(text: str) -> str:
    previous = None
    while previous != text:
        previous = text
        text = _GENERIC_ARGS.sub("", text)
    return text


def _type_names(clause: str) -> List[str]:
    names = []
    for part in clause.split(","):
        part = part.strip()
        if not part:
            continue
        names.append(part.split(".")[-1].strip())
    return names


def _java_inheritance(text: str, source: str, repo: RepoIndex) -> List[DependencyEdge]:
    edges = []
    for header in _JAVA_HEADER.finditer(text):
        clause = _strip_generics(header.group(1))
        for kind, pattern in (("extends", _JAVA_EXTENDS), ("implements", _JAVA_IMPLEMENTS)):
            match = pattern.search(clause)
            if not match:
                continue
            for name in _type_names(match.group(1)):
                target = repo.find_java_class(name)
                if target:
                    edges.append(DependencyEdge(source, target, kind=kind))
    return edges


# ------------------------------------------------------------------
# Python
# ------------------------------------------------------------------

_PY_FROM_PAREN = re.compile(r"^[ \t]*from[ \t]+(\.*)([\w.]*)[ \t]+import[ \t]*\(([^)]*)\)", re.MULTILINE)
_PY_FROM = re.compile(r"^[ \t]*from[ \t]+(\.*)([\w.]*)[ \t]+import[ \t]+([^(\n][^\n]*)$", re.MULTILINE)
_PY_IMPORT = re.compile(r"^[ \t]*import[ \t]+([\w., \t]+?)[ \t]*(?:#[^\n]*)?$", re.MULTILINE)
_PY_ALL = re.compile(r"^__all__\s*(?::[^=]+)?=\s*[\[(]([^\])]*)[\])]", re.MULTILINE)
_PY_TOP_LEVEL = re.compile(r"^(?:async[ \t]+def|def|class)[ \t]+(\w+)", re.MULTILINE)
_QUOTED = re.compile(r"""['"]([^'"]+)['"]""")


def _imported_names(clause: str) -> Tuple[str, ...]:
    clause = clause.split("#", 1)[0]
    names = []
    for part in clause.replace("\\", " ").split(","):
        name = part.strip().split()[0] if part.strip() else ""
        if name and name != "*":
            names.append(name)
    return tuple(names)


def _python_imports(text: str) -> List[ImportRef]:
    found: List[Tuple[int, ImportRef]] = []
    for pattern in (_PY_FROM_PAREN, _PY_FROM):
        for match in pattern.finditer(text):
            specifier = match.group(1) + match.group(2)
            found.append((match.start(), ImportRef(specifier, _imported_names(match.group(3)))))
    for match in _PY_IMPORT.finditer(text):
        for part in match.group(1).split(","):
            module = part.strip().split()[0] if part.strip() else ""
            if module:
                found.append((match.start(), ImportRef(module)))
    return [ref for _, ref in sorted(found, key=lambda item: item[0])]


def _python_exports(text: str) -> List[str]:
    declared = _PY_ALL.search(text)
    if declared:
        return _ordered_unique([(m.start(), m.group(1)) for m in _QUOTED.finditer(declared.group(1))])
    return _ordered_unique([
        (m.start(), m.group(1)) for m in _PY_TOP_LEVEL.finditer(text) if not m.group(1).startswith("_")
    ])


def _python_module_candidates(module_path: str) -> List[str]:
    return [module_path + ".py", posixpath.join(module_path, "__init__.py")]


def _resolve_python(ref: ImportRef, source: str, repo: RepoIndex) -> List[str]:
    dots = len(ref.specifier) - len(ref.specifier.lstrip("."))
    module = ref.specifier[dots:]

    if dots:
        package = source.split("/")[:-1]
        levels_up = dots - 1
        if levels_up > len(package):
            return []
        package = package[: len(package) - levels_up]
    else:
        package = []

    module_parts = package + (module.split(".") if module else [])
    targets: List[str] = []
    if module:
        target = repo.first_existing(_python_module_candidates("/".join(module_parts)))
        if target:
            targets.append(target)
    elif module_parts:
        target = repo.first_existing([posixpath.join(*module_parts, "__init__.py")])
        if target:
            targets.append(target)

    # from pkg import name -> pkg/name.py may be a submodule
    for name in ref.names:
        submodule = "/".join(module_parts + [name])
        target = repo.first_existing(_python_module_candidates(submodule))
        if target and target not in targets:
            targets.append(target)
    return targets


# ------------------------------------------------------------------
# JavaScript / TypeScript
# ------------------------------------------------------------------

JS_RESOLVE_EXTENSIONS = (".js", ".jsx", ".ts", ".tsx", ".json", ".css")
JS_INDEX_EXTENSIONS = (".js", ".jsx", ".ts", ".tsx", ".css")
_JS_KNOWN_EXTENSIONS = frozenset(JS_RESOLVE_EXTENSIONS + (".mjs", ".cjs"))

_JS_IMPORT_PATTERNS = (
    re.compile(r"""\bimport\s+(?:type\s+)?[\w*{}\s,$]+?\s+from\s*['"]([^'"]+)['"]"""),
    re.compile(r"""\bexport\s+(?:type\s+)?(?:\*(?:\s+as\s+\w+)?|\{[^}]*\})\s*from\s*['"]([^'"]+)['"]"""),
    re.compile(r"""\bimport\s*\(\s*['"]([^'"]+)['"]\s*\)"""),
    re.compile(r"""\brequire\s*\(\s*['"]([^'"]+)['"]\s*\)"""),
    re.compile(r"""\bimport\s+['"]([^'"]+)['"]"""),
)

_JS_DEFAULT = re.compile(r"\bexport\s+default\s+(?:(?:async\s+)?function\*?|(?:abstract\s+)?class)?\s*([A-Za-z_$][\w$]*)?")
_JS_NAMED = re.compile(
    r"\bexport\s+(?:declare\s+)?(?:async\s+)?"
    r"(?:function\*?|(?:abstract\s+)?class|const(?:\s+enum)?|let|var|interface|type|enum)\s+([A-Za-z_$][\w$]*)"
)
_JS_EXPORT_LIST = re.compile(r"\bexport\s+(?:type\s+)?\{([^}]*)\}")
_JS_EXPORTS_PROP = re.compile(r"\b(?:module\.)?exports\.([A-Za-z_$][\w$]*)\s*=")
_JS_MODULE_OBJECT = re.compile(r"\bmodule\.exports\s*=\s*\{([^}]*)\}")
_JS_MODULE_NAME = re.compile(
    r"\bmodule\.exports\s*=\s*(?:(?:async\s+)?function\*?\s+|class\s+)?(?!function\b|class\b|require\b)([A-Za-z_$][\w$]*)"
)
_JS_DEFAULT_KEYWORDS = frozenset({"function", "class", "async", "extends"})


def _js_imports(text: str) -> List[ImportRef]:
    found = []
    seen_positions = set()
    for pattern in _JS_IMPORT_PATTERNS:
        for match in pattern.finditer(text):
            # Patterns may overlap on the same specifier.
            if match.start(1) in seen_positions:
                continue
            seen_positions.add(match.start(1))
            found.append((match.start(), ImportRef(match.group(1))))
    return [ref for _, ref in sorted(found, key=lambda item: item[0])]


def _js_exports(text: str) -> List[str]:
    found: List[Tuple[int, str]] = []
    for match in _JS_DEFAULT.finditer(text):
        name = match.group(1)
        if not name or name in _JS_DEFAULT_KEYWORDS:
            name = "default"
        found.append((match.start(), name))
    for match in _JS_NAMED.finditer(text):
        found.append((match.start(), match.group(1)))
    for match in _JS_EXPORT_LIST.finditer(text):
        for item in match.group(1).split(","):
            words = item.split()
            if not words:
                continue
            # export { a as b } exports b
            found.append((match.start(), words[-1] if "as" in words else words[0]))
    for match in _JS_EXPORTS_PROP.finditer(text):
        found.append((match.start(), match.group(1)))
    for match in _JS_MODULE_OBJECT.finditer(text):
        for item in match.group(1).split(","):
            key = item.split(":", 1)[0].split("(", 1)[0].strip()
            if key and not key.startswith("..."):
                found.append((match.start(), key.strip("'\"")))
    for match in _JS_MODULE_NAME.finditer(text):
        found.append((match.start(), match.group(1)))
    return _ordered_unique(found)


def _resolve_js(ref: ImportRef, source: str, repo: RepoIndex) -> List[str]:
    specifier = ref.specifier.split("?", 1)[0]
    if specifier.startswith("/"):
        base = specifier.lstrip("/")
    elif specifier.startswith("."):
        base = posixpath.join(posixpath.dirname(source), specifier)
    else:
        return []
    base = posixpath.normpath(base) if base else "."
    if base == ".." or base.startswith("../"):
        return []

    candidates = []
    if posixpath.splitext(base)[1].lower() in _JS_KNOWN_EXTENSIONS:
        candidates.append(base)
    if base != ".":
        candidates.extend(base + ext for ext in JS_RESOLVE_EXTENSIONS)
    candidates.extend(posixpath.join(base, "index" + ext) for ext in JS_INDEX_EXTENSIONS)
    target = repo.first_existing(candidates)
    return [target] if target else []


def _is_relative_js(ref: ImportRef) -> bool:
    return ref.specifier.startswith((".", "/"))


# ------------------------------------------------------------------
# Language table
# ------------------------------------------------------------------

JAVA = LanguageSpec("java", (".java",), _java_imports, _java_exports, _resolve_java, _java_inheritance)
PYTHON = LanguageSpec("python", (".py",), _python_imports, _python_exports, _resolve_python)
JAVASCRIPT = LanguageSpec(
    "javascript", (".js", ".jsx", ".ts", ".tsx", ".mjs", ".cjs"), _js_imports, _js_exports, _resolve_js
)

LANGUAGE_SPECS: Dict[str, LanguageSpec] = {spec.name: spec for spec in (JAVA, PYTHON, JAVASCRIPT)}
_SPEC_BY_EXTENSION = {ext: spec for spec in LANGUAGE_SPECS.values() for ext in spec.extensions}


def spec_for(path: str) -> Optional[LanguageSpec]:
    return _SPEC_BY_EXTENSION.get(posixpath.splitext(path)[1].lower())


def extract(repo_root, files: Iterable[str]) -> ExtractionResult:
    """Extract the dependency graph for ``files`` under ``repo_root``.

    Args:
        repo_root: Repository root on disk.
        files: Repo-relative file paths, usually ``RepositoryTree.file_paths()``.

    Returns:
        :class:`ExtractionResult` with deduplicated edges (no self-edges),
        exported symbols per file, and a count of references that did not
        resolve to a file.
    """
    repo = RepoIndex(Path(repo_root))
    result = ExtractionResult()
    seen_edges: Dict[DependencyEdge, DependencyEdge] = {}

    for raw_path in files:
        path = normalize_path(raw_path)
        result.languages[path] = detect_language(path)
        spec = spec_for(path)
        if spec is None:
            continue
        try:
            text = (repo.root / path).read_text(encoding="utf-8", errors="replace")
        except OSError as exc:
            warning = ExtractionWarning(f"Could not read {path}: {exc}")
            logger.warning("%s", warning)
            result.warnings.append(warning)
            continue

        result.exports[path] = spec.find_exports(text)

        file_edges: List[DependencyEdge] = []
        for ref in spec.find_imports(text):
            targets = spec.resolve(ref, path, repo)
            if not targets:
                if spec is not JAVASCRIPT or _is_relative_js(ref):
                    result.unresolved += 1
                continue
            file_edges.extend(DependencyEdge(path, target) for target in targets)
        if spec.find_inheritance is not None:
            file_edges.extend(spec.find_inheritance(text, path, repo))

        for edge in file_edges:
            if edge.target == edge.source or edge in seen_edges:
                continue
            seen_edges[edge] = edge
            result.edges.append(edge)

    logger.info(
        "Extracted %d dependency edges (%d unresolved imports)", len(result.edges), result.unresolved
    )
    return result
