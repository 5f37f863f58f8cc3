"""Read-only dependency graph queries used to build evaluation prompts."""

from __future__ import annotations

from collections import OrderedDict
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from .dependency_extractor import ExtractionResult, detect_language
from .models import DependencyEdge, normalize_path


class FileGraphContext:
    """Per-file view of the dependency graph.

    * ``taking(p)`` - files ``p`` imports or inherits from
    * ``dependents(p)`` - files that take ``p``
    * ``calling(p)`` - symbols ``p`` exports

    The reverse index is computed once here; afterwards the object is
    read-only and safe to share between worker threads.
    """

    def __init__(
        self,
        edges: Iterable[DependencyEdge],
        exports: Optional[Mapping[str, Iterable[str]]] = None,
        languages: Optional[Mapping[str, Optional[str]]] = None,
    ):
        taking: Dict[str, "OrderedDict[str, None]"] = {}
        dependents: Dict[str, "OrderedDict[str, None]"] = {}
        for edge in edges:
            source = normalize_path(edge.source)
            target = normalize_path(edge.target)
            taking.setdefault(source, OrderedDict())[target] = None
            dependents.setdefault(target, OrderedDict())[source] = None

        self._taking: Dict[str, Tuple[str, ...]] = {k: tuple(v) for k, v in taking.items()}
        self._dependents: Dict[str, Tuple[str, ...]] = {k: tuple(v) for k, v in dependents.items()}
        self._calling: Dict[str, Tuple[str, ...]] = {
            normalize_path(path): tuple(symbols) for path, symbols in (exports or {}).items()
        }
        self._languages: Dict[str, Optional[str]] = {
            normalize_path(path): language for path, language in (languages or {}).items()
        }

    @classmethod
    def build(cls, result: ExtractionResult) -> "FileGraphContext":
        return cls(result.edges, result.exports, result.languages)

    def taking(self, path: str) -> Tuple[str, ...]:
        return self._taking.get(normalize_path(path), ())

    def dependents(self, path: str) -> Tuple[str, ...]:
        return self._dependents.get(normalize_path(path), ())

    def calling(self, path: str) -> Tuple[str, ...]:
        return self._calling.get(normalize_path(path), ())

    def language(self, path: str) -> Optional[str]:
        key = normalize_path(path)
        if key in self._languages:
            return self._languages[key]
        return detect_language(key) if key else None

    def paths(self) -> List[str]:
        """Every path the graph knows about, sorted."""
        known = set(self._languages) | set(self._taking) | set(self._dependents) | set(self._calling)
        return sorted(known)

    def related_files(self, path: str) -> List[str]:
        """Files directly connected to ``path`` in either direction."""
        related = OrderedDict((p, None) for p in self.taking(path))
        related.update((p, None) for p in self.dependents(path))
        related.pop(normalize_path(path), None)
        return list(related)

    def file_context(self, path: str) -> Dict[str, Any]:
        key = normalize_path(path)
        folder = key.rsplit("/", 1)[0] if "/" in key else ""
        same_folder = [
            p for p in self.paths()
            if p != key and (p.rsplit("/", 1)[0] if "/" in p else "") == folder
        ]
        return {
            "taking": list(self.taking(key)),
            "dependents": list(self.dependents(key)),
            "calling": list(self.calling(key)),
            "language": self.language(key),
            "filesInSameFolder": same_folder,
        }

    def dependent_counts(self) -> Dict[str, int]:
        return {path: len(sources) for path, sources in self._dependents.items()}
