"""Concurrent per-file evaluation under a shared rate budget."""

from __future__ import annotations

import json
import logging
import re
import threading
from concurrent.futures import Future, ThreadPoolExecutor, wait
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Protocol

from .config_manager import ReviewSettings
from .errors import EvaluationCancelled
from .graph_context import FileGraphContext
from .models import EvaluationOutcome, FileTreeNode
from .prompt_builder import SYSTEM_PROMPT, build_evaluation_prompt, truncate
from .rate_limiter import TokenBucket, estimate_tokens
from .response_parser import outcome_from_response

logger = logging.getLogger(__name__)

LOCK_FILES = frozenset({
    "package-lock.json", "yarn.lock", "pnpm-lock.yaml", "npm-shrinkwrap.json",
    "poetry.lock", "Pipfile.lock", "Cargo.lock", "composer.lock", "Gemfile.lock", "go.sum",
})
_GENERATED = re.compile(r"\.(?:min\.js|min\.css|bundle\.js|chunk\.js|map)$", re.IGNORECASE)


class CompletionClient(Protocol):
    def complete(self, system_prompt: str, user_prompt: str, max_tokens: int, temperature: float) -> str:
        ...


def is_eligible(node: FileTreeNode, max_bytes: int) -> bool:
    """Whether a file is worth sending to the model at all."""
    if node.is_dir:
        return False
    if node.name in LOCK_FILES or _GENERATED.search(node.name):
        return False
    return node.size <= max_bytes


def dump_name(path: str) -> str:
    return path.replace("/", "_") + ".json"


class EvaluationDispatcher:
    """Fans out one evaluation task per eligible file.

    Every task acquires its estimated token cost from the shared
    :class:`TokenBucket` before calling the model. A task never raises: any
    failure becomes a failure outcome for that file only.
    """

    def __init__(
        self,
        client: CompletionClient,
        limiter: TokenBucket,
        root: Path,
        settings: Optional[ReviewSettings] = None,
        dump_dir: Optional[Path] = None,
    ):
        self.client = client
        self.limiter = limiter
        self.root = Path(root)
        self.settings = settings or ReviewSettings()
        self.dump_dir = Path(dump_dir) if dump_dir else None

    def eligible(self, files: Iterable[FileTreeNode]) -> List[FileTreeNode]:
        return [node for node in files if is_eligible(node, self.settings.max_eval_bytes)]

    def dispatch(self, files: Iterable[FileTreeNode], context: FileGraphContext) -> Dict[str, Future]:
        """Submit every eligible file and wait up to the batch timeout.

        Returns:
            ``{path: Future[EvaluationOutcome]}`` in submission order. Futures
            still pending at the deadline are cancelled; running ones are told
            to stop at their next checkpoint.
        """
        nodes = self.eligible(files)
        cancel = threading.Event()
        futures: Dict[str, Future] = {}

        executor = ThreadPoolExecutor(max_workers=self.settings.workers, thread_name_prefix="repolens-eval")
        for node in nodes:
            futures[node.path] = executor.submit(self._run, node, context, cancel)
        logger.info("Submitted %d evaluations on %d workers", len(futures), self.settings.workers)

        _, not_done = wait(list(futures.values()), timeout=self.settings.batch_timeout)
        if not_done:
            logger.warning(
                "%d evaluations unfinished after %.0fs, cancelling", len(not_done), self.settings.batch_timeout
            )
            cancel.set()
            for future in not_done:
                future.cancel()
            self.limiter.close()
        executor.shutdown(wait=False, cancel_futures=bool(not_done))
        return futures

    def _run(self, node: FileTreeNode, context: FileGraphContext, cancel: threading.Event) -> EvaluationOutcome:
        try:
            return self.evaluate(node, context, cancel)
        except Exception as exc:  # contained to this file
            logger.warning("Evaluation of %s failed: %s", node.path, exc)
            return EvaluationOutcome.failure(node.path, str(exc) or type(exc).__name__)

    def evaluate(
        self,
        node: FileTreeNode,
        context: FileGraphContext,
        cancel: Optional[threading.Event] = None,
    ) -> EvaluationOutcome:
        cancel = cancel or threading.Event()
        path = node.path

        content = node.load_content(self.root)
        _checkpoint(cancel)
        prompt = build_evaluation_prompt(
            path,
            context.language(path),
            truncate(content, self.settings.max_chars),
            taking=context.taking(path),
            dependents=context.dependents(path),
            calling=context.calling(path),
        )

        self.limiter.acquire(estimate_tokens(len(prompt) + len(SYSTEM_PROMPT)))
        _checkpoint(cancel)
        raw = self.client.complete(
            SYSTEM_PROMPT,
            prompt,
            max_tokens=self.settings.max_tokens,
            temperature=self.settings.temperature,
        )
        _checkpoint(cancel)

        outcome = outcome_from_response(raw, path)
        if outcome.summary:
            node.summary = outcome.summary
        if self.dump_dir is not None and outcome.parsed is not None:
            self._dump(path, outcome.parsed)
        return outcome

    def _dump(self, path: str, parsed: dict) -> None:
        target = self.dump_dir / dump_name(path)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(json.dumps(parsed, indent=2, ensure_ascii=False), encoding="utf-8")
        except OSError as exc:
            logger.warning("Could not write evaluation dump %s: %s", target, exc)


def _checkpoint(cancel: threading.Event) -> None:
    if cancel.is_set():
        raise EvaluationCancelled("Batch deadline reached")
