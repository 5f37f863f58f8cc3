"""End-to-end review pipeline: walk, extract, dispatch, aggregate."""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Union

from .aggregator import aggregate
from .config_manager import ReviewSettings
from .dependency_extractor import ExtractionResult, extract
from .dispatcher import CompletionClient, EvaluationDispatcher
from .graph_context import FileGraphContext
from .models import FileTreeNode, RepositoryTree, ReviewReport
from .prompt_builder import build_assessment_prompt
from .rate_limiter import TokenBucket, estimate_tokens
from .records import RecordSink, write_records
from .summaries import SummaryCache, SummaryRollup, overall_assessment
from .tree_walker import walk

logger = logging.getLogger(__name__)

ENTRY_POINT_HINTS = ("main", "app", "index")
TOP_DEPENDED = 5


def prioritize(files: List[FileTreeNode], context: FileGraphContext) -> List[FileTreeNode]:
    """Order files so likely entry points are evaluated first.

    The five most depended-on files come first, then files whose name
    mentions main/app/index, then everything else in walk order.
    """
    counts = context.dependent_counts()
    ranked = sorted(
        (node for node in files if counts.get(node.path, 0) > 0),
        key=lambda node: -counts[node.path],
    )[:TOP_DEPENDED]
    chosen = {node.path for node in ranked}
    hinted = [
        node for node in files
        if node.path not in chosen and any(hint in node.name.lower() for hint in ENTRY_POINT_HINTS)
    ]
    chosen.update(node.path for node in hinted)
    return ranked + hinted + [node for node in files if node.path not in chosen]


@dataclass
class ReviewRun:
    tree: RepositoryTree
    extraction: ExtractionResult
    context: FileGraphContext
    report: ReviewReport
    records_written: int = 0


class RepositoryReviewer:
    """Runs the full review of one local repository checkout."""

    def __init__(
        self,
        client: CompletionClient,
        settings: Optional[ReviewSettings] = None,
        limiter: Optional[TokenBucket] = None,
        assess: bool = True,
        rollup: bool = False,
        record_sink: Optional[RecordSink] = None,
        dump_dir: Optional[Path] = None,
        summary_cache: Optional[SummaryCache] = None,
    ):
        self.client = client
        self.settings = settings or ReviewSettings()
        self.limiter = limiter
        self.assess = assess
        self.rollup = rollup
        self.record_sink = record_sink
        self.dump_dir = dump_dir
        self.summary_cache = summary_cache or SummaryCache()

    def review(self, root: Union[str, Path]) -> ReviewRun:
        """Review ``root``.

        Raises:
            InvalidPathError: ``root`` is not a usable local directory.
        """
        run_id = uuid.uuid4().hex
        tree = walk(root, self.settings.max_file_size)
        extraction = extract(tree.root_path, tree.file_paths())
        context = FileGraphContext.build(extraction)

        limiter = self.limiter or TokenBucket(self.settings.tokens_per_minute)
        dispatcher = EvaluationDispatcher(self.client, limiter, tree.root_path, self.settings, self.dump_dir)
        futures = dispatcher.dispatch(prioritize(tree.files(), context), context)
        report = aggregate(futures, self.settings.result_timeout)

        if self.assess and report.files:
            report.general_comments.extend(self._assess(report, limiter))
        if self.rollup and report.summaries:
            rollup = SummaryRollup(self.client, self.summary_cache, self.settings)
            report.folder_summaries, report.root_summary = rollup.rollup(run_id, report.summaries)

        written = 0
        if self.record_sink is not None:
            nodes = [node for node in (tree.find(path) for path in report.files) if node is not None]
            written = write_records(tree.root_path, nodes, context, self.record_sink)

        logger.info("Review of %s finished: %d files evaluated", tree.root_path, len(report.files))
        return ReviewRun(tree=tree, extraction=extraction, context=context, report=report, records_written=written)

    def _assess(self, report: ReviewReport, limiter: TokenBucket) -> List[str]:
        if limiter.closed:
            return ["Failed to generate overall assessment: batch deadline reached"]
        limiter.acquire(estimate_tokens(build_assessment_prompt(report.summaries, len(report.files))))
        return overall_assessment(self.client, report.summaries, len(report.files), self.settings)
