"""Collects per-file evaluation futures into one categorized report."""

from __future__ import annotations

import logging
import re
from concurrent.futures import CancelledError, Future
from concurrent.futures import TimeoutError as FutureTimeoutError
from typing import Dict, List, Mapping

from .models import (
    CATEGORIES,
    ERRORS,
    IMPROVEMENTS,
    THINGS_DONE_RIGHT,
    EvaluationOutcome,
    IssueItem,
    ReviewReport,
    Severity,
)

logger = logging.getLogger(__name__)

DEFAULT_RESULT_TIMEOUT = 30.0

_POSITIVE = re.compile(r"\b(good|right|well|best practice)\b", re.IGNORECASE)


def categorize_flat(issue: IssueItem) -> str:
    """Pick a category for an issue that arrived without one."""
    if issue.severity is Severity.ERROR:
        return ERRORS
    if _POSITIVE.search(issue.title):
        return THINGS_DONE_RIGHT
    return IMPROVEMENTS


def collect(path: str, future: Future, result_timeout: float = DEFAULT_RESULT_TIMEOUT) -> EvaluationOutcome:
    """Wait for one future; timeouts and cancellations become failure outcomes."""
    try:
        return future.result(timeout=result_timeout)
    except FutureTimeoutError:
        logger.warning("Evaluation of %s did not finish within %.0fs", path, result_timeout)
        return EvaluationOutcome.failure(path, f"Evaluation timed out after {result_timeout:.0f}s")
    except CancelledError:
        logger.warning("Evaluation of %s was cancelled", path)
        return EvaluationOutcome.failure(path, "Evaluation cancelled before completion")


def merge(report: ReviewReport, outcome: EvaluationOutcome) -> None:
    path = outcome.file_path
    if path not in report.files:
        report.files.append(path)
    for category in CATEGORIES:
        report.bucket(category).setdefault(path, [])

    for category, items in outcome.categories.items():
        if category in CATEGORIES:
            for item in items:
                report.add(category, item.file_path or path, [item])
    for item in outcome.issues:
        report.add(categorize_flat(item), item.file_path or path, [item])

    if outcome.summary:
        report.summaries[path] = outcome.summary
    report.general_comments.extend(outcome.general_comments)


def aggregate(
    futures: Mapping[str, Future],
    result_timeout: float = DEFAULT_RESULT_TIMEOUT,
) -> ReviewReport:
    """Build a :class:`ReviewReport` from ``{path: Future[EvaluationOutcome]}``.

    Iteration order of ``futures`` is kept in ``report.files``. Every path
    gets an entry in each category, empty when nothing was found.
    """
    report = ReviewReport()
    outcomes: List[EvaluationOutcome] = []
    for path, future in futures.items():
        outcome = collect(path, future, result_timeout)
        outcomes.append(outcome)
        merge(report, outcome)

    failed = sum(1 for outcome in outcomes if not outcome.ok)
    logger.info("Aggregated %d evaluations (%d failed)", len(outcomes), failed)
    return report


def aggregate_outcomes(outcomes: Mapping[str, EvaluationOutcome]) -> ReviewReport:
    """Same as :func:`aggregate` for outcomes that are already resolved."""
    report = ReviewReport()
    for outcome in outcomes.values():
        merge(report, outcome)
    return report


def issue_totals(report: ReviewReport) -> Dict[str, int]:
    return {
        category: sum(len(items) for items in report.bucket(category).values())
        for category in CATEGORIES
    }
