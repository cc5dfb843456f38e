"""
Read-only diagnostics for CI gating: review tallies and conflict probing.
"""

from __future__ import annotations

import logging
from typing import Dict, Iterable, Optional

from .conflict_resolver import partition_paths
from .github_client import GitHubClient
from .models import ApprovalSummary, ComparisonResult, ConflictReport, PullRequestInfo


logger = logging.getLogger(__name__)

# Review states that replace a reviewer's earlier verdict
_VERDICT_STATES = {"APPROVED", "CHANGES_REQUESTED", "DISMISSED"}

# The compare endpoint lists at most this many files
COMPARE_FILE_LIMIT = 300


def get_approval_counts(client: GitHubClient, owner: str, repo: str, pr_number: int) -> ApprovalSummary:
    """Count reviewers whose latest verdict is an approval or a change request.

    Comments and pending reviews do not replace a verdict; a dismissal clears it.
    """
    reviews = client.list_pull_reviews(owner, repo, pr_number)
    latest: Dict[str, str] = {}
    for review in sorted(reviews, key=lambda r: r.get("submitted_at") or ""):
        user = (review.get("user") or {}).get("login")
        state = review.get("state")
        if user and state in _VERDICT_STATES:
            latest[user] = state

    summary = ApprovalSummary(
        approval_count=sum(1 for s in latest.values() if s == "APPROVED"),
        change_request_count=sum(1 for s in latest.values() if s == "CHANGES_REQUESTED"),
    )
    logger.info(
        f"PR #{pr_number}: {summary.approval_count} approval(s), "
        f"{summary.change_request_count} change request(s)"
    )
    return summary


def detect_conflicts(
    client: GitHubClient,
    owner: str,
    repo: str,
    pr_number: int,
    submodule_paths: Optional[Iterable[str]] = None,
) -> ConflictReport:
    """Estimate which files conflict when the host reports the PR as unmergeable.

    The candidate set is the intersection of files changed on the base branch
    and on the PR branch since their merge base. This is a heuristic, so the
    report is flagged ``approximate``.
    """
    pr = PullRequestInfo.from_api(client.get_pull(owner, repo, pr_number))
    report = ConflictReport(mergeable=pr.mergeable)

    if pr.mergeable is not False:
        logger.info(f"PR #{pr_number} mergeable={pr.mergeable}; no conflicts to look for")
        return report

    comparison = ComparisonResult.from_api(client.compare(owner, repo, pr.base_ref, pr.head_ref))
    logger.info(f"PR #{pr_number} is not mergeable; divergence status: {comparison.status}")
    if not comparison.is_diverged:
        return report

    merge_base = comparison.merge_base_sha
    base_side = ComparisonResult.from_api(client.compare(owner, repo, merge_base, pr.base_ref))
    head_side = ComparisonResult.from_api(client.compare(owner, repo, merge_base, pr.head_ref))
    for ref, side in ((pr.base_ref, base_side), (pr.head_ref, head_side)):
        if len(side.files) >= COMPARE_FILE_LIMIT:
            logger.warning(
                f"{ref} changes {len(side.files)} files since {merge_base[:8]}, the compare listing limit; "
                "conflicts in files past the limit are not reported"
            )
    pr_side = set(head_side.files)

    report.approximate = True
    report.files_with_conflicts = [f for f in base_side.files if f in pr_side]
    report.submodule_conflicts, report.non_submodule_conflicts = partition_paths(
        report.files_with_conflicts, submodule_paths or []
    )

    if report.non_submodule_conflicts:
        logger.error(f"Conflicts outside submodules: {', '.join(report.non_submodule_conflicts)}")
    elif report.submodule_conflicts:
        logger.warning(f"Submodule pointer conflicts: {', '.join(report.submodule_conflicts)}")
    return report
