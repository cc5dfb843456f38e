"""
Lockstep PR - CI helpers for pull requests in repositories with submodules.

Squash, rebase and cherry-pick pull requests through the GitHub API, run the
same squash/rebase/merge locally when submodule pointers conflict, and map
changed submodule pointers back to the branches and PRs they came from.
"""

__version__ = "0.1.0"

from .models import (
    ApprovalSummary,
    CommitInfo,
    ConflictReport,
    OperationResult,
    PipelineResult,
    PullRequestInfo,
    ResultStatus,
    SubmoduleInfo,
    SubmoduleReport,
)
from .github_client import GitHubClient
from .git_manager import GitManager
from .commit_rewriter import squash_pr, rebase_pr, rebase_single_commit_pr, cherry_pick_pr
from .local_pipeline import LocalRebasePipeline
from .submodule_mapper import SubmoduleResolver, parse_gitmodules, derive_repo_name_from_url
from .inspector import get_approval_counts, detect_conflicts

__all__ = [
    "ApprovalSummary",
    "CommitInfo",
    "ConflictReport",
    "OperationResult",
    "PipelineResult",
    "PullRequestInfo",
    "ResultStatus",
    "SubmoduleInfo",
    "SubmoduleReport",
    "GitHubClient",
    "GitManager",
    "squash_pr",
    "rebase_pr",
    "rebase_single_commit_pr",
    "cherry_pick_pr",
    "LocalRebasePipeline",
    "SubmoduleResolver",
    "parse_gitmodules",
    "derive_repo_name_from_url",
    "get_approval_counts",
    "detect_conflicts",
]
