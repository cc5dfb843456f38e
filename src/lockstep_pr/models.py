"""
Data models for the pull-request automation helpers.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


class ResultStatus(str, Enum):
    """Outcome recorded on every commit-rewriting result."""

    SUCCESS = "success"
    SKIPPED = "skipped"
    SKIPPED_NO_CHANGES = "skipped-no-changes"
    FAILED = "failed"


@dataclass
class GitIdentity:
    """Author or committer identity attached to a commit."""

    name: str
    email: str
    date: Optional[str] = None

    @classmethod
    def from_api(cls, data: Optional[Dict[str, Any]]) -> Optional[GitIdentity]:
        if not data:
            return None
        return cls(name=data.get("name", ""), email=data.get("email", ""), date=data.get("date"))

    def as_payload(self) -> Dict[str, str]:
        payload = {"name": self.name, "email": self.email}
        if self.date:
            payload["date"] = self.date
        return payload


@dataclass
class CommitInfo:
    """Information about a Git commit."""

    sha: str
    message: str
    tree_sha: str
    author: Optional[GitIdentity] = None
    committer: Optional[GitIdentity] = None
    parents: List[str] = field(default_factory=list)

    @property
    def is_merge(self) -> bool:
        return len(self.parents) > 1

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> CommitInfo:
        """Build from either a git-data commit or a pull-request commit listing.

        The listing nests message/tree/author under ``commit``; the git-data
        endpoint has them at the top level.
        """
        body = data.get("commit", data)
        return cls(
            sha=data["sha"],
            message=body.get("message", ""),
            tree_sha=(body.get("tree") or {}).get("sha", ""),
            author=GitIdentity.from_api(body.get("author")),
            committer=GitIdentity.from_api(body.get("committer")),
            parents=[p["sha"] for p in data.get("parents", [])],
        )


@dataclass
class PullRequestInfo:
    """Read-only snapshot of a pull request."""

    number: int
    head_ref: str
    head_sha: str
    base_ref: str
    title: str = ""
    body: str = ""
    mergeable: Optional[bool] = None
    merged_at: Optional[str] = None
    state: str = "open"

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> PullRequestInfo:
        return cls(
            number=data["number"],
            head_ref=data["head"]["ref"],
            head_sha=data["head"]["sha"],
            base_ref=data["base"]["ref"],
            title=data.get("title") or "",
            body=data.get("body") or "",
            mergeable=data.get("mergeable"),
            merged_at=data.get("merged_at"),
            state=data.get("state", "open"),
        )


@dataclass
class TreeEntry:
    """One path in a tree being built on top of a base tree.

    A ``sha`` of None deletes the path from the base tree.
    """

    path: str
    sha: Optional[str]
    mode: str = "100644"
    type: str = "blob"

    def as_payload(self) -> Dict[str, Any]:
        return {"path": self.path, "sha": self.sha, "mode": self.mode, "type": self.type}


@dataclass
class ComparisonResult:
    """Result of comparing two refs on the hosting side."""

    status: str
    merge_base_sha: str
    ahead_by: int = 0
    behind_by: int = 0
    commits: List[str] = field(default_factory=list)
    files: List[str] = field(default_factory=list)

    @property
    def is_identical(self) -> bool:
        return self.status == "identical"

    @property
    def is_diverged(self) -> bool:
        return self.status == "diverged"

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> ComparisonResult:
        return cls(
            status=data["status"],
            merge_base_sha=(data.get("merge_base_commit") or {}).get("sha", ""),
            ahead_by=data.get("ahead_by", 0),
            behind_by=data.get("behind_by", 0),
            commits=[c["sha"] for c in data.get("commits", [])],
            files=[f["filename"] for f in data.get("files", [])],
        )


# Sentinels for SubmoduleInfo.pr_number
ON_BASE_BRANCH = 0
NO_PULL_REQUEST = -1


@dataclass
class SubmoduleInfo:
    """A submodule declared in the manifest, enriched step by step during resolution."""

    name: str
    path: str
    url: str
    branch: Optional[str] = None
    owner: Optional[str] = None
    repo_name: Optional[str] = None
    default_branch: Optional[str] = None
    base_branch: Optional[str] = None
    sha: Optional[str] = None
    pr_branch: Optional[str] = None
    pr_number: Optional[int] = None

    def as_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "path": self.path,
            "url": self.url,
            "branch": self.branch,
            "owner": self.owner,
            "repoName": self.repo_name,
            "defaultBranch": self.default_branch,
            "baseBranch": self.base_branch,
            "sha": self.sha,
            "prBranch": self.pr_branch,
            "prNumber": self.pr_number,
        }


@dataclass
class OperationResult:
    """Structured outcome of a commit-rewriting operation.

    ``operation`` names the key used in the serialized form, e.g. ``squash``
    serializes as ``squashNeeded``.
    """

    operation: str
    needed: bool
    result: ResultStatus
    sha: Optional[str] = None
    error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.result == ResultStatus.SUCCESS

    def as_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {f"{self.operation}Needed": self.needed, "result": self.result.value}
        if self.sha is not None:
            data["sha"] = self.sha
        if self.error is not None:
            data["error"] = self.error
        return data


@dataclass
class ApprovalSummary:
    approval_count: int = 0
    change_request_count: int = 0

    def as_dict(self) -> Dict[str, int]:
        return {"approvalCount": self.approval_count, "changeRequestCount": self.change_request_count}


@dataclass
class ConflictReport:
    """Candidate conflicting files for a pull request.

    When ``approximate`` is set the file list comes from intersecting the
    files changed on each side since the merge base, not from a content merge.
    """

    mergeable: Optional[bool]
    files_with_conflicts: List[str] = field(default_factory=list)
    submodule_conflicts: List[str] = field(default_factory=list)
    non_submodule_conflicts: List[str] = field(default_factory=list)
    approximate: bool = False

    @property
    def is_fatal(self) -> bool:
        return bool(self.non_submodule_conflicts)

    def as_dict(self) -> Dict[str, Any]:
        return {
            "files_with_conflicts": list(self.files_with_conflicts),
            "submodule_conflicts": list(self.submodule_conflicts),
            "non_submodule_conflicts": list(self.non_submodule_conflicts),
            "mergeable": self.mergeable,
            "approximate": self.approximate,
        }


@dataclass
class SubmoduleReport:
    """Outcome of submodule enrichment for one pull request."""

    changed_submodules: List[SubmoduleInfo] = field(default_factory=list)
    enriched_submodules: List[SubmoduleInfo] = field(default_factory=list)
    result: ResultStatus = ResultStatus.SUCCESS
    error: Optional[str] = None

    def as_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "changed_submodules": [s.as_dict() for s in self.changed_submodules],
            "enriched_submodules": [s.as_dict() for s in self.enriched_submodules],
            "result": self.result.value,
        }
        if self.error is not None:
            data["error"] = self.error
        return data


class PipelineState(str, Enum):
    """States of the local squash/rebase/merge pipeline."""

    PENDING = "pending"
    REBASING = "rebasing"
    CONFLICTS_DETECTED = "conflicts_detected"
    AUTO_RESOLVED = "auto_resolved"
    CONTINUE_REBASE = "continue_rebase"
    FATAL = "fatal"
    REBASED = "rebased"
    PUSHED = "pushed"


@dataclass
class PipelineResult:
    """Summary of a local pipeline run."""

    pr_number: int
    state: PipelineState = PipelineState.PENDING
    squashed: bool = False
    rebased: bool = False
    merged: bool = False
    sha: Optional[str] = None
    resolved_submodules: List[str] = field(default_factory=list)

    def as_dict(self) -> Dict[str, Any]:
        return {
            "prNumber": self.pr_number,
            "state": self.state.value,
            "squashed": self.squashed,
            "rebased": self.rebased,
            "merged": self.merged,
            "sha": self.sha,
            "resolvedSubmodules": list(self.resolved_submodules),
        }


class LockstepPRError(Exception):
    """Base exception for pull-request automation."""

    pass


class GitHubAPIError(LockstepPRError):
    """Exception raised when the hosting API rejects or fails a request."""

    def __init__(self, message: str, status: Optional[int] = None, url: Optional[str] = None) -> None:
        self.status = status
        self.url = url
        super().__init__(message)

    @property
    def is_not_found(self) -> bool:
        return self.status == 404


class GitRepositoryError(LockstepPRError):
    """Exception raised for local Git repository errors."""

    pass


class SubmoduleError(LockstepPRError):
    """Exception raised for submodule related errors."""

    pass


class SubmoduleResolutionError(SubmoduleError):
    """A submodule SHA could not be mapped to exactly one branch and PR."""

    pass


class ConflictResolutionError(LockstepPRError):
    """Exception raised during conflict resolution."""

    pass


class UnresolvableConflictError(ConflictResolutionError):
    """Conflicts outside submodule paths; the CI run must stop."""

    def __init__(self, message: str, files: Optional[List[str]] = None) -> None:
        self.files = list(files or [])
        super().__init__(message)
