"""
Commit rewriting through the hosting API: squash, rebase and cherry-pick.

Nothing here uses a native merge or rebase. New commits are built from
existing trees and the PR branch ref is force-moved to the new tip, so the
original commit objects are never touched.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from .github_client import GitHubClient
from .models import (
    CommitInfo,
    ComparisonResult,
    GitHubAPIError,
    LockstepPRError,
    OperationResult,
    PullRequestInfo,
    ResultStatus,
    TreeEntry,
)


logger = logging.getLogger(__name__)

CHERRY_PICK_PREFIX = "lockstep-pr/cherry-pick"


def _branch_tip(client: GitHubClient, owner: str, repo: str, branch: str) -> str:
    return client.get_ref(owner, repo, f"heads/{branch}")["object"]["sha"]


def _identity(identity) -> Optional[Dict[str, str]]:
    return identity.as_payload() if identity else None


def _replay_commits(
    client: GitHubClient,
    owner: str,
    repo: str,
    commits: List[CommitInfo],
    parent_sha: str,
    on_commit: Optional[Callable[[str], None]] = None,
) -> Optional[str]:
    """Recreate each commit on top of ``parent_sha``, oldest first.

    Trees, messages and identities are reused as-is. Merge commits cannot be
    replayed with a single-parent commit and are skipped.

    Returns:
        SHA of the last new commit, or None if nothing was created
    """
    new_sha: Optional[str] = None
    for commit in commits:
        if commit.is_merge:
            logger.warning(f"Skipping merge commit {commit.sha[:8]}; it cannot be replayed")
            continue
        created = client.create_commit(
            owner,
            repo,
            message=commit.message,
            tree=commit.tree_sha,
            parents=[parent_sha],
            author=_identity(commit.author),
            committer=_identity(commit.committer),
        )
        new_sha = created["sha"]
        parent_sha = new_sha
        logger.info(f"Replayed {commit.sha[:8]} as {new_sha[:8]}")
        if on_commit:
            on_commit(new_sha)
    return new_sha


def squash_pr(client: GitHubClient, owner: str, repo: str, pr_number: int) -> OperationResult:
    """Squash every commit of a PR into one commit.

    The new commit's parent is the first PR commit's parent, its tree is the
    last PR commit's tree, and its author is the last commit's author. Errors
    are logged and re-raised: a failed squash must stop the pipeline.
    """
    try:
        pr = PullRequestInfo.from_api(client.get_pull(owner, repo, pr_number))
        commits = client.list_pull_commits(owner, repo, pr_number)

        if len(commits) <= 1:
            logger.info("PR has only one commit; skipping squash.")
            return OperationResult("squash", needed=False, result=ResultStatus.SKIPPED)

        logger.info(f"Found {len(commits)} commits in PR #{pr_number}")

        head_raw = client.get_commit(owner, repo, commits[-1]["sha"])
        head = CommitInfo.from_api(head_raw)
        first = CommitInfo.from_api(client.get_commit(owner, repo, commits[0]["sha"]))

        parent_sha = first.parents[0]
        logger.info(f"Using first PR commit's parent as squash parent: {parent_sha}")

        # Signatures are not carried over; they do not verify on every host.
        verification = head_raw.get("verification") or {}
        if verification.get("signature"):
            logger.debug(f"Dropping signature of {head.sha[:8]} on squash")

        if head.author:
            logger.info(f"Preserving original author metadata: {head.author.name} <{head.author.email}>")

        new_commit = client.create_commit(
            owner,
            repo,
            message=f"{pr.title}\n\n{pr.body}\n",
            tree=head.tree_sha,
            parents=[parent_sha],
            author=_identity(head.author),
        )
        client.update_ref(owner, repo, f"heads/{pr.head_ref}", new_commit["sha"], force=True)

        logger.info(f"Squash completed. New commit: {new_commit['sha']}")
        return OperationResult("squash", needed=True, result=ResultStatus.SUCCESS, sha=new_commit["sha"])
    except Exception as e:
        logger.error(f"Error squashing PR #{pr_number}: {e}")
        raise


def rebase_pr(client: GitHubClient, owner: str, repo: str, pr_number: int) -> OperationResult:
    """Replay all PR commits onto the current tip of the base branch."""
    try:
        pr = PullRequestInfo.from_api(client.get_pull(owner, repo, pr_number))
        logger.info(f"PR #{pr_number} branch: {pr.head_ref}")
        logger.info(f"Target branch: {pr.base_ref}")

        comparison = ComparisonResult.from_api(client.compare(owner, repo, pr.base_ref, pr.head_ref))
        logger.info(f"Rebase status check: {comparison.status}")
        if comparison.is_identical:
            logger.info("PR branch is identical to base; nothing to rebase.")
            return OperationResult("rebase", needed=False, result=ResultStatus.SKIPPED)

        commits = [CommitInfo.from_api(c) for c in client.list_pull_commits(owner, repo, pr_number)]
        if not commits:
            logger.info("PR has no commits; skipping rebase.")
            return OperationResult("rebase", needed=False, result=ResultStatus.SKIPPED)

        base_sha = _branch_tip(client, owner, repo, pr.base_ref)
        logger.info(f"Base branch {pr.base_ref} HEAD is at {base_sha}")

        new_sha = _replay_commits(client, owner, repo, commits, base_sha)
        if not new_sha:
            logger.warning("No commits were rebased.")
            return OperationResult("rebase", needed=False, result=ResultStatus.SKIPPED)

        logger.info(f"Updating PR branch {pr.head_ref} to point at new commit {new_sha}")
        client.update_ref(owner, repo, f"heads/{pr.head_ref}", new_sha, force=True)

        logger.info(f"Rebase completed. PR branch {pr.head_ref} is now based on {pr.base_ref}")
        return OperationResult("rebase", needed=True, result=ResultStatus.SUCCESS, sha=new_sha)
    except Exception as e:
        logger.error(f"Error rebasing PR #{pr_number}: {e}")
        return OperationResult("rebase", needed=True, result=ResultStatus.FAILED, error=str(e))


class _TreeIndex:
    """Path lookups over one tree, fetched through the git-data trees endpoint.

    The recursive listing is used when the host returns it whole. A truncated
    listing falls back to walking one directory level per request.
    """

    def __init__(self, client: GitHubClient, owner: str, repo: str, tree_sha: str) -> None:
        self.client = client
        self.owner = owner
        self.repo = repo
        self.tree_sha = tree_sha
        self._lock = threading.Lock()
        self._listings: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self._flat: Optional[Dict[str, Dict[str, Any]]] = None

        data = client.get_tree(owner, repo, tree_sha, recursive=True)
        if data.get("truncated"):
            logger.warning(f"Tree {tree_sha[:8]} listing is truncated; resolving paths directory by directory")
        else:
            self._flat = {e["path"]: e for e in data.get("tree") or []}

    def _listing(self, sha: str) -> Dict[str, Dict[str, Any]]:
        with self._lock:
            cached = self._listings.get(sha)
        if cached is not None:
            return cached
        data = self.client.get_tree(self.owner, self.repo, sha)
        listing = {e["path"]: e for e in data.get("tree") or []}
        with self._lock:
            self._listings[sha] = listing
        return listing

    def entry(self, path: str) -> Optional[Dict[str, Any]]:
        """Tree entry (path, mode, type, sha) for ``path``, or None if absent."""
        if self._flat is not None:
            return self._flat.get(path)

        parts = path.split("/")
        sha = self.tree_sha
        for depth, name in enumerate(parts):
            found = self._listing(sha).get(name)
            if found is None:
                return None
            if depth == len(parts) - 1:
                return dict(found, path=path)
            if found.get("type") != "tree":
                return None
            sha = found["sha"]
        return None


def _entries_for_file(changed: Dict[str, Any], pr_tree: _TreeIndex, base_tree: _TreeIndex) -> List[TreeEntry]:
    """Tree updates needed to carry one changed file over to the base tip.

    Entries reuse the PR side's object SHA, mode and type, so executables,
    symlinks, gitlinks and files of any size carry over unchanged. A path
    whose object SHA already matches the base produces no entry, even when
    only its mode differs.
    """
    path = changed["filename"]
    status = changed.get("status")
    entries: List[TreeEntry] = []

    if status == "renamed" and changed.get("previous_filename"):
        old_path = changed["previous_filename"]
        if base_tree.entry(old_path) is not None:
            entries.append(TreeEntry(path=old_path, sha=None))

    if status == "removed":
        if base_tree.entry(path) is not None:
            entries.append(TreeEntry(path=path, sha=None))
        return entries

    pr_entry = pr_tree.entry(path)
    if pr_entry is None:
        raise LockstepPRError(f"{path} is listed as changed but missing from tree {pr_tree.tree_sha[:8]}")
    if pr_entry.get("type") == "tree":
        raise LockstepPRError(f"Unexpected content type at {path}: not a file")

    base_entry = base_tree.entry(path)
    if base_entry is not None and base_entry.get("sha") == pr_entry["sha"]:
        logger.debug(f"{path} matches base content; leaving it out of the new tree")
        return entries

    entries.append(TreeEntry(path=path, sha=pr_entry["sha"], mode=pr_entry["mode"], type=pr_entry["type"]))
    return entries


def rebase_single_commit_pr(
    client: GitHubClient, owner: str, repo: str, pr_number: int, max_workers: int = 4
) -> OperationResult:
    """Rebase a one-commit PR by layering its changed files on the base tree.

    Only files whose content really differs from the base are written, so a
    commit that is a no-op relative to the base yields ``skipped-no-changes``.
    """
    try:
        logger.info(f"Rebasing PR #{pr_number} ...")
        pr = PullRequestInfo.from_api(client.get_pull(owner, repo, pr_number))

        commits = [CommitInfo.from_api(c) for c in client.list_pull_commits(owner, repo, pr_number)]
        if len(commits) != 1:
            raise LockstepPRError(f"PR must contain exactly one commit, found {len(commits)}")
        commit = commits[0]

        changed_files = client.get_repo_commit(owner, repo, commit.sha).get("files") or []
        if not changed_files:
            logger.info("No file changes in commit; nothing to rebase.")
            return OperationResult("rebase", needed=False, result=ResultStatus.SKIPPED)

        base_sha = _branch_tip(client, owner, repo, pr.base_ref)
        base_commit = CommitInfo.from_api(client.get_commit(owner, repo, base_sha))
        logger.info(f"Rebasing commit {commit.sha} onto {pr.base_ref} ({base_sha})")

        pr_tree = _TreeIndex(client, owner, repo, commit.tree_sha)
        base_tree = _TreeIndex(client, owner, repo, base_commit.tree_sha)
        with ThreadPoolExecutor(max_workers=max(1, max_workers)) as pool:
            per_file = list(pool.map(lambda changed: _entries_for_file(changed, pr_tree, base_tree), changed_files))
        updates = [entry for entries in per_file for entry in entries]

        if not updates:
            logger.info("All changed files already match the base branch; nothing to rebase.")
            return OperationResult("rebase", needed=False, result=ResultStatus.SKIPPED_NO_CHANGES)

        tree = client.create_tree(owner, repo, [e.as_payload() for e in updates], base_tree=base_commit.tree_sha)
        new_commit = client.create_commit(
            owner,
            repo,
            message=commit.message,
            tree=tree["sha"],
            parents=[base_sha],
            author=_identity(commit.author),
            committer=_identity(commit.committer),
        )
        logger.info(f"New rebased commit created: {new_commit['sha']}")

        client.update_ref(owner, repo, f"heads/{pr.head_ref}", new_commit["sha"], force=True)
        logger.info(f"PR branch {pr.head_ref} rebased onto {pr.base_ref}")
        return OperationResult("rebase", needed=True, result=ResultStatus.SUCCESS, sha=new_commit["sha"])
    except Exception as e:
        logger.error(f"Rebase failed: {e}")
        return OperationResult("rebase", needed=True, result=ResultStatus.FAILED, error=str(e))


def cherry_pick_pr(client: GitHubClient, owner: str, repo: str, pr_number: int) -> OperationResult:
    """Replay PR commits onto a disposable branch, then move the PR branch there.

    Individual commit boundaries are kept. The disposable branch is deleted
    whether or not the replay succeeds.
    """
    temp_ref: Optional[str] = None
    try:
        pr = PullRequestInfo.from_api(client.get_pull(owner, repo, pr_number))
        commits = [CommitInfo.from_api(c) for c in client.list_pull_commits(owner, repo, pr_number)]
        if not commits:
            logger.info("PR has no commits; skipping cherry-pick.")
            return OperationResult("cherryPick", needed=False, result=ResultStatus.SKIPPED)

        base_sha = _branch_tip(client, owner, repo, pr.base_ref)
        stamp = datetime.now(timezone.utc).strftime("%Y%m%d%H%M%S")
        temp_branch = f"{CHERRY_PICK_PREFIX}-{pr_number}-{stamp}"
        client.create_ref(owner, repo, f"heads/{temp_branch}", base_sha)
        temp_ref = f"heads/{temp_branch}"
        logger.info(f"Created temporary branch {temp_branch} at {base_sha}")

        new_sha = _replay_commits(
            client,
            owner,
            repo,
            commits,
            base_sha,
            on_commit=lambda sha: client.update_ref(owner, repo, temp_ref, sha),
        )
        if not new_sha:
            logger.warning("No commits were cherry-picked.")
            return OperationResult("cherryPick", needed=False, result=ResultStatus.SKIPPED)

        client.update_ref(owner, repo, f"heads/{pr.head_ref}", new_sha, force=True)
        logger.info(f"PR branch {pr.head_ref} now points at {new_sha}")
        return OperationResult("cherryPick", needed=True, result=ResultStatus.SUCCESS, sha=new_sha)
    except Exception as e:
        logger.error(f"Cherry-pick failed for PR #{pr_number}: {e}")
        return OperationResult("cherryPick", needed=True, result=ResultStatus.FAILED, error=str(e))
    finally:
        if temp_ref:
            try:
                client.delete_ref(owner, repo, temp_ref)
                logger.info(f"Deleted temporary branch {temp_ref}")
            except GitHubAPIError as e:
                logger.warning(f"Could not delete temporary branch {temp_ref}: {e}")
