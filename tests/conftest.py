"""
Shared fixtures: an in-memory stand-in for the GitHub API client.
"""

from __future__ import annotations

import base64
import itertools
from typing import Dict, List, Optional

import pytest

from lockstep_pr.models import GitHubAPIError


OWNER = "acme"
REPO = "app"


def encode(text: str) -> str:
    """Base64 the way the contents API returns it (wrapped lines)."""
    raw = base64.b64encode(text.encode("utf-8")).decode("ascii")
    return "\n".join(raw[i : i + 60] for i in range(0, len(raw), 60))


class FakeGitHub:
    """Implements the GitHubClient method surface over dictionaries.

    Reads come from the dictionaries below; writes are recorded so tests can
    assert on exactly what would have been sent.
    """

    def __init__(self) -> None:
        self.pulls: Dict[tuple, dict] = {}
        self.pull_commits: Dict[tuple, List[dict]] = {}
        self.pull_files: Dict[tuple, List[dict]] = {}
        self.reviews: Dict[tuple, List[dict]] = {}
        self.commits: Dict[tuple, dict] = {}
        self.repo_commits: Dict[tuple, dict] = {}
        self.refs: Dict[tuple, str] = {}
        self.contents: Dict[tuple, dict] = {}
        self.repos: Dict[tuple, dict] = {}
        self.branch_history: Dict[tuple, List[str]] = {}
        self.branches_where_head: Dict[tuple, List[str]] = {}
        self.pulls_for_commit: Dict[tuple, List[dict]] = {}
        self.comparisons: Dict[tuple, dict] = {}
        self.comments: Dict[tuple, dict] = {}
        self.trees: Dict[tuple, dict] = {}

        self.created_commits: List[dict] = []
        self.created_trees: List[dict] = []
        self.created_refs: List[tuple] = []
        self.ref_updates: List[tuple] = []
        self.deleted_refs: List[str] = []
        self.calls: List[str] = []

        self.next_commit_shas: List[str] = []
        self.failures: Dict[str, Exception] = {}
        self._ids = itertools.count(1)

    # --- test setup helpers ---
    def add_commit(
        self,
        sha: str,
        tree: Optional[str] = None,
        parents: Optional[List[str]] = None,
        message: Optional[str] = None,
        author: str = "Dev",
        owner: str = OWNER,
        repo: str = REPO,
    ) -> dict:
        """Register a git-data commit and return its PR-listing form."""
        identity = {"name": author, "email": f"{author.lower()}@example.com", "date": "2024-01-01T00:00:00Z"}
        data = {
            "sha": sha,
            "message": message or f"commit {sha}",
            "tree": {"sha": tree or f"tree-{sha}"},
            "parents": [{"sha": p} for p in (parents or [])],
            "author": identity,
            "committer": identity,
        }
        self.commits[(owner, repo, sha)] = data
        return {
            "sha": sha,
            "commit": {k: data[k] for k in ("message", "tree", "author", "committer")},
            "parents": data["parents"],
        }

    def add_pull(
        self,
        number: int,
        head_ref: str,
        base_ref: str = "main",
        head_sha: str = "head",
        commits: Optional[List[dict]] = None,
        title: str = "Title",
        body: Optional[str] = "Body",
        mergeable: Optional[bool] = True,
        owner: str = OWNER,
        repo: str = REPO,
    ) -> dict:
        pr = {
            "number": number,
            "state": "open",
            "title": title,
            "body": body,
            "mergeable": mergeable,
            "merged_at": None,
            "head": {"ref": head_ref, "sha": head_sha},
            "base": {"ref": base_ref, "sha": "base"},
        }
        self.pulls[(owner, repo, number)] = pr
        self.pull_commits[(owner, repo, number)] = list(commits or [])
        return pr

    def set_ref(self, branch: str, sha: str, owner: str = OWNER, repo: str = REPO) -> None:
        self.refs[(owner, repo, f"heads/{branch}")] = sha

    def set_file(self, path: str, ref: str, text: str, owner: str = OWNER, repo: str = REPO) -> None:
        self.contents[(owner, repo, path, ref)] = {"type": "file", "path": path, "encoding": "base64", "content": encode(text)}

    def set_gitlink(self, path: str, ref: str, sha: str, owner: str = OWNER, repo: str = REPO) -> None:
        self.contents[(owner, repo, path, ref)] = {"type": "submodule", "path": path, "sha": sha}

    def add_tree(
        self,
        sha: str,
        files: Dict[str, tuple],
        truncated: bool = False,
        owner: str = OWNER,
        repo: str = REPO,
    ) -> None:
        """Register a tree from ``{path: (object_sha, mode)}``.

        Every directory level is registered as its own tree too, so lookups
        work both from the recursive listing and by walking one level at a time.
        """
        recursive: List[dict] = []
        children: Dict[str, List[dict]] = {"": []}
        for path in sorted(files):
            object_sha, mode = files[path]
            parts = path.split("/")
            for depth in range(1, len(parts)):
                directory = "/".join(parts[:depth])
                if directory not in children:
                    children[directory] = []
                    parent = "/".join(parts[: depth - 1])
                    entry = {"path": parts[depth - 1], "mode": "040000", "type": "tree", "sha": f"{sha}:{directory}"}
                    children[parent].append(entry)
                    recursive.append(dict(entry, path=directory))
            kind = "commit" if mode == "160000" else "blob"
            children["/".join(parts[:-1])].append({"path": parts[-1], "mode": mode, "type": kind, "sha": object_sha})
            recursive.append({"path": path, "mode": mode, "type": kind, "sha": object_sha})

        self.trees[(owner, repo, sha)] = {"recursive": recursive, "top": children[""], "truncated": truncated}
        for directory, entries in children.items():
            if directory:
                self.trees[(owner, repo, f"{sha}:{directory}")] = {"recursive": [], "top": entries, "truncated": False}

    def set_compare(self, base: str, head: str, status: str, merge_base: str = "mb", files=(), owner=OWNER, repo=REPO):
        self.comparisons[(owner, repo, base, head)] = {
            "status": status,
            "merge_base_commit": {"sha": merge_base},
            "commits": [],
            "files": [{"filename": f} for f in files],
        }

    def _record(self, name: str) -> None:
        self.calls.append(name)
        if name in self.failures:
            raise self.failures[name]

    @staticmethod
    def _missing(what: str) -> GitHubAPIError:
        return GitHubAPIError(f"{what} not found", status=404, url=what)

    # --- GitHubClient surface ---
    def get_pull(self, owner, repo, number):
        self._record("get_pull")
        return self.pulls[(owner, repo, number)]

    def list_pull_commits(self, owner, repo, number):
        self._record("list_pull_commits")
        return self.pull_commits[(owner, repo, number)]

    def list_pull_files(self, owner, repo, number):
        self._record("list_pull_files")
        return self.pull_files.get((owner, repo, number), [])

    def list_pull_reviews(self, owner, repo, number):
        self._record("list_pull_reviews")
        return self.reviews.get((owner, repo, number), [])

    def list_pulls_for_commit(self, owner, repo, sha):
        self._record("list_pulls_for_commit")
        return self.pulls_for_commit.get((owner, repo, sha), [])

    def get_commit(self, owner, repo, sha):
        self._record("get_commit")
        return self.commits[(owner, repo, sha)]

    def get_repo_commit(self, owner, repo, ref):
        self._record("get_repo_commit")
        return self.repo_commits.get((owner, repo, ref), {"sha": ref, "files": []})

    def list_commits(self, owner, repo, branch, limit=100):
        self._record("list_commits")
        return [{"sha": s} for s in self.branch_history.get((owner, repo, branch), [])[:limit]]

    def create_commit(self, owner, repo, message, tree, parents, author=None, committer=None):
        self._record("create_commit")
        sha = self.next_commit_shas.pop(0) if self.next_commit_shas else f"new{next(self._ids)}"
        payload = {"sha": sha, "message": message, "tree": tree, "parents": list(parents), "author": author, "committer": committer}
        self.created_commits.append(payload)
        return {"sha": sha, "tree": {"sha": tree}, "parents": [{"sha": p} for p in parents]}

    def create_tree(self, owner, repo, tree, base_tree=None):
        self._record("create_tree")
        sha = f"tree{next(self._ids)}"
        self.created_trees.append({"sha": sha, "tree": tree, "base_tree": base_tree})
        return {"sha": sha}

    def get_tree(self, owner, repo, tree_sha, recursive=False):
        self._record("get_tree")
        try:
            listing = self.trees[(owner, repo, tree_sha)]
        except KeyError:
            raise self._missing(f"tree {tree_sha}")
        if recursive:
            return {"sha": tree_sha, "tree": listing["recursive"], "truncated": listing["truncated"]}
        return {"sha": tree_sha, "tree": listing["top"], "truncated": False}

    def get_content(self, owner, repo, path, ref):
        self._record("get_content")
        try:
            return self.contents[(owner, repo, path, ref)]
        except KeyError:
            raise self._missing(f"{path}@{ref}")

    def get_ref(self, owner, repo, ref):
        self._record("get_ref")
        return {"ref": f"refs/{ref}", "object": {"sha": self.refs[(owner, repo, ref)]}}

    def create_ref(self, owner, repo, ref, sha):
        self._record("create_ref")
        self.refs[(owner, repo, ref)] = sha
        self.created_refs.append((ref, sha))
        return {"ref": f"refs/{ref}", "object": {"sha": sha}}

    def update_ref(self, owner, repo, ref, sha, force=False):
        self._record("update_ref")
        self.refs[(owner, repo, ref)] = sha
        self.ref_updates.append((ref, sha, force))
        return {"ref": f"refs/{ref}", "object": {"sha": sha}}

    def delete_ref(self, owner, repo, ref):
        self._record("delete_ref")
        self.refs.pop((owner, repo, ref), None)
        self.deleted_refs.append(ref)

    def list_branches_where_head(self, owner, repo, sha):
        self._record("list_branches_where_head")
        return [{"name": n} for n in self.branches_where_head.get((owner, repo, sha), [])]

    def get_repo(self, owner, repo):
        self._record("get_repo")
        try:
            return self.repos[(owner, repo)]
        except KeyError:
            raise self._missing(f"{owner}/{repo}")

    def compare(self, owner, repo, base, head):
        self._record("compare")
        return self.comparisons[(owner, repo, base, head)]

    def get_issue_comment(self, owner, repo, comment_id):
        self._record("get_issue_comment")
        return self.comments[(owner, repo, comment_id)]

    def update_issue_comment(self, owner, repo, comment_id, body):
        self._record("update_issue_comment")
        self.comments[(owner, repo, comment_id)]["body"] = body
        return self.comments[(owner, repo, comment_id)]

    def list_issue_comments(self, owner, repo, number):
        self._record("list_issue_comments")
        return [c for (o, r, _), c in self.comments.items() if (o, r) == (owner, repo) and c.get("issue") == number]

    @property
    def write_calls(self) -> List[str]:
        writes = {"create_commit", "create_tree", "create_ref", "update_ref", "delete_ref", "update_issue_comment"}
        return [c for c in self.calls if c in writes]


@pytest.fixture()
def fake_github() -> FakeGitHub:
    return FakeGitHub()


@pytest.fixture(autouse=True)
def isolated_environment(tmp_path, monkeypatch):
    """Keep log files and CI variables of the host out of every test."""
    monkeypatch.setenv("LOCKSTEP_PR_LOG", str(tmp_path / "logs" / "lockstep-pr.log"))
    for name in ("GITHUB_ACTIONS", "GITHUB_OUTPUT", "GITHUB_TOKEN", "GH_TOKEN", "GITHUB_REPOSITORY", "GITHUB_API_URL"):
        monkeypatch.delenv(name, raising=False)
