"""
Thin REST client for the GitHub API endpoints used by the automation helpers.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional
from urllib.parse import quote

import requests

from .models import GitHubAPIError


logger = logging.getLogger(__name__)

DEFAULT_API_URL = "https://api.github.com"
PER_PAGE = 100


class GitHubClient:
    """Issues one request at a time against the hosting API.

    Methods take ``owner`` and ``repo`` explicitly because a single run touches
    the enclosing repository and every submodule repository.
    """

    def __init__(
        self,
        token: str,
        api_url: str = DEFAULT_API_URL,
        timeout: float = 30,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.api_url = api_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update(
            {
                "Authorization": f"Bearer {token}",
                "Accept": "application/vnd.github+json",
                "X-GitHub-Api-Version": "2022-11-28",
            }
        )

    # --- transport ---
    def _url(self, owner: str, repo: str, path: str) -> str:
        return f"{self.api_url}/repos/{owner}/{repo}/{path.lstrip('/')}"

    def _request(self, method: str, url: str, **kwargs: Any) -> requests.Response:
        logger.debug(f"{method} {url}")
        try:
            resp = self.session.request(method, url, timeout=self.timeout, **kwargs)
        except requests.RequestException as e:
            raise GitHubAPIError(f"{method} {url} failed: {e}", url=url) from e
        if resp.status_code >= 400:
            try:
                detail = resp.json().get("message", resp.text)
            except ValueError:
                detail = resp.text
            raise GitHubAPIError(
                f"{method} {url} returned {resp.status_code}: {detail}",
                status=resp.status_code,
                url=url,
            )
        return resp

    def _get(self, owner: str, repo: str, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        return self._request("GET", self._url(owner, repo, path), params=params).json()

    def _send(self, method: str, owner: str, repo: str, path: str, payload: Dict[str, Any]) -> Any:
        resp = self._request(method, self._url(owner, repo, path), json=payload)
        return resp.json() if resp.content else {}

    def _get_paginated(
        self, owner: str, repo: str, path: str, params: Optional[Dict[str, Any]] = None
    ) -> List[Any]:
        """Collect every page of a list endpoint by following ``Link: rel=next``."""
        query = dict(params or {})
        query.setdefault("per_page", PER_PAGE)
        url: Optional[str] = self._url(owner, repo, path)
        items: List[Any] = []
        while url:
            resp = self._request("GET", url, params=query)
            items.extend(resp.json())
            url = resp.links.get("next", {}).get("url")
            # The next link already carries the query string
            query = {}
        return items

    # --- pull requests ---
    def get_pull(self, owner: str, repo: str, number: int) -> Dict[str, Any]:
        return self._get(owner, repo, f"pulls/{number}")

    def list_pull_commits(self, owner: str, repo: str, number: int) -> List[Dict[str, Any]]:
        return self._get_paginated(owner, repo, f"pulls/{number}/commits")

    def list_pull_files(self, owner: str, repo: str, number: int) -> List[Dict[str, Any]]:
        return self._get_paginated(owner, repo, f"pulls/{number}/files")

    def list_pull_reviews(self, owner: str, repo: str, number: int) -> List[Dict[str, Any]]:
        return self._get_paginated(owner, repo, f"pulls/{number}/reviews")

    def list_pulls_for_commit(self, owner: str, repo: str, sha: str) -> List[Dict[str, Any]]:
        return self._get_paginated(owner, repo, f"commits/{sha}/pulls")

    # --- commits, trees, blobs ---
    def get_commit(self, owner: str, repo: str, sha: str) -> Dict[str, Any]:
        """Git-data commit object (tree, parents, author, verification)."""
        return self._get(owner, repo, f"git/commits/{sha}")

    def get_repo_commit(self, owner: str, repo: str, ref: str) -> Dict[str, Any]:
        """Repository commit view, which includes the changed file list."""
        return self._get(owner, repo, f"commits/{ref}")

    def list_commits(self, owner: str, repo: str, branch: str, limit: int = PER_PAGE) -> List[Dict[str, Any]]:
        """Most recent commits reachable from ``branch`` (a single page)."""
        return self._get(owner, repo, "commits", params={"sha": branch, "per_page": limit})

    def create_commit(
        self,
        owner: str,
        repo: str,
        message: str,
        tree: str,
        parents: List[str],
        author: Optional[Dict[str, str]] = None,
        committer: Optional[Dict[str, str]] = None,
    ) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"message": message, "tree": tree, "parents": parents}
        if author:
            payload["author"] = author
        if committer:
            payload["committer"] = committer
        return self._send("POST", owner, repo, "git/commits", payload)

    def create_tree(
        self, owner: str, repo: str, tree: List[Dict[str, Any]], base_tree: Optional[str] = None
    ) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"tree": tree}
        if base_tree:
            payload["base_tree"] = base_tree
        return self._send("POST", owner, repo, "git/trees", payload)

    def get_tree(self, owner: str, repo: str, tree_sha: str, recursive: bool = False) -> Dict[str, Any]:
        """Tree listing; entries carry path, mode, type and blob/commit SHA.

        A recursive listing that exceeds the host's limit comes back with
        ``truncated`` set.
        """
        params = {"recursive": "1"} if recursive else None
        return self._get(owner, repo, f"git/trees/{tree_sha}", params=params)

    def get_content(self, owner: str, repo: str, path: str, ref: str) -> Dict[str, Any]:
        return self._get(owner, repo, f"contents/{quote(path)}", params={"ref": ref})

    # --- refs and branches ---
    def get_ref(self, owner: str, repo: str, ref: str) -> Dict[str, Any]:
        return self._get(owner, repo, f"git/ref/{ref}")

    def create_ref(self, owner: str, repo: str, ref: str, sha: str) -> Dict[str, Any]:
        return self._send("POST", owner, repo, "git/refs", {"ref": f"refs/{ref}", "sha": sha})

    def update_ref(self, owner: str, repo: str, ref: str, sha: str, force: bool = False) -> Dict[str, Any]:
        return self._send("PATCH", owner, repo, f"git/refs/{ref}", {"sha": sha, "force": force})

    def delete_ref(self, owner: str, repo: str, ref: str) -> None:
        self._request("DELETE", self._url(owner, repo, f"git/refs/{ref}"))

    def list_branches_where_head(self, owner: str, repo: str, sha: str) -> List[Dict[str, Any]]:
        return self._get(owner, repo, f"commits/{sha}/branches-where-head")

    # --- repository ---
    def get_repo(self, owner: str, repo: str) -> Dict[str, Any]:
        return self._request("GET", f"{self.api_url}/repos/{owner}/{repo}").json()

    def compare(self, owner: str, repo: str, base: str, head: str) -> Dict[str, Any]:
        return self._get(owner, repo, f"compare/{base}...{head}")

    # --- comments ---
    def get_issue_comment(self, owner: str, repo: str, comment_id: int) -> Dict[str, Any]:
        return self._get(owner, repo, f"issues/comments/{comment_id}")

    def update_issue_comment(self, owner: str, repo: str, comment_id: int, body: str) -> Dict[str, Any]:
        return self._send("PATCH", owner, repo, f"issues/comments/{comment_id}", {"body": body})

    def list_issue_comments(self, owner: str, repo: str, number: int) -> List[Dict[str, Any]]:
        return self._get_paginated(owner, repo, f"issues/{number}/comments")
