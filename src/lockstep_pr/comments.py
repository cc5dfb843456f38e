"""
Append-only updates of pull-request comments.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from .github_client import GitHubClient


logger = logging.getLogger(__name__)


def append_to_comment(client: GitHubClient, owner: str, repo: str, comment_id: int, text: str) -> Dict[str, Any]:
    """Append ``text`` on a new line of an existing comment; earlier content is kept."""
    current = client.get_issue_comment(owner, repo, comment_id).get("body") or ""
    body = f"{current}\n{text}" if current else text
    updated = client.update_issue_comment(owner, repo, comment_id, body)
    logger.info(f"Appended {len(text)} characters to comment {comment_id}")
    return updated


def find_comment(client: GitHubClient, owner: str, repo: str, pr_number: int, marker: str) -> Optional[int]:
    """ID of the newest comment on a PR whose body contains ``marker``."""
    matches = [c for c in client.list_issue_comments(owner, repo, pr_number) if marker in (c.get("body") or "")]
    return matches[-1]["id"] if matches else None
