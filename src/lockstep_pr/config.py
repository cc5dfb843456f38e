"""
Runtime settings resolved from the environment.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional, Tuple

from .github_client import DEFAULT_API_URL


LOG_ENV = "LOCKSTEP_PR_LOG"


def default_log_path() -> Path:
    """Determine default log file path (~/.lockstep-pr/lockstep-pr.log)."""
    env_path = os.environ.get(LOG_ENV)
    if env_path:
        return Path(env_path).expanduser()
    return Path.home() / ".lockstep-pr" / "lockstep-pr.log"


def split_repository(value: Optional[str]) -> Tuple[Optional[str], Optional[str]]:
    """Split ``owner/name`` into its parts; (None, None) when malformed."""
    if not value or value.count("/") != 1:
        return None, None
    owner, name = value.split("/")
    return (owner, name) if owner and name else (None, None)


@dataclass
class Settings:
    token: Optional[str] = None
    api_url: str = DEFAULT_API_URL
    owner: Optional[str] = None
    repo: Optional[str] = None
    timeout: float = 30

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> Settings:
        env = os.environ if environ is None else environ
        owner, repo = split_repository(env.get("GITHUB_REPOSITORY"))
        return cls(
            token=env.get("GITHUB_TOKEN") or env.get("GH_TOKEN") or None,
            api_url=env.get("GITHUB_API_URL") or DEFAULT_API_URL,
            owner=owner,
            repo=repo,
            timeout=float(env.get("LOCKSTEP_PR_TIMEOUT") or 30),
        )
