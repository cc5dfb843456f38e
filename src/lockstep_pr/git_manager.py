"""
Local Git command execution bound to one working directory.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional

from git import Repo, InvalidGitRepositoryError, NoSuchPathError

from .models import GitRepositoryError


logger = logging.getLogger(__name__)


@dataclass
class GitResult:
    """Exit status and output of one git invocation."""

    status: int
    stdout: str
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.status == 0


class GitManager:
    """Runs git commands inside one repository.

    Every command runs with the repository's working tree as its working
    directory; the process-wide current directory is never changed.
    """

    def __init__(self, repo_path: Optional[Path] = None, remote: str = "origin") -> None:
        self.repo_path = Path(repo_path or Path.cwd()).resolve()
        self.remote = remote
        self._repo: Optional[Repo] = None

    @property
    def repo(self) -> Repo:
        """Get the Git repository instance."""
        if self._repo is None:
            try:
                self._repo = Repo(self.repo_path)
            except (InvalidGitRepositoryError, NoSuchPathError) as e:
                raise GitRepositoryError(f"No Git repository found at {self.repo_path}") from e
        return self._repo

    def run(self, *args: str, allow_failure: bool = False, env: Optional[Dict[str, str]] = None) -> GitResult:
        """Run ``git <args>`` in this repository.

        Args:
            args: git arguments, e.g. ``("rebase", "origin/main")``
            allow_failure: return a non-zero result instead of raising
            env: extra environment variables for this call only

        Raises:
            GitRepositoryError: the command exited non-zero and allow_failure is False
        """
        command = ["git", *args]
        logger.info(f"Running: {' '.join(command)} (in {self.repo_path})")
        with self.repo.git.custom_environment(**(env or {})):
            status, stdout, stderr = self.repo.git.execute(
                command, with_extended_output=True, with_exceptions=False
            )
        result = GitResult(status=status, stdout=stdout or "", stderr=stderr or "")
        if not result.ok:
            if allow_failure:
                logger.debug(f"git {args[0]} exited {status} (allowed): {result.stderr.strip()}")
                return result
            logger.error(f"git {' '.join(args)} failed with exit code {status}: {result.stderr.strip()}")
            raise GitRepositoryError(f"git {' '.join(args)} failed with exit code {status}: {result.stderr.strip()}")
        return result

    # --- history and refs ---
    def is_shallow(self) -> bool:
        return self.run("rev-parse", "--is-shallow-repository").stdout.strip() == "true"

    def fetch(self, *branches: str) -> None:
        """Fetch branches from the remote with their full history."""
        args = ["fetch", self.remote, *branches]
        if self.is_shallow():
            args.insert(1, "--unshallow")
        self.run(*args)

    def checkout(self, branch: str) -> None:
        """Check out ``branch`` as a local branch reset to its remote-tracking tip."""
        self.run("checkout", "-B", branch, f"{self.remote}/{branch}")

    def rev_parse(self, ref: str) -> str:
        return self.run("rev-parse", ref).stdout.strip()

    def merge_base(self, first: str, second: str) -> str:
        return self.run("merge-base", first, second).stdout.strip()

    def count_commits(self, revision_range: str) -> int:
        return int(self.run("rev-list", "--count", revision_range).stdout.strip() or 0)

    def commit_messages(self, revision_range: str) -> List[str]:
        """Subject and body of each commit in the range, oldest first."""
        output = self.run("log", "--reverse", "--format=%s%n%b%x00", revision_range).stdout
        return [chunk.strip() for chunk in output.split("\x00") if chunk.strip()]

    def reset_soft(self, ref: str) -> None:
        self.run("reset", "--soft", ref)

    def commit(self, message: str) -> None:
        self.run("commit", "-m", message)

    # --- rebase ---
    def rebase(self, onto: str, allow_failure: bool = False) -> GitResult:
        return self.run("rebase", onto, allow_failure=allow_failure)

    def continue_rebase(self, allow_failure: bool = False) -> GitResult:
        # Avoid interactive editor prompt
        return self.run("rebase", "--continue", allow_failure=allow_failure, env={"GIT_EDITOR": "true"})

    def abort_rebase(self) -> None:
        self.run("rebase", "--abort", allow_failure=True)

    def get_conflict_files(self) -> List[str]:
        """Unmerged paths (files and gitlinks), relative to the repository root."""
        output = self.run("diff", "--name-only", "--diff-filter=U", allow_failure=True).stdout
        return [f.strip() for f in output.splitlines() if f.strip()]

    def get_unmerged_index_entries(self, path: str) -> List[dict]:
        """Return parsed entries from `git ls-files -u -- <path>` for an unmerged path.

        Each entry is a dict with keys: mode, stage, hash, path
        """
        output = self.run("ls-files", "-u", "--", path).stdout
        entries: List[dict] = []
        for line in output.strip().splitlines():
            meta, _, entry_path = line.partition("\t")
            parts = meta.split()
            if len(parts) >= 3 and entry_path:
                entries.append({"mode": parts[0], "hash": parts[1], "stage": parts[2], "path": entry_path})
        return entries

    def set_gitlink(self, path: str, sha: str) -> None:
        """Stage a submodule pointer without checking the submodule out."""
        self.run("update-index", "--cacheinfo", f"160000,{sha},{path}")

    # --- submodules, sync and publish ---
    def update_submodules(self) -> None:
        self.run("submodule", "update", "--init", "--recursive")

    def pull(self, branch: str) -> None:
        self.run("pull", "--ff-only", self.remote, branch)

    def merge_ff_only(self, branch: str) -> None:
        self.run("merge", "--ff-only", branch)

    def push(self, branch: str) -> None:
        self.run("push", self.remote, branch)

    def push_force_with_lease(self, branch: str) -> None:
        self.run("push", "--force-with-lease", self.remote, branch)
