"""
Conflict triage for rebases of repositories that carry submodules.
"""

from __future__ import annotations

import logging
from typing import Dict, Iterable, List, Tuple

from .git_manager import GitManager
from .models import ConflictResolutionError


logger = logging.getLogger(__name__)


def is_submodule_path(path: str, submodule_paths: Iterable[str]) -> bool:
    """True if ``path`` is a submodule path or lies inside one."""
    normalized = path.strip("/")
    for sub in submodule_paths:
        sub = sub.strip("/")
        if sub and (normalized == sub or normalized.startswith(f"{sub}/")):
            return True
    return False


def partition_paths(paths: Iterable[str], submodule_paths: Iterable[str]) -> Tuple[List[str], List[str]]:
    """Split paths into (submodule_paths, other_paths), keeping input order."""
    submodule_paths = list(submodule_paths)
    submodules: List[str] = []
    others: List[str] = []
    for path in paths:
        (submodules if is_submodule_path(path, submodule_paths) else others).append(path)
    return submodules, others


class ConflictResolver:
    """Classifies unmerged paths and resolves the ones confined to submodules."""

    def __init__(self, git_manager: GitManager, submodule_paths: Iterable[str]) -> None:
        self.git_manager = git_manager
        self.submodule_paths = [p.strip("/") for p in submodule_paths if p.strip("/")]

    def analyze_conflicts(self) -> Tuple[List[str], List[str]]:
        """
        Analyze conflicts in the repository.

        Returns:
            Tuple of (file_conflicts, submodule_conflicts)
        """
        unresolved = self.git_manager.get_conflict_files()
        submodule_conflicts, file_conflicts = partition_paths(unresolved, self.submodule_paths)
        logger.debug(
            f"Found {len(file_conflicts)} file conflicts and "
            f"{len(submodule_conflicts)} submodule conflicts"
        )
        return file_conflicts, submodule_conflicts

    def accept_incoming_submodules(self, conflicted_submodules: List[str]) -> Dict[str, str]:
        """Stage the incoming pointer (index stage 3) for each conflicted submodule.

        During a rebase the incoming side is the commit being replayed.

        Returns:
            Mapping of submodule path to the staged commit SHA

        Raises:
            ConflictResolutionError: a path has no incoming pointer to accept
        """
        resolved: Dict[str, str] = {}
        for path in conflicted_submodules:
            entries = self.git_manager.get_unmerged_index_entries(path)
            incoming = next((e for e in entries if e.get("stage") == "3"), None)
            if incoming is None:
                raise ConflictResolutionError(f"No incoming submodule pointer to accept for {path}")
            self.git_manager.set_gitlink(path, incoming["hash"])
            resolved[path] = incoming["hash"]
            logger.info(f"Resolved submodule {path} to incoming commit {incoming['hash'][:8]}")
        return resolved
