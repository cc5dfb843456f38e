"""
Squash, rebase, fast-forward merge and push of a PR branch using local git.

Used for repositories with submodules, where rewriting through the hosting
API cannot settle conflicting submodule pointers.
"""

from __future__ import annotations

import logging
from typing import Iterable, Optional

from .conflict_resolver import ConflictResolver
from .git_manager import GitManager
from .models import (
    GitRepositoryError,
    LockstepPRError,
    PipelineResult,
    PipelineState,
    UnresolvableConflictError,
)


logger = logging.getLogger(__name__)


class LocalRebasePipeline:
    """Runs the local pipeline for one pull request.

    State flow of the rebase step when submodules are present::

        rebasing -> conflicts_detected -> auto_resolved -> continue_rebase -> ... -> pushed
                                       \\-> fatal
    """

    def __init__(
        self,
        git_manager: GitManager,
        submodule_paths: Optional[Iterable[str]] = None,
        init_submodules: bool = False,
        merge: bool = True,
    ) -> None:
        self.git_manager = git_manager
        self.submodule_paths = list(submodule_paths or [])
        self.init_submodules = init_submodules
        self.merge = merge
        self.conflict_resolver = ConflictResolver(git_manager, self.submodule_paths)

    @property
    def has_submodules(self) -> bool:
        return bool(self.submodule_paths)

    def _set_state(self, result: PipelineResult, state: PipelineState) -> None:
        logger.debug(f"PR #{result.pr_number}: {result.state.value} -> {state.value}")
        result.state = state

    def run(self, pr_number: int, pr_branch: str, target_branch: str) -> PipelineResult:
        """Squash the PR branch, rebase it onto the target, then merge and push.

        Raises:
            UnresolvableConflictError: the rebase hit conflicts outside submodule paths
            GitRepositoryError: any other git command failed
        """
        gm = self.git_manager
        result = PipelineResult(pr_number=pr_number)
        target_ref = f"{gm.remote}/{target_branch}"

        gm.fetch(target_branch, pr_branch)
        gm.checkout(pr_branch)
        if self.init_submodules:
            gm.update_submodules()

        original_tip = gm.rev_parse("HEAD")
        merge_base = gm.merge_base("HEAD", target_ref)
        commit_count = gm.count_commits(f"{merge_base}..HEAD")
        logger.info(f"PR #{pr_number} has {commit_count} commit(s) since {merge_base[:8]}")

        if commit_count > 1:
            self._squash(pr_number, merge_base, commit_count)
            result.squashed = True

        try:
            self._rebase(target_ref, result)
        except LockstepPRError:
            # Never leave the checkout mid-rebase
            self._set_state(result, PipelineState.FATAL)
            gm.abort_rebase()
            raise
        result.sha = gm.rev_parse("HEAD")

        if result.sha != original_tip:
            gm.push_force_with_lease(pr_branch)
            self._set_state(result, PipelineState.PUSHED)
        else:
            logger.info(f"{pr_branch} is unchanged; not pushing it")

        if self.merge:
            gm.checkout(target_branch)
            gm.pull(target_branch)
            gm.merge_ff_only(pr_branch)
            gm.push(target_branch)
            result.merged = True
            self._set_state(result, PipelineState.PUSHED)
            logger.info(f"Fast-forwarded {target_branch} to {result.sha[:8]} and pushed")
        return result

    def _squash(self, pr_number: int, merge_base: str, commit_count: int) -> None:
        gm = self.git_manager
        messages = gm.commit_messages(f"{merge_base}..HEAD")
        gm.reset_soft(merge_base)
        body = "\n\n".join(messages)
        gm.commit(f"PR #{pr_number}: squash of {commit_count} commits\n\n{body}")
        logger.info(f"Squashed {commit_count} commits of PR #{pr_number}")

    def _rebase(self, target_ref: str, result: PipelineResult) -> None:
        gm = self.git_manager
        self._set_state(result, PipelineState.REBASING)

        if not self.has_submodules:
            gm.rebase(target_ref)
            result.rebased = True
            self._set_state(result, PipelineState.REBASED)
            return

        outcome = gm.rebase(target_ref, allow_failure=True)
        while not outcome.ok:
            file_conflicts, submodule_conflicts = self.conflict_resolver.analyze_conflicts()
            self._set_state(result, PipelineState.CONFLICTS_DETECTED)

            if file_conflicts:
                logger.error(f"Rebase conflicts outside submodules: {', '.join(file_conflicts)}")
                raise UnresolvableConflictError(
                    f"Rebase onto {target_ref} has conflicts outside submodules: {', '.join(file_conflicts)}",
                    files=file_conflicts,
                )
            if not submodule_conflicts:
                raise GitRepositoryError(f"Rebase onto {target_ref} failed: {outcome.stderr.strip()}")

            resolved = self.conflict_resolver.accept_incoming_submodules(submodule_conflicts)
            result.resolved_submodules.extend(p for p in resolved if p not in result.resolved_submodules)
            self._set_state(result, PipelineState.AUTO_RESOLVED)

            self._set_state(result, PipelineState.CONTINUE_REBASE)
            outcome = gm.continue_rebase(allow_failure=True)

        result.rebased = True
        self._set_state(result, PipelineState.REBASED)
