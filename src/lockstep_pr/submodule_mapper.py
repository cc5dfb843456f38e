"""
Submodule discovery for pull requests and submodule-commit to PR resolution.
"""

from __future__ import annotations

import base64
import configparser
import io
import logging
import re
from typing import Dict, Iterable, List, Optional, Tuple

from git.config import GitConfigParser

from .conflict_resolver import is_submodule_path
from .github_client import GitHubClient
from .models import (
    NO_PULL_REQUEST,
    ON_BASE_BRANCH,
    GitHubAPIError,
    PullRequestInfo,
    ResultStatus,
    SubmoduleError,
    SubmoduleInfo,
    SubmoduleReport,
    SubmoduleResolutionError,
)


logger = logging.getLogger(__name__)

GITMODULES = ".gitmodules"
BASE_BRANCH_WINDOW = 100

_SECTION_RE = re.compile(r'^submodule\s+"(?P<name>[^"]+)"$')
_HTTPS_RE = re.compile(r"^https?://[^/]+/(?P<owner>[^/]+)/(?:.+/)?(?P<name>[^/]+?)(?:\.git)?/?$")
_SSH_RE = re.compile(r"^(?:ssh://)?[^@/\s]+@[^:/\s]+(?::\d+)?[:/](?P<owner>[^/]+)/(?:.+/)?(?P<name>[^/]+?)(?:\.git)?/?$")


def _option(parser: GitConfigParser, section: str, option: str) -> str:
    if not parser.has_option(section, option):
        return ""
    return str(parser.get(section, option) or "").strip()


def parse_gitmodules(content: str) -> Dict[str, SubmoduleInfo]:
    """Parse a .gitmodules file into submodule descriptors keyed by name.

    Reading goes through GitPython's config parser, so quoted values, tab
    indentation and comments follow git-config rules. Sections without a
    path or url are skipped with a warning.

    Raises:
        SubmoduleError: the manifest is not valid git-config syntax
    """
    stream = io.BytesIO(content.encode("utf-8"))
    stream.name = GITMODULES
    parser = GitConfigParser(stream, read_only=True, merge_includes=False)
    try:
        parser.read()
        sections = parser.sections()
    except configparser.Error as e:
        raise SubmoduleError(f"Could not parse {GITMODULES}: {e}") from e

    submodules: Dict[str, SubmoduleInfo] = {}
    for section in sections:
        match = _SECTION_RE.match(section.strip())
        if not match:
            logger.debug(f"Ignoring non-submodule section [{section}] in {GITMODULES}")
            continue
        name = match.group("name")
        path = _option(parser, section, "path")
        url = _option(parser, section, "url")
        if not path or not url:
            logger.warning(f"Submodule {name} is missing a path or url; skipping")
            continue
        branch = _option(parser, section, "branch") or None
        submodules[name] = SubmoduleInfo(name=name, path=path.strip("/"), url=url, branch=branch)
    return submodules


def filter_changed_submodules(
    submodules: Iterable[SubmoduleInfo], changed_files: Iterable[str]
) -> List[SubmoduleInfo]:
    """Keep submodules whose path equals, or contains, a changed file."""
    changed = [f.strip("/") for f in changed_files]
    return [s for s in submodules if any(is_submodule_path(f, [s.path]) for f in changed)]


def derive_repo_name_from_url(url: str) -> str:
    """Short repository name of a submodule URL.

    ``https://github.com/org/libfoo.git``, ``git@github.com:org/libfoo.git``
    and ``../libfoo.git`` all give ``libfoo``.
    """
    url = url.strip()
    for pattern in (_HTTPS_RE, _SSH_RE):
        match = pattern.match(url)
        if match:
            return match.group("name")
    # Relative paths and anything else: last path segment
    last = re.split(r"[/:]", url.rstrip("/"))[-1]
    return last[:-4] if last.endswith(".git") else last


def derive_owner_from_url(url: str) -> Optional[str]:
    """Owner named in a hosting HTTPS or SSH URL, or None for relative URLs."""
    for pattern in (_HTTPS_RE, _SSH_RE):
        match = pattern.match(url.strip())
        if match:
            return match.group("owner")
    return None


class SubmoduleResolver:
    """Maps changed submodule pointers of a PR to upstream branches and PRs."""

    def __init__(self, client: GitHubClient) -> None:
        self.client = client

    def read_manifest(self, owner: str, repo: str, ref: str) -> Dict[str, SubmoduleInfo]:
        """Submodules declared at ``ref``; empty when the repository has no manifest."""
        try:
            entry = self.client.get_content(owner, repo, GITMODULES, ref)
        except GitHubAPIError as e:
            if e.is_not_found:
                return {}
            raise
        content = base64.b64decode("".join(entry.get("content", "").split())).decode("utf-8")
        return parse_gitmodules(content)

    def get_submodule_sha(self, owner: str, repo: str, path: str, ref: str) -> str:
        """Commit the enclosing repository records for a submodule at ``ref``."""
        entry = self.client.get_content(owner, repo, path, ref)
        if isinstance(entry, list) or entry.get("type") != "submodule":
            raise SubmoduleError(f"{path} is not a submodule at {ref}")
        return entry["sha"]

    def determine_pr_branch_and_number(
        self, owner: str, repo: str, sha: str, base_branch: str
    ) -> Tuple[str, int]:
        """Resolve which branch and PR a submodule commit belongs to.

        Cases are tried in order and the first match wins:

        1. in the last 100 commits of ``base_branch`` -> (base_branch, 0)
        2. head of exactly one open PR -> (PR branch, PR number)
        3. part of merged PRs -> most recently merged (PR branch, PR number),
           preferring PRs whose head was exactly ``sha``
        4. tip of exactly one branch -> (branch, -1)

        Raises:
            SubmoduleResolutionError: the SHA is the tip of several branches
                with no PR, or is found nowhere
        """
        recent = self.client.list_commits(owner, repo, base_branch, limit=BASE_BRANCH_WINDOW)
        if any(c.get("sha") == sha for c in recent):
            logger.info(f"{repo}@{sha[:8]} is on {base_branch}")
            return base_branch, ON_BASE_BRANCH

        pulls = [PullRequestInfo.from_api(p) for p in self.client.list_pulls_for_commit(owner, repo, sha)]
        branches: Optional[List[str]] = None

        open_prs = [p for p in pulls if p.state == "open" and p.head_sha == sha]
        if len(open_prs) == 1:
            pr = open_prs[0]
            branches = self._branches_at(owner, repo, sha)
            if len(branches) == 1 and branches[0] != pr.head_ref:
                logger.warning(
                    f"{repo}@{sha[:8]} is the tip of {branches[0]} but open PR #{pr.number} "
                    f"uses branch {pr.head_ref}"
                )
            logger.info(f"{repo}@{sha[:8]} is the head of open PR #{pr.number} ({pr.head_ref})")
            return pr.head_ref, pr.number

        merged = sorted((p for p in pulls if p.merged_at), key=lambda p: p.merged_at, reverse=True)
        # Prefer PRs whose head was this exact commit
        merged = [p for p in merged if p.head_sha == sha] or merged
        if merged:
            pr = merged[0]
            logger.info(f"{repo}@{sha[:8]} belongs to merged PR #{pr.number} ({pr.head_ref})")
            return pr.head_ref, pr.number

        if branches is None:
            branches = self._branches_at(owner, repo, sha)
        if len(branches) == 1:
            logger.info(f"{repo}@{sha[:8]} is the tip of {branches[0]} with no PR yet")
            return branches[0], NO_PULL_REQUEST
        if len(branches) > 1:
            raise SubmoduleResolutionError(
                f"{repo}@{sha} is the tip of several branches with no PR: {', '.join(sorted(branches))}"
            )
        raise SubmoduleResolutionError(f"{repo}@{sha} is not on {base_branch}, any branch tip, or any PR")

    def _branches_at(self, owner: str, repo: str, sha: str) -> List[str]:
        return [b["name"] for b in self.client.list_branches_where_head(owner, repo, sha)]

    def enrich_submodules(
        self, owner: str, repo: str, pr_number: int, target_is_default: Optional[bool] = None
    ) -> SubmoduleReport:
        """Find the submodules a PR changes and resolve each one's branch and PR.

        Args:
            target_is_default: whether the PR targets the repository's default
                branch; looked up when not given

        Returns:
            SubmoduleReport; on any error its result is ``failed`` and it holds
            the submodules enriched before the error
        """
        report = SubmoduleReport()
        try:
            pr = PullRequestInfo.from_api(self.client.get_pull(owner, repo, pr_number))
            submodules = self.read_manifest(owner, repo, pr.head_sha)
            if not submodules:
                logger.info(f"{owner}/{repo} declares no submodules")
                return report

            changed_files = [f["filename"] for f in self.client.list_pull_files(owner, repo, pr_number)]
            report.changed_submodules = filter_changed_submodules(submodules.values(), changed_files)
            logger.info(
                f"PR #{pr_number} changes {len(report.changed_submodules)} of {len(submodules)} submodule(s)"
            )
            if not report.changed_submodules:
                return report

            if target_is_default is None:
                target_is_default = pr.base_ref == self.client.get_repo(owner, repo)["default_branch"]

            for sub in report.changed_submodules:
                sub.owner = derive_owner_from_url(sub.url) or owner
                sub.repo_name = derive_repo_name_from_url(sub.url)
                sub.default_branch = self.client.get_repo(sub.owner, sub.repo_name)["default_branch"]
                sub.base_branch = sub.default_branch if target_is_default else pr.base_ref
                sub.sha = self.get_submodule_sha(owner, repo, sub.path, pr.head_sha)
                sub.pr_branch, sub.pr_number = self.determine_pr_branch_and_number(
                    sub.owner, sub.repo_name, sub.sha, sub.base_branch
                )
                report.enriched_submodules.append(sub)
                logger.info(
                    f"Submodule {sub.name} -> {sub.owner}/{sub.repo_name} branch {sub.pr_branch} "
                    f"PR {sub.pr_number}"
                )
        except Exception as e:
            logger.error(f"Error enriching submodules for PR #{pr_number}: {e}")
            report.result = ResultStatus.FAILED
            report.error = str(e)
        return report
