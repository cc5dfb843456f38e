"""
Command-line interface: one command per CI step.
"""

from __future__ import annotations

import json
import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from . import __version__ as PACKAGE_VERSION
from .actions import ActionsAnnotationHandler, in_github_actions, set_failed, write_output
from .comments import append_to_comment, find_comment
from .commit_rewriter import cherry_pick_pr, rebase_pr, rebase_single_commit_pr, squash_pr
from .config import Settings, default_log_path
from .git_manager import GitManager
from .github_client import GitHubClient
from .inspector import detect_conflicts, get_approval_counts
from .local_pipeline import LocalRebasePipeline
from .models import NO_PULL_REQUEST, ON_BASE_BRANCH, LockstepPRError, SubmoduleReport, UnresolvableConflictError
from .submodule_mapper import SubmoduleResolver


# JSON results go to stdout; everything meant for humans goes to stderr
console = Console(stderr=True)
logger = logging.getLogger(__name__)


def _print_version(ctx, param, value):
    """Eager option callback to print version and exit."""
    if not value or ctx.resilient_parsing:
        return
    click.echo(f"lockstep-pr {PACKAGE_VERSION}")
    ctx.exit()


def setup_logging(verbose: bool = False, console_level: Optional[str] = None, log_file: Optional[Path] = None) -> Path:
    """Configure the root logger and return the log file path.

    - Rotating log file, always on at DEBUG
    - Rich console handler only with --verbose or --log-level
    - Workflow annotations for warnings and errors when running in GitHub Actions
    """
    log_path = Path(log_file) if log_file else default_log_path()
    log_path.parent.mkdir(parents=True, exist_ok=True)

    root = logging.getLogger()
    # Clear existing handlers to avoid duplication in tests / repeated invocations
    root.handlers.clear()
    root.setLevel(logging.DEBUG)

    file_handler = RotatingFileHandler(str(log_path), maxBytes=1_000_000, backupCount=3, encoding="utf-8")
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(
        logging.Formatter(fmt="%(asctime)s %(levelname)s [%(name)s] %(message)s", datefmt="%Y-%m-%d %H:%M:%S")
    )
    root.addHandler(file_handler)

    if verbose or console_level:
        level = getattr(logging, (console_level or "info").upper(), logging.INFO)
        console_handler = RichHandler(console=console, rich_tracebacks=True)
        console_handler.setLevel(level)
        console_handler.setFormatter(logging.Formatter("%(message)s"))
        root.addHandler(console_handler)

    if in_github_actions():
        annotation_handler = ActionsAnnotationHandler()
        annotation_handler.setFormatter(logging.Formatter("%(message)s"))
        root.addHandler(annotation_handler)

    return log_path


def _client(ctx: click.Context) -> GitHubClient:
    settings: Settings = ctx.obj["settings"]
    if not settings.token:
        raise click.UsageError("A GitHub token is required (--token, GITHUB_TOKEN or GH_TOKEN).")
    return GitHubClient(settings.token, api_url=settings.api_url, timeout=settings.timeout)


def _target(ctx: click.Context) -> Tuple[str, str]:
    settings: Settings = ctx.obj["settings"]
    if not settings.owner or not settings.repo:
        raise click.UsageError("Repository is required (--owner/--repo or GITHUB_REPOSITORY=owner/name).")
    return settings.owner, settings.repo


def _emit(payload: Dict[str, Any], **outputs: Any) -> None:
    """Print the JSON result and publish it as step outputs."""
    text = json.dumps(payload, indent=2)
    click.echo(text)
    write_output("json", json.dumps(payload))
    for name, value in outputs.items():
        if value is not None:
            write_output(name, str(value).lower() if isinstance(value, bool) else str(value))


def _fail(message: str, exit_code: int = 1) -> None:
    console.print(f"\n❌ **{message}**", style="bold red")
    set_failed(message)
    logger.debug(message, exc_info=True)
    sys.exit(exit_code)


@click.group()
@click.option(
    "--version",
    "-V",
    is_flag=True,
    callback=_print_version,
    expose_value=False,
    is_eager=True,
    help="Show version and exit.",
)
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose console logging (INFO)")
@click.option(
    "--log-level",
    type=click.Choice(["debug", "info", "warning", "error"], case_sensitive=False),
    default=None,
    help="Console log level. By default, console logging is disabled.",
)
@click.option("--owner", default=None, help="Repository owner (defaults to GITHUB_REPOSITORY)")
@click.option("--repo", default=None, help="Repository name (defaults to GITHUB_REPOSITORY)")
@click.option("--token", default=None, help="API token (defaults to GITHUB_TOKEN or GH_TOKEN)")
@click.option("--api-url", default=None, help="API base URL (defaults to GITHUB_API_URL)")
@click.pass_context
def cli(
    ctx: click.Context,
    verbose: bool,
    log_level: Optional[str],
    owner: Optional[str],
    repo: Optional[str],
    token: Optional[str],
    api_url: Optional[str],
) -> None:
    """Pull-request automation for CI: squash, rebase, cherry-pick, submodule and conflict checks."""
    log_path = setup_logging(verbose, console_level=log_level)

    settings = Settings.from_env()
    settings.owner = owner or settings.owner
    settings.repo = repo or settings.repo
    settings.token = token or settings.token
    settings.api_url = api_url or settings.api_url

    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["log_path"] = log_path
    ctx.obj["settings"] = settings


@cli.command()
@click.argument("pr_number", type=int)
@click.pass_context
def squash(ctx: click.Context, pr_number: int) -> None:
    """Squash all commits of PR_NUMBER into one commit."""
    client = _client(ctx)
    owner, repo = _target(ctx)
    try:
        result = squash_pr(client, owner, repo, pr_number)
    except Exception as e:
        _fail(f"Squash of PR #{pr_number} failed: {e}")
        return
    _emit(result.as_dict(), result=result.result.value, sha=result.sha)


@cli.command()
@click.argument("pr_number", type=int)
@click.option(
    "--strategy",
    type=click.Choice(["replay", "tree-diff"]),
    default="replay",
    show_default=True,
    help="replay: recreate every commit; tree-diff: single-commit PRs, only files that differ",
)
@click.option("--max-workers", type=int, default=4, show_default=True, help="Parallel path lookups for tree-diff")
@click.pass_context
def rebase(ctx: click.Context, pr_number: int, strategy: str, max_workers: int) -> None:
    """Rebase PR_NUMBER onto the tip of its base branch."""
    client = _client(ctx)
    owner, repo = _target(ctx)
    if strategy == "tree-diff":
        result = rebase_single_commit_pr(client, owner, repo, pr_number, max_workers=max_workers)
    else:
        result = rebase_pr(client, owner, repo, pr_number)
    _emit(result.as_dict(), result=result.result.value, sha=result.sha)


@cli.command("cherry-pick")
@click.argument("pr_number", type=int)
@click.pass_context
def cherry_pick(ctx: click.Context, pr_number: int) -> None:
    """Replay the commits of PR_NUMBER onto its base branch, keeping each commit."""
    client = _client(ctx)
    owner, repo = _target(ctx)
    result = cherry_pick_pr(client, owner, repo, pr_number)
    _emit(result.as_dict(), result=result.result.value, sha=result.sha)


@cli.command("local-rebase")
@click.argument("pr_number", type=int)
@click.option("--pr-branch", required=True, help="Head branch of the PR")
@click.option("--target", "target_branch", required=True, help="Branch to rebase onto and merge into")
@click.option(
    "--repo-path",
    type=click.Path(exists=True, file_okay=False, path_type=Path),
    default=".",
    help="Local checkout (defaults to current directory)",
)
@click.option("--submodule-path", "submodule_paths", multiple=True, help="Submodule path. Repeatable.")
@click.option("--init-submodules", is_flag=True, help="Run 'git submodule update --init' after checkout")
@click.option("--no-merge", is_flag=True, help="Stop after pushing the rebased PR branch")
@click.pass_context
def local_rebase(
    ctx: click.Context,
    pr_number: int,
    pr_branch: str,
    target_branch: str,
    repo_path: Path,
    submodule_paths: Tuple[str, ...],
    init_submodules: bool,
    no_merge: bool,
) -> None:
    """Squash, rebase, fast-forward merge and push PR_NUMBER with local git."""
    pipeline = LocalRebasePipeline(
        GitManager(repo_path),
        submodule_paths=submodule_paths,
        init_submodules=init_submodules,
        merge=not no_merge,
    )
    try:
        result = pipeline.run(pr_number, pr_branch, target_branch)
    except UnresolvableConflictError as e:
        _fail(f"PR #{pr_number} has conflicts outside submodules: {', '.join(e.files)}")
        return
    except LockstepPRError as e:
        _fail(f"Local rebase of PR #{pr_number} failed: {e}")
        return

    if result.resolved_submodules:
        console.print(f"🔧 Auto-resolved submodule conflicts: {', '.join(result.resolved_submodules)}")
    _emit(result.as_dict(), state=result.state.value, sha=result.sha, merged=result.merged)


@cli.command()
@click.argument("pr_number", type=int)
@click.option(
    "--target-is-default/--target-not-default",
    default=None,
    help="Whether the PR targets the default branch (looked up when omitted)",
)
@click.pass_context
def submodules(ctx: click.Context, pr_number: int, target_is_default: Optional[bool]) -> None:
    """Resolve the branch and PR behind each submodule pointer changed by PR_NUMBER."""
    client = _client(ctx)
    owner, repo = _target(ctx)
    report = SubmoduleResolver(client).enrich_submodules(owner, repo, pr_number, target_is_default)
    _display_submodules(report)
    _emit(report.as_dict(), result=report.result.value)


@cli.command()
@click.argument("pr_number", type=int)
@click.pass_context
def approvals(ctx: click.Context, pr_number: int) -> None:
    """Count approvals and change requests on PR_NUMBER (latest review per reviewer)."""
    client = _client(ctx)
    owner, repo = _target(ctx)
    summary = get_approval_counts(client, owner, repo, pr_number)
    _emit(
        summary.as_dict(),
        approval_count=summary.approval_count,
        change_request_count=summary.change_request_count,
    )


@cli.command()
@click.argument("pr_number", type=int)
@click.option("--submodule-path", "submodule_paths", multiple=True, help="Submodule path. Repeatable.")
@click.pass_context
def conflicts(ctx: click.Context, pr_number: int, submodule_paths: Tuple[str, ...]) -> None:
    """Find conflicting files of PR_NUMBER; fails on conflicts outside submodules."""
    client = _client(ctx)
    owner, repo = _target(ctx)
    report = detect_conflicts(client, owner, repo, pr_number, submodule_paths)
    _emit(report.as_dict(), mergeable=report.mergeable)
    if report.is_fatal:
        _fail(f"PR #{pr_number} has conflicts outside submodules: {', '.join(report.non_submodule_conflicts)}")


@cli.command("append-comment")
@click.argument("text")
@click.option("--comment-id", type=int, default=None, help="Comment to append to")
@click.option("--pr", "pr_number", type=int, default=None, help="PR whose newest comment containing --marker is used")
@click.option("--marker", default=None, help="Text identifying the comment, e.g. an HTML comment tag")
@click.pass_context
def append_comment(
    ctx: click.Context, text: str, comment_id: Optional[int], pr_number: Optional[int], marker: Optional[str]
) -> None:
    """Append TEXT to an existing comment, given by --comment-id or by --pr and --marker."""
    if comment_id is None and (pr_number is None or not marker):
        raise click.UsageError("Give --comment-id, or both --pr and --marker")
    client = _client(ctx)
    owner, repo = _target(ctx)
    if comment_id is None:
        comment_id = find_comment(client, owner, repo, pr_number, marker)
        if comment_id is None:
            _fail(f"No comment on PR #{pr_number} contains {marker!r}")
            return
    updated = append_to_comment(client, owner, repo, comment_id, text)
    _emit({"id": updated.get("id", comment_id)})


@cli.command()
def version() -> None:
    """Print the current lockstep-pr version."""
    console.print(f"lockstep-pr {PACKAGE_VERSION}")


def _display_submodules(report: SubmoduleReport) -> None:
    if report.error:
        console.print(f"\n⚠️  **Submodule resolution failed:** {report.error}", style="bold yellow")
    if not report.enriched_submodules:
        console.print("\n📦 **No changed submodules resolved.**", style="dim")
        return

    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Submodule", style="cyan")
    table.add_column("Repository", style="dim")
    table.add_column("SHA", style="yellow")
    table.add_column("Branch", style="green")
    table.add_column("PR", justify="right", style="blue")

    for sub in report.enriched_submodules:
        if sub.pr_number == ON_BASE_BRANCH:
            pr_text = "on base"
        elif sub.pr_number == NO_PULL_REQUEST:
            pr_text = "no PR"
        else:
            pr_text = f"#{sub.pr_number}"
        table.add_row(sub.path, f"{sub.owner}/{sub.repo_name}", (sub.sha or "")[:8], sub.pr_branch or "", pr_text)
    console.print(table)


def main() -> None:
    """Main entry point for the CLI."""
    try:
        cli()
    except KeyboardInterrupt:
        console.print("\n\n🚫 **Operation cancelled by user**", style="bold yellow")
        sys.exit(130)


if __name__ == "__main__":
    main()
