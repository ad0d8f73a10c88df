"""Command line interface for lopper."""

import logging
import sys
from pathlib import Path
from typing import Annotated, Optional

import typer
from rich import print
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from lopper import __version__
from lopper.branch import LocalBranch
from lopper.config import Config, ConfigError
from lopper.core import Classification, TrimPlan, build_plan, execute_plan
from lopper.git import GitError, GitRepo
from lopper.logging_setup import LOGGER_NAME, setup_logging
from lopper.porcelain import PRINTERS, Porcelain

app = typer.Typer(help="Delete merged and stray git branches, locally and on remotes")
console = Console()
logger = logging.getLogger(LOGGER_NAME)

CLASSIFICATION_STYLES = {
    Classification.MERGED_LOCAL: "[green]merged local[/green]",
    Classification.STRAY_LOCAL: "[bright_yellow]stray local[/bright_yellow]",
    Classification.MERGED_REMOTE: "[green]merged remote[/green]",
    Classification.STRAY_REMOTE: "[bright_yellow]stray remote[/bright_yellow]",
}


def get_repo(path: Path) -> GitRepo:
    """Get git repository instance."""
    try:
        return GitRepo(path)
    except GitError as err:
        print(f"Error: {err}")
        raise typer.Exit(code=1) from err


def version_callback(value: bool) -> None:
    if value:
        print(f"lopper {__version__}")
        raise typer.Exit()


def update_remotes(repo: GitRepo, interval: int) -> None:
    """Fetch and prune unless the last fetch is recent enough."""
    age = repo.last_fetch_age()
    if age is not None and age < interval:
        logger.info("Skipping fetch, last fetch was %.0f seconds ago", age)
        return
    with console.status("Fetching remotes..."):
        repo.fetch()


def rows(repo: GitRepo, plan: TrimPlan) -> list[tuple[str, Classification, str]]:
    """(display name, classification, last commit) for everything to delete."""
    to_delete = plan.to_delete
    current = repo.get_current_branch_name()
    result = []
    for classification, refs in (
        (Classification.MERGED_LOCAL, to_delete.merged_locals),
        (Classification.STRAY_LOCAL, to_delete.stray_locals),
    ):
        for refname in sorted(refs):
            name = LocalBranch(refname).short_name
            if name == current:
                name = f"{name} [turquoise2](current)[/turquoise2]"
            result.append((name, classification, repo.get_branch_last_commit(refname)))
    for classification, remotes in (
        (Classification.MERGED_REMOTE, to_delete.merged_remotes),
        (Classification.STRAY_REMOTE, to_delete.stray_remotes),
    ):
        for remote_branch in sorted(remotes):
            tracking = repo.tracking_of(remote_branch)
            last_commit = repo.get_branch_last_commit(tracking.refname) if tracking else ""
            result.append((str(remote_branch), classification, last_commit))
    return result


def create_plan_table(repo: GitRepo, plan: TrimPlan) -> Table:
    """Create the table of branches about to be deleted."""
    table = Table(
        title="Branches to Delete",
        show_header=True,
        header_style="bold",
        title_style="bold blue",
        show_edge=True,
    )
    table.add_column("Branch", style="cyan", no_wrap=True)
    table.add_column("Classification", justify="center", no_wrap=True)
    table.add_column("Last Commit", style="yellow", no_wrap=True)
    for name, classification, last_commit in rows(repo, plan):
        table.add_row(name, CLASSIFICATION_STYLES[classification], last_commit)
    return table


def create_kept_back_table(plan: TrimPlan) -> Table:
    """Create the table of deletable branches that are preserved."""
    table = Table(
        title="Kept Back",
        show_header=True,
        header_style="bold",
        title_style="bold",
        show_edge=True,
    )
    table.add_column("Branch", style="cyan", no_wrap=True)
    table.add_column("Classification", justify="center", no_wrap=True)
    table.add_column("Reason", style="magenta")
    for refname, reason in sorted(plan.kept_back.items()):
        table.add_row(
            LocalBranch(refname).short_name,
            CLASSIFICATION_STYLES[reason.original_classification],
            reason.message,
        )
    for remote_branch, reason in sorted(plan.kept_back_remotes.items(), key=lambda item: item[0]):
        table.add_row(str(remote_branch), CLASSIFICATION_STYLES[reason.original_classification], reason.message)
    return table


@app.command()
def trim(
    path: Annotated[Path, typer.Option(help="Path to git repository")] = Path("."),
    bases: Annotated[
        Optional[str], typer.Option("--bases", "-b", help="Comma-separated base branches [config: lopper.bases]")
    ] = None,
    protected: Annotated[
        Optional[str],
        typer.Option("--protected", "-p", help="Comma-separated branch patterns to protect [config: lopper.protected]"),
    ] = None,
    delete: Annotated[
        Optional[str],
        typer.Option(
            "--delete",
            "-d",
            help="What to delete: merged, stray, local, remote, all, merged-local, merged-remote, "
            "stray-local, stray-remote; remote kinds take :<remote> [config: lopper.delete]",
        ),
    ] = None,
    update: Annotated[
        Optional[bool],
        typer.Option("--update/--no-update", help="Fetch and prune remotes first [config: lopper.update]"),
    ] = None,
    update_interval: Annotated[
        Optional[int],
        typer.Option(
            help="Skip fetching if the last fetch is younger than this many seconds [config: lopper.updateInterval]"
        ),
    ] = None,
    confirm: Annotated[
        Optional[bool], typer.Option("--confirm/--no-confirm", help="Ask before deleting [config: lopper.confirm]")
    ] = None,
    yes: Annotated[bool, typer.Option("--yes", "-y", help="Same as --no-confirm")] = False,
    detach: Annotated[
        Optional[bool],
        typer.Option(
            "--detach/--no-detach", help="Detach HEAD to delete the checked out branch [config: lopper.detach]"
        ),
    ] = None,
    dry_run: Annotated[bool, typer.Option("--dry-run", help="Show what would be deleted and stop")] = False,
    porcelain: Annotated[
        Optional[Porcelain], typer.Option(help="Print branches to delete for scripts and stop")
    ] = None,
    verbose: Annotated[int, typer.Option("--verbose", "-v", count=True, help="Repeat for more logging")] = 0,
    version: Annotated[
        bool, typer.Option("--version", callback=version_callback, is_eager=True, help="Show version and exit")
    ] = False,
) -> None:
    """Delete branches that are merged into a base branch or whose upstream is gone."""
    setup_logging(verbose)
    repo = get_repo(path)

    try:
        config = Config.load(
            repo,
            bases=bases,
            protected=protected,
            delete=delete,
            update=update,
            update_interval=update_interval,
            confirm=False if yes else confirm,
            detach=detach,
        )
    except ConfigError as err:
        print(f"Error: {err}")
        raise typer.Exit(code=1) from err

    try:
        if porcelain is None and config.update:
            update_remotes(repo, config.update_interval)
        plan = build_plan(repo, config)
    except GitError as err:
        print(f"Error: {err}")
        raise typer.Exit(code=1) from err

    if porcelain is not None:
        PRINTERS[porcelain](plan, sys.stdout)
        return

    if plan.kept_back or plan.kept_back_remotes:
        console.print(create_kept_back_table(plan))

    if not plan.to_delete:
        console.print(
            Panel(
                "[green]Your branches are clean ✨[/green]",
                style="green",
                padding=(0, 2),
                expand=False,
            )
        )
        return

    console.print()
    console.print(create_plan_table(repo, plan))

    if dry_run:
        console.print("\n[yellow]Dry run, nothing was deleted[/yellow]")
        return

    if config.confirm:
        console.print()
        if not typer.confirm("Proceed with deletion?", default=False):
            console.print("\n[yellow]Operation cancelled[/yellow] 🛑")
            return

    try:
        deleted = execute_plan(repo, plan, detach=config.detach)
    except GitError as err:
        print(f"Error: {err}")
        raise typer.Exit(code=1) from err

    if deleted:
        result_table = Table(
            title=f"Successfully deleted {len(deleted)} branch(es) 🧹",
            show_header=True,
            header_style="bold",
            title_style="bold green",
            show_edge=True,
        )
        result_table.add_column("Branch", style="cyan", no_wrap=True)
        for branch in deleted:
            result_table.add_row(branch)

        console.print()
        console.print(result_table)
    else:
        console.print("\n[yellow]No branches were deleted[/yellow] 🤔")


def main() -> None:
    app()


if __name__ == "__main__":
    main()
