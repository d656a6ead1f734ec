import asyncio
from pathlib import Path
from typing import Optional

import typer
from tqdm import tqdm

from stargazer_sync.api.error_handling import SyncCancelledError, SyncError, categorize_error
from stargazer_sync.core.dependencies import DependencyContainer
from stargazer_sync.data.models import (
    CheckpointSummary,
    ConflictDetectionResult,
    ConflictResolution,
    ItemSummary,
    ResumeDecision,
    SyncMode,
    SyncProgress,
    SyncReport,
)

app = typer.Typer(
    name="stargazer-sync",
    help="Sync your GitHub starred repositories and their READMEs into local storage.",
    add_completion=False,
)


class ProgressBar:
    """Renders orchestrator progress events on a tqdm bar."""

    def __init__(self):
        self.bar = tqdm(desc="Syncing stars", unit=" items", leave=False)

    def __call__(self, progress: SyncProgress) -> None:
        if progress.total_count and self.bar.total != progress.total_count:
            self.bar.total = progress.total_count
        self.bar.n = progress.fetched_count
        self.bar.set_postfix_str(progress.message or progress.state.value, refresh=False)
        self.bar.refresh()

    def close(self) -> None:
        self.bar.close()


def _build_container(data_dir: Optional[Path], verbose: bool) -> DependencyContainer:
    log_dir = data_dir / "logs" if data_dir else None
    return DependencyContainer(data_dir=data_dir, log_dir=log_dir, console_output=verbose)


def _describe_checkpoint(summary: CheckpointSummary) -> str:
    hours, remainder = divmod(int(summary.age.total_seconds()), 3600)
    return (
        f"{summary.fetched_count}/{summary.total_count} items, status {summary.status.value}, "
        f"saved {hours}h {remainder // 60}m ago"
    )


async def run_sync(container: DependencyContainer, mode: SyncMode, assume_yes: bool) -> SyncReport:
    """Run one sync with interactive resume confirmation and a progress bar."""

    def confirm_resume(summary: CheckpointSummary) -> ResumeDecision:
        if assume_yes:
            return ResumeDecision.RESUME
        resume = typer.confirm(f"Resume interrupted sync ({_describe_checkpoint(summary)})?", default=True)
        return ResumeDecision.RESUME if resume else ResumeDecision.RESTART

    def confirm_conflict(item: ItemSummary, detection: ConflictDetectionResult) -> ConflictResolution:
        # Local edits are never overwritten from the command line
        return ConflictResolution.KEEP_LOCAL

    progress = ProgressBar()
    try:
        async with container.client:
            orchestrator = container.create_orchestrator(
                confirm_resume=confirm_resume,
                confirm_conflict=confirm_conflict,
                progress_callback=progress,
            )
            return await orchestrator.run_sync(mode)
    finally:
        progress.close()


@app.command()
def sync(
    mode: SyncMode = typer.Option(
        SyncMode.INCREMENTAL, "--mode", "-m", case_sensitive=False, help="incremental or initial (force refresh)."
    ),
    yes: bool = typer.Option(False, "--yes", "-y", help="Resume an interrupted sync without asking."),
    data_dir: Optional[Path] = typer.Option(None, "--data-dir", help="Directory for the database, READMEs and checkpoint."),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Echo log output to the console."),
):
    """
    Sync starred repositories and their READMEs.
    """
    container = _build_container(data_dir, verbose)
    typer.echo(f"Starting {mode.value} sync.")

    try:
        report = asyncio.run(run_sync(container, mode, yes))
    except (SyncCancelledError, KeyboardInterrupt):
        typer.secho("Sync cancelled. Progress was saved; run sync again to resume.", fg=typer.colors.YELLOW, err=True)
        raise typer.Exit(code=130)
    except SyncError as e:
        typer.secho(f"Sync failed ({categorize_error(e).value}): {e}", fg=typer.colors.RED, err=True)
        typer.echo("Progress was saved; run sync again to resume.")
        raise typer.Exit(code=1)

    if report.resumed:
        typer.echo("Resumed from checkpoint.")
    typer.secho(
        f"Synced {len(report.items)} items: {len(report.added)} added, {len(report.updated)} updated, "
        f"{len(report.removed_items)} removed upstream.",
        fg=typer.colors.GREEN,
    )
    typer.echo(
        f"READMEs: {report.fetched_count} fetched, {report.skipped_count} unchanged, {report.failed_count} failed."
    )
    for conflict in report.conflicts:
        typer.secho(f"Conflict kept local edit: {conflict.item_id} ({conflict.reason})", fg=typer.colors.YELLOW)
    for error in report.errors:
        typer.secho(f"Error [{error.category}] {error.item_id or '-'}: {error.message}", fg=typer.colors.RED)
    if report.removed_items:
        typer.echo("Removed upstream (local copies kept): " + ", ".join(report.removed_items))


@app.command()
def status(
    data_dir: Optional[Path] = typer.Option(None, "--data-dir", help="Directory for the database, READMEs and checkpoint."),
):
    """
    Show the interrupted sync (if any) and what is stored locally.
    """
    container = _build_container(data_dir, verbose=False)
    summary = container.create_orchestrator().get_checkpoint_summary()
    if summary is None:
        typer.echo("No interrupted sync.")
    else:
        typer.echo(f"Interrupted sync: {_describe_checkpoint(summary)}")

    repository = container.item_repository
    typer.echo(f"Stored items: {repository.count_items()} (removed upstream: {len(repository.get_removed_ids())})")


@app.command()
def reset(
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation."),
    data_dir: Optional[Path] = typer.Option(None, "--data-dir", help="Directory for the database, READMEs and checkpoint."),
):
    """
    Discard the checkpoint of an interrupted sync.
    """
    if not yes and not typer.confirm("Discard the interrupted sync checkpoint?", default=False):
        typer.echo("Aborted.")
        raise typer.Exit(code=1)
    container = _build_container(data_dir, verbose=False)
    container.create_orchestrator().reset_checkpoint()
    typer.secho("Checkpoint cleared.", fg=typer.colors.GREEN)


if __name__ == "__main__":
    app()
