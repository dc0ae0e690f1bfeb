"""Command-line interface for adosync."""

from __future__ import annotations

import traceback
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Annotated

import typer

from . import context
from .date_sync import ParentDateSynchronizer
from .devops_client import DevOpsClient
from .devops_config import DEFAULT_CONFIG_FILE, JOB_NAMES, AdoSyncConfig, load_config
from .exceptions import AdoSyncError, DevOpsAuthError, DevOpsError, SyncCancelledError
from .jobs import run_jobs
from .logger import VERBOSITY_CHANGES, changes_enabled, is_silent, setup_logger
from .models import DateSyncResult
from .parent_links import ParentLinker
from .tag_sync import TagPropagator
from .work_item_creation import WorkItemCreator

app = typer.Typer(
    name="adosync",
    help="Keep Azure DevOps work item hierarchies in sync",
    add_completion=False,
)


@app.callback()
def main_callback(
    verbose: Annotated[
        int,
        typer.Option(
            "--verbose",
            "-v",
            help="Verbosity level: 0=errors only (default), 1=show changes, 2=show all checks, 3=debug",
            min=0,
            max=3,
        ),
    ] = 0,
    config: Annotated[
        Path | None,
        typer.Option(
            "--config",
            "-c",
            help=f"Path to config file (default: {DEFAULT_CONFIG_FILE})",
        ),
    ] = None,
) -> None:
    """Global options for adosync commands."""
    setup_logger(verbose)
    context.set_config_path(config)
    context.reset_cancel_event()


def _resolve_config() -> AdoSyncConfig:
    config_path = context.get_config_path()
    if config_path is None:
        if not Path(DEFAULT_CONFIG_FILE).exists():
            typer.echo(f"Error: No config file found (expected {DEFAULT_CONFIG_FILE})", err=True)
            raise typer.Exit(1)
        config_path = Path(DEFAULT_CONFIG_FILE)

    if is_silent():
        typer.echo(f"Loading config from {config_path}...")
    return load_config(config_path)


def _make_client(config: AdoSyncConfig) -> DevOpsClient:
    return DevOpsClient(config.devops, pool_size=config.date_sync.max_workers)


@contextmanager
def _handle_errors() -> Iterator[None]:
    """Map adosync errors to messages and exit codes."""
    try:
        yield
    except typer.Exit:
        raise
    except (SyncCancelledError, KeyboardInterrupt):
        context.get_cancel_event().set()
        typer.echo("Cancelled.", err=True)
        raise typer.Exit(130) from None
    except DevOpsAuthError as e:
        typer.echo(f"Authentication error: {e}", err=True)
        typer.echo(
            "\nMake sure the AZURE_DEVOPS_PAT environment variable is set.",
            err=True,
        )
        raise typer.Exit(1) from None
    except DevOpsError as e:
        typer.echo(f"Azure DevOps error: {e}", err=True)
        raise typer.Exit(1) from None
    except AdoSyncError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1) from None
    except Exception as e:
        typer.echo(f"Unexpected error: {e}", err=True)
        traceback.print_exc()
        raise typer.Exit(1) from None


def _echo_date_summary(result: DateSyncResult, dry_run: bool) -> None:
    typer.echo(f"\n{result.work_item_type}:")
    typer.echo(f"  Work items received: {result.items_received}")
    typer.echo(f"  Work items skipped: {result.items_skipped}")
    typer.echo(f"  Start dates computed: {result.start_dates}")
    typer.echo(f"  Target dates computed: {result.target_dates}")
    if dry_run:
        typer.echo(f"  Parents that would be updated: {len(result.patches)}")
        for parent_id, operations in result.patches.items():
            changes = ", ".join(f"{op.path} = {op.value}" for op in operations)
            typer.echo(f"    {parent_id}: {changes}")
    else:
        typer.echo(f"  Parents updated: {result.parents_updated}")
        typer.echo(f"  Parents failed: {result.parents_failed}")


@app.command()
def validate() -> None:
    """Validate configuration and test the connection to Azure DevOps."""
    with _handle_errors():
        config = _resolve_config()
        typer.echo(
            f"✓ Config loaded: {config.devops.base_url}{config.devops.organization}"
            f" / {config.devops.project}"
        )

        typer.echo("Testing Azure DevOps connection...")
        client = _make_client(config)
        refs = client.query_work_items(
            config.devops.project, "Epic", cancel=context.get_cancel_event()
        )
        typer.echo("✓ Connected to Azure DevOps successfully")
        typer.echo(f"✓ Found {len(refs)} epics in {config.devops.project}")


@app.command()
def dates(
    work_item_types: Annotated[
        list[str] | None,
        typer.Option(
            "--type",
            "-t",
            help="Child work item type to aggregate (repeatable, default from config)",
        ),
    ] = None,
    dry_run: Annotated[
        bool, typer.Option("--dry-run", help="Show the patches without applying them")
    ] = False,
) -> None:
    """Roll child start/target dates up onto their parents."""
    with _handle_errors():
        config = _resolve_config()
        if work_item_types:
            config.date_sync.work_item_types = work_item_types

        if dry_run and not changes_enabled():
            setup_logger(VERBOSITY_CHANGES)

        client = _make_client(config)
        synchronizer = ParentDateSynchronizer(
            client, config.date_sync, cancel=context.get_cancel_event(), dry_run=dry_run
        )
        results = synchronizer.run_all(config.devops.project)

        typer.echo("\nDate sync completed:")
        for result in results:
            _echo_date_summary(result, dry_run)


@app.command()
def tags() -> None:
    """Propagate epic tags to features, backlog items and tasks."""
    with _handle_errors():
        config = _resolve_config()
        client = _make_client(config)
        propagator = TagPropagator(client, config.tags, context.get_cancel_event())
        result = propagator.run(config.devops.project)

        typer.echo("\nTag sync completed:")
        typer.echo(f"  Epics: {result.epics}")
        typer.echo(f"  Work items tagged: {result.updated}")
        typer.echo(f"  Already tagged: {result.unchanged}")
        typer.echo(f"  Failed: {result.failed}")


@app.command()
def parents() -> None:
    """Link configured child work items to their parents."""
    with _handle_errors():
        config = _resolve_config()
        client = _make_client(config)
        linker = ParentLinker(client, config.relations, context.get_cancel_event())
        result = linker.run(config.devops.project)

        typer.echo("\nParent links completed:")
        typer.echo(f"  Linked: {result.linked}")
        typer.echo(f"  Missing work items: {result.missing}")
        typer.echo(f"  Failed: {result.failed}")


@app.command()
def create() -> None:
    """Create the configured work items."""
    with _handle_errors():
        config = _resolve_config()
        client = _make_client(config)
        creator = WorkItemCreator(client, config.work_items, context.get_cancel_event())
        result = creator.run(config.devops.project)

        typer.echo("\nWork item creation completed:")
        typer.echo(f"  Created: {len(result.created)}")
        typer.echo(f"  Linked to parents: {result.linked}")
        typer.echo(f"  Failed: {result.failed}")


@app.command()
def run(
    jobs: Annotated[
        list[str] | None,
        typer.Option(
            "--job",
            "-j",
            help=f"Job to run (repeatable, default from config): {', '.join(JOB_NAMES)}",
        ),
    ] = None,
) -> None:
    """Run the configured jobs in order."""
    with _handle_errors():
        config = _resolve_config()
        unknown = [name for name in jobs or [] if name not in JOB_NAMES]
        if unknown:
            typer.echo(f"Error: Unknown job(s): {', '.join(unknown)}", err=True)
            raise typer.Exit(1)

        client = _make_client(config)
        if not run_jobs(client, config, jobs, cancel=context.get_cancel_event()):
            typer.echo("Jobs stopped after an error.", err=True)
            raise typer.Exit(1)
        typer.echo("All jobs completed.")


def main() -> None:
    """Entry point for the adosync console script."""
    app()


if __name__ == "__main__":
    main()
