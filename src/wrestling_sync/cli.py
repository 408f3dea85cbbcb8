import asyncio
import json
import logging
from typing import Dict, Optional

import click
from tqdm import tqdm
from dotenv import load_dotenv

from .sync.config import SyncConfig
from .sync.exceptions import ConfigurationError
from .sync.interfaces import ProgressListener
from .sync.models import SyncDirection, SyncProgress
from .sync.service import SyncServiceContainer

# Load environment variables
load_dotenv()

logger = logging.getLogger(__name__)

DIRECTIONS = [direction.value for direction in SyncDirection]


class TqdmProgressListener(ProgressListener):
    """Shows one progress bar per tracked operation."""

    def __init__(self):
        self._bars: Dict[str, tqdm] = {}

    def on_operation_started(self, progress: SyncProgress) -> None:
        self._bars[progress.operation_id] = tqdm(
            total=progress.total_steps, desc=progress.operation_name, unit="step", ncols=80
        )

    def on_progress_updated(self, progress: SyncProgress) -> None:
        bar = self._bars.get(progress.operation_id)
        if bar is None:
            return
        bar.n = progress.current_step
        bar.set_postfix_str(progress.current_step_description[:40], refresh=False)
        bar.refresh()

    def on_operation_completed(self, progress: SyncProgress) -> None:
        bar = self._bars.pop(progress.operation_id, None)
        if bar is None:
            return
        bar.n = progress.current_step
        bar.set_postfix_str(progress.status_string, refresh=False)
        bar.close()


def _build_container(ctx: click.Context) -> SyncServiceContainer:
    try:
        return SyncServiceContainer.from_config(ctx.obj["config"])
    except ConfigurationError as e:
        raise click.ClickException(f"Invalid entity configuration: {e.message}")


@click.group()
@click.option('--env-file', type=click.Path(exists=True, dir_okay=False), help='Load SYNC_* settings from this .env file')
@click.option('--db-path', envvar='SYNC_DB_PATH', help='DuckDB database file')
@click.option('--export-dir', envvar='SYNC_EXPORT_DIRECTORY', type=click.Path(file_okay=False), help='Directory with the Notion JSON exports')
@click.option('--log-level', envvar='SYNC_LOG_LEVEL', default='INFO', show_default=True, help='Logging level')
@click.option('--log-file', envvar='SYNC_LOG_FILE', default='wrestling_sync.log', show_default=True, help='Log file path')
@click.pass_context
def main(ctx, env_file, db_path, export_dir, log_level, log_file):
    """
    Synchronize wrestling promotion data between Notion exports and the local database.
    """
    logging.basicConfig(
        filename=log_file,
        filemode='a',
        encoding='utf-8',
        level=log_level.upper(),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    try:
        config = SyncConfig.from_file(env_file) if env_file else SyncConfig.from_env()
        overrides = {"scheduler_enabled": False, "log_level": log_level.upper()}
        if db_path:
            overrides["db_path"] = db_path
        if export_dir:
            overrides["export_directory"] = export_dir
        config = config.with_overrides(**overrides)
    except ValueError as e:
        raise click.ClickException(str(e))

    ctx.ensure_object(dict)
    ctx.obj["config"] = config


@main.command()
@click.pass_context
def order(ctx):
    """Show the dependency levels entities are synced in."""
    container = _build_container(ctx)
    for level in container.graph.levels:
        click.echo(f"Level {level.index}: {', '.join(level.entities)}")
        for name in level.entities:
            dependencies = sorted(container.graph.dependencies_of(name))
            if dependencies:
                click.echo(f"  {name} <- {', '.join(dependencies)}")


@main.command("sync-all")
@click.option('--direction', type=click.Choice(DIRECTIONS, case_sensitive=False), default=None, help='Sync direction (default from configuration)')
@click.option('--json-output', is_flag=True, default=False, help='Print the run summary as JSON')
@click.pass_context
def sync_all(ctx, direction: Optional[str], json_output: bool):
    """Sync every entity in dependency order."""
    container = _build_container(ctx)

    async def run():
        async with container:
            container.progress_tracker.subscribe(TqdmProgressListener())
            return await container.orchestrator.run_all(direction=direction)

    summary = asyncio.run(run())

    if json_output:
        click.echo(json.dumps(summary.to_dict(), indent=2))
    else:
        click.echo(f"Sync {summary.state.value}: {summary.total_synced} items synced, "
                   f"{summary.successful_entities} succeeded, {summary.failed_entities} failed")
        for result in summary.results:
            marker = "✓" if result.success else "✗"
            line = (f"  {marker} {result.entity_type}: {result.created_count} created, "
                    f"{result.updated_count} updated")
            if not result.success:
                line += f" ({result.error_count} errors: {result.error_message})"
            click.echo(line)
        if summary.error_message and not summary.results:
            click.echo(f"  {summary.error_message}")

    if not summary.success:
        ctx.exit(1)


@main.command("sync-entity")
@click.argument('entity')
@click.option('--direction', type=click.Choice(DIRECTIONS, case_sensitive=False), default=None, help='Sync direction (default from configuration)')
@click.pass_context
def sync_entity(ctx, entity: str, direction: Optional[str]):
    """Sync one entity without syncing its dependencies first."""
    container = _build_container(ctx)

    async def run():
        async with container:
            container.progress_tracker.subscribe(TqdmProgressListener())
            return await container.orchestrator.run_entity(entity, direction=direction)

    try:
        result = asyncio.run(run())
    except ConfigurationError as e:
        valid = ", ".join(container.graph.automatic_sync_order())
        raise click.ClickException(f"{e.message}. Valid entities: {valid}")

    click.echo(f"{result.entity_type}: {result.created_count} created, "
               f"{result.updated_count} updated, {result.error_count} errors")
    for message in result.messages:
        click.echo(f"  {message}")
    if not result.success:
        click.echo(f"Sync failed: {result.error_message}", err=True)
        ctx.exit(1)


@main.command()
@click.pass_context
def status(ctx):
    """Show configuration and the last sync time per entity."""
    config: SyncConfig = ctx.obj["config"]
    container = _build_container(ctx)

    click.echo(f"Sync enabled: {config.enabled}")
    click.echo(f"Database: {config.db_path}")
    click.echo(f"Exports: {config.export_directory}")
    click.echo(f"Default direction: {config.direction.value}")
    with container.store:
        for name in container.graph.automatic_sync_order():
            last_sync = container.store.get_last_sync_time(name)
            count = container.store.count(name)
            click.echo(f"  {name}: {count} records, last synced "
                       f"{last_sync.isoformat(timespec='seconds') if last_sync else 'never'}")


if __name__ == '__main__':
    main()
