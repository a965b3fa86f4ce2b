"""
CLI interface for synclease.

Provides commands to run sync passes, fan out queued entries, resume
queued entries on a worker and inspect the sync log.

Entities and jobs are declared in config.yaml (see ``synclease init``).
"""

import json
from datetime import timedelta
from pathlib import Path

import click

from synclease import __version__
from synclease.errors import SyncleaseError
from synclease.schemas import QueueBehavior, SyncResult, SyncTriggerType


TRIGGER_CHOICE = click.Choice([t.value for t in SyncTriggerType], case_sensitive=False)


@click.group()
@click.version_option(version=__version__, prog_name="synclease")
@click.option("-v", "--verbose", is_flag=True, help="Log at DEBUG level")
@click.pass_context
def main(ctx, verbose: bool):
    """
    synclease - Lease-based sync job coordinator.

    Run per-entity sync jobs with at most one concurrent run per entity.
    """
    from synclease.config import load_config
    from synclease.utils import setup_logging

    ctx.ensure_object(dict)
    try:
        config = load_config()
    except (FileNotFoundError, SyncleaseError) as e:
        # init works without a config; other commands report the error
        ctx.obj["config_error"] = str(e)
        return

    ctx.obj["config"] = config
    setup_logging(
        log_level="DEBUG" if verbose else config.log_level,
        log_format=config.log_format,
        log_file=Path(config.log_file) if config.log_file else None,
    )


def _services(ctx):
    """Build services from the loaded config or exit with an error."""
    from synclease.bootstrap import build_services

    if "services" in ctx.obj:
        return ctx.obj["services"]

    if "config" not in ctx.obj:
        click.echo(f"✗ Config not loaded: {ctx.obj.get('config_error', 'Unknown error')}", err=True)
        click.echo("Run 'synclease init' to create a configuration file.", err=True)
        raise SystemExit(1)

    try:
        services = build_services(ctx.obj["config"])
    except SyncleaseError as e:
        click.echo(f"✗ {e}", err=True)
        raise SystemExit(1)

    ctx.obj["services"] = services
    return services


def _echo_result(result: SyncResult) -> None:
    name = result.entity.describe() if result.entity else "?"
    mark = "✓" if result.success else "✗"
    details = []
    if result.record_count is not None:
        details.append(f"{result.record_count} records")
    if result.high_water_mark is not None:
        details.append(f"hwm={result.high_water_mark}")
    suffix = f" ({', '.join(details)})" if details else ""
    click.echo(f"{mark} {name}: {result.message}{suffix}")


@main.command("init")
@click.option("--force", is_flag=True, help="Overwrite existing configuration")
def init(force: bool):
    """Initialize synclease configuration."""
    from synclease.config import get_synclease_home
    import yaml

    home = get_synclease_home()
    if not home.exists():
        home.mkdir(parents=True)

    cfg_path = home / "config.yaml"
    if cfg_path.exists() and not force:
        click.echo(f"Config already exists at {cfg_path}. Use --force to overwrite.", err=True)
        raise SystemExit(1)

    default_cfg = {
        "machine_id": None,
        "default_lease_seconds": 86400,
        "store": "sqlite",
        "sqlite_path": str(home / "synclease.db"),
        "check_interval_seconds": 300,
        "startup_delay_seconds": 0,
        "max_workers": None,
        "log_level": "INFO",
        "log_format": "pretty",
        "log_file": None,
        "entity_provider": None,
        "jobs": {},
        "entities": [],
        "env_file": str(home / ".env"),
    }
    cfg_path.write_text(yaml.safe_dump(default_cfg, sort_keys=False))

    env_path = home / ".env"
    if not env_path.exists():
        env_path.write_text("# Credentials for your sync jobs, e.g.\n# ORDERS_API_TOKEN=...\n")

    click.echo(f"Initialized synclease config at {cfg_path}")
    click.echo("Add your jobs (sync id -> 'module:attr') and entities to get started.")


@main.command("sync")
@click.option("--trigger", "trigger", type=TRIGGER_CHOICE, default="manual", show_default=True,
              help="Trigger type; manual bypasses eligibility")
@click.option("--entity", "entity_names", multiple=True, help="Only sync these entities")
@click.pass_context
def sync(ctx, trigger: str, entity_names: tuple):
    """
    Run a sync pass over the configured entities.

    Examples:

        synclease sync

        synclease sync --trigger timer

        synclease sync --entity Orders
    """
    services = _services(ctx)
    trigger_type = SyncTriggerType(trigger.lower())

    if entity_names:
        entities = [
            e for e in services.resolver.resolve_entities() if e.entity in entity_names
        ]
        missing = sorted(set(entity_names) - {e.entity for e in entities})
        if missing:
            click.echo(f"✗ Unknown entities: {', '.join(missing)}", err=True)
            raise SystemExit(1)

        results = []
        for entity in entities:
            try:
                result = services.sync.sync_entity_if_eligible(trigger_type, entity)
            except SyncleaseError as e:
                result = SyncResult.failed(str(e), entity=entity)
            if result is None:
                click.echo(f"- {entity.describe()}: not run (leased elsewhere or not eligible)")
            else:
                results.append(result)
    else:
        results = services.sync.sync_all_eligible(trigger_type)

    for result in results:
        _echo_result(result)

    if not results:
        click.echo("No entities were synced.")
    if any(not r.success for r in results):
        raise SystemExit(1)


@main.command("queue")
@click.option("--trigger", "trigger", type=TRIGGER_CHOICE, default="timer", show_default=True)
@click.option("--eligible-only", is_flag=True, help="Skip entities that are not eligible now")
@click.pass_context
def queue(ctx, trigger: str, eligible_only: bool):
    """
    Create queued entries and print them as JSON lines.

    Publish one message per line, then record each message id with
    'synclease record-message'.
    """
    services = _services(ctx)
    behavior = QueueBehavior.QUEUE_ELIGIBLE_ONLY if eligible_only else QueueBehavior.QUEUE_ALL

    entries = services.queue.create_all_queued_sync_entries(
        SyncTriggerType(trigger.lower()), behavior=behavior
    )
    for entry in entries:
        click.echo(json.dumps(entry.to_dict()))


@main.command("record-message")
@click.argument("entry_id")
@click.argument("message_id")
@click.pass_context
def record_message(ctx, entry_id: str, message_id: str):
    """Record the queue MESSAGE_ID for queued entry ENTRY_ID."""
    services = _services(ctx)
    try:
        services.queue.record_queue_message_id(entry_id, message_id)
    except (ValueError, SyncleaseError) as e:
        click.echo(f"✗ {e}", err=True)
        raise SystemExit(1)
    click.echo(f"✓ Recorded message {message_id} on entry {entry_id}")


@main.command("run-entry")
@click.argument("entry_id")
@click.option("--trigger", "trigger", type=TRIGGER_CHOICE, default=None,
              help="Trigger type (default: the entry's own)")
@click.pass_context
def run_entry(ctx, entry_id: str, trigger: str):
    """Run the queued entry ENTRY_ID (worker side of 'synclease queue')."""
    services = _services(ctx)
    trigger_type = SyncTriggerType(trigger.lower()) if trigger else None

    try:
        result = services.sync.sync_queued_entry(entry_id, trigger_type)
    except (ValueError, SyncleaseError) as e:
        click.echo(f"✗ {e}", err=True)
        raise SystemExit(1)

    if result is None:
        click.echo(f"- Entry {entry_id} not run (already handled, leased, or not eligible)")
        return
    _echo_result(result)
    if not result.success:
        raise SystemExit(1)


@main.command("entries")
@click.option("--entity", default=None, help="Only entries for this entity")
@click.option("--limit", default=20, show_default=True, type=click.IntRange(min=1))
@click.option("--json", "as_json", is_flag=True, help="Print JSON lines")
@click.pass_context
def entries(ctx, entity: str, limit: int, as_json: bool):
    """Show recent sync log entries, newest first."""
    services = _services(ctx)
    found = services.store.list_entries(entity=entity, limit=limit)

    if not found:
        click.echo("No log entries.")
        return

    for entry in found:
        if as_json:
            click.echo(json.dumps(entry.to_dict()))
            continue
        name = entry.entity
        if entry.parameters_json:
            name += f" {entry.parameters_json}"
        if entry.schema_version is not None:
            name += f" v{entry.schema_version}"
        line = f"{entry.id}  {entry.status.value:<13} {name}  created {entry.created_at.isoformat()}"
        if entry.result_message:
            line += f"  {entry.result_message}"
        if entry.progress_percentage is not None:
            line += f"  [{entry.progress_percentage:.0%}]"
        click.echo(line)


@main.command("watch")
@click.pass_context
def watch(ctx):
    """Run sync passes periodically until interrupted."""
    from synclease.scheduler import PeriodicSyncRunner

    services = _services(ctx)
    config = ctx.obj["config"]
    runner = PeriodicSyncRunner(
        services.sync,
        check_interval=timedelta(seconds=config.check_interval_seconds),
        startup_delay=timedelta(seconds=config.startup_delay_seconds),
    )

    click.echo(f"Watching {len(services.resolver.entities)} entities every {config.check_interval_seconds}s (Ctrl-C to stop)")
    try:
        runner.run_forever()
    except KeyboardInterrupt:
        runner.stop()
        click.echo("Stopped.")


if __name__ == "__main__":
    main()
