from __future__ import annotations

import json
import logging
from pathlib import Path

import click

from hostpanel import __version__
from hostpanel.config import EngineConfig, load_config
from hostpanel.db import (
    ENTITY_TABLES,
    EntityType,
    connect,
    count_statuses,
    get_status,
    list_error_rows,
    list_status_history,
    requeue,
    schedule,
)
from hostpanel.errors import ConfigError, InfrastructureError
from hostpanel.status import TOCHANGE
from hostpanel.status_reference import get_status_reference

log = logging.getLogger(__name__)

ENTITY_TYPE = click.Choice([t.value for t in EntityType])


class _JsonAwareGroup(click.Group):
    """Group that always outputs JSON errors with command suggestions.

    Click exceptions are reported as a JSON error object on stdout.  Unknown
    commands get fuzzy-matched suggestions via ``difflib.get_close_matches``.
    """

    def resolve_command(self, ctx, args):  # type: ignore[override]
        try:
            return super().resolve_command(ctx, args)
        except click.UsageError:
            if args:
                import difflib

                cmd_name = args[0]
                matches = difflib.get_close_matches(
                    cmd_name, self.list_commands(ctx), n=2, cutoff=0.5
                )
                hint = f" Did you mean: {', '.join(matches)}?" if matches else ""
                raise click.UsageError(f"No such command '{cmd_name}'.{hint}") from None
            raise

    def main(self, args=None, standalone_mode=True, **kwargs):  # type: ignore[override]
        try:
            rv = super().main(args=args, standalone_mode=False, **kwargs)
            if standalone_mode:
                raise SystemExit(rv or 0)
            return rv
        except click.ClickException as e:
            click.echo(json.dumps({"ok": False, "error": e.format_message()}))
            code = getattr(e, "exit_code", 1)
            if standalone_mode:
                raise SystemExit(code) from None
            return code
        except click.Abort:
            if standalone_mode:
                click.echo("Aborted!", err=True)
                raise SystemExit(1) from None
            raise


def _config(ctx: click.Context) -> EngineConfig:
    return ctx.find_object(EngineConfig)  # type: ignore[return-value]


def _not_found(entity_type: str, entity_id: int) -> click.ClickException:
    return click.ClickException(
        f"{entity_type} {entity_id} not found.\n"
        "Run 'hostpanel pending' or 'hostpanel errors' to see tracked rows."
    )


@click.group(cls=_JsonAwareGroup)
@click.version_option(version=__version__)
@click.option(
    "--config",
    "config_path",
    type=click.Path(dir_okay=False, path_type=Path),
    envvar="HOSTPANEL_CONFIG",
    help="Engine configuration file (TOML).",
)
@click.option(
    "--db",
    "db_path",
    type=click.Path(dir_okay=False, path_type=Path),
    envvar="HOSTPANEL_DB",
    help="Override the store location.",
)
@click.option("-v", "--verbose", is_flag=True, help="Log debug output to stderr.")
@click.pass_context
def main(ctx: click.Context, config_path: Path | None, db_path: Path | None, verbose: bool):
    """Reconcile hosting entities recorded by the panel with the host.

    \b
    Quick start:
      hostpanel init-db                     Create the store
      hostpanel run                         Run one reconciliation pass
      hostpanel enqueue                     Queue a pass for a background worker
      hostpanel errors                      List rows stuck in error
      hostpanel requeue domain 12           Retry a failed row
      hostpanel doctor                      Check store, lock, Redis, directories
    """
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )
    try:
        config = load_config(config_path)
    except ConfigError as exc:
        raise click.ClickException(str(exc)) from None
    if db_path is not None:
        config = config.replace(db_path=db_path)
    ctx.obj = config


# -- store --


@main.command("init-db")
@click.pass_context
def init_db(ctx: click.Context):
    """Create the store schema (idempotent)."""
    config = _config(ctx)
    with connect(config.db_path):
        pass
    click.echo(json.dumps({"ok": True, "db_path": str(config.db_path)}))


# -- passes --


@main.command()
@click.option("--dry-run", is_flag=True, help="List the rows the pass would process.")
@click.pass_context
def run(ctx: click.Context, dry_run: bool):
    """Run one reconciliation pass.

    Exits 0 when another pass holds the host lock, and non-zero only when the
    store, the lock file or the host is unusable.
    """
    from hostpanel.db import snapshot_pending
    from hostpanel.processor import PROCESSING_ORDER, run_pass

    config = _config(ctx)
    if dry_run:
        with connect(config.db_path) as conn:
            rows = snapshot_pending(conn, PROCESSING_ORDER)
        click.echo(json.dumps({"ok": True, "dry_run": True, "rows": rows}, indent=2))
        return

    try:
        summary = run_pass(config)
    except InfrastructureError as exc:
        raise click.ClickException(f"Pass aborted: {exc}") from None
    click.echo(json.dumps({"ok": True, "summary": summary.as_dict()}, indent=2))


@main.command()
@click.pass_context
def enqueue(ctx: click.Context):
    """Queue a pass and spawn a burst worker for it."""
    from redis.exceptions import RedisError

    from hostpanel.queue import enqueue_pass

    config_path = ctx.parent.params.get("config_path") if ctx.parent else None
    try:
        job = enqueue_pass(str(config_path) if config_path else None)
    except RedisError as exc:
        raise click.ClickException(f"Redis unavailable: {exc}") from None
    click.echo(json.dumps({"ok": True, "job_id": job.id, "status": str(job.get_status())}))


# -- inspection --


@main.command()
@click.pass_context
def pending(ctx: click.Context):
    """Show per-type counts of pending, stable and failed rows."""
    with connect(_config(ctx).db_path) as conn:
        counts = count_statuses(conn)
    click.echo(json.dumps(counts, indent=2))


@main.command()
@click.option("--type", "entity_type", type=ENTITY_TYPE, help="Only this entity type.")
@click.pass_context
def errors(ctx: click.Context, entity_type: str | None):
    """List rows whose status holds error text."""
    with connect(_config(ctx).db_path) as conn:
        rows = list_error_rows(conn)
    if entity_type:
        rows = [r for r in rows if r["entity_type"] == entity_type]
    click.echo(json.dumps(rows, indent=2))


@main.command()
@click.argument("entity_type", type=ENTITY_TYPE)
@click.argument("entity_id", type=int)
@click.pass_context
def history(ctx: click.Context, entity_type: str, entity_id: int):
    """Show the status transitions recorded for one row."""
    with connect(_config(ctx).db_path) as conn:
        current = get_status(conn, entity_type, entity_id)
        rows = list_status_history(conn, entity_type=entity_type, entity_id=entity_id)
    if current is None and not rows:
        raise _not_found(entity_type, entity_id)
    click.echo(
        json.dumps(
            {"entity_type": entity_type, "id": entity_id, "status": current, "history": rows},
            indent=2,
            default=str,
        )
    )


# -- operator actions --


@main.command("schedule")
@click.argument("entity_type", type=ENTITY_TYPE)
@click.argument("entity_id", type=int)
@click.argument("status")
@click.pass_context
def schedule_cmd(ctx: click.Context, entity_type: str, entity_id: int, status: str):
    """Set a pending keyword on a row so the next pass processes it."""
    with connect(_config(ctx).db_path) as conn:
        try:
            found = schedule(conn, entity_type, entity_id, status)
        except ValueError as exc:
            raise click.ClickException(str(exc)) from None
    if not found:
        raise _not_found(entity_type, entity_id)
    click.echo(json.dumps({"ok": True, "entity_type": entity_type, "id": entity_id,
                           "status": status}))


@main.command("requeue")
@click.argument("entity_type", type=ENTITY_TYPE)
@click.argument("entity_id", type=int)
@click.option("--status", default=TOCHANGE, show_default=True,
              help="Pending keyword to put back on the row.")
@click.pass_context
def requeue_cmd(ctx: click.Context, entity_type: str, entity_id: int, status: str):
    """Retry a row stuck in error text."""
    pending_keywords = ENTITY_TABLES[EntityType(entity_type)].pending
    if status not in pending_keywords:
        raise click.ClickException(
            f"Invalid status '{status}' for {entity_type}. "
            f"Must be one of: {', '.join(sorted(pending_keywords))}"
        )
    with connect(_config(ctx).db_path) as conn:
        current = get_status(conn, entity_type, entity_id)
        if current is None:
            raise _not_found(entity_type, entity_id)
        if not requeue(conn, entity_type, entity_id, status):
            raise click.ClickException(
                f"{entity_type} {entity_id} is not in error (status '{current}')."
            )
    click.echo(json.dumps({"ok": True, "entity_type": entity_type, "id": entity_id,
                           "previous_error": current, "status": status}))


@main.command("help-status")
def help_status():
    """Show the status vocabulary and its lifecycle."""
    click.echo(json.dumps(get_status_reference(), indent=2, sort_keys=False))


@main.command()
@click.option("--fix", is_flag=True, help="Clear failed pass jobs from the queue.")
@click.pass_context
def doctor(ctx: click.Context, fix: bool):
    """Run health checks on the engine's store, lock, queue and directories."""
    from hostpanel.doctor import run_doctor

    report = run_doctor(_config(ctx), fix=fix)
    click.echo(json.dumps(report, default=str))
    if report["status"] == "fail":
        raise click.ClickException("Doctor checks failed.")
