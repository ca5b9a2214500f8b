import json
import logging
from dataclasses import asdict

import click

from .config import Settings
from .db import init_db
from .dispatcher import Dispatcher, setup_signal_handlers, _stop
from .jobs import LibrarySync
from .progress import (
    normalize_mode,
    sync_get_fails,
    sync_reset_current_progress,
    sync_retrieve_current_progress,
)
from .registry import build_registry
from .repository import OptionStore
from .sources import read_media_manifest, read_path_list, scan_folders
from .storage import DirectoryBucket
from .utils import parse_delay_to_seconds

LOG_FORMAT = "%(asctime)s [%(levelname)s] [%(threadName)s] %(message)s"


def _engine(ctx, background=False):
    store = OptionStore(ctx.obj["db"])
    settings = Settings.from_config(store.get_config())
    dispatcher = Dispatcher(store, settings, background=background)
    registry = build_registry(store, dispatcher, settings, DirectoryBucket(settings.bucket_dir))
    return store, settings, dispatcher, registry


def _job(registry, kind):
    try:
        return registry.get(kind)
    except KeyError as e:
        raise click.ClickException(e.args[0])


def _fail(message):
    click.secho(f"Error: {message}", fg="red")
    raise SystemExit(1)


@click.group(help="syncctl: background batch sync engine")
@click.option("--db", "db_path", default=None, help="SQLite file (default: $SYNCCTL_DB or sync.db)")
@click.option("-v", "--verbose", is_flag=True, help="Debug logging")
@click.pass_context
def cli(ctx, db_path, verbose):
    logging.basicConfig(level=logging.DEBUG if verbose else logging.INFO, format=LOG_FORMAT)
    # Ensure DB/schema exist before any command runs
    init_db(db_path)
    ctx.obj = {"db": db_path}


# ---------- Jobs ----------
@cli.command("jobs", help="List the sync jobs")
@click.pass_context
def jobs_cmd(ctx):
    _, _, _, registry = _engine(ctx)
    for kind in registry.kinds():
        job = registry.get(kind)
        click.echo(f"{kind:>12} | {job.get_state():<9} | {job.get_name()}")
        helper = job.get_helper_window()
        if helper:
            click.echo(f"{'':>12}   {helper.title} {helper.content}")


@cli.command("start", help="Build the queue for a job and start it")
@click.argument("kind")
@click.option("--paths-file", type=click.Path(exists=True, dir_okay=False), help="non_library: one path per line")
@click.option("--folder", "folders", multiple=True, help="non_library: folder under upload_dir to scan")
@click.option("--manifest", type=click.Path(exists=True, dir_okay=False), help="library: JSON of id -> path")
@click.option("--continue", "continue_", is_flag=True, help="library: resume from the stored checkpoint")
@click.option("--start-from", default=0, type=int, show_default=True, help="library: continue below this id")
@click.option("--run", is_flag=True, help="Drain the queue in this process instead of waiting for cron")
@click.pass_context
def start_cmd(ctx, kind, paths_file, folders, manifest, continue_, start_from, run):
    _, settings, dispatcher, registry = _engine(ctx)
    job = _job(registry, kind)

    if job.is_process_running():
        _fail(f"{job.get_name()} is already running.")

    try:
        if isinstance(job, LibrarySync):
            if paths_file or folders:
                raise ValueError("--paths-file/--folder only apply to path based jobs.")
            media = read_media_manifest(manifest) if manifest else None
            started = job.start(continue_=continue_, start_from=start_from, items=media)
        else:
            if manifest or continue_ or start_from:
                raise ValueError("--manifest/--continue/--start-from only apply to the library job.")
            items = None
            if paths_file or folders:
                items = read_path_list(paths_file) if paths_file else []
                items += scan_folders(settings.upload_dir, folders)
            started = job.start(items)
    except (ValueError, OSError) as e:
        _fail(e)

    if not started:
        last_error = job.get_last_error()
        _fail(f"Could not start {job.get_name()}" + (f": {last_error['message']}" if last_error else "."))

    click.secho(f"Started {job.get_name()} ({job.get_process_meta('total', 0)} item(s)).", fg="green")

    if run:
        reports = dispatcher.drain(job)
        click.echo(json.dumps([asdict(r) for r in reports], indent=2))
        click.echo(json.dumps(job.get_progress(), indent=2))
    else:
        click.echo("Run `syncctl cron` to process it.")


@cli.command("stop", help="Stop a job and discard its queue")
@click.argument("kind")
@click.pass_context
def stop_cmd(ctx, kind):
    _, _, _, registry = _engine(ctx)
    job = _job(registry, kind)
    job.stop()
    click.secho(f"Stopped {job.get_name()}.", fg="yellow")


@cli.command("run-window", help="Run one execution window for a job now")
@click.argument("kind")
@click.pass_context
def run_window_cmd(ctx, kind):
    _, _, dispatcher, registry = _engine(ctx)
    job = _job(registry, kind)
    report = dispatcher.run_window(job)
    if report is None:
        click.echo(f"Nothing to do for {job.get_name()} ({job.get_state()}).")
        return
    click.echo(json.dumps(asdict(report), indent=2))


@cli.command("cron", help="Scheduled trigger: run windows for every running job")
@click.option("--interval", default="1m", show_default=True, help="Tick interval, e.g. 30s, 1m")
@click.option("--once", is_flag=True, help="Run a single tick and exit")
@click.pass_context
def cron_cmd(ctx, interval, once):
    try:
        seconds = parse_delay_to_seconds(interval)
    except ValueError as e:
        _fail(e)

    _, _, dispatcher, registry = _engine(ctx)
    if not once:
        setup_signal_handlers(_stop)
        click.secho("Cron running. Press Ctrl+C to stop…", fg="cyan")
    dispatcher.run_cron(registry, seconds, stop_event=_stop, once=once)


# ---------- Progress ----------
@cli.command("status", help="Progress of one job, or of all jobs")
@click.argument("kind", required=False)
@click.pass_context
def status_cmd(ctx, kind):
    _, _, _, registry = _engine(ctx)
    if kind:
        click.echo(json.dumps(_job(registry, kind).get_progress(), indent=2))
        return
    click.echo(json.dumps({k: registry.get(k).get_progress() for k in registry.kinds()}, indent=2))


@cli.command("notice", help="Warn if a job looks stuck")
@click.argument("kind")
@click.pass_context
def notice_cmd(ctx, kind):
    _, _, _, registry = _engine(ctx)
    notice = _job(registry, kind).get_process_notice()
    if notice:
        click.secho(notice, fg="yellow")
    else:
        click.echo("No issues.")


@cli.command("failed", help="Items recorded as failed for a sync mode")
@click.argument("mode", default="images")
@click.pass_context
def failed_cmd(ctx, mode):
    store = OptionStore(ctx.obj["db"])
    fails = sync_get_fails(store, mode)
    if not fails:
        click.echo("No failed items.")
        return
    for item in fails:
        click.echo(item)


@cli.command("checkpoint", help="Stored progress checkpoint for a sync mode")
@click.argument("mode", default="images")
@click.option("--reset", is_flag=True, help="Forget the checkpoint")
@click.pass_context
def checkpoint_cmd(ctx, mode, reset):
    store = OptionStore(ctx.obj["db"])
    mode = normalize_mode(mode)
    if reset:
        sync_reset_current_progress(store, mode)
        click.secho(f"Checkpoint for {mode} reset.", fg="yellow")
        return
    progress = sync_retrieve_current_progress(store, mode)
    if progress is None:
        click.echo(f"No checkpoint for {mode}.")
        return
    first, last = progress
    # shown one below the boundary; `start --start-from` adds it back
    click.echo(json.dumps({"mode": mode, "first_processed": first, "continue_from": last - 1}, indent=2))


# ---------- Config ----------
@cli.group("config", help="Configuration")
def config_group():
    pass


@config_group.command("get")
@click.pass_context
def config_get(ctx):
    store = OptionStore(ctx.obj["db"])
    click.echo(json.dumps(store.get_config(), indent=2))


@config_group.command("set")
@click.argument("key")
@click.argument("value")
@click.pass_context
def config_set_cmd(ctx, key, value):
    store = OptionStore(ctx.obj["db"])
    try:
        store.set_config(key, value)
        click.secho(f"Config updated: {key}={value}", fg="green")
    except ValueError as e:
        _fail(e)


def main():
    cli()
