"""SoundOff CLI — main entry point."""

import asyncio

import click
from rich.console import Console
from rich.table import Table


def _service(settings):
    from soundoff.cache.redis import get_redis
    from soundoff.core.blacklist import RedisBlacklist
    from soundoff.core.soundcrons import SoundCronService
    from soundoff.db.repository import SoundCronRepository
    from soundoff.db.session import get_session_factory

    return SoundCronService(
        SoundCronRepository(get_session_factory(), settings.schedule_batch_size),
        RedisBlacklist(get_redis(), settings.blacklist_ttl_seconds),
        settings.max_guild_storage_bytes,
    )


async def _close() -> None:
    from soundoff.cache.redis import close_redis
    from soundoff.db.session import dispose_engine

    await close_redis()
    await dispose_engine()


@click.group()
@click.version_option(package_name="soundoff")
@click.pass_context
def cli(ctx):
    """SoundOff — play audio clips into Discord voice channels on a cron schedule."""
    from soundoff.config import get_settings
    from soundoff.logs import configure_logging

    settings = get_settings()
    configure_logging(settings.log_level)
    ctx.obj = settings


@cli.command()
@click.option("--dry-run", is_flag=True, help="Log jobs instead of queueing them")
@click.pass_obj
def poller(settings, dry_run: bool):
    """Start the poller: claim due occurrences and dispatch them."""
    from soundoff.core.loop import run_poller

    if dry_run:
        settings = settings.model_copy(update={"dry_run": True})
    click.echo("Starting SoundOff poller...")
    asyncio.run(run_poller(settings))


@cli.command()
@click.option("--dry-run", is_flag=True, help="Log deliveries instead of playing them")
@click.pass_obj
def worker(settings, dry_run: bool):
    """Start a worker: consume jobs and play them at their fire time."""
    from soundoff.core.loop import run_worker

    if dry_run:
        settings = settings.model_copy(update={"dry_run": True})
    click.echo(f"Starting SoundOff worker {settings.consumer_name}...")
    asyncio.run(run_worker(settings))


@cli.command("list")
@click.option("--guild-id", required=True, help="Discord guild ID")
@click.pass_obj
def list_soundcrons(settings, guild_id: str):
    """List a guild's SoundCrons, most recently used first."""

    async def _list():
        try:
            return await _service(settings).list(guild_id)
        finally:
            await _close()

    soundcrons = asyncio.run(_list())
    console = Console()
    if not soundcrons:
        console.print(f"[yellow]No SoundCrons for guild {guild_id}.[/yellow]")
        return

    table = Table(title=f"SoundCrons for guild {guild_id}")
    table.add_column("Name", style="bold")
    table.add_column("Schedule")
    table.add_column("Size", justify="right")
    table.add_column("Last used")
    table.add_column("ID", style="dim")
    for soundcron in soundcrons:
        table.add_row(
            soundcron.name,
            soundcron.cron,
            f"{soundcron.file_size:,}",
            soundcron.last_accessed_at.strftime("%Y-%m-%d %H:%M"),
            soundcron.id,
        )
    console.print(table)


@cli.command()
@click.option("--guild-id", required=True, help="Discord guild ID")
@click.option("--name", required=True, help="Name of the SoundCron, unique per guild")
@click.option("--cron", "cron_expression", required=True, help='Cron expression, e.g. "0 9 * * 1"')
@click.option("--file-size", type=int, required=True, help="Size of the encoded audio in bytes")
@click.pass_obj
def add(settings, guild_id: str, name: str, cron_expression: str, file_size: int):
    """Create a SoundCron and schedule its first occurrences."""
    from soundoff.core.errors import InvalidCronExpression, UserError

    async def _add():
        try:
            return await _service(settings).add(guild_id, name, cron_expression, file_size)
        finally:
            await _close()

    try:
        soundcron = asyncio.run(_add())
    except (UserError, InvalidCronExpression) as exc:
        raise click.ClickException(str(exc)) from exc
    click.echo(f"Created SoundCron {soundcron.name} ({soundcron.id})")
    click.echo(f"Upload the encoded audio to {settings.blob_bucket}/{settings.blob_prefix}/{soundcron.id}")


@cli.command()
@click.argument("soundcron_id")
@click.pass_obj
def delete(settings, soundcron_id: str):
    """Delete a SoundCron and suppress its already-dispatched occurrences."""

    async def _delete():
        try:
            return await _service(settings).delete(soundcron_id)
        finally:
            await _close()

    if asyncio.run(_delete()):
        click.echo(f"Deleted SoundCron {soundcron_id}")
    else:
        click.echo(f"SoundCron {soundcron_id} not found; blacklisted anyway")
