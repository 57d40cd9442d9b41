"""
CLI commands for running data migrations.

Provides commands for:
- upgrade: Apply pending changesets
- status: Show lock holder and changeset status
- release-lock: Remove a lock left behind by a crashed process
"""

import asyncio
from functools import wraps
from typing import Optional

import click
from rich.console import Console
from rich.table import Table

console = Console()


def _ensure_settings_loaded():
    """Load .env files before Click resolves envvar options."""
    from kvmigrate.config.environment import Environment

    Environment.load_settings()


def store_options(func):
    """Options shared by every command that talks to the changelog table."""

    @click.option(
        "--backend",
        type=click.Choice(["sqlite", "dynamodb", "memory"], case_sensitive=False),
        default=None,
        help="Store backend holding the changelog table [default: KVMIGRATE_BACKEND or sqlite].",
    )
    @click.option("--db-path", type=str, default=None, help="SQLite database file [default: KVMIGRATE_DB_PATH].")
    @click.option("--table", type=str, default=None, help="Changelog table name.")
    @click.option("--partition-key", type=str, default=None, help="Name of the table's key attribute.")
    @click.option("--region", type=str, default=None, help="AWS region for DynamoDB [default: AWS_REGION or us-east-1].")
    @click.option(
        "--endpoint-url",
        type=str,
        default=None,
        help="Custom DynamoDB endpoint, e.g. DynamoDB Local [default: KVMIGRATE_DYNAMODB_ENDPOINT].",
    )
    @click.option("--scan-target", type=str, default=None, help="Package holding @changelog classes.")
    @click.option("--profile", "profiles", multiple=True, help="Active environment profile (repeatable).")
    @wraps(func)
    def wrapper(*args, **kwargs):
        return func(*args, **kwargs)

    return wrapper


async def _open(
    backend: Optional[str],
    db_path: Optional[str],
    table: Optional[str],
    partition_key: Optional[str],
    region: Optional[str],
    endpoint_url: Optional[str],
    scan_target: Optional[str],
    profiles: tuple[str, ...],
    **overrides,
):
    """Build the config, the store and the orchestrator.

    Returns:
        Tuple of (orchestrator, store)
    """
    from kvmigrate.config.environment import Environment
    from kvmigrate.migrations.config import MigrationConfig
    from kvmigrate.migrations.runner import MigrationOrchestrator
    from kvmigrate.migrations.store import create_store

    config = MigrationConfig.from_environment(
        changelog_table_name=table,
        partition_key_name=partition_key,
        scan_target=scan_target,
        environment_filter=profiles or None,
        **overrides,
    )
    store = await create_store(
        backend or Environment.get_backend(),
        config.changelog_table_name,
        config.partition_key_name,
        db_path=db_path or Environment.get_db_path(),
        region=region or Environment.get_aws_region(),
        endpoint_url=endpoint_url or Environment.get_dynamodb_endpoint(),
    )
    return MigrationOrchestrator(store, config), store


@click.group("kvmigrate")
def cli():
    """Run data migrations against a key-value store.

    Changesets are discovered from the package given with --scan-target
    (or KVMIGRATE_SCAN_TARGET). Only one process migrates at a time; others
    find the process lock taken and exit without doing anything.

    Examples:
        kvmigrate upgrade --scan-target myapp.changelogs
        kvmigrate upgrade --backend dynamodb --region eu-west-1 --scan-target myapp.changelogs
    """
    _ensure_settings_loaded()


@cli.command("upgrade")
@store_options
@click.option(
    "--wait-for-lock/--no-wait-for-lock",
    default=None,
    help="Poll for the process lock while another instance holds it.",
)
@click.option("--lock-wait-time", type=float, default=None, help="Minutes to wait for the lock.")
@click.option("--lock-poll-rate", type=float, default=None, help="Seconds between lock attempts.")
@click.option(
    "--throw-if-locked",
    is_flag=True,
    default=None,
    help="Fail instead of exiting quietly when the lock is taken.",
)
def upgrade(
    wait_for_lock: Optional[bool],
    lock_wait_time: Optional[float],
    lock_poll_rate: Optional[float],
    throw_if_locked: Optional[bool],
    **store_kwargs,
):
    """Apply pending changesets.

    Examples:
        # Apply against the default SQLite database
        kvmigrate upgrade --scan-target myapp.changelogs

        # Wait up to 2 minutes if another instance is migrating
        kvmigrate upgrade --scan-target myapp.changelogs --wait-for-lock --lock-wait-time 2
    """

    async def run_upgrade():
        store = None
        try:
            orchestrator, store = await _open(
                **store_kwargs,
                wait_for_lock=wait_for_lock,
                lock_wait_time=lock_wait_time,
                lock_poll_rate=lock_poll_rate,
                throw_exception_if_cannot_obtain_lock=throw_if_locked or None,
            )
            console.print(f"[cyan]Using {store.backend} store, table {orchestrator.config.changelog_table_name}[/]")
            await orchestrator.execute()
            console.print("[green]✅ Migration run finished[/]")
        except Exception as e:
            console.print(f"[red]❌ Migration failed: {e}[/]")
            raise SystemExit(1) from e
        finally:
            if store is not None:
                await store.close()

    asyncio.run(run_upgrade())


@cli.command("status")
@store_options
def status(**store_kwargs):
    """Show the process lock and the state of every changeset.

    Examples:
        kvmigrate status --scan-target myapp.changelogs
    """

    async def run_status():
        store = None
        try:
            orchestrator, store = await _open(**store_kwargs)
            console.print(f"[cyan]Using {store.backend} store, table {orchestrator.config.changelog_table_name}[/]")
            console.print()

            result = await orchestrator.status()

            lock = result["lock"]
            if lock:
                console.print(f"[bold yellow]Migration in progress:[/] held by {lock['owner']} since {lock['acquired_at']}")
            else:
                console.print("[bold cyan]Process lock:[/] free")
            console.print()

            if result["changesets"]:
                table = Table(title="Changesets")
                table.add_column("Changelog", style="cyan")
                table.add_column("Order", style="blue")
                table.add_column("Id", style="green")
                table.add_column("Author", style="green")
                table.add_column("Status", style="yellow")
                table.add_column("Applied At", style="magenta")

                for c in result["changesets"]:
                    state = "applied" if c["applied"] else "pending"
                    if c["run_always"]:
                        state += " (run always)"
                    table.add_row(c["changelog"], c["order"], c["id"], c["author"], state, c["applied_at"] or "")

                console.print(table)
            else:
                console.print("[yellow]No changesets found[/]")

        except Exception as e:
            console.print(f"[red]❌ Error getting status: {e}[/]")
            raise SystemExit(1) from e
        finally:
            if store is not None:
                await store.close()

    asyncio.run(run_status())


@cli.command("release-lock")
@store_options
@click.option("--force", is_flag=True, help="Skip confirmation prompt")
def release_lock(force: bool, **store_kwargs):
    """Remove the process lock.

    Only needed when a process died while migrating. Removing the lock of a
    live run lets a second instance start migrating concurrently.
    """
    if not force:
        if not click.confirm("Remove the migration process lock? Make sure no migration is running."):
            console.print("[yellow]Operation cancelled[/]")
            return

    async def run_release():
        store = None
        try:
            orchestrator, store = await _open(**store_kwargs)
            lock = await orchestrator.current_lock()
            if await orchestrator.force_release_lock():
                console.print(f"[green]✅ Released lock held by {lock.owner if lock else 'unknown'}[/]")
            else:
                console.print("[yellow]Process lock was not held[/]")
        except Exception as e:
            console.print(f"[red]❌ Release failed: {e}[/]")
            raise SystemExit(1) from e
        finally:
            if store is not None:
                await store.close()

    asyncio.run(run_release())


if __name__ == "__main__":
    cli()
