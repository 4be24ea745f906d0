"""
codex-tokens — manage multiple Codex CLI identities and their token history.

Commands:
  • import      — import every *auth.json from a folder
  • list / show — inspect identities and versions
  • activate    — write an identity's current token to the live auth.json
  • remove      — delete identities (with their versions and stats)
  • rollback    — restore an older token version as a new current version
  • stats       — show (and optionally capture) rate-limit usage
  • stats-entry — record usage typed off the codex /status screen
"""

from __future__ import annotations

import logging
from pathlib import Path

import click
from rich.markup import escape
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from codex_tokens import __version__
from codex_tokens.cli import render
from codex_tokens.cli.app import (
    configure_logging,
    console,
    open_store,
    resolve_identity,
    run,
    take_backup,
)
from codex_tokens.core.config import Settings
from codex_tokens.core.errors import CodexTokensError, NotFoundError, ValidationError
from codex_tokens.models.identity import Identity
from codex_tokens.services import auth_json, storage, usage_stats
from codex_tokens.services.token_versions import (
    ImportOutcome,
    get_current_token,
    import_or_update_token,
    pick_rollback_target,
    rollback_to_version,
)

logger = logging.getLogger(__name__)


# ── Prompt types ────────────────────────────────────────────
class ClockType(click.ParamType):
    name = "HH:MM"

    def convert(self, value, param, ctx):  # type: ignore[no-untyped-def]
        try:
            usage_stats.parse_clock(value)
        except ValidationError as exc:
            self.fail(str(exc), param, ctx)
        return value.strip()


class DayMonthType(click.ParamType):
    name = "DD Mon"

    def convert(self, value, param, ctx):  # type: ignore[no-untyped-def]
        try:
            # leap year so "29 Feb" is accepted here
            usage_stats.parse_day_month(value, 2024)
        except ValidationError as exc:
            self.fail(str(exc), param, ctx)
        return value.strip()


PERCENT = click.IntRange(0, 100)


# ── Group ───────────────────────────────────────────────────
@click.group()
@click.version_option(__version__, prog_name="codex-tokens")
@click.pass_context
def cli(ctx: click.Context) -> None:
    """Codex identity manager - versioned auth.json history per account"""
    settings = Settings()
    configure_logging(settings)
    ctx.obj = settings


# ── import ──────────────────────────────────────────────────
@cli.command(name="import")
@click.option(
    "--folder", "-f",
    type=click.Path(exists=True, file_okay=False, path_type=Path),
    help="Folder to scan for *auth.json files (default: the codex folder)",
)
@click.pass_obj
def import_cmd(settings: Settings, folder: Path | None) -> None:
    """Import every *auth.json file in a folder"""
    run(_import(settings, folder or settings.codex_dir))


async def _import(settings: Settings, folder: Path) -> int:
    async with open_store(settings) as session:
        files = auth_json.scan_for_auth_files(folder)
        if not files:
            console.print(f"[yellow]No *auth.json files found in {escape(str(folder))}[/yellow]")
            return 0

        console.print(f"Found {len(files)} auth file(s):")
        for path in files:
            console.print(f"  - {escape(path.name)}")

        take_backup(settings, required=False)

        tally = {"new": 0, "updated": 0, "unchanged": 0, "skipped": 0}
        for path in files:
            name = escape(path.name)
            try:
                result = await import_or_update_token(session, auth_json.read_auth_token(path))
            except CodexTokensError as exc:
                tally["skipped"] += 1
                console.print(f"[red]✗[/red] {name}: {escape(str(exc))}")
                continue
            except SQLAlchemyError as exc:
                logger.exception("Storing %s failed", path)
                tally["skipped"] += 1
                console.print(f"[red]✗[/red] {name}: storage error ({escape(type(exc).__name__)})")
                continue

            if result.outcome is ImportOutcome.CREATED and result.is_new_identity:
                tally["new"] += 1
                console.print(f"[green]✓[/green] {name}: new identity #{result.identity_id}")
            elif result.outcome in (ImportOutcome.CREATED, ImportOutcome.PROMOTED):
                tally["updated"] += 1
                console.print(f"[green]✓[/green] {name}: updated identity #{result.identity_id}")
            elif result.outcome is ImportOutcome.UNCHANGED:
                tally["unchanged"] += 1
                console.print(f"[dim]=[/dim] {name}: unchanged")
            else:
                tally["skipped"] += 1
                console.print(f"[yellow]-[/yellow] {name}: older than the stored token, ignored")

        console.print(
            f"\nImport complete: {tally['new']} new, {tally['updated']} updated, "
            f"{tally['unchanged']} unchanged, {tally['skipped']} skipped"
        )
    return 0


# ── list / show ─────────────────────────────────────────────
@cli.command(name="list")
@click.pass_obj
def list_cmd(settings: Settings) -> None:
    """List all identities"""
    run(_list(settings))


async def _list(settings: Settings) -> int:
    async with open_store(settings) as session:
        identities = await storage.list_identities(session)
        if not identities:
            console.print("[yellow]No identities found. Import some with 'codex-tokens import'[/yellow]")
            return 0

        rows = [
            (identity, await storage.get_current_version(session, identity.id))
            for identity in identities
        ]
        console.print(render.identities_table(rows))
    return 0


@cli.command()
@click.argument("identifier", required=False)
@click.pass_obj
def show(settings: Settings, identifier: str | None) -> None:
    """Show an identity and its token versions"""
    run(_show(settings, identifier))


async def _show(settings: Settings, identifier: str | None) -> int:
    async with open_store(settings) as session:
        identity = await resolve_identity(session, settings, identifier)
        versions = await storage.list_versions(session, identity.id)
        console.print(render.identity_panel(identity))
        console.print(render.versions_table(versions))
    return 0


# ── activate / remove ───────────────────────────────────────
@cli.command()
@click.argument("identifier")
@click.pass_obj
def activate(settings: Settings, identifier: str) -> None:
    """Make an identity active and write its token to auth.json"""
    run(_activate(settings, identifier))


async def _activate(settings: Settings, identifier: str) -> int:
    async with open_store(settings) as session:
        identity = await resolve_identity(session, settings, identifier)
        token = await get_current_token(session, identity.id)
        if token is None:
            raise NotFoundError(f"No token version found for {identity.label}")

        take_backup(settings)
        await storage.set_identity_active(session, identity.id)
        auth_json.write_active_auth_token(settings, token)

        console.print(f"[green]✓[/green] Identity activated: [bold]{escape(identity.label)}[/bold]")
        console.print(f"  {escape(str(settings.active_auth_path))} updated with the current token")
    return 0


@cli.command()
@click.argument("identifiers", nargs=-1, required=True)
@click.pass_obj
def remove(settings: Settings, identifiers: tuple[str, ...]) -> None:
    """Remove identities by ID or email"""
    run(_remove(settings, identifiers))


async def _remove(settings: Settings, identifiers: tuple[str, ...]) -> int:
    removed = failed = 0
    async with open_store(settings) as session:
        take_backup(settings)

        for identifier in identifiers:
            try:
                identity = await resolve_identity(session, settings, identifier)
                label = identity.label
                await storage.delete_identity(session, identity.id)
            except CodexTokensError as exc:
                failed += 1
                console.print(f"[red]✗[/red] {escape(str(exc))}")
                continue
            removed += 1
            console.print(f"[green]✓[/green] Removed identity: {escape(label)}")

    console.print(f"\nRemoval complete: {removed} removed, {failed} failed")
    return 1 if failed else 0


# ── rollback ────────────────────────────────────────────────
@cli.command()
@click.argument("identifier", required=False)
@click.option("--version", "-v", "version_number", type=int, help="Version number to restore")
@click.pass_obj
def rollback(settings: Settings, identifier: str | None, version_number: int | None) -> None:
    """Restore an older token version (default: the previous one)"""
    run(_rollback(settings, identifier, version_number))


async def _rollback(settings: Settings, identifier: str | None, version_number: int | None) -> int:
    async with open_store(settings) as session:
        identity = await resolve_identity(session, settings, identifier)
        target = await pick_rollback_target(session, identity.id, version_number)

        console.print(
            f"Rolling back [bold]{escape(identity.label)}[/bold] to v{target.version_number}..."
        )
        take_backup(settings)
        await rollback_to_version(session, identity.id, target.id)

        if identity.is_active:
            token = await get_current_token(session, identity.id)
            if token is not None:
                auth_json.write_active_auth_token(settings, token)
                console.print("[green]✓[/green] auth.json has been updated")

        console.print(f"[green]✓[/green] Rolled back to v{target.version_number}")
        console.print(f"  [dim](created a new version based on v{target.version_number})[/dim]")
    return 0


# ── stats ───────────────────────────────────────────────────
@cli.command()
@click.argument("identifier", required=False)
@click.option("--refresh", "-r", is_flag=True, help="Capture fresh stats by running codex")
@click.pass_obj
def stats(settings: Settings, identifier: str | None, refresh: bool) -> None:
    """Show usage stats for an identity, or 'all'"""
    if identifier and identifier.lower() == "all":
        run(_stats_all(settings, refresh))
    else:
        run(_stats_one(settings, identifier, refresh))


async def _refresh_stats(session: AsyncSession, settings: Settings, identity: Identity) -> bool:
    token = await get_current_token(session, identity.id)
    if token is None:
        console.print(f"[red]No token found for {escape(identity.label)}[/red]")
        return False

    try:
        with console.status(f"Refreshing stats for [bold]{escape(identity.label)}[/bold]..."):
            captured = await usage_stats.capture_usage_stats(
                settings, identity.id, token,
                runner=usage_stats.run_codex_for_status,
                is_active=identity.is_active,
            )
            await storage.create_usage_stats(session, captured.stats)
            # codex may refresh tokens while it runs
            await import_or_update_token(session, captured.refreshed_token or token)
    except CodexTokensError as exc:
        console.print(f"[yellow]⚠[/yellow] Failed to refresh stats for {escape(identity.label)}:")
        console.print(f"[dim]{escape(str(exc))}[/dim]")
        console.print(render.manual_entry_hint(identity))
        return False

    console.print(f"[green]✓[/green] Stats refreshed for {escape(identity.label)}")
    return True


async def _stats_one(settings: Settings, identifier: str | None, refresh: bool) -> int:
    async with open_store(settings) as session:
        identity = await resolve_identity(session, settings, identifier)

        if refresh and not await _refresh_stats(session, settings, identity):
            return 1

        latest = await storage.get_latest_usage_stats(session, identity.id)
        if latest is None:
            console.print(f"[yellow]No stats found for {escape(identity.label)}.[/yellow]")
            console.print("[dim]Run 'codex-tokens stats --refresh' or 'codex-tokens stats-entry'.[/dim]")
            return 1

        console.print(render.stats_panel(identity, latest))
    return 0


async def _stats_all(settings: Settings, refresh: bool) -> int:
    async with open_store(settings) as session:
        identities = await storage.list_identities(session)
        if not identities:
            console.print("[yellow]No identities found.[/yellow]")
            return 0

        if refresh:
            console.print(f"[cyan]Refreshing stats for {len(identities)} identities...[/cyan]")
            for identity in identities:
                await _refresh_stats(session, settings, identity)

        rows = [
            (identity, await storage.get_latest_usage_stats(session, identity.id))
            for identity in identities
        ]
        console.print(render.all_stats_table(rows))
    return 0


# ── stats-entry ─────────────────────────────────────────────
@cli.command(name="stats-entry")
@click.argument("identifier", required=False)
@click.pass_obj
def stats_entry(settings: Settings, identifier: str | None) -> None:
    """Record usage stats by hand"""
    run(_stats_entry(settings, identifier))


async def _stats_entry(settings: Settings, identifier: str | None) -> int:
    async with open_store(settings) as session:
        identity = await resolve_identity(session, settings, identifier)

        console.print(render.MANUAL_STATS_HELP)
        console.print(f"\n[bold]Entering stats for:[/bold] {escape(identity.label)}\n")

        five_hour_percent = click.prompt("5h limit percentage (0-100)", type=PERCENT)
        five_hour_reset = click.prompt("5h limit resets at (HH:MM, e.g. 18:21)", type=ClockType())
        weekly_percent = click.prompt("Weekly limit percentage (0-100)", type=PERCENT)
        weekly_reset = click.prompt("Weekly limit resets at (HH:MM, e.g. 12:21)", type=ClockType())
        weekly_date = click.prompt("Weekly limit resets on (DD Mon, e.g. 29 Oct)", type=DayMonthType())

        snapshot = usage_stats.record_manual_stats(
            identity.id,
            five_hour_percent,
            five_hour_reset,
            weekly_percent,
            weekly_reset,
            weekly_date,
        )
        row = await storage.create_usage_stats(session, snapshot)

        console.print(f"\n[green]✓[/green] Stats saved for {escape(identity.label)}")
        console.print(render.stats_table(row))
    return 0


if __name__ == "__main__":
    cli()
