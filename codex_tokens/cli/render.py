"""Rich tables and panels for the CLI."""

from __future__ import annotations

import datetime

from rich import box
from rich.panel import Panel
from rich.progress_bar import ProgressBar
from rich.table import Table

from codex_tokens.models.identity import Identity
from codex_tokens.models.token_version import TokenVersion
from codex_tokens.models.usage_stats import UsageStats


def local(value: datetime.datetime | None, fmt: str = "%Y-%m-%d %H:%M") -> str:
    if value is None:
        return "[dim]--[/dim]"
    return value.astimezone().strftime(fmt)


def percent_color(percent: int) -> str:
    if percent >= 90:
        return "red"
    if percent >= 70:
        return "yellow"
    return "green"


def format_percent(percent: int) -> str:
    color = percent_color(percent)
    return f"[{color}]{percent}%[/{color}]"


def identities_table(rows: list[tuple[Identity, TokenVersion | None]]) -> Table:
    table = Table(title="Codex Identities", box=box.ROUNDED)
    table.add_column("ID", style="cyan", justify="right")
    table.add_column("Email", style="green")
    table.add_column("Plan", style="yellow")
    table.add_column("Version", justify="center")
    table.add_column("Active", justify="center")
    table.add_column("Last Updated", style="dim")

    for identity, current in rows:
        table.add_row(
            str(identity.id),
            identity.email or "[dim]--[/dim]",
            identity.plan_type or "[dim]--[/dim]",
            f"v{current.version_number}" if current else "[dim]--[/dim]",
            "[green]✓[/green]" if identity.is_active else "",
            local(identity.updated_at),
        )
    return table


def identity_panel(identity: Identity) -> Panel:
    return Panel(
        f"Email:        [bold]{identity.email or '--'}[/bold]\n"
        f"User ID:      {identity.user_id or '[dim]--[/dim]'}\n"
        f"Account ID:   {identity.account_id or '[dim]--[/dim]'}\n"
        f"Plan:         {identity.plan_type or '[dim]--[/dim]'}\n"
        f"Active:       {'[green]yes[/green]' if identity.is_active else 'no'}\n"
        f"Created:      {local(identity.created_at, '%Y-%m-%d %H:%M:%S')}\n"
        f"Last Updated: {local(identity.updated_at, '%Y-%m-%d %H:%M:%S')}",
        title=f"Identity #{identity.id}",
        border_style="cyan",
    )


def versions_table(versions: list[TokenVersion]) -> Table:
    table = Table(title=f"Token Versions ({len(versions)})", box=box.ROUNDED)
    table.add_column("Version", style="cyan", justify="center")
    table.add_column("Created")
    table.add_column("Last Refresh")
    table.add_column("Current", justify="center")

    for version in versions:
        table.add_row(
            f"v{version.version_number}",
            local(version.created_at),
            local(version.last_refresh),
            "[green]CURRENT[/green]" if version.is_current else "",
        )
    return table


def stats_table(stats: UsageStats) -> Table:
    table = Table(box=box.ROUNDED)
    table.add_column("Metric", style="bold")
    table.add_column("Usage")
    table.add_column("Resets", no_wrap=True)

    table.add_row(
        "5h limit",
        _usage_cell(stats.five_hour_limit_percent),
        local(stats.five_hour_limit_reset_time, "%H:%M"),
    )
    table.add_row(
        "Weekly limit",
        _usage_cell(stats.weekly_limit_percent),
        local(stats.weekly_limit_reset_time, "%H:%M on %d %b"),
    )
    return table


def _usage_cell(percent: int) -> Table:
    cell = Table.grid(padding=(0, 1))
    cell.add_row(
        ProgressBar(
            total=100,
            completed=percent,
            width=20,
            complete_style=percent_color(percent),
        ),
        f"{format_percent(percent)} used",
    )
    return cell


def stats_panel(identity: Identity, stats: UsageStats) -> Panel:
    return Panel(
        stats_table(stats),
        title=f"Usage for {identity.label}",
        subtitle=f"captured {local(stats.captured_at)}",
        border_style="blue",
    )


def all_stats_table(rows: list[tuple[Identity, UsageStats | None]]) -> Table:
    table = Table(title="Usage Across Identities", box=box.ROUNDED)
    table.add_column("ID", style="cyan", justify="right")
    table.add_column("Email", style="green")
    table.add_column("Plan", style="yellow")
    table.add_column("5h", justify="right", no_wrap=True)
    table.add_column("7d", justify="right", no_wrap=True)
    table.add_column("5h Reset", no_wrap=True)
    table.add_column("7d Reset", no_wrap=True)
    table.add_column("Last Updated", style="dim")

    for identity, stats in rows:
        if stats is None:
            table.add_row(
                str(identity.id),
                identity.email or "[dim]--[/dim]",
                identity.plan_type or "[dim]--[/dim]",
                "[dim]N/A[/dim]", "[dim]N/A[/dim]", "[dim]N/A[/dim]", "[dim]N/A[/dim]",
                "Never",
            )
            continue
        table.add_row(
            str(identity.id),
            identity.email or "[dim]--[/dim]",
            identity.plan_type or "[dim]--[/dim]",
            format_percent(stats.five_hour_limit_percent),
            format_percent(stats.weekly_limit_percent),
            local(stats.five_hour_limit_reset_time, "%H:%M"),
            local(stats.weekly_limit_reset_time, "%H:%M %d %b"),
            local(stats.captured_at),
        )
    return table


MANUAL_STATS_HELP = Panel(
    "[bold cyan]How to get your usage stats:[/bold cyan]\n\n"
    "1. Open a new terminal window\n"
    "2. Run: [yellow]codex --yolo[/yellow]\n"
    "3. Type: [yellow]hi[/yellow] (and press Enter)\n"
    "4. Type: [yellow]/status[/yellow] (and press Enter)\n"
    "5. Note the values shown for:\n"
    "   • 5h limit: [green]X%[/green] used (resets [green]HH:MM[/green])\n"
    "   • Weekly limit: [green]X%[/green] used "
    "(resets [green]HH:MM[/green] on [green]DD Mon[/green])\n\n"
    "Then enter the values below.",
    box=box.ROUNDED,
    border_style="blue",
)


def manual_entry_hint(identity: Identity) -> Panel:
    return Panel(
        "[bold cyan]Alternative: use manual entry[/bold cyan]\n\n"
        "    [yellow]codex-tokens stats-entry[/yellow]\n\n"
        "or for this identity:\n\n"
        f"    [yellow]codex-tokens stats-entry {identity.id}[/yellow]",
        box=box.ROUNDED,
        border_style="yellow",
    )
