"""listing-guard CLI — operator tooling for the listing moderation pipeline."""

import asyncio
import json
import logging

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table

from listing_guard import __version__

console = Console()

_SEVERITY_STYLE = {"clean": "green", "medium": "yellow", "high": "red", "critical": "bold red"}


def _load(config_path: str | None, data_dir: str | None):
    from listing_guard.config import load_config

    config = load_config(config_path)
    if data_dir:
        config.data_dir = data_dir
    return config


def _pipeline(ctx: click.Context):
    from listing_guard.pipeline import build_pipeline

    return build_pipeline(ctx.obj["config"])


@click.group()
@click.version_option(version=__version__)
@click.option("--config", "config_path", default=None, type=click.Path(exists=True), help="YAML config file")
@click.option("--data-dir", default=None, help="Override the storage root")
@click.option("--log-level", default="WARNING", type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"]))
@click.pass_context
def main(ctx: click.Context, config_path: str | None, data_dir: str | None, log_level: str):
    """listing-guard — AI moderation for marketplace listing publishes.

    Inspect the review queue, override decisions, manage flagged sellers
    and dry-run moderation against the configured classifier.
    """
    logging.basicConfig(
        level=log_level,
        format="%(message)s",
        handlers=[RichHandler(console=console, show_path=False)],
    )
    ctx.ensure_object(dict)
    ctx.obj["config"] = _load(config_path, data_dir)


# ── Check ────────────────────────────────────────────────────────────


@main.command()
@click.option("--title", required=True)
@click.option("--description", default="")
@click.option("--image", "images", multiple=True, help="Image URL (repeatable)")
@click.option("--json", "as_json", is_flag=True, help="Print the raw result as JSON")
@click.pass_context
def check(ctx: click.Context, title: str, description: str, images: tuple[str, ...], as_json: bool):
    """Dry-run AI moderation for a listing without persisting anything."""
    from listing_guard.moderation.fingerprint import build_content_fingerprint
    from listing_guard.moderation.models import ModerationInput
    from listing_guard.pipeline import build_moderation_client

    client = build_moderation_client(ctx.obj["config"])
    if not client.configured:
        console.print("[yellow]Classifier not configured; set ANTHROPIC_API_KEY for a real decision.[/]")

    result, err = asyncio.run(
        client.moderate(ModerationInput(title=title, description=description, image_urls=list(images)))
    )
    fingerprint = build_content_fingerprint(title, description, images)

    if as_json:
        click.echo(json.dumps({"fingerprint": fingerprint, **result.to_dict()}, indent=2))
        return

    style = _SEVERITY_STYLE.get(result.severity.value, "white")
    lines = [
        f"Decision:    [bold]{result.decision.value}[/]",
        f"Severity:    [{style}]{result.severity.value}[/]",
        f"Source:      {result.source.value}",
        f"Flag user:   {'yes' if result.flag_profile else 'no'}",
        f"Fingerprint: [dim]{fingerprint}[/]",
        "",
        result.summary,
    ]
    console.print(Panel("\n".join(lines), title="Moderation result", border_style=style))

    if result.violations:
        table = Table(title="Violations")
        table.add_column("Code", style="cyan")
        table.add_column("Category")
        table.add_column("Severity")
        table.add_column("Reason")
        for v in result.violations:
            table.add_row(v.code, v.category, v.severity.value, v.reason)
        console.print(table)

    if err is not None:
        console.print(f"[red]Classifier error:[/] {err}")


# ── Review queue ─────────────────────────────────────────────────────


@main.command()
@click.option("--status", "statuses", multiple=True, type=click.Choice(["pending_review", "flagged", "error"]))
@click.option("--limit", default=50, show_default=True)
@click.option("--offset", default=0, show_default=True)
@click.pass_context
def queue(ctx: click.Context, statuses: tuple[str, ...], limit: int, offset: int):
    """List listings awaiting manual review."""
    from listing_guard.moderation.models import ListingModerationStatus
    from listing_guard.stores.listing_store import DEFAULT_QUEUE_STATUSES

    pipeline = _pipeline(ctx)
    wanted = [ListingModerationStatus(s) for s in statuses] or list(DEFAULT_QUEUE_STATUSES)
    listings = pipeline.listings.get_moderation_queue(wanted, limit=limit, offset=offset)

    if not listings:
        console.print("[green]Review queue is empty.[/]")
        return

    table = Table(title=f"Moderation queue ({len(listings)})")
    table.add_column("ID", justify="right")
    table.add_column("Title", style="cyan")
    table.add_column("Status")
    table.add_column("Severity")
    table.add_column("Seller")
    table.add_column("Checked")
    for listing in listings:
        severity = listing.moderation_severity.value if listing.moderation_severity else "-"
        table.add_row(
            str(listing.id),
            listing.title[:50],
            listing.moderation_status.value,
            f"[{_SEVERITY_STYLE.get(severity, 'white')}]{severity}[/]",
            listing.user_id or "-",
            listing.moderation_checked_at.strftime("%Y-%m-%d %H:%M") if listing.moderation_checked_at else "-",
        )
    console.print(table)


# ── Overrides ────────────────────────────────────────────────────────


def _override(ctx: click.Context, listing_id: int, approve: bool, admin: str, summary: str) -> None:
    pipeline = _pipeline(ctx)
    try:
        listing = pipeline.listings.apply_moderation_override(listing_id, approve, admin, summary)
    except ValueError as exc:
        raise click.ClickException(str(exc)) from exc
    verb = "approved" if approve else "rejected"
    console.print(f"[green]✓[/] Listing {listing.id} {verb} (status: {listing.status.value})")


@main.command()
@click.argument("listing_id", type=int)
@click.option("--admin", required=True, help="Reviewer user id")
@click.option("--summary", default="", help="Reviewer note")
@click.pass_context
def approve(ctx: click.Context, listing_id: int, admin: str, summary: str):
    """Approve a held listing and make it active."""
    _override(ctx, listing_id, True, admin, summary)


@main.command()
@click.argument("listing_id", type=int)
@click.option("--admin", required=True, help="Reviewer user id")
@click.option("--summary", default="", help="Reviewer note")
@click.pass_context
def reject(ctx: click.Context, listing_id: int, admin: str, summary: str):
    """Reject a held listing."""
    _override(ctx, listing_id, False, admin, summary)


# ── Sellers ──────────────────────────────────────────────────────────


@main.command()
@click.argument("user_id")
@click.option("--limit", default=50, show_default=True)
@click.option("--offset", default=0, show_default=True)
@click.pass_context
def violations(ctx: click.Context, user_id: str, limit: int, offset: int):
    """Show a seller's violation history."""
    pipeline = _pipeline(ctx)
    user = pipeline.users.get(user_id)
    events = pipeline.moderation_store.get_violation_history(user_id, limit=limit, offset=offset)

    count = user.violation_count if user else 0
    flagged = user.is_flagged if user else False
    console.print(
        f"\n[bold]{user_id}[/] — violations: {count}, "
        f"flagged: {'[red]yes[/]' if flagged else '[green]no[/]'}\n"
    )
    if not events:
        console.print("[dim]No violation events recorded.[/]")
        return

    table = Table(title="Violation events")
    table.add_column("When", style="dim")
    table.add_column("Listing", justify="right")
    table.add_column("Severity")
    table.add_column("Codes", style="cyan")
    table.add_column("Summary")
    for e in events:
        table.add_row(
            e.created_at[:19],
            str(e.listing_id) if e.listing_id is not None else "-",
            e.severity.value,
            ", ".join(v.code for v in e.violations) or "-",
            e.summary[:60],
        )
    console.print(table)


@main.command()
@click.argument("user_id")
@click.pass_context
def unflag(ctx: click.Context, user_id: str):
    """Clear a seller's high-risk flag."""
    pipeline = _pipeline(ctx)
    pipeline.users.set_flag_status(user_id, False)
    console.print(f"[green]✓[/] {user_id} unflagged")


# ── Housekeeping ─────────────────────────────────────────────────────


@main.command()
@click.pass_context
def purge(ctx: click.Context):
    """Delete expired decision-cache and idempotency entries."""
    pipeline = _pipeline(ctx)
    summary = pipeline.moderation_store.purge_expired_entries()
    console.print(
        f"Purged {summary.cache_entries} cache entries and "
        f"{summary.idempotency_records} idempotency records."
    )


if __name__ == "__main__":
    main()
