"""CLI entry point for the deal_observer daemon."""

from __future__ import annotations

import asyncio
import logging
import sys
from typing import Awaitable, Callable, TypeVar

import click

from deal_observer.config import load_config
from deal_observer.daemon import DealObserverDaemon, run_daemon
from deal_observer.errors import DealObserverError

T = TypeVar("T")


def _with_daemon(cfg, action: Callable[[DealObserverDaemon], Awaitable[T]]) -> T:
    """Run one action against an initialized store, then close it."""

    async def _run() -> T:
        daemon = DealObserverDaemon(cfg)
        await daemon.store.initialize()
        try:
            return await action(daemon)
        finally:
            await daemon.store.close()

    try:
        return asyncio.run(_run())
    except DealObserverError as exc:
        click.echo(f"Error: {exc}", err=True)
        sys.exit(1)


@click.group()
@click.option("-c", "--config", "config_path", default=None, help="Path to config TOML file")
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging")
@click.pass_context
def cli(ctx: click.Context, config_path: str | None, verbose: bool) -> None:
    """deal_observer - Filecoin claim observer and payload CID resolver."""
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path
    ctx.obj["verbose"] = verbose

    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


# ── Daemon ─────────────────────────────────────────────


@cli.command()
@click.pass_context
def run(ctx: click.Context) -> None:
    """Start the observer daemon (observe, resolve and submit loops)."""
    cfg = load_config(ctx.obj["config_path"])
    if cfg.submit_enabled and not cfg.spark_api_token:
        click.echo("Warning: SPARK_API_TOKEN is not set, submissions will be rejected.", err=True)

    click.echo(f"Starting deal_observer daemon (rpc: {cfg.rpc_url})")
    asyncio.run(run_daemon(cfg))


# ── Info ───────────────────────────────────────────────


@cli.command()
@click.pass_context
def status(ctx: click.Context) -> None:
    """Show daemon configuration."""
    cfg = load_config(ctx.obj["config_path"])
    click.echo(f"RPC URL:        {cfg.rpc_url}")
    click.echo(f"RPC token:      {'***configured***' if cfg.rpc_token else '(not set)'}")
    click.echo(f"Piece indexer:  {cfg.piece_indexer_url}")
    click.echo(f"Peer ID source: {cfg.peer_id_contract}")
    click.echo(f"Finality:       {cfg.finality_epochs} epochs")
    click.echo(f"Intervals:      observe {cfg.observe_interval}s, "
               f"resolve {cfg.resolve_interval}s, submit {cfg.submit_interval}s")
    click.echo(f"Submission:     {'enabled' if cfg.submit_enabled else 'disabled'} "
               f"({cfg.spark_api_url})")
    click.echo(f"API token:      {'***configured***' if cfg.spark_api_token else '(not set)'}")
    click.echo(f"DB path:        {cfg.db_path}")


@cli.command()
@click.pass_context
def stats(ctx: click.Context) -> None:
    """Show counts of stored deals by payload state."""
    cfg = load_config(ctx.obj["config_path"])
    s = _with_daemon(cfg, lambda d: d.stats.snapshot())

    click.echo(f"Total deals:              {s.total}")
    click.echo(f"  Not queried yet:        {s.not_queried}")
    click.echo(f"  Unresolved:             {s.unresolved}")
    click.echo(f"  Resolved:               {s.resolved}")
    click.echo(f"  Terminally unretrievable: {s.terminally_unretrievable}")
    click.echo(f"Missing payload CID:      {s.missing_payload_cid}")
    click.echo(f"Reverted:                 {s.reverted}")
    click.echo(f"Submitted:                {s.submitted}")
    if s.highest_activated_epoch is not None:
        click.echo(f"Last observed epoch:      {s.highest_activated_epoch}")


@cli.command()
@click.argument("deal_id", type=int)
@click.pass_context
def show(ctx: click.Context, deal_id: int) -> None:
    """Show one stored deal."""
    cfg = load_config(ctx.obj["config_path"])
    deal = _with_daemon(cfg, lambda d: d.store.get_deal(deal_id))
    if deal is None:
        click.echo(f"No deal with id {deal_id}", err=True)
        sys.exit(1)

    click.echo(f"Deal {deal.id}")
    click.echo(f"  Activated at:   {deal.activated_at_epoch}")
    click.echo(f"  Miner:          f0{deal.miner_id}")
    click.echo(f"  Client:         f0{deal.client_id}")
    click.echo(f"  Piece:          {deal.piece_cid} ({deal.piece_size} bytes)")
    click.echo(f"  Term:           start {deal.term_start_epoch}, "
               f"min {deal.term_min}, max {deal.term_max}")
    click.echo(f"  Sector:         {deal.sector_id}")
    click.echo(f"  Payload CID:    {deal.payload_cid or '(none)'}")
    click.echo(f"  State:          {deal.payload_retrievability_state.value}")
    click.echo(f"  Last attempt:   {deal.last_payload_retrieval_attempt or '(never)'}")
    click.echo(f"  Submitted at:   {deal.submitted_at or '(not submitted)'}")
    if deal.reverted:
        click.echo("  REVERTED")


# ── One-shot passes ────────────────────────────────────


@cli.command()
@click.pass_context
def observe(ctx: click.Context) -> None:
    """Run a single chain observation pass."""
    cfg = load_config(ctx.obj["config_path"])
    report = _with_daemon(cfg, lambda d: d.run_chain_observation_pass())

    click.echo(f"Chain head:   {report.chain_head}")
    click.echo(f"Finalized:    {report.finalized}")
    click.echo(f"Heights:      {report.heights_processed} (from {report.start})")
    click.echo(f"Deals:        {report.deals_observed}")
    if report.failed_height is not None:
        click.echo(f"Stopped at height {report.failed_height}", err=True)
        sys.exit(1)


@cli.command()
@click.option("--max-deals", type=int, default=None, help="Deals to attempt in this pass")
@click.pass_context
def resolve(ctx: click.Context, max_deals: int | None) -> None:
    """Run a single payload CID resolution pass."""
    cfg = load_config(ctx.obj["config_path"])
    resolved = _with_daemon(cfg, lambda d: d.run_payload_resolution_pass(max_deals))
    click.echo(f"Resolved {resolved} payload CIDs")


@cli.command()
@click.option("--batch-size", type=int, default=None, help="Deals per submission batch")
@click.pass_context
def submit(ctx: click.Context, batch_size: int | None) -> None:
    """Submit eligible deals to spark-api once."""
    cfg = load_config(ctx.obj["config_path"])
    report = _with_daemon(cfg, lambda d: d.run_submission_pass(batch_size))
    click.echo(
        f"Submitted {report.submitted} deals "
        f"(ingested {report.ingested}, skipped {report.skipped})"
    )


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
