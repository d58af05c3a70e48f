"""CLI entry point for Garimpo."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Awaitable, Callable, Optional, TypeVar

import click

from garimpo import __version__
from garimpo.catalog import (
    ALL_NICHES,
    CatalogController,
    ProductForm,
    ValidationError,
    aggregate,
)
from garimpo.config import AppConfig, load_config
from garimpo.enrichment import EnrichmentGateway
from garimpo.financials import compute_financials_from_config
from garimpo.io_export import (
    InputSchemaError,
    read_performance_csv,
    write_catalog_csv,
    write_catalog_xlsx,
)
from garimpo.performance import ingest_performance_frame, latest_roi_percent
from garimpo.providers import build_provider
from garimpo.schema import AdStatus, Niche, PixelStatus, Platform
from garimpo.store import StoreUnavailableError, build_record_store

T = TypeVar("T")

_PLATFORMS = [p.value for p in Platform]
_NICHES = [n.value for n in Niche]


def _brl(v: float) -> str:
    return f"R$ {v:,.2f}".replace(",", "X").replace(".", ",").replace("X", ".")


def _echo_audit_stats(stats: dict) -> None:
    pstats = stats.get("provider_stats", {})
    cstats = stats.get("cache_stats", {})
    if pstats:
        click.echo(
            f"   API calls: {pstats.get('call_count', 0)}  |  Retries: {pstats.get('retry_count', 0)}"
            f"  |  Tokens: {pstats.get('total_tokens', 0):,}"
        )
        if pstats.get("last_error"):
            click.echo(f"   Last error: {pstats['last_error']}", err=True)
    if cstats:
        click.echo(
            f"   Cache:     hits={cstats.get('hits', 0)}  misses={cstats.get('misses', 0)}  "
            f"hit_rate={cstats.get('hit_rate', 0) * 100:.1f}%"
        )


def _run(cfg: AppConfig, work: Callable[[CatalogController], Awaitable[T]]) -> T:
    """Open the store, load the catalog, run *work*, print notices, close."""

    async def main() -> T:
        store = build_record_store(cfg)
        controller = CatalogController(store, cfg)
        try:
            await controller.load()
            return await work(controller)
        finally:
            await store.close()
            for notice in controller.pop_notices():
                click.echo(f"⚠️  {notice}", err=True)

    return asyncio.run(main())


@click.group()
@click.version_option(version=__version__, prog_name="garimpo")
@click.option("--config", "config_path", default="config.yaml", help="Config file path")
@click.option("-v", "--verbose", is_flag=True, help="Debug logging")
@click.pass_context
def cli(ctx: click.Context, config_path: str, verbose: bool):
    """Garimpo — affiliate offer catalog and profitability calculator."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    try:
        ctx.obj = load_config(config_path)
    except (TypeError, ValueError) as exc:
        raise click.ClickException(f"Invalid config {config_path}: {exc}")


@cli.command()
@click.option("--price", type=float, default=97.0, show_default=True, help="List price (R$)")
@click.option("--commission", type=float, default=50.0, show_default=True, help="Commission %")
@click.option("--cpc", type=float, default=1.5, show_default=True, help="Average CPC (R$)")
@click.pass_obj
def calc(cfg: AppConfig, price: float, commission: float, cpc: float):
    """Profitability verdict without saving anything."""
    try:
        fa = compute_financials_from_config(price, commission, cpc, cfg.financials)
    except ValueError as exc:
        raise click.ClickException(str(exc))

    clicks = cfg.financials.assumed_clicks_per_sale
    click.echo(f"💰 Commission per sale : {_brl(fa.total_commission_cash)}")
    click.echo(f"📣 Ads cost per sale    : {_brl(fa.total_ads_cost)}  ({clicks} clicks × {_brl(cpc)})")
    click.echo(f"📈 Profit per sale      : {_brl(fa.profit_per_sale)}")
    click.echo(f"   ROI                  : {fa.roi_percent:.1f}%")
    click.echo(f"   Break-even clicks    : {fa.break_even_clicks}")
    click.echo(f"   Max CPC recommended  : {_brl(fa.max_cpc_recommended)}")
    click.echo(f"   Verdict              : {fa.viability_status.value}")


@cli.command()
@click.option("--name", required=True, help="Product name")
@click.option("--link", required=True, help="Sales page URL")
@click.option("--platform", type=click.Choice(_PLATFORMS), default=Platform.HOTMART.value, show_default=True)
@click.option("--niche", type=click.Choice(_NICHES), default=Niche.FINANCAS.value, show_default=True)
@click.option("--price", type=float, default=97.0, show_default=True)
@click.option("--commission", type=float, default=50.0, show_default=True)
@click.option("--cpc", type=float, default=1.5, show_default=True)
@click.option("--min-bid", type=float, default=None, help="Lowest bid from the keyword planner")
@click.option("--max-bid", type=float, default=None, help="Highest bid from the keyword planner")
@click.option("--enrich/--no-enrich", default=False, help="Run the AI audit before saving")
@click.option(
    "--mode",
    type=click.Choice(["live", "dry"]),
    default="live",
    help="live = call API; dry = mock",
)
@click.option("--id", "record_id", default=None, help="Re-submit an existing record")
@click.pass_obj
def add(cfg: AppConfig, name, link, platform, niche, price, commission, cpc,
        min_bid, max_bid, enrich, mode, record_id):
    """Register (or re-submit) a product."""
    form = ProductForm(
        name=name,
        link=link,
        platform=Platform(platform),
        niche=Niche(niche),
        actual_price=price,
        actual_comm_percent=commission,
        avg_cpc=cpc,
        min_bid_cpc=min_bid,
        max_bid_cpc=max_bid,
    )
    errors = form.validate()
    if errors:
        raise click.ClickException("; ".join(errors))

    async def work(controller: CatalogController):
        enrichment = None
        if enrich:
            gateway = EnrichmentGateway.from_config(build_provider(cfg, mode), cfg)
            if not gateway.available:
                click.echo("⚠️  AI audit unavailable — saving with manual defaults.", err=True)
            enrichment = await gateway.enrich(name, link, niche)
            if gateway.available and enrichment is None:
                click.echo("⚠️  AI audit failed — saving with manual defaults.", err=True)
            if gateway.available:
                _echo_audit_stats(gateway.stats())
        return await controller.create_record(form, enrichment, record_id=record_id)

    try:
        record = _run(cfg, work)
    except ValidationError as exc:
        raise click.ClickException(str(exc))

    fa = record.financial_analysis
    click.echo(f"✅ Saved {record.name} [{record.id}]")
    click.echo(f"   ROI {fa.roi_percent:.1f}% — {fa.viability_status.value}")
    if record.ads_assets:
        click.echo(f"   Keywords: {', '.join(record.ads_assets.keywords)}")


@cli.command("list")
@click.option("--search", default="", help="Filter by name (substring)")
@click.option("--niche", type=click.Choice([ALL_NICHES] + _NICHES), default=ALL_NICHES)
@click.pass_obj
def list_cmd(cfg: AppConfig, search: str, niche: str):
    """List products, newest first, with aggregate stats."""

    async def work(controller: CatalogController):
        return controller.filtered(search, niche)

    records = _run(cfg, work)
    for r in records:
        fa = r.financial_analysis
        click.echo(
            f"{r.id[:8]}  {r.name[:32]:<32}  {r.niche.value:<24}  "
            f"ROI {fa.roi_percent:7.1f}%  {fa.viability_status.value:<10}  "
            f"{r.lifecycle_status:<7}  latest {latest_roi_percent(r):7.1f}%"
        )
    stats = aggregate(records)
    click.echo("")
    click.echo(
        f"📊 {stats.count} product(s) | potential commission {_brl(stats.total_potential_commission_cash)} "
        f"| average ROI {stats.average_roi_percent:.1f}%"
    )


@cli.command()
@click.argument("record_id")
@click.option("--yes", is_flag=True, help="Skip the confirmation prompt")
@click.pass_obj
def delete(cfg: AppConfig, record_id: str, yes: bool):
    """Delete a product from every store."""
    if not yes:
        click.confirm(f"Delete {record_id}?", abort=True)

    async def work(controller: CatalogController):
        await controller.delete_record(record_id)

    _run(cfg, work)
    click.echo(f"🗑️  Deleted {record_id}")


@cli.command()
@click.argument("record_id")
@click.option("--spent", type=float, default=None, help="Total spent so far (R$)")
@click.option("--clicks", type=int, default=None, help="Real clicks")
@click.option("--conversions", type=int, default=None, help="Real conversions")
@click.option("--sales-value", type=float, default=None, help="Real sales value (R$)")
@click.option("--account", default=None, help="Ad account name")
@click.option("--campaign", default=None, help="Campaign name")
@click.option("--launch-date", default=None, help="Launch date (YYYY-MM-DD)")
@click.option("--ad-status", type=click.Choice([s.value for s in AdStatus]), default=None)
@click.option("--pixel-status", type=click.Choice([s.value for s in PixelStatus]), default=None)
@click.option("--bid-strategy", default=None)
@click.pass_obj
def perf(cfg: AppConfig, record_id: str, spent, clicks, conversions, sales_value,
         account, campaign, launch_date, ad_status, pixel_status, bid_strategy):
    """Record real campaign figures (only the given fields change)."""
    partial = {
        k: v
        for k, v in {
            "totalSpent": spent,
            "actualClicks": clicks,
            "conversions": conversions,
            "salesValue": sales_value,
            "accountName": account,
            "campaignName": campaign,
            "launchDate": launch_date,
            "adStatus": ad_status,
            "pixelStatus": pixel_status,
            "bidStrategy": bid_strategy,
        }.items()
        if v is not None
    }
    if not partial:
        raise click.ClickException("Nothing to update — pass at least one field.")

    async def work(controller: CatalogController):
        return await controller.update_performance(record_id, partial)

    try:
        record = _run(cfg, work)
    except KeyError:
        raise click.ClickException(f"No product with id {record_id}")
    except ValueError as exc:
        raise click.ClickException(str(exc))

    p = record.performance
    click.echo(f"✅ {record.name}: {record.lifecycle_status}")
    click.echo(f"   Spent {_brl(p.total_spent)} | clicks {p.actual_clicks} | conversions {p.conversions}")
    click.echo(
        f"   Realized ROI {latest_roi_percent(record):.1f}% "
        f"(estimated {record.financial_analysis.roi_percent:.1f}%)"
    )


@cli.command("ingest-perf")
@click.option("--input", "input_path", required=True, help="Path to performance CSV")
@click.pass_obj
def ingest_perf(cfg: AppConfig, input_path: str):
    """Bulk-merge real performance figures from a CSV keyed by id."""
    try:
        df = read_performance_csv(input_path)
    except InputSchemaError as exc:
        raise click.ClickException(str(exc))

    async def work(controller: CatalogController):
        merged, updated, unmatched = ingest_performance_frame(controller.records, df)
        ids = set(df["id"].astype(str).str.strip())
        await controller.save_records(r for r in merged if r.id in ids)
        return updated, unmatched

    updated, unmatched = _run(cfg, work)
    click.echo(f"✅ Updated {updated} product(s)")
    if unmatched:
        click.echo(f"   Unmatched ids: {', '.join(unmatched)}", err=True)


@cli.command()
@click.option("--out", "out_path", default="output/meu_garimpo.xlsx", show_default=True,
              help="Output file (.xlsx or .csv)")
@click.pass_obj
def export(cfg: AppConfig, out_path: str):
    """Export the catalog to Excel or CSV."""

    async def work(controller: CatalogController):
        return list(controller.records)

    records = _run(cfg, work)
    if Path(out_path).suffix.lower() == ".csv":
        write_catalog_csv(records, out_path)
    else:
        write_catalog_xlsx(records, out_path)
    click.echo(f"✅ Exported {len(records)} product(s) to {out_path}")


@cli.command()
@click.pass_obj
def sync(cfg: AppConfig):
    """Push writes made while the remote store was unreachable."""

    async def work(controller: CatalogController) -> Optional[int]:
        if controller.store.remote is None:
            return None
        try:
            return await controller.store.sync_pending()
        except StoreUnavailableError as exc:
            raise click.ClickException(str(exc))

    pushed = _run(cfg, work)
    if pushed is None:
        click.echo("Remote store not configured — nothing to sync.")
    else:
        click.echo(f"✅ Synced {pushed} pending write(s)")


if __name__ == "__main__":
    cli()
