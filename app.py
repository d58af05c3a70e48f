"""Streamlit app — Garimpo.

Three top-level tabs:
  ⛏️ Garimpar   — registration form with live profitability verdict and
                  optional AI audit
  📋 Catálogo   — search / niche filter, header stats, per-product detail,
                  real performance editor and delete
  📤 Exportar   — spreadsheet / CSV download and bulk performance import
"""

from __future__ import annotations

import asyncio
import io
from typing import Awaitable, Callable, TypeVar

import pandas as pd
import streamlit as st

from garimpo.catalog import ALL_NICHES, CatalogController, ProductForm, ValidationError
from garimpo.config import AppConfig, load_config
from garimpo.enrichment import EnrichmentGateway
from garimpo.financials import compute_financials_from_config
from garimpo.io_export import (
    InputSchemaError,
    catalog_csv_bytes,
    catalog_xlsx_bytes,
    read_performance_csv,
)
from garimpo.performance import (
    ingest_performance_frame,
    latest_roi_percent,
    realized_roi_percent,
)
from garimpo.providers import build_provider
from garimpo.schema import AdStatus, Niche, PixelStatus, Platform, ViabilityStatus
from garimpo.store import StorageStrategy, build_record_store, resolve_storage_strategy

T = TypeVar("T")

# ─────────────────────────────────────────────────────────────────────────────
# Constants
# ─────────────────────────────────────────────────────────────────────────────

EXPORT_FILENAME = "meu_garimpo"

VIABILITY_BADGES = {
    ViabilityStatus.PROFITABLE: "🟢 Lucrativo",
    ViabilityStatus.CAUTION: "🟡 Alerta",
    ViabilityStatus.LOSS: "🔴 Prejuízo",
}

# ─────────────────────────────────────────────────────────────────────────────
# Helpers
# ─────────────────────────────────────────────────────────────────────────────


def _brl(v: float) -> str:
    return f"R$ {v:,.2f}".replace(",", "X").replace(".", ",").replace("X", ".")


def _cfg() -> AppConfig:
    if "cfg" not in st.session_state:
        st.session_state.cfg = load_config("config.yaml")
    return st.session_state.cfg


def _run(work: Callable[[CatalogController], Awaitable[T]]) -> T:
    """Run *work* against the session controller with a fresh store.

    The storage strategy is resolved once per session; the HTTP client is
    opened and closed inside each ``asyncio.run`` so it never outlives its
    event loop.
    """
    cfg = _cfg()
    ctrl: CatalogController = st.session_state.controller

    async def main() -> T:
        ctrl.store = build_record_store(
            cfg,
            strategy=st.session_state.strategy,
            creds=st.session_state.creds,
        )
        try:
            return await work(ctrl)
        finally:
            await ctrl.store.close()

    return asyncio.run(main())


def _init_session() -> None:
    if "controller" in st.session_state:
        return
    cfg = _cfg()
    strategy, creds = resolve_storage_strategy(cfg.remote)
    st.session_state.strategy = strategy
    st.session_state.creds = creds
    st.session_state.controller = CatalogController(
        build_record_store(cfg, strategy=StorageStrategy.LOCAL), cfg
    )
    _run(lambda ctrl: ctrl.load())


def _show_notices() -> None:
    ctrl: CatalogController = st.session_state.controller
    for notice in ctrl.pop_notices():
        st.warning(f"⚠️ {notice}", icon="⚠️")


def _show_audit_stats(stats: dict) -> None:
    pstats = stats.get("provider_stats", {})
    cstats = stats.get("cache_stats", {})
    parts = []
    if pstats:
        parts.append(
            f"API calls: {pstats.get('call_count', 0)} · Retries: {pstats.get('retry_count', 0)} "
            f"· Tokens: {pstats.get('total_tokens', 0):,}"
        )
    if cstats:
        parts.append(f"Cache: {cstats.get('hits', 0)} hit(s), {cstats.get('misses', 0)} miss(es)")
    if parts:
        st.caption(" | ".join(parts))
    if pstats.get("last_error"):
        st.caption(f"Último erro da IA: {pstats['last_error']}")


def _render_verdict(fa) -> None:
    c1, c2, c3, c4 = st.columns(4)
    c1.metric("Comissão / venda", _brl(fa.total_commission_cash))
    c2.metric("Custo ads / venda", _brl(fa.total_ads_cost))
    c3.metric("Lucro / venda", _brl(fa.profit_per_sale))
    c4.metric("ROI estimado", f"{fa.roi_percent:.1f}%")
    st.markdown(
        f"**{VIABILITY_BADGES[fa.viability_status]}** · "
        f"break-even em {fa.break_even_clicks} cliques · "
        f"CPC máximo recomendado {_brl(fa.max_cpc_recommended)}"
    )


# ─────────────────────────────────────────────────────────────────────────────
# Tab 1 — Registration form + calculator
# ─────────────────────────────────────────────────────────────────────────────


def register_tab() -> None:
    cfg = _cfg()
    st.header("Novo produto")

    col_form, col_calc = st.columns([3, 2], gap="large")

    with col_form:
        name = st.text_input("Nome do produto")
        link = st.text_input("Link da página de vendas")
        c1, c2 = st.columns(2)
        platform = c1.selectbox("Plataforma", [p.value for p in Platform])
        niche = c2.selectbox("Nicho", [n.value for n in Niche])
        c1, c2, c3 = st.columns(3)
        price = c1.number_input("Preço (R$)", value=97.0, min_value=0.0, step=1.0)
        commission = c2.number_input("Comissão (%)", value=50.0, min_value=0.0, max_value=100.0, step=1.0)
        cpc = c3.number_input("CPC médio (R$)", value=1.5, min_value=0.0, step=0.1)

        with st.expander("Planejador de palavras-chave (opcional)"):
            c1, c2 = st.columns(2)
            min_bid = c1.number_input("Lance mínimo (R$)", value=0.0, min_value=0.0, step=0.1)
            max_bid = c2.number_input("Lance máximo (R$)", value=0.0, min_value=0.0, step=0.1)

        use_ai = st.checkbox("🤖 Auditar com IA antes de salvar", value=False)
        mode = st.radio(
            "Modo da IA",
            ["live", "dry"],
            horizontal=True,
            disabled=not use_ai,
            help="**live** chama a API Anthropic; **dry** usa respostas simuladas.",
        )

    with col_calc:
        st.markdown("#### Calculadora")
        try:
            fa = compute_financials_from_config(price, commission, cpc, cfg.financials)
        except ValueError as exc:
            st.error(str(exc))
        else:
            _render_verdict(fa)
            st.caption(
                f"Estimativa com 1 venda a cada {cfg.financials.assumed_clicks_per_sale} cliques."
            )

    form = ProductForm(
        name=name,
        link=link,
        platform=Platform(platform),
        niche=Niche(niche),
        actual_price=price,
        actual_comm_percent=commission,
        avg_cpc=cpc,
        min_bid_cpc=min_bid or None,
        max_bid_cpc=max_bid or None,
    )

    if st.button("💾 Salvar no garimpo", type="primary"):
        errors = form.validate()
        if errors:
            for e in errors:
                st.error(e)
            return

        async def work(ctrl: CatalogController):
            enrichment = None
            if use_ai:
                gateway = EnrichmentGateway.from_config(build_provider(cfg, mode), cfg)
                if not gateway.available:
                    st.warning("IA indisponível: salvando com valores manuais.", icon="⚠️")
                else:
                    enrichment = await gateway.enrich(name, link, niche)
                    if enrichment is None:
                        st.warning("A auditoria da IA falhou: salvando com valores manuais.", icon="⚠️")
                    _show_audit_stats(gateway.stats())
            return await ctrl.create_record(form, enrichment)

        with st.spinner("Salvando…"):
            try:
                record = _run(work)
            except ValidationError as exc:
                for e in exc.errors:
                    st.error(e)
                return
        st.success(f"✅ **{record.name}** salvo.")
        _show_notices()


# ─────────────────────────────────────────────────────────────────────────────
# Tab 2 — Catalog
# ─────────────────────────────────────────────────────────────────────────────


def _performance_editor(record) -> None:
    perf = record.performance
    with st.form(f"perf_{record.id}"):
        c1, c2, c3, c4 = st.columns(4)
        spent = c1.number_input("Gasto total (R$)", value=perf.total_spent if perf else 0.0, min_value=0.0, key=f"spent_{record.id}")
        clicks = c2.number_input("Cliques", value=perf.actual_clicks if perf else 0, min_value=0, step=1, key=f"clicks_{record.id}")
        conversions = c3.number_input("Conversões", value=perf.conversions if perf else 0, min_value=0, step=1, key=f"conv_{record.id}")
        sales = c4.number_input("Valor vendido (R$)", value=perf.sales_value if perf else 0.0, min_value=0.0, key=f"sales_{record.id}")
        c1, c2, c3 = st.columns(3)
        campaign = c1.text_input("Campanha", value=(perf.campaign_name or "") if perf else "", key=f"campaign_{record.id}")
        ad_options = [""] + [s.value for s in AdStatus]
        pixel_options = [""] + [s.value for s in PixelStatus]
        ad_status = c2.selectbox(
            "Status do anúncio",
            ad_options,
            index=ad_options.index(perf.ad_status.value) if perf and perf.ad_status else 0,
        )
        pixel_status = c3.selectbox(
            "Pixel",
            pixel_options,
            index=pixel_options.index(perf.pixel_status.value) if perf and perf.pixel_status else 0,
        )
        if st.form_submit_button("Atualizar desempenho"):
            partial = {
                "totalSpent": spent,
                "actualClicks": clicks,
                "conversions": conversions,
                "salesValue": sales,
            }
            if campaign:
                partial["campaignName"] = campaign
            if ad_status:
                partial["adStatus"] = ad_status
            if pixel_status:
                partial["pixelStatus"] = pixel_status
            _run(lambda ctrl: ctrl.update_performance(record.id, partial))
            st.rerun()


def _render_record(record) -> None:
    fa = record.financial_analysis
    badge = VIABILITY_BADGES[fa.viability_status]
    status = "🚀 Ativo" if record.is_live else "📝 Planejado"
    with st.expander(f"{record.name} · {record.niche.value} · {badge} · {status}"):
        st.markdown(f"[{record.link}]({record.link}) · {record.platform.value}")
        _render_verdict(fa)
        if record.is_live:
            st.metric(
                "ROI realizado",
                f"{realized_roi_percent(record):.1f}%",
                delta=f"{realized_roi_percent(record) - fa.roi_percent:.1f} pp vs estimado",
            )
        c1, c2 = st.columns(2)
        c1.metric("Nota da página", f"{record.sales_page_score:.0f}/10")
        if record.market_insights:
            mi = record.market_insights
            c2.markdown(
                f"Tendência **{mi.trend_status.value}** · concorrência **{mi.competition_level.value}**"
                + (f" · volume {mi.search_volume}" if mi.search_volume else "")
            )
        if record.ai_verdict:
            st.info(record.ai_verdict)
        if record.ads_assets:
            tab_kw, tab_titles, tab_desc = st.tabs(["Palavras-chave", "Títulos", "Descrições"])
            with tab_kw:
                st.code("\n".join(record.ads_assets.keywords))
            with tab_titles:
                st.code("\n".join(record.ads_assets.titles))
            with tab_desc:
                st.code("\n".join(record.ads_assets.descriptions))

        st.markdown("##### Desempenho real")
        _performance_editor(record)

        confirm = st.checkbox("Confirmo a exclusão", key=f"confirm_{record.id}")
        if st.button("🗑️ Excluir", key=f"delete_{record.id}", disabled=not confirm):
            _run(lambda ctrl: ctrl.delete_record(record.id))
            st.rerun()


def catalog_tab() -> None:
    ctrl: CatalogController = st.session_state.controller

    c1, c2, c3 = st.columns([3, 2, 1])
    search = c1.text_input("🔎 Buscar por nome")
    niche = c2.selectbox("Nicho", [ALL_NICHES] + [n.value for n in Niche])
    if c3.button("↻ Recarregar"):
        _run(lambda c: c.load())

    records = ctrl.filtered(search, niche)
    stats = ctrl.stats(search, niche)
    m1, m2, m3 = st.columns(3)
    m1.metric("Produtos", stats.count)
    m2.metric("Comissão potencial", _brl(stats.total_potential_commission_cash))
    m3.metric("ROI médio", f"{stats.average_roi_percent:.1f}%")
    st.divider()

    if not records:
        st.info("Nenhum produto encontrado.")
        return
    for record in records:
        _render_record(record)


# ─────────────────────────────────────────────────────────────────────────────
# Tab 3 — Export / import
# ─────────────────────────────────────────────────────────────────────────────


def export_tab() -> None:
    ctrl: CatalogController = st.session_state.controller
    records = ctrl.records

    st.header("Exportar")
    if records:
        preview = pd.DataFrame(
            [
                {
                    "name": r.name,
                    "niche": r.niche.value,
                    "viability": r.financial_analysis.viability_status.value,
                    "latestRoi": round(latest_roi_percent(r), 1),
                }
                for r in records
            ]
        )
        st.dataframe(preview, use_container_width=True)

    c1, c2 = st.columns(2)
    with c1:
        st.download_button(
            "⬇️ Excel",
            data=catalog_xlsx_bytes(records),
            file_name=f"{EXPORT_FILENAME}.xlsx",
            mime="application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
            disabled=not records,
        )
    with c2:
        st.download_button(
            "⬇️ CSV",
            data=catalog_csv_bytes(records),
            file_name=f"{EXPORT_FILENAME}.csv",
            mime="text/csv",
            disabled=not records,
        )

    st.divider()
    st.header("Importar desempenho")
    st.markdown(
        "CSV com uma linha por produto: coluna `id` e qualquer uma de "
        "`totalSpent` · `actualClicks` · `conversions` · `salesValue`."
    )
    uploaded = st.file_uploader("📄 CSV de desempenho", type=["csv"])
    if uploaded is not None and st.button("Importar", type="primary"):
        try:
            df = read_performance_csv(io.BytesIO(uploaded.read()))
        except InputSchemaError as exc:
            st.error(f"❌ **CSV schema error:** {exc}")
            return

        async def work(c: CatalogController):
            merged, updated, unmatched = ingest_performance_frame(c.records, df)
            ids = set(df["id"].astype(str).str.strip())
            await c.save_records(r for r in merged if r.id in ids)
            return updated, unmatched

        updated, unmatched = _run(work)
        st.success(f"✅ {updated} produto(s) atualizados.")
        if unmatched:
            st.warning(f"IDs sem correspondência: {', '.join(unmatched)}")
        _show_notices()


# ─────────────────────────────────────────────────────────────────────────────
# Entry point
# ─────────────────────────────────────────────────────────────────────────────


def main() -> None:
    st.set_page_config(
        page_title="Garimpo",
        page_icon="⛏️",
        layout="wide",
        initial_sidebar_state="collapsed",
    )
    _init_session()

    st.title("⛏️ Garimpo")
    backend = "remoto" if st.session_state.strategy is StorageStrategy.REMOTE else "local"
    st.caption(f"Catálogo de ofertas de afiliado · armazenamento {backend}")
    _show_notices()

    tab_register, tab_catalog, tab_export = st.tabs(
        ["⛏️ Garimpar", "📋 Catálogo", "📤 Exportar"]
    )

    with tab_register:
        register_tab()

    with tab_catalog:
        catalog_tab()

    with tab_export:
        export_tab()


if __name__ == "__main__":
    main()
