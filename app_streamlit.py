"""
Trade Viewer - Streamlit Edition
================================

Browser front end: import a broker CSV, browse trades, attach up to three
screenshots per trade and export everything to PDF.
Run with: streamlit run app_streamlit.py
"""

import pandas as pd
import plotly.graph_objects as go
import streamlit as st

from csv_normalizer import format_money, format_number
from trade_store import IMAGE_SLOTS
from trade_viewer_session import TradeViewerSession
from viewer_config import ViewerConfig, configure_logging, save_settings

IMAGE_TYPES = ["png", "jpg", "jpeg", "gif", "bmp", "webp"]


# ============================================================================
# Initialize Session State
# ============================================================================

if 'session' not in st.session_state:
    config = ViewerConfig.load()
    configure_logging(config.log_level)
    st.session_state.session = TradeViewerSession(config)
    st.session_state.seen_uploads = set()
    st.session_state.uploader_nonce = {}
    st.session_state.pdf_bytes = None

session: TradeViewerSession = st.session_state.session
store = session.store


def _uploader_key(trade_id: int, slot: int) -> str:
    nonce = st.session_state.uploader_nonce.get((trade_id, slot), 0)
    return f"img-{session.import_batch}-{trade_id}-{slot}-{nonce}"


def _clear_uploader(trade_id: int, slot: int) -> None:
    """Give the slot's uploader a fresh key so the old file is forgotten."""
    st.session_state.uploader_nonce[(trade_id, slot)] = st.session_state.uploader_nonce.get((trade_id, slot), 0) + 1


# ============================================================================
# Page Configuration
# ============================================================================

st.set_page_config(
    page_title="Trade Viewer",
    page_icon="📈",
    layout="wide",
)

st.title("📈 Trade Viewer")

# Attach any decodes that finished since the last rerun
session.collect_images()

# Sidebar controls
with st.sidebar:
    st.subheader("📁 Import Data")
    uploaded_file = st.file_uploader("Upload CSV", type="csv")
    if uploaded_file:
        upload_id = ("csv", uploaded_file.name, uploaded_file.size)
        if upload_id not in st.session_state.seen_uploads:
            st.session_state.seen_uploads.add(upload_id)
            text = uploaded_file.getvalue().decode("utf-8-sig", errors="replace")
            if session.import_csv(text, filename=uploaded_file.name, mime_type=uploaded_file.type):
                st.session_state.pdf_bytes = None

    st.divider()
    st.subheader("💾 Export")
    if session.is_exporting:
        export_label = "Preparing Export..."
    elif session.images_loading:
        export_label = "Loading Images..."
    else:
        export_label = "Export All Trades"
    if st.button(export_label, disabled=session.export_blocked):
        with st.spinner("Preparing PDF export..."):
            st.session_state.pdf_bytes = session.export_pdf()
    if st.session_state.pdf_bytes:
        st.download_button(
            label="Download PDF",
            data=st.session_state.pdf_bytes,
            file_name=session.config.export_filename,
            mime="application/pdf",
        )
    if store.trades:
        st.download_button(
            label="Download CSV",
            data=store.to_dataframe().to_csv(index=False),
            file_name="trades.csv",
            mime="text/csv",
        )

    st.divider()
    with st.expander("Debug Options"):
        symbol = session.config.override_symbol
        multiplier = st.number_input(f"{symbol} P/L Multiplier", value=float(session.config.instrument_multiplier))
        col1, col2 = st.columns(2)
        with col1:
            if st.button("Apply"):
                changed = session.override_pnl(multiplier)
                session.notify(f"Recalculated P/L for {changed} {symbol} trade(s)")
        with col2:
            if st.button("Save as default"):
                save_settings({"instrument_multiplier": multiplier})
                session.config.instrument_multiplier = multiplier
        st.caption("Raw Trade Data")
        st.json(store.selected_trade.to_dict() if store.selected_trade else {})


# Main content
if not store.trades:
    st.info("👈 Upload a CSV file to get started")
else:
    summary = store.compute_summary()
    col1, col2, col3, col4 = st.columns(4)
    with col1:
        st.metric("Total P&L", format_money(summary['total_pnl']))
    with col2:
        st.metric("# Trades", len(store.trades))
    with col3:
        st.metric("Win Ratio", f"{summary['win_ratio']*100:.1f}%")
    with col4:
        st.metric("Avg P&L", format_money(summary['avg_pnl']))

    eq_df = store.equity_curve()
    if not eq_df.empty:
        fig = go.Figure()
        fig.add_trace(go.Scatter(
            x=eq_df["time"],
            y=eq_df["equity"],
            mode="lines+markers",
            name="Cumulative P&L",
            line=dict(color="#1f77b4", width=2),
            marker=dict(size=6),
            fill="tozeroy",
            fillcolor="rgba(31, 119, 180, 0.2)",
            hovertemplate="<b>%{x|%Y-%m-%d %H:%M}</b><br>P&L: $%{y:,.2f}<extra></extra>"
        ))
        fig.update_layout(
            title="Cumulative P&L",
            xaxis_title="Exit Time",
            yaxis_title="Cumulative P&L ($)",
            template="plotly_white",
            height=300,
            hovermode="x unified",
        )
        st.plotly_chart(fig, width='stretch')

    st.divider()
    list_col, detail_col = st.columns([1, 2])

    with list_col:
        st.subheader("📋 Trades")
        trade_ids = [t.id for t in store.trades]
        labels = {
            t.id: (f"{t.instrument} · {t.trade_type.value}{' · Loss' if t.profit_loss < 0 else ''}"
                   f" · {t.entry_display} · {t.pnl_label()}")
            for t in store.trades
        }
        current = store.selected_id if store.selected_id in trade_ids else trade_ids[0]
        chosen = st.radio(
            "Trades",
            trade_ids,
            index=trade_ids.index(current),
            format_func=lambda trade_id: labels[trade_id],
            label_visibility="collapsed",
        )
        session.select_trade(chosen)

    with detail_col:
        trade = store.selected_trade
        if trade is None:
            st.info("Select a trade from the list or upload a CSV file")
        else:
            header_col, pnl_col = st.columns([3, 1])
            with header_col:
                st.subheader(trade.instrument)
            with pnl_col:
                pnl_text = trade.pnl_label()
                if trade.should_display_as_negative:
                    st.error(pnl_text)
                else:
                    st.success(pnl_text)

            details = pd.DataFrame([
                ("Entry Time", trade.entry_display),
                ("Exit Time", trade.exit_display),
                ("Entry Price", format_number(trade.entry_price)),
                ("Exit Price", format_number(trade.exit_price)),
                ("Quantity", format_number(trade.quantity)),
                ("Type", trade.trade_type.value),
                ("Duration", trade.duration or "N/A"),
                ("Exit Reason", trade.exit_reason),
            ], columns=["Field", "Value"])
            st.dataframe(details, hide_index=True, width='stretch')

            st.markdown("**Screenshots**")
            slots = store.images_for(trade.id)
            for slot in range(IMAGE_SLOTS):
                image = slots[slot]
                if image is not None:
                    st.image(image.data, caption=f"Image {slot + 1}")
                    if st.button(f"Remove Image {slot + 1}", key=f"rm-{trade.id}-{slot}"):
                        session.remove_image(trade.id, slot)
                        _clear_uploader(trade.id, slot)
                        st.rerun()
                key = _uploader_key(trade.id, slot)
                label = f"Replace Image {slot + 1}" if image is not None else f"Add Image {slot + 1}"
                picked = st.file_uploader(label, type=IMAGE_TYPES, key=key)
                if picked is not None:
                    # fresh key either way so the same slot can take another file
                    _clear_uploader(trade.id, slot)
                    if session.upload_image(trade.id, slot, picked.getvalue(), picked.type, name=picked.name):
                        with st.spinner("Loading image..."):
                            session.collect_images(wait=True)
                    st.rerun()

            # keyed per import so a re-import starts with empty notes
            note = st.text_area("Notes", value=store.note_for(trade.id),
                                placeholder="Add notes about this trade...",
                                key=f"note-{session.import_batch}-{trade.id}")
            if note != store.note_for(trade.id):
                session.set_note(trade.id, note)

# Transient banner
if session.notification:
    st.toast(session.notification)
    session.notifier.clear()
