# streamlit_app/dashboard.py
from __future__ import annotations
import os
import time
import pandas as pd
import streamlit as st

from enums.trade_status import TradeStatus
from repositories.trade_repository import TradeRepository

DB_PATH = os.getenv("DB_PATH") or "./data/trenches.db"
trade_repo = TradeRepository(db_path=DB_PATH)

st.set_page_config(page_title="sol_trenches", layout="wide")
st.title("📊 sol_trenches")

# Sidebar
st.sidebar.header("Opciones")
auto_refresh = st.sidebar.checkbox("Auto-refresh", value=True)
interval_s   = st.sidebar.number_input("Intervalo (seg)", min_value=2, max_value=60, value=15, step=1)
limit_rows   = st.sidebar.number_input("Filas a mostrar", min_value=20, max_value=1000, value=200, step=20)


def _with_dates(df: pd.DataFrame) -> pd.DataFrame:
    for col in ("opened_at", "closed_at"):
        if col in df.columns:
            df[col] = pd.to_datetime(df[col], unit="s", errors="coerce")
    return df


tab1, tab2, tab3 = st.tabs(["Posiciones abiertas", "Cerradas", "Resumen"])

# --------------------------
# Posiciones abiertas
# --------------------------
with tab1:
    st.subheader("Posiciones abiertas (todas)")
    rows = trade_repo.list_recent(status=TradeStatus.OPEN, limit=int(limit_rows))
    if rows:
        df = _with_dates(pd.DataFrame(rows))
        users = sorted(df["user_id"].dropna().unique())
        selected_user = st.selectbox("Filtrar por usuario", options=["(Todos)"] + [str(u) for u in users])
        if selected_user != "(Todos)":
            df = df[df["user_id"] == int(selected_user)]
        cols = [c for c in ["id","user_id","token_address","entry_price","amount_sol","token_amount","opened_at"] if c in df.columns]
        st.dataframe(df[cols], use_container_width=True)
    else:
        st.info("No hay posiciones abiertas.")

# --------------------------
# Cerradas
# --------------------------
with tab2:
    st.subheader("Posiciones cerradas")
    rows = trade_repo.list_recent(status=TradeStatus.CLOSED, limit=int(limit_rows))
    if rows:
        dfc = _with_dates(pd.DataFrame(rows))

        reasons = sorted(dfc["close_reason"].dropna().unique())
        selected_reason = st.selectbox("Filtrar por motivo", options=["(Todos)"] + list(reasons))
        if selected_reason != "(Todos)":
            dfc = dfc[dfc["close_reason"] == selected_reason]

        min_pnl = st.number_input("PnL mínimo (%)", value=-100.0)
        max_pnl = st.number_input("PnL máximo (%)", value=1000.0)
        dfc = dfc[dfc["pnl_percent"].between(min_pnl, max_pnl)]

        pref = ["id","user_id","token_address","entry_price","exit_price","amount_sol",
                "pnl_sol","pnl_percent","close_reason","opened_at","closed_at"]
        cols = [c for c in pref if c in dfc.columns] + [c for c in dfc.columns if c not in pref]
        st.dataframe(dfc[cols], use_container_width=True)
    else:
        st.info("Aún no hay posiciones cerradas.")

# --------------------------
# Resumen
# --------------------------
with tab3:
    st.subheader("Resumen de PnL")
    resumen = trade_repo.summary()
    c1, c2, c3, c4 = st.columns(4)
    c1.metric("Abiertas", f"{resumen['open_positions']}")
    c2.metric("Cerradas", f"{resumen['closed_trades']}")
    c3.metric("PnL total (SOL)", f"{resumen['sol_pnl_total']:.6f}")
    c4.metric("Win rate", f"{resumen['win_rate_percent']:.1f}%")
    if resumen["by_reason"]:
        st.bar_chart(pd.Series(resumen["by_reason"], name="cierres"))

# --------------------------
# Auto-refresh
# --------------------------
if auto_refresh:
    time.sleep(float(interval_s))
    st.rerun()
