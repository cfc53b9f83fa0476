# repositories/trade_repository.py
from __future__ import annotations
import os
import sqlite3
from contextlib import contextmanager
from typing import Any, Optional

from enums.trade_status import TradeStatus
from models.trade import Trade
from schemas.trade_schema import TradeClose, TradeCreate
from utils.log_config import logger_manager, log_function

logger = logger_manager.setup_logger(__name__)

DB_PATH = os.getenv("DB_PATH", os.path.join(os.path.dirname(__file__), "../data/trenches.db"))


class LedgerError(Exception):
    pass


class DuplicatePositionError(LedgerError):
    """Ya existe una fila abierta para (user_id, token_address)."""


class TradeRepository:
    """
    Ledger de posiciones (UNA fila por intento de posición).
    - Precios en SOL/token (priceNative).
    - open -> closed es una transición única; close_trade está condicionado
      a status='open' y devuelve si realmente cerró la fila.
    - Índice único parcial: como mucho una fila 'open' por (user_id, token_address).
    """
    def __init__(self, db_path: str = DB_PATH) -> None:
        self.db_path = db_path
        parent = os.path.dirname(os.path.abspath(db_path))
        os.makedirs(parent, exist_ok=True)
        self._ensure_table()

    @contextmanager
    def _conn(self):
        conn = sqlite3.connect(self.db_path, timeout=10)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
        finally:
            conn.close()

    def _ensure_table(self) -> None:
        with self._conn() as c:
            c.execute("""
            CREATE TABLE IF NOT EXISTS trades (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                user_id        INTEGER NOT NULL,
                token_address  TEXT NOT NULL,
                entry_price    REAL NOT NULL,
                amount_sol     REAL NOT NULL,
                token_amount   REAL NOT NULL,
                status         TEXT NOT NULL DEFAULT 'open',
                opened_at      INTEGER NOT NULL,
                closed_at      INTEGER,
                -- CIERRE (nulos mientras está abierta)
                exit_price     REAL,
                pnl_sol        REAL,
                pnl_percent    REAL,
                close_reason   TEXT
            )
            """)
            c.execute("""
            CREATE UNIQUE INDEX IF NOT EXISTS ux_trades_open_position
                ON trades (user_id, token_address)
             WHERE status = 'open'
            """)
            c.execute("CREATE INDEX IF NOT EXISTS ix_trades_status ON trades (status)")
            c.commit()

    # -------------------- ALTAS --------------------

    @log_function
    def create_trade(
        self,
        user_id: int,
        token_address: str,
        entry_price: float,
        amount_sol: float,
        token_amount: float,
    ) -> Trade:
        """Abre una posición. Lanza DuplicatePositionError si ya hay una abierta."""
        return self.create(TradeCreate(user_id, token_address, entry_price, amount_sol, token_amount))

    def create(self, data: TradeCreate) -> Trade:
        with self._conn() as c:
            try:
                cur = c.execute("""
                    INSERT INTO trades (
                        user_id, token_address, entry_price, amount_sol, token_amount, status, opened_at
                    ) VALUES (?, ?, ?, ?, ?, 'open', strftime('%s','now'))
                """, (
                    data.user_id, data.token_address, float(data.entry_price),
                    float(data.amount_sol), float(data.token_amount)
                ))
                c.commit()
            except sqlite3.IntegrityError as e:
                raise DuplicatePositionError(
                    f"Posición abierta ya existente user={data.user_id} token={data.token_address}"
                ) from e
            row = c.execute("SELECT * FROM trades WHERE id = ?", (cur.lastrowid,)).fetchone()
        return Trade.from_row(row)

    # -------------------- CIERRES --------------------

    @log_function
    def close_trade(
        self,
        trade_id: int,
        exit_price: float,
        pnl_sol: float,
        pnl_percent: float,
        reason: Optional[str] = None,
    ) -> bool:
        """
        Cierra la fila SOLO si sigue abierta. True si esta llamada hizo la transición;
        False si ya estaba cerrada (doble cierre = no-op).
        """
        return self.close(TradeClose(trade_id, exit_price, pnl_sol, pnl_percent, reason))

    def close(self, data: TradeClose) -> bool:
        with self._conn() as c:
            cur = c.execute("""
                UPDATE trades
                   SET status = 'closed',
                       closed_at = strftime('%s','now'),
                       exit_price = ?,
                       pnl_sol = ?,
                       pnl_percent = ?,
                       close_reason = ?
                 WHERE id = ? AND status = 'open'
            """, (
                float(data.exit_price), float(data.pnl_sol), float(data.pnl_percent),
                data.reason, data.trade_id
            ))
            c.commit()
            closed = cur.rowcount == 1
        if not closed:
            logger.info(f"[ledger] close_trade({data.trade_id}) ignorado: ya estaba cerrada o no existe")
        return closed

    @log_function
    def reduce_position(self, trade_id: int, fraction: float) -> bool:
        """
        Venta parcial: descuenta la fracción vendida de amount_sol y token_amount
        en la fila abierta (el coste base restante queda explícito).
        """
        if not 0 < fraction < 1:
            raise ValueError(f"fracción inválida para venta parcial: {fraction}")
        keep = 1.0 - fraction
        with self._conn() as c:
            cur = c.execute("""
                UPDATE trades
                   SET amount_sol = amount_sol * ?,
                       token_amount = token_amount * ?
                 WHERE id = ? AND status = 'open'
            """, (keep, keep, trade_id))
            c.commit()
            return cur.rowcount == 1

    # -------------------- CONSULTAS --------------------

    def get_open_trades(self, user_id: int) -> list[Trade]:
        """Posiciones abiertas de un usuario, la más reciente primero."""
        with self._conn() as c:
            rows = c.execute("""
                SELECT * FROM trades
                 WHERE user_id = ? AND status = ?
                 ORDER BY opened_at DESC, id DESC
            """, (user_id, TradeStatus.OPEN.value)).fetchall()
            return [Trade.from_row(r) for r in rows]

    def get_all_open_trades(self) -> list[Trade]:
        """Todas las posiciones abiertas (solo para el monitor TP/SL)."""
        with self._conn() as c:
            rows = c.execute("SELECT * FROM trades WHERE status = ?", (TradeStatus.OPEN.value,)).fetchall()
            return [Trade.from_row(r) for r in rows]

    def get_trade_by_token(self, user_id: int, token_address: str) -> Optional[Trade]:
        with self._conn() as c:
            row = c.execute("""
                SELECT * FROM trades
                 WHERE user_id = ? AND token_address = ? AND status = ?
            """, (user_id, token_address, TradeStatus.OPEN.value)).fetchone()
            return Trade.from_row(row) if row else None

    def get_trade_by_id(self, trade_id: int) -> Optional[Trade]:
        with self._conn() as c:
            row = c.execute("SELECT * FROM trades WHERE id = ?", (trade_id,)).fetchone()
            return Trade.from_row(row) if row else None

    def get_closed_trades(self, user_id: int, limit: int = 10) -> list[Trade]:
        with self._conn() as c:
            rows = c.execute("""
                SELECT * FROM trades
                 WHERE user_id = ? AND status = ?
                 ORDER BY closed_at DESC, id DESC
                 LIMIT ?
            """, (user_id, TradeStatus.CLOSED.value, limit)).fetchall()
            return [Trade.from_row(r) for r in rows]

    def list_recent(self, status: TradeStatus | None = None, limit: int = 200) -> list[dict[str, Any]]:
        q = "SELECT * FROM trades"
        p: list = []
        if status:
            q += " WHERE status = ?"
            p.append(status.value)
        q += " ORDER BY id DESC LIMIT ?"
        p.append(limit)
        with self._conn() as c:
            return [dict(r) for r in c.execute(q, tuple(p)).fetchall()]

    def summary(self) -> dict[str, Any]:
        """
        Resumen rápido de posiciones cerradas: nº de cierres, PnL total en SOL,
        % de ganadoras y desglose por motivo de cierre.
        """
        with self._conn() as c:
            rows = c.execute("""
                SELECT pnl_sol, close_reason FROM trades WHERE status = 'closed'
            """).fetchall()
            open_count = c.execute("SELECT COUNT(*) FROM trades WHERE status = 'open'").fetchone()[0]
        closed = len(rows)
        total = sum(float(r["pnl_sol"] or 0.0) for r in rows)
        wins = sum(1 for r in rows if (r["pnl_sol"] or 0.0) > 0)
        by_reason: dict[str, int] = {}
        for r in rows:
            key = r["close_reason"] or "?"
            by_reason[key] = by_reason.get(key, 0) + 1
        return {
            "open_positions": int(open_count),
            "closed_trades": closed,
            "sol_pnl_total": total,
            "win_rate_percent": (wins / closed * 100.0) if closed else 0.0,
            "by_reason": by_reason,
        }
