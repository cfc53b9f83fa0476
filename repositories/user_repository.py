"""
UserRepository para sol_trenches (SQLite).
Mantiene usuarios de Telegram, sus wallets custodiadas (clave cifrada) y sus ajustes.

Cada usuario tiene entre 1 y max_wallets_per_user filas en `wallets` y solo
una activa; la activa se copia en `users` (wallet_address, encrypted_private_key)
para que trading, saldo y retiradas no tengan que saber de multi-wallet.
"""

from __future__ import annotations
from contextlib import contextmanager
from typing import Optional
import sqlite3
import os

from models.user import User
from models.wallet import Wallet
from utils.log_config import log_function

DB_PATH = os.getenv(
    "DB_PATH",
    os.path.join(os.path.dirname(__file__), "../data/trenches.db")
)


class UserRepository:
    def __init__(self, db_path: str = DB_PATH):
        self.db_path = db_path
        os.makedirs(os.path.dirname(os.path.abspath(db_path)), exist_ok=True)
        self._ensure_table()

    def _connect(self):
        conn = sqlite3.connect(self.db_path, timeout=10)
        conn.row_factory = sqlite3.Row
        return conn

    @contextmanager
    def _immediate(self):
        # escritura con el lock de la BD tomado desde el principio
        conn = self._connect()
        try:
            conn.execute("BEGIN IMMEDIATE")
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _ensure_table(self):
        conn = self._connect()
        conn.execute('''CREATE TABLE IF NOT EXISTS users (
            id                    INTEGER PRIMARY KEY AUTOINCREMENT,
            telegram_id           TEXT NOT NULL UNIQUE,
            wallet_address        TEXT NOT NULL,
            encrypted_private_key TEXT NOT NULL,
            pin_hash              TEXT,
            auto_tp_enabled       INTEGER NOT NULL DEFAULT 1,
            auto_sl_enabled       INTEGER NOT NULL DEFAULT 1,
            created_at            INTEGER NOT NULL
        )''')
        conn.execute('''CREATE TABLE IF NOT EXISTS wallets (
            id                    INTEGER PRIMARY KEY AUTOINCREMENT,
            user_id               INTEGER NOT NULL,
            wallet_address        TEXT NOT NULL,
            encrypted_private_key TEXT NOT NULL,
            is_active             INTEGER NOT NULL DEFAULT 0,
            created_at            INTEGER NOT NULL
        )''')
        conn.execute("CREATE INDEX IF NOT EXISTS ix_wallets_user ON wallets(user_id)")
        conn.execute("CREATE UNIQUE INDEX IF NOT EXISTS ux_wallets_active ON wallets(user_id) WHERE is_active = 1")
        # usuarios de antes de multi-wallet: su wallet pasa a ser la activa
        conn.execute('''
            INSERT INTO wallets (user_id, wallet_address, encrypted_private_key, is_active, created_at)
            SELECT u.id, u.wallet_address, u.encrypted_private_key, 1, u.created_at
              FROM users u
             WHERE NOT EXISTS (SELECT 1 FROM wallets w WHERE w.user_id = u.id)
        ''')
        conn.commit()
        conn.close()

    def find_by_telegram_id(self, telegram_id: str) -> Optional[User]:
        conn = self._connect()
        row = conn.execute("SELECT * FROM users WHERE telegram_id = ?", (str(telegram_id),)).fetchone()
        conn.close()
        return User.from_row(row) if row else None

    def get_by_id(self, user_id: int) -> Optional[User]:
        conn = self._connect()
        row = conn.execute("SELECT * FROM users WHERE id = ?", (user_id,)).fetchone()
        conn.close()
        return User.from_row(row) if row else None

    @log_function
    def create(self, telegram_id: str, wallet_address: str, encrypted_private_key: str) -> User:
        with self._immediate() as conn:
            cur = conn.execute(
                '''
                INSERT INTO users (telegram_id, wallet_address, encrypted_private_key, created_at)
                VALUES (?, ?, ?, strftime('%s','now'))
                ''',
                (str(telegram_id), wallet_address, encrypted_private_key)
            )
            conn.execute(
                '''
                INSERT INTO wallets (user_id, wallet_address, encrypted_private_key, is_active, created_at)
                VALUES (?, ?, ?, 1, strftime('%s','now'))
                ''',
                (cur.lastrowid, wallet_address, encrypted_private_key)
            )
            row = conn.execute("SELECT * FROM users WHERE id = ?", (cur.lastrowid,)).fetchone()
        return User.from_row(row)

    @log_function
    def update_pin(self, user_id: int, pin_hash: str) -> None:
        conn = self._connect()
        conn.execute("UPDATE users SET pin_hash = ? WHERE id = ?", (pin_hash, user_id))
        conn.commit()
        conn.close()

    @log_function
    def update_settings(self, user_id: int, auto_tp_enabled: bool | None = None,
                        auto_sl_enabled: bool | None = None) -> None:
        fields: list[str] = []
        values: list = []
        if auto_tp_enabled is not None:
            fields.append("auto_tp_enabled = ?")
            values.append(int(auto_tp_enabled))
        if auto_sl_enabled is not None:
            fields.append("auto_sl_enabled = ?")
            values.append(int(auto_sl_enabled))
        if not fields:
            return
        values.append(user_id)
        conn = self._connect()
        conn.execute(f"UPDATE users SET {', '.join(fields)} WHERE id = ?", tuple(values))
        conn.commit()
        conn.close()

    def count(self) -> int:
        conn = self._connect()
        n = conn.execute("SELECT COUNT(*) FROM users").fetchone()[0]
        conn.close()
        return int(n)

    def telegram_id_for(self, user_id: int) -> Optional[str]:
        conn = self._connect()
        row = conn.execute("SELECT telegram_id FROM users WHERE id = ?", (user_id,)).fetchone()
        conn.close()
        return row[0] if row else None

    # -------------------- WALLETS --------------------

    def list_wallets(self, user_id: int) -> list[Wallet]:
        """Wallets del usuario en orden de alta (la posición 1 es la más antigua)."""
        conn = self._connect()
        rows = conn.execute(
            "SELECT * FROM wallets WHERE user_id = ? ORDER BY created_at ASC, id ASC", (user_id,)
        ).fetchall()
        conn.close()
        return [Wallet.from_row(r) for r in rows]

    def get_wallet(self, user_id: int, wallet_id: int) -> Optional[Wallet]:
        conn = self._connect()
        row = conn.execute("SELECT * FROM wallets WHERE id = ? AND user_id = ?", (wallet_id, user_id)).fetchone()
        conn.close()
        return Wallet.from_row(row) if row else None

    def count_wallets(self, user_id: int) -> int:
        conn = self._connect()
        n = conn.execute("SELECT COUNT(*) FROM wallets WHERE user_id = ?", (user_id,)).fetchone()[0]
        conn.close()
        return int(n)

    @log_function
    def add_wallet(self, user_id: int, wallet_address: str, encrypted_private_key: str,
                   max_wallets: int) -> Optional[Wallet]:
        """Alta inactiva. None si el usuario ya tiene max_wallets (comprobado dentro de la transacción)."""
        with self._immediate() as conn:
            n = conn.execute("SELECT COUNT(*) FROM wallets WHERE user_id = ?", (user_id,)).fetchone()[0]
            if n >= max_wallets:
                return None
            cur = conn.execute(
                '''
                INSERT INTO wallets (user_id, wallet_address, encrypted_private_key, is_active, created_at)
                VALUES (?, ?, ?, 0, strftime('%s','now'))
                ''',
                (user_id, wallet_address, encrypted_private_key)
            )
            row = conn.execute("SELECT * FROM wallets WHERE id = ?", (cur.lastrowid,)).fetchone()
        return Wallet.from_row(row)

    @staticmethod
    def _activate(conn, user_id: int, wallet_id: int) -> None:
        row = conn.execute(
            "SELECT wallet_address, encrypted_private_key FROM wallets WHERE id = ? AND user_id = ?",
            (wallet_id, user_id)
        ).fetchone()
        # dos sentencias: el índice único de activa se comprueba fila a fila
        conn.execute("UPDATE wallets SET is_active = 0 WHERE user_id = ?", (user_id,))
        conn.execute("UPDATE wallets SET is_active = 1 WHERE id = ?", (wallet_id,))
        conn.execute(
            "UPDATE users SET wallet_address = ?, encrypted_private_key = ? WHERE id = ?",
            (row["wallet_address"], row["encrypted_private_key"], user_id)
        )

    @log_function
    def set_active_wallet(self, user_id: int, wallet_id: int) -> bool:
        with self._immediate() as conn:
            exists = conn.execute(
                "SELECT 1 FROM wallets WHERE id = ? AND user_id = ?", (wallet_id, user_id)
            ).fetchone()
            if not exists:
                return False
            self._activate(conn, user_id, wallet_id)
        return True

    @log_function
    def remove_wallet(self, user_id: int, wallet_id: int) -> str:
        """
        Borra una wallet del usuario. Devuelve 'removed', 'not_found' o 'last'
        (nunca se borra la única). Si era la activa pasa a activa la más antigua.
        """
        with self._immediate() as conn:
            row = conn.execute(
                "SELECT is_active FROM wallets WHERE id = ? AND user_id = ?", (wallet_id, user_id)
            ).fetchone()
            if row is None:
                return "not_found"
            n = conn.execute("SELECT COUNT(*) FROM wallets WHERE user_id = ?", (user_id,)).fetchone()[0]
            if n <= 1:
                return "last"
            conn.execute("DELETE FROM wallets WHERE id = ?", (wallet_id,))
            if row["is_active"]:
                oldest = conn.execute(
                    "SELECT id FROM wallets WHERE user_id = ? ORDER BY created_at ASC, id ASC LIMIT 1", (user_id,)
                ).fetchone()
                self._activate(conn, user_id, oldest["id"])
        return "removed"
