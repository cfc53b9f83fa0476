import sqlite3, os, time
from pathlib import Path
from utils.log_config import log_function


def _resolve_db_path() -> str:
    env_path = os.getenv("DB_PATH")
    if env_path:
        return str(Path(env_path).expanduser().resolve())
    root = Path(__file__).resolve().parents[1]
    default = root / "data" / "trenches.db"
    default.parent.mkdir(parents=True, exist_ok=True)
    return str(default)

DB_PATH = _resolve_db_path()


class RateLimitRepository:
    """Ventana fija por usuario: como mucho max_trades operaciones cada window_ms."""

    def __init__(self, db_path: str | None = None, max_trades: int = 5, window_ms: int = 60000,
                 clock=time.time):
        self.db_path = str(Path(db_path).expanduser().resolve()) if db_path else DB_PATH
        self.max_trades = max_trades
        self.window_s = window_ms / 1000.0
        self._clock = clock
        self._create_table()

    def _connect(self):
        conn = sqlite3.connect(self.db_path, timeout=10)
        conn.row_factory = sqlite3.Row
        return conn

    def _create_table(self):
        with self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS rate_limits(
                    user_id      INTEGER PRIMARY KEY,
                    trade_count  INTEGER NOT NULL,
                    window_start REAL NOT NULL
                )
            """)
            conn.commit()

    @log_function
    def check_and_increment(self, user_id: int) -> bool:
        """True si el usuario sigue dentro del límite (y consume una operación)."""
        now = self._clock()
        cutoff = now - self.window_s
        # una sola sentencia: leer y consumir no se pueden intercalar entre hilos
        with self._connect() as conn:
            cur = conn.execute("""
                INSERT INTO rate_limits (user_id, trade_count, window_start) VALUES (?, 1, ?)
                ON CONFLICT(user_id) DO UPDATE SET
                    trade_count  = CASE WHEN rate_limits.window_start < ? THEN 1
                                        ELSE rate_limits.trade_count + 1 END,
                    window_start = CASE WHEN rate_limits.window_start < ? THEN excluded.window_start
                                        ELSE rate_limits.window_start END
                WHERE rate_limits.window_start < ? OR rate_limits.trade_count < ?
            """, (user_id, now, cutoff, cutoff, cutoff, self.max_trades))
            conn.commit()
            return cur.rowcount == 1

    def remaining(self, user_id: int) -> int:
        now = self._clock()
        with self._connect() as conn:
            row = conn.execute('SELECT trade_count, window_start FROM rate_limits WHERE user_id=?',
                               (user_id,)).fetchone()
        if row is None or row["window_start"] < now - self.window_s:
            return self.max_trades
        return max(0, self.max_trades - int(row["trade_count"]))
