# diagnostics.py
import os
from dotenv import load_dotenv

load_dotenv()

from utils.log_config import logger_manager
from utils.config import get_trading_config
from repositories.trade_repository import TradeRepository
from repositories.user_repository import UserRepository
from services.price_service import PriceService
from services.solana_service import SolanaService

logger = logger_manager.setup_logger("diagnostics")

DB_PATH = os.getenv("DB_PATH") or "./data/trenches.db"


def ok(b, msg): print(("✅" if b else "❌"), msg)


def main() -> None:
    print("== DIAGNÓSTICO SOL TRENCHES ==")
    ok(True, f"DB_PATH: {DB_PATH}")

    cfg = get_trading_config()
    ok(True, f"TP {cfg.tp_percent:+g}% | SL {cfg.sl_percent:+g}% | poll {cfg.poll_interval_ms} ms")
    ok(bool(os.getenv("TELEGRAM_TOKEN")), "TELEGRAM_TOKEN definido")
    ok(bool(os.getenv("ENCRYPTION_SECRET")), "ENCRYPTION_SECRET definido")

    trades = None
    try:
        trades = TradeRepository(db_path=DB_PATH)
        _ = trades.summary(); ok(True, "TradeRepository OK")
    except Exception as e:
        ok(False, f"TradeRepository fallo: {e}")

    try:
        ok(True, f"UserRepository OK ({UserRepository(db_path=DB_PATH).count()} usuarios)")
    except Exception as e:
        ok(False, f"UserRepository fallo: {e}")

    try:
        sol = SolanaService()
        sol._rpc_call("get_slot", lambda c: c.get_slot().value, retries=1)
        ok(True, f"RPC OK ({sol.active_rpc})")
    except Exception as e:
        ok(False, f"RPC fallo: {e}")

    if trades is not None:
        open_rows = trades.get_all_open_trades()
        print(f"Posiciones abiertas: {len(open_rows)}")
        tokens = sorted({t.token_address for t in open_rows})
        if tokens:
            prices = PriceService().get_prices(tokens)
            print(f"Tokens con precio: {len(prices)}/{len(tokens)}")

    print("== FIN ==")


if __name__ == "__main__":
    main()
