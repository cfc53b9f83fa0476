# main.py
from __future__ import annotations
import os
import signal
import threading
from pathlib import Path

from dotenv import load_dotenv

# ---- carga .env antes de importar módulos que leen os.getenv al importarse ----
load_dotenv()

from controllers.swap_controller import SwapController
from controllers.wallet_controller import WalletController
from orchestrators.position_monitor import PositionMonitor
from repositories.rate_limit_repository import RateLimitRepository
from repositories.state_repository import ConversationStateRepository
from repositories.trade_repository import TradeRepository
from repositories.user_repository import UserRepository
from services.credential_service import CredentialService
from services.jupiter_service import JupiterService
from services.price_service import PriceService
from services.scoring_service import ScoringService
from services.solana_service import SolanaService
from services.telegram_bot import TelegramBot
from services.telegram_service import TelegramService
from utils.config import get_trading_config
from utils.log_config import logger_manager
from utils.position_locks import PositionLocks

logger = logger_manager.setup_logger(__name__)

# ------------------------------
# Configuración
# ------------------------------
PROJECT_ROOT = Path(__file__).resolve().parent
DB_PATH = os.getenv("DB_PATH", str(PROJECT_ROOT / "data" / "trenches.db"))


def build_app() -> tuple[TelegramBot, PositionMonitor, TelegramService]:
    """Construye repositorios, servicios y controladores compartidos por bot y monitor."""
    config = get_trading_config()

    trades = TradeRepository(db_path=DB_PATH)
    users = UserRepository(db_path=DB_PATH)
    rate_limits = RateLimitRepository(
        db_path=DB_PATH,
        max_trades=config.max_trades_per_minute,
        window_ms=config.rate_limit_window_ms,
    )
    state = ConversationStateRepository(default_ttl=config.pending_state_ttl_s)

    prices = PriceService()
    jupiter = JupiterService()
    solana = SolanaService()
    credentials = CredentialService()
    locks = PositionLocks()

    swaps = SwapController(trades, prices, jupiter, solana, credentials, locks=locks, config=config)
    wallets = WalletController(users, solana, credentials, state, config=config, trades=trades)
    monitor = PositionMonitor(trades, users, prices, swaps, locks=locks, config=config)
    notifier = TelegramService(users)

    scoring = ScoringService(prices, solana)

    bot = TelegramBot(wallets, swaps, trades, prices, rate_limits, state, scoring, config=config)
    return bot, monitor, notifier


# ------------------------------
# Main
# ------------------------------
if __name__ == "__main__":
    logger.info("🚀 Iniciando sol_trenches (monitor TP/SL + bot)...")
    bot, monitor, notifier = build_app()

    stop_all_evt = threading.Event()

    def shutdown(*_):
        if stop_all_evt.is_set():
            return
        logger.info("🛑 Señal de apagado recibida, deteniendo servicios...")
        stop_all_evt.set()
        # el tick en curso termina; no se cortan swaps a medias
        monitor.stop()
        bot.stop_running()

    signal.signal(signal.SIGINT, shutdown)
    signal.signal(signal.SIGTERM, shutdown)

    monitor.start(notifier.notify)
    try:
        # run_polling bloquea el hilo principal hasta stop_running()
        bot.run()
    finally:
        shutdown()
        monitor.stop(timeout=30)
        logger.info("✅ Apagado completado.")
