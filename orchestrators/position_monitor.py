# orchestrators/position_monitor.py
from __future__ import annotations
import threading
from typing import Callable, Dict, Optional

from enums.swap_failure import SwapFailure
from enums.trade_status import CloseReason
from models.trade import Trade
from models.user import User
from repositories.trade_repository import TradeRepository
from repositories.user_repository import UserRepository
from services.price_service import PriceService
from utils.config import TradingConfig, get_trading_config
from utils.formatting import format_percent, signed_sol, truncate_address
from utils.log_config import logger_manager, log_function
from utils.position_locks import PositionLocks

logger = logger_manager.setup_logger(__name__)

NotifyFn = Callable[[int, str], None]


class PositionMonitor:
    """
    Monitor TP/SL de todas las posiciones abiertas (de todos los usuarios).

    Un único hilo; cada tick:
      1) carga las filas abiertas
      2) pide precio de los tokens distintos en un solo lote
      3) calcula PnL % y, si cruza TP o SL, vende el 100% y cierra la fila
      4) notifica al usuario (best-effort, después del cierre)

    Dependencias:
      - executor: objeto con execute_sell(identity, token, percent, close_position=False)
        (SwapController en producción)
    """
    def __init__(
        self,
        trades: TradeRepository,
        users: UserRepository,
        prices: PriceService,
        executor,
        locks: Optional[PositionLocks] = None,
        config: Optional[TradingConfig] = None,
    ) -> None:
        self.trades = trades
        self.users = users
        self.prices = prices
        self.executor = executor
        self.locks = locks or PositionLocks()
        self.config = config or get_trading_config()

        self._notify: Optional[NotifyFn] = None
        self._thread: Optional[threading.Thread] = None
        self._stop_evt = threading.Event()
        self._state_lock = threading.Lock()
        # un tick a la vez, aunque uno lento se solape con el siguiente
        self._tick_lock = threading.Lock()

    # ---------- API pública ----------
    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive() and not self._stop_evt.is_set()

    @log_function
    def start(self, notify: NotifyFn) -> None:
        """Arranca el hilo. Si ya está corriendo solo sustituye el callback."""
        with self._state_lock:
            self._notify = notify
            if self.is_running:
                logger.info("PositionMonitor ya activo; callback de notificación sustituido.")
                return
            self._stop_evt = threading.Event()
            self._thread = threading.Thread(
                target=self._run_loop,
                args=(self._stop_evt,),
                name="PositionMonitor",
                daemon=True,
            )
            self._thread.start()
        logger.info(f"PositionMonitor arrancado (cada {self.config.poll_interval_ms / 1000:g}s).")

    @log_function
    def stop(self, timeout: Optional[float] = None) -> None:
        """
        No arranca más ticks. El tick en curso termina (no se cancela un swap a medias).
        Con timeout espera al hilo como mucho ese tiempo.
        """
        with self._state_lock:
            thread = self._thread
            if thread is None:
                return
            self._stop_evt.set()
        if timeout is not None and thread is not threading.current_thread():
            thread.join(timeout)
        logger.info("PositionMonitor detenido (orden enviada).")

    # ---------- Loop ----------
    def _run_loop(self, stop_evt: threading.Event) -> None:
        interval = self.config.poll_interval_ms / 1000.0
        while not stop_evt.wait(interval):
            try:
                self.run_once()
            except Exception as e:
                logger.exception(f"Error en tick TP/SL: {e}")

    def run_once(self) -> int:
        """Un tick completo. Devuelve cuántas posiciones cerró. Si hay otro tick en curso, no hace nada."""
        if not self._tick_lock.acquire(blocking=False):
            logger.warning("Tick TP/SL anterior aún en curso; se salta este.")
            return 0
        try:
            return self._tick()
        finally:
            self._tick_lock.release()

    def _tick(self) -> int:
        open_trades = self.trades.get_all_open_trades()
        if not open_trades:
            return 0

        tokens = list(dict.fromkeys(t.token_address for t in open_trades))
        prices: Dict[str, float] = self.prices.get_prices(tokens)
        logger.debug(f"[TP/SL] {len(open_trades)} abiertas, {len(tokens)} tokens, {len(prices)} con precio")

        closed = 0
        users: Dict[int, Optional[User]] = {}
        for trade in open_trades:
            price = prices.get(trade.token_address)
            if price is None:
                continue
            try:
                if trade.user_id not in users:
                    users[trade.user_id] = self.users.get_by_id(trade.user_id)
                if self._evaluate(trade, price, users[trade.user_id]):
                    closed += 1
            except Exception as e:
                logger.exception(f"[TP/SL] Error evaluando trade {trade.id}: {e}")
        return closed

    # ---------- Evaluación ----------
    def _evaluate(self, trade: Trade, current_price: float, user: Optional[User]) -> bool:
        pnl_percent = trade.pnl_percent_at(current_price)
        if pnl_percent is None:
            logger.debug(f"[TP/SL] trade {trade.id} sin precio de entrada válido; se omite")
            return False

        if pnl_percent >= self.config.tp_percent:
            reason = CloseReason.TAKE_PROFIT
        elif pnl_percent <= self.config.sl_percent:
            reason = CloseReason.STOP_LOSS
        else:
            return False

        if user is None:
            logger.error(f"[TP/SL] trade {trade.id}: usuario {trade.user_id} no existe; no se puede vender")
            return False
        if reason == CloseReason.TAKE_PROFIT and not user.auto_tp_enabled:
            return False
        if reason == CloseReason.STOP_LOSS and not user.auto_sl_enabled:
            return False

        return self._auto_close(trade, user, reason, pnl_percent, current_price)

    def _auto_close(self, trade: Trade, user: User, reason: CloseReason,
                    pnl_percent: float, current_price: float) -> bool:
        with self.locks.hold(trade.user_id, trade.token_address, timeout=0) as acquired:
            if not acquired:
                logger.info(f"[TP/SL] trade {trade.id} ocupada por otra operación; siguiente tick")
                return False

            # puede haberla cerrado una venta manual desde que se cargó el tick
            fresh = self.trades.get_trade_by_id(trade.id)
            if fresh is None or not fresh.is_open:
                return False

            result = self.executor.execute_sell(user.identity(), trade.token_address, 100, close_position=False)
            if not result.success and result.failure == SwapFailure.NO_TOKENS:
                # vaciada fuera del bot: no hubo venta ni PnL que registrar
                reason, pnl_percent, pnl_sol = CloseReason.EXTERNAL, 0.0, 0.0
            elif not result.success:
                logger.warning(f"[TP/SL] venta {reason.value} fallida para trade {trade.id}: {result.error}")
                return False
            else:
                pnl_sol = fresh.amount_sol * pnl_percent / 100.0
            if not self.trades.close_trade(trade.id, current_price, pnl_sol, pnl_percent, reason.value):
                return False

        logger.info(f"[TP/SL] {reason.value} ejecutado para trade {trade.id}: {pnl_percent:.2f}%")
        self._notify_user(trade.user_id, self._message(reason, pnl_percent, pnl_sol, trade.token_address))
        return True

    @staticmethod
    def _message(reason: CloseReason, pnl_percent: float, pnl_sol: float, token_address: str) -> str:
        if reason == CloseReason.EXTERNAL:
            return (f"POSITION CLOSED\n\nNo {truncate_address(token_address)} tokens left in your wallet.\n"
                    "Sold or moved outside the bot. No longer tracked.")
        tail = "You took profit. Good." if reason == CloseReason.TAKE_PROFIT else "Cut the loss. Move on."
        return (f"{reason.value} HIT\n\nTrade auto-closed.\n"
                f"PNL: {format_percent(pnl_percent)} ({signed_sol(pnl_sol)} SOL)\n\n{tail}")

    def _notify_user(self, user_id: int, message: str) -> None:
        notify = self._notify
        if notify is None:
            return
        try:
            notify(user_id, message)
        except Exception as e:
            logger.error(f"[TP/SL] Error notificando a user {user_id}: {e}")
