# controllers/swap_controller.py
from __future__ import annotations
import time
from typing import Callable, Optional

from solders.keypair import Keypair

from enums.swap_failure import SwapFailure
from enums.trade_status import CloseReason
from models.swap_result import BuyResult, SellResult
from models.token import TokenBalance
from models.user import WalletIdentity
from repositories.trade_repository import DuplicatePositionError, TradeRepository
from services.credential_service import CredentialService
from services.jupiter_service import JupiterService
from services.price_service import PriceService
from services.solana_service import SolanaService
from utils.config import TradingConfig, get_trading_config
from utils.log_config import logger_manager, log_function
from utils.position_locks import PositionLocks
from utils.solana_utils import LAMPORTS_PER_SOL, is_valid_solana_address, sol_to_lamports

logger = logger_manager.setup_logger(__name__)


class SwapController:
    """
    Ejecutor de swaps SOL <-> token vía Jupiter:
      - valida importe / porcentaje / slippage antes de cualquier I/O
      - comprueba saldo (SOL o token) y la posición abierta en el ledger
      - cotiza y construye la tx (sin reintentos: si falla, se aborta)
      - firma en local y envía + confirma con reintentos acotados
      - abre / reduce / cierra la fila en el ledger

    Nunca lanza: todas las salidas son BuyResult / SellResult.
    """
    def __init__(
        self,
        trades: TradeRepository,
        prices: PriceService,
        jupiter: JupiterService,
        solana: SolanaService,
        credentials: CredentialService,
        locks: Optional[PositionLocks] = None,
        config: Optional[TradingConfig] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.trades = trades
        self.prices = prices
        self.jupiter = jupiter
        self.solana = solana
        self.credentials = credentials
        self.locks = locks or PositionLocks()
        self.config = config or get_trading_config()
        self._sleep = sleep

    # -------- utilidades --------
    def _check_slippage(self, slippage_bps: Optional[int]) -> tuple[int, Optional[str]]:
        bps = self.config.default_slippage_bps if slippage_bps is None else int(slippage_bps)
        if bps < 0 or bps > self.config.max_slippage_bps:
            return bps, f"Slippage must be between 0% and {self.config.max_slippage_percent:g}%"
        return bps, None

    def _keypair_for(self, identity: WalletIdentity) -> Keypair:
        # la clave descifrada vive solo durante esta llamada
        return self.solana.keypair_from_secret(
            self.credentials.decrypt_private_key(identity.encrypted_private_key)
        )

    def _submit_with_retries(self, swap_tx_b64: str, keypair: Keypair, label: str) -> str:
        """
        Firma y envía + confirma. max_rpc_retries=2 -> 3 intentos en total,
        con espera fija entre intentos. Propaga el último error al agotarlos.
        """
        attempts = self.config.max_rpc_retries + 1
        delay_s = self.config.rpc_retry_delay_ms / 1000.0
        last_exc: Optional[Exception] = None
        for attempt in range(1, attempts + 1):
            try:
                tx = self.solana.sign_swap_transaction(swap_tx_b64, keypair)
                return self.solana.submit_and_confirm(tx)
            except Exception as e:
                last_exc = e
                logger.warning(f"[{label}] envío intento {attempt}/{attempts} falló: {e}")
                if attempt < attempts:
                    self._sleep(delay_s)
        raise last_exc if last_exc else RuntimeError(f"[{label}] envío fallido sin excepción")

    # -------- compra --------
    @log_function
    def execute_buy(
        self,
        identity: WalletIdentity,
        token_address: str,
        amount_sol: float,
        slippage_bps: Optional[int] = None,
    ) -> BuyResult:
        try:
            if not is_valid_solana_address(token_address):
                return BuyResult.fail("Invalid token address.", SwapFailure.VALIDATION)
            if amount_sol is None or amount_sol < self.config.min_buy_amount:
                return BuyResult.fail(f"Minimum buy: {self.config.min_buy_amount:g} SOL", SwapFailure.VALIDATION)
            bps, err = self._check_slippage(slippage_bps)
            if err:
                return BuyResult.fail(err, SwapFailure.VALIDATION)

            with self.locks.hold(identity.user_id, token_address):
                return self._buy(identity, token_address, float(amount_sol), bps)
        except Exception as e:
            logger.exception(f"[buy] error inesperado user={identity.user_id} token={token_address}: {e}")
            return BuyResult.fail(f"Buy failed: {e}", SwapFailure.INTERNAL)

    def _buy(self, identity: WalletIdentity, token_address: str, amount_sol: float, bps: int) -> BuyResult:
        # 1) una sola posición abierta por token, antes de gastar nada
        if self.trades.get_trade_by_token(identity.user_id, token_address):
            return BuyResult.fail(
                "Already have open position on this token. Sell first or use different token.",
                SwapFailure.POSITION_EXISTS,
            )

        # 2) saldo SOL (importe + reserva para fees)
        balance = self.solana.get_balance(identity.wallet_address)
        needed = amount_sol + self.config.fee_reserve_sol
        if balance < self.config.min_trade_balance or balance < needed:
            return BuyResult.fail(
                f"Insufficient balance. Have: {balance:.4f} SOL, need: {needed:.4f} SOL (includes fees)",
                SwapFailure.INSUFFICIENT_BALANCE,
            )

        # 3) cotización + tx sin firmar
        quote = self.jupiter.get_quote(self.config.sol_mint, token_address, sol_to_lamports(amount_sol), bps)
        if not quote:
            return BuyResult.fail("Failed to get swap quote", SwapFailure.QUOTE)
        swap_tx = self.jupiter.build_swap_transaction(quote, identity.wallet_address)
        if not swap_tx:
            return BuyResult.fail("Failed to build swap transaction", SwapFailure.BUILD)

        # 4) firma + envío con reintentos
        try:
            signature = self._submit_with_retries(swap_tx, self._keypair_for(identity), "buy")
        except Exception as e:
            return BuyResult.fail(f"Buy failed: {e}", SwapFailure.SUBMIT)

        # 5) registrar la posición
        entry_price = self.prices.get_price(token_address) or 0.0
        if entry_price <= 0:
            logger.warning(f"[buy] sin precio de entrada para {token_address}; TP/SL no se evaluará")
        token_amount = float(quote["outAmount"])
        try:
            trade = self.trades.create_trade(identity.user_id, token_address, entry_price, amount_sol, token_amount)
        except DuplicatePositionError as e:
            logger.error(f"[buy] swap {signature} confirmado pero la posición ya existía: {e}")
            return BuyResult(success=True, signature=signature,
                             error="Swap confirmed but an open position already existed.")

        logger.info(f"✅ Compra user={identity.user_id} token={token_address} {amount_sol} SOL tx={signature}")
        return BuyResult(success=True, signature=signature, trade=trade)

    # -------- venta --------
    @log_function
    def execute_sell(
        self,
        identity: WalletIdentity,
        token_address: str,
        percent: float = 100,
        slippage_bps: Optional[int] = None,
        close_position: bool = True,
    ) -> SellResult:
        """
        Vende ``percent`` del saldo del token.

        Con close_position=True (venta manual) toma el lock de la posición y
        cierra o reduce la fila del ledger. Con close_position=False solo hace
        el swap: el llamador (monitor TP/SL) ya tiene el lock y cierra él.
        """
        try:
            if percent is None or percent <= 0 or percent > 100:
                return SellResult.fail("Invalid sell percentage (must be > 0 and <= 100)", SwapFailure.VALIDATION)
            bps, err = self._check_slippage(slippage_bps)
            if err:
                return SellResult.fail(err, SwapFailure.VALIDATION)

            if not close_position:
                return self._sell(identity, token_address, float(percent), bps, close_position)
            with self.locks.hold(identity.user_id, token_address):
                return self._sell(identity, token_address, float(percent), bps, close_position)
        except Exception as e:
            logger.exception(f"[sell] error inesperado user={identity.user_id} token={token_address}: {e}")
            return SellResult.fail(f"Sell failed: {e}", SwapFailure.INTERNAL)

    def _sell(self, identity: WalletIdentity, token_address: str, percent: float, bps: int,
              close_position: bool) -> SellResult:
        # 1) fila abierta
        trade = self.trades.get_trade_by_token(identity.user_id, token_address)
        if trade is None:
            return SellResult.fail("No open trade found for this token", SwapFailure.NO_OPEN_TRADE)

        # 2) saldo del token
        balance: TokenBalance = self.solana.get_token_balance(identity.wallet_address, token_address)
        amount_raw = int(balance.raw * percent // 100)
        if balance.raw <= 0:
            return SellResult.fail("No tokens to sell", SwapFailure.NO_TOKENS)
        if amount_raw <= 0:
            return SellResult.fail("Sell amount rounds to zero tokens", SwapFailure.VALIDATION)

        # 3) cotización + tx sin firmar
        quote = self.jupiter.get_quote(token_address, self.config.sol_mint, amount_raw, bps)
        if not quote:
            return SellResult.fail("Failed to get sell quote", SwapFailure.QUOTE)
        swap_tx = self.jupiter.build_swap_transaction(quote, identity.wallet_address)
        if not swap_tx:
            return SellResult.fail("Failed to build sell transaction", SwapFailure.BUILD)

        # 4) firma + envío con reintentos
        try:
            signature = self._submit_with_retries(swap_tx, self._keypair_for(identity), "sell")
        except Exception as e:
            return SellResult.fail(f"Sell failed: {e}", SwapFailure.SUBMIT)

        # 5) PnL contra el coste de la parte vendida
        sol_received = float(quote["outAmount"]) / LAMPORTS_PER_SOL
        cost_basis = trade.amount_sol * percent / 100.0
        pnl = sol_received - cost_basis
        pnl_percent = (pnl / cost_basis * 100.0) if cost_basis > 0 else 0.0

        closed = False
        if close_position and percent >= 100:
            exit_price = self.prices.get_price(token_address) or 0.0
            closed = self.trades.close_trade(trade.id, exit_price, pnl, pnl_percent, CloseReason.MANUAL.value)
            if not closed:
                logger.warning(f"[sell] trade {trade.id} ya estaba cerrada; no se aplica PnL de nuevo")
        elif close_position:
            self.trades.reduce_position(trade.id, percent / 100.0)

        logger.info(f"✅ Venta {percent:g}% user={identity.user_id} token={token_address} "
                    f"recibido={sol_received:.6f} SOL pnl={pnl:+.6f} tx={signature}")
        return SellResult(success=True, signature=signature, pnl=pnl, pnl_percent=pnl_percent,
                          sol_received=sol_received, closed=closed)
