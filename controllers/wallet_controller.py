# controllers/wallet_controller.py
from __future__ import annotations
import time
from dataclasses import dataclass
from typing import Callable, Optional

from models.user import User
from models.wallet import Wallet
from repositories.state_repository import ConversationStateRepository, StateKind
from repositories.trade_repository import TradeRepository
from repositories.user_repository import UserRepository
from services.credential_service import CredentialError, CredentialService
from services.solana_service import SolanaService
from utils.config import TradingConfig, get_trading_config
from utils.log_config import logger_manager, log_function
from utils.solana_utils import is_valid_solana_address

logger = logger_manager.setup_logger(__name__)


@dataclass
class PendingWithdrawal:
    amount_sol: float
    destination: str


class WalletController:
    """
    Alta de usuarios con wallet custodiada, saldo, PIN, ajustes, retiradas y
    gestor de wallets (añadir, activar, borrar, exportar clave).

    Los pasos que esperan respuesta del usuario (retirada, borrado, exportar)
    dejan un pendiente con caducidad en el ConversationStateRepository y el
    confirm_* correspondiente lo consume. Devuelve dicts {"ok", "status", ...}
    como el resto de controladores.
    """
    def __init__(
        self,
        users: UserRepository,
        solana: SolanaService,
        credentials: CredentialService,
        state: ConversationStateRepository,
        config: Optional[TradingConfig] = None,
        sleep: Callable[[float], None] = time.sleep,
        trades: Optional[TradeRepository] = None,
    ) -> None:
        self.users = users
        self.solana = solana
        self.credentials = credentials
        self.state = state
        self.config = config or get_trading_config()
        self._sleep = sleep
        self.trades = trades

    # -------- alta --------
    @log_function
    def register(self, telegram_id: str) -> dict:
        existing = self.users.find_by_telegram_id(telegram_id)
        if existing:
            return {"ok": True, "status": "existing", "user": existing}

        if self.users.count() >= self.config.max_users:
            logger.warning(f"Beta completa ({self.config.max_users}); alta rechazada para {telegram_id}")
            return {"ok": False, "status": "beta_full",
                    "reason": f"Beta is full ({self.config.max_users} users)."}

        keypair = self.solana.generate_keypair()
        encrypted = self.credentials.encrypt_private_key(str(keypair))
        user = self.users.create(telegram_id, str(keypair.pubkey()), encrypted)
        logger.info(f"Nuevo usuario {user.id} con wallet {user.wallet_address}")
        return {"ok": True, "status": "created", "user": user}

    def get_user(self, telegram_id: str) -> Optional[User]:
        return self.users.find_by_telegram_id(telegram_id)

    def balance(self, user: User) -> float:
        return self.solana.get_balance(user.wallet_address)

    # -------- ajustes --------
    def set_pin(self, user: User, pin: str) -> dict:
        if not self.credentials.is_valid_pin(pin):
            return {"ok": False, "reason": "PIN must be exactly 4 digits."}
        self.users.update_pin(user.id, self.credentials.hash_pin(pin))
        logger.info(f"PIN actualizado para user {user.id}")
        return {"ok": True}

    @log_function
    def update_settings(self, user: User, auto_tp: Optional[bool] = None,
                        auto_sl: Optional[bool] = None) -> Optional[User]:
        self.users.update_settings(user.id, auto_tp_enabled=auto_tp, auto_sl_enabled=auto_sl)
        return self.users.get_by_id(user.id)

    # -------- retiradas --------
    @log_function
    def request_withdrawal(self, user: User, amount_sol: float, destination: str) -> dict:
        if amount_sol is None or amount_sol <= 0:
            return {"ok": False, "reason": "Invalid withdrawal amount."}
        if not is_valid_solana_address(destination):
            return {"ok": False, "reason": "Invalid destination address."}
        if not user.has_pin:
            return {"ok": False, "reason": "No PIN set. Use /setpin <4digits> first."}

        pending = PendingWithdrawal(amount_sol=float(amount_sol), destination=destination)
        self.state.put(user.telegram_id, StateKind.PENDING_WITHDRAWAL, pending,
                       ttl=self.config.pending_state_ttl_s)
        return {"ok": True, "pending": pending}

    def has_pending_withdrawal(self, telegram_id: str) -> bool:
        # caducado cuenta como pendiente: confirm_withdrawal avisa al usuario y lo limpia
        if self.state.is_expired(telegram_id, StateKind.PENDING_WITHDRAWAL):
            return True
        return self.state.get(telegram_id, StateKind.PENDING_WITHDRAWAL) is not None

    def confirm_withdrawal(self, user: User, text: str) -> dict:
        """
        Consume el pendiente con el texto recibido. status:
          none | cancelled | expired | invalid_pin | insufficient | sent | failed
        """
        key = user.telegram_id
        if self.state.is_expired(key, StateKind.PENDING_WITHDRAWAL):
            self.state.pop(key, StateKind.PENDING_WITHDRAWAL)
            return {"ok": False, "status": "expired", "reason": "Withdrawal expired. Start again with /withdraw"}

        pending: Optional[PendingWithdrawal] = self.state.get(key, StateKind.PENDING_WITHDRAWAL)
        if pending is None:
            return {"ok": False, "status": "none"}

        answer = (text or "").strip()
        if answer.lower() == "cancel":
            self.state.pop(key, StateKind.PENDING_WITHDRAWAL)
            return {"ok": False, "status": "cancelled", "reason": "Withdrawal cancelled."}

        if not user.pin_hash or not self.credentials.verify_pin(answer, user.pin_hash):
            # se mantiene el pendiente hasta que caduque
            return {"ok": False, "status": "invalid_pin", "reason": 'Invalid PIN. Try again or type "cancel".'}

        # solo quien saca el pendiente del almacén llega a transferir
        claimed: Optional[PendingWithdrawal] = self.state.pop(key, StateKind.PENDING_WITHDRAWAL)
        if claimed is None:
            return {"ok": False, "status": "none"}
        pending = claimed
        try:
            balance = self.solana.get_balance(user.wallet_address)
            needed = pending.amount_sol + self.config.withdraw_fee_reserve_sol
            if balance < needed:
                return {"ok": False, "status": "insufficient", "balance": balance, "needed": needed,
                        "reason": f"Insufficient balance. Have: {balance:.4f} SOL, need: {needed:.4f} SOL (includes fee)"}
            signature = self._transfer_with_retries(user, pending)
        except Exception as e:
            logger.exception(f"Retirada fallida user={user.id}: {e}")
            return {"ok": False, "status": "failed", "reason": f"Withdrawal failed: {e}"}

        logger.info(f"✅ Retirada user={user.id} {pending.amount_sol} SOL -> {pending.destination} tx={signature}")
        return {"ok": True, "status": "sent", "signature": signature,
                "amount_sol": pending.amount_sol, "destination": pending.destination}

    def _transfer_with_retries(self, user: User, pending: PendingWithdrawal) -> str:
        keypair = self.solana.keypair_from_secret(
            self.credentials.decrypt_private_key(user.encrypted_private_key)
        )
        attempts = self.config.max_rpc_retries + 1
        last_exc: Optional[Exception] = None
        for attempt in range(1, attempts + 1):
            try:
                # blockhash nuevo en cada intento
                tx = self.solana.build_transfer(keypair, pending.destination, pending.amount_sol)
                return self.solana.submit_and_confirm(tx)
            except Exception as e:
                last_exc = e
                logger.warning(f"[withdraw] intento {attempt}/{attempts} falló: {e}")
                if attempt < attempts:
                    self._sleep(self.config.rpc_retry_delay_ms / 1000.0)
        raise last_exc if last_exc else RuntimeError("Transfer failed")

    # -------- multi-wallet --------
    def list_wallets(self, user: User) -> list[Wallet]:
        return self.users.list_wallets(user.id)

    def _wallet_at(self, user: User, position: int) -> Optional[Wallet]:
        wallets = self.users.list_wallets(user.id)
        if 1 <= position <= len(wallets):
            return wallets[position - 1]
        return None

    def _has_open_positions(self, user: User) -> bool:
        # las posiciones viven en la wallet activa: no se cambia ni se borra con posiciones abiertas
        return bool(self.trades is not None and self.trades.get_open_trades(user.id))

    def _limit_reached(self) -> dict:
        limit = self.config.max_wallets_per_user
        return {"ok": False, "status": "limit",
                "reason": f"Wallet limit reached ({limit} max).\n\nRemove a wallet to add a new one."}

    @log_function
    def add_wallet(self, user: User) -> dict:
        if self.users.count_wallets(user.id) >= self.config.max_wallets_per_user:
            return self._limit_reached()
        keypair = self.solana.generate_keypair()
        encrypted = self.credentials.encrypt_private_key(str(keypair))
        wallet = self.users.add_wallet(user.id, str(keypair.pubkey()), encrypted,
                                       self.config.max_wallets_per_user)
        if wallet is None:
            return self._limit_reached()
        logger.info(f"Nueva wallet {wallet.wallet_address} para user {user.id}")
        return {"ok": True, "status": "created", "wallet": wallet}

    @log_function
    def switch_wallet(self, user: User, position: int) -> dict:
        wallet = self._wallet_at(user, position)
        if wallet is None:
            return {"ok": False, "status": "not_found", "reason": "Wallet not found."}
        if wallet.is_active:
            return {"ok": True, "status": "unchanged", "wallet": wallet}
        if self._has_open_positions(user):
            return {"ok": False, "status": "open_positions",
                    "reason": "Close your open positions before switching wallets."}
        if not self.users.set_active_wallet(user.id, wallet.id):
            return {"ok": False, "status": "not_found", "reason": "Wallet not found."}
        logger.info(f"User {user.id} activa la wallet {wallet.wallet_address}")
        return {"ok": True, "status": "switched", "wallet": wallet}

    def request_removal(self, user: User, position: int) -> dict:
        wallet = self._wallet_at(user, position)
        if wallet is None:
            return {"ok": False, "status": "not_found", "reason": "Wallet not found."}
        if self.users.count_wallets(user.id) <= 1:
            return {"ok": False, "status": "last",
                    "reason": "Cannot remove your only wallet.\n\nAdd another wallet first."}
        if wallet.is_active and self._has_open_positions(user):
            return {"ok": False, "status": "open_positions",
                    "reason": "Close your open positions before removing the active wallet."}
        self.state.put(user.telegram_id, StateKind.PENDING_REMOVAL, wallet.id,
                       ttl=self.config.pending_state_ttl_s)
        return {"ok": True, "status": "pending", "wallet": wallet}

    def has_pending_removal(self, telegram_id: str) -> bool:
        if self.state.is_expired(telegram_id, StateKind.PENDING_REMOVAL):
            return True
        return self.state.get(telegram_id, StateKind.PENDING_REMOVAL) is not None

    def confirm_removal(self, user: User, text: str) -> dict:
        """'confirm' borra la wallet pendiente; cualquier otra respuesta la cancela."""
        key = user.telegram_id
        if self.state.is_expired(key, StateKind.PENDING_REMOVAL):
            self.state.pop(key, StateKind.PENDING_REMOVAL)
            return {"ok": False, "status": "expired", "reason": "Removal expired. Start again with /removewallet"}
        wallet_id = self.state.pop(key, StateKind.PENDING_REMOVAL)
        if wallet_id is None:
            return {"ok": False, "status": "none"}
        if (text or "").strip().lower() != "confirm":
            return {"ok": False, "status": "cancelled", "reason": "Wallet removal cancelled."}

        wallet = self.users.get_wallet(user.id, wallet_id)
        if wallet is not None and wallet.is_active and self._has_open_positions(user):
            return {"ok": False, "status": "open_positions",
                    "reason": "Close your open positions before removing the active wallet."}
        status = self.users.remove_wallet(user.id, wallet_id)
        if status == "removed":
            logger.info(f"User {user.id} elimina la wallet {wallet_id}")
            return {"ok": True, "status": "removed"}
        if status == "last":
            return {"ok": False, "status": "last",
                    "reason": "Cannot remove your only wallet.\n\nAdd another wallet first."}
        return {"ok": False, "status": "not_found", "reason": "Wallet not found."}

    # -------- exportar clave --------
    def request_export(self, user: User) -> dict:
        if not user.has_pin:
            return {"ok": False, "reason": "No PIN set.\n\nUse /setpin 1234 to set a PIN first."}
        self.state.put(user.telegram_id, StateKind.AWAITING_EXPORT_PIN, True,
                       ttl=self.config.pending_state_ttl_s)
        return {"ok": True}

    def awaiting_export_pin(self, telegram_id: str) -> bool:
        return self.state.get(telegram_id, StateKind.AWAITING_EXPORT_PIN) is not None

    def confirm_export(self, user: User, text: str) -> dict:
        """
        Un solo intento: el estado se consume con cualquier respuesta. status:
          none | cancelled | invalid_pin | failed | exported
        """
        key = user.telegram_id
        if self.state.is_expired(key, StateKind.AWAITING_EXPORT_PIN):
            self.state.pop(key, StateKind.AWAITING_EXPORT_PIN)
            return {"ok": False, "status": "none"}
        if self.state.pop(key, StateKind.AWAITING_EXPORT_PIN) is None:
            return {"ok": False, "status": "none"}

        answer = (text or "").strip()
        if answer.lower() == "cancel":
            return {"ok": False, "status": "cancelled", "reason": "Export cancelled."}
        if not user.pin_hash or not self.credentials.verify_pin(answer, user.pin_hash):
            return {"ok": False, "status": "invalid_pin", "reason": "Incorrect PIN. Export cancelled."}
        try:
            private_key = self.credentials.decrypt_private_key(user.encrypted_private_key)
        except CredentialError as e:
            logger.error(f"Export fallido user={user.id}: {e}")
            return {"ok": False, "status": "failed", "reason": "Failed to decrypt key."}

        logger.info(f"Clave privada exportada para user {user.id} ({user.wallet_address})")
        return {"ok": True, "status": "exported", "private_key": private_key,
                "wallet_address": user.wallet_address}
