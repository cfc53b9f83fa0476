from __future__ import annotations
import base64
import os
from time import sleep
from typing import Any, Callable, List, Optional

from solana.rpc.api import Client
from solana.rpc.commitment import Confirmed
from solana.rpc.types import TokenAccountOpts, TxOpts
from solders.keypair import Keypair
from solders.message import MessageV0
from solders.pubkey import Pubkey
from solders.system_program import TransferParams, transfer
from solders.transaction import VersionedTransaction

from models.token import TokenBalance, TokenHolder
from utils.log_config import logger_manager, log_function
from utils.solana_utils import lamports_to_sol, sol_to_lamports

logger = logger_manager.setup_logger(__name__)

# ---------- ENV ----------
# RPCs: admite coma-separado para failover. Se usa el primero que responda.
_RPC_ENV = (
    os.getenv("SOLANA_RPC_URLS")
    or os.getenv("SOLANA_RPC_URL")
    or os.getenv("HELIUS_RPC")
    or "https://api.mainnet-beta.solana.com"
)
DEFAULT_RPC_URLS = [u.strip().rstrip("/") for u in _RPC_ENV.split(",") if u.strip()]

REQUEST_TIMEOUT_SECS = float(os.getenv("RPC_TIMEOUT_SECS", "30"))
RETRY_RPC_TIMES = int(os.getenv("RPC_RETRIES", "3"))
RETRY_BACKOFF_SECS = float(os.getenv("RPC_RETRY_BACKOFF_SECS", "0.4"))


class TransactionFailedError(Exception):
    """La tx llegó a la red pero falló, o no se pudo confirmar."""


class SolanaService:
    def __init__(self, rpc_url: Optional[str] = None, client: Optional[Client] = None) -> None:
        # Lista de RPCs con failover
        self._rpc_urls: List[str] = [rpc_url] if rpc_url else list(DEFAULT_RPC_URLS)
        self._current_rpc_idx = 0
        self._client = client or Client(self._rpc_urls[0], timeout=REQUEST_TIMEOUT_SECS)

    # ---------- conexión / failover ----------
    @property
    def active_rpc(self) -> str:
        return self._rpc_urls[self._current_rpc_idx]

    def _rotate(self) -> None:
        if len(self._rpc_urls) < 2:
            return
        self._current_rpc_idx = (self._current_rpc_idx + 1) % len(self._rpc_urls)
        logger.info(f"Cambiando a RPC: {self.active_rpc}")
        self._client = Client(self.active_rpc, timeout=REQUEST_TIMEOUT_SECS)

    def _rpc_call(self, label: str, fn: Callable[[Client], Any], retries: int = RETRY_RPC_TIMES) -> Any:
        """
        Ejecuta una lectura RPC con reintentos y failover de proveedor.
        """
        last_exc: Optional[Exception] = None
        for attempt in range(1, retries + 1):
            try:
                return fn(self._client)
            except Exception as e:
                last_exc = e
                logger.warning(f"[RPC:{label}] intento {attempt}/{retries} falló: {e}")
                self._rotate()
                if attempt < retries:
                    sleep(RETRY_BACKOFF_SECS * attempt)
        # tras agotar intentos, propaga
        raise last_exc if last_exc else RuntimeError(f"RPC '{label}' falló sin excepción.")

    # ---------- wallets ----------
    @staticmethod
    def generate_keypair() -> Keypair:
        return Keypair()

    @staticmethod
    def keypair_from_secret(secret_b58: str) -> Keypair:
        return Keypair.from_base58_string(secret_b58)

    # ---------- saldos ----------
    @log_function
    def get_balance(self, address: str) -> float:
        """Saldo nativo en SOL."""
        owner = Pubkey.from_string(address)
        lamports = self._rpc_call("get_balance", lambda c: c.get_balance(owner, commitment=Confirmed).value)
        return lamports_to_sol(int(lamports))

    @log_function
    def get_token_balance(self, address: str, mint: str) -> TokenBalance:
        """Saldo SPL (crudo + decimales), sumando todas las cuentas del mint."""
        owner = Pubkey.from_string(address)
        opts = TokenAccountOpts(mint=Pubkey.from_string(mint))
        accounts = self._rpc_call(
            "get_token_accounts",
            lambda c: c.get_token_accounts_by_owner_json_parsed(owner, opts, commitment=Confirmed).value,
        )
        raw, decimals = 0, 0
        for acc in accounts or []:
            info = acc.account.data.parsed["info"]["tokenAmount"]
            raw += int(info["amount"])
            decimals = int(info["decimals"])
        return TokenBalance(raw=raw, decimals=decimals)

    @log_function
    def get_top_holders(self, mint: str, limit: int = 10) -> List[TokenHolder]:
        """
        Cuentas más grandes del mint. El porcentaje es sobre el total de las
        cuentas que devuelve getTokenLargestAccounts (máx. 20), no sobre el supply.
        """
        mint_key = Pubkey.from_string(mint)
        accounts = self._rpc_call(
            "largest_accounts",
            lambda c: c.get_token_largest_accounts(mint_key, commitment=Confirmed).value,
        )
        amounts = [(str(acc.address), int(acc.amount.amount)) for acc in accounts or []]
        total = sum(amount for _, amount in amounts)
        return [
            TokenHolder(address=addr, amount=amount, percentage=(amount / total * 100) if total else 0.0)
            for addr, amount in amounts[:limit]
        ]

    # ---------- firma / envío ----------
    @staticmethod
    def sign_swap_transaction(swap_tx_b64: str, keypair: Keypair) -> VersionedTransaction:
        unsigned = VersionedTransaction.from_bytes(base64.b64decode(swap_tx_b64))
        return VersionedTransaction(unsigned.message, [keypair])

    def build_transfer(self, keypair: Keypair, destination: str, amount_sol: float) -> VersionedTransaction:
        ix = transfer(TransferParams(
            from_pubkey=keypair.pubkey(),
            to_pubkey=Pubkey.from_string(destination),
            lamports=sol_to_lamports(amount_sol),
        ))
        blockhash = self._rpc_call("latest_blockhash", lambda c: c.get_latest_blockhash(commitment=Confirmed).value.blockhash)
        msg = MessageV0.try_compile(
            payer=keypair.pubkey(),
            instructions=[ix],
            address_lookup_table_accounts=[],
            recent_blockhash=blockhash,
        )
        return VersionedTransaction(msg, [keypair])

    def submit_and_confirm(self, tx: VersionedTransaction) -> str:
        """
        Envía la tx firmada y espera confirmación 'confirmed'.
        Sin reintentos aquí: los gestiona quien llama (y lanza si falla).
        """
        resp = self._client.send_raw_transaction(bytes(tx), opts=TxOpts(skip_preflight=False, max_retries=2))
        signature = resp.value
        status = self._client.confirm_transaction(signature, commitment=Confirmed)
        result = status.value[0] if status.value else None
        if result is None:
            raise TransactionFailedError(f"Sin estado de confirmación para {signature}")
        if result.err is not None:
            raise TransactionFailedError(f"Transaction failed: {result.err}")
        return str(signature)
