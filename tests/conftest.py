"""
Pytest fixtures for sol_trenches.

Repositories run against real sqlite files under tmp_path; every external
gateway (DexScreener, Jupiter, Solana RPC, credentials) is a small fake.
"""
from __future__ import annotations

import os
import threading
from typing import Dict, List, Optional

import pytest

# sin ficheros de log durante los tests
os.environ.setdefault("LOG_TO_FILE", "0")

from models.token import TokenBalance, TokenPair
from repositories.trade_repository import TradeRepository
from repositories.user_repository import UserRepository
from utils.config import TradingConfig

TOKEN_A = "DezXAZ8z7PnrnRJjz3wXBoRgixCa6xjnB7YaB1pPB263"
TOKEN_B = "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v"
WALLET = "9WzDXwBbmkg8ZTbNMqUxvQRAyrZzDsGYdLVL9zYtAWWM"
DESTINATION = "TokenkegQfeZyiNwAJbNbGKPFXCWuBvf9Ss623VQ5DA"


# =============================================================================
# Fakes
# =============================================================================

class FakePrices:
    """PriceService sin red: precios fijos y registro de cada lote pedido."""

    def __init__(self, prices: Optional[Dict[str, float]] = None) -> None:
        self.prices: Dict[str, float] = dict(prices or {})
        self.calls: List[List[str]] = []

    def get_prices(self, token_addresses):
        batch = list(token_addresses)
        self.calls.append(batch)
        return {a: self.prices[a] for a in batch if a in self.prices}

    def get_price(self, token_address):
        return self.prices.get(token_address)

    def get_pairs(self, token_addresses):
        return {a: TokenPair(pair_address=f"pair-{a[:4]}", token_address=a, symbol="TKN", price_native=p)
                for a, p in self.get_prices(token_addresses).items()}

    def get_token_pair(self, token_address):
        return self.get_pairs([token_address]).get(token_address)


class FakeJupiter:
    def __init__(self, out_amount: int = 1_000_000) -> None:
        self.out_amount = out_amount
        self.quote_ok = True
        self.build_ok = True
        self.quotes: List[tuple] = []
        self.builds: int = 0

    def get_quote(self, input_mint, output_mint, amount, slippage_bps):
        self.quotes.append((input_mint, output_mint, amount, slippage_bps))
        if not self.quote_ok:
            return None
        return {"inputMint": input_mint, "outputMint": output_mint, "outAmount": str(self.out_amount)}

    def build_swap_transaction(self, quote, user_public_key):
        self.builds += 1
        return "c3dhcC10eA==" if self.build_ok else None


class FakeSolana:
    """RPC de mentira. ``submit_failures`` envíos fallan antes del primero que confirma."""

    def __init__(self, balance: float = 10.0, token_raw: int = 1_000_000, decimals: int = 6) -> None:
        self.balance = balance
        self.token_balance = TokenBalance(raw=token_raw, decimals=decimals)
        self.submit_failures = 0
        self.submit_delay = 0.0
        self.submits = 0
        self.transfers: List[tuple] = []
        self._lock = threading.Lock()

    @staticmethod
    def generate_keypair():
        from solders.keypair import Keypair
        return Keypair()

    @staticmethod
    def keypair_from_secret(secret_b58):
        return f"keypair:{secret_b58}"

    def get_balance(self, address):
        return self.balance

    def get_token_balance(self, address, mint):
        return self.token_balance

    @staticmethod
    def sign_swap_transaction(swap_tx_b64, keypair):
        return (swap_tx_b64, keypair)

    def build_transfer(self, keypair, destination, amount_sol):
        self.transfers.append((destination, amount_sol))
        return ("transfer", destination, amount_sol)

    def submit_and_confirm(self, tx):
        if self.submit_delay:
            threading.Event().wait(self.submit_delay)
        with self._lock:
            self.submits += 1
            attempt = self.submits
        if attempt <= self.submit_failures:
            raise RuntimeError(f"RPC timeout (attempt {attempt})")
        return f"sig{attempt}"


class FakeCredentials:
    def decrypt_private_key(self, encrypted_private_key):
        return f"plain:{encrypted_private_key}"


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def db_path(tmp_path) -> str:
    return str(tmp_path / "trenches.db")


@pytest.fixture
def trades(db_path) -> TradeRepository:
    return TradeRepository(db_path=db_path)


@pytest.fixture
def users(db_path) -> UserRepository:
    return UserRepository(db_path=db_path)


@pytest.fixture
def user(users):
    return users.create("1001", WALLET, "enc-key-1001")


@pytest.fixture
def config() -> TradingConfig:
    return TradingConfig(rpc_retry_delay_ms=1000, poll_interval_ms=20)


@pytest.fixture
def prices() -> FakePrices:
    return FakePrices()


@pytest.fixture
def jupiter() -> FakeJupiter:
    return FakeJupiter()


@pytest.fixture
def solana() -> FakeSolana:
    return FakeSolana()


@pytest.fixture
def credentials() -> FakeCredentials:
    return FakeCredentials()
