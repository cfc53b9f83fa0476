"""
Domain model for a DexScreener pair.

Pricing only uses pairs quoted against SOL; the market fields (cap, volume,
flow, age) feed the entry scanner.
"""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel


def _num(value) -> float:
    return float(value or 0)


class TokenPair(BaseModel):

    pair_address: str
    token_address: str
    name: str = ""
    symbol: str = ""
    price_native: float = 0.0
    price_usd: float = 0.0
    liquidity_usd: float = 0.0
    chain_id: str = "solana"
    quote_address: str = ""

    market_cap: float = 0.0
    fdv: float = 0.0
    volume_h24: float = 0.0
    price_change_h1: float = 0.0
    buys_h1: int = 0
    sells_h1: int = 0
    pair_created_at: Optional[int] = None  # ms epoch

    @property
    def effective_market_cap(self) -> float:
        return self.market_cap or self.fdv

    @classmethod
    def from_dexscreener(cls, raw: dict) -> "TokenPair":
        base = raw.get("baseToken", {}) or {}
        txns_h1 = (raw.get("txns") or {}).get("h1") or {}
        return cls(
            pair_address=raw.get("pairAddress", ""),
            token_address=base.get("address", ""),
            name=base.get("name", ""),
            symbol=base.get("symbol", ""),
            price_native=_num(raw.get("priceNative")),
            price_usd=_num(raw.get("priceUsd")),
            liquidity_usd=_num((raw.get("liquidity") or {}).get("usd")),
            chain_id=raw.get("chainId", ""),
            quote_address=(raw.get("quoteToken") or {}).get("address", ""),
            market_cap=_num(raw.get("marketCap")),
            fdv=_num(raw.get("fdv")),
            volume_h24=_num((raw.get("volume") or {}).get("h24")),
            price_change_h1=_num((raw.get("priceChange") or {}).get("h1")),
            buys_h1=int(txns_h1.get("buys") or 0),
            sells_h1=int(txns_h1.get("sells") or 0),
            pair_created_at=raw.get("pairCreatedAt") or None,
        )


class TokenBalance(BaseModel):
    """Saldo SPL de una wallet para un mint: crudo + decimales."""

    raw: int = 0
    decimals: int = 0


class TokenHolder(BaseModel):
    """Cuenta grande de un mint; percentage sobre las cuentas devueltas por el RPC."""

    address: str
    amount: int
    percentage: float = 0.0
