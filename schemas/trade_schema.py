"""
Data schema definitions for ledger writes.

Plain dataclasses carried from the swap executor to the trade repository.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional


@dataclass
class TradeCreate:
    """Schema for opening a trade after a confirmed buy."""

    user_id: int
    token_address: str
    entry_price: float
    amount_sol: float
    token_amount: float


@dataclass
class TradeClose:
    """Schema for the single open -> closed transition."""

    trade_id: int
    exit_price: float
    pnl_sol: float
    pnl_percent: float
    reason: Optional[str] = None
