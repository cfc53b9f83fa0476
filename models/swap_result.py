"""
Structured results returned by the swap executor.

The executor never raises past its boundary: every outcome, good or bad,
is one of these objects.
"""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel

from enums.swap_failure import SwapFailure
from models.trade import Trade


class BuyResult(BaseModel):
    success: bool
    signature: Optional[str] = None
    trade: Optional[Trade] = None
    error: Optional[str] = None
    failure: Optional[SwapFailure] = None

    @classmethod
    def fail(cls, error: str, failure: SwapFailure) -> "BuyResult":
        return cls(success=False, error=error, failure=failure)


class SellResult(BaseModel):
    success: bool
    signature: Optional[str] = None
    pnl: Optional[float] = None
    pnl_percent: Optional[float] = None
    sol_received: Optional[float] = None
    closed: bool = False
    error: Optional[str] = None
    failure: Optional[SwapFailure] = None

    @classmethod
    def fail(cls, error: str, failure: SwapFailure) -> "SellResult":
        return cls(success=False, error=error, failure=failure)
