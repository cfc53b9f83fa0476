"""
Represents one position attempt in the trade ledger.

Prices are native (SOL per token). ``token_amount`` is the raw on-chain
amount received at entry (smallest unit of the mint), as reported by the
swap quote.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel

from enums.trade_status import TradeStatus


class Trade(BaseModel):
    id: int
    user_id: int
    token_address: str
    entry_price: float
    amount_sol: float
    token_amount: float
    status: TradeStatus = TradeStatus.OPEN
    opened_at: datetime
    closed_at: Optional[datetime] = None
    exit_price: Optional[float] = None
    pnl_sol: Optional[float] = None
    pnl_percent: Optional[float] = None
    close_reason: Optional[str] = None

    @property
    def is_open(self) -> bool:
        return self.status == TradeStatus.OPEN

    def pnl_percent_at(self, current_price: float) -> Optional[float]:
        """PnL % contra el precio de entrada; None si la entrada no es válida."""
        if self.entry_price is None or self.entry_price <= 0:
            return None
        return ((current_price - self.entry_price) / self.entry_price) * 100.0

    @classmethod
    def from_row(cls, row: Any) -> "Trade":
        data = dict(row)
        for ts in ("opened_at", "closed_at"):
            if data.get(ts) is not None:
                data[ts] = datetime.fromtimestamp(int(data[ts]))
        return cls(**data)
