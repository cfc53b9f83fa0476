"""
A custodial wallet owned by a user. A user holds up to
``max_wallets_per_user`` of them and exactly one is active: the active one
is mirrored on the ``users`` row, so trading and withdrawals use it.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field


class Wallet(BaseModel):
    id: int
    user_id: int
    wallet_address: str
    encrypted_private_key: str = Field(repr=False)
    is_active: bool = False
    created_at: datetime

    @classmethod
    def from_row(cls, row: Any) -> "Wallet":
        data = dict(row)
        data["created_at"] = datetime.fromtimestamp(int(data["created_at"]))
        data["is_active"] = bool(data["is_active"])
        return cls(**data)
