"""
Represents a registered bot user and the custodial wallet bound to it.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field


class User(BaseModel):
    id: int
    telegram_id: str
    wallet_address: str
    encrypted_private_key: str = Field(repr=False)
    pin_hash: Optional[str] = Field(default=None, repr=False)
    auto_tp_enabled: bool = True
    auto_sl_enabled: bool = True
    created_at: datetime

    @property
    def has_pin(self) -> bool:
        return bool(self.pin_hash)

    def identity(self) -> "WalletIdentity":
        return WalletIdentity(
            user_id=self.id,
            wallet_address=self.wallet_address,
            encrypted_private_key=self.encrypted_private_key,
        )

    @classmethod
    def from_row(cls, row: Any) -> "User":
        data = dict(row)
        data["created_at"] = datetime.fromtimestamp(int(data["created_at"]))
        data["auto_tp_enabled"] = bool(data.get("auto_tp_enabled", 1))
        data["auto_sl_enabled"] = bool(data.get("auto_sl_enabled", 1))
        return cls(**data)


class WalletIdentity(BaseModel):
    """Lo mínimo que necesita el ejecutor de swaps para firmar por un usuario."""

    user_id: int
    wallet_address: str
    encrypted_private_key: str = Field(repr=False)
