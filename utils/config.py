"""
Configuration loading for sol_trenches.

Numeric trading settings come from three layers, later ones winning:
the defaults declared on :class:`TradingConfig`, the ``trading:`` section of
``config.yaml`` at the project root, and environment variables named after
each field in upper case (``TP_PERCENT``, ``POLL_INTERVAL_MS``...). Secrets
(bot token, RPC URL, encryption secret) are never read from YAML.
"""

from __future__ import annotations

import os
from functools import lru_cache
from typing import Any, Dict

import yaml  # type: ignore
from pydantic import BaseModel, Field

SOL_MINT = "So11111111111111111111111111111111111111112"


def load_config(path: str | None = None) -> Dict[str, Any]:
    """Load application configuration from ``config.yaml``.

    :returns: A dictionary representing the configuration. Missing files
        quietly yield an empty dictionary.
    """
    if path is None:
        base_dir = os.path.abspath(os.path.join(os.path.dirname(__file__), os.pardir))
        path = os.getenv("CONFIG_PATH", os.path.join(base_dir, "config.yaml"))
    if os.path.exists(path):
        with open(path, "r", encoding="utf-8") as f:
            return yaml.safe_load(f) or {}
    return {}


class TradingConfig(BaseModel):
    # límites de trading (SOL)
    min_buy_amount: float = 0.05
    min_trade_balance: float = 0.1
    fee_reserve_sol: float = 0.01
    withdraw_fee_reserve_sol: float = 0.001

    # TP/SL automáticos (%)
    tp_percent: float = 80.0
    sl_percent: float = -25.0
    poll_interval_ms: int = Field(default=15000, gt=0)

    # slippage (%)
    default_slippage_percent: float = 20.0
    max_slippage_percent: float = 50.0

    # beta cerrada y rate limit
    max_users: int = 20
    max_trades_per_minute: int = 5
    rate_limit_window_ms: int = 60000

    # reintentos RPC: max_rpc_retries=2 -> 3 intentos en total
    max_rpc_retries: int = Field(default=2, ge=0)
    rpc_retry_delay_ms: int = Field(default=1000, ge=0)

    # estado conversacional efímero
    pending_state_ttl_s: int = 60

    # multi-wallet; el mensaje con la clave exportada se borra tras export_message_ttl_s
    max_wallets_per_user: int = Field(default=3, ge=1)
    export_message_ttl_s: int = Field(default=30, gt=0)

    sol_mint: str = SOL_MINT

    @property
    def default_slippage_bps(self) -> int:
        return int(self.default_slippage_percent * 100)

    @property
    def max_slippage_bps(self) -> int:
        return int(self.max_slippage_percent * 100)

    @classmethod
    def from_sources(cls, raw: Dict[str, Any] | None = None, environ: Dict[str, str] | None = None) -> "TradingConfig":
        values: Dict[str, Any] = dict((raw or {}).get("trading") or {})
        env = os.environ if environ is None else environ
        for name in cls.model_fields:
            env_value = env.get(name.upper())
            if env_value not in (None, ""):
                values[name] = env_value
        return cls(**values)


@lru_cache(maxsize=1)
def get_trading_config() -> TradingConfig:
    return TradingConfig.from_sources(load_config())
