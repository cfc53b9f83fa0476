"""
Enumerations for the lifecycle of a trade in sol_trenches.

A trade is created ``open`` on a buy fill and moves exactly once to
``closed``, either by a manual 100% sell, by the TP/SL monitor, or when
the monitor finds the wallet already emptied outside the bot.
"""

from __future__ import annotations

from enum import Enum


class TradeStatus(str, Enum):
    """Possible states for a trade row."""

    OPEN = "open"
    CLOSED = "closed"


class CloseReason(str, Enum):
    """Who closed the position."""

    TAKE_PROFIT = "TP"
    STOP_LOSS = "SL"
    MANUAL = "MANUAL"
    # tokens vendidos o movidos fuera del bot
    EXTERNAL = "EXTERNAL"
