from __future__ import annotations

from enum import Enum


class SwapFailure(str, Enum):
    """Motivo estructurado de un swap fallido (el texto para el usuario va aparte)."""

    VALIDATION = "validation"
    INSUFFICIENT_BALANCE = "insufficient_balance"
    NO_TOKENS = "no_tokens"
    POSITION_EXISTS = "position_exists"
    NO_OPEN_TRADE = "no_open_trade"
    QUOTE = "quote"
    BUILD = "build"
    SUBMIT = "submit"
    INTERNAL = "internal"
