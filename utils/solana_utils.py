"""
Small helpers around Solana units and addresses.
"""

from __future__ import annotations

from solders.pubkey import Pubkey

LAMPORTS_PER_SOL = 1_000_000_000


def sol_to_lamports(amount_sol: float) -> int:
    return int(amount_sol * LAMPORTS_PER_SOL)


def lamports_to_sol(lamports: int | float) -> float:
    return float(lamports) / LAMPORTS_PER_SOL


def is_valid_solana_address(address: str) -> bool:
    """True si ``address`` es una clave pública base58 de 32 bytes."""
    if not address or not 32 <= len(address) <= 44:
        return False
    try:
        Pubkey.from_string(address)
        return True
    except Exception:
        return False
