# utils/formatting.py
from __future__ import annotations


def format_sol(amount: float) -> str:
    if amount >= 1000:
        return f"{amount:.2f}"
    if abs(amount) >= 1:
        return f"{amount:.4f}"
    return f"{amount:.6f}"


def format_price(price: float) -> str:
    if price < 0.00001:
        return f"{price:.4e}"
    if price < 0.01:
        return f"{price:.8f}"
    if price < 1:
        return f"{price:.6f}"
    if price < 100:
        return f"{price:.4f}"
    return f"{price:.2f}"


def format_percent(percent: float) -> str:
    sign = "+" if percent >= 0 else ""
    return f"{sign}{percent:.2f}%"


def signed_sol(amount: float) -> str:
    sign = "+" if amount >= 0 else ""
    return f"{sign}{format_sol(amount)}"


def truncate_address(address: str, chars: int = 4) -> str:
    if len(address) <= chars * 2 + 3:
        return address
    return f"{address[:chars]}...{address[-chars:]}"


def esc(s: str) -> str:
    # escapado mínimo para Markdown
    return (s or "").replace("\\", "\\\\").replace("_", "\\_").replace("*", "\\*").replace("`", "\\`").replace("[", "\\[").replace("]", "\\]")


def format_compact(num: float) -> str:
    if num >= 1_000_000:
        return f"{num / 1_000_000:.2f}M"
    if num >= 1_000:
        return f"{num / 1_000:.2f}K"
    return f"{num:.2f}"
