# utils/position_locks.py
from __future__ import annotations
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Dict, Iterator, Tuple


@dataclass
class _Slot:
    lock: threading.Lock = field(default_factory=threading.Lock)
    users: int = 0


class PositionLocks:
    """
    Mutex por posición (user_id, token_address).

    La venta manual, la compra y el cierre automático TP/SL toman el mismo
    lock durante "comprobar abierta -> swap -> cerrar". El lock es advisory:
    la garantía final la da TradeRepository.close_trade (UPDATE condicionado).
    Cada entrada vive mientras alguien la tiene o la espera.
    """

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._slots: Dict[Tuple[int, str], _Slot] = {}

    @contextmanager
    def hold(self, user_id: int, token_address: str, timeout: float = -1) -> Iterator[bool]:
        """
        Cede True si se obtuvo el lock. Con timeout=0 no bloquea (el monitor lo usa
        para saltarse una posición que ya está vendiendo el usuario).
        """
        key = (int(user_id), token_address)
        with self._guard:
            slot = self._slots.setdefault(key, _Slot())
            slot.users += 1
        try:
            acquired = slot.lock.acquire(timeout=timeout) if timeout >= 0 else slot.lock.acquire()
            try:
                yield acquired
            finally:
                if acquired:
                    slot.lock.release()
        finally:
            with self._guard:
                slot.users -= 1
                if slot.users == 0:
                    del self._slots[key]
