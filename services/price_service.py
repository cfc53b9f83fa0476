# services/price_service.py
from __future__ import annotations
import os
import requests
from typing import Dict, Iterable, List, Optional

from models.token import TokenPair
from utils.config import SOL_MINT
from utils.log_config import logger_manager, log_function

logger = logger_manager.setup_logger(__name__)

# Dexscreener admite hasta 30 direcciones por petición
_MAX_ADDRESSES_PER_CALL = 30


class PriceService:
    """
    Precio on-chain en SOL (priceNative) vía Dexscreener.

    Config por .env:
      - DEXSCREENER_API (default: https://api.dexscreener.com/latest)

    Solo se aceptan pares de Solana cotizados contra SOL, para que priceNative
    esté siempre en la misma unidad que el precio de entrada. Si hay varios,
    gana el de mayor liquidez en USD.
    """

    def __init__(self, base_url: Optional[str] = None, session: Optional[requests.Session] = None,
                 timeout: float = 10.0) -> None:
        self.base_url = (base_url or os.getenv("DEXSCREENER_API")
                         or "https://api.dexscreener.com/latest").rstrip("/")
        self.session = session or requests.Session()
        self.timeout = timeout

    def _fetch_pairs(self, addresses: List[str]) -> list[dict]:
        url = f"{self.base_url}/dex/tokens/{','.join(addresses)}"
        r = self.session.get(url, timeout=self.timeout)
        r.raise_for_status()
        return (r.json() or {}).get("pairs") or []

    @staticmethod
    def _is_sol_quoted(raw: dict) -> bool:
        quote = raw.get("quoteToken") or {}
        return raw.get("chainId") == "solana" and quote.get("address") == SOL_MINT

    @log_function
    def get_pairs(self, token_addresses: Iterable[str]) -> Dict[str, TokenPair]:
        """
        Mejor par por token en el menor número de peticiones posible.
        Un bloque que falla se registra y se salta; los tokens sin par no aparecen.
        """
        return self._best_pairs(token_addresses, sol_quoted=True)

    def _best_pairs(self, token_addresses: Iterable[str], sol_quoted: bool) -> Dict[str, TokenPair]:
        wanted = list(dict.fromkeys(a for a in token_addresses if a))
        result: Dict[str, TokenPair] = {}
        for i in range(0, len(wanted), _MAX_ADDRESSES_PER_CALL):
            chunk = wanted[i:i + _MAX_ADDRESSES_PER_CALL]
            try:
                pairs = self._fetch_pairs(chunk)
            except (requests.RequestException, ValueError) as e:
                logger.error(f"[prices] error consultando Dexscreener ({len(chunk)} tokens): {e}")
                continue

            for raw in pairs:
                if sol_quoted and not self._is_sol_quoted(raw):
                    continue
                if raw.get("chainId") != "solana":
                    continue
                try:
                    pair = TokenPair.from_dexscreener(raw)
                except (TypeError, ValueError) as e:
                    logger.debug(f"[prices] par descartado: {e}")
                    continue
                if pair.token_address not in chunk:
                    continue
                if sol_quoted and pair.price_native <= 0:
                    continue
                current = result.get(pair.token_address)
                if current is None or pair.liquidity_usd > current.liquidity_usd:
                    result[pair.token_address] = pair
        return result

    def get_prices(self, token_addresses: Iterable[str]) -> Dict[str, float]:
        """token -> precio en SOL; los tokens sin precio simplemente faltan."""
        return {addr: pair.price_native for addr, pair in self.get_pairs(token_addresses).items()}

    def get_token_pair(self, token_address: str) -> Optional[TokenPair]:
        return self.get_pairs([token_address]).get(token_address)

    def get_market_pair(self, token_address: str) -> Optional[TokenPair]:
        """Par de Solana más líquido sea cual sea la cotización (para el escáner de entrada)."""
        return self._best_pairs([token_address], sol_quoted=False).get(token_address)

    def get_price(self, token_address: str) -> Optional[float]:
        pair = self.get_token_pair(token_address)
        return pair.price_native if pair else None
