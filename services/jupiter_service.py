# services/jupiter_service.py
from __future__ import annotations
import os
import requests
from typing import Any, Optional

from utils.log_config import logger_manager, log_function

logger = logger_manager.setup_logger(__name__)


class JupiterService:
    """
    Agregador Jupiter: cotización y construcción de la tx de swap (sin firmar).

    Config por .env:
      - JUPITER_API (default: https://quote-api.jup.ag)

    Ambos métodos devuelven None si falla; el ejecutor no reintenta estos pasos.
    """
    def __init__(self, base_url: Optional[str] = None, session: Optional[requests.Session] = None,
                 timeout: float = 15.0) -> None:
        self.base_url = (base_url or os.getenv("JUPITER_API") or "https://quote-api.jup.ag").rstrip("/")
        self.session = session or requests.Session()
        self.timeout = timeout

    @log_function
    def get_quote(self, input_mint: str, output_mint: str, amount: int, slippage_bps: int) -> Optional[dict[str, Any]]:
        params = {
            "inputMint": input_mint,
            "outputMint": output_mint,
            "amount": str(int(amount)),
            "slippageBps": int(slippage_bps),
        }
        try:
            r = self.session.get(f"{self.base_url}/v6/quote", params=params, timeout=self.timeout)
            r.raise_for_status()
            quote = r.json()
        except (requests.RequestException, ValueError) as e:
            logger.error(f"[jupiter] error de cotización {input_mint[:6]}→{output_mint[:6]}: {e}")
            return None
        if not quote or "outAmount" not in quote:
            logger.warning(f"[jupiter] cotización sin outAmount: {quote}")
            return None
        return quote

    @log_function
    def build_swap_transaction(self, quote: dict[str, Any], user_public_key: str) -> Optional[str]:
        """Devuelve la VersionedTransaction serializada en base64, lista para firmar."""
        payload = {
            "quoteResponse": quote,
            "userPublicKey": user_public_key,
            "wrapAndUnwrapSol": True,
            "dynamicComputeUnitLimit": True,
            "prioritizationFeeLamports": "auto",
        }
        try:
            r = self.session.post(f"{self.base_url}/v6/swap", json=payload, timeout=self.timeout)
            r.raise_for_status()
            swap_tx = (r.json() or {}).get("swapTransaction")
        except (requests.RequestException, ValueError) as e:
            logger.error(f"[jupiter] error construyendo swap: {e}")
            return None
        if not swap_tx:
            logger.warning("[jupiter] respuesta sin swapTransaction")
            return None
        return swap_tx
