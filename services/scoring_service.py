# services/scoring_service.py
from __future__ import annotations
import time
from dataclasses import dataclass, field
from typing import Callable, List, Optional

from models.token import TokenHolder, TokenPair
from services.price_service import PriceService
from services.solana_service import SolanaService
from utils.log_config import logger_manager, log_function

logger = logger_manager.setup_logger(__name__)


@dataclass
class EntryScore:
    score: int = 0
    signals: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    is_high_gamble: bool = False

    @property
    def verdict(self) -> str:
        if self.is_high_gamble:
            return "HIGH GAMBLE"
        if self.score >= 70:
            return "Strong setup."
        if self.score >= 50:
            return "Decent setup."
        return "Weak setup. Proceed with caution."


@dataclass
class ScanResult:
    pair: TokenPair
    score: EntryScore


class ScoringService:
    """
    Puntuación de entrada (0-100) de un token a partir del mejor par de Solana
    en Dexscreener y de sus mayores holders on-chain.

    Reglas (suman): MC < 150k +15; Vol24h/MC > 0.6 +20; cambio 1h > 10% +10;
    compras/ventas 1h > 1.2 +10; LP/MC > 15% +15; top10 < 35% +10;
    mayor holder < 5% +10; edad entre 10 min y 2 h +10.
    Edad < 10 min con liquidez < 3k USD marca HIGH GAMBLE.
    """

    def __init__(self, prices: PriceService, solana: SolanaService,
                 clock: Callable[[], float] = time.time) -> None:
        self.prices = prices
        self.solana = solana
        self._clock = clock

    @log_function
    def scan(self, token_address: str) -> Optional[ScanResult]:
        """None si Dexscreener no tiene par de Solana para el token."""
        pair = self.prices.get_market_pair(token_address)
        if pair is None:
            return None
        return ScanResult(pair=pair, score=self.score(pair, self._holders(token_address)))

    def _holders(self, token_address: str) -> Optional[List[TokenHolder]]:
        try:
            return self.solana.get_top_holders(token_address, limit=10)
        except Exception as e:
            logger.warning(f"[scan] holders no disponibles para {token_address}: {e}")
            return None

    def _age_minutes(self, pair: TokenPair) -> float:
        if not pair.pair_created_at:
            return float("inf")
        return (self._clock() * 1000 - pair.pair_created_at) / 60000.0

    def score(self, pair: TokenPair, holders: Optional[List[TokenHolder]]) -> EntryScore:
        result = EntryScore()
        mc = pair.effective_market_cap
        liquidity = pair.liquidity_usd
        age = self._age_minutes(pair)

        if age < 10 and liquidity < 3000:
            result.is_high_gamble = True
            result.warnings.append("HIGH GAMBLE: Age < 10min + Liq < $3k")

        if 0 < mc < 150_000:
            self._add(result, 15, "Low MC (<$150k)")

        if mc > 0:
            vol_ratio = pair.volume_h24 / mc
            if vol_ratio > 0.6:
                self._add(result, 20, f"High Vol/MC ({vol_ratio * 100:.0f}%)")

        if pair.price_change_h1 > 10:
            self._add(result, 10, f"1h pump (+{pair.price_change_h1:.1f}%)")

        if pair.sells_h1 > 0:
            flow = pair.buys_h1 / pair.sells_h1
            if flow > 1.2:
                self._add(result, 10, f"Bullish flow ({flow:.2f}x)")

        if mc > 0:
            lp_ratio = liquidity / mc * 100
            if lp_ratio > 15:
                self._add(result, 15, f"Strong LP ({lp_ratio:.1f}%)")

        if holders is None:
            # sin datos no se premia ni se penaliza la distribución
            result.warnings.append("Holder data unavailable")
        else:
            top10 = sum(h.percentage for h in holders[:10])
            if top10 < 35:
                self._add(result, 10, f"Distributed (Top10: {top10:.1f}%)")
            elif top10 > 60:
                result.warnings.append(f"Concentrated supply: Top10 hold {top10:.1f}%")

            dev = holders[0].percentage if holders else 0.0
            if dev < 5:
                self._add(result, 10, f"Low dev bag ({dev:.1f}%)")
            elif dev > 20:
                result.warnings.append(f"Heavy dev bag: {dev:.1f}%")

        if 10 < age < 120:
            self._add(result, 10, f"Fresh token ({int(age)}min)")

        return result

    @staticmethod
    def _add(result: EntryScore, points: int, label: str) -> None:
        result.score += points
        result.signals.append(f"{label}: +{points}")
