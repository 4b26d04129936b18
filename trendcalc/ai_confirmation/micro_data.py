"""
Market Micro Data

Order-flow and candle-shape features fed to the AI prompt:

    imbalance        = (bid vol - ask vol) / (bid vol + ask vol) over top N levels
    volatility_score = mean((upper wick + lower wick) / open) * 10000

A missing price is an expected, retryable condition: the calculator
returns None instead of raising.
"""

import logging
from typing import List, Optional, Sequence

import numpy as np

from trendcalc.ai_confirmation.config import AIConfirmationConfig
from trendcalc.ai_confirmation.exceptions import MarketDataError
from trendcalc.ai_confirmation.providers import MarketDataProvider
from trendcalc.ai_confirmation.schemas import Kline, MarketMicroData, OrderBookDepth

LOG = logging.getLogger(__name__)

BASIS_POINTS = 10000.0


def calculate_imbalance(depth: OrderBookDepth, levels: int) -> float:
    """Normalized bid/ask volume difference, 0 when both sides are empty"""
    bid_volume = sum(q for _, q in depth.bids[:levels])
    ask_volume = sum(q for _, q in depth.asks[:levels])
    total = bid_volume + ask_volume
    if total <= 0:
        return 0.0
    return float(np.clip((bid_volume - ask_volume) / total, -1.0, 1.0))


def calculate_volatility_score(klines: Sequence[Kline]) -> float:
    """Mean wick size relative to open, in basis points"""
    scores = []
    for k in klines:
        if k.open <= 0:
            continue
        upper_wick = max(k.high - max(k.open, k.close), 0.0)
        lower_wick = max(min(k.open, k.close) - k.low, 0.0)
        scores.append((upper_wick + lower_wick) / k.open * BASIS_POINTS)
    return float(np.mean(scores)) if scores else 0.0


class MarketMicroDataCalculator:
    """Builds MarketMicroData from a market data provider"""

    def __init__(self, provider: MarketDataProvider, config: Optional[AIConfirmationConfig] = None):
        self.provider = provider
        self.config = config or AIConfirmationConfig()

    async def fetch_micro_data(self, symbol: str) -> Optional[MarketMicroData]:
        """
        Fetch price, depth and klines for a symbol.

        Returns:
            MarketMicroData, or None when no usable price is available
        """
        try:
            price = await self.provider.get_price(symbol)
        except MarketDataError as e:
            LOG.warning(f"{symbol}: price unavailable ({e})")
            return None

        if price is None or not np.isfinite(price) or price <= 0:
            LOG.debug(f"{symbol}: no price from provider")
            return None

        depth = await self._fetch_depth(symbol)
        klines = await self._fetch_klines(symbol)

        micro = MarketMicroData(
            symbol=symbol,
            last_price=float(price),
            imbalance=calculate_imbalance(depth, self.config.imbalance_levels),
            volatility_score=calculate_volatility_score(klines),
            klines=klines,
        )
        LOG.debug(f"{symbol}: price={micro.last_price} imbalance={micro.imbalance:.4f} "
                  f"vol_score={micro.volatility_score:.2f} klines={len(klines)}")
        return micro

    async def _fetch_depth(self, symbol: str) -> OrderBookDepth:
        try:
            raw = await self.provider.get_order_book_depth(symbol, self.config.order_book_limit)
        except MarketDataError as e:
            LOG.warning(f"{symbol}: order book unavailable ({e})")
            return OrderBookDepth()
        return OrderBookDepth.from_raw(raw)

    async def _fetch_klines(self, symbol: str) -> List[Kline]:
        try:
            raw = await self.provider.get_klines(symbol, self.config.kline_interval, self.config.kline_limit)
        except MarketDataError as e:
            LOG.warning(f"{symbol}: klines unavailable ({e})")
            return []

        klines = []
        for entry in raw or []:
            try:
                klines.append(entry if isinstance(entry, Kline) else Kline.from_raw(entry))
            except (KeyError, IndexError, TypeError, ValueError):
                LOG.debug(f"{symbol}: skipping malformed kline {entry!r}")
        return klines
