"""
Hurst Exponent (Rescaled Range)

    H < 0.45   mean reverting  → range trading
    H ≈ 0.5    random walk     → stay neutral
    H > 0.55   persistent      → trend following

R/S is averaged over non-overlapping chunks of log returns for each lag;
H is the slope of log(R/S) on log(lag), clamped to [0, 1]. Degenerate
input (constant prices, too few lags, non-positive prices) yields 0.5.
"""

import logging
from typing import List, Optional, Sequence

import numpy as np

from trendcalc.quant_stats.config import HurstConfig
from trendcalc.quant_stats.schemas import (
    HurstInterpretation,
    HurstResult,
    MarketBehavior,
    StrategyType,
)

LOG = logging.getLogger(__name__)

NEUTRAL_HURST = 0.5
MIN_RS = 1e-4


class HurstExponentCalculator:
    """Rescaled-range Hurst exponent estimator"""

    def __init__(self, config: Optional[HurstConfig] = None):
        self.config = config or HurstConfig()

    def calculate(self, prices: Sequence[float]) -> HurstResult:
        """
        Estimate the Hurst exponent of a price series.

        Args:
            prices: Chronological prices (positive)

        Returns:
            HurstResult with exponent in [0, 1]
        """
        values = np.asarray(prices, dtype=float)

        if values.size < 2 or not np.all(np.isfinite(values)):
            return self._neutral()
        if np.any(values <= 0):
            LOG.warning("Hurst: non-positive prices, returning neutral exponent")
            return self._neutral()

        returns = np.diff(np.log(values))
        n = returns.size

        # Constant (or constant-growth) series: R/S is pure rounding noise
        if np.std(returns) <= 1e-9 * max(float(np.mean(np.abs(returns))), 1e-12):
            return self._neutral()

        lags: List[int] = []
        rs_values: List[float] = []
        for lag in self.config.lags:
            if lag >= n / 2:
                continue
            chunks = n // lag
            rs = np.mean([
                self._rescaled_range(returns[i * lag:(i + 1) * lag])
                for i in range(chunks)
            ])
            lags.append(lag)
            rs_values.append(float(rs))

        if len(lags) < 2:
            LOG.debug(f"Hurst: only {len(lags)} usable lag(s) for {n} returns")
            return self._neutral()

        log_lags = np.log(lags)
        log_rs = np.log(np.maximum(rs_values, MIN_RS))
        hurst = float(np.polyfit(log_lags, log_rs, 1)[0])

        if not np.isfinite(hurst):
            return self._neutral()

        exponent = float(np.clip(hurst, 0.0, 1.0))
        return HurstResult(
            exponent=exponent,
            interpretation=self.interpret(exponent),
            rs_values=rs_values,
            lags=lags,
        )

    def interpret(self, hurst: float) -> HurstInterpretation:
        """Map an exponent to behavior, strategy and confidence"""
        cfg = self.config
        if hurst < cfg.mean_reverting_threshold:
            should_trade = hurst < cfg.strong_mean_reverting_threshold
            strength = "Strong" if should_trade else "Mild"
            advice = "Favorable for range trading." if should_trade else "Cautious range trading."
            return HurstInterpretation(
                behavior=MarketBehavior.MEAN_REVERTING,
                strategy_type=StrategyType.RANGE_TRADING,
                confidence=(0.5 - hurst) * 2,
                should_trade=should_trade,
                description=f"{strength} mean reversion (H={hurst:.3f}). {advice}",
            )

        if hurst > cfg.trending_threshold:
            should_trade = hurst > cfg.strong_trending_threshold
            strength = "Strong" if should_trade else "Mild"
            advice = "Favorable for trend-following." if should_trade else "Conservative trend-following."
            return HurstInterpretation(
                behavior=MarketBehavior.TRENDING,
                strategy_type=StrategyType.TREND_FOLLOWING,
                confidence=(hurst - 0.5) * 2,
                should_trade=should_trade,
                description=f"{strength} trending (H={hurst:.3f}). {advice}",
            )

        return HurstInterpretation(
            behavior=MarketBehavior.RANDOM_WALK,
            strategy_type=StrategyType.NEUTRAL,
            confidence=0.0,
            should_trade=False,
            description=f"Random walk behavior (H={hurst:.3f}). Avoid trading or use neutral strategies.",
        )

    def _neutral(self) -> HurstResult:
        return HurstResult(exponent=NEUTRAL_HURST, interpretation=self.interpret(NEUTRAL_HURST))

    @staticmethod
    def _rescaled_range(chunk: np.ndarray) -> float:
        if chunk.size == 0:
            return 0.0
        deviations = np.cumsum(chunk - chunk.mean())
        std = chunk.std()
        if std == 0:
            return 0.0
        return float((deviations.max() - deviations.min()) / std)
