"""
Market Regime Detection

Fuses the Hurst exponent with a rolling volatility estimate:

    1. extreme volatility (z > 2 or ≥ 2x mean)   → HIGH_VOLATILITY
    2. H > 0.55, low/normal volatility          → TRENDING
       H > 0.55, high volatility                → TRANSITIONING
    3. H < 0.45                                 → MEAN_REVERTING
    4. random-walk band
       low volatility                           → LOW_VOLATILITY
       Hurst band differs from earlier window   → TRANSITIONING
       frequent direction changes               → CHOPPY
       otherwise                                → UNKNOWN

`probability` is a bounded confidence heuristic that grows with how far
Hurst/volatility sit from their neutral values. It is not a calibrated
statistical probability.

MultiFactorRegimeDetector is an alternative scorer that sums weighted
indicator votes per regime and reports every score.
"""

import logging
from typing import Optional, Sequence

import numpy as np
import pandas as pd

from trendcalc.quant_stats.config import RegimeConfig
from trendcalc.quant_stats.exceptions import EmptyInputError, InsufficientDataError
from trendcalc.quant_stats.hurst import HurstExponentCalculator
from trendcalc.quant_stats.regression import LinearRegressionAnalyzer
from trendcalc.quant_stats.schemas import (
    MarketBehavior,
    MultiFactorRegime,
    MultiFactorRegimeResult,
    RegimeIndicators,
    RegimeResult,
    RegimeType,
    VolatilityRegime,
)
from trendcalc.quant_stats.stationarity import StationarityTester
from trendcalc.quant_stats.volatility import DISPERSION_EPSILON, GARCHVolatilityModel

LOG = logging.getLogger(__name__)


def count_direction_changes(prices: Sequence[float]) -> int:
    """Number of sign flips between consecutive non-zero price moves"""
    diffs = np.diff(np.asarray(prices, dtype=float))
    signs = np.sign(diffs)
    signs = signs[signs != 0]
    if signs.size < 2:
        return 0
    return int(np.sum(signs[1:] != signs[:-1]))


def direction_change_ratio(prices: Sequence[float]) -> float:
    """Direction changes per possible turning point, in [0, 1]"""
    n = len(prices)
    if n < 3:
        return 0.0
    return count_direction_changes(prices) / (n - 2)


class RegimeDetector:
    """
    Classify the current market regime of a price series.

    The only statistical component that raises: callers must supply at
    least `min_samples` prices.
    """

    def __init__(
        self,
        config: Optional[RegimeConfig] = None,
        hurst: Optional[HurstExponentCalculator] = None,
        volatility_model: Optional[GARCHVolatilityModel] = None,
        stationarity: Optional[StationarityTester] = None
    ):
        self.config = config or RegimeConfig()
        self.hurst = hurst or HurstExponentCalculator()
        self.volatility_model = volatility_model or GARCHVolatilityModel()
        self.stationarity = stationarity or StationarityTester()

        LOG.info(f"Regime detector initialized: min_samples={self.config.min_samples}, "
                 f"vol_window={self.config.volatility_window}")

    @property
    def min_samples(self) -> int:
        return self.config.min_samples

    def detect(self, prices: Sequence[float]) -> RegimeResult:
        """
        Detect the regime of a price series.

        Args:
            prices: Chronological prices

        Returns:
            RegimeResult

        Raises:
            EmptyInputError: no prices
            InsufficientDataError: fewer than min_samples prices
        """
        values = np.asarray(prices, dtype=float)
        n = values.size
        if n == 0:
            raise EmptyInputError(component="RegimeDetector")
        if n < self.config.min_samples:
            raise InsufficientDataError(self.config.min_samples, n, component="RegimeDetector")

        hurst = self.hurst.calculate(values).exponent
        behavior = self.hurst.interpret(hurst).behavior

        returns = pd.Series(self.stationarity.to_log_returns(values))
        rolling_vol = returns.rolling(window=self.config.volatility_window).std().dropna()

        current_vol = float(rolling_vol.iloc[-1]) if len(rolling_vol) else float(returns.std())
        historical = rolling_vol.iloc[:-1].to_numpy()

        vol_regime = self.volatility_model.classify_volatility_regime(current_vol, historical)
        z_score = self.volatility_model.volatility_z_score(current_vol, historical)
        mean_vol = float(historical.mean()) if historical.size else 0.0
        vol_ratio = current_vol / mean_vol if mean_vol > DISPERSION_EPSILON else 1.0

        window = min(self.config.momentum_window, n)
        recent = values[-window:]
        momentum = float((recent[-1] - recent[0]) / recent[0]) if recent[0] != 0 else 0.0
        dcr = direction_change_ratio(values)

        result = RegimeResult(
            hurst=hurst,
            volatility=current_vol,
            volatility_regime=vol_regime,
            volatility_z_score=z_score,
            momentum=momentum,
            direction_change_ratio=dcr,
        )

        if vol_regime == VolatilityRegime.EXTREME or vol_ratio >= self.config.high_volatility_ratio:
            excess = max(z_score - 2.0, vol_ratio - self.config.high_volatility_ratio, 0.0)
            result.type = RegimeType.HIGH_VOLATILITY
            result.probability = min(0.6 + 0.1 * excess, 0.95)

        elif behavior == MarketBehavior.TRENDING:
            strength = float(np.clip((hurst - 0.5) * 2, 0.0, 1.0))
            if vol_regime == VolatilityRegime.HIGH:
                result.type = RegimeType.TRANSITIONING
                result.probability = strength * 0.5
            else:
                result.type = RegimeType.TRENDING
                result.probability = strength

        elif behavior == MarketBehavior.MEAN_REVERTING:
            result.type = RegimeType.MEAN_REVERTING
            result.probability = float(np.clip((0.5 - hurst) * 2, 0.0, 1.0))

        elif vol_regime == VolatilityRegime.LOW:
            result.type = RegimeType.LOW_VOLATILITY
            result.probability = float(np.clip(0.3 + 0.2 * (-z_score - 1.0), 0.3, 0.9))

        else:
            self._classify_random_walk(values, result)

        LOG.debug(f"Regime: {result.type.value} p={result.probability:.2f} "
                  f"H={hurst:.3f} vol={vol_regime.value} z={z_score:.2f}")
        return result

    def _classify_random_walk(self, values: np.ndarray, result: RegimeResult):
        """Use the earlier part of the series as regime history"""
        segment = max(self.config.min_history_segment, int(values.size * self.config.history_fraction))
        previous = self.hurst.calculate(values[:-segment]).exponent
        result.previous_hurst = previous

        if self.hurst.interpret(previous).behavior != MarketBehavior.RANDOM_WALK:
            result.type = RegimeType.TRANSITIONING
            result.probability = float(np.clip(abs(previous - result.hurst) * 2, 0.0, 1.0))
        elif result.direction_change_ratio >= self.config.choppy_direction_change_ratio:
            result.type = RegimeType.CHOPPY
            result.probability = float(np.clip(result.direction_change_ratio, 0.0, 1.0))
        else:
            result.type = RegimeType.UNKNOWN
            result.probability = 0.0


class MultiFactorRegimeDetector:
    """
    Score-based regime detection.

    Each regime collects points from Hurst, regression R², a recent-vs-
    overall volatility z-score, normalized momentum and the direction-change
    ratio; the highest total wins (ties go to the earlier regime in
    TRENDING_UP, TRENDING_DOWN, RANGING, HIGH_VOLATILITY order). Scores are
    in [0, 1] but, like RegimeResult.probability, are not calibrated.
    """

    def __init__(
        self,
        config: Optional[RegimeConfig] = None,
        hurst: Optional[HurstExponentCalculator] = None,
        regression: Optional[LinearRegressionAnalyzer] = None,
        stationarity: Optional[StationarityTester] = None
    ):
        self.config = config or RegimeConfig()
        self.hurst = hurst or HurstExponentCalculator()
        self.regression = regression or LinearRegressionAnalyzer()
        self.stationarity = stationarity or StationarityTester()

    def detect(self, prices: Sequence[float]) -> MultiFactorRegimeResult:
        """
        Score every regime and return the winner.

        Raises:
            EmptyInputError: no prices
            InsufficientDataError: fewer than multi_factor_min_samples prices
        """
        values = np.asarray(prices, dtype=float)
        n = values.size
        if n == 0:
            raise EmptyInputError(component="MultiFactorRegimeDetector")
        if n < self.config.multi_factor_min_samples:
            raise InsufficientDataError(self.config.multi_factor_min_samples, n,
                                        component="MultiFactorRegimeDetector")

        indicators = self.calculate_indicators(values)
        scores = {
            MultiFactorRegime.TRENDING_UP: self._score_trending(indicators, 1),
            MultiFactorRegime.TRENDING_DOWN: self._score_trending(indicators, -1),
            MultiFactorRegime.RANGING: self._score_ranging(indicators),
            MultiFactorRegime.HIGH_VOLATILITY: self._score_high_volatility(indicators),
        }
        winner = max(scores, key=scores.get)

        LOG.debug(f"Multi-factor regime: {winner.value} "
                  + ", ".join(f"{k.value}={v:.2f}" for k, v in scores.items()))
        return MultiFactorRegimeResult(type=winner, probability=scores[winner],
                                       scores=scores, indicators=indicators)

    def calculate_indicators(self, values: np.ndarray) -> RegimeIndicators:
        start, end = float(values[0]), float(values[-1])
        momentum = (end - start) / start * self.config.momentum_scale if start != 0 else 0.0

        return RegimeIndicators(
            hurst=self.hurst.calculate(values).exponent,
            r_squared=self.regression.calculate(values).r_squared,
            volatility_z_score=self._volatility_z_score(values),
            momentum_score=float(np.clip(momentum, -1.0, 1.0)),
            direction_change_ratio=direction_change_ratio(values),
        )

    def _volatility_z_score(self, values: np.ndarray) -> float:
        # Dispersion of volatility approximated as a fixed share of its level
        returns = pd.Series(self.stationarity.to_log_returns(values))
        overall = float(returns.std())
        recent = float(returns.iloc[-self.config.recent_volatility_window:].std())
        scale = overall * self.config.volatility_dispersion_fraction
        if not np.isfinite(recent) or not np.isfinite(overall) or scale <= DISPERSION_EPSILON:
            return 0.0
        return (recent - overall) / scale

    @staticmethod
    def _score_trending(ind: RegimeIndicators, sign: int) -> float:
        return (
            (0.3 if ind.hurst > 0.55 else 0.0)
            + (0.2 if ind.r_squared > 0.5 else 0.0)
            + (0.3 if sign * ind.momentum_score > 0.3 else 0.0)
            + (0.2 if ind.direction_change_ratio < 0.3 else 0.0)
        )

    @staticmethod
    def _score_ranging(ind: RegimeIndicators) -> float:
        return (
            (0.3 if ind.hurst < 0.45 else 0.0)
            + (0.3 if ind.r_squared < 0.3 else 0.0)
            + (0.2 if ind.direction_change_ratio > 0.4 else 0.0)
            + (0.2 if ind.volatility_z_score < 0 else 0.0)
        )

    @staticmethod
    def _score_high_volatility(ind: RegimeIndicators) -> float:
        z = ind.volatility_z_score
        if z > 2.0:
            return 0.9
        if z > 1.5:
            return 0.6
        if z > 1.0:
            return 0.3
        return 0.0
