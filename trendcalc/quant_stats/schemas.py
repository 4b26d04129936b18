"""
Output Schemas for the Trend Engine

Structured outputs of every statistical component and the final
trend result emitted per symbol.
"""

from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional

import numpy as np


class StationarityRecommendation(str, Enum):
    USE_PRICES = "USE_PRICES"
    USE_RETURNS = "USE_RETURNS"
    USE_DIFFERENCING = "USE_DIFFERENCING"


class ConfidenceLevel(str, Enum):
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"


class AutocorrelationSeverity(str, Enum):
    NONE = "NONE"
    MILD = "MILD"
    MODERATE = "MODERATE"
    SEVERE = "SEVERE"


class MarketBehavior(str, Enum):
    MEAN_REVERTING = "MEAN_REVERTING"
    RANDOM_WALK = "RANDOM_WALK"
    TRENDING = "TRENDING"


class StrategyType(str, Enum):
    RANGE_TRADING = "RANGE_TRADING"
    NEUTRAL = "NEUTRAL"
    TREND_FOLLOWING = "TREND_FOLLOWING"


class VolatilityRegime(str, Enum):
    LOW = "LOW"
    NORMAL = "NORMAL"
    HIGH = "HIGH"
    EXTREME = "EXTREME"


class RegimeType(str, Enum):
    TRENDING = "TRENDING"
    MEAN_REVERTING = "MEAN_REVERTING"
    HIGH_VOLATILITY = "HIGH_VOLATILITY"
    LOW_VOLATILITY = "LOW_VOLATILITY"
    TRANSITIONING = "TRANSITIONING"
    CHOPPY = "CHOPPY"
    UNKNOWN = "UNKNOWN"


class MultiFactorRegime(str, Enum):
    TRENDING_UP = "TRENDING_UP"
    TRENDING_DOWN = "TRENDING_DOWN"
    RANGING = "RANGING"
    HIGH_VOLATILITY = "HIGH_VOLATILITY"


class TrendDirection(str, Enum):
    LONG = "LONG"
    SHORT = "SHORT"
    WAIT = "WAIT"


@dataclass
class StationarityTestResult:
    """Split-half stationarity verdict"""
    is_stationary: bool = False
    variance_ratio: float = 0.0
    mean_difference: float = 0.0
    recommendation: StationarityRecommendation = StationarityRecommendation.USE_RETURNS
    confidence_level: ConfidenceLevel = ConfidenceLevel.LOW

    def to_dict(self) -> dict:
        return {
            'is_stationary': self.is_stationary,
            'variance_ratio': float(self.variance_ratio),
            'mean_difference': float(self.mean_difference),
            'recommendation': self.recommendation.value,
            'confidence_level': self.confidence_level.value,
        }


@dataclass
class AutocorrelationTestResult:
    """Durbin-Watson based residual autocorrelation verdict"""
    has_autocorrelation: bool = False
    durbin_watson: float = 2.0
    first_order_corr: float = 0.0
    severity: AutocorrelationSeverity = AutocorrelationSeverity.NONE

    def to_dict(self) -> dict:
        return {
            'has_autocorrelation': self.has_autocorrelation,
            'durbin_watson': float(self.durbin_watson),
            'first_order_corr': float(self.first_order_corr),
            'severity': self.severity.value,
        }


@dataclass
class LjungBoxResult:
    """Portmanteau test over the first `lags` autocorrelations"""
    statistic: float = 0.0
    p_value: float = 1.0
    has_autocorrelation: bool = False
    lags: int = 0

    def to_dict(self) -> dict:
        return {
            'statistic': float(self.statistic),
            'p_value': float(self.p_value),
            'has_autocorrelation': self.has_autocorrelation,
            'lags': self.lags,
        }


@dataclass
class RegressionResult:
    """
    OLS fit of price on sample index.

    residuals and predictions always have the input's length.
    """
    slope: float = 0.0
    intercept: float = 0.0
    r_squared: float = 0.0
    adjusted_r_squared: float = 0.0
    residuals: np.ndarray = field(default_factory=lambda: np.array([]))
    predictions: np.ndarray = field(default_factory=lambda: np.array([]))
    durbin_watson: float = 2.0
    autocorrelation: AutocorrelationTestResult = field(default_factory=AutocorrelationTestResult)

    def to_dict(self, include_series: bool = False) -> dict:
        result = {
            'slope': float(self.slope),
            'intercept': float(self.intercept),
            'r_squared': float(self.r_squared),
            'adjusted_r_squared': float(self.adjusted_r_squared),
            'durbin_watson': float(self.durbin_watson),
            'autocorrelation': self.autocorrelation.to_dict(),
        }
        if include_series:
            result['residuals'] = [float(v) for v in self.residuals]
            result['predictions'] = [float(v) for v in self.predictions]
        return result


@dataclass
class HurstInterpretation:
    behavior: MarketBehavior = MarketBehavior.RANDOM_WALK
    strategy_type: StrategyType = StrategyType.NEUTRAL
    confidence: float = 0.0
    should_trade: bool = False
    description: str = ""

    def to_dict(self) -> dict:
        return {
            'behavior': self.behavior.value,
            'strategy_type': self.strategy_type.value,
            'confidence': float(self.confidence),
            'should_trade': self.should_trade,
            'description': self.description,
        }


@dataclass
class HurstResult:
    """Rescaled-range Hurst exponent in [0, 1]"""
    exponent: float = 0.5
    interpretation: HurstInterpretation = field(default_factory=HurstInterpretation)
    rs_values: List[float] = field(default_factory=list)
    lags: List[int] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            'exponent': float(self.exponent),
            'interpretation': self.interpretation.to_dict(),
            'rs_values': [float(v) for v in self.rs_values],
            'lags': list(self.lags),
        }


@dataclass
class GARCHParams:
    omega: float = 0.0
    alpha: float = 0.10
    beta: float = 0.85

    @property
    def persistence(self) -> float:
        return self.alpha + self.beta

    @property
    def long_run_variance(self) -> float:
        if self.persistence >= 1.0:
            return self.omega
        return self.omega / (1.0 - self.persistence)

    def to_dict(self) -> dict:
        return {
            'omega': float(self.omega),
            'alpha': float(self.alpha),
            'beta': float(self.beta),
            'persistence': float(self.persistence),
        }


@dataclass
class GARCHForecast:
    volatilities: List[float] = field(default_factory=list)
    horizon: int = 0
    params: GARCHParams = field(default_factory=GARCHParams)

    def to_dict(self) -> dict:
        return {
            'volatilities': [float(v) for v in self.volatilities],
            'horizon': self.horizon,
            'params': self.params.to_dict(),
        }


@dataclass
class VolatilityState:
    """
    Conditional variance state for one symbol.

    Owned by a VolatilityStateStore and advanced one shock at a time.
    """
    symbol: str
    params: GARCHParams = field(default_factory=GARCHParams)
    variance: float = 0.0
    regime: VolatilityRegime = VolatilityRegime.NORMAL
    history: deque = field(default_factory=lambda: deque(maxlen=100))
    shocks: deque = field(default_factory=lambda: deque(maxlen=100))
    steps: int = 0
    last_price: Optional[float] = None
    updated_at: Optional[datetime] = None

    @property
    def persistence(self) -> float:
        return self.params.persistence

    @property
    def initialized(self) -> bool:
        return self.params.omega > 0

    @property
    def volatility(self) -> float:
        return float(np.sqrt(max(self.variance, 0.0)))

    def to_dict(self) -> dict:
        return {
            'symbol': self.symbol,
            'params': self.params.to_dict(),
            'variance': float(self.variance),
            'volatility': self.volatility,
            'persistence': float(self.persistence),
            'regime': self.regime.value,
            'steps': self.steps,
            'initialized': self.initialized,
            'updated_at': self.updated_at.isoformat() if self.updated_at else None,
        }


@dataclass
class RegimeResult:
    """Market regime classification with a bounded probability"""
    type: RegimeType = RegimeType.UNKNOWN
    probability: float = 0.0
    hurst: float = 0.5
    volatility: float = 0.0
    volatility_regime: VolatilityRegime = VolatilityRegime.NORMAL
    volatility_z_score: float = 0.0
    momentum: float = 0.0
    direction_change_ratio: float = 0.0
    previous_hurst: Optional[float] = None

    def to_dict(self) -> dict:
        return {
            'type': self.type.value,
            'probability': float(self.probability),
            'hurst': float(self.hurst),
            'volatility': float(self.volatility),
            'volatility_regime': self.volatility_regime.value,
            'volatility_z_score': float(self.volatility_z_score),
            'momentum': float(self.momentum),
            'direction_change_ratio': float(self.direction_change_ratio),
            'previous_hurst': None if self.previous_hurst is None else float(self.previous_hurst),
        }


@dataclass
class RegimeIndicators:
    """Inputs scored by the multi-factor detector"""
    hurst: float = 0.5
    r_squared: float = 0.0
    volatility_z_score: float = 0.0
    momentum_score: float = 0.0  # [-1, 1]
    direction_change_ratio: float = 0.0

    def to_dict(self) -> dict:
        return {
            'hurst': float(self.hurst),
            'r_squared': float(self.r_squared),
            'volatility_z_score': float(self.volatility_z_score),
            'momentum_score': float(self.momentum_score),
            'direction_change_ratio': float(self.direction_change_ratio),
        }


@dataclass
class MultiFactorRegimeResult:
    """Highest-scoring regime with every regime's score"""
    type: MultiFactorRegime = MultiFactorRegime.RANGING
    probability: float = 0.0
    scores: Dict[MultiFactorRegime, float] = field(default_factory=dict)
    indicators: RegimeIndicators = field(default_factory=RegimeIndicators)

    def to_dict(self) -> dict:
        return {
            'type': self.type.value,
            'probability': float(self.probability),
            'scores': {regime.value: float(score) for regime, score in self.scores.items()},
            'indicators': self.indicators.to_dict(),
        }


@dataclass
class TrendResult:
    """
    Trend signal emitted for one symbol.

    to_dict() produces the external camelCase schema:
    {symbol, direction, compositeScore, confidence, slope, timestamp,
    regime?, volatility?} followed by diagnostics.
    """
    symbol: str
    direction: TrendDirection = TrendDirection.WAIT
    composite_score: float = 0.0
    confidence: float = 0.0
    slope: float = 0.0
    timestamp: datetime = field(default_factory=datetime.now)
    regime: Optional[RegimeType] = None
    volatility: Optional[VolatilityRegime] = None

    # Diagnostics
    normalized_slope: float = 0.0
    r_squared: float = 0.0
    adjusted_r_squared: float = 0.0
    durbin_watson: float = 2.0
    hurst_exponent: float = 0.5
    regime_probability: float = 0.0
    direction_changes: int = 0
    direction_change_ratio: float = 0.0
    ema_fast: Optional[float] = None
    ema_slow: Optional[float] = None
    ma_bias: str = "NEUTRAL"
    price_change_percent: float = 0.0
    strength: float = 0.0
    is_oscillating: bool = False
    data_points: int = 0
    gate_reasons: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        result = {
            'symbol': self.symbol,
            'direction': self.direction.value,
            'compositeScore': float(self.composite_score),
            'confidence': float(self.confidence),
            'slope': float(self.slope),
            'timestamp': self.timestamp.isoformat(),
        }
        if self.regime is not None:
            result['regime'] = self.regime.value
        if self.volatility is not None:
            result['volatility'] = self.volatility.value
        result.update({
            'normalizedSlope': float(self.normalized_slope),
            'rSquared': float(self.r_squared),
            'adjustedRSquared': float(self.adjusted_r_squared),
            'durbinWatson': float(self.durbin_watson),
            'hurstExponent': float(self.hurst_exponent),
            'regimeProbability': float(self.regime_probability),
            'directionChanges': self.direction_changes,
            'directionChangeRatio': float(self.direction_change_ratio),
            'emaFast': None if self.ema_fast is None else float(self.ema_fast),
            'emaSlow': None if self.ema_slow is None else float(self.ema_slow),
            'maBias': self.ma_bias,
            'priceChangePercent': float(self.price_change_percent),
            'strength': float(self.strength),
            'isOscillating': self.is_oscillating,
            'dataPoints': self.data_points,
            'gateReasons': list(self.gate_reasons),
        })
        return result
