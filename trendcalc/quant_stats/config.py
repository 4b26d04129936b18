"""
Trend Engine Configuration

Thresholds, windows and weights for the statistical trend pipeline.
"""

from dataclasses import dataclass, asdict
from typing import List
import hashlib
import json


@dataclass
class StationarityConfig:
    """Split-half variance/mean stationarity settings"""
    min_window: int = 20  # Below this the test is neutral
    variance_ratio_bounds: tuple = (0.5, 2.0)  # Exclusive bounds for stationarity
    max_mean_difference: float = 0.1  # Relative mean drift allowed
    differencing_ratio_bounds: tuple = (0.4, 2.5)  # Outside -> USE_DIFFERENCING
    adf_significance_level: float = 0.05  # ADF p-value threshold
    adf_max_lag: int = 10
    adf_min_samples: int = 30


@dataclass
class AutocorrelationConfig:
    """Durbin-Watson severity bands"""
    severe_bounds: tuple = (1.0, 3.0)
    moderate_bounds: tuple = (1.5, 2.5)
    mild_bounds: tuple = (1.7, 2.3)
    ljung_box_lags: int = 10
    ljung_box_significance: float = 0.05


@dataclass
class HurstConfig:
    """Rescaled-range lag grid and interpretation bands"""
    lags: List[int] = None  # [10, 20, 30, 50, 100]
    mean_reverting_threshold: float = 0.45
    trending_threshold: float = 0.55
    strong_mean_reverting_threshold: float = 0.35  # should_trade below
    strong_trending_threshold: float = 0.65  # should_trade above

    def __post_init__(self):
        if self.lags is None:
            self.lags = [10, 20, 30, 50, 100]


@dataclass
class GARCHConfig:
    """GARCH(1,1) fixed-parameter heuristics"""
    alpha: float = 0.10
    beta: float = 0.85
    omega_variance_fraction: float = 0.05  # omega = fraction * sample variance
    forecast_horizon: int = 5
    history_size: int = 100  # Conditional vol history kept per symbol
    low_z_threshold: float = -1.0
    high_z_threshold: float = 1.0
    extreme_z_threshold: float = 2.0


@dataclass
class RegimeConfig:
    """Regime detector settings"""
    min_samples: int = 100  # Detector precondition
    volatility_window: int = 20  # Rolling window for return volatility
    high_volatility_ratio: float = 2.0  # current / mean rolling vol
    momentum_window: int = 30
    choppy_direction_change_ratio: float = 0.45
    history_fraction: float = 0.2  # Tail segment removed to get "previous" band
    min_history_segment: int = 10
    # Multi-factor scoring
    multi_factor_min_samples: int = 30
    recent_volatility_window: int = 20  # Recent return window for the volatility z-score
    volatility_dispersion_fraction: float = 0.2  # Approximate std of volatility as a share of its level
    momentum_scale: float = 10.0  # Total return × scale, clipped to [-1, 1]


@dataclass
class TrendConfig:
    """Trend scoring and gating"""
    buffer_size: int = 100
    min_data_points: int = 50
    slope_weight: float = 0.5
    hurst_weight: float = 0.25
    regime_weight: float = 0.25
    slope_scale: float = 1000.0  # tanh(normalized_slope * scale)
    reliability_threshold: float = 0.5  # Minimum adjusted R^2
    min_confidence: float = 0.3
    min_composite_score: float = 0.3
    max_direction_change_ratio: float = 0.40
    ema_fast_period: int = 10
    ema_slow_period: int = 30
    min_strength: float = 2.0  # Below this the move is treated as oscillation
    oscillation_r_squared: float = 0.3
    auto_calculate_interval: int = 10  # Recalculate every N added prices


@dataclass
class TrendEngineConfig:
    """
    Master configuration for the trend engine.

    Sub-configs default to their own defaults; the whole object is
    hashable for versioning emitted results.
    """

    stationarity: StationarityConfig = None
    autocorrelation: AutocorrelationConfig = None
    hurst: HurstConfig = None
    garch: GARCHConfig = None
    regime: RegimeConfig = None
    trend: TrendConfig = None

    config_version: str = "1.0.0"
    verbose_logging: bool = False

    def __post_init__(self):
        """Initialize sub-configs with defaults"""
        if self.stationarity is None:
            self.stationarity = StationarityConfig()
        if self.autocorrelation is None:
            self.autocorrelation = AutocorrelationConfig()
        if self.hurst is None:
            self.hurst = HurstConfig()
        if self.garch is None:
            self.garch = GARCHConfig()
        if self.regime is None:
            self.regime = RegimeConfig()
        if self.trend is None:
            self.trend = TrendConfig()

    def to_dict(self) -> dict:
        """Convert config to dictionary"""
        return {
            'config_version': self.config_version,
            'verbose_logging': self.verbose_logging,
            'stationarity': _plain(asdict(self.stationarity)),
            'autocorrelation': _plain(asdict(self.autocorrelation)),
            'hurst': _plain(asdict(self.hurst)),
            'garch': _plain(asdict(self.garch)),
            'regime': _plain(asdict(self.regime)),
            'trend': _plain(asdict(self.trend)),
        }

    def get_config_hash(self) -> str:
        """
        Generate deterministic hash of configuration.

        Returns:
            Hash string for versioning
        """
        config_str = json.dumps(self.to_dict(), sort_keys=True)
        return hashlib.sha256(config_str.encode()).hexdigest()[:16]

    @classmethod
    def from_dict(cls, config_dict: dict) -> 'TrendEngineConfig':
        """Create config from dictionary"""
        def section(name, klass):
            values = config_dict.get(name) or {}
            if not values:
                return None
            return klass(**{
                k: tuple(v) if isinstance(v, list) and k.endswith('_bounds') else v
                for k, v in values.items()
            })

        return cls(
            config_version=config_dict.get('config_version', '1.0.0'),
            verbose_logging=config_dict.get('verbose_logging', False),
            stationarity=section('stationarity', StationarityConfig),
            autocorrelation=section('autocorrelation', AutocorrelationConfig),
            hurst=section('hurst', HurstConfig),
            garch=section('garch', GARCHConfig),
            regime=section('regime', RegimeConfig),
            trend=section('trend', TrendConfig),
        )


def _plain(values: dict) -> dict:
    # JSON has no tuples; keep bounds as lists so hashes are stable
    return {k: list(v) if isinstance(v, tuple) else v for k, v in values.items()}
