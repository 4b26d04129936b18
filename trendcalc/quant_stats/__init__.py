"""
Quantitative Statistics for Trend Inference

Pure statistical components and the trend orchestrator.

Core Responsibilities:
    - Stationarity testing and return transforms
    - Residual autocorrelation (Durbin-Watson, Ljung-Box)
    - OLS trend fit with autocorrelation-adjusted R²
    - Hurst exponent (rescaled range)
    - GARCH(1,1) volatility with per-symbol state
    - Regime detection (decision table and multi-factor scoring)
    - Composite trend scoring and gating

Flow:
    prices → stationarity/autocorrelation/regression/Hurst/GARCH
           → RegimeDetector → TrendCalculatorService → TrendResult
"""

from trendcalc.quant_stats.config import TrendEngineConfig
from trendcalc.quant_stats.exceptions import EmptyInputError, InsufficientDataError, TrendCalcError
from trendcalc.quant_stats.schemas import (
    MultiFactorRegime,
    MultiFactorRegimeResult,
    RegimeResult,
    RegimeType,
    RegressionResult,
    HurstResult,
    TrendDirection,
    TrendResult,
    VolatilityRegime,
    VolatilityState,
)
from trendcalc.quant_stats.stationarity import StationarityTester
from trendcalc.quant_stats.autocorrelation import AutocorrelationAnalyzer
from trendcalc.quant_stats.regression import LinearRegressionAnalyzer
from trendcalc.quant_stats.hurst import HurstExponentCalculator
from trendcalc.quant_stats.volatility import GARCHVolatilityModel, VolatilityStateStore
from trendcalc.quant_stats.regime import MultiFactorRegimeDetector, RegimeDetector
from trendcalc.quant_stats.engine import TrendCalculatorService
from trendcalc.quant_stats.health_monitor import TrendHealthMonitor

__all__ = [
    'TrendEngineConfig',
    'TrendCalcError',
    'InsufficientDataError',
    'EmptyInputError',
    'RegimeResult',
    'RegimeType',
    'RegressionResult',
    'HurstResult',
    'TrendDirection',
    'TrendResult',
    'VolatilityRegime',
    'VolatilityState',
    'StationarityTester',
    'AutocorrelationAnalyzer',
    'LinearRegressionAnalyzer',
    'HurstExponentCalculator',
    'GARCHVolatilityModel',
    'VolatilityStateStore',
    'RegimeDetector',
    'MultiFactorRegimeDetector',
    'MultiFactorRegime',
    'MultiFactorRegimeResult',
    'TrendCalculatorService',
    'TrendHealthMonitor',
]
