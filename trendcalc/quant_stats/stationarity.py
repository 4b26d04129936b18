"""
Stationarity Testing

Split-half variance/mean comparison decides whether raw prices can be
modelled directly or must be transformed first:

    variance ratio in (0.5, 2.0) and relative mean drift < 0.1 → stationary
    otherwise → use log returns or differencing

An Augmented Dickey-Fuller test (statsmodels) is available as a
second opinion on return series.
"""

import logging
from typing import Optional, Sequence, Tuple

import numpy as np
import pandas as pd
from statsmodels.tsa.stattools import adfuller

from trendcalc.quant_stats.config import StationarityConfig
from trendcalc.quant_stats.schemas import (
    ConfidenceLevel,
    StationarityRecommendation,
    StationarityTestResult,
)

LOG = logging.getLogger(__name__)

MAX_DIFFERENCE_ORDER = 3
MAX_VARIANCE_RATIO = 1e6  # Reported when only the second half is constant


class StationarityTester:
    """
    Test stationarity of a price series and provide the usual transforms.

    None of the methods raise on numerically degenerate input; short
    series yield the neutral result.
    """

    def __init__(self, config: Optional[StationarityConfig] = None):
        """
        Initialize stationarity tester.

        Args:
            config: Stationarity thresholds (defaults if omitted)
        """
        self.config = config or StationarityConfig()

        LOG.debug(f"Stationarity tester initialized: min_window={self.config.min_window}, "
                  f"α={self.config.adf_significance_level}")

    def to_log_returns(self, prices: Sequence[float]) -> np.ndarray:
        """
        Convert prices to log returns ln(p[i] / p[i-1]).

        Args:
            prices: Chronological prices

        Returns:
            Array of length len(prices) - 1 (empty below 2 prices)
        """
        values = np.asarray(prices, dtype=float)
        if values.size < 2:
            return np.array([])

        prev, curr = values[:-1], values[1:]
        valid = (prev > 0) & (curr > 0)
        if not valid.all():
            LOG.warning(f"Log returns: {int((~valid).sum())} non-positive price pair(s) set to 0.0")

        returns = np.zeros(curr.size)
        returns[valid] = np.log(curr[valid] / prev[valid])
        return returns

    def difference(self, series: Sequence[float], order: int = 1) -> np.ndarray:
        """
        Apply `order`-th differencing.

        Args:
            series: Input values
            order: Differencing order (1-3)

        Returns:
            Differenced array, len(series) - order long (empty if too short)
        """
        if order < 1 or order > MAX_DIFFERENCE_ORDER:
            raise ValueError(f"Differencing order must be between 1 and {MAX_DIFFERENCE_ORDER}, got {order}")

        values = np.asarray(series, dtype=float)
        if values.size <= order:
            return np.array([])
        return np.diff(values, n=order)

    def _split_half_stats(self, values: np.ndarray) -> Tuple[float, float]:
        half = values.size // 2
        first, second = values[:half], values[half:]

        var1 = float(np.var(first, ddof=1)) if first.size > 1 else 0.0
        var2 = float(np.var(second, ddof=1)) if second.size > 1 else 0.0
        mean1, mean2 = float(np.mean(first)), float(np.mean(second))

        if var2 > 0:
            variance_ratio = var1 / var2
        else:
            # Both halves constant counts as equal dispersion
            variance_ratio = 1.0 if var1 == 0 else MAX_VARIANCE_RATIO

        mean_difference = abs(mean1 - mean2) / max(abs(mean1), abs(mean2), 1e-10)
        return variance_ratio, mean_difference

    def test_stationarity(self, prices: Sequence[float]) -> StationarityTestResult:
        """
        Split-half stationarity test.

        Args:
            prices: Series to test

        Returns:
            StationarityTestResult (neutral below min_window samples)
        """
        values = np.asarray(prices, dtype=float)
        if values.size < self.config.min_window:
            LOG.debug(f"Stationarity: insufficient data {values.size} < {self.config.min_window}")
            return StationarityTestResult()

        variance_ratio, mean_difference = self._split_half_stats(values)
        low, high = self.config.variance_ratio_bounds

        is_stationary = (
            low < variance_ratio < high
            and mean_difference < self.config.max_mean_difference
        )

        if 0.7 < variance_ratio < 1.4 and mean_difference < 0.05:
            confidence = ConfidenceLevel.HIGH
        elif 0.6 < variance_ratio < 1.7 and mean_difference < 0.08:
            confidence = ConfidenceLevel.MEDIUM
        else:
            confidence = ConfidenceLevel.LOW

        diff_low, diff_high = self.config.differencing_ratio_bounds
        if is_stationary and confidence == ConfidenceLevel.HIGH:
            recommendation = StationarityRecommendation.USE_PRICES
        elif not is_stationary or variance_ratio > diff_high or variance_ratio < diff_low:
            recommendation = StationarityRecommendation.USE_DIFFERENCING
        else:
            recommendation = StationarityRecommendation.USE_RETURNS

        LOG.debug(f"Stationarity: ratio={variance_ratio:.3f}, mean_diff={mean_difference:.4f}, "
                  f"stationary={is_stationary}, {confidence.value}")

        return StationarityTestResult(
            is_stationary=is_stationary,
            variance_ratio=variance_ratio,
            mean_difference=mean_difference,
            recommendation=recommendation,
            confidence_level=confidence,
        )

    def quick_stationarity_check(self, data: Sequence[float]) -> bool:
        """Boolean shortcut for test_stationarity"""
        return self.test_stationarity(data).is_stationary

    def run_adf_test(self, series: Sequence[float]) -> Tuple[bool, float, float]:
        """
        Run Augmented Dickey-Fuller test on series.

        Args:
            series: Time series to test (typically log returns)

        Returns:
            (is_stationary, p_value, test_statistic)
        """
        series_clean = pd.Series(np.asarray(series, dtype=float)).dropna()

        if len(series_clean) < self.config.adf_min_samples:
            LOG.debug(f"Insufficient data for ADF: {len(series_clean)} < {self.config.adf_min_samples}")
            return False, 1.0, 0.0

        if series_clean.std() == 0:
            LOG.debug("ADF skipped: constant series")
            return False, 1.0, 0.0

        try:
            result = adfuller(
                series_clean,
                maxlag=self.config.adf_max_lag,
                regression='c',
                autolag='AIC'
            )
        except (ValueError, np.linalg.LinAlgError) as e:
            LOG.error(f"ADF test failed: {e}")
            return False, 1.0, 0.0

        test_statistic, p_value = float(result[0]), float(result[1])
        if not (np.isfinite(test_statistic) and np.isfinite(p_value)):
            LOG.warning("ADF test returned non-finite output")
            return False, 1.0, 0.0
        is_stationary = p_value < self.config.adf_significance_level

        LOG.debug(f"ADF test: statistic={test_statistic:.4f}, "
                  f"p-value={p_value:.4f}, stationary={is_stationary}")

        return is_stationary, p_value, test_statistic
