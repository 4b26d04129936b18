"""
Linear Regression Trend Fit

OLS of price on sample index. R² is deflated when the residuals are
autocorrelated, since a smooth drift fitted by a straight line looks
more reliable than it is.
"""

import logging
from typing import Optional, Sequence

import numpy as np

from trendcalc.quant_stats.autocorrelation import AutocorrelationAnalyzer
from trendcalc.quant_stats.schemas import RegressionResult

LOG = logging.getLogger(__name__)

MIN_POINTS = 3


class LinearRegressionAnalyzer:
    """Ordinary least squares on (index, price) pairs"""

    def __init__(self, autocorrelation: Optional[AutocorrelationAnalyzer] = None):
        self.autocorrelation = autocorrelation or AutocorrelationAnalyzer()

    def calculate(self, prices: Sequence[float]) -> RegressionResult:
        """
        Fit price = intercept + slope * index.

        Args:
            prices: Chronological prices

        Returns:
            RegressionResult with residuals/predictions aligned to the input
        """
        y = np.asarray(prices, dtype=float)
        n = y.size

        if n < MIN_POINTS:
            mean = float(y.mean()) if n else 0.0
            predictions = np.full(n, mean)
            return RegressionResult(
                intercept=mean,
                residuals=y - predictions,
                predictions=predictions,
            )

        x = np.arange(n, dtype=float)
        x_mean, y_mean = x.mean(), y.mean()
        sxx = float(np.sum((x - x_mean) ** 2))
        sxy = float(np.sum((x - x_mean) * (y - y_mean)))

        slope = sxy / sxx if sxx != 0 else 0.0
        intercept = float(y_mean - slope * x_mean)

        predictions = intercept + slope * x
        residuals = y - predictions

        ss_tot = float(np.sum((y - y_mean) ** 2))
        ss_res = float(np.sum(residuals ** 2))
        r_squared = 1.0 - ss_res / ss_tot if ss_tot > 0 else 0.0
        r_squared = float(np.clip(r_squared, 0.0, 1.0))

        # Floating-point residue of an exact fit carries no autocorrelation signal
        tested = residuals if ss_res > 1e-18 * max(ss_tot, 1.0) else np.zeros(n)
        autocorr = self.autocorrelation.has_significant_autocorrelation(tested)

        if autocorr.has_autocorrelation:
            adjusted = self.autocorrelation.adjust_r_squared(r_squared, autocorr.durbin_watson)
        else:
            adjusted = r_squared

        LOG.debug(f"Regression: slope={slope:.6f}, R²={r_squared:.4f}, adj={adjusted:.4f}, "
                  f"DW={autocorr.durbin_watson:.3f} ({autocorr.severity.value})")

        return RegressionResult(
            slope=float(slope),
            intercept=intercept,
            r_squared=r_squared,
            adjusted_r_squared=adjusted,
            residuals=residuals,
            predictions=predictions,
            durbin_watson=autocorr.durbin_watson,
            autocorrelation=autocorr,
        )

    def get_slope_normalized(self, prices: Sequence[float]) -> float:
        """
        Slope per sample divided by mean price.

        Scale-free trend strength, comparable across symbols.
        """
        y = np.asarray(prices, dtype=float)
        if y.size == 0:
            return 0.0
        mean_price = float(y.mean())
        if mean_price == 0:
            return 0.0
        return self.calculate(y).slope / mean_price
