"""
Residual Autocorrelation Analysis

Durbin-Watson statistic and Ljung-Box portmanteau test on regression
residuals. Autocorrelated residuals inflate R², so the regression uses
these results to deflate its reliability measure.

    DW ≈ 2   no autocorrelation
    DW → 0   strong positive autocorrelation
    DW → 4   strong negative autocorrelation
"""

import logging
from typing import Optional, Sequence

import numpy as np
from scipy import stats

from trendcalc.quant_stats.config import AutocorrelationConfig
from trendcalc.quant_stats.schemas import (
    AutocorrelationSeverity,
    AutocorrelationTestResult,
    LjungBoxResult,
)

LOG = logging.getLogger(__name__)

# Floor for the effective-sample fraction used when deflating R²
MIN_EFFECTIVE_FRACTION = 0.05


class AutocorrelationAnalyzer:
    """
    Analyze autocorrelation structure of regression residuals.

    ρ_k = Σ (e_t - ē)(e_{t-k} - ē) / Σ (e_t - ē)²
    """

    def __init__(self, config: Optional[AutocorrelationConfig] = None):
        self.config = config or AutocorrelationConfig()

    def calculate_durbin_watson(self, residuals: Sequence[float]) -> float:
        """
        Durbin-Watson statistic Σ(e[i]-e[i-1])² / Σe[i]².

        Args:
            residuals: Regression residuals

        Returns:
            Statistic in [0, 4]; 2.0 for fewer than 2 residuals or zero energy
        """
        e = np.asarray(residuals, dtype=float)
        if e.size < 2:
            return 2.0

        sum_squared = float(np.sum(e ** 2))
        if sum_squared == 0 or not np.isfinite(sum_squared):
            return 2.0

        dw = float(np.sum(np.diff(e) ** 2)) / sum_squared
        return float(np.clip(dw, 0.0, 4.0))

    def calculate_autocorrelation_at_lag(self, data: Sequence[float], lag: int) -> float:
        """
        Sample autocorrelation at a given lag.

        Returns 0 for lag outside [1, n-1] or zero variance.
        """
        x = np.asarray(data, dtype=float)
        if lag < 1 or lag >= x.size:
            return 0.0

        centered = x - x.mean()
        denominator = float(np.sum(centered ** 2))
        if denominator == 0:
            return 0.0

        numerator = float(np.sum(centered[lag:] * centered[:-lag]))
        return numerator / denominator

    def calculate_first_order_autocorrelation(self, data: Sequence[float]) -> float:
        """Lag-1 sample autocorrelation"""
        return self.calculate_autocorrelation_at_lag(data, 1)

    def has_significant_autocorrelation(self, residuals: Sequence[float]) -> AutocorrelationTestResult:
        """
        Grade residual autocorrelation by distance of DW from 2.0.

        Args:
            residuals: Regression residuals

        Returns:
            AutocorrelationTestResult with severity NONE/MILD/MODERATE/SEVERE
        """
        dw = self.calculate_durbin_watson(residuals)
        first_order = self.calculate_first_order_autocorrelation(residuals)

        if dw < self.config.severe_bounds[0] or dw > self.config.severe_bounds[1]:
            severity = AutocorrelationSeverity.SEVERE
        elif dw < self.config.moderate_bounds[0] or dw > self.config.moderate_bounds[1]:
            severity = AutocorrelationSeverity.MODERATE
        elif dw < self.config.mild_bounds[0] or dw > self.config.mild_bounds[1]:
            severity = AutocorrelationSeverity.MILD
        else:
            severity = AutocorrelationSeverity.NONE

        return AutocorrelationTestResult(
            has_autocorrelation=severity != AutocorrelationSeverity.NONE,
            durbin_watson=dw,
            first_order_corr=first_order,
            severity=severity,
        )

    def calculate_ljung_box(self, residuals: Sequence[float], max_lag: Optional[int] = None) -> LjungBoxResult:
        """
        Ljung-Box Q = n(n+2) Σ_{k=1..h} ρ_k² / (n-k), χ²(h) under the null.

        Args:
            residuals: Regression residuals
            max_lag: Number of lags h (config default if omitted)

        Returns:
            LjungBoxResult (neutral when fewer than h+1 residuals)
        """
        lags = max_lag or self.config.ljung_box_lags
        e = np.asarray(residuals, dtype=float)
        n = e.size

        if n < lags + 1:
            return LjungBoxResult(lags=lags)

        q = sum(
            self.calculate_autocorrelation_at_lag(e, k) ** 2 / (n - k)
            for k in range(1, lags + 1)
        )
        q *= n * (n + 2)

        p_value = float(stats.chi2.sf(q, df=lags))
        return LjungBoxResult(
            statistic=float(q),
            p_value=p_value,
            has_autocorrelation=p_value < self.config.ljung_box_significance,
            lags=lags,
        )

    def adjust_r_squared(self, r_squared: float, durbin_watson: float) -> float:
        """
        Deflate R² for autocorrelated residuals.

        ρ = 1 - DW/2 gives an effective-sample fraction f = (1-|ρ|)/(1+|ρ|);
        the unexplained share of variance is scaled by 1/f. The result never
        exceeds the naive R² and stays near 1 for near-perfect fits.
        """
        rho = min(abs(1.0 - durbin_watson / 2.0), 1.0)
        fraction = (1.0 - rho) / (1.0 + rho)
        fraction = float(np.clip(fraction, MIN_EFFECTIVE_FRACTION, 1.0))

        adjusted = 1.0 - (1.0 - r_squared) / fraction
        return float(np.clip(adjusted, 0.0, r_squared))

    def get_recommendation(self, result: AutocorrelationTestResult) -> str:
        """Human-readable advice for a test result"""
        dw = f"{result.durbin_watson:.2f}"
        if result.severity == AutocorrelationSeverity.NONE:
            return "No significant autocorrelation detected. Results are reliable."
        if result.severity == AutocorrelationSeverity.MILD:
            return f"Mild autocorrelation (DW={dw}). Consider adjusting R²."
        if result.severity == AutocorrelationSeverity.MODERATE:
            return f"Moderate autocorrelation (DW={dw}). R² adjustment recommended."
        return f"Severe autocorrelation (DW={dw}). Results may be unreliable. Consider data transformation."
