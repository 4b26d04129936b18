"""
GARCH(1,1) Volatility

    σ²[t] = ω + α·ε[t-1]² + β·σ²[t-1]

Fixed-parameter heuristic (α=0.10, β=0.85, ω=5% of sample variance),
so the long-run variance ω/(1-α-β) equals the sample variance.
Persistence α+β governs how quickly the regime label can change.

Regime buckets from the z-score of current volatility against its history:
- LOW: z < -1
- NORMAL: -1 ≤ z ≤ 1
- HIGH: 1 < z ≤ 2
- EXTREME: z > 2

Per-symbol recursion state lives in VolatilityState objects held by a
VolatilityStateStore; the model itself is stateless.
"""

import logging
import threading
from collections import deque
from datetime import datetime
from typing import Dict, List, Optional, Sequence

import numpy as np

from trendcalc.quant_stats.config import GARCHConfig
from trendcalc.quant_stats.schemas import (
    GARCHForecast,
    GARCHParams,
    VolatilityRegime,
    VolatilityState,
)

LOG = logging.getLogger(__name__)

# Minimum shocks before a tracked state estimates its own parameters
MIN_RETURNS_FOR_ESTIMATION = 30
# Dispersion below this is rounding noise
DISPERSION_EPSILON = 1e-12


def _sample_variance(values: Sequence[float]) -> float:
    x = np.asarray(values, dtype=float)
    if x.size < 2:
        return 0.0
    return float(np.var(x, ddof=1))


class GARCHVolatilityModel:
    """Stateless GARCH(1,1) operations"""

    def __init__(self, config: Optional[GARCHConfig] = None):
        self.config = config or GARCHConfig()

    def estimate_parameters(self, returns: Sequence[float]) -> GARCHParams:
        """
        Heuristic parameters from the sample variance of returns.

        Args:
            returns: Log returns

        Returns:
            GARCHParams (omega 0 when variance cannot be estimated)
        """
        variance = _sample_variance(returns)
        return GARCHParams(
            omega=variance * self.config.omega_variance_fraction,
            alpha=self.config.alpha,
            beta=self.config.beta,
        )

    def calculate_conditional_volatility(
        self,
        returns: Sequence[float],
        params: GARCHParams
    ) -> List[float]:
        """
        Conditional volatility path, seeded with the sample variance.

        Returns:
            One volatility per return
        """
        r = np.asarray(returns, dtype=float)
        sigma2 = _sample_variance(r)
        volatilities = []
        for t in range(r.size):
            volatilities.append(float(np.sqrt(sigma2)))
            if t < r.size - 1:
                sigma2 = params.omega + params.alpha * r[t] ** 2 + params.beta * sigma2
        return volatilities

    def forecast_volatility(
        self,
        params: GARCHParams,
        returns: Sequence[float],
        horizon: Optional[int] = None
    ) -> GARCHForecast:
        """
        Multi-step volatility forecast.

        Step 1 uses the last observed shock; later steps decay toward the
        long-run variance at rate α+β.
        """
        horizon = horizon or self.config.forecast_horizon
        r = np.asarray(returns, dtype=float)
        if r.size == 0:
            return GARCHForecast(horizon=horizon, params=params)

        sigma2 = _sample_variance(r)
        last_shock2 = float(r[-1] ** 2)
        long_run = params.long_run_variance
        persistence = params.persistence

        forecasts = []
        one_step = sigma2
        for h in range(1, horizon + 1):
            if h == 1:
                one_step = params.omega + params.alpha * last_shock2 + params.beta * sigma2
                sigma2 = one_step
            else:
                sigma2 = long_run + persistence ** (h - 1) * (one_step - long_run)
            forecasts.append(float(np.sqrt(max(sigma2, 0.0))))

        return GARCHForecast(volatilities=forecasts, horizon=horizon, params=params)

    def volatility_z_score(self, current: float, historical: Sequence[float]) -> float:
        """z-score of current volatility; 0 for empty or flat history"""
        hist = np.asarray(historical, dtype=float)
        if hist.size == 0:
            return 0.0
        std = float(np.std(hist, ddof=1)) if hist.size > 1 else 0.0
        if std <= DISPERSION_EPSILON or not np.isfinite(std):
            return 0.0
        return (current - float(hist.mean())) / std

    def classify_volatility_regime(self, current: float, historical: Sequence[float]) -> VolatilityRegime:
        """
        Bucket current volatility against its history.

        Args:
            current: Current volatility
            historical: Past volatilities

        Returns:
            VolatilityRegime (NORMAL when history has no dispersion)
        """
        z = self.volatility_z_score(current, historical)
        if z < self.config.low_z_threshold:
            return VolatilityRegime.LOW
        if z > self.config.extreme_z_threshold:
            return VolatilityRegime.EXTREME
        if z > self.config.high_z_threshold:
            return VolatilityRegime.HIGH
        return VolatilityRegime.NORMAL

    def new_state(self, symbol: str, returns: Optional[Sequence[float]] = None) -> VolatilityState:
        """
        Fresh recursion state for a symbol.

        When historical returns are given the parameters are estimated and
        the variance path is replayed into the state's history.
        """
        size = self.config.history_size
        state = VolatilityState(
            symbol=symbol,
            params=GARCHParams(alpha=self.config.alpha, beta=self.config.beta),
            history=deque(maxlen=size),
            shocks=deque(maxlen=size),
        )
        if returns is not None and len(returns) > 0:
            for shock in returns:
                self.step(state, float(shock))
        return state

    def step(self, state: VolatilityState, shock: float) -> VolatilityState:
        """
        Advance the recursion by one observed return shock.

        Until enough shocks have been seen to estimate ω, the variance
        tracks the running sample variance.
        """
        if not np.isfinite(shock):
            LOG.warning(f"GARCH {state.symbol}: ignoring non-finite shock")
            return state

        previous_vol = state.volatility
        state.shocks.append(shock)

        if not state.initialized:
            if len(state.shocks) >= MIN_RETURNS_FOR_ESTIMATION:
                state.params = self.estimate_parameters(state.shocks)
            state.variance = _sample_variance(state.shocks)
        else:
            p = state.params
            state.variance = p.omega + p.alpha * shock ** 2 + p.beta * state.variance

        if state.steps > 0:
            state.history.append(previous_vol)
        state.regime = self.classify_volatility_regime(state.volatility, state.history)
        state.steps += 1
        state.updated_at = datetime.now()
        return state


class VolatilityStateStore:
    """
    Per-symbol VolatilityState ownership.

    Each symbol's state has a single writer (its tracking path); the lock
    only guards the mapping itself.
    """

    def __init__(self, model: Optional[GARCHVolatilityModel] = None):
        self.model = model or GARCHVolatilityModel()
        self._states: Dict[str, VolatilityState] = {}
        self._lock = threading.RLock()

    def reset(self, symbol: str, returns: Optional[Sequence[float]] = None) -> VolatilityState:
        """Replace a symbol's state with a fresh one"""
        state = self.model.new_state(symbol, returns)
        with self._lock:
            self._states[symbol] = state
        LOG.debug(f"Volatility state reset: {symbol}")
        return state

    def get(self, symbol: str) -> Optional[VolatilityState]:
        with self._lock:
            return self._states.get(symbol)

    def update(self, symbol: str, shock: float) -> VolatilityState:
        """Step a symbol's state, creating it on first use"""
        with self._lock:
            state = self._states.get(symbol)
            if state is None:
                state = self.model.new_state(symbol)
                self._states[symbol] = state
        return self.model.step(state, shock)

    def remove(self, symbol: str) -> bool:
        with self._lock:
            return self._states.pop(symbol, None) is not None

    def symbols(self) -> List[str]:
        with self._lock:
            return list(self._states.keys())
