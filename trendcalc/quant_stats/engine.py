"""
Trend Calculator Service

Main orchestrator: fuses regression, Hurst persistence and regime into a
composite score, then gates the directional call.

    composite = 0.5·tanh(slope/mean·1000)
              + 0.25·sign(slope)·(2H - 1)
              + 0.25·sign(slope)·regime_signal

    confidence = |composite| · adjusted R²

LONG/SHORT only when adjusted R², confidence and |composite| clear their
thresholds and the series is not oscillating; otherwise WAIT. A strong
slope on an unreliable fit must not produce a directional call.

Also owns per-symbol price buffers and their GARCH volatility state.
"""

import logging
import threading
from collections import deque
from datetime import datetime
from typing import Dict, List, Optional, Sequence

import numpy as np

from .config import TrendEngineConfig
from .exceptions import InsufficientDataError
from .health_monitor import TrendHealthMonitor
from .hurst import HurstExponentCalculator
from .regime import MultiFactorRegimeDetector, RegimeDetector, count_direction_changes, direction_change_ratio
from .regression import LinearRegressionAnalyzer
from .autocorrelation import AutocorrelationAnalyzer
from .schemas import RegimeResult, RegimeType, TrendDirection, TrendResult
from .stationarity import StationarityTester
from .volatility import GARCHVolatilityModel, VolatilityStateStore

LOG = logging.getLogger(__name__)

# Regimes that argue against following the slope
CONTRARY_REGIMES = (RegimeType.MEAN_REVERTING, RegimeType.CHOPPY, RegimeType.HIGH_VOLATILITY)


def calculate_ema(prices: Sequence[float], period: int) -> Optional[float]:
    """EMA over the last `period` prices, seeded with the first of them"""
    if period < 1 or len(prices) < period:
        return None
    k = 2.0 / (period + 1)
    window = np.asarray(prices[-period:], dtype=float)
    ema = window[0]
    for price in window[1:]:
        ema = price * k + ema * (1 - k)
    return float(ema)


class TrendCalculatorService:
    """
    Trend Calculator Service.

    Explicitly constructed; owns its buffers, volatility state and latest
    results. Components can be injected for testing.
    """

    def __init__(
        self,
        config: Optional[TrendEngineConfig] = None,
        health_monitor: Optional[TrendHealthMonitor] = None,
        volatility_store: Optional[VolatilityStateStore] = None
    ):
        """
        Initialize trend calculator with configuration.

        Args:
            config: Engine configuration (uses defaults if None)
            health_monitor: Optional monitor receiving calculation events
            volatility_store: Per-symbol GARCH state (created if None)
        """
        self.config = config or TrendEngineConfig()
        self.trend_config = self.config.trend

        self.stationarity = StationarityTester(self.config.stationarity)
        self.autocorrelation = AutocorrelationAnalyzer(self.config.autocorrelation)
        self.regression = LinearRegressionAnalyzer(self.autocorrelation)
        self.hurst = HurstExponentCalculator(self.config.hurst)
        self.volatility_model = GARCHVolatilityModel(self.config.garch)
        self.regime_detector = RegimeDetector(
            self.config.regime,
            hurst=self.hurst,
            volatility_model=self.volatility_model,
            stationarity=self.stationarity,
        )
        self.multi_factor_detector = MultiFactorRegimeDetector(
            self.config.regime,
            hurst=self.hurst,
            regression=self.regression,
            stationarity=self.stationarity,
        )
        self.volatility_store = volatility_store or VolatilityStateStore(self.volatility_model)
        self.health_monitor = health_monitor

        self._buffers: Dict[str, deque] = {}
        self._subscriptions = set()
        self._latest: Dict[str, TrendResult] = {}
        self._lock = threading.RLock()

        LOG.info(f"Trend calculator initialized: min_data_points={self.trend_config.min_data_points}, "
                 f"buffer_size={self.trend_config.buffer_size}, config={self.config.get_config_hash()}")

    # ------------------------------------------------------------------
    # Tracking & buffers
    # ------------------------------------------------------------------

    @staticmethod
    def _key(symbol: str) -> str:
        return symbol.upper()

    def start_tracking(self, symbol: str) -> bool:
        """
        Start tracking a symbol with an empty buffer and fresh volatility state.

        Returns:
            False if the symbol was already tracked
        """
        key = self._key(symbol)
        with self._lock:
            if key in self._subscriptions:
                return False
            self._buffers[key] = deque(maxlen=self.trend_config.buffer_size)
            self._subscriptions.add(key)
            self._latest.pop(key, None)
        self.volatility_store.reset(key)
        LOG.info(f"Started tracking {key} (buffer: {self.trend_config.buffer_size})")
        return True

    def stop_tracking(self, symbol: str):
        key = self._key(symbol)
        with self._lock:
            self._buffers.pop(key, None)
            self._subscriptions.discard(key)
            self._latest.pop(key, None)
        self.volatility_store.remove(key)
        if self.health_monitor:
            self.health_monitor.remove_symbol(key)
        LOG.info(f"Stopped tracking {key}")

    def is_tracking(self, symbol: str) -> bool:
        with self._lock:
            return self._key(symbol) in self._subscriptions

    def tracked_symbols(self) -> List[str]:
        with self._lock:
            return sorted(self._subscriptions)

    def _buffer(self, key: str) -> deque:
        buffer = self._buffers.get(key)
        if buffer is None:
            buffer = deque(maxlen=self.trend_config.buffer_size)
            self._buffers[key] = buffer
        return buffer

    def _append(self, key: str, price: float) -> int:
        with self._lock:
            buffer = self._buffer(key)
            previous = buffer[-1] if buffer else None
            buffer.append(price)
            size = len(buffer)

        if previous is not None and previous > 0 and price > 0:
            self.volatility_store.update(key, float(np.log(price / previous)))
        return size

    def add_price(self, symbol: str, price: float) -> Optional[TrendResult]:
        """
        Append a price, advance the symbol's volatility state and
        recalculate every `auto_calculate_interval` prices once ready.

        Returns:
            The freshly calculated result, if one was produced
        """
        if price is None or not np.isfinite(price):
            LOG.warning(f"{self._key(symbol)}: ignoring non-finite price {price}")
            return None

        key = self._key(symbol)
        size = self._append(key, float(price))

        interval = self.trend_config.auto_calculate_interval
        if interval > 0 and size >= self.trend_config.min_data_points and size % interval == 0:
            return self.calculate_trend(key)
        return None

    def preload_historical_data(self, symbol: str, klines: Sequence) -> int:
        """
        Load historical closes into a symbol's buffer.

        Args:
            symbol: Symbol
            klines: Closes, or mappings/objects with a `close` value

        Returns:
            Buffer length after loading
        """
        key = self._key(symbol)
        loaded = 0
        size = len(self.get_price_history(key))
        for kline in klines:
            if isinstance(kline, dict):
                raw = kline.get('close')
            else:
                raw = getattr(kline, 'close', kline)
            try:
                close = float(raw)
            except (TypeError, ValueError):
                continue
            if not np.isfinite(close):
                continue
            size = self._append(key, close)
            loaded += 1

        LOG.info(f"Preloaded {loaded} historical klines for {key} (buffer: {size})")
        return size

    def get_price_history(self, symbol: str) -> List[float]:
        with self._lock:
            return list(self._buffers.get(self._key(symbol), ()))

    def clear_buffer(self, symbol: str):
        key = self._key(symbol)
        with self._lock:
            buffer = self._buffers.get(key)
            if buffer is not None:
                buffer.clear()
        LOG.info(f"Cleared buffer for {key}")

    def half_reset_buffer(self, symbol: str):
        """Drop the oldest half of the buffer, keeping the newest points"""
        key = self._key(symbol)
        with self._lock:
            buffer = self._buffers.get(key)
            if not buffer:
                return
            for _ in range(len(buffer) // 2):
                buffer.popleft()
            kept = len(buffer)
        LOG.info(f"Half-reset buffer for {key}: kept {kept} newest points")

    def get_buffer_status(self, symbol: str) -> dict:
        current = len(self.get_price_history(symbol))
        maximum = self.trend_config.buffer_size
        return {
            'current': current,
            'max': maximum,
            'required': self.trend_config.min_data_points,
            'percent': current / maximum * 100 if maximum else 0.0,
            'ready': current >= self.trend_config.min_data_points,
        }

    def is_buffer_full(self, symbol: str) -> bool:
        return len(self.get_price_history(symbol)) >= self.trend_config.buffer_size

    def get_latest_result(self, symbol: str) -> Optional[TrendResult]:
        with self._lock:
            return self._latest.get(self._key(symbol))

    def get_volatility_state(self, symbol: str):
        return self.volatility_store.get(self._key(symbol))

    # ------------------------------------------------------------------
    # Calculation
    # ------------------------------------------------------------------

    def calculate_trend(self, symbol: str) -> Optional[TrendResult]:
        """Calculate from the symbol's buffer and remember the result"""
        key = self._key(symbol)
        prices = self.get_price_history(key)
        result = self.calculate_from_prices(prices, symbol=key)
        if result is not None:
            with self._lock:
                self._latest[key] = result
        return result

    def calculate_from_prices(self, prices: Sequence[float], symbol: str = "") -> Optional[TrendResult]:
        """
        Calculate a trend result from raw prices.

        Args:
            prices: Chronological prices
            symbol: Symbol label for the result

        Returns:
            TrendResult, or None below min_data_points
        """
        values = np.asarray(prices, dtype=float)
        finite = np.isfinite(values)
        if not finite.all():
            LOG.warning(f"{symbol or 'series'}: dropping {int((~finite).sum())} non-finite prices")
            values = values[finite]
        cfg = self.trend_config
        n = values.size

        if n < cfg.min_data_points:
            LOG.debug(f"{symbol or 'series'}: insufficient data {n}/{cfg.min_data_points}")
            if self.health_monitor:
                self.health_monitor.record_insufficient_data(symbol, n, cfg.min_data_points)
            return None

        start_time = self.health_monitor.record_calculation_start(symbol) if self.health_monitor else None

        start_price, end_price = float(values[0]), float(values[-1])
        price_change_percent = (end_price - start_price) / start_price * 100 if start_price != 0 else 0.0
        ema_fast = calculate_ema(values, cfg.ema_fast_period)
        ema_slow = calculate_ema(values, cfg.ema_slow_period)

        result = TrendResult(
            symbol=symbol,
            timestamp=datetime.now(),
            data_points=n,
            price_change_percent=price_change_percent,
            ema_fast=ema_fast,
            ema_slow=ema_slow,
            ma_bias=self._ma_bias(ema_fast, ema_slow),
        )

        vol_state = self.volatility_store.get(symbol) if symbol else None
        if vol_state is not None and vol_state.steps > 0:
            result.volatility = vol_state.regime

        if np.ptp(values) == 0:
            result.is_oscillating = True
            result.gate_reasons = ["flat price series"]
            return self._finish(result, start_time)

        regression = self.regression.calculate(values)
        mean_price = float(values.mean())
        normalized_slope = regression.slope / mean_price if mean_price != 0 else 0.0
        hurst = self.hurst.calculate(values).exponent
        regime = self._detect_regime(values, symbol)

        changes = count_direction_changes(values)
        change_ratio = direction_change_ratio(values)
        strength = min(100.0, abs(price_change_percent) * regression.r_squared * 10)

        sign = float(np.sign(regression.slope))
        slope_term = float(np.tanh(normalized_slope * cfg.slope_scale))
        hurst_term = sign * float(np.clip((hurst - 0.5) * 2, -1.0, 1.0))
        regime_term = sign * self._regime_signal(regime)

        composite = (
            cfg.slope_weight * slope_term
            + cfg.hurst_weight * hurst_term
            + cfg.regime_weight * regime_term
        )
        composite = float(np.clip(composite, -1.0, 1.0))
        confidence = float(np.clip(abs(composite) * regression.adjusted_r_squared, 0.0, 1.0))

        is_oscillating = (
            regression.r_squared < cfg.oscillation_r_squared
            or change_ratio >= cfg.max_direction_change_ratio
            or strength < cfg.min_strength
        )

        result.composite_score = composite
        result.confidence = confidence
        result.slope = regression.slope
        result.normalized_slope = normalized_slope
        result.r_squared = regression.r_squared
        result.adjusted_r_squared = regression.adjusted_r_squared
        result.durbin_watson = regression.durbin_watson
        result.hurst_exponent = hurst
        result.direction_changes = changes
        result.direction_change_ratio = change_ratio
        result.strength = strength
        result.is_oscillating = is_oscillating
        if regime is not None:
            result.regime = regime.type
            result.regime_probability = regime.probability
            if result.volatility is None:
                result.volatility = regime.volatility_regime

        reasons = []
        if regression.adjusted_r_squared < cfg.reliability_threshold:
            reasons.append(f"adjusted R² {regression.adjusted_r_squared:.3f} below "
                           f"reliability threshold {cfg.reliability_threshold}")
        if confidence < cfg.min_confidence:
            reasons.append(f"confidence {confidence:.3f} below {cfg.min_confidence}")
        if abs(composite) < cfg.min_composite_score:
            reasons.append(f"composite score {composite:.3f} within ±{cfg.min_composite_score}")
        if is_oscillating:
            reasons.append(f"oscillating (direction change ratio {change_ratio:.2f}, "
                           f"strength {strength:.1f})")
        result.gate_reasons = reasons

        if not reasons:
            result.direction = TrendDirection.LONG if composite > 0 else TrendDirection.SHORT

        LOG.debug(f"{symbol or 'series'}: {result.direction.value} composite={composite:.3f} "
                  f"conf={confidence:.3f} adjR²={regression.adjusted_r_squared:.3f} H={hurst:.3f}")

        return self._finish(result, start_time)

    def _finish(self, result: TrendResult, start_time: Optional[float]) -> TrendResult:
        if self.health_monitor and start_time is not None:
            self.health_monitor.record_calculation(result.symbol, start_time, result.to_dict())
        return result

    def _detect_regime(self, values: np.ndarray, symbol: str) -> Optional[RegimeResult]:
        # Detector precondition checked here; shorter buffers carry no regime
        if values.size < self.regime_detector.min_samples:
            return None
        try:
            return self.regime_detector.detect(values)
        except InsufficientDataError as e:
            if self.health_monitor:
                self.health_monitor.record_regime_error(symbol, e)
            return None

    @staticmethod
    def _regime_signal(regime: Optional[RegimeResult]) -> float:
        if regime is None:
            return 0.0
        if regime.type == RegimeType.TRENDING:
            return regime.probability
        if regime.type in CONTRARY_REGIMES:
            return -regime.probability
        return 0.0

    @staticmethod
    def _ma_bias(ema_fast: Optional[float], ema_slow: Optional[float]) -> str:
        if ema_fast is None or ema_slow is None:
            return "NEUTRAL"
        if ema_fast > ema_slow:
            return "LONG"
        if ema_fast < ema_slow:
            return "SHORT"
        return "NEUTRAL"
