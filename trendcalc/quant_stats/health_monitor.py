"""
Trend Engine Health Monitor

Tracks trend calculation outcomes, processing times and per-symbol health.
"""

import json
import logging
import threading
import time
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional

LOG = logging.getLogger(__name__)


@dataclass
class CalculationMetrics:
    """Metrics for trend calculation performance"""
    total_calculations: int = 0
    long_signals: int = 0
    short_signals: int = 0
    wait_signals: int = 0
    insufficient_data: int = 0
    regime_errors: int = 0

    # Gate breakdown
    reliability_gate: int = 0
    confidence_gate: int = 0
    oscillation_gate: int = 0

    avg_processing_time_ms: float = 0.0
    max_processing_time_ms: float = 0.0
    min_processing_time_ms: float = float('inf')

    avg_confidence: float = 0.0
    avg_adjusted_r_squared: float = 0.0

    @property
    def directional_signals(self) -> int:
        return self.long_signals + self.short_signals

    def record(self, elapsed_ms: float, direction: str, confidence: float, adjusted_r_squared: float):
        self.total_calculations += 1
        n = self.total_calculations

        if direction == "LONG":
            self.long_signals += 1
        elif direction == "SHORT":
            self.short_signals += 1
        else:
            self.wait_signals += 1

        self.avg_processing_time_ms = (self.avg_processing_time_ms * (n - 1) + elapsed_ms) / n
        self.max_processing_time_ms = max(self.max_processing_time_ms, elapsed_ms)
        self.min_processing_time_ms = min(self.min_processing_time_ms, elapsed_ms)
        self.avg_confidence = (self.avg_confidence * (n - 1) + confidence) / n
        self.avg_adjusted_r_squared = (self.avg_adjusted_r_squared * (n - 1) + adjusted_r_squared) / n

    def record_gates(self, reasons: List[str]):
        for reason in reasons:
            lowered = reason.lower()
            if 'r²' in lowered or 'reliab' in lowered:
                self.reliability_gate += 1
            if 'confidence' in lowered or 'composite' in lowered:
                self.confidence_gate += 1
            if 'oscillat' in lowered or 'flat' in lowered:
                self.oscillation_gate += 1

    def to_dict(self) -> dict:
        """Convert to dictionary"""
        return {
            'total_calculations': self.total_calculations,
            'long_signals': self.long_signals,
            'short_signals': self.short_signals,
            'wait_signals': self.wait_signals,
            'directional_rate': self.directional_signals / max(1, self.total_calculations),
            'insufficient_data': self.insufficient_data,
            'regime_errors': self.regime_errors,
            'reliability_gate': self.reliability_gate,
            'confidence_gate': self.confidence_gate,
            'oscillation_gate': self.oscillation_gate,
            'avg_processing_time_ms': self.avg_processing_time_ms,
            'max_processing_time_ms': self.max_processing_time_ms,
            'min_processing_time_ms': self.min_processing_time_ms if self.min_processing_time_ms != float('inf') else 0.0,
            'avg_confidence': self.avg_confidence,
            'avg_adjusted_r_squared': self.avg_adjusted_r_squared,
        }


@dataclass
class SymbolHealth:
    """Health status for a single symbol"""
    symbol: str
    last_calculation_time: Optional[datetime] = None
    last_direction: Optional[str] = None
    consecutive_waits: int = 0
    metrics: CalculationMetrics = field(default_factory=CalculationMetrics)
    recent_gates: deque = field(default_factory=lambda: deque(maxlen=10))

    def to_dict(self) -> dict:
        return {
            'symbol': self.symbol,
            'last_calculation_time': self.last_calculation_time.isoformat() if self.last_calculation_time else None,
            'last_direction': self.last_direction,
            'consecutive_waits': self.consecutive_waits,
            'metrics': self.metrics.to_dict(),
            'recent_gates': list(self.recent_gates),
        }


class TrendHealthMonitor:
    """
    Health monitoring for the trend engine.

    Tracks:
        - Direction mix (LONG/SHORT/WAIT) and gate hits
        - Processing times
        - Insufficient-data and regime precondition events
        - Per-symbol status
    """

    def __init__(self):
        self.start_time = datetime.now()
        self.symbol_health: Dict[str, SymbolHealth] = {}
        self.global_metrics = CalculationMetrics()
        self.recent_calculations: deque = deque(maxlen=100)
        self._lock = threading.Lock()

        LOG.info("Trend health monitor initialized")

    def _health(self, symbol: str) -> SymbolHealth:
        if symbol not in self.symbol_health:
            self.symbol_health[symbol] = SymbolHealth(symbol=symbol)
        return self.symbol_health[symbol]

    def record_calculation_start(self, symbol: str) -> float:
        """Register symbol and return a start timestamp"""
        with self._lock:
            self._health(symbol)
        return time.time()

    def record_calculation(self, symbol: str, start_time: float, result: dict):
        """
        Record a completed trend calculation.

        Args:
            symbol: Symbol calculated
            start_time: Value from record_calculation_start
            result: TrendResult.to_dict() output
        """
        elapsed_ms = (time.time() - start_time) * 1000
        direction = result.get('direction', 'WAIT')
        confidence = float(result.get('confidence', 0.0))
        adjusted = float(result.get('adjustedRSquared', 0.0))
        reasons = list(result.get('gateReasons', []))

        with self._lock:
            health = self._health(symbol)
            health.last_calculation_time = datetime.now()
            health.last_direction = direction
            health.consecutive_waits = health.consecutive_waits + 1 if direction == 'WAIT' else 0
            health.metrics.record(elapsed_ms, direction, confidence, adjusted)
            health.metrics.record_gates(reasons)
            if reasons:
                health.recent_gates.append({'timestamp': datetime.now().isoformat(), 'reasons': reasons})

            self.global_metrics.record(elapsed_ms, direction, confidence, adjusted)
            self.global_metrics.record_gates(reasons)

            self.recent_calculations.append({
                'symbol': symbol,
                'timestamp': datetime.now().isoformat(),
                'direction': direction,
                'confidence': confidence,
                'elapsed_ms': elapsed_ms,
            })

        LOG.debug(f"Trend calculated: {symbol} {direction} ({elapsed_ms:.2f}ms)")

    def record_insufficient_data(self, symbol: str, actual: int, required: int):
        with self._lock:
            self._health(symbol).metrics.insufficient_data += 1
            self.global_metrics.insufficient_data += 1
        LOG.debug(f"Insufficient data: {symbol} {actual}/{required}")

    def record_regime_error(self, symbol: str, error: Exception):
        with self._lock:
            self._health(symbol).metrics.regime_errors += 1
            self.global_metrics.regime_errors += 1
        LOG.warning(f"Regime detection skipped for {symbol}: {error}")

    def get_health_status(self) -> Dict:
        """Overall health status"""
        with self._lock:
            uptime = (datetime.now() - self.start_time).total_seconds()
            attempts = self.global_metrics.total_calculations + self.global_metrics.insufficient_data
            error_rate = (self.global_metrics.insufficient_data + self.global_metrics.regime_errors) / max(1, attempts)

            if error_rate <= 0.20:
                status = "HEALTHY"
            elif error_rate <= 0.50:
                status = "DEGRADED"
            else:
                status = "UNHEALTHY"

            stalled_symbols = sum(1 for h in self.symbol_health.values() if h.consecutive_waits >= 20)

            return {
                'status': status,
                'uptime_seconds': uptime,
                'global_metrics': self.global_metrics.to_dict(),
                'symbols_tracked': len(self.symbol_health),
                'stalled_symbols': stalled_symbols,
                'recent_calculations_count': len(self.recent_calculations),
                'error_rate': error_rate,
            }

    def get_symbol_health(self, symbol: str) -> Optional[Dict]:
        with self._lock:
            if symbol not in self.symbol_health:
                return None
            return self.symbol_health[symbol].to_dict()

    def get_all_symbol_health(self) -> Dict[str, Dict]:
        with self._lock:
            return {symbol: health.to_dict() for symbol, health in self.symbol_health.items()}

    def get_recent_calculations(self, limit: int = 20) -> List[Dict]:
        with self._lock:
            return list(self.recent_calculations)[-limit:]

    def export_health_report(self, filepath: str):
        """
        Export health report to JSON file.

        Args:
            filepath: Path to save report
        """
        report = {
            'timestamp': datetime.now().isoformat(),
            'health_status': self.get_health_status(),
            'symbol_health': self.get_all_symbol_health(),
            'recent_calculations': self.get_recent_calculations(50),
        }

        with open(filepath, 'w') as f:
            json.dump(report, f, indent=2)

        LOG.info(f"Health report exported to {filepath}")

    def remove_symbol(self, symbol: str):
        with self._lock:
            self.symbol_health.pop(symbol, None)

    def reset_metrics(self):
        """Reset all metrics"""
        with self._lock:
            self.symbol_health.clear()
            self.global_metrics = CalculationMetrics()
            self.recent_calculations.clear()
            self.start_time = datetime.now()
        LOG.info("Health monitor metrics reset")
