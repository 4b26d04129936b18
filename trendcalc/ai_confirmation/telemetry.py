"""
AI Telemetry Monitor

Records every prompt/response exchange with the AI provider and keeps
per-symbol round statistics (signals, waits, invalid responses, timeouts,
provider errors, missing data), loop exhaustions and cancellations.
"""

import logging
import threading
import uuid
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Optional

from trendcalc.ai_confirmation.schemas import RoundOutcome

LOG = logging.getLogger(__name__)

SUMMARY_CHARS = 100


@dataclass
class AIExchange:
    """One prompt/response round trip"""
    symbol: str
    provider: str
    model: str
    prompt: str
    status: RoundOutcome = RoundOutcome.WAIT
    response: Optional[str] = None
    error: Optional[str] = None
    parsed_action: Optional[str] = None
    started_at: datetime = field(default_factory=datetime.now)
    finished_at: Optional[datetime] = None
    id: str = field(default_factory=lambda: uuid.uuid4().hex)

    @property
    def duration_ms(self) -> float:
        if self.finished_at is None:
            return 0.0
        return (self.finished_at - self.started_at).total_seconds() * 1000

    @property
    def summary(self) -> str:
        text = self.response if self.response else (self.error or "")
        text = " ".join(text.split())
        return text[:SUMMARY_CHARS]

    def to_dict(self, include_bodies: bool = False) -> dict:
        data = {
            'id': self.id,
            'symbol': self.symbol,
            'provider': self.provider,
            'model': self.model,
            'status': self.status.value,
            'summary': self.summary,
            'parsed_action': self.parsed_action,
            'error': self.error,
            'started_at': self.started_at.isoformat(),
            'finished_at': self.finished_at.isoformat() if self.finished_at else None,
            'duration_ms': self.duration_ms,
        }
        if include_bodies:
            data['prompt'] = self.prompt
            data['response'] = self.response
        return data


@dataclass
class RoundStats:
    """Round outcome counters"""
    rounds: int = 0
    outcomes: Dict[str, int] = field(default_factory=lambda: {o.value: 0 for o in RoundOutcome})
    loops_signaled: int = 0
    loops_exhausted: int = 0
    loops_cancelled: int = 0
    avg_latency_ms: float = 0.0
    max_latency_ms: float = 0.0
    latency_samples: int = 0

    def record_round(self, outcome: RoundOutcome, latency_ms: Optional[float] = None):
        self.rounds += 1
        self.outcomes[outcome.value] += 1
        if latency_ms is not None:
            self.latency_samples += 1
            n = self.latency_samples
            self.avg_latency_ms = (self.avg_latency_ms * (n - 1) + latency_ms) / n
            self.max_latency_ms = max(self.max_latency_ms, latency_ms)

    def to_dict(self) -> dict:
        failures = sum(self.outcomes[o.value] for o in
                       (RoundOutcome.INVALID, RoundOutcome.TIMEOUT, RoundOutcome.PROVIDER_ERROR))
        return {
            'rounds': self.rounds,
            'outcomes': dict(self.outcomes),
            'failure_rate': failures / max(1, self.rounds),
            'loops_signaled': self.loops_signaled,
            'loops_exhausted': self.loops_exhausted,
            'loops_cancelled': self.loops_cancelled,
            'avg_latency_ms': self.avg_latency_ms,
            'max_latency_ms': self.max_latency_ms,
        }


class AITelemetryMonitor:
    """
    Telemetry for the AI confirmation loop.

    Exchanges are kept in a bounded history, newest last. Thread-safe so
    API handlers can read while the loop writes.
    """

    def __init__(self, provider_name: str = "gemini", model: str = "", max_exchanges: int = 200):
        self.provider_name = provider_name
        self.model = model
        self.start_time = datetime.now()
        self.global_stats = RoundStats()
        self.symbol_stats: Dict[str, RoundStats] = {}
        self.exchanges: deque = deque(maxlen=max_exchanges)
        self._lock = threading.Lock()

        LOG.info(f"AI telemetry initialized (provider={provider_name}, model={model or 'default'})")

    def _stats(self, symbol: str) -> RoundStats:
        if symbol not in self.symbol_stats:
            self.symbol_stats[symbol] = RoundStats()
        return self.symbol_stats[symbol]

    def start_exchange(self, symbol: str, prompt: str) -> AIExchange:
        """Create an exchange record; finish it with finish_exchange"""
        return AIExchange(symbol=symbol, provider=self.provider_name, model=self.model, prompt=prompt)

    def finish_exchange(self, exchange: AIExchange, status: RoundOutcome, response: Optional[str] = None,
                        error: Optional[str] = None, parsed_action: Optional[str] = None):
        exchange.finished_at = datetime.now()
        exchange.status = status
        exchange.response = response
        exchange.error = error
        exchange.parsed_action = parsed_action

        with self._lock:
            self.exchanges.append(exchange)
            self._stats(exchange.symbol).record_round(status, exchange.duration_ms)
            self.global_stats.record_round(status, exchange.duration_ms)

        LOG.debug(f"AI exchange {exchange.id[:8]} {exchange.symbol}: {status.value} ({exchange.duration_ms:.0f}ms)")

    def record_no_data(self, symbol: str):
        with self._lock:
            self._stats(symbol).record_round(RoundOutcome.NO_DATA)
            self.global_stats.record_round(RoundOutcome.NO_DATA)

    def record_signaled(self, symbol: str):
        with self._lock:
            self._stats(symbol).loops_signaled += 1
            self.global_stats.loops_signaled += 1

    def record_exhausted(self, symbol: str):
        with self._lock:
            self._stats(symbol).loops_exhausted += 1
            self.global_stats.loops_exhausted += 1

    def record_cancelled(self, symbol: str):
        with self._lock:
            self._stats(symbol).loops_cancelled += 1
            self.global_stats.loops_cancelled += 1

    def get_exchanges(self, page: int = 1, page_size: int = 20, symbol: Optional[str] = None) -> dict:
        """Newest-first page of exchanges"""
        page = max(1, page)
        page_size = max(1, page_size)
        with self._lock:
            items = [e for e in reversed(self.exchanges) if symbol is None or e.symbol == symbol]

        start = (page - 1) * page_size
        return {
            'page': page,
            'page_size': page_size,
            'total': len(items),
            'items': [e.to_dict() for e in items[start:start + page_size]],
        }

    def get_exchange(self, exchange_id: str) -> Optional[dict]:
        with self._lock:
            for exchange in self.exchanges:
                if exchange.id == exchange_id:
                    return exchange.to_dict(include_bodies=True)
        return None

    def get_symbol_stats(self, symbol: str) -> Optional[dict]:
        with self._lock:
            stats = self.symbol_stats.get(symbol)
            return stats.to_dict() if stats else None

    def get_stats(self) -> dict:
        with self._lock:
            return {
                'provider': self.provider_name,
                'model': self.model,
                'uptime_seconds': (datetime.now() - self.start_time).total_seconds(),
                'global': self.global_stats.to_dict(),
                'symbols': {s: stats.to_dict() for s, stats in self.symbol_stats.items()},
                'exchanges_recorded': len(self.exchanges),
            }

    def remove_symbol(self, symbol: str):
        with self._lock:
            self.symbol_stats.pop(symbol, None)

    def reset(self):
        with self._lock:
            self.global_stats = RoundStats()
            self.symbol_stats.clear()
            self.exchanges.clear()
            self.start_time = datetime.now()
        LOG.info("AI telemetry reset")
