"""
Schemas for the AI Confirmation Loop

Market micro data fed to the prompt, the validated AI result and the
typed validation outcome.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import List, Optional, Tuple

from trendcalc.ai_confirmation.exceptions import ResponseValidationError
from trendcalc.quant_stats.schemas import TrendDirection


class LoopState(str, Enum):
    """Retry loop states"""
    FETCHING = "FETCHING"
    ANALYZING = "ANALYZING"
    SIGNALED = "SIGNALED"
    RETRY = "RETRY"
    EXHAUSTED = "EXHAUSTED"
    CANCELLED = "CANCELLED"


class RoundOutcome(str, Enum):
    """Outcome of a single loop round"""
    SIGNALED = "SIGNALED"
    WAIT = "WAIT"
    NO_DATA = "NO_DATA"
    INVALID = "INVALID"
    TIMEOUT = "TIMEOUT"
    PROVIDER_ERROR = "PROVIDER_ERROR"


@dataclass
class Kline:
    """One OHLCV candle"""
    open: float
    high: float
    low: float
    close: float
    volume: float = 0.0
    open_time: Optional[int] = None

    @classmethod
    def from_raw(cls, raw) -> 'Kline':
        """
        Build from an exchange array [openTime, open, high, low, close, volume, ...]
        or a mapping with open/high/low/close(/volume).
        """
        if isinstance(raw, dict):
            return cls(
                open=float(raw['open']),
                high=float(raw.get('high', max(float(raw['open']), float(raw['close'])))),
                low=float(raw.get('low', min(float(raw['open']), float(raw['close'])))),
                close=float(raw['close']),
                volume=float(raw.get('volume', 0.0)),
                open_time=raw.get('open_time'),
            )
        return cls(
            open=float(raw[1]),
            high=float(raw[2]),
            low=float(raw[3]),
            close=float(raw[4]),
            volume=float(raw[5]) if len(raw) > 5 else 0.0,
            open_time=int(raw[0]),
        )

    def to_dict(self) -> dict:
        return {
            'open': self.open,
            'high': self.high,
            'low': self.low,
            'close': self.close,
            'volume': self.volume,
            'open_time': self.open_time,
        }


@dataclass
class OrderBookDepth:
    """Order book levels as (price, quantity) pairs, best first"""
    bids: List[Tuple[float, float]] = field(default_factory=list)
    asks: List[Tuple[float, float]] = field(default_factory=list)

    @classmethod
    def from_raw(cls, raw: Optional[dict]) -> 'OrderBookDepth':
        if not raw:
            return cls()
        return cls(
            bids=[(float(p), float(q)) for p, q, *_ in raw.get('bids', [])],
            asks=[(float(p), float(q)) for p, q, *_ in raw.get('asks', [])],
        )


@dataclass
class MarketMicroData:
    """Order-flow and wick-intensity features for one analysis cycle"""
    symbol: str
    last_price: float
    imbalance: float = 0.0  # [-1, 1], positive = bid pressure
    volatility_score: float = 0.0  # Mean wick size in basis points of open
    klines: List[Kline] = field(default_factory=list)
    timestamp: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> dict:
        return {
            'symbol': self.symbol,
            'lastPrice': self.last_price,
            'imbalance': self.imbalance,
            'volatilityScore': self.volatility_score,
            'klines': [k.to_dict() for k in self.klines],
            'timestamp': self.timestamp.isoformat(),
        }


@dataclass
class StrategyParams:
    """Current Click-strategy parameters of a symbol, for prompt context"""
    investment: Optional[float] = None  # USDT
    sigma: Optional[float] = None
    take_profit_pnl_click: Optional[float] = None
    leverage: Optional[int] = None
    risk_tolerance: Optional[str] = None  # LOW / MEDIUM / HIGH

    def to_dict(self) -> dict:
        return {
            'investment': self.investment,
            'sigma': self.sigma,
            'takeProfitPnlClick': self.take_profit_pnl_click,
            'leverage': self.leverage,
            'riskTolerance': self.risk_tolerance,
        }


@dataclass
class AIAnalysisResult:
    """
    Second directional opinion for a symbol.

    is_fallback marks the neutral result of an exhausted or cancelled
    loop; it is not part of the external schema.
    """
    symbol: str
    tendance: TrendDirection = TrendDirection.WAIT
    sigma: float = 0.005
    take_profit_pnl_click: float = 0.002
    confidence: float = 0.0
    reasoning: str = ""
    timestamp: datetime = field(default_factory=datetime.now)
    is_fallback: bool = False
    attempts: int = 0

    def to_dict(self) -> dict:
        return {
            'symbol': self.symbol,
            'tendance': self.tendance.value,
            'sigma': float(self.sigma),
            'takeProfitPnlClick': float(self.take_profit_pnl_click),
            'confidence': float(self.confidence),
            'reasoning': self.reasoning,
            'timestamp': self.timestamp.isoformat(),
        }


@dataclass
class ValidationOutcome:
    """Either a validated result or the reason it was rejected"""
    result: Optional[AIAnalysisResult] = None
    error: Optional[ResponseValidationError] = None

    @property
    def ok(self) -> bool:
        return self.result is not None and self.error is None

    def unwrap(self) -> AIAnalysisResult:
        if self.error is not None:
            raise self.error
        return self.result

    @classmethod
    def success(cls, result: AIAnalysisResult) -> 'ValidationOutcome':
        return cls(result=result)

    @classmethod
    def failure(cls, reason: str, payload: Optional[str] = None) -> 'ValidationOutcome':
        return cls(error=ResponseValidationError(reason, payload))
