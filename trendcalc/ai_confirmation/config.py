"""
AI Confirmation Configuration

Retry budget, delays, validation bounds and provider settings.
Provider credentials come from the environment (.env supported).
"""

from dataclasses import dataclass, asdict
from typing import Optional
import hashlib
import json
import os

from dotenv import load_dotenv


@dataclass
class ValidationBounds:
    """Accepted ranges for AI responses"""
    min_confidence: float = 0.0
    max_confidence: float = 1.0
    directional_confidence: float = 0.5  # Below this only WAIT is accepted
    min_sigma: float = 0.001
    max_sigma: float = 0.05
    min_take_profit: float = 0.0005
    max_take_profit: float = 0.02
    min_reasoning_length: int = 30


@dataclass
class AIConfirmationConfig:
    """
    Retry-until-signal loop settings.

    Fallback values are returned, with zero confidence, when the retry
    budget is consumed without a LONG/SHORT answer.
    """
    max_retries: int = 5
    fetch_backoff_seconds: float = 1.0  # No market data
    retry_delay_seconds: float = 2.0  # WAIT or failed round
    ai_timeout_seconds: float = 30.0  # Per AI invocation

    fallback_sigma: float = 0.005
    fallback_take_profit: float = 0.002

    order_book_limit: int = 20
    imbalance_levels: int = 10  # Top-N levels summed for imbalance
    kline_interval: str = "1m"
    kline_limit: int = 30

    bounds: ValidationBounds = None

    def __post_init__(self):
        if self.bounds is None:
            self.bounds = ValidationBounds()

    def to_dict(self) -> dict:
        """Convert config to dictionary"""
        result = asdict(self)
        result['bounds'] = asdict(self.bounds)
        return result

    def get_config_hash(self) -> str:
        config_str = json.dumps(self.to_dict(), sort_keys=True)
        return hashlib.sha256(config_str.encode()).hexdigest()[:16]

    @classmethod
    def from_dict(cls, config_dict: dict) -> 'AIConfirmationConfig':
        """Create config from dictionary"""
        values = dict(config_dict)
        bounds = values.pop('bounds', None)
        return cls(**values, bounds=ValidationBounds(**bounds) if bounds else None)


@dataclass
class AIProviderConfig:
    """Generative Language API settings"""
    api_key: Optional[str] = None
    model: str = "gemini-1.5-flash"
    temperature: float = 0.2
    max_output_tokens: int = 1024
    request_timeout: float = 30.0
    base_url: str = "https://generativelanguage.googleapis.com/v1beta"

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key)

    @classmethod
    def from_env(cls, dotenv_path: Optional[str] = None) -> 'AIProviderConfig':
        """Read GEMINI_API_KEY, AI_MODEL, AI_TEMPERATURE, AI_MAX_TOKENS, AI_REQUEST_TIMEOUT"""
        load_dotenv(dotenv_path)
        defaults = cls()
        return cls(
            api_key=os.getenv("GEMINI_API_KEY") or None,
            model=os.getenv("AI_MODEL", defaults.model),
            temperature=float(os.getenv("AI_TEMPERATURE", defaults.temperature)),
            max_output_tokens=int(os.getenv("AI_MAX_TOKENS", defaults.max_output_tokens)),
            request_timeout=float(os.getenv("AI_REQUEST_TIMEOUT", defaults.request_timeout)),
            base_url=os.getenv("AI_BASE_URL", defaults.base_url),
        )


@dataclass
class MarketDataConfig:
    """Public futures REST endpoint settings"""
    base_url: str = "https://fapi.binance.com"
    request_timeout: float = 10.0

    @classmethod
    def from_env(cls, dotenv_path: Optional[str] = None) -> 'MarketDataConfig':
        """Read BINANCE_BASE_URL, MARKET_DATA_TIMEOUT"""
        load_dotenv(dotenv_path)
        defaults = cls()
        return cls(
            base_url=os.getenv("BINANCE_BASE_URL", defaults.base_url),
            request_timeout=float(os.getenv("MARKET_DATA_TIMEOUT", defaults.request_timeout)),
        )
