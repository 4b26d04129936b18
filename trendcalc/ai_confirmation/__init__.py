"""
AI Confirmation Loop

Asks a generative model for a second directional opinion on a symbol,
retrying until it commits to LONG or SHORT or the budget runs out.

Flow:
    MarketDataProvider → MarketMicroDataCalculator → PromptBuilder
        → AIProvider → ResponseValidator → AIConfirmationService → AIAnalysisResult
"""

from trendcalc.ai_confirmation.config import (
    AIConfirmationConfig,
    AIProviderConfig,
    MarketDataConfig,
    ValidationBounds,
)
from trendcalc.ai_confirmation.exceptions import (
    AIConfirmationError,
    AIProviderError,
    MarketDataError,
    ResponseValidationError,
)
from trendcalc.ai_confirmation.schemas import (
    AIAnalysisResult,
    Kline,
    LoopState,
    MarketMicroData,
    RoundOutcome,
    StrategyParams,
    ValidationOutcome,
)
from trendcalc.ai_confirmation.providers import (
    AIProvider,
    BinanceMarketDataProvider,
    GeminiProvider,
    MarketDataProvider,
)
from trendcalc.ai_confirmation.micro_data import MarketMicroDataCalculator
from trendcalc.ai_confirmation.prompts import PromptBuilder
from trendcalc.ai_confirmation.validation import ResponseValidator
from trendcalc.ai_confirmation.telemetry import AITelemetryMonitor
from trendcalc.ai_confirmation.retry_loop import AIConfirmationService, CancellationToken

__all__ = [
    'AIConfirmationConfig',
    'AIProviderConfig',
    'MarketDataConfig',
    'ValidationBounds',
    'AIConfirmationError',
    'AIProviderError',
    'MarketDataError',
    'ResponseValidationError',
    'AIAnalysisResult',
    'Kline',
    'LoopState',
    'MarketMicroData',
    'RoundOutcome',
    'StrategyParams',
    'ValidationOutcome',
    'AIProvider',
    'BinanceMarketDataProvider',
    'GeminiProvider',
    'MarketDataProvider',
    'MarketMicroDataCalculator',
    'PromptBuilder',
    'ResponseValidator',
    'AITelemetryMonitor',
    'AIConfirmationService',
    'CancellationToken',
]
