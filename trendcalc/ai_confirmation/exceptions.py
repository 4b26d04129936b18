"""Errors of the AI confirmation loop."""

from typing import Optional


class AIConfirmationError(Exception):
    """Base class for AI confirmation errors"""


class ResponseValidationError(AIConfirmationError):
    """AI response could not be parsed or violated the response schema"""

    def __init__(self, reason: str, payload: Optional[str] = None):
        self.reason = reason
        self.payload = payload
        super().__init__(reason)


class AIProviderError(AIConfirmationError):
    """AI provider call failed"""


class MarketDataError(AIConfirmationError):
    """Market data provider call failed"""
