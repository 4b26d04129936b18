"""
AI Response Validation

Extracts the JSON object from free-form model output and validates it
against a strict schema:

    tendance            LONG | SHORT | WAIT
    confidence          [0, 1], below 0.5 only WAIT
    sigma               [0.001, 0.05]
    takeProfitPnlClick  [0.0005, 0.02]
    reasoning           >= 30 chars, must cite a number or a metric

Bounds are taken from ValidationBounds and passed to the schema as
validation context.
"""

import json
import logging
import re
from typing import Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, ValidationInfo, field_validator, model_validator

from trendcalc.ai_confirmation.config import ValidationBounds
from trendcalc.ai_confirmation.schemas import AIAnalysisResult, ValidationOutcome
from trendcalc.quant_stats.schemas import TrendDirection

LOG = logging.getLogger(__name__)

PAYLOAD_PREVIEW_CHARS = 500

METRIC_TERMS = (
    'imbalance', 'atr', 'volatility', 'wick', 'body', 'candle', 'volume',
    'order book', 'bid', 'ask', 'spread', 'momentum', 'support', 'resistance',
    'price', 'sigma', 'trend',
)

_FENCE_RE = re.compile(r"```(?:json|JSON)?\s*(.*?)```", re.DOTALL)


def _bounds(info: ValidationInfo) -> ValidationBounds:
    context = info.context or {}
    return context.get('bounds') or ValidationBounds()


def _check_range(name: str, value: float, low: float, high: float) -> float:
    # NaN fails both comparisons
    if not (low <= value <= high):
        raise ValueError(f"{name} {value} outside [{low}, {high}]")
    return value


class AIResponsePayload(BaseModel):
    """Schema of the JSON object returned by the model"""
    model_config = ConfigDict(populate_by_name=True, extra='ignore')

    tendance: TrendDirection
    sigma: float
    take_profit_pnl_click: float = Field(alias='takeProfitPnlClick')
    confidence: float
    reasoning: str

    @field_validator('tendance', mode='before')
    @classmethod
    def normalize_tendance(cls, v):
        if isinstance(v, str):
            return v.strip().upper()
        return v

    @field_validator('confidence')
    @classmethod
    def check_confidence(cls, v: float, info: ValidationInfo) -> float:
        bounds = _bounds(info)
        return _check_range('confidence', v, bounds.min_confidence, bounds.max_confidence)

    @field_validator('sigma')
    @classmethod
    def check_sigma(cls, v: float, info: ValidationInfo) -> float:
        bounds = _bounds(info)
        return _check_range('sigma', v, bounds.min_sigma, bounds.max_sigma)

    @field_validator('take_profit_pnl_click')
    @classmethod
    def check_take_profit(cls, v: float, info: ValidationInfo) -> float:
        bounds = _bounds(info)
        return _check_range('takeProfitPnlClick', v, bounds.min_take_profit, bounds.max_take_profit)

    @field_validator('reasoning')
    @classmethod
    def check_reasoning(cls, v: str, info: ValidationInfo) -> str:
        bounds = _bounds(info)
        text = v.strip()
        if len(text) < bounds.min_reasoning_length:
            raise ValueError(f"reasoning shorter than {bounds.min_reasoning_length} characters")

        lowered = text.lower()
        if not any(ch.isdigit() for ch in text) and not any(term in lowered for term in METRIC_TERMS):
            raise ValueError("reasoning does not reference any metric")
        return text

    @model_validator(mode='after')
    def check_directional_confidence(self, info: ValidationInfo) -> 'AIResponsePayload':
        bounds = _bounds(info)
        if self.tendance != TrendDirection.WAIT and self.confidence < bounds.directional_confidence:
            raise ValueError(
                f"{self.tendance.value} with confidence {self.confidence} "
                f"below {bounds.directional_confidence} must be WAIT"
            )
        return self


def extract_json(text: str) -> Optional[str]:
    """
    Return the first balanced {...} block of the text.

    Markdown code fences are stripped first. Braces inside string literals
    (including escaped quotes) are ignored.
    """
    if not text:
        return None

    fenced = _FENCE_RE.search(text)
    if fenced:
        text = fenced.group(1)

    start = text.find('{')
    if start < 0:
        return None

    depth = 0
    in_string = False
    escaped = False
    for i in range(start, len(text)):
        ch = text[i]
        if in_string:
            if escaped:
                escaped = False
            elif ch == '\\':
                escaped = True
            elif ch == '"':
                in_string = False
            continue

        if ch == '"':
            in_string = True
        elif ch == '{':
            depth += 1
        elif ch == '}':
            depth -= 1
            if depth == 0:
                return text[start:i + 1]
    return None


class ResponseValidator:
    """Turns raw model output into a ValidationOutcome"""

    def __init__(self, bounds: Optional[ValidationBounds] = None):
        self.bounds = bounds or ValidationBounds()

    @staticmethod
    def _preview(payload) -> Optional[str]:
        if payload is None:
            return None
        text = payload if isinstance(payload, str) else repr(payload)
        return text[:PAYLOAD_PREVIEW_CHARS]

    def validate(self, response: Union[str, dict, None], symbol: str) -> ValidationOutcome:
        """
        Validate a model response.

        Args:
            response: Raw text or an already-decoded object
            symbol: Symbol the response is for

        Returns:
            ValidationOutcome with either the result or the rejection reason
        """
        if response is None:
            return ValidationOutcome.failure("empty response")

        if isinstance(response, str):
            block = extract_json(response)
            if block is None:
                return ValidationOutcome.failure("no JSON object in response", self._preview(response))
            try:
                data = json.loads(block)
            except json.JSONDecodeError as e:
                return ValidationOutcome.failure(f"malformed JSON: {e.msg}", self._preview(response))
        else:
            data = response

        if not isinstance(data, dict):
            return ValidationOutcome.failure("response is not a JSON object", self._preview(response))

        try:
            payload = AIResponsePayload.model_validate(data, context={'bounds': self.bounds})
        except ValidationError as e:
            first = e.errors()[0]
            location = '.'.join(str(part) for part in first.get('loc', ())) or 'response'
            reason = f"{location}: {first.get('msg', 'invalid')}"
            return ValidationOutcome.failure(reason, self._preview(response))

        result = AIAnalysisResult(
            symbol=symbol,
            tendance=payload.tendance,
            sigma=payload.sigma,
            take_profit_pnl_click=payload.take_profit_pnl_click,
            confidence=payload.confidence,
            reasoning=payload.reasoning,
        )
        LOG.debug(f"{symbol}: accepted {result.tendance.value} confidence={result.confidence:.2f}")
        return ValidationOutcome.success(result)
