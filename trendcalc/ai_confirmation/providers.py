"""
External Providers

Market data and AI text generation behind small async protocols. The
concrete providers use blocking `requests` calls run in the default executor
so the event loop keeps running.
"""

import asyncio
import logging
from typing import List, Optional, Protocol

import requests

from trendcalc.ai_confirmation.config import AIProviderConfig, MarketDataConfig
from trendcalc.ai_confirmation.exceptions import AIProviderError, MarketDataError

LOG = logging.getLogger(__name__)


class MarketDataProvider(Protocol):
    """Any of these may return None/empty; callers never assume availability."""

    async def get_price(self, symbol: str) -> Optional[float]:
        ...

    async def get_order_book_depth(self, symbol: str, limit: int) -> Optional[dict]:
        ...

    async def get_klines(self, symbol: str, interval: str, limit: int) -> List[list]:
        ...


class AIProvider(Protocol):
    async def generate_content(self, prompt: str) -> str:
        ...


class BinanceMarketDataProvider:
    """Public futures REST endpoints (no authentication)"""

    def __init__(self, config: Optional[MarketDataConfig] = None, session: Optional[requests.Session] = None):
        self.config = config or MarketDataConfig()
        self.session = session or requests.Session()

    async def _run(self, func, *args):
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, func, *args)

    def _get(self, path: str, params: dict):
        url = f"{self.config.base_url}{path}"
        try:
            response = self.session.get(url, params=params, timeout=self.config.request_timeout)
            response.raise_for_status()
            return response.json()
        except (requests.RequestException, ValueError) as e:
            raise MarketDataError(f"GET {path} failed: {e}") from e

    async def get_price(self, symbol: str) -> Optional[float]:
        data = await self._run(self._get, "/fapi/v1/ticker/price", {"symbol": symbol})
        price = data.get("price") if isinstance(data, dict) else None
        return float(price) if price is not None else None

    async def get_order_book_depth(self, symbol: str, limit: int) -> Optional[dict]:
        data = await self._run(self._get, "/fapi/v1/depth", {"symbol": symbol, "limit": limit})
        if not isinstance(data, dict):
            return None
        return {"bids": data.get("bids", []), "asks": data.get("asks", [])}

    async def get_klines(self, symbol: str, interval: str, limit: int) -> List[list]:
        data = await self._run(
            self._get, "/fapi/v1/klines", {"symbol": symbol, "interval": interval, "limit": limit}
        )
        return data if isinstance(data, list) else []


class GeminiProvider:
    """Generative Language API `generateContent` over REST"""

    def __init__(self, config: Optional[AIProviderConfig] = None, session: Optional[requests.Session] = None):
        self.config = config or AIProviderConfig.from_env()
        self.session = session or requests.Session()

        if not self.config.is_configured:
            LOG.warning("GEMINI_API_KEY not set, AI confirmation calls will fail")

    def _request(self, prompt: str) -> str:
        if not self.config.is_configured:
            raise AIProviderError("AI provider has no API key")

        url = f"{self.config.base_url}/models/{self.config.model}:generateContent"
        body = {
            "contents": [{"role": "user", "parts": [{"text": prompt}]}],
            "generationConfig": {
                "temperature": self.config.temperature,
                "maxOutputTokens": self.config.max_output_tokens,
            },
        }
        try:
            response = self.session.post(
                url,
                params={"key": self.config.api_key},
                json=body,
                timeout=self.config.request_timeout,
            )
            response.raise_for_status()
            data = response.json()
        except (requests.RequestException, ValueError) as e:
            raise AIProviderError(f"generateContent failed: {e}") from e

        try:
            parts = data["candidates"][0]["content"]["parts"]
        except (KeyError, IndexError, TypeError) as e:
            raise AIProviderError(f"Unexpected generateContent payload: {str(data)[:200]}") from e
        return "".join(part.get("text", "") for part in parts)

    async def generate_content(self, prompt: str) -> str:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self._request, prompt)
