"""
AI Confirmation Retry Loop

Asks the AI provider for a directional opinion until it answers LONG or
SHORT, the retry budget is consumed, or the caller cancels.

Round flow:
    FETCHING   -> no micro data: wait fetch_backoff_seconds, next round
    ANALYZING  -> provider error / timeout / invalid: wait retry_delay_seconds
               -> WAIT: RETRY, wait retry_delay_seconds
               -> LONG/SHORT: SIGNALED, cache and return
    EXHAUSTED  -> neutral WAIT result with fallback parameters
    CANCELLED  -> neutral WAIT result, nothing cached

The loop never raises for data or provider failures. Concurrent callers for
the same symbol share one running loop.
"""

import asyncio
import logging
from typing import Dict, Optional

from trendcalc.ai_confirmation.config import AIConfirmationConfig
from trendcalc.ai_confirmation.exceptions import AIProviderError
from trendcalc.ai_confirmation.micro_data import MarketMicroDataCalculator
from trendcalc.ai_confirmation.prompts import PromptBuilder
from trendcalc.ai_confirmation.providers import AIProvider
from trendcalc.ai_confirmation.schemas import (
    AIAnalysisResult,
    LoopState,
    MarketMicroData,
    RoundOutcome,
    StrategyParams,
)
from trendcalc.ai_confirmation.telemetry import AITelemetryMonitor
from trendcalc.ai_confirmation.validation import ResponseValidator
from trendcalc.quant_stats.schemas import TrendDirection

LOG = logging.getLogger(__name__)


class CancellationToken:
    """Cooperative cancellation for a running loop; wakes pending delays immediately"""

    def __init__(self):
        self._event = asyncio.Event()

    def cancel(self):
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    async def sleep(self, delay: float) -> bool:
        """Wait up to `delay` seconds. Returns True if cancelled meanwhile."""
        if self.cancelled or delay <= 0:
            return self.cancelled
        try:
            await asyncio.wait_for(self._event.wait(), timeout=delay)
            return True
        except asyncio.TimeoutError:
            return False


class AIConfirmationService:
    """
    Retry-until-signal AI confirmation per symbol.

    Successful LONG/SHORT results are cached per symbol and overwritten by
    the next successful loop. Fallback results are never cached.
    """

    def __init__(
        self,
        micro_calculator: MarketMicroDataCalculator,
        ai_provider: AIProvider,
        config: Optional[AIConfirmationConfig] = None,
        prompt_builder: Optional[PromptBuilder] = None,
        validator: Optional[ResponseValidator] = None,
        telemetry: Optional[AITelemetryMonitor] = None,
    ):
        self.config = config or AIConfirmationConfig()
        self.micro_calculator = micro_calculator
        self.ai_provider = ai_provider
        self.prompt_builder = prompt_builder or PromptBuilder()
        self.validator = validator or ResponseValidator(self.config.bounds)
        self.telemetry = telemetry or AITelemetryMonitor()

        self._cache: Dict[str, AIAnalysisResult] = {}
        self._inflight: Dict[str, asyncio.Task] = {}
        self._tokens: Dict[str, CancellationToken] = {}
        self._states: Dict[str, LoopState] = {}

        LOG.info(f"AI confirmation service initialized (max_retries={self.config.max_retries}, "
                 f"timeout={self.config.ai_timeout_seconds}s)")

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def run_until_signal(
        self,
        symbol: str,
        strategy_params: Optional[StrategyParams] = None,
        timeout: Optional[float] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> AIAnalysisResult:
        """
        Run the confirmation loop for a symbol.

        If a loop is already running for the symbol, the caller joins it and
        the arguments of the later call are ignored.

        Args:
            symbol: Symbol to confirm
            strategy_params: Optional strategy context for the prompt
            timeout: Per-call AI timeout in seconds (config default if None)
            cancel_token: Token to cancel the loop from outside

        Returns:
            Directional result, or the neutral fallback when exhausted/cancelled
        """
        task = self._inflight.get(symbol)
        if task is None or task.done():
            token = cancel_token or CancellationToken()
            self._tokens[symbol] = token
            task = asyncio.create_task(self._run_loop(symbol, strategy_params, timeout, token))
            self._inflight[symbol] = task
            task.add_done_callback(lambda t, s=symbol: self._on_loop_done(s, t))
        else:
            LOG.debug(f"{symbol}: joining running confirmation loop")

        # A cancelled caller must not tear down the loop other callers await
        return await asyncio.shield(task)

    def is_running(self, symbol: str) -> bool:
        task = self._inflight.get(symbol)
        return task is not None and not task.done()

    def get_loop_state(self, symbol: str) -> Optional[LoopState]:
        return self._states.get(symbol)

    def get_cached_result(self, symbol: str) -> Optional[AIAnalysisResult]:
        return self._cache.get(symbol)

    def clear_cached_result(self, symbol: str) -> bool:
        return self._cache.pop(symbol, None) is not None

    def cached_symbols(self) -> list:
        return list(self._cache.keys())

    def cancel(self, symbol: str) -> bool:
        """Cancel the running loop of a symbol. Returns False if none is running."""
        token = self._tokens.get(symbol)
        if token is None or not self.is_running(symbol):
            return False
        token.cancel()
        LOG.info(f"{symbol}: confirmation loop cancellation requested")
        return True

    def remove_symbol(self, symbol: str):
        """Cancel any running loop and forget the symbol"""
        self.cancel(symbol)
        self._cache.pop(symbol, None)
        self._states.pop(symbol, None)
        self.telemetry.remove_symbol(symbol)
        LOG.info(f"{symbol}: removed from AI confirmation")

    async def shutdown(self):
        """Cancel every running loop and wait for them to finish"""
        tasks = [t for t in self._inflight.values() if not t.done()]
        for token in self._tokens.values():
            token.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        LOG.info("AI confirmation service stopped")

    # ------------------------------------------------------------------
    # Loop
    # ------------------------------------------------------------------

    def _on_loop_done(self, symbol: str, task: asyncio.Task):
        if self._inflight.get(symbol) is task:
            self._inflight.pop(symbol, None)
            self._tokens.pop(symbol, None)
        if not task.cancelled() and task.exception() is not None:
            LOG.error(f"{symbol}: confirmation loop crashed", exc_info=task.exception())

    async def _run_loop(self, symbol: str, strategy_params: Optional[StrategyParams],
                        timeout: Optional[float], token: CancellationToken) -> AIAnalysisResult:
        max_retries = max(1, self.config.max_retries)
        ai_timeout = self.config.ai_timeout_seconds if timeout is None else timeout

        for attempt in range(1, max_retries + 1):
            if token.cancelled:
                return self._cancelled(symbol, attempt - 1)

            self._states[symbol] = LoopState.FETCHING
            micro = await self._fetch(symbol)

            if micro is None:
                self.telemetry.record_no_data(symbol)
                LOG.info(f"{symbol}: no market data (attempt {attempt}/{max_retries})")
                delay = self.config.fetch_backoff_seconds
            else:
                self._states[symbol] = LoopState.ANALYZING
                outcome, result = await self._analyze(symbol, micro, strategy_params, ai_timeout)

                if token.cancelled:
                    return self._cancelled(symbol, attempt)

                if outcome == RoundOutcome.SIGNALED:
                    result.attempts = attempt
                    self._cache[symbol] = result
                    self._states[symbol] = LoopState.SIGNALED
                    self.telemetry.record_signaled(symbol)
                    LOG.info(f"{symbol}: AI signaled {result.tendance.value} "
                             f"(confidence={result.confidence:.2f}, attempt {attempt})")
                    return result

                LOG.info(f"{symbol}: round {attempt}/{max_retries} ended with {outcome.value}")
                delay = self.config.retry_delay_seconds

            if attempt < max_retries:
                self._states[symbol] = LoopState.RETRY
                if await token.sleep(delay):
                    return self._cancelled(symbol, attempt)

        return self._exhausted(symbol, max_retries)

    async def _fetch(self, symbol: str) -> Optional[MarketMicroData]:
        try:
            return await self.micro_calculator.fetch_micro_data(symbol)
        except Exception as e:
            LOG.warning(f"{symbol}: micro data fetch failed: {e}", exc_info=True)
            return None

    async def _analyze(self, symbol: str, micro: MarketMicroData, strategy_params: Optional[StrategyParams],
                       ai_timeout: float):
        try:
            prompt = self.prompt_builder.build_prompt(micro, strategy_params)
        except Exception as e:
            LOG.warning(f"{symbol}: prompt build failed: {type(e).__name__}: {e}", exc_info=True)
            exchange = self.telemetry.start_exchange(symbol, "")
            self.telemetry.finish_exchange(exchange, RoundOutcome.INVALID, error=f"prompt build failed: {e}")
            return RoundOutcome.INVALID, None

        exchange = self.telemetry.start_exchange(symbol, prompt)

        try:
            response = await asyncio.wait_for(self.ai_provider.generate_content(prompt), timeout=ai_timeout)
        except asyncio.TimeoutError:
            LOG.warning(f"{symbol}: AI call timed out after {ai_timeout}s")
            self.telemetry.finish_exchange(exchange, RoundOutcome.TIMEOUT, error=f"timeout after {ai_timeout}s")
            return RoundOutcome.TIMEOUT, None
        except AIProviderError as e:
            LOG.warning(f"{symbol}: AI provider error: {e}")
            self.telemetry.finish_exchange(exchange, RoundOutcome.PROVIDER_ERROR, error=str(e))
            return RoundOutcome.PROVIDER_ERROR, None
        except Exception as e:
            LOG.warning(f"{symbol}: AI provider raised {type(e).__name__}: {e}", exc_info=True)
            self.telemetry.finish_exchange(exchange, RoundOutcome.PROVIDER_ERROR, error=f"{type(e).__name__}: {e}")
            return RoundOutcome.PROVIDER_ERROR, None

        outcome = self.validator.validate(response, symbol)
        if not outcome.ok:
            LOG.warning(f"{symbol}: rejected AI response ({outcome.error.reason}); payload={outcome.error.payload!r}")
            self.telemetry.finish_exchange(exchange, RoundOutcome.INVALID, response=response,
                                           error=outcome.error.reason)
            return RoundOutcome.INVALID, None

        result = outcome.result
        if result.tendance == TrendDirection.WAIT:
            self.telemetry.finish_exchange(exchange, RoundOutcome.WAIT, response=response, parsed_action="WAIT")
            return RoundOutcome.WAIT, result

        self.telemetry.finish_exchange(exchange, RoundOutcome.SIGNALED, response=response,
                                       parsed_action=result.tendance.value)
        return RoundOutcome.SIGNALED, result

    def _neutral(self, symbol: str, attempts: int, reasoning: str) -> AIAnalysisResult:
        return AIAnalysisResult(
            symbol=symbol,
            tendance=TrendDirection.WAIT,
            sigma=self.config.fallback_sigma,
            take_profit_pnl_click=self.config.fallback_take_profit,
            confidence=0.0,
            reasoning=reasoning,
            is_fallback=True,
            attempts=attempts,
        )

    def _exhausted(self, symbol: str, attempts: int) -> AIAnalysisResult:
        self._states[symbol] = LoopState.EXHAUSTED
        self.telemetry.record_exhausted(symbol)
        LOG.warning(f"{symbol}: no directional AI signal after {attempts} attempts, using fallback")
        return self._neutral(
            symbol, attempts,
            f"No directional signal after {attempts} attempts; fallback parameters applied",
        )

    def _cancelled(self, symbol: str, attempts: int) -> AIAnalysisResult:
        self._states[symbol] = LoopState.CANCELLED
        self.telemetry.record_cancelled(symbol)
        LOG.info(f"{symbol}: confirmation loop cancelled after {attempts} attempts")
        return self._neutral(symbol, attempts, f"Confirmation cancelled after {attempts} attempts")
