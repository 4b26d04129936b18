"""
Tests for the AI confirmation loop.

Market data and AI providers are in-memory fakes; delays are shortened
through the config so the loop runs in milliseconds.
"""

import asyncio
import json

import pytest

from trendcalc.ai_confirmation import (
    AIConfirmationConfig,
    AIConfirmationService,
    AIProviderError,
    AITelemetryMonitor,
    CancellationToken,
    Kline,
    MarketDataError,
    MarketMicroData,
    MarketMicroDataCalculator,
    PromptBuilder,
    ResponseValidator,
    StrategyParams,
)
from trendcalc.ai_confirmation.micro_data import calculate_imbalance, calculate_volatility_score
from trendcalc.ai_confirmation.schemas import OrderBookDepth, RoundOutcome
from trendcalc.ai_confirmation.validation import extract_json
from trendcalc.quant_stats.schemas import TrendDirection

REASONING = "Order book imbalance of 0.35 and ATR of 12.5 support a continuation"


def ai_response(tendance="LONG", confidence=0.9, sigma=0.005, take_profit=0.002, reasoning=REASONING):
    return json.dumps({
        "tendance": tendance,
        "confidence": confidence,
        "sigma": sigma,
        "takeProfitPnlClick": take_profit,
        "reasoning": reasoning,
    })


class FakeMarketData:
    """Market data provider returning fixed values"""

    def __init__(self, price=100.0, depth=None, klines=None):
        self.price = price
        self.depth = depth if depth is not None else {
            "bids": [["99.9", "6"], ["99.8", "4"]],
            "asks": [["100.1", "3"], ["100.2", "2"]],
        }
        self.klines = klines if klines is not None else [
            [0, "100", "105", "95", "102", "10"],
            [60000, "102", "108", "100", "106", "12"],
            [120000, "106", "112", "104", "110", "9"],
        ]
        self.price_calls = 0

    async def get_price(self, symbol):
        self.price_calls += 1
        return self.price

    async def get_order_book_depth(self, symbol, limit):
        return self.depth

    async def get_klines(self, symbol, interval, limit):
        return self.klines


class ScriptedAI:
    """
    AI provider answering from a script.

    Each entry is a response string or an exception to raise; the last
    entry repeats once the script runs out.
    """

    def __init__(self, *script, delay=0.0):
        self.script = list(script)
        self.delay = delay
        self.calls = 0
        self.prompts = []

    async def generate_content(self, prompt):
        self.prompts.append(prompt)
        entry = self.script[min(self.calls, len(self.script) - 1)]
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if isinstance(entry, Exception):
            raise entry
        return entry


@pytest.fixture
def config():
    return AIConfirmationConfig(
        max_retries=3,
        fetch_backoff_seconds=0.01,
        retry_delay_seconds=0.01,
        ai_timeout_seconds=0.5,
    )


def make_service(config, market=None, ai=None):
    market = market or FakeMarketData()
    ai = ai or ScriptedAI(ai_response())
    return AIConfirmationService(
        MarketMicroDataCalculator(market, config),
        ai,
        config=config,
        telemetry=AITelemetryMonitor(provider_name="fake"),
    )


# ============================================================================
# Prompt helpers
# ============================================================================

class TestPromptBuilder:
    """Test prompt construction and price-action helpers."""

    candles = [
        Kline(open=100, high=105, low=95, close=102),
        Kline(open=102, high=108, low=100, close=106),
        Kline(open=106, high=112, low=104, close=110),
    ]

    def test_atr_worked_example(self):
        assert PromptBuilder.calculate_atr(self.candles) == 8

    def test_atr_needs_two_candles(self):
        assert PromptBuilder.calculate_atr(self.candles[:1]) == 0
        assert PromptBuilder.calculate_atr([]) == 0

    def test_avg_body(self):
        klines = [{"open": 100, "close": 110}, {"open": 115, "close": 105}, {"open": 105, "close": 120}]
        assert PromptBuilder.calculate_avg_body(klines) == pytest.approx(35 / 3)
        assert PromptBuilder.calculate_avg_body([]) == 0

    def test_system_prompt(self):
        prompt = PromptBuilder.get_system_prompt()
        for text in ("Quantitative Trading Engine", "Sigma", "TakeProfitPnlClick", "LONG", "SHORT",
                     "WAIT", "confidence", "Inversion Threshold", "position INVERTS", "Profit Step",
                     "trailing stop RAISES"):
            assert text in prompt

    def test_user_prompt(self):
        micro = MarketMicroData(symbol="BTCUSDT", last_price=110.0, imbalance=0.3333333,
                                volatility_score=4.2, klines=self.candles)
        prompt = PromptBuilder().build_user_prompt(micro)

        for text in ("MARKET ANALYSIS REQUEST", "Symbol: BTCUSDT", "Order Book Imbalance: 0.3333",
                     "Price Action", "REQUIRED RESPONSE FORMAT", "CALCULATION GUIDELINES", "DECISION RULES",
                     "ATR: 8.000000"):
            assert text in prompt
        assert "Current Strategy Parameters" not in prompt

    def test_user_prompt_with_strategy(self):
        micro = MarketMicroData(symbol="ETHUSDT", last_price=2500.0)
        params = StrategyParams(investment=100, sigma=0.003, risk_tolerance="MEDIUM")
        prompt = PromptBuilder().build_user_prompt(micro, params)

        assert "Current Strategy Parameters" in prompt
        assert "100 USDT" in prompt
        assert "0.003" in prompt
        assert "MEDIUM" in prompt

    def test_build_prompt_joins_both(self):
        micro = MarketMicroData(symbol="BTCUSDT", last_price=100.0)
        prompt = PromptBuilder().build_prompt(micro)
        assert prompt.startswith(PromptBuilder.get_system_prompt())
        assert "MARKET ANALYSIS REQUEST" in prompt


# ============================================================================
# Validation
# ============================================================================

class TestResponseValidator:
    """Test JSON extraction and schema enforcement."""

    def test_low_confidence_direction_rejected(self):
        outcome = ResponseValidator().validate(ai_response("LONG", confidence=0.3), "BTCUSDT")
        assert not outcome.ok
        assert "WAIT" in outcome.error.reason

    def test_low_confidence_wait_accepted(self):
        response = ai_response(
            "WAIT", confidence=0.2,
            reasoning="Order book imbalance is flat and candles are tiny, no edge",
        )
        outcome = ResponseValidator().validate(response, "BTCUSDT")

        assert outcome.ok
        assert outcome.result.tendance == TrendDirection.WAIT
        assert outcome.result.symbol == "BTCUSDT"

    def test_code_fence_and_prose(self):
        text = f"Here is my analysis:\n```json\n{ai_response('SHORT', confidence=0.8)}\n```\nGood luck."
        outcome = ResponseValidator().validate(text, "BTCUSDT")
        assert outcome.ok
        assert outcome.result.tendance == TrendDirection.SHORT
        assert outcome.result.take_profit_pnl_click == 0.002

    def test_braces_inside_strings(self):
        payload = {"tendance": "LONG", "confidence": 0.7, "sigma": 0.01, "takeProfitPnlClick": 0.001,
                   "reasoning": "Imbalance {0.4} and \"ATR\" of 9 favor buyers } strongly"}
        block = extract_json("prefix " + json.dumps(payload) + " suffix {ignored}")
        assert json.loads(block) == payload

    def test_lowercase_direction(self):
        assert ResponseValidator().validate(ai_response("long"), "X").result.tendance == TrendDirection.LONG

    @pytest.mark.parametrize("response", [
        ai_response(sigma=0.2),
        ai_response(take_profit=0.0001),
        ai_response(confidence=1.5),
        ai_response(tendance="BUY"),
        ai_response(reasoning="looks good"),
        ai_response(reasoning="I have a good feeling about this one overall"),
        '{"tendance": "LONG", "confidence": 0.9}',
        "no json at all",
        '{"tendance": "LONG", ',
        "[1, 2, 3]",
    ])
    def test_rejected(self, response):
        outcome = ResponseValidator().validate(response, "BTCUSDT")
        assert not outcome.ok
        assert outcome.result is None

    def test_none_rejected(self):
        outcome = ResponseValidator().validate(None, "BTCUSDT")
        assert not outcome.ok
        with pytest.raises(Exception):
            outcome.unwrap()

    def test_dict_input(self):
        data = json.loads(ai_response("SHORT", confidence=0.6))
        assert ResponseValidator().validate(data, "BTCUSDT").ok

    def test_result_schema(self):
        result = ResponseValidator().validate(ai_response(), "BTCUSDT").unwrap()
        assert set(result.to_dict()) == {
            "symbol", "tendance", "sigma", "takeProfitPnlClick", "confidence", "reasoning", "timestamp"
        }


# ============================================================================
# Micro data
# ============================================================================

class TestMicroData:
    """Test order-flow features."""

    def test_imbalance(self):
        depth = OrderBookDepth(bids=[(99.9, 6.0), (99.8, 4.0)], asks=[(100.1, 3.0), (100.2, 2.0)])
        assert calculate_imbalance(depth, levels=10) == pytest.approx(5 / 15)
        assert calculate_imbalance(OrderBookDepth(), levels=10) == 0.0

    def test_imbalance_respects_levels(self):
        depth = OrderBookDepth(bids=[(1.0, 1.0), (0.9, 100.0)], asks=[(1.1, 1.0)])
        assert calculate_imbalance(depth, levels=1) == 0.0

    def test_volatility_score(self):
        # Upper wick 3 + lower wick 5 on open 100 = 800 bps
        assert calculate_volatility_score([Kline(open=100, high=105, low=95, close=102)]) == pytest.approx(800)
        assert calculate_volatility_score([]) == 0.0

    @pytest.mark.asyncio
    async def test_fetch(self, config):
        micro = await MarketMicroDataCalculator(FakeMarketData(), config).fetch_micro_data("BTCUSDT")

        assert micro.last_price == 100.0
        assert micro.imbalance == pytest.approx(5 / 15)
        assert len(micro.klines) == 3

    @pytest.mark.asyncio
    @pytest.mark.parametrize("price", [None, 0.0, -5.0])
    async def test_no_price(self, config, price):
        calculator = MarketMicroDataCalculator(FakeMarketData(price=price), config)
        assert await calculator.fetch_micro_data("BTCUSDT") is None

    @pytest.mark.asyncio
    async def test_depth_failure_degrades(self, config):
        class NoDepth(FakeMarketData):
            async def get_order_book_depth(self, symbol, limit):
                raise MarketDataError("depth down")

        micro = await MarketMicroDataCalculator(NoDepth(), config).fetch_micro_data("BTCUSDT")
        assert micro is not None
        assert micro.imbalance == 0.0


# ============================================================================
# Retry loop
# ============================================================================

class TestAIConfirmationService:
    """Test the retry-until-signal loop."""

    @pytest.mark.asyncio
    async def test_no_market_data_exhausts(self, config):
        ai = ScriptedAI(ai_response())
        service = make_service(config, market=FakeMarketData(price=None), ai=ai)

        result = await service.run_until_signal("BTCUSDT")

        assert result.tendance == TrendDirection.WAIT
        assert result.confidence == 0
        assert result.is_fallback
        assert result.attempts == config.max_retries
        assert result.sigma == config.fallback_sigma
        assert result.take_profit_pnl_click == config.fallback_take_profit
        assert ai.calls == 0
        assert service.get_cached_result("BTCUSDT") is None

    @pytest.mark.asyncio
    async def test_immediate_signal(self, config):
        market = FakeMarketData()
        ai = ScriptedAI(ai_response("LONG", confidence=0.9))
        service = make_service(config, market=market, ai=ai)

        result = await service.run_until_signal("BTCUSDT")

        assert result.tendance == TrendDirection.LONG
        assert result.confidence == 0.9
        assert result.attempts == 1
        assert ai.calls == 1
        assert market.price_calls == 1
        assert service.get_cached_result("BTCUSDT") is result

    @pytest.mark.asyncio
    async def test_wait_then_short(self, config):
        ai = ScriptedAI(ai_response("WAIT", confidence=0.4), ai_response("SHORT", confidence=0.8))
        service = make_service(config, ai=ai)

        result = await service.run_until_signal("BTCUSDT")

        assert result.tendance == TrendDirection.SHORT
        assert result.attempts == 2

    @pytest.mark.asyncio
    async def test_invalid_response_consumes_attempt(self, config):
        ai = ScriptedAI("not json", ai_response("LONG", confidence=0.3), ai_response("LONG", confidence=0.7))
        service = make_service(config, ai=ai)

        result = await service.run_until_signal("BTCUSDT")

        assert result.tendance == TrendDirection.LONG
        assert result.attempts == 3
        stats = service.telemetry.get_symbol_stats("BTCUSDT")
        assert stats["outcomes"][RoundOutcome.INVALID.value] == 2
        assert stats["outcomes"][RoundOutcome.SIGNALED.value] == 1

    @pytest.mark.asyncio
    async def test_provider_errors_fall_back(self, config):
        ai = ScriptedAI(AIProviderError("quota exceeded"))
        service = make_service(config, ai=ai)

        result = await service.run_until_signal("BTCUSDT")

        assert result.is_fallback
        assert ai.calls == config.max_retries
        assert service.telemetry.get_stats()["global"]["loops_exhausted"] == 1

    @pytest.mark.asyncio
    async def test_unexpected_provider_exception_falls_back(self, config):
        service = make_service(config, ai=ScriptedAI(RuntimeError("boom")))
        result = await service.run_until_signal("BTCUSDT")
        assert result.tendance == TrendDirection.WAIT
        assert result.is_fallback

    @pytest.mark.asyncio
    async def test_prompt_build_failure_counts_as_invalid(self, config, monkeypatch):
        ai = ScriptedAI(ai_response())
        service = make_service(config, ai=ai)

        def broken_prompt(micro, strategy_params=None):
            raise ValueError("bad kline")

        monkeypatch.setattr(service.prompt_builder, "build_prompt", broken_prompt)
        result = await service.run_until_signal("BTCUSDT")

        assert result.is_fallback
        assert result.tendance == TrendDirection.WAIT
        assert ai.calls == 0
        stats = service.telemetry.get_symbol_stats("BTCUSDT")
        assert stats["outcomes"][RoundOutcome.INVALID.value] == config.max_retries

    @pytest.mark.asyncio
    async def test_timeout(self, config):
        ai = ScriptedAI(ai_response(), delay=1.0)
        service = make_service(config, ai=ai)

        result = await service.run_until_signal("BTCUSDT", timeout=0.02)

        assert result.is_fallback
        stats = service.telemetry.get_symbol_stats("BTCUSDT")
        assert stats["outcomes"][RoundOutcome.TIMEOUT.value] == config.max_retries

    @pytest.mark.asyncio
    async def test_single_flight(self, config):
        ai = ScriptedAI(ai_response(), delay=0.05)
        service = make_service(config, ai=ai)

        first, second = await asyncio.gather(
            service.run_until_signal("BTCUSDT"),
            service.run_until_signal("BTCUSDT"),
        )

        assert first is second
        assert ai.calls == 1
        assert not service.is_running("BTCUSDT")

    @pytest.mark.asyncio
    async def test_symbols_run_independently(self, config):
        ai = ScriptedAI(ai_response(), delay=0.02)
        service = make_service(config, ai=ai)

        btc, eth = await asyncio.gather(
            service.run_until_signal("BTCUSDT"),
            service.run_until_signal("ETHUSDT"),
        )

        assert btc.symbol == "BTCUSDT"
        assert eth.symbol == "ETHUSDT"
        assert ai.calls == 2

    @pytest.mark.asyncio
    async def test_cancel_during_delay(self):
        slow = AIConfirmationConfig(max_retries=5, fetch_backoff_seconds=30.0, retry_delay_seconds=30.0)
        service = make_service(slow, market=FakeMarketData(price=None))
        token = CancellationToken()

        task = asyncio.create_task(service.run_until_signal("BTCUSDT", cancel_token=token))
        await asyncio.sleep(0.05)
        token.cancel()
        result = await asyncio.wait_for(task, timeout=1.0)

        assert result.tendance == TrendDirection.WAIT
        assert result.is_fallback
        assert result.attempts == 1
        assert service.get_cached_result("BTCUSDT") is None
        assert service.telemetry.get_stats()["global"]["loops_cancelled"] == 1

    @pytest.mark.asyncio
    async def test_remove_symbol_cancels_loop(self):
        slow = AIConfirmationConfig(max_retries=5, fetch_backoff_seconds=30.0, retry_delay_seconds=30.0)
        service = make_service(slow, market=FakeMarketData(price=None))

        task = asyncio.create_task(service.run_until_signal("BTCUSDT"))
        await asyncio.sleep(0.05)
        assert service.is_running("BTCUSDT")

        service.remove_symbol("BTCUSDT")
        result = await asyncio.wait_for(task, timeout=1.0)

        assert result.is_fallback
        assert not service.is_running("BTCUSDT")

    @pytest.mark.asyncio
    async def test_cache_overwrite_and_clear(self, config):
        ai = ScriptedAI(ai_response("LONG", confidence=0.9))
        service = make_service(config, ai=ai)

        await service.run_until_signal("BTCUSDT")
        ai.script = [ai_response("SHORT", confidence=0.8)]
        await service.run_until_signal("BTCUSDT")

        assert service.get_cached_result("BTCUSDT").tendance == TrendDirection.SHORT
        assert service.clear_cached_result("BTCUSDT")
        assert service.get_cached_result("BTCUSDT") is None
        assert not service.clear_cached_result("BTCUSDT")

    @pytest.mark.asyncio
    async def test_strategy_params_reach_prompt(self, config):
        ai = ScriptedAI(ai_response())
        service = make_service(config, ai=ai)

        await service.run_until_signal("BTCUSDT", strategy_params=StrategyParams(investment=250, sigma=0.004))

        assert "250 USDT" in ai.prompts[0]
        assert "Symbol: BTCUSDT" in ai.prompts[0]

    @pytest.mark.asyncio
    async def test_telemetry_exchanges(self, config):
        ai = ScriptedAI(ai_response("WAIT", confidence=0.2), ai_response("LONG", confidence=0.9))
        service = make_service(config, ai=ai)

        await service.run_until_signal("BTCUSDT")

        page = service.telemetry.get_exchanges(page=1, page_size=10)
        assert page["total"] == 2
        newest = page["items"][0]
        assert newest["status"] == RoundOutcome.SIGNALED.value
        assert newest["parsed_action"] == "LONG"
        assert len(newest["summary"]) <= 100

        detail = service.telemetry.get_exchange(newest["id"])
        assert "MARKET ANALYSIS REQUEST" in detail["prompt"]


class TestCancellationToken:
    """Test cancellable delays."""

    @pytest.mark.asyncio
    async def test_sleep_times_out(self):
        assert await CancellationToken().sleep(0.01) is False

    @pytest.mark.asyncio
    async def test_cancel_wakes_sleep(self):
        token = CancellationToken()
        asyncio.get_running_loop().call_later(0.01, token.cancel)
        assert await asyncio.wait_for(token.sleep(10.0), timeout=1.0) is True
        assert token.cancelled
