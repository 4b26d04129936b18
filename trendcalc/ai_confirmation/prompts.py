"""
AI Prompt Builder

System prompt describing the Click strategy and the response contract,
and a user prompt embedding the current market micro data.
"""

import logging
from typing import Optional, Sequence

import pandas as pd

from trendcalc.ai_confirmation.schemas import Kline, MarketMicroData, StrategyParams

LOG = logging.getLogger(__name__)

SYSTEM_PROMPT = """You are a Quantitative Trading Engine advising a "Click" scalping strategy on perpetual futures.

STRATEGY PARAMETERS YOU CONTROL
- Sigma (Inversion Threshold): relative adverse move after which the open position INVERTS
  (a LONG becomes a SHORT and vice versa). Too small = whipsaw, too large = deep drawdown.
  Valid range 0.001 - 0.05.
- TakeProfitPnlClick (Profit Step): relative favorable move per step. Each time price advances
  by one Profit Step the trailing stop RAISES by one step, locking in gains.
  Valid range 0.0005 - 0.02.

DIRECTION
- LONG: enter or keep a long position.
- SHORT: enter or keep a short position.
- WAIT: no clear edge; the engine will re-ask after a short delay.

RULES
- Report a confidence between 0 and 1.
- If confidence is below 0.5 the tendance MUST be WAIT.
- The reasoning must cite the concrete metrics you used (imbalance, ATR, volatility score, price levels).
- Answer with a single JSON object and nothing else."""


def _as_klines(klines: Sequence) -> list:
    return [k if isinstance(k, Kline) else Kline.from_raw(k) for k in klines]


def _frame(klines: Sequence) -> pd.DataFrame:
    return pd.DataFrame(
        [{'open': k.open, 'high': k.high, 'low': k.low, 'close': k.close, 'volume': k.volume}
         for k in _as_klines(klines)],
        columns=['open', 'high', 'low', 'close', 'volume'],
    )


def _fmt(value: float) -> str:
    # Shortest faithful representation, so 0.003 stays "0.003"
    return f"{value:g}" if abs(value) < 1e6 else f"{value:.2f}"


class PromptBuilder:
    """Builds the system and user prompts for one analysis round"""

    def __init__(self, max_klines: int = 20):
        self.max_klines = max_klines

    @staticmethod
    def get_system_prompt() -> str:
        return SYSTEM_PROMPT

    @staticmethod
    def calculate_atr(klines: Sequence) -> float:
        """
        Mean true range from the second candle on.

        TR = max(high - low, |high - prev close|, |low - prev close|);
        0 for fewer than 2 candles.
        """
        df = _frame(klines)
        if len(df) < 2:
            return 0.0

        prev_close = df['close'].shift(1)
        true_range = pd.concat([
            df['high'] - df['low'],
            (df['high'] - prev_close).abs(),
            (df['low'] - prev_close).abs(),
        ], axis=1).max(axis=1)

        return float(true_range.iloc[1:].mean())

    @staticmethod
    def calculate_avg_body(klines: Sequence) -> float:
        """Mean |close - open|; 0 for no candles"""
        df = _frame(klines)
        if df.empty:
            return 0.0
        return float((df['close'] - df['open']).abs().mean())

    def build_user_prompt(self, data: MarketMicroData, strategy_params: Optional[StrategyParams] = None) -> str:
        """
        Market analysis request for one symbol.

        Args:
            data: Current micro data
            strategy_params: Optional current strategy settings

        Returns:
            Prompt text
        """
        klines = _as_klines(data.klines)[-self.max_klines:]
        atr = self.calculate_atr(klines)
        avg_body = self.calculate_avg_body(klines)
        atr_pct = atr / data.last_price * 100 if data.last_price else 0.0

        if data.imbalance > 0.2:
            pressure = "buy pressure"
        elif data.imbalance < -0.2:
            pressure = "sell pressure"
        else:
            pressure = "balanced"

        lines = [
            "MARKET ANALYSIS REQUEST",
            "=======================",
            f"Symbol: {data.symbol}",
            f"Last Price: {_fmt(data.last_price)}",
            "",
            "ORDER FLOW",
            f"- Order Book Imbalance: {data.imbalance:.4f} ({pressure}; -1 = all asks, +1 = all bids)",
            f"- Volatility Score (wick intensity, bps): {data.volatility_score:.2f}",
            "",
            f"Price Action (last {len(klines)} candles, oldest first: open/high/low/close/volume)",
        ]
        for k in klines:
            lines.append(f"  {_fmt(k.open)} / {_fmt(k.high)} / {_fmt(k.low)} / {_fmt(k.close)} / {_fmt(k.volume)}")

        lines += [
            "",
            "DERIVED METRICS",
            f"- ATR: {atr:.6f} ({atr_pct:.4f}% of price)",
            f"- Average Candle Body: {avg_body:.6f}",
        ]

        if strategy_params is not None:
            lines += ["", "Current Strategy Parameters"]
            if strategy_params.investment is not None:
                lines.append(f"- Investment: {_fmt(strategy_params.investment)} USDT")
            if strategy_params.sigma is not None:
                lines.append(f"- Sigma: {_fmt(strategy_params.sigma)}")
            if strategy_params.take_profit_pnl_click is not None:
                lines.append(f"- TakeProfitPnlClick: {_fmt(strategy_params.take_profit_pnl_click)}")
            if strategy_params.leverage is not None:
                lines.append(f"- Leverage: {strategy_params.leverage}x")
            if strategy_params.risk_tolerance:
                lines.append(f"- Risk Tolerance: {strategy_params.risk_tolerance}")

        lines += [
            "",
            "REQUIRED RESPONSE FORMAT (JSON only)",
            '{',
            '  "tendance": "LONG" | "SHORT" | "WAIT",',
            '  "sigma": <number 0.001-0.05>,',
            '  "takeProfitPnlClick": <number 0.0005-0.02>,',
            '  "confidence": <number 0-1>,',
            '  "reasoning": "<at least 30 characters citing the metrics above>"',
            '}',
            "",
            "CALCULATION GUIDELINES",
            "- Sigma should sit above normal noise: roughly 1.5-3x ATR as a fraction of price.",
            "- TakeProfitPnlClick should be reachable within a few candles: roughly 0.5-1x average body as a fraction of price.",
            "- Wider values when the volatility score is high, tighter when it is low.",
            "",
            "DECISION RULES",
            "- LONG when imbalance and price action agree on upward pressure.",
            "- SHORT when imbalance and price action agree on downward pressure.",
            "- WAIT when signals conflict or confidence is below 0.5.",
        ]
        return "\n".join(lines)

    def build_prompt(self, data: MarketMicroData, strategy_params: Optional[StrategyParams] = None) -> str:
        """System and user prompt joined for single-text providers"""
        return f"{self.get_system_prompt()}\n\n{self.build_user_prompt(data, strategy_params)}"
