"""
Trend Calculator Demo

Runs the trend calculator on synthetic trending, oscillating and
volatile price series and prints the gated result for each.
"""

import logging

import numpy as np

from trendcalc.quant_stats import (
    TrendCalculatorService,
    TrendEngineConfig,
    TrendHealthMonitor,
)

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)


def generate_series(kind: str, n: int = 120) -> np.ndarray:
    """Synthetic price series of the given kind."""
    np.random.seed(42)
    t = np.arange(n)

    if kind == "trend":
        return 100 + 0.25 * t + np.random.normal(0, 0.3, n)
    if kind == "oscillating":
        return 100 + 2 * np.sin(t / 3) + np.random.normal(0, 0.2, n)
    returns = np.concatenate([np.random.normal(0, 0.001, n - 20), np.random.normal(0, 0.03, 20)])
    return 100 * np.exp(np.cumsum(returns))


def print_result(label: str, result):
    print(f"\n{label}")
    print("-" * 60)
    if result is None:
        print("  Insufficient data")
        return
    print(f"  Direction:      {result.direction.value}")
    print(f"  Composite:      {result.composite_score:+.3f}")
    print(f"  Confidence:     {result.confidence:.3f}")
    print(f"  R² / adjusted:  {result.r_squared:.3f} / {result.adjusted_r_squared:.3f}")
    print(f"  Durbin-Watson:  {result.durbin_watson:.3f}")
    print(f"  Hurst:          {result.hurst_exponent:.3f}")
    print(f"  Regime:         {result.regime.value if result.regime else '-'} "
          f"(p={result.regime_probability:.2f})")
    print(f"  Volatility:     {result.volatility.value if result.volatility else '-'}")
    for reason in result.gate_reasons:
        print(f"  Gate:           {reason}")


def main():
    print("=" * 60)
    print("TREND CALCULATOR DEMO")
    print("=" * 60)

    config = TrendEngineConfig()
    health_monitor = TrendHealthMonitor()
    service = TrendCalculatorService(config, health_monitor=health_monitor)
    print(f"\nConfig hash: {config.get_config_hash()}")

    for kind in ("trend", "oscillating", "volatile"):
        print_result(kind.upper(), service.calculate_from_prices(generate_series(kind), symbol=kind.upper()))

    print("\nSTREAMING (tracked symbol)")
    print("-" * 60)
    service.start_tracking("DEMOUSDT")
    for price in generate_series("trend", 100):
        result = service.add_price("DEMOUSDT", float(price))
        if result is not None:
            print(f"  {result.data_points:3d} prices -> {result.direction.value} "
                  f"(confidence {result.confidence:.2f})")
    state = service.get_volatility_state("DEMOUSDT")
    print(f"  GARCH volatility: {state.volatility:.6f} ({state.regime.value})")

    status = health_monitor.get_health_status()
    print(f"\nHealth: {status['status']} "
          f"({status['global_metrics']['total_calculations']} calculations)")


if __name__ == "__main__":
    main()
