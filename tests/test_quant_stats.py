"""
Tests for the statistical components and the trend calculator.
"""

import numpy as np
import pytest

from trendcalc.quant_stats import (
    AutocorrelationAnalyzer,
    EmptyInputError,
    GARCHVolatilityModel,
    HurstExponentCalculator,
    InsufficientDataError,
    LinearRegressionAnalyzer,
    MultiFactorRegime,
    MultiFactorRegimeDetector,
    RegimeDetector,
    RegimeType,
    StationarityTester,
    TrendCalculatorService,
    TrendDirection,
    TrendEngineConfig,
    TrendHealthMonitor,
    VolatilityRegime,
    VolatilityStateStore,
)
from trendcalc.quant_stats.engine import calculate_ema
from trendcalc.quant_stats.regime import count_direction_changes, direction_change_ratio
from trendcalc.quant_stats.schemas import (
    AutocorrelationSeverity,
    ConfidenceLevel,
    MarketBehavior,
    StationarityRecommendation,
)


@pytest.fixture
def random_walk():
    """Seeded random-walk prices around 100."""
    np.random.seed(42)
    return 100 + np.cumsum(np.random.normal(0, 0.5, 200))


@pytest.fixture
def rising_prices():
    return np.linspace(100, 130, 60)


@pytest.fixture
def service():
    return TrendCalculatorService(TrendEngineConfig(), health_monitor=TrendHealthMonitor())


class TestStationarityTester:
    """Test stationarity tester."""

    def test_log_returns_length(self):
        tester = StationarityTester()
        returns = tester.to_log_returns([100, 101, 102, 103])
        assert len(returns) == 3
        assert returns[0] == pytest.approx(np.log(101 / 100))

    def test_log_returns_non_positive_price(self):
        tester = StationarityTester()
        returns = tester.to_log_returns([100, 0, 102])
        assert list(returns) == [0.0, 0.0]

    def test_log_returns_short_input(self):
        assert StationarityTester().to_log_returns([100]).size == 0

    def test_difference(self):
        tester = StationarityTester()
        assert list(tester.difference([1, 4, 9, 16])) == [3, 5, 7]
        assert list(tester.difference([1, 4, 9, 16], order=2)) == [2, 2]

    def test_difference_invalid_order(self):
        with pytest.raises(ValueError):
            StationarityTester().difference([1, 2, 3], order=4)

    def test_short_series_is_neutral(self):
        result = StationarityTester().test_stationarity([100.0] * 10)
        assert result.is_stationary is False
        assert result.confidence_level == ConfidenceLevel.LOW

    def test_white_noise_is_stationary(self):
        np.random.seed(7)
        noise = 100 + np.random.normal(0, 1, 400)
        result = StationarityTester().test_stationarity(noise)
        assert result.is_stationary
        assert result.recommendation in (
            StationarityRecommendation.USE_PRICES,
            StationarityRecommendation.USE_RETURNS,
        )

    def test_variance_break_needs_differencing(self):
        np.random.seed(3)
        calm = 100 + np.random.normal(0, 0.1, 100)
        wild = 100 + np.random.normal(0, 5.0, 100)
        result = StationarityTester().test_stationarity(np.concatenate([calm, wild]))
        assert not result.is_stationary
        assert result.recommendation == StationarityRecommendation.USE_DIFFERENCING

    def test_constant_second_half_has_finite_ratio(self):
        prices = [100.0 + (i % 5) for i in range(50)] + [102.0] * 50
        result = StationarityTester().test_stationarity(prices)
        assert np.isfinite(result.variance_ratio)
        assert result.variance_ratio == pytest.approx(1e6)
        assert not result.is_stationary
        assert result.recommendation == StationarityRecommendation.USE_DIFFERENCING

    def test_adf_constant_series(self):
        assert StationarityTester().run_adf_test([0.0] * 100) == (False, 1.0, 0.0)

    def test_adf_white_noise(self):
        np.random.seed(11)
        stationary, p_value, _ = StationarityTester().run_adf_test(np.random.normal(0, 1, 300))
        assert stationary
        assert p_value < 0.05


class TestAutocorrelationAnalyzer:
    """Test Durbin-Watson and R² adjustment."""

    def test_durbin_watson_bounds(self, random_walk):
        dw = AutocorrelationAnalyzer().calculate_durbin_watson(np.diff(random_walk))
        assert 0.0 <= dw <= 4.0

    def test_alternating_residuals_near_four(self):
        residuals = [1.0, -1.0] * 50
        assert AutocorrelationAnalyzer().calculate_durbin_watson(residuals) > 3.9

    def test_correlated_residuals_near_zero(self):
        residuals = np.sin(np.linspace(0, np.pi, 100))
        assert AutocorrelationAnalyzer().calculate_durbin_watson(residuals) < 0.1

    def test_degenerate_residuals(self):
        analyzer = AutocorrelationAnalyzer()
        assert analyzer.calculate_durbin_watson([1.0]) == 2.0
        assert analyzer.calculate_durbin_watson([0.0] * 10) == 2.0

    def test_severity(self):
        analyzer = AutocorrelationAnalyzer()
        severe = analyzer.has_significant_autocorrelation(np.sin(np.linspace(0, np.pi, 100)))
        assert severe.has_autocorrelation
        assert severe.severity == AutocorrelationSeverity.SEVERE

        np.random.seed(5)
        clean = analyzer.has_significant_autocorrelation(np.random.normal(0, 1, 500))
        assert clean.severity in (AutocorrelationSeverity.NONE, AutocorrelationSeverity.MILD)

    def test_adjust_r_squared_never_inflates(self):
        analyzer = AutocorrelationAnalyzer()
        for dw in (0.0, 0.5, 1.0, 1.5, 2.0, 3.0, 4.0):
            adjusted = analyzer.adjust_r_squared(0.8, dw)
            assert 0.0 <= adjusted <= 0.8

    def test_adjust_r_squared_keeps_near_perfect_fit(self):
        assert AutocorrelationAnalyzer().adjust_r_squared(0.999, 0.1) > 0.95

    def test_ljung_box_detects_structure(self):
        result = AutocorrelationAnalyzer().calculate_ljung_box(np.sin(np.linspace(0, 6 * np.pi, 200)))
        assert result.has_autocorrelation
        assert result.p_value < 0.05


class TestLinearRegression:
    """Test OLS fit."""

    def test_lengths_and_orthogonality(self, random_walk):
        result = LinearRegressionAnalyzer().calculate(random_walk)

        assert len(result.residuals) == len(result.predictions) == len(random_walk)
        assert float(np.dot(result.residuals, result.predictions)) == pytest.approx(0.0, abs=1e-6)

    def test_exact_line(self):
        prices = 50 + 2.0 * np.arange(30)
        result = LinearRegressionAnalyzer().calculate(prices)

        assert result.slope == pytest.approx(2.0)
        assert result.intercept == pytest.approx(50.0)
        assert result.r_squared == pytest.approx(1.0)
        assert result.adjusted_r_squared == pytest.approx(1.0)

    def test_short_input(self):
        result = LinearRegressionAnalyzer().calculate([100.0, 102.0])
        assert result.slope == 0.0
        assert len(result.residuals) == 2

    def test_r_squared_range(self, random_walk):
        result = LinearRegressionAnalyzer().calculate(random_walk)
        assert 0.0 <= result.adjusted_r_squared <= result.r_squared <= 1.0

    def test_normalized_slope(self):
        prices = 100 + np.arange(11, dtype=float)
        assert LinearRegressionAnalyzer().get_slope_normalized(prices) == pytest.approx(1.0 / 105.0)


class TestHurstExponent:
    """Test rescaled-range Hurst estimate."""

    def test_constant_series_is_neutral(self):
        result = HurstExponentCalculator().calculate([100.0] * 100)
        assert result.exponent == 0.5

    def test_too_few_points_is_neutral(self):
        calculator = HurstExponentCalculator()
        assert calculator.calculate([100.0]).exponent == 0.5
        assert calculator.calculate([]).exponent == 0.5

    def test_non_positive_prices_are_neutral(self):
        prices = list(np.linspace(100, 120, 100))
        prices[50] = 0.0
        assert HurstExponentCalculator().calculate(prices).exponent == 0.5

    def test_exponent_in_unit_interval(self, random_walk):
        result = HurstExponentCalculator().calculate(random_walk)
        assert 0.0 <= result.exponent <= 1.0
        assert len(result.lags) == len(result.rs_values) >= 2

    def test_smooth_trend_is_persistent(self):
        result = HurstExponentCalculator().calculate(np.linspace(100, 130, 120))
        assert result.exponent > 0.55
        assert result.interpretation.behavior == MarketBehavior.TRENDING

    def test_interpretation_bands(self):
        calculator = HurstExponentCalculator()
        assert calculator.interpret(0.3).behavior == MarketBehavior.MEAN_REVERTING
        assert calculator.interpret(0.3).should_trade
        assert calculator.interpret(0.5).behavior == MarketBehavior.RANDOM_WALK
        assert calculator.interpret(0.6).behavior == MarketBehavior.TRENDING
        assert not calculator.interpret(0.6).should_trade


class TestGARCHVolatility:
    """Test GARCH(1,1) helpers and per-symbol state."""

    def test_estimate_parameters(self):
        np.random.seed(1)
        returns = np.random.normal(0, 0.01, 100)
        params = GARCHVolatilityModel().estimate_parameters(returns)

        assert params.omega == pytest.approx(0.05 * np.var(returns, ddof=1))
        assert params.persistence == pytest.approx(0.95)

    def test_forecast_decays_toward_long_run(self):
        np.random.seed(2)
        model = GARCHVolatilityModel()
        returns = np.random.normal(0, 0.01, 100)
        returns[-1] = 0.08
        params = model.estimate_parameters(returns)
        forecast = model.forecast_volatility(params, returns, horizon=5)

        assert len(forecast.volatilities) == 5
        assert forecast.volatilities[0] > forecast.volatilities[-1]

    def test_conditional_volatility_length(self):
        np.random.seed(3)
        model = GARCHVolatilityModel()
        returns = np.random.normal(0, 0.01, 50)
        path = model.calculate_conditional_volatility(returns, model.estimate_parameters(returns))
        assert len(path) == 50
        assert all(v > 0 for v in path)

    def test_classify_regime(self):
        model = GARCHVolatilityModel()
        history = [1.0, 1.1, 0.9, 1.0, 1.05, 0.95]
        assert model.classify_volatility_regime(1.0, history) == VolatilityRegime.NORMAL
        assert model.classify_volatility_regime(0.5, history) == VolatilityRegime.LOW
        assert model.classify_volatility_regime(5.0, history) == VolatilityRegime.EXTREME
        assert model.classify_volatility_regime(1.0, []) == VolatilityRegime.NORMAL

    def test_state_initializes_after_warmup(self):
        np.random.seed(4)
        store = VolatilityStateStore()
        for shock in np.random.normal(0, 0.01, 40):
            store.update("BTCUSDT", float(shock))

        state = store.get("BTCUSDT")
        assert state.steps == 40
        assert state.initialized
        assert state.volatility > 0
        assert state.persistence < 1.0

    def test_state_ignores_non_finite_shock(self):
        store = VolatilityStateStore()
        store.update("ETHUSDT", 0.01)
        store.update("ETHUSDT", float("nan"))
        assert store.get("ETHUSDT").steps == 1

    def test_states_are_independent(self):
        store = VolatilityStateStore()
        store.update("A", 0.01)
        store.update("A", -0.02)
        store.update("B", 0.01)

        assert store.get("A").steps == 2
        assert store.get("B").steps == 1
        assert store.remove("A")
        assert store.get("A") is None


class TestRegimeDetector:
    """Test regime detection."""

    def test_empty_input_raises(self):
        with pytest.raises(EmptyInputError):
            RegimeDetector().detect([])

    def test_short_input_raises(self):
        with pytest.raises(InsufficientDataError) as exc_info:
            RegimeDetector().detect(np.linspace(100, 110, 50))
        assert not isinstance(exc_info.value, EmptyInputError)
        assert exc_info.value.required == 100
        assert exc_info.value.actual == 50

    def test_result_is_bounded(self, random_walk):
        result = RegimeDetector().detect(random_walk)
        assert isinstance(result.type, RegimeType)
        assert 0.0 <= result.probability <= 1.0
        assert 0.0 <= result.hurst <= 1.0

    def test_smooth_trend_is_trending(self):
        result = RegimeDetector().detect(np.linspace(100, 130, 150))
        assert result.type == RegimeType.TRENDING
        assert result.probability > 0.5

    def test_volatility_burst(self):
        np.random.seed(9)
        returns = np.concatenate([np.random.normal(0, 0.001, 180), np.random.normal(0, 0.03, 20)])
        prices = 100 * np.exp(np.cumsum(returns))
        result = RegimeDetector().detect(prices)
        assert result.type == RegimeType.HIGH_VOLATILITY
        assert 0.6 <= result.probability <= 0.95

    def test_direction_changes(self):
        prices = [1, 2, 1, 2, 1, 2]
        assert count_direction_changes(prices) == 4
        assert direction_change_ratio(prices) == pytest.approx(1.0)
        assert count_direction_changes([1, 2, 2, 3]) == 0
        assert direction_change_ratio([1, 2]) == 0.0


class TestMultiFactorRegimeDetector:
    """Test multi-factor regime scoring."""

    def test_empty_and_short_input_raise(self):
        detector = MultiFactorRegimeDetector()
        with pytest.raises(EmptyInputError):
            detector.detect([])
        with pytest.raises(InsufficientDataError) as exc_info:
            detector.detect(np.linspace(100, 110, 20))
        assert exc_info.value.required == 30

    def test_rising_series_is_trending_up(self):
        result = MultiFactorRegimeDetector().detect(np.linspace(100, 130, 150))

        assert result.type == MultiFactorRegime.TRENDING_UP
        assert result.probability >= 0.7
        assert result.indicators.r_squared > 0.99
        assert result.indicators.momentum_score == pytest.approx(1.0)
        assert result.indicators.direction_change_ratio == 0.0
        assert result.scores[MultiFactorRegime.TRENDING_UP] > result.scores[MultiFactorRegime.TRENDING_DOWN]

    def test_falling_series_is_trending_down(self):
        result = MultiFactorRegimeDetector().detect(np.linspace(130, 100, 150))
        assert result.type == MultiFactorRegime.TRENDING_DOWN
        assert result.indicators.momentum_score < -0.3

    def test_oscillating_series_is_ranging(self):
        np.random.seed(5)
        t = np.arange(200)
        prices = 100 + np.where(t % 2 == 0, 1.0, -1.0) + np.random.normal(0, 0.05, 200)
        result = MultiFactorRegimeDetector().detect(prices)

        assert result.type == MultiFactorRegime.RANGING
        assert result.probability >= 0.5
        assert result.indicators.r_squared < 0.3
        assert result.indicators.direction_change_ratio > 0.9

    def test_volatility_burst_is_high_volatility(self):
        np.random.seed(9)
        returns = np.concatenate([np.random.normal(0, 0.001, 180), np.random.normal(0, 0.03, 20)])
        prices = 100 * np.exp(np.cumsum(returns))
        result = MultiFactorRegimeDetector().detect(prices)

        assert result.type == MultiFactorRegime.HIGH_VOLATILITY
        assert result.probability == pytest.approx(0.9)
        assert result.indicators.volatility_z_score > 2.0

    def test_scores_cover_every_regime(self, random_walk):
        result = MultiFactorRegimeDetector().detect(random_walk)
        data = result.to_dict()

        assert set(data["scores"]) == {r.value for r in MultiFactorRegime}
        assert all(0.0 <= score <= 1.0 for score in data["scores"].values())
        assert data["probability"] == max(data["scores"].values())
        assert set(data["indicators"]) == {
            "hurst", "r_squared", "volatility_z_score", "momentum_score", "direction_change_ratio"
        }


class TestTrendCalculatorService:
    """Test the trend orchestrator."""

    def test_insufficient_data(self, service):
        assert service.calculate_from_prices(np.linspace(100, 110, 49)) is None

    def test_rising_series_is_long(self, service, rising_prices):
        result = service.calculate_from_prices(rising_prices, symbol="BTCUSDT")

        assert result.slope > 0
        assert result.adjusted_r_squared > 0.9
        assert result.direction == TrendDirection.LONG
        assert result.gate_reasons == []
        assert 0.0 <= result.confidence <= 1.0
        assert -1.0 <= result.composite_score <= 1.0

    def test_falling_series_is_short(self, service):
        result = service.calculate_from_prices(np.linspace(130, 100, 60))
        assert result.slope < 0
        assert result.direction == TrendDirection.SHORT

    def test_long_rising_series_carries_regime(self, service):
        result = service.calculate_from_prices(np.linspace(100, 130, 120), symbol="ETHUSDT")
        assert result.direction == TrendDirection.LONG
        assert result.regime == RegimeType.TRENDING
        assert result.volatility is not None

    def test_short_buffer_has_no_regime(self, service, rising_prices):
        result = service.calculate_from_prices(rising_prices)
        assert result.regime is None
        assert "regime" not in result.to_dict()

    def test_oscillating_series_waits(self, service):
        prices = 100 + 2 * np.sin(np.arange(100))
        result = service.calculate_from_prices(prices)

        assert result.direction == TrendDirection.WAIT
        assert result.is_oscillating
        assert result.gate_reasons

    def test_strong_slope_with_autocorrelated_fit_waits(self, service):
        t = np.arange(200)
        prices = np.linspace(100, 130, 200) + 3 * np.sin(2 * np.pi * t / 100)
        result = service.calculate_from_prices(prices)

        assert result.slope > 0
        assert result.r_squared > 0.9
        assert result.adjusted_r_squared < 0.5
        assert result.durbin_watson < 1.0
        assert any(reason.startswith("adjusted R²") for reason in result.gate_reasons)
        assert result.direction == TrendDirection.WAIT
        assert result.to_dict()["direction"] == "WAIT"

    def test_non_finite_prices_dropped(self, service, rising_prices):
        prices = np.concatenate([rising_prices[:30], [np.nan, np.inf], rising_prices[30:]])
        result = service.calculate_from_prices(prices)

        assert result.data_points == len(rising_prices)
        assert np.isfinite(result.composite_score)
        assert np.isfinite(result.confidence)
        assert result.direction == TrendDirection.LONG

    def test_too_few_finite_prices(self, service):
        prices = np.concatenate([np.linspace(100, 110, 45), [np.nan] * 10])
        assert service.calculate_from_prices(prices) is None

    def test_flat_series_waits(self, service):
        result = service.calculate_from_prices([100.0] * 60)
        assert result.direction == TrendDirection.WAIT
        assert result.gate_reasons == ["flat price series"]

    def test_result_schema(self, service, rising_prices):
        data = service.calculate_from_prices(rising_prices, symbol="BTCUSDT").to_dict()
        for key in ("symbol", "direction", "compositeScore", "confidence", "slope", "timestamp",
                    "adjustedRSquared", "hurstExponent", "gateReasons"):
            assert key in data
        assert data["direction"] == "LONG"

    def test_buffer_tracking(self, service):
        assert service.start_tracking("btcusdt")
        assert not service.start_tracking("BTCUSDT")

        results = [service.add_price("BTCUSDT", p) for p in np.linspace(100, 130, 60)]
        produced = [r for r in results if r is not None]

        # Auto-calculation at 50 and 60 prices
        assert len(produced) == 2
        assert service.get_latest_result("BTCUSDT").direction == TrendDirection.LONG
        assert service.get_buffer_status("BTCUSDT")["ready"]
        assert service.get_volatility_state("BTCUSDT").steps == 59

    def test_buffer_bounded(self, service):
        service.start_tracking("SOLUSDT")
        service.preload_historical_data("SOLUSDT", [{"close": p} for p in np.linspace(10, 20, 150)])
        assert len(service.get_price_history("SOLUSDT")) == 100
        assert service.is_buffer_full("SOLUSDT")

    def test_half_reset_and_clear(self, service):
        service.start_tracking("XRPUSDT")
        service.preload_historical_data("XRPUSDT", list(range(1, 81)))

        service.half_reset_buffer("XRPUSDT")
        history = service.get_price_history("XRPUSDT")
        assert len(history) == 40
        assert history[0] == 41.0

        service.clear_buffer("XRPUSDT")
        assert service.get_price_history("XRPUSDT") == []

    def test_stop_tracking(self, service):
        service.start_tracking("ADAUSDT")
        service.add_price("ADAUSDT", 1.0)
        service.add_price("ADAUSDT", 1.1)
        service.stop_tracking("ADAUSDT")

        assert not service.is_tracking("ADAUSDT")
        assert service.get_volatility_state("ADAUSDT") is None

    def test_non_finite_price_ignored(self, service):
        service.start_tracking("DOGEUSDT")
        service.add_price("DOGEUSDT", float("nan"))
        assert service.get_price_history("DOGEUSDT") == []

    def test_health_monitor_records(self, service, rising_prices):
        service.calculate_from_prices(rising_prices, symbol="BTCUSDT")
        service.calculate_from_prices(rising_prices[:10], symbol="BTCUSDT")

        status = service.health_monitor.get_health_status()
        assert status["global_metrics"]["total_calculations"] == 1
        assert status["global_metrics"]["long_signals"] == 1
        assert status["global_metrics"]["insufficient_data"] == 1

    def test_ema(self):
        assert calculate_ema([1.0, 2.0], 3) is None
        assert calculate_ema([5.0] * 10, 10) == pytest.approx(5.0)


class TestTrendEngineConfig:
    """Test configuration round trip."""

    def test_hash_is_deterministic(self):
        assert TrendEngineConfig().get_config_hash() == TrendEngineConfig().get_config_hash()

    def test_from_dict_round_trip(self):
        config = TrendEngineConfig()
        config.trend.min_data_points = 40
        restored = TrendEngineConfig.from_dict(config.to_dict())

        assert restored.trend.min_data_points == 40
        assert restored.stationarity.variance_ratio_bounds == (0.5, 2.0)
        assert restored.get_config_hash() == config.get_config_hash()

    def test_hash_changes_with_config(self):
        config = TrendEngineConfig()
        config.trend.reliability_threshold = 0.7
        assert config.get_config_hash() != TrendEngineConfig().get_config_hash()
