"""
Trend API tests through FastAPI's TestClient.
"""

import numpy as np
import pytest
from fastapi.testclient import TestClient

from trendcalc.quant_stats import api


@pytest.fixture
def client():
    api.health_monitor.reset_metrics()
    for symbol in api.service.tracked_symbols():
        api.service.stop_tracking(symbol)
    return TestClient(api.app)


def _rising(n):
    return [float(p) for p in np.linspace(100, 130, n)]


def test_root(client):
    response = client.get("/")
    assert response.status_code == 200
    assert response.json()["status"] == "online"


def test_trend_long(client):
    response = client.post("/trend", json={"symbol": "btcusdt", "prices": _rising(60)})
    data = response.json()

    assert response.status_code == 200
    assert data["success"] is True
    assert data["symbol"] == "BTCUSDT"
    assert data["result"]["direction"] == "LONG"
    assert data["result"]["adjustedRSquared"] > 0.9


def test_trend_insufficient_data(client):
    data = client.post("/trend", json={"symbol": "BTCUSDT", "prices": _rising(10)}).json()
    assert data["success"] is False
    assert "Insufficient data" in data["error"]


def test_regime_requires_100_prices(client):
    response = client.post("/regime", json={"prices": _rising(50)})
    assert response.status_code == 400


def test_regime(client):
    response = client.post("/regime", json={"prices": _rising(150)})
    assert response.status_code == 200
    assert response.json()["type"] == "TRENDING"


def test_regime_multi_factor(client):
    response = client.post("/regime/multi-factor", json={"prices": _rising(150)})
    data = response.json()

    assert response.status_code == 200
    assert data["type"] == "TRENDING_UP"
    assert set(data["scores"]) == {"TRENDING_UP", "TRENDING_DOWN", "RANGING", "HIGH_VOLATILITY"}
    assert data["probability"] == data["scores"]["TRENDING_UP"]


def test_regime_multi_factor_short_input(client):
    response = client.post("/regime/multi-factor", json={"prices": _rising(10)})
    assert response.status_code == 400


def test_stationarity(client):
    np.random.seed(21)
    prices = [float(p) for p in 100 + np.random.normal(0, 1, 200)]
    response = client.post("/stationarity", json={"prices": prices})
    data = response.json()

    assert response.status_code == 200
    assert data["is_stationary"] is True
    assert data["adf_stationary"] is True


def test_stationarity_constant_second_half(client):
    prices = [100.0 + (i % 5) for i in range(50)] + [102.0] * 50
    response = client.post("/stationarity", json={"prices": prices})
    data = response.json()

    assert response.status_code == 200
    assert data["is_stationary"] is False
    assert data["variance_ratio"] == 1e6
    assert data["recommendation"] == "USE_DIFFERENCING"


def test_symbol_lifecycle(client):
    assert client.post("/symbols/ethusdt/track").json()["started"] is True

    data = client.post("/symbols/ETHUSDT/prices", json={"prices": _rising(60)}).json()
    assert data["result"]["direction"] == "LONG"
    assert data["buffer"]["ready"] is True

    assert client.get("/symbols/ETHUSDT/trend").json()["success"] is True
    assert client.get("/symbols/ETHUSDT/volatility").json()["steps"] == 59
    assert "ETHUSDT" in client.get("/symbols").json()["symbols"]

    assert client.delete("/symbols/ETHUSDT").json()["success"] is True
    assert client.get("/symbols/ETHUSDT/trend").status_code == 404


def test_prices_for_untracked_symbol(client):
    response = client.post("/symbols/NOPE/prices", json={"prices": [1.0]})
    assert response.status_code == 404


def test_health(client):
    client.post("/trend", json={"symbol": "BTCUSDT", "prices": _rising(60)})

    health = client.get("/health").json()
    assert health["status"] == "HEALTHY"
    assert health["total_calculations"] == 1
    assert health["long_signals"] == 1

    assert client.get("/health/BTCUSDT").status_code == 200
    assert client.get("/health/UNKNOWN").status_code == 404


def test_config(client):
    data = client.get("/config").json()
    assert data["config_hash"] == api.config.get_config_hash()
    assert data["trend"]["min_data_points"] == 50
