"""
AI confirmation API tests with fake providers swapped into the module.
"""

import json

import pytest
from fastapi.testclient import TestClient

from trendcalc.ai_confirmation import (
    AIConfirmationConfig,
    AIConfirmationService,
    AITelemetryMonitor,
    MarketMicroDataCalculator,
)
from trendcalc.ai_confirmation import api


class StaticMarketData:
    def __init__(self, price=100.0):
        self.price = price

    async def get_price(self, symbol):
        return self.price

    async def get_order_book_depth(self, symbol, limit):
        return {"bids": [["99.9", "5"]], "asks": [["100.1", "5"]]}

    async def get_klines(self, symbol, interval, limit):
        return [[0, "100", "101", "99", "100.5", "3"], [60000, "100.5", "102", "100", "101.5", "4"]]


class StaticAI:
    def __init__(self, response):
        self.response = response
        self.prompts = []

    async def generate_content(self, prompt):
        self.prompts.append(prompt)
        return self.response


LONG_RESPONSE = json.dumps({
    "tendance": "LONG",
    "confidence": 0.85,
    "sigma": 0.004,
    "takeProfitPnlClick": 0.0015,
    "reasoning": "Bid-side imbalance and rising closes over the last 2 candles",
})


@pytest.fixture
def install(monkeypatch):
    def _install(response=LONG_RESPONSE, price=100.0):
        config = AIConfirmationConfig(max_retries=2, fetch_backoff_seconds=0.01, retry_delay_seconds=0.01)
        telemetry = AITelemetryMonitor(provider_name="fake")
        ai = StaticAI(response)
        service = AIConfirmationService(
            MarketMicroDataCalculator(StaticMarketData(price), config),
            ai,
            config=config,
            telemetry=telemetry,
        )
        monkeypatch.setattr(api, "service", service)
        monkeypatch.setattr(api, "telemetry", telemetry)
        return ai
    return _install


@pytest.fixture
def client():
    return TestClient(api.app)


def test_analyze_signal(install, client):
    ai = install()
    response = client.post("/ai/analyze", json={
        "symbol": "btcusdt",
        "strategyParams": {"investment": 100, "sigma": 0.003, "riskTolerance": "LOW"},
    })
    data = response.json()

    assert response.status_code == 200
    assert data["is_fallback"] is False
    assert data["attempts"] == 1
    assert data["result"]["symbol"] == "BTCUSDT"
    assert data["result"]["tendance"] == "LONG"
    assert data["result"]["takeProfitPnlClick"] == 0.0015
    assert "100 USDT" in ai.prompts[0]


def test_analyze_fallback(install, client):
    install(price=None)
    data = client.post("/ai/analyze", json={"symbol": "ETHUSDT"}).json()

    assert data["is_fallback"] is True
    assert data["result"]["tendance"] == "WAIT"
    assert data["result"]["confidence"] == 0.0


def test_cached_result(install, client):
    install()
    assert client.get("/ai/result/BTCUSDT").status_code == 404

    client.post("/ai/analyze", json={"symbol": "BTCUSDT"})
    assert client.get("/ai/result/btcusdt").json()["tendance"] == "LONG"

    assert client.delete("/ai/result/BTCUSDT").json()["cleared"] is True
    assert client.get("/ai/result/BTCUSDT").status_code == 404


def test_telemetry(install, client):
    install()
    client.post("/ai/analyze", json={"symbol": "BTCUSDT"})

    data = client.get("/ai/telemetry", params={"page": 1, "page_size": 5}).json()
    assert data["stats"]["global"]["rounds"] == 1
    assert data["exchanges"]["total"] == 1

    exchange_id = data["exchanges"]["items"][0]["id"]
    detail = client.get(f"/ai/telemetry/{exchange_id}").json()
    assert detail["response"] == LONG_RESPONSE
    assert client.get("/ai/telemetry/missing").status_code == 404


def test_health(install, client):
    install()
    client.post("/ai/analyze", json={"symbol": "BTCUSDT"})

    health = client.get("/health").json()
    assert health["status"] == "HEALTHY"
    assert health["cached_symbols"] == ["BTCUSDT"]
