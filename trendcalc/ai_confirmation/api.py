"""
AI Confirmation REST API

Runs the retry-until-signal loop on demand and exposes cached results
and provider telemetry.
"""

from fastapi import FastAPI, HTTPException, Query, Path as PathParam
from pydantic import BaseModel, Field
from typing import Optional, Dict
import logging

from trendcalc.ai_confirmation.config import AIConfirmationConfig, AIProviderConfig, MarketDataConfig
from trendcalc.ai_confirmation.micro_data import MarketMicroDataCalculator
from trendcalc.ai_confirmation.providers import BinanceMarketDataProvider, GeminiProvider
from trendcalc.ai_confirmation.retry_loop import AIConfirmationService
from trendcalc.ai_confirmation.schemas import StrategyParams
from trendcalc.ai_confirmation.telemetry import AITelemetryMonitor

LOG = logging.getLogger(__name__)

app = FastAPI(
    title="AI Confirmation API",
    description="Second-opinion directional confirmation with bounded retries",
    version="1.0.0"
)

# Global instances
config = AIConfirmationConfig()
provider_config = AIProviderConfig.from_env()
telemetry = AITelemetryMonitor(provider_name="gemini", model=provider_config.model)
service = AIConfirmationService(
    MarketMicroDataCalculator(BinanceMarketDataProvider(MarketDataConfig.from_env()), config),
    GeminiProvider(provider_config),
    config=config,
    telemetry=telemetry,
)

# ============================================================================
# REQUEST/RESPONSE MODELS
# ============================================================================

class StrategyParamsModel(BaseModel):
    """Current Click-strategy settings of the symbol"""
    investment: Optional[float] = Field(default=None, gt=0, description="Investment in USDT")
    sigma: Optional[float] = Field(default=None, gt=0)
    take_profit_pnl_click: Optional[float] = Field(default=None, gt=0, alias="takeProfitPnlClick")
    leverage: Optional[int] = Field(default=None, ge=1)
    risk_tolerance: Optional[str] = Field(default=None, alias="riskTolerance")

    model_config = {"populate_by_name": True}


class AnalyzeRequest(BaseModel):
    """Confirmation loop request"""
    symbol: str = Field(..., description="Trading symbol")
    strategy_params: Optional[StrategyParamsModel] = Field(default=None, alias="strategyParams")
    timeout: Optional[float] = Field(default=None, gt=0, description="Per-call AI timeout in seconds")

    model_config = {
        "populate_by_name": True,
        "json_schema_extra": {
            "example": {
                "symbol": "BTCUSDT",
                "strategyParams": {"investment": 100, "sigma": 0.003, "riskTolerance": "MEDIUM"}
            }
        }
    }


class AnalyzeResponse(BaseModel):
    """Confirmation loop response"""
    result: Dict
    is_fallback: bool
    attempts: int


# ============================================================================
# API ENDPOINTS
# ============================================================================

@app.get("/")
async def root():
    """Root endpoint"""
    return {
        "service": "AI Confirmation API",
        "version": "1.0.0",
        "status": "online",
        "endpoints": {
            "analyze": "/ai/analyze",
            "result": "/ai/result/{symbol}",
            "telemetry": "/ai/telemetry",
            "health": "/health"
        }
    }


@app.post("/ai/analyze", response_model=AnalyzeResponse)
async def analyze(request: AnalyzeRequest):
    """
    Run the confirmation loop for a symbol.

    Always returns a result: directional on success, neutral fallback
    when the retry budget is exhausted.
    """
    symbol = request.symbol.upper()
    params = None
    if request.strategy_params is not None:
        params = StrategyParams(**request.strategy_params.model_dump())

    try:
        result = await service.run_until_signal(symbol, strategy_params=params, timeout=request.timeout)
    except Exception as e:
        LOG.error(f"AI confirmation failed for {symbol}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=str(e))

    return AnalyzeResponse(result=result.to_dict(), is_fallback=result.is_fallback, attempts=result.attempts)


@app.get("/ai/result/{symbol}")
async def get_result(symbol: str = PathParam(..., description="Trading symbol")):
    """Last directional result of a symbol"""
    result = service.get_cached_result(symbol.upper())
    if result is None:
        raise HTTPException(status_code=404, detail=f"No AI result cached for {symbol.upper()}")
    return result.to_dict()


@app.delete("/ai/result/{symbol}")
async def clear_result(symbol: str = PathParam(..., description="Trading symbol")):
    cleared = service.clear_cached_result(symbol.upper())
    return {"success": True, "symbol": symbol.upper(), "cleared": cleared}


@app.post("/ai/cancel/{symbol}")
async def cancel_loop(symbol: str = PathParam(..., description="Trading symbol")):
    cancelled = service.cancel(symbol.upper())
    return {"success": True, "symbol": symbol.upper(), "cancelled": cancelled}


@app.get("/ai/telemetry")
async def get_telemetry(
    page: int = Query(1, ge=1, description="Page of recent exchanges"),
    page_size: int = Query(20, ge=1, le=200, description="Exchanges per page"),
    symbol: Optional[str] = Query(None, description="Filter by symbol")
):
    """Round statistics and a page of recent AI exchanges"""
    return {
        "stats": telemetry.get_stats(),
        "exchanges": telemetry.get_exchanges(page, page_size, symbol.upper() if symbol else None)
    }


@app.get("/ai/telemetry/{exchange_id}")
async def get_exchange(exchange_id: str = PathParam(..., description="Exchange id")):
    """Full prompt and response of one exchange"""
    exchange = telemetry.get_exchange(exchange_id)
    if exchange is None:
        raise HTTPException(status_code=404, detail=f"Exchange {exchange_id} not found")
    return exchange


@app.get("/health")
async def get_health():
    stats = telemetry.get_stats()['global']
    failure_rate = stats['failure_rate']

    if failure_rate <= 0.25:
        status = "HEALTHY"
    elif failure_rate <= 0.60:
        status = "DEGRADED"
    else:
        status = "UNHEALTHY"

    return {
        "status": status,
        "provider_configured": provider_config.is_configured,
        "model": provider_config.model,
        "rounds": stats['rounds'],
        "failure_rate": failure_rate,
        "cached_symbols": service.cached_symbols(),
        "config_hash": config.get_config_hash()
    }


# ============================================================================
# STARTUP/SHUTDOWN
# ============================================================================

@app.on_event("startup")
async def startup_event():
    """Startup tasks"""
    LOG.info("AI confirmation API starting up...")
    if not provider_config.is_configured:
        LOG.warning("GEMINI_API_KEY missing, every round will fail and fall back")


@app.on_event("shutdown")
async def shutdown_event():
    """Shutdown tasks"""
    LOG.info("AI confirmation API shutting down...")
    await service.shutdown()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8011, log_level="info")
