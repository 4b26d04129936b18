"""
Trend Engine REST API

HTTP endpoints for trend calculation, regime detection, symbol buffers
and health monitoring.
"""

from fastapi import FastAPI, HTTPException, Query, Path as PathParam
from pydantic import BaseModel, Field
from typing import List, Optional, Dict
import logging

from trendcalc.quant_stats.config import TrendEngineConfig
from trendcalc.quant_stats.engine import TrendCalculatorService
from trendcalc.quant_stats.exceptions import InsufficientDataError
from trendcalc.quant_stats.health_monitor import TrendHealthMonitor

LOG = logging.getLogger(__name__)

app = FastAPI(
    title="Trend Calculator API",
    description="REST API for statistical trend and regime inference",
    version="1.0.0"
)

# Global instances
config = TrendEngineConfig()
health_monitor = TrendHealthMonitor()
service = TrendCalculatorService(config, health_monitor=health_monitor)

# ============================================================================
# REQUEST/RESPONSE MODELS
# ============================================================================

class PricesRequest(BaseModel):
    """Price series for a one-off calculation"""
    symbol: str = Field(default="", description="Trading symbol")
    prices: List[float] = Field(..., description="Chronological prices")

    class Config:
        json_schema_extra = {
            "example": {
                "symbol": "BTCUSDT",
                "prices": [100.0, 100.4, 100.9, 101.3, 101.2, 101.8]
            }
        }


class AddPricesRequest(BaseModel):
    """Prices appended to a tracked symbol's buffer"""
    prices: List[float] = Field(..., description="New prices, oldest first")


class TrendResponse(BaseModel):
    """Trend calculation response"""
    success: bool
    symbol: str
    result: Optional[Dict] = None
    buffer: Optional[Dict] = None
    error: Optional[str] = None


class RegimeResponse(BaseModel):
    """Regime detection response"""
    type: str
    probability: float
    hurst: float
    volatility: float
    volatility_regime: str
    volatility_z_score: float
    momentum: float
    direction_change_ratio: float
    previous_hurst: Optional[float] = None


class MultiFactorRegimeResponse(BaseModel):
    """Multi-factor regime scores"""
    type: str
    probability: float
    scores: Dict[str, float]
    indicators: Dict[str, float]


class StationarityResponse(BaseModel):
    """Split-half test plus ADF on log returns"""
    is_stationary: bool
    variance_ratio: float
    mean_difference: float
    recommendation: str
    confidence_level: str
    adf_stationary: bool
    adf_pvalue: float
    adf_statistic: float


class HealthResponse(BaseModel):
    """Health status response"""
    status: str
    uptime_seconds: float
    total_calculations: int
    long_signals: int
    short_signals: int
    wait_signals: int
    insufficient_data: int
    avg_processing_time_ms: float
    symbols_tracked: int
    stalled_symbols: int


class ConfigResponse(BaseModel):
    """Configuration response"""
    config_hash: str
    config_version: str
    stationarity: Dict
    autocorrelation: Dict
    hurst: Dict
    garch: Dict
    regime: Dict
    trend: Dict


# ============================================================================
# API ENDPOINTS
# ============================================================================

@app.get("/")
async def root():
    """Root endpoint"""
    return {
        "service": "Trend Calculator API",
        "version": "1.0.0",
        "status": "online",
        "endpoints": {
            "trend": "/trend",
            "regime": "/regime",
            "regime_multi_factor": "/regime/multi-factor",
            "stationarity": "/stationarity",
            "symbols": "/symbols/{symbol}",
            "health": "/health",
            "health_symbol": "/health/{symbol}",
            "config": "/config",
            "recent": "/recent"
        }
    }


@app.post("/trend", response_model=TrendResponse)
async def calculate_trend(request: PricesRequest):
    """
    Calculate a trend result from a price series.

    Returns success=False when fewer than min_data_points prices are sent.
    """
    try:
        result = service.calculate_from_prices(request.prices, symbol=request.symbol.upper())
    except Exception as e:
        LOG.error(f"Trend calculation failed: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=str(e))

    if result is None:
        return TrendResponse(
            success=False,
            symbol=request.symbol.upper(),
            error=f"Insufficient data: {len(request.prices)}/{config.trend.min_data_points}"
        )
    return TrendResponse(success=True, symbol=result.symbol, result=result.to_dict())


@app.post("/regime", response_model=RegimeResponse)
async def detect_regime(request: PricesRequest):
    """
    Detect the market regime of a price series.

    Requires at least 100 prices (400 otherwise).
    """
    try:
        regime = service.regime_detector.detect(request.prices)
    except InsufficientDataError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        LOG.error(f"Regime detection failed: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=str(e))

    return RegimeResponse(**regime.to_dict())


@app.post("/regime/multi-factor", response_model=MultiFactorRegimeResponse)
async def detect_regime_multi_factor(request: PricesRequest):
    """Score every regime from Hurst, R², volatility, momentum and direction changes"""
    try:
        regime = service.multi_factor_detector.detect(request.prices)
    except InsufficientDataError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        LOG.error(f"Multi-factor regime detection failed: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=str(e))

    return MultiFactorRegimeResponse(**regime.to_dict())


@app.post("/stationarity", response_model=StationarityResponse)
async def check_stationarity(request: PricesRequest):
    """Split-half stationarity of prices and ADF on their log returns"""
    tester = service.stationarity
    result = tester.test_stationarity(request.prices)
    adf_stationary, adf_pvalue, adf_statistic = tester.run_adf_test(tester.to_log_returns(request.prices))

    return StationarityResponse(
        **result.to_dict(),
        adf_stationary=adf_stationary,
        adf_pvalue=adf_pvalue,
        adf_statistic=adf_statistic
    )


@app.post("/symbols/{symbol}/track")
async def start_tracking(symbol: str = PathParam(..., description="Trading symbol")):
    """Start tracking a symbol with an empty buffer"""
    started = service.start_tracking(symbol)
    return {
        "success": True,
        "symbol": symbol.upper(),
        "started": started,
        "buffer": service.get_buffer_status(symbol)
    }


@app.post("/symbols/{symbol}/prices", response_model=TrendResponse)
async def add_prices(
    request: AddPricesRequest,
    symbol: str = PathParam(..., description="Trading symbol")
):
    """Append prices to a tracked symbol; returns the latest result if any"""
    if not service.is_tracking(symbol):
        raise HTTPException(status_code=404, detail=f"{symbol.upper()} is not tracked")

    for price in request.prices:
        service.add_price(symbol, price)

    latest = service.get_latest_result(symbol)
    return TrendResponse(
        success=True,
        symbol=symbol.upper(),
        result=latest.to_dict() if latest else None,
        buffer=service.get_buffer_status(symbol)
    )


@app.get("/symbols/{symbol}/trend", response_model=TrendResponse)
async def get_symbol_trend(symbol: str = PathParam(..., description="Trading symbol")):
    """Calculate from the symbol's current buffer"""
    if not service.is_tracking(symbol):
        raise HTTPException(status_code=404, detail=f"{symbol.upper()} is not tracked")

    result = service.calculate_trend(symbol)
    buffer = service.get_buffer_status(symbol)
    if result is None:
        return TrendResponse(
            success=False,
            symbol=symbol.upper(),
            buffer=buffer,
            error=f"Insufficient data: {buffer['current']}/{buffer['required']}"
        )
    return TrendResponse(success=True, symbol=result.symbol, result=result.to_dict(), buffer=buffer)


@app.get("/symbols/{symbol}/volatility")
async def get_volatility_state(symbol: str = PathParam(..., description="Trading symbol")):
    """Current GARCH volatility state of a tracked symbol"""
    state = service.get_volatility_state(symbol)
    if state is None:
        raise HTTPException(status_code=404, detail=f"No volatility state for {symbol.upper()}")
    return state.to_dict()


@app.post("/symbols/{symbol}/half-reset")
async def half_reset(symbol: str = PathParam(..., description="Trading symbol")):
    service.half_reset_buffer(symbol)
    return {"success": True, "buffer": service.get_buffer_status(symbol)}


@app.delete("/symbols/{symbol}")
async def stop_tracking(symbol: str = PathParam(..., description="Trading symbol")):
    service.stop_tracking(symbol)
    return {"success": True, "symbol": symbol.upper()}


@app.get("/symbols")
async def list_symbols():
    return {
        "symbols": {
            symbol: service.get_buffer_status(symbol)
            for symbol in service.tracked_symbols()
        }
    }


@app.get("/health", response_model=HealthResponse)
async def get_health():
    """
    Get overall health status.

    Returns:
        Health metrics and status
    """
    health_status = health_monitor.get_health_status()
    metrics = health_status['global_metrics']

    return HealthResponse(
        status=health_status['status'],
        uptime_seconds=health_status['uptime_seconds'],
        total_calculations=metrics['total_calculations'],
        long_signals=metrics['long_signals'],
        short_signals=metrics['short_signals'],
        wait_signals=metrics['wait_signals'],
        insufficient_data=metrics['insufficient_data'],
        avg_processing_time_ms=metrics['avg_processing_time_ms'],
        symbols_tracked=health_status['symbols_tracked'],
        stalled_symbols=health_status['stalled_symbols']
    )


@app.get("/health/{symbol}")
async def get_symbol_health(symbol: str = PathParam(..., description="Trading symbol")):
    health = health_monitor.get_symbol_health(symbol.upper())

    if health is None:
        raise HTTPException(
            status_code=404,
            detail=f"No health data found for {symbol.upper()}"
        )
    return health


@app.get("/recent")
async def get_recent_calculations(
    limit: int = Query(20, description="Number of recent calculations to return")
):
    recent = health_monitor.get_recent_calculations(limit)
    return {"calculations": recent, "count": len(recent)}


@app.get("/config", response_model=ConfigResponse)
async def get_config():
    """
    Get current engine configuration.

    Returns:
        Configuration settings
    """
    config_dict = config.to_dict()

    return ConfigResponse(
        config_hash=config.get_config_hash(),
        config_version=config.config_version,
        stationarity=config_dict['stationarity'],
        autocorrelation=config_dict['autocorrelation'],
        hurst=config_dict['hurst'],
        garch=config_dict['garch'],
        regime=config_dict['regime'],
        trend=config_dict['trend']
    )


@app.post("/reset-health")
async def reset_health():
    health_monitor.reset_metrics()
    return {
        "success": True,
        "message": "Health monitoring metrics reset"
    }


# ============================================================================
# STARTUP/SHUTDOWN
# ============================================================================

@app.on_event("startup")
async def startup_event():
    """Startup tasks"""
    LOG.info("Trend API starting up...")
    LOG.info(f"Config hash: {config.get_config_hash()}")


@app.on_event("shutdown")
async def shutdown_event():
    """Shutdown tasks"""
    LOG.info("Trend API shutting down...")

    try:
        health_monitor.export_health_report("trend_health_report_final.json")
        LOG.info("Final health report exported")
    except OSError as e:
        LOG.error(f"Failed to export final health report: {e}")


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8010, log_level="info")
