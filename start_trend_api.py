"""
Start Trend API Server

Launches the trend calculator REST API on port 8010.
"""

import uvicorn
import logging

from dotenv import load_dotenv

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)

if __name__ == "__main__":
    load_dotenv()

    print("="*60)
    print("  TrendCalc - Trend Calculator API")
    print("="*60)
    print()
    print("Starting server on http://0.0.0.0:8010")
    print()
    print("Available endpoints:")
    print("  POST /trend                      - Trend from a price series")
    print("  POST /regime                     - Market regime (>= 100 prices)")
    print("  POST /stationarity               - Split-half + ADF test")
    print("  POST /symbols/{symbol}/track     - Start buffering a symbol")
    print("  POST /symbols/{symbol}/prices    - Append prices")
    print("  GET  /symbols/{symbol}/trend     - Trend from the buffer")
    print("  GET  /health                     - Engine health")
    print("  GET  /health/{symbol}            - Symbol health")
    print("  GET  /config                     - Configuration")
    print()
    print("Press CTRL+C to stop")
    print("="*60)
    print()

    uvicorn.run(
        "trendcalc.quant_stats.api:app",
        host="0.0.0.0",
        port=8010,
        log_level="info"
    )
