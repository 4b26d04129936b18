"""
Start AI Confirmation API Server

Launches the AI confirmation REST API on port 8011. Reads GEMINI_API_KEY
and the other provider settings from the environment or a .env file.
"""

import uvicorn
import logging
import os

from dotenv import load_dotenv

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)

if __name__ == "__main__":
    load_dotenv()

    print("="*60)
    print("  TrendCalc - AI Confirmation API")
    print("="*60)
    print()
    if not os.getenv("GEMINI_API_KEY"):
        print("WARNING: GEMINI_API_KEY is not set, all rounds will fall back to WAIT")
        print()
    print("Starting server on http://0.0.0.0:8011")
    print()
    print("Available endpoints:")
    print("  POST   /ai/analyze           - Run the confirmation loop")
    print("  GET    /ai/result/{symbol}   - Cached directional result")
    print("  DELETE /ai/result/{symbol}   - Clear cached result")
    print("  POST   /ai/cancel/{symbol}   - Cancel a running loop")
    print("  GET    /ai/telemetry         - Round stats and exchanges")
    print("  GET    /health               - Service health")
    print()
    print("Press CTRL+C to stop")
    print("="*60)
    print()

    uvicorn.run(
        "trendcalc.ai_confirmation.api:app",
        host="0.0.0.0",
        port=8011,
        log_level="info"
    )
