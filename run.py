"""
Render-compatible startup script for the Backoffice API
Reads PORT from environment and starts uvicorn server
"""
import os
import logging
import uvicorn
from backoffice.main import app

logger = logging.getLogger(__name__)

if __name__ == "__main__":
    # Render provides PORT environment variable
    port = int(os.getenv("PORT", 8000))
    host = os.getenv("HOST", "0.0.0.0")

    logger.info(f"Starting Backoffice API server on {host}:{port}")

    uvicorn.run(
        app,
        host=host,
        port=port,
        log_level="info"
    )
