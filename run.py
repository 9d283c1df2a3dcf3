"""
Application entry point for the Subdomain Redirect Counter.
This module creates the FastAPI application and starts the development server.
"""
import logging
from redirect_counter.main import create_app
from redirect_counter.config import settings
import uvicorn

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

# Create the FastAPI application instance
app = create_app()

if __name__ == "__main__":
    # Start the development server with hot reloading in debug mode
    uvicorn.run(
        "run:app",
        host="0.0.0.0",
        port=settings.LISTEN_PORT,
        reload=settings.DEBUG_MODE,
        proxy_headers=settings.TRUST_PROXY_HEADERS,
    )
