"""
MedInsight History Ledger: FastAPI application.

This is the entry point for the application.
All routers are registered here.
"""

import logging

from fastapi import FastAPI

from medinsight_history.config import get_settings
from medinsight_history.api.health import router as health_router
from medinsight_history.api.history import router as history_router

settings = get_settings()

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="Local activity ledger for the clinical analysis workflow",
    debug=settings.DEBUG,
)

# Register routers
app.include_router(health_router)
app.include_router(history_router)


def run() -> None:
    """Serve the application with uvicorn."""
    import uvicorn

    uvicorn.run(app, host=settings.HOST, port=settings.PORT)


if __name__ == "__main__":
    run()
