# linkledger/main.py
import logging

from fastapi import FastAPI

from .api.callbacks import main as callbacks_main_api
from .api.clients import main as clients_main_api
from .api.payments import main as payments_main_api
from .api.routers import main as routers_main_api
from .api.settings import main as settings_main_api
from .db.engine_sync import create_sync_db_and_tables
from .services.runtime import shutdown_runtime

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(levelname)s - [API] - %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("API")

app = FastAPI(title="LinkLedger", version="0.1.0")


# --- Database Initialization ---
@app.on_event("startup")
def on_startup():
    """Initialize database tables on application startup"""
    create_sync_db_and_tables()
    logger.info("✅ Database tables initialized")


@app.on_event("shutdown")
def on_shutdown():
    # Let queued network commands finish before the process exits
    shutdown_runtime(wait=True)


@app.get("/health")
def health():
    return {"status": "ok"}


app.include_router(callbacks_main_api.router, prefix="/api", tags=["Callbacks"])
app.include_router(clients_main_api.router, prefix="/api", tags=["Clients"])
app.include_router(payments_main_api.router, prefix="/api", tags=["Payments"])
app.include_router(routers_main_api.router, prefix="/api", tags=["Routers"])
app.include_router(settings_main_api.router, prefix="/api", tags=["Settings"])


def run():
    """Entry point for `linkledger-api`."""
    import os

    import uvicorn

    uvicorn.run(
        "linkledger.main:app",
        host=os.getenv("HOST", "0.0.0.0"),
        port=int(os.getenv("PORT", "8000")),
    )
