import logging
import os
from contextlib import asynccontextmanager

from dotenv import load_dotenv

# FastAPI imports
from fastapi import FastAPI

# Local imports
from src.payout_recon.api.recon_router import recon_router
from src.payout_recon.use_cases.run_log import install_run_log_handler

load_dotenv(override=False)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage FastAPI application lifecycle - startup and shutdown."""
    logger = logging.getLogger(__name__)

    # Startup
    install_run_log_handler()
    logger.info("Starting payout reconciliation service...")
    yield

    # Shutdown
    logger.info("Payout reconciliation service shutdown complete")


# Configure logging levels from environment variables
logging.basicConfig(level=getattr(logging, os.environ.get("RECON_LOG_LEVEL", "INFO").upper(), logging.INFO))

# Google client discovery logs every request at INFO
logging.getLogger("googleapiclient.discovery_cache").setLevel(logging.ERROR)
logging.getLogger("urllib3").setLevel(logging.WARNING)

app = FastAPI(lifespan=lifespan)

app.include_router(recon_router)


@app.get("/health")
async def health():
    return {"status": "ok"}


# Run the app
if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "src.payout_recon.app:app",
        host="127.0.0.1",
        port=8000,
        reload=True,
        log_level="info",
        access_log=False,
    )
