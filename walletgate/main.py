# walletgate/main.py
from contextlib import asynccontextmanager

from fastapi import FastAPI
from walletgate.core.config import settings
from walletgate.api.endpoints import auth, entries
from walletgate.services.nonce_store import get_nonce_store, shutdown_nonce_store
import logging

# Configure basic logging
logging.basicConfig(level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO))
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Pick the nonce backend at startup so a Redis fallback is logged early
    get_nonce_store()
    yield
    shutdown_nonce_store()


app = FastAPI(
    title=settings.PROJECT_NAME,
    openapi_url=f"{settings.API_V1_STR}/openapi.json", # Standard location for OpenAPI spec
    lifespan=lifespan
)

# The prefix ensures all routes start with /api/v1
app.include_router(auth.router, prefix=f"{settings.API_V1_STR}/auth", tags=["auth"])
app.include_router(entries.router, prefix=f"{settings.API_V1_STR}/entries", tags=["entries"])

@app.get("/", summary="Health Check", tags=["default"])
def read_root():
    """ Basic health check endpoint. """
    logger.info("Root endpoint '/' accessed.")
    return {"status": "ok", "message": f"Welcome to {settings.PROJECT_NAME}"}
