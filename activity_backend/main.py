import logging
import sys
from contextlib import asynccontextmanager

import httpx
import uvicorn
from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded

from .auth import CredentialStore, TokenManager
from .config import settings
from .dataset import DatasetStore, FileBlobStore
from .errors import ActivityServiceError
from .limiter import limiter
from .routes import analysis_router, strava_router
from .strava_client import StravaClient

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    stream=sys.stderr
)
logger = logging.getLogger(__name__)

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build the long-lived services once; one shared httpx client for all Strava calls."""
    async with httpx.AsyncClient(timeout=settings.HTTP_TIMEOUT_SECONDS) as http_client:
        app.state.token_manager = TokenManager(
            CredentialStore(),
            http_client,
            client_id=settings.STRAVA_CLIENT_ID,
            client_secret=settings.STRAVA_CLIENT_SECRET,
            refresh_token=settings.STRAVA_REFRESH_TOKEN,
            token_url=settings.STRAVA_TOKEN_URL,
            expiry_margin=settings.TOKEN_EXPIRY_MARGIN_SECONDS,
        )
        app.state.strava_client = StravaClient(http_client, settings.STRAVA_API_BASE_URL)
        app.state.dataset_store = DatasetStore(
            FileBlobStore(settings.DATA_DIR),
            dataset_key=settings.DATASET_FILENAME,
            csv_key=settings.CSV_FILENAME,
        )
        logger.info(f"Dataset stored at {app.state.dataset_store.blobs.path_for(settings.DATASET_FILENAME)}")
        yield

app = FastAPI(title="Strava Activity Backend", lifespan=lifespan)
app.state.limiter = limiter

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins,
    allow_credentials=True,
    allow_methods=["GET", "OPTIONS"],
    allow_headers=["Content-Type"],
)

# Include routers
app.include_router(strava_router, prefix="/strava", tags=["strava"])
app.include_router(analysis_router, tags=["analysis"])

@app.exception_handler(ActivityServiceError)
async def service_error_handler(request: Request, exc: ActivityServiceError):
    logger.error(f"{request.method} {request.url.path} failed: {exc}")
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.message, "details": exc.details},
    )

@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=422,
        content={"error": "Invalid request", "details": jsonable_encoder(exc.errors())},
    )

@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded):
    logger.warning(f"Rate limit hit on {request.method} {request.url.path}: {exc.detail}")
    return JSONResponse(
        status_code=429,
        content={"error": "Rate limit exceeded", "details": exc.detail},
    )

@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    return JSONResponse(
        status_code=500,
        content={"error": "Internal Server Error", "details": str(exc)},
    )

@app.get("/")
def read_root():
    return {"message": "Strava Activity Backend is running"}

def main() -> None:
    """Main entry point for the server."""
    logger.info("Starting Strava Activity Backend...")
    uvicorn.run(app, host=settings.HOST, port=settings.PORT)

if __name__ == "__main__":
    main()
