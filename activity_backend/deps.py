from fastapi import Depends, Request

from .auth import TokenManager
from .config import Settings, settings
from .dataset import DatasetStore
from .limiter import limiter
from .models import Credential
from .strava_client import StravaClient

# Services are built once in main.lifespan and kept on app.state.
# Tests swap them through app.dependency_overrides.

def get_settings() -> Settings:
    return settings

def get_token_manager(request: Request) -> TokenManager:
    return request.app.state.token_manager

def get_strava_client(request: Request) -> StravaClient:
    return request.app.state.strava_client

def get_dataset_store(request: Request) -> DatasetStore:
    return request.app.state.dataset_store

@limiter.shared_limit(settings.RATE_LIMIT, scope="strava")
async def strava_quota(request: Request) -> None:
    """One quota bucket per client, shared by every route that reaches Strava."""

async def get_credential(
    _: None = Depends(strava_quota),
    token_manager: TokenManager = Depends(get_token_manager),
) -> Credential:
    """Ensure a valid Strava token before any route that calls the Strava API."""
    return await token_manager.ensure_valid()
