import logging
import time
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import PlainTextResponse

from . import analytics
from .config import Settings
from .dataset import DatasetStore
from .deps import get_credential, get_dataset_store, get_settings, get_strava_client
from .models import Credential, SaveResponse, TokenInfo
from .pipeline import enrich, fetch_all_activities
from .strava_client import StravaClient

strava_router = APIRouter()
analysis_router = APIRouter()
logger = logging.getLogger(__name__)

# --- STRAVA PROXY ---

@strava_router.get("/activities")
async def get_all_activities(
    credential: Credential = Depends(get_credential),
    client: StravaClient = Depends(get_strava_client),
    config: Settings = Depends(get_settings),
) -> List[Dict[str, Any]]:
    """Get ALL activities from Strava by paginating through all pages."""
    return await fetch_all_activities(client, credential.access_token, config.STRAVA_PAGE_SIZE)

@strava_router.get("/activities/page/{page}")
async def get_activities_page(
    page: int,
    per_page: Optional[int] = Query(None, ge=1, le=200),
    credential: Credential = Depends(get_credential),
    client: StravaClient = Depends(get_strava_client),
    config: Settings = Depends(get_settings),
) -> List[Dict[str, Any]]:
    """Get a single page of activities. Max 200 per page."""
    return await client.list_activities_page(credential.access_token, page, per_page or config.STRAVA_PAGE_SIZE)

@strava_router.get("/activity/{activity_id}")
async def get_activity(
    activity_id: int,
    credential: Credential = Depends(get_credential),
    client: StravaClient = Depends(get_strava_client),
) -> Dict[str, Any]:
    """Get detailed activity data, including all segment efforts."""
    return await client.get_activity_detail(credential.access_token, activity_id)

@strava_router.get("/activity/{activity_id}/streams")
async def get_activity_streams(
    activity_id: int,
    keys: Optional[str] = None,
    credential: Credential = Depends(get_credential),
    client: StravaClient = Depends(get_strava_client),
    config: Settings = Depends(get_settings),
) -> Dict[str, Any]:
    """Get activity streams (heart rate, altitude, velocity...) for charts."""
    return await client.get_activity_streams(credential.access_token, activity_id, keys or config.STRAVA_STREAM_KEYS)

@strava_router.get("/save-activities", response_model=SaveResponse, response_model_exclude_none=True)
async def save_activities(
    credential: Credential = Depends(get_credential),
    client: StravaClient = Depends(get_strava_client),
    store: DatasetStore = Depends(get_dataset_store),
    config: Settings = Depends(get_settings),
):
    """Fetch every activity and overwrite the local dataset with the base records."""
    activities = await fetch_all_activities(client, credential.access_token, config.STRAVA_PAGE_SIZE)
    await store.save(activities)
    return SaveResponse(status="saved", count=len(activities))

@strava_router.get("/save-enriched", response_model=SaveResponse)
async def save_enriched_activities(
    credential: Credential = Depends(get_credential),
    client: StravaClient = Depends(get_strava_client),
    store: DatasetStore = Depends(get_dataset_store),
    config: Settings = Depends(get_settings),
):
    """
    Fetch every activity, join each with its detail and streams, and save.
    Activities whose enrichment failed are saved as base records and listed in `degraded`.
    """
    activities = await fetch_all_activities(client, credential.access_token, config.STRAVA_PAGE_SIZE)
    report = await enrich(
        client,
        activities,
        credential.access_token,
        stream_keys=config.STRAVA_STREAM_KEYS,
        concurrency=config.ENRICH_CONCURRENCY,
    )
    await store.save(report.activities)
    if report.degraded_ids:
        logger.warning(f"Saved {len(report.degraded_ids)} activities without enrichment: {report.degraded_ids}")
    return SaveResponse(
        status="saved",
        count=len(report.activities),
        enriched=report.enriched_count,
        degraded=report.degraded_ids,
    )

@strava_router.get("/token-info", response_model=TokenInfo)
async def get_token_info(credential: Credential = Depends(get_credential)):
    expires_in = int(credential.expires_at - time.time())
    return TokenInfo(
        has_token=True,
        valid=expires_in > 0,
        expires_at=credential.expires_at,
        expires_at_iso=credential.expires_at_iso,
        expires_in=expires_in,
        token_preview=f"{credential.access_token[:6]}...",
    )

# --- ANALYSIS (local dataset only) ---

@analysis_router.get("/analyze/week")
async def analyze_week(store: DatasetStore = Depends(get_dataset_store)) -> Dict[str, Any]:
    return analytics.weekly_rollup(await store.load())

@analysis_router.get("/recognize/routes")
async def recognize_routes(store: DatasetStore = Depends(get_dataset_store)) -> Dict[str, Any]:
    return {"routes": analytics.recognize_routes(await store.load())}

@analysis_router.get("/analyze/biometrics")
async def analyze_biometrics(store: DatasetStore = Depends(get_dataset_store)) -> Dict[str, Any]:
    return {"activities": analytics.extract_biometrics(await store.load())}

@analysis_router.get("/compare/activities/{metric}")
async def compare_activities(metric: str, store: DatasetStore = Depends(get_dataset_store)) -> Dict[str, Any]:
    return analytics.compare_metric(await store.load(), metric)

@analysis_router.get("/analyze/intensity")
async def analyze_intensity(store: DatasetStore = Depends(get_dataset_store)) -> Dict[str, Any]:
    return {"activities": analytics.analyze_intensity(await store.load())}

@analysis_router.get("/export/csv")
async def export_csv(store: DatasetStore = Depends(get_dataset_store)):
    """Export one CSV row per activity; the file is also written next to the dataset."""
    text = analytics.export_csv(await store.load())
    await store.save_csv(text)
    return PlainTextResponse(
        content=text,
        media_type="text/csv",
        headers={"Content-Disposition": f"attachment; filename={store.csv_key}"},
    )
