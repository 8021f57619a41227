"""
Bulk fetch + enrichment of Strava activities.

- fetch_all_activities pages sequentially until Strava returns an empty page.
- enrich joins every activity with its detail and streams concurrently. A failure
  on one activity degrades that record only; the batch always completes.
"""
import asyncio
import logging
from typing import Any, Dict, List, Optional, Tuple

from .errors import RemoteCallFailure
from .models import EnrichmentReport
from .strava_client import DEFAULT_STREAM_KEYS, StravaClient

logger = logging.getLogger(__name__)

ENRICHMENT_FIELDS = ("streams", "efforts", "zones", "splits")


async def fetch_all_activities(client: StravaClient, access_token: str, per_page: int = 200) -> List[Dict[str, Any]]:
    """
    Fetch ALL activities by paginating from page 1.
    Stops only on an empty page; a short page is not treated as the last one,
    since Strava pages are not guaranteed dense.
    """
    all_activities: List[Dict[str, Any]] = []
    page = 1

    while True:
        logger.info(f"Fetching activities page {page}...")
        activities = await client.list_activities_page(access_token, page, per_page)
        if not activities:
            break

        all_activities.extend(activities)
        logger.info(f"Fetched {len(activities)} activities (Total: {len(all_activities)})")
        page += 1

    logger.info(f"Fetched {len(all_activities)} activities in {page} page requests")
    return all_activities


def _streams_by_type(streams: Any) -> Dict[str, Any]:
    # Without key_by_type Strava returns a list of {"type": ..., "data": [...]}
    if isinstance(streams, list):
        return {s["type"]: s for s in streams if isinstance(s, dict) and "type" in s}
    return streams if isinstance(streams, dict) else {}


def merge_enrichment(activity: Dict[str, Any], detail: Dict[str, Any], streams: Any) -> Dict[str, Any]:
    """Return a copy of the activity carrying streams, efforts, zones and splits."""
    if not isinstance(detail, dict):
        detail = {}
    enriched = dict(activity)
    enriched["streams"] = _streams_by_type(streams)
    enriched["efforts"] = detail.get("segment_efforts") or []
    enriched["zones"] = detail.get("zones") or []
    enriched["splits"] = detail.get("splits_metric") or detail.get("splits") or []
    return enriched


async def _enrich_one(
    client: StravaClient,
    activity: Dict[str, Any],
    access_token: str,
    stream_keys: str,
    semaphore: asyncio.Semaphore,
) -> Tuple[Dict[str, Any], Optional[Exception]]:
    """Enrich one activity. Returns (record, error); on error the record is the original."""
    activity_id = activity.get("id")
    async with semaphore:
        detail, streams = await asyncio.gather(
            client.get_activity_detail(access_token, activity_id),
            client.get_activity_streams(access_token, activity_id, stream_keys),
            return_exceptions=True,
        )

    for result in (detail, streams):
        if isinstance(result, RemoteCallFailure):
            logger.warning(f"Enrichment failed for activity {activity_id}, keeping base record: {result}")
            return activity, result
        if isinstance(result, BaseException):
            raise result

    try:
        return merge_enrichment(activity, detail, streams), None
    except (TypeError, ValueError, KeyError) as e:
        logger.warning(f"Unusable enrichment payload for activity {activity_id}, keeping base record: {e!r}")
        return activity, e


async def enrich(
    client: StravaClient,
    activities: List[Dict[str, Any]],
    access_token: str,
    stream_keys: str = DEFAULT_STREAM_KEYS,
    concurrency: int = 10,
) -> EnrichmentReport:
    """
    Enrich every activity with detail + streams.
    Results keep the original activity order regardless of completion order.
    """
    semaphore = asyncio.Semaphore(max(1, concurrency))
    outcomes = await asyncio.gather(
        *(_enrich_one(client, a, access_token, stream_keys, semaphore) for a in activities),
        return_exceptions=True,
    )
    # Let every sibling settle before surfacing an unexpected failure
    for outcome in outcomes:
        if isinstance(outcome, BaseException):
            raise outcome
    results: List[Tuple[Dict[str, Any], Optional[Exception]]] = list(outcomes)

    records = [record for record, _ in results]
    degraded = [record.get("id") for record, error in results if error is not None]

    logger.info(f"Enrichment complete: {len(records) - len(degraded)} enriched, {len(degraded)} degraded")
    return EnrichmentReport(activities=records, degraded_ids=degraded)
