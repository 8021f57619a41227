"""
Typed wrapper around the Strava activity API.
No retries: a non-2xx response or transport error raises RemoteCallFailure.
"""
import logging
from typing import Any, Dict, List, Optional

import httpx

from .errors import RemoteCallFailure

logger = logging.getLogger(__name__)

STRAVA_API_BASE_URL = "https://www.strava.com/api/v3"
DEFAULT_STREAM_KEYS = "time,altitude,velocity_smooth,heartrate,cadence,watts"


class StravaClient:
    def __init__(self, http_client: httpx.AsyncClient, base_url: str = STRAVA_API_BASE_URL):
        self._client = http_client
        self._base_url = base_url.rstrip("/")

    async def _get(self, path: str, access_token: str, params: Optional[Dict[str, Any]] = None) -> Any:
        url = f"{self._base_url}{path}"
        headers = {"Authorization": f"Bearer {access_token}"}
        try:
            response = await self._client.get(url, headers=headers, params=params)
        except httpx.RequestError as e:
            logger.error(f"Strava API connection error: {e}")
            raise RemoteCallFailure(None, str(e)) from e

        if not response.is_success:
            logger.error(f"Strava API request failed: GET {path} -> {response.status_code}")
            raise RemoteCallFailure(response.status_code, response.text)

        try:
            return response.json()
        except ValueError as e:
            raise RemoteCallFailure(response.status_code, response.text, "Invalid JSON from Strava") from e

    async def list_activities_page(self, access_token: str, page: int, per_page: int = 200) -> List[Dict[str, Any]]:
        """Get one page of the athlete's activities. An empty list means no more pages."""
        data = await self._get(
            "/athlete/activities",
            access_token,
            params={"per_page": per_page, "page": page},
        )
        if not isinstance(data, list):
            raise RemoteCallFailure(200, str(data)[:500], "Unexpected activity list payload")
        return data

    async def get_activity_detail(self, access_token: str, activity_id: int) -> Dict[str, Any]:
        """Get detailed activity data (segment efforts, splits, laps...)."""
        return await self._get(
            f"/activities/{activity_id}",
            access_token,
            params={"include_all_efforts": "true"},
        )

    async def get_activity_streams(
        self, access_token: str, activity_id: int, keys: str = DEFAULT_STREAM_KEYS
    ) -> Dict[str, Any]:
        """Get activity streams keyed by type, e.g. {"heartrate": {"data": [...]}}."""
        return await self._get(
            f"/activities/{activity_id}/streams",
            access_token,
            params={"keys": keys, "key_by_type": "true"},
        )
