import asyncio
import logging
import time
from typing import Callable, Optional

import httpx

from .errors import CredentialRefreshFailure
from .models import Credential

logger = logging.getLogger(__name__)


class CredentialStore:
    """Holds the current access token. Process-wide, lazily populated by TokenManager."""

    def __init__(self, credential: Optional[Credential] = None):
        self._credential = credential

    def get(self) -> Optional[Credential]:
        return self._credential

    def set(self, credential: Credential) -> None:
        self._credential = credential


class TokenManager:
    """
    Keeps the Strava access token valid across requests.

    Refreshes are single-flight: while an exchange is in progress every caller
    awaits the same task, and its result (or failure) is delivered to all of them.
    """

    def __init__(
        self,
        store: CredentialStore,
        http_client: httpx.AsyncClient,
        client_id: str,
        client_secret: str,
        refresh_token: str,
        token_url: str = "https://www.strava.com/oauth/token",
        expiry_margin: int = 0,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self._client = http_client
        self._client_id = client_id
        self._client_secret = client_secret
        self._refresh_token = refresh_token
        self._token_url = token_url
        self._expiry_margin = expiry_margin
        self._clock = clock
        self._refresh_task: Optional[asyncio.Task] = None

    def needs_refresh(self) -> bool:
        credential = self.store.get()
        return credential is None or credential.is_expired(self._clock(), self._expiry_margin)

    async def ensure_valid(self) -> Credential:
        """Return a non-expired credential, refreshing it first if necessary."""
        if not self.needs_refresh():
            return self.store.get()

        if self._refresh_task is None:
            self._refresh_task = asyncio.create_task(self._refresh())
            self._refresh_task.add_done_callback(self._clear_refresh_task)
        else:
            logger.debug("Token refresh already in flight, waiting for it")

        # Shielded so a cancelled caller doesn't cancel the exchange for the others
        return await asyncio.shield(self._refresh_task)

    def _clear_refresh_task(self, task: asyncio.Task) -> None:
        if self._refresh_task is task:
            self._refresh_task = None
        # Retrieve the exception so a failure nobody awaited isn't reported as unhandled
        if not task.cancelled():
            task.exception()

    async def _refresh(self) -> Credential:
        if not self._client_id or not self._client_secret or not self._refresh_token:
            raise CredentialRefreshFailure(
                "Server misconfiguration",
                "Missing STRAVA_CLIENT_ID, STRAVA_CLIENT_SECRET or STRAVA_REFRESH_TOKEN",
            )

        try:
            response = await self._client.post(
                self._token_url,
                data={
                    "client_id": self._client_id,
                    "client_secret": self._client_secret,
                    "refresh_token": self._refresh_token,
                    "grant_type": "refresh_token",
                },
            )
        except httpx.RequestError as e:
            logger.error(f"Token refresh connection error: {e}")
            raise CredentialRefreshFailure("Failed to refresh Strava token", f"Connection error: {e}") from e

        if response.status_code != 200:
            logger.error(f"Token refresh rejected: {response.status_code} - {response.text}")
            raise CredentialRefreshFailure(
                "Failed to refresh Strava token",
                {"status": response.status_code, "body": response.text},
            )

        try:
            data = response.json()
            credential = Credential(access_token=data["access_token"], expires_at=data["expires_at"])
        except (ValueError, KeyError, TypeError) as e:
            logger.error(f"Token refresh returned an unusable payload: {e}")
            raise CredentialRefreshFailure("Invalid response from Strava token endpoint", str(e)) from e

        self.store.set(credential)
        logger.info(f"Token refreshed, valid until {credential.expires_at_iso}")
        return credential
