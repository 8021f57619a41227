"""Shared fixtures: fake Strava transport, temp dataset store, API client."""
import httpx
import pytest
from fastapi.testclient import TestClient

from activity_backend.auth import CredentialStore, TokenManager
from activity_backend.dataset import DatasetStore, FileBlobStore
from activity_backend.deps import get_dataset_store, get_strava_client, get_token_manager
from activity_backend.limiter import limiter
from activity_backend.main import app
from activity_backend.strava_client import StravaClient

API_BASE = "https://strava.test/api/v3"
TOKEN_URL = "https://strava.test/oauth/token"


def make_activity(activity_id, **overrides):
    activity = {
        "id": activity_id,
        "name": f"Run {activity_id}",
        "start_date": "2024-03-04T07:30:00Z",
        "start_date_local": "2024-03-04T08:30:00Z",
        "distance": 10000.0,
        "moving_time": 3600,
        "total_elevation_gain": 120.0,
        "map": {"summary_polyline": f"poly{activity_id}" * 10},
    }
    activity.update(overrides)
    return activity


class FakeStrava:
    """
    Programmable stand-in for the Strava API, served through httpx.MockTransport.
    Records every request so tests can assert on call counts and params.
    """

    def __init__(self, activities=None, page_sizes=None, expires_at=4102444800):
        self.activities = activities or []
        self.page_sizes = page_sizes
        self.expires_at = expires_at
        self.failing_details = set()
        self.failing_streams = set()
        self.token_status = 200
        self.list_status = 200
        self.requests = []

    def requests_to(self, path_suffix):
        return [r for r in self.requests if r.url.path.endswith(path_suffix)]

    def _page(self, page, per_page):
        if self.page_sizes is not None:
            size = self.page_sizes[page - 1] if page <= len(self.page_sizes) else 0
            start = sum(self.page_sizes[: page - 1])
            return [make_activity(start + i + 1) for i in range(size)]
        start = (page - 1) * per_page
        return self.activities[start:start + per_page]

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path

        if str(request.url) == TOKEN_URL:
            if self.token_status != 200:
                return httpx.Response(self.token_status, json={"message": "Bad Request"})
            return httpx.Response(200, json={"access_token": "fresh-token", "expires_at": self.expires_at})

        if path.endswith("/athlete/activities"):
            if self.list_status != 200:
                return httpx.Response(self.list_status, text="upstream down")
            page = int(request.url.params["page"])
            per_page = int(request.url.params["per_page"])
            return httpx.Response(200, json=self._page(page, per_page))

        if path.endswith("/streams"):
            activity_id = int(path.split("/")[-2])
            if activity_id in self.failing_streams:
                return httpx.Response(500, text="stream error")
            return httpx.Response(200, json={
                "heartrate": {"data": [130, 150, 170]},
                "altitude": {"data": [10.0, 12.0, 14.0]},
                "velocity_smooth": {"data": [3.0, 3.2, 3.4]},
            })

        if "/activities/" in path:
            activity_id = int(path.split("/")[-1])
            if activity_id in self.failing_details:
                return httpx.Response(404, json={"message": "Record Not Found"})
            return httpx.Response(200, json={
                "id": activity_id,
                "segment_efforts": [{"id": activity_id * 100}],
                "splits_metric": [{"split": 1}],
            })

        return httpx.Response(404, json={"message": "unknown path"})


@pytest.fixture
def fake_strava():
    return FakeStrava()


@pytest.fixture
def http_client(fake_strava):
    return httpx.AsyncClient(transport=httpx.MockTransport(fake_strava.handler))


@pytest.fixture
def strava_client(http_client):
    return StravaClient(http_client, API_BASE)


@pytest.fixture
def token_manager(http_client):
    return TokenManager(
        CredentialStore(),
        http_client,
        client_id="123",
        client_secret="secret",
        refresh_token="refresh",
        token_url=TOKEN_URL,
    )


@pytest.fixture
def dataset_store(tmp_path):
    return DatasetStore(FileBlobStore(str(tmp_path)))


@pytest.fixture
def api(token_manager, strava_client, dataset_store):
    app.dependency_overrides[get_token_manager] = lambda: token_manager
    app.dependency_overrides[get_strava_client] = lambda: strava_client
    app.dependency_overrides[get_dataset_store] = lambda: dataset_store
    limiter.enabled = False
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()
        limiter.enabled = True
