import asyncio

import httpx
import pytest

from activity_backend.auth import CredentialStore, TokenManager
from activity_backend.errors import CredentialRefreshFailure
from activity_backend.models import Credential

TOKEN_URL = "https://strava.test/oauth/token"


def build_manager(handler, credential=None, now=1_700_000_000, **kwargs):
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return TokenManager(
        CredentialStore(credential),
        client,
        client_id=kwargs.pop("client_id", "123"),
        client_secret="secret",
        refresh_token="refresh",
        token_url=TOKEN_URL,
        clock=lambda: now,
        **kwargs,
    )


@pytest.mark.asyncio
async def test_valid_credential_is_reused_without_refresh():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(200, json={"access_token": "new", "expires_at": 1_800_000_000})

    existing = Credential(access_token="still-good", expires_at=1_700_000_600)
    manager = build_manager(handler, credential=existing)

    credential = await manager.ensure_valid()

    assert credential.access_token == "still-good"
    assert calls == []


@pytest.mark.asyncio
async def test_expired_credential_is_refreshed():
    def handler(request):
        body = request.content.decode()
        assert "grant_type=refresh_token" in body
        assert "refresh_token=refresh" in body
        return httpx.Response(200, json={"access_token": "new", "expires_at": 1_800_000_000})

    # expires_at == now counts as expired
    manager = build_manager(handler, credential=Credential(access_token="old", expires_at=1_700_000_000))

    credential = await manager.ensure_valid()

    assert credential.access_token == "new"
    assert manager.store.get().expires_at == 1_800_000_000


@pytest.mark.asyncio
async def test_expiry_margin_refreshes_early():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(200, json={"access_token": "new", "expires_at": 1_800_000_000})

    existing = Credential(access_token="old", expires_at=1_700_000_100)
    manager = build_manager(handler, credential=existing, expiry_margin=300)

    await manager.ensure_valid()

    assert len(calls) == 1


@pytest.mark.asyncio
async def test_concurrent_callers_share_one_refresh():
    calls = []

    async def handler(request):
        calls.append(request)
        await asyncio.sleep(0.01)
        return httpx.Response(200, json={"access_token": "shared", "expires_at": 1_800_000_000})

    manager = build_manager(handler)

    credentials = await asyncio.gather(*(manager.ensure_valid() for _ in range(10)))

    assert len(calls) == 1
    assert {c.access_token for c in credentials} == {"shared"}


@pytest.mark.asyncio
async def test_refresh_failure_reaches_every_waiter_and_keeps_old_credential():
    calls = []

    async def handler(request):
        calls.append(request)
        await asyncio.sleep(0.01)
        return httpx.Response(400, json={"message": "Bad Request", "errors": [{"field": "refresh_token"}]})

    old = Credential(access_token="old", expires_at=1_600_000_000)
    manager = build_manager(handler, credential=old)

    results = await asyncio.gather(*(manager.ensure_valid() for _ in range(5)), return_exceptions=True)

    assert len(calls) == 1
    assert all(isinstance(r, CredentialRefreshFailure) for r in results)
    assert manager.store.get() == old

    # Next check retries the exchange
    with pytest.raises(CredentialRefreshFailure):
        await manager.ensure_valid()
    assert len(calls) == 2


@pytest.mark.asyncio
async def test_unreachable_token_endpoint_is_reported():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    manager = build_manager(handler)

    with pytest.raises(CredentialRefreshFailure) as exc_info:
        await manager.ensure_valid()

    assert "Connection error" in str(exc_info.value.details)
    assert manager.store.get() is None


@pytest.mark.asyncio
async def test_missing_configuration_fails_without_calling_strava():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(200, json={})

    manager = build_manager(handler, client_id="")

    with pytest.raises(CredentialRefreshFailure):
        await manager.ensure_valid()
    assert calls == []


@pytest.mark.asyncio
async def test_malformed_token_payload_is_a_refresh_failure():
    def handler(request):
        return httpx.Response(200, json={"token_type": "Bearer"})

    manager = build_manager(handler)

    with pytest.raises(CredentialRefreshFailure):
        await manager.ensure_valid()
    assert manager.store.get() is None
