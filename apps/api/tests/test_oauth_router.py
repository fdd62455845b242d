from urllib.parse import parse_qs, urlparse

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.future import select

from database import get_db
from main import app
from models.content_item import ContentItem
from models.ingestion_job import IngestionJob
from models.linked_account import LinkedAccount
from models.user import User
from routers.oauth import RESTART_AUTHORIZATION_MESSAGE, get_adapter_resolver, get_state_store
from services.connectors import ContentPage, Provider, ProviderContentItem
from services.crypto import decrypt_token
from services.errors import ProviderError
from services.session_token import create_session_token
from services.state_store import InMemoryStateStore


def _auth_headers(user_id: str) -> dict:
    token = create_session_token(user_id, f"{user_id}@example.com").token
    return {"Authorization": f"Bearer {token}"}


@pytest_asyncio.fixture
async def oauth_env(session_maker, fake_adapter_cls):
    adapters = {provider: fake_adapter_cls(provider) for provider in Provider}
    store = InMemoryStateStore()

    async def override_get_db():
        async with session_maker() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_state_store] = lambda: store
    app.dependency_overrides[get_adapter_resolver] = lambda: (lambda provider: adapters[provider])
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client, adapters, store

    app.dependency_overrides.pop(get_db, None)
    app.dependency_overrides.pop(get_state_store, None)
    app.dependency_overrides.pop(get_adapter_resolver, None)


async def _initiate(client, provider: str, user_id: str) -> str:
    response = await client.get(f"/oauth/{provider}/initiate", headers=_auth_headers(user_id))
    assert response.status_code == 200
    query = parse_qs(urlparse(response.json()["authUrl"]).query)
    return query["state"][0]


@pytest.mark.asyncio
async def test_initiate_requires_session(oauth_env):
    client, _adapters, _store = oauth_env
    response = await client.get("/oauth/twitter/initiate")
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_initiate_returns_auth_url_and_stores_state(oauth_env):
    client, _adapters, store = oauth_env
    response = await client.get("/oauth/twitter/initiate", headers=_auth_headers("oauth-user"))

    assert response.status_code == 200
    body = response.json()
    assert body["provider"] == "twitter"
    assert body["authUrl"].startswith("https://provider.test/authorize?")
    assert "code_challenge=" in body["authUrl"]
    assert await store.count("pkce:") == 1


@pytest.mark.asyncio
async def test_initiate_unknown_provider_is_404(oauth_env):
    client, _adapters, _store = oauth_env
    response = await client.get("/oauth/myspace/initiate", headers=_auth_headers("oauth-user"))
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_initiate_unconfigured_provider_is_503(oauth_env):
    client, adapters, store = oauth_env
    adapters[Provider.LINKEDIN].client_secret = ""
    response = await client.get("/oauth/linkedin/initiate", headers=_auth_headers("oauth-user"))
    assert response.status_code == 503
    assert "LINKEDIN_CLIENT_ID" in response.json()["detail"]
    assert await store.count("pkce:") == 0


@pytest.mark.asyncio
async def test_callback_links_account_and_enqueues_media(oauth_env, session_maker):
    client, adapters, _store = oauth_env
    adapters[Provider.TWITTER].pages = [
        ContentPage(
            items=[
                ProviderContentItem(
                    provider_item_id="tweet-1",
                    kind="tweet",
                    text="sunset",
                    media_urls=("https://pbs.example.com/sunset.jpg",),
                )
            ]
        )
    ]
    state = await _initiate(client, "twitter", "oauth-user")

    response = await client.get("/oauth/twitter/callback", params={"code": "auth-code", "state": state})

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["user_id"] == "oauth-user"
    assert body["items_synced"] == 1
    assert body["media_jobs_enqueued"] == 1
    assert body["warnings"] == []
    exchange = adapters[Provider.TWITTER].exchange_calls[0]
    assert exchange["code"] == "auth-code"
    assert exchange["code_verifier"]

    async with session_maker() as db:
        user = (await db.execute(select(User).where(User.id == "oauth-user"))).scalar_one()
        account = (await db.execute(select(LinkedAccount))).scalar_one()
        items = (await db.execute(select(ContentItem))).scalars().all()
        jobs = (await db.execute(select(IngestionJob))).scalars().all()
    assert user.email == "ext@example.com"
    assert account.provider == "twitter"
    assert account.access_token_encrypted != "access-1"
    assert decrypt_token(account.access_token_encrypted) == "access-1"
    assert decrypt_token(account.refresh_token_encrypted) == "refresh-1"
    assert [item.provider_item_id for item in items] == ["tweet-1"]
    assert [job.source_url for job in jobs] == ["https://pbs.example.com/sunset.jpg"]


@pytest.mark.asyncio
async def test_callback_replay_is_rejected(oauth_env):
    client, _adapters, _store = oauth_env
    state = await _initiate(client, "twitter", "oauth-user")

    first = await client.get("/oauth/twitter/callback", params={"code": "c1", "state": state})
    second = await client.get("/oauth/twitter/callback", params={"code": "c1", "state": state})

    assert first.status_code == 200
    assert second.status_code == 400
    assert second.json()["detail"] == RESTART_AUTHORIZATION_MESSAGE


@pytest.mark.asyncio
async def test_callback_with_state_for_other_provider_is_rejected(oauth_env):
    client, _adapters, store = oauth_env
    state = await _initiate(client, "twitter", "oauth-user")

    response = await client.get("/oauth/gmail/callback", params={"code": "c1", "state": state})

    assert response.status_code == 400
    assert response.json()["detail"] == RESTART_AUTHORIZATION_MESSAGE
    assert await store.count("pkce:") == 0


@pytest.mark.asyncio
async def test_callback_missing_code_is_400(oauth_env):
    client, _adapters, _store = oauth_env
    state = await _initiate(client, "gmail", "oauth-user")
    response = await client.get("/oauth/gmail/callback", params={"state": state})
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_callback_exchange_failure_hides_provider_detail(oauth_env, session_maker):
    client, adapters, _store = oauth_env
    adapters[Provider.GMAIL].exchange_error = ProviderError(
        "gmail", "invalid_grant: secret-internal-detail", status_code=400
    )
    state = await _initiate(client, "gmail", "oauth-user")

    response = await client.get("/oauth/gmail/callback", params={"code": "bad", "state": state})

    assert response.status_code == 500
    assert response.json()["detail"] == "Failed to complete authentication"
    assert "secret-internal-detail" not in response.text
    async with session_maker() as db:
        assert (await db.execute(select(LinkedAccount))).scalars().all() == []


@pytest.mark.asyncio
async def test_callback_content_failure_still_links(oauth_env):
    client, adapters, _store = oauth_env
    adapters[Provider.LINKEDIN].pages = [ProviderError("linkedin", "upstream down", status_code=502)]
    state = await _initiate(client, "linkedin", "oauth-user")

    response = await client.get("/oauth/linkedin/callback", params={"code": "c1", "state": state})

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["items_synced"] == 0
    assert body["warnings"]


@pytest.mark.asyncio
async def test_callback_denied_consent_consumes_state(oauth_env):
    client, _adapters, store = oauth_env
    state = await _initiate(client, "outlook", "oauth-user")

    response = await client.get(
        "/oauth/outlook/callback",
        params={"error": "access_denied", "error_description": "user said no", "state": state},
    )

    assert response.status_code == 400
    assert await store.count("pkce:") == 0
