import asyncio
from urllib.parse import parse_qs, urlparse

import pytest

from services.connectors import ConnectorUnavailableError, Provider
from services.connectors.google import GmailAdapter
from services.connectors.twitter import TwitterAdapter
from services.errors import AuthStateError
from services.handshake import STATE_KEY_PREFIX, HandshakeManager, code_challenge_for
from services.state_store import InMemoryStateStore


def _twitter_adapter(_provider):
    return TwitterAdapter(client_id="tw-id", client_secret="tw-secret", redirect_uri="https://app.test/cb")


def _query(url: str) -> dict:
    return {key: values[0] for key, values in parse_qs(urlparse(url).query).items()}


@pytest.mark.asyncio
async def test_twitter_handshake_round_trip_is_single_use():
    store = InMemoryStateStore()
    handshake = HandshakeManager(store, _twitter_adapter)

    start = await handshake.begin("twitter", "user-1")
    query = _query(start.authorization_url)
    assert query["state"] == start.state
    assert query["code_challenge_method"] == "S256"
    assert "code_challenge" in query

    grant = await handshake.complete(start.state, Provider.TWITTER)
    assert grant.user_id == "user-1"
    assert grant.provider == "twitter"
    assert 43 <= len(grant.verifier) <= 128
    assert code_challenge_for(grant.verifier) == query["code_challenge"]

    with pytest.raises(AuthStateError):
        await handshake.complete(start.state, Provider.TWITTER)


@pytest.mark.asyncio
async def test_state_entry_layout_in_store():
    store = InMemoryStateStore()
    handshake = HandshakeManager(store, _twitter_adapter)
    start = await handshake.begin(Provider.TWITTER, "user-2")

    entry = await store.take(f"{STATE_KEY_PREFIX}{start.state}")
    assert set(entry) == {"verifier", "user_id", "provider", "created_at"}
    assert entry["provider"] == "twitter"


@pytest.mark.asyncio
async def test_non_pkce_provider_has_no_verifier():
    handshake = HandshakeManager(
        InMemoryStateStore(),
        lambda _p: GmailAdapter(client_id="g-id", client_secret="g-secret", redirect_uri="https://app.test/cb"),
    )
    start = await handshake.begin("gmail", "user-3")
    query = _query(start.authorization_url)
    assert "code_challenge" not in query
    assert query["access_type"] == "offline"

    grant = await handshake.complete(start.state, "gmail")
    assert grant.verifier is None


@pytest.mark.asyncio
async def test_concurrent_callbacks_only_one_succeeds():
    handshake = HandshakeManager(InMemoryStateStore(), _twitter_adapter)
    start = await handshake.begin("twitter", "user-4")

    outcomes = await asyncio.gather(
        *(handshake.complete(start.state, "twitter") for _ in range(5)),
        return_exceptions=True,
    )
    successes = [item for item in outcomes if not isinstance(item, Exception)]
    failures = [item for item in outcomes if isinstance(item, AuthStateError)]
    assert len(successes) == 1
    assert len(failures) == 4


@pytest.mark.asyncio
async def test_provider_mismatch_rejects_and_consumes_state():
    handshake = HandshakeManager(InMemoryStateStore(), _twitter_adapter)
    start = await handshake.begin("twitter", "user-5")

    with pytest.raises(AuthStateError) as excinfo:
        await handshake.complete(start.state, "linkedin")
    assert excinfo.value.reason == "provider_mismatch"

    with pytest.raises(AuthStateError):
        await handshake.complete(start.state, "twitter")


@pytest.mark.asyncio
async def test_expired_state_is_rejected():
    now = [0.0]
    store = InMemoryStateStore(clock=lambda: now[0])
    handshake = HandshakeManager(store, _twitter_adapter, ttl_seconds=600)
    start = await handshake.begin("twitter", "user-6")

    now[0] += 601
    with pytest.raises(AuthStateError):
        await handshake.complete(start.state, "twitter")
    assert await handshake.purge_expired() == 0


@pytest.mark.asyncio
async def test_unknown_state_is_rejected():
    handshake = HandshakeManager(InMemoryStateStore(), _twitter_adapter)
    with pytest.raises(AuthStateError):
        await handshake.complete("never-issued", "twitter")


@pytest.mark.asyncio
async def test_unconfigured_provider_cannot_begin():
    store = InMemoryStateStore()
    handshake = HandshakeManager(
        store,
        lambda _p: TwitterAdapter(client_id="", client_secret="", redirect_uri=""),
    )
    with pytest.raises(ConnectorUnavailableError):
        await handshake.begin("twitter", "user-7")
    assert await handshake.pending_count() == 0
