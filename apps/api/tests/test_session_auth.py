from datetime import timedelta
from unittest.mock import AsyncMock, patch

import fakeredis.aioredis
import pytest
from fastapi import Depends, FastAPI
from httpx import ASGITransport, AsyncClient
from jose import jwt
from redis.exceptions import ConnectionError as RedisConnectionError

from config import settings
from routers import rate_limit as rate_limit_module
from routers.auth_scope import AuthContext, get_auth_context
from routers.rate_limit import rate_limit
from services.session_token import SessionTokenError, create_session_token, decode_session_token
from services.timeutils import utc_now


def _probe_app() -> FastAPI:
    probe = FastAPI()

    @probe.get("/limited", dependencies=[Depends(rate_limit("probe", limit=2, window_seconds=60))])
    async def limited():
        return {"ok": True}

    @probe.get("/whoami")
    async def whoami(auth: AuthContext = Depends(get_auth_context)):
        return {"user_id": auth.user_id, "email": auth.email}

    return probe


def test_session_token_round_trip():
    issued = create_session_token("user-42", "u42@example.com")
    claims = decode_session_token(issued.token)

    assert claims.user_id == "user-42"
    assert claims.email == "u42@example.com"
    assert int(claims.expires_at.timestamp()) == int(issued.expires_at.timestamp())


def test_expired_session_token_is_rejected():
    issued = create_session_token("user-42", now=utc_now() - timedelta(hours=3), ttl=timedelta(hours=1))
    with pytest.raises(SessionTokenError, match="expired"):
        decode_session_token(issued.token)


def test_foreign_token_type_is_rejected():
    forged = jwt.encode(
        {"sub": "user-42", "iss": "lifeline-ingest", "type": "refresh", "exp": int(utc_now().timestamp()) + 60},
        settings.JWT_SECRET,
        algorithm=settings.JWT_ALGORITHM,
    )
    with pytest.raises(SessionTokenError):
        decode_session_token(forged)


def test_blank_user_id_cannot_be_issued():
    with pytest.raises(SessionTokenError):
        create_session_token("  ")


@pytest.mark.asyncio
async def test_bearer_auth_resolves_user_and_challenges_missing_token():
    token = create_session_token("user-7", "seven@example.com").token
    async with AsyncClient(transport=ASGITransport(app=_probe_app()), base_url="http://test") as client:
        ok = await client.get("/whoami", headers={"Authorization": f"Bearer {token}"})
        missing = await client.get("/whoami")
        garbage = await client.get("/whoami", headers={"Authorization": "Bearer not-a-jwt"})

    assert ok.json() == {"user_id": "user-7", "email": "seven@example.com"}
    assert missing.status_code == 401
    assert missing.headers["www-authenticate"] == "Bearer"
    assert garbage.status_code == 401


@pytest.mark.asyncio
async def test_rate_limit_falls_back_to_local_counters_when_redis_is_down():
    failing = AsyncMock(side_effect=RedisConnectionError("connection refused"))
    with patch.object(rate_limit_module, "_consume_redis_quota", failing):
        async with AsyncClient(transport=ASGITransport(app=_probe_app()), base_url="http://test") as client:
            responses = [await client.get("/limited") for _ in range(3)]

    assert [response.status_code for response in responses] == [200, 200, 429]
    assert int(responses[-1].headers["retry-after"]) >= 1


@pytest.mark.asyncio
async def test_rate_limit_window_is_set_on_first_hit_in_redis():
    fake = fakeredis.aioredis.FakeRedis(decode_responses=True)
    with patch.object(rate_limit_module, "_redis_client", fake):
        async with AsyncClient(transport=ASGITransport(app=_probe_app()), base_url="http://test") as client:
            responses = [await client.get("/limited") for _ in range(3)]
        keys = [key async for key in fake.scan_iter(match="lifeline:rate:probe:*")]
        ttl = await fake.ttl(keys[0])
    await fake.aclose()

    assert [response.status_code for response in responses] == [200, 200, 429]
    assert len(keys) == 1
    assert 0 < ttl <= 60
    assert 1 <= int(responses[-1].headers["retry-after"]) <= 60
