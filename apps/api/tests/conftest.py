import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("OAUTH_STATE_BACKEND", "memory")

from typing import Dict, List, Optional, Union
from urllib.parse import urlencode

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from database import Base
from main import app
from routers import rate_limit
from services.connectors import (
    BaseProviderAdapter,
    ContentPage,
    Provider,
    ProviderCredential,
    ProviderIdentity,
)
from services.errors import ProviderError


class FakeAdapter(BaseProviderAdapter):
    """Scriptable provider adapter; records every call it receives."""

    def __init__(
        self,
        provider: Provider = Provider.TWITTER,
        *,
        uses_pkce: Optional[bool] = None,
        supports_refresh: bool = True,
        pages: Optional[List[Union[ContentPage, Exception]]] = None,
        identity: Optional[ProviderIdentity] = None,
        credential: Optional[ProviderCredential] = None,
        exchange_error: Optional[Exception] = None,
        failing_refresh_tokens: Optional[set] = None,
    ) -> None:
        self.provider = provider
        super().__init__(
            client_id="client-id",
            client_secret="client-secret",
            redirect_uri="https://app.test/callback",
        )
        self.uses_pkce = (provider == Provider.TWITTER) if uses_pkce is None else uses_pkce
        self.supports_refresh = supports_refresh
        self.pages = list(pages or [])
        self.identity = identity or ProviderIdentity(external_id="ext-1", display_name="Ext One", email="ext@example.com")
        self.credential = credential or ProviderCredential(
            access_token="access-1",
            refresh_token="refresh-1",
            expires_in=3600,
            scope="read",
        )
        self.exchange_error = exchange_error
        self.failing_refresh_tokens = set(failing_refresh_tokens or ())
        self.exchange_calls: List[Dict[str, Optional[str]]] = []
        self.refresh_calls: List[str] = []
        self.fetch_calls: List[Dict[str, Optional[str]]] = []

    def authorization_url(self, state: str, code_challenge: Optional[str] = None) -> str:
        params = {"client_id": self.client_id, "state": state}
        if code_challenge:
            params["code_challenge"] = code_challenge
            params["code_challenge_method"] = "S256"
        return f"https://provider.test/authorize?{urlencode(params)}"

    async def exchange_code(self, code: str, code_verifier: Optional[str] = None) -> ProviderCredential:
        self.exchange_calls.append({"code": code, "code_verifier": code_verifier})
        if self.exchange_error is not None:
            raise self.exchange_error
        return self.credential

    async def refresh_credential(self, refresh_token: str) -> ProviderCredential:
        self.refresh_calls.append(refresh_token)
        if refresh_token in self.failing_refresh_tokens:
            raise ProviderError(self.provider.value, "refresh rejected", status_code=400)
        return ProviderCredential(
            access_token=f"rotated-{refresh_token}",
            refresh_token=f"{refresh_token}-next",
            expires_in=7200,
        )

    async def fetch_identity(self, access_token: str) -> ProviderIdentity:
        return self.identity

    async def fetch_content_page(
        self,
        access_token: str,
        cursor: Optional[str] = None,
        external_id: Optional[str] = None,
    ) -> ContentPage:
        self.fetch_calls.append({"access_token": access_token, "cursor": cursor, "external_id": external_id})
        if not self.pages:
            return ContentPage(items=[])
        page = self.pages.pop(0)
        if isinstance(page, Exception):
            raise page
        return page


@pytest.fixture
def fake_adapter_cls():
    return FakeAdapter


@pytest_asyncio.fixture
async def session_maker(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'lifeline.db'}")
    maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield maker
    await engine.dispose()


@pytest.fixture(autouse=True)
def reset_local_rate_limit_counters():
    """Keep in-memory rate-limit state isolated between tests."""
    previous = getattr(app.state, "disable_rate_limits", False)
    app.state.disable_rate_limits = True
    rate_limit._local_counters.clear()
    yield
    rate_limit._local_counters.clear()
    app.state.disable_rate_limits = previous
