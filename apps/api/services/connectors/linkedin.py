"""LinkedIn adapter: standard authorization code with refresh tokens."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from urllib.parse import urlencode

from services.connectors.base import BaseProviderAdapter
from services.connectors.types import (
    ContentPage,
    Provider,
    ProviderContentItem,
    ProviderCredential,
    ProviderIdentity,
)
from services.errors import ProviderError

LINKEDIN_AUTHORIZE_URL = "https://www.linkedin.com/oauth/v2/authorization"
LINKEDIN_TOKEN_URL = "https://www.linkedin.com/oauth/v2/accessToken"
LINKEDIN_API_URL = "https://api.linkedin.com/v2"
PAGE_SIZE = 50

_FORM_HEADERS = {"Content-Type": "application/x-www-form-urlencoded"}


def _share_content(post: Dict[str, Any]) -> Dict[str, Any]:
    specific = post.get("specificContent") or {}
    return specific.get("com.linkedin.ugc.ShareContent") or {}


class LinkedInAdapter(BaseProviderAdapter):
    provider = Provider.LINKEDIN
    scopes = ("openid", "profile", "email", "w_member_social")

    def authorization_url(self, state: str, code_challenge: Optional[str] = None) -> str:
        params = {
            "response_type": "code",
            "client_id": self.client_id,
            "redirect_uri": self.redirect_uri,
            "state": state,
            "scope": " ".join(self.scopes),
        }
        return f"{LINKEDIN_AUTHORIZE_URL}?{urlencode(params)}"

    async def exchange_code(self, code: str, code_verifier: Optional[str] = None) -> ProviderCredential:
        body = await self._request_json(
            "POST",
            LINKEDIN_TOKEN_URL,
            data={
                "grant_type": "authorization_code",
                "code": code,
                "redirect_uri": self.redirect_uri,
                "client_id": self.client_id,
                "client_secret": self.client_secret,
            },
            headers=_FORM_HEADERS,
        )
        return self._credential_from_token_response(body)

    async def refresh_credential(self, refresh_token: str) -> ProviderCredential:
        body = await self._request_json(
            "POST",
            LINKEDIN_TOKEN_URL,
            data={
                "grant_type": "refresh_token",
                "refresh_token": refresh_token,
                "client_id": self.client_id,
                "client_secret": self.client_secret,
            },
            headers=_FORM_HEADERS,
        )
        return self._credential_from_token_response(body)

    async def fetch_identity(self, access_token: str) -> ProviderIdentity:
        body = await self._request_json("GET", f"{LINKEDIN_API_URL}/userinfo", headers=self._bearer(access_token))
        if not body.get("sub"):
            raise ProviderError(self.provider.value, "userinfo response missing sub", payload=body)
        return ProviderIdentity(external_id=str(body["sub"]), display_name=body.get("name"), email=body.get("email"))

    async def fetch_content_page(
        self,
        access_token: str,
        cursor: Optional[str] = None,
        external_id: Optional[str] = None,
    ) -> ContentPage:
        if not external_id:
            raise ProviderError(self.provider.value, "post fetch requires the member id")
        start = int(cursor) if cursor and cursor.isdigit() else 0
        body = await self._request_json(
            "GET",
            f"{LINKEDIN_API_URL}/ugcPosts",
            params={
                "q": "authors",
                "authors": f"List(urn:li:person:{external_id})",
                "start": start,
                "count": PAGE_SIZE,
            },
            headers={**self._bearer(access_token), "X-Restli-Protocol-Version": "2.0.0"},
        )

        elements = body.get("elements") or []
        items: List[ProviderContentItem] = []
        for post in elements:
            if not post.get("id"):
                continue
            share = _share_content(post)
            commentary = (share.get("shareCommentary") or {}).get("text")
            media_urls = tuple(
                str(media["originalUrl"])
                for media in share.get("media") or []
                if media.get("originalUrl")
            )
            created_ms = (post.get("created") or {}).get("time")
            timestamp = (
                datetime.fromtimestamp(int(created_ms) / 1000, tz=timezone.utc)
                if created_ms
                else None
            )
            items.append(
                ProviderContentItem(
                    provider_item_id=str(post["id"]),
                    kind="post",
                    text=commentary,
                    media_urls=media_urls,
                    timestamp=timestamp,
                )
            )

        paging = body.get("paging") or {}
        total = paging.get("total")
        next_start = start + len(elements)
        has_more = len(elements) >= PAGE_SIZE and (total is None or next_start < int(total))
        return ContentPage(items=items, next_cursor=str(next_start) if has_more else None)
