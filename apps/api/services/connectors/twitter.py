"""Twitter (X) adapter: authorization code with PKCE and rotating refresh tokens."""

from __future__ import annotations

from typing import Dict, List, Optional
from urllib.parse import urlencode

from services.connectors.base import BaseProviderAdapter, basic_auth_header, parse_timestamp
from services.connectors.types import (
    ContentPage,
    Provider,
    ProviderContentItem,
    ProviderCredential,
    ProviderIdentity,
)
from services.errors import ProviderError

TWITTER_AUTHORIZE_URL = "https://twitter.com/i/oauth2/authorize"
TWITTER_TOKEN_URL = "https://api.twitter.com/2/oauth2/token"
TWITTER_API_URL = "https://api.twitter.com/2"


class TwitterAdapter(BaseProviderAdapter):
    provider = Provider.TWITTER
    uses_pkce = True
    scopes = ("tweet.read", "users.read", "offline.access")

    def authorization_url(self, state: str, code_challenge: Optional[str] = None) -> str:
        if not code_challenge:
            raise ValueError("Twitter authorization requires a PKCE code_challenge")
        params = {
            "response_type": "code",
            "client_id": self.client_id,
            "redirect_uri": self.redirect_uri,
            "scope": " ".join(self.scopes),
            "state": state,
            "code_challenge": code_challenge,
            "code_challenge_method": "S256",
        }
        return f"{TWITTER_AUTHORIZE_URL}?{urlencode(params)}"

    def _token_headers(self) -> Dict[str, str]:
        return {
            "Content-Type": "application/x-www-form-urlencoded",
            "Authorization": basic_auth_header(self.client_id, self.client_secret),
        }

    async def exchange_code(self, code: str, code_verifier: Optional[str] = None) -> ProviderCredential:
        if not code_verifier:
            raise ProviderError(self.provider.value, "code exchange requires the PKCE verifier")
        body = await self._request_json(
            "POST",
            TWITTER_TOKEN_URL,
            data={
                "code": code,
                "grant_type": "authorization_code",
                "client_id": self.client_id,
                "redirect_uri": self.redirect_uri,
                "code_verifier": code_verifier,
            },
            headers=self._token_headers(),
        )
        return self._credential_from_token_response(body)

    async def refresh_credential(self, refresh_token: str) -> ProviderCredential:
        body = await self._request_json(
            "POST",
            TWITTER_TOKEN_URL,
            data={
                "refresh_token": refresh_token,
                "grant_type": "refresh_token",
                "client_id": self.client_id,
            },
            headers=self._token_headers(),
        )
        return self._credential_from_token_response(body)

    async def fetch_identity(self, access_token: str) -> ProviderIdentity:
        body = await self._request_json("GET", f"{TWITTER_API_URL}/users/me", headers=self._bearer(access_token))
        data = body.get("data") or {}
        if not data.get("id"):
            raise ProviderError(self.provider.value, "identity response missing data.id", payload=body)
        return ProviderIdentity(
            external_id=str(data["id"]),
            display_name=data.get("name") or data.get("username"),
        )

    async def fetch_content_page(
        self,
        access_token: str,
        cursor: Optional[str] = None,
        external_id: Optional[str] = None,
    ) -> ContentPage:
        if not external_id:
            raise ProviderError(self.provider.value, "timeline fetch requires the Twitter user id")
        params = {
            "max_results": 100,
            "tweet.fields": "created_at,public_metrics,attachments",
            "expansions": "attachments.media_keys",
            "media.fields": "url,preview_image_url,type",
        }
        if cursor:
            params["pagination_token"] = cursor
        body = await self._request_json(
            "GET",
            f"{TWITTER_API_URL}/users/{external_id}/tweets",
            params=params,
            headers=self._bearer(access_token),
        )

        media_by_key = {}
        for media in (body.get("includes") or {}).get("media") or []:
            url = media.get("url") or media.get("preview_image_url")
            if media.get("media_key") and url:
                media_by_key[media["media_key"]] = str(url)

        items: List[ProviderContentItem] = []
        for tweet in body.get("data") or []:
            if not tweet.get("id"):
                continue
            media_keys = (tweet.get("attachments") or {}).get("media_keys") or []
            metrics = tweet.get("public_metrics") or {}
            items.append(
                ProviderContentItem(
                    provider_item_id=str(tweet["id"]),
                    kind="tweet",
                    text=tweet.get("text"),
                    media_urls=tuple(media_by_key[key] for key in media_keys if key in media_by_key),
                    timestamp=parse_timestamp(tweet.get("created_at")),
                    engagement_count=int(metrics.get("like_count") or 0),
                    metadata={"public_metrics": metrics} if metrics else {},
                )
            )
        next_token = (body.get("meta") or {}).get("next_token")
        return ContentPage(items=items, next_cursor=str(next_token) if next_token else None)
