"""Instagram and Facebook adapters (code exchange, no PKCE, no rotating refresh token)."""

from __future__ import annotations

from typing import Any, Dict, List, Optional
from urllib.parse import urlencode

from services.connectors.base import BaseProviderAdapter, parse_timestamp
from services.connectors.types import (
    ContentPage,
    Provider,
    ProviderContentItem,
    ProviderCredential,
    ProviderIdentity,
)
from services.errors import ProviderError

INSTAGRAM_AUTHORIZE_URL = "https://api.instagram.com/oauth/authorize"
INSTAGRAM_TOKEN_URL = "https://api.instagram.com/oauth/access_token"
INSTAGRAM_GRAPH_URL = "https://graph.instagram.com"

FACEBOOK_GRAPH_VERSION = "v18.0"
FACEBOOK_AUTHORIZE_URL = f"https://www.facebook.com/{FACEBOOK_GRAPH_VERSION}/dialog/oauth"
FACEBOOK_GRAPH_URL = "https://graph.facebook.com"


def _after_cursor(body: Dict[str, Any]) -> Optional[str]:
    paging = body.get("paging") or {}
    if not paging.get("next"):
        return None
    cursors = paging.get("cursors") or {}
    after = cursors.get("after")
    return str(after) if after else None


class InstagramAdapter(BaseProviderAdapter):
    provider = Provider.INSTAGRAM
    supports_refresh = False
    scopes = ("user_profile", "user_media")

    def authorization_url(self, state: str, code_challenge: Optional[str] = None) -> str:
        params = {
            "client_id": self.client_id,
            "redirect_uri": self.redirect_uri,
            "scope": ",".join(self.scopes),
            "response_type": "code",
            "state": state,
        }
        return f"{INSTAGRAM_AUTHORIZE_URL}?{urlencode(params)}"

    async def exchange_code(self, code: str, code_verifier: Optional[str] = None) -> ProviderCredential:
        body = await self._request_json(
            "POST",
            INSTAGRAM_TOKEN_URL,
            data={
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                "grant_type": "authorization_code",
                "redirect_uri": self.redirect_uri,
                "code": code,
            },
        )
        user_id = body.get("user_id")
        return self._credential_from_token_response(
            body,
            provider_account_id=str(user_id) if user_id is not None else None,
        )

    async def fetch_identity(self, access_token: str) -> ProviderIdentity:
        body = await self._request_json(
            "GET",
            f"{INSTAGRAM_GRAPH_URL}/me",
            params={"fields": "id,username", "access_token": access_token},
        )
        if not body.get("id"):
            raise ProviderError(self.provider.value, "identity response missing id", payload=body)
        return ProviderIdentity(external_id=str(body["id"]), display_name=body.get("username"))

    async def fetch_content_page(
        self,
        access_token: str,
        cursor: Optional[str] = None,
        external_id: Optional[str] = None,
    ) -> ContentPage:
        params = {
            "fields": "id,caption,media_type,media_url,timestamp,like_count",
            "access_token": access_token,
        }
        if cursor:
            params["after"] = cursor
        body = await self._request_json("GET", f"{INSTAGRAM_GRAPH_URL}/me/media", params=params)

        items: List[ProviderContentItem] = []
        for media in body.get("data") or []:
            if not media.get("id"):
                continue
            media_url = media.get("media_url")
            items.append(
                ProviderContentItem(
                    provider_item_id=str(media["id"]),
                    kind=str(media.get("media_type") or "post").lower(),
                    text=media.get("caption"),
                    media_urls=(str(media_url),) if media_url else (),
                    timestamp=parse_timestamp(media.get("timestamp")),
                    engagement_count=int(media.get("like_count") or 0),
                )
            )
        return ContentPage(items=items, next_cursor=_after_cursor(body))


class FacebookAdapter(BaseProviderAdapter):
    provider = Provider.FACEBOOK
    supports_refresh = False
    scopes = ("public_profile", "email", "user_posts")

    def authorization_url(self, state: str, code_challenge: Optional[str] = None) -> str:
        params = {
            "client_id": self.client_id,
            "redirect_uri": self.redirect_uri,
            "scope": ",".join(self.scopes),
            "response_type": "code",
            "state": state,
        }
        return f"{FACEBOOK_AUTHORIZE_URL}?{urlencode(params)}"

    async def exchange_code(self, code: str, code_verifier: Optional[str] = None) -> ProviderCredential:
        body = await self._request_json(
            "GET",
            f"{FACEBOOK_GRAPH_URL}/{FACEBOOK_GRAPH_VERSION}/oauth/access_token",
            params={
                "client_id": self.client_id,
                "redirect_uri": self.redirect_uri,
                "client_secret": self.client_secret,
                "code": code,
            },
        )
        return self._credential_from_token_response(body)

    async def fetch_identity(self, access_token: str) -> ProviderIdentity:
        body = await self._request_json(
            "GET",
            f"{FACEBOOK_GRAPH_URL}/me",
            params={"fields": "id,name,email", "access_token": access_token},
        )
        if not body.get("id"):
            raise ProviderError(self.provider.value, "identity response missing id", payload=body)
        return ProviderIdentity(
            external_id=str(body["id"]),
            display_name=body.get("name"),
            email=body.get("email"),
        )

    async def fetch_content_page(
        self,
        access_token: str,
        cursor: Optional[str] = None,
        external_id: Optional[str] = None,
    ) -> ContentPage:
        params = {
            "fields": "id,message,created_time,full_picture,permalink_url,likes.summary(true)",
            "limit": 25,
            "access_token": access_token,
        }
        if cursor:
            params["after"] = cursor
        body = await self._request_json("GET", f"{FACEBOOK_GRAPH_URL}/me/posts", params=params)

        items: List[ProviderContentItem] = []
        for post in body.get("data") or []:
            if not post.get("id"):
                continue
            picture = post.get("full_picture")
            likes = ((post.get("likes") or {}).get("summary") or {}).get("total_count") or 0
            items.append(
                ProviderContentItem(
                    provider_item_id=str(post["id"]),
                    kind="post",
                    text=post.get("message"),
                    media_urls=(str(picture),) if picture else (),
                    timestamp=parse_timestamp(post.get("created_time")),
                    engagement_count=int(likes),
                    metadata={"permalink_url": post.get("permalink_url")} if post.get("permalink_url") else {},
                )
            )
        return ContentPage(items=items, next_cursor=_after_cursor(body))
