"""Outlook adapter: Microsoft identity platform v2 with refresh tokens; mail via Graph."""

from __future__ import annotations

from typing import Dict, List, Optional
from urllib.parse import urlencode

from config import settings
from services.connectors.base import BaseProviderAdapter, categorize_email, parse_timestamp
from services.connectors.types import (
    ContentPage,
    Provider,
    ProviderContentItem,
    ProviderCredential,
    ProviderIdentity,
)
from services.errors import ProviderError

GRAPH_API_URL = "https://graph.microsoft.com/v1.0"
MAIL_SCOPE = "Mail.Read offline_access"

_FORM_HEADERS = {"Content-Type": "application/x-www-form-urlencoded"}


class OutlookAdapter(BaseProviderAdapter):
    provider = Provider.OUTLOOK
    scopes = ("openid", "profile", "email", "Mail.Read", "offline_access")

    def __init__(self, *, tenant_id: Optional[str] = None, **kwargs) -> None:
        super().__init__(**kwargs)
        self.tenant_id = tenant_id or settings.OUTLOOK_TENANT_ID or "common"

    @property
    def _login_base(self) -> str:
        return f"https://login.microsoftonline.com/{self.tenant_id}/oauth2/v2.0"

    def authorization_url(self, state: str, code_challenge: Optional[str] = None) -> str:
        params = {
            "client_id": self.client_id,
            "response_type": "code",
            "redirect_uri": self.redirect_uri,
            "response_mode": "query",
            "scope": " ".join(self.scopes),
            "state": state,
        }
        return f"{self._login_base}/authorize?{urlencode(params)}"

    async def exchange_code(self, code: str, code_verifier: Optional[str] = None) -> ProviderCredential:
        body = await self._request_json(
            "POST",
            f"{self._login_base}/token",
            data={
                "client_id": self.client_id,
                "scope": MAIL_SCOPE,
                "code": code,
                "redirect_uri": self.redirect_uri,
                "grant_type": "authorization_code",
                "client_secret": self.client_secret,
            },
            headers=_FORM_HEADERS,
        )
        return self._credential_from_token_response(body)

    async def refresh_credential(self, refresh_token: str) -> ProviderCredential:
        body = await self._request_json(
            "POST",
            f"{self._login_base}/token",
            data={
                "client_id": self.client_id,
                "scope": MAIL_SCOPE,
                "refresh_token": refresh_token,
                "grant_type": "refresh_token",
                "client_secret": self.client_secret,
            },
            headers=_FORM_HEADERS,
        )
        return self._credential_from_token_response(body)

    async def fetch_identity(self, access_token: str) -> ProviderIdentity:
        body = await self._request_json("GET", f"{GRAPH_API_URL}/me", headers=self._bearer(access_token))
        if not body.get("id"):
            raise ProviderError(self.provider.value, "Graph /me response missing id", payload=body)
        return ProviderIdentity(
            external_id=str(body["id"]),
            display_name=body.get("displayName"),
            email=body.get("mail") or body.get("userPrincipalName"),
        )

    async def fetch_content_page(
        self,
        access_token: str,
        cursor: Optional[str] = None,
        external_id: Optional[str] = None,
    ) -> ContentPage:
        # Graph paginates with an absolute @odata.nextLink; it is the cursor verbatim.
        if cursor and cursor.startswith(GRAPH_API_URL):
            body = await self._request_json("GET", cursor, headers=self._bearer(access_token))
        else:
            body = await self._request_json(
                "GET",
                f"{GRAPH_API_URL}/me/messages",
                params={
                    "$top": 50,
                    "$select": "id,subject,from,toRecipients,receivedDateTime,hasAttachments",
                    "$orderby": "receivedDateTime desc",
                },
                headers=self._bearer(access_token),
            )

        items: List[ProviderContentItem] = []
        for message in body.get("value") or []:
            if not message.get("id"):
                continue
            subject = message.get("subject") or ""
            sender = ((message.get("from") or {}).get("emailAddress") or {}).get("address") or ""
            recipients: List[Dict] = message.get("toRecipients") or []
            recipient = ((recipients[0] if recipients else {}).get("emailAddress") or {}).get("address") or ""
            items.append(
                ProviderContentItem(
                    provider_item_id=str(message["id"]),
                    kind="email",
                    text=subject,
                    timestamp=parse_timestamp(message.get("receivedDateTime")),
                    metadata={
                        "sender": sender,
                        "recipient": recipient,
                        "has_attachments": bool(message.get("hasAttachments")),
                        "category": categorize_email(subject),
                    },
                )
            )
        next_link = body.get("@odata.nextLink")
        return ContentPage(items=items, next_cursor=str(next_link) if next_link else None)
