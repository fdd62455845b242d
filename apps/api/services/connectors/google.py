"""Gmail adapter: Google OAuth with offline refresh tokens; message metadata via the Gmail API."""

from __future__ import annotations

import asyncio
from email.utils import parsedate_to_datetime
from typing import Any, Callable, Dict, List, Optional
from urllib.parse import urlencode

from google.oauth2.credentials import Credentials
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from services.connectors.base import BaseProviderAdapter, categorize_email
from services.connectors.types import (
    ContentPage,
    Provider,
    ProviderContentItem,
    ProviderCredential,
    ProviderIdentity,
)
from services.errors import ProviderError

GOOGLE_AUTHORIZE_URL = "https://accounts.google.com/o/oauth2/v2/auth"
GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
GOOGLE_USERINFO_URL = "https://www.googleapis.com/oauth2/v2/userinfo"
GMAIL_QUERY = "newer_than:30d"
GMAIL_PAGE_SIZE = 50
METADATA_HEADERS = ["From", "To", "Subject", "Date"]


def _header(headers: List[Dict[str, Any]], name: str) -> str:
    for header in headers:
        if str(header.get("name", "")).lower() == name.lower():
            return str(header.get("value") or "")
    return ""


class GmailAdapter(BaseProviderAdapter):
    provider = Provider.GMAIL
    scopes = (
        "https://www.googleapis.com/auth/gmail.readonly",
        "https://www.googleapis.com/auth/userinfo.email",
    )

    def authorization_url(self, state: str, code_challenge: Optional[str] = None) -> str:
        params = {
            "client_id": self.client_id,
            "redirect_uri": self.redirect_uri,
            "response_type": "code",
            "scope": " ".join(self.scopes),
            "access_type": "offline",
            "prompt": "consent",
            "state": state,
        }
        return f"{GOOGLE_AUTHORIZE_URL}?{urlencode(params)}"

    async def exchange_code(self, code: str, code_verifier: Optional[str] = None) -> ProviderCredential:
        body = await self._request_json(
            "POST",
            GOOGLE_TOKEN_URL,
            data={
                "code": code,
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                "redirect_uri": self.redirect_uri,
                "grant_type": "authorization_code",
            },
        )
        return self._credential_from_token_response(body)

    async def refresh_credential(self, refresh_token: str) -> ProviderCredential:
        # Google keeps the refresh token stable; the response omits it.
        body = await self._request_json(
            "POST",
            GOOGLE_TOKEN_URL,
            data={
                "refresh_token": refresh_token,
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                "grant_type": "refresh_token",
            },
        )
        return self._credential_from_token_response(body)

    async def fetch_identity(self, access_token: str) -> ProviderIdentity:
        body = await self._request_json("GET", GOOGLE_USERINFO_URL, headers=self._bearer(access_token))
        external_id = body.get("id") or body.get("email")
        if not external_id:
            raise ProviderError(self.provider.value, "userinfo response missing id", payload=body)
        email = body.get("email")
        return ProviderIdentity(
            external_id=str(external_id),
            display_name=body.get("name") or (str(email).split("@", 1)[0] if email else None),
            email=email,
        )

    async def _execute(self, request_factory: Callable[[], Any]) -> Dict[str, Any]:
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(lambda: request_factory().execute()),
                timeout=self.timeout_seconds,
            )
        except HttpError as exc:
            status = getattr(getattr(exc, "resp", None), "status", None)
            raise ProviderError(
                self.provider.value,
                f"Gmail API call failed: {exc}",
                status_code=int(status) if status else None,
            ) from exc
        except (asyncio.TimeoutError, OSError) as exc:
            raise ProviderError(self.provider.value, f"Gmail API call failed: {exc!r}") from exc

    async def fetch_content_page(
        self,
        access_token: str,
        cursor: Optional[str] = None,
        external_id: Optional[str] = None,
    ) -> ContentPage:
        service = build("gmail", "v1", credentials=Credentials(token=access_token), cache_discovery=False)
        messages_api = service.users().messages()
        list_kwargs: Dict[str, Any] = {"userId": "me", "maxResults": GMAIL_PAGE_SIZE, "q": GMAIL_QUERY}
        if cursor:
            list_kwargs["pageToken"] = cursor
        listing = await self._execute(lambda: messages_api.list(**list_kwargs))

        items: List[ProviderContentItem] = []
        for message in listing.get("messages") or []:
            message_id = message.get("id")
            if not message_id:
                continue
            full = await self._execute(
                lambda: messages_api.get(
                    userId="me",
                    id=message_id,
                    format="metadata",
                    metadataHeaders=METADATA_HEADERS,
                )
            )
            headers = (full.get("payload") or {}).get("headers") or []
            subject = _header(headers, "Subject")
            date_value = _header(headers, "Date")
            try:
                timestamp = parsedate_to_datetime(date_value) if date_value else None
            except (TypeError, ValueError):
                timestamp = None
            items.append(
                ProviderContentItem(
                    provider_item_id=str(message_id),
                    kind="email",
                    text=subject,
                    timestamp=timestamp,
                    metadata={
                        "sender": _header(headers, "From"),
                        "recipient": _header(headers, "To"),
                        "category": categorize_email(subject),
                        "thread_id": full.get("threadId"),
                    },
                )
            )
        next_token = listing.get("nextPageToken")
        return ContentPage(items=items, next_cursor=str(next_token) if next_token else None)
