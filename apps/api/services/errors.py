"""Error taxonomy shared by the OAuth and ingestion services."""

from __future__ import annotations

from typing import Any, Optional


class IngestionCoreError(Exception):
    """Base class for credential lifecycle and ingestion failures."""


class AuthStateError(IngestionCoreError):
    """Authorization state is missing, expired, replayed or mismatched. Never retried."""

    def __init__(self, message: str = "Authorization state not found.", *, reason: str = "not_found") -> None:
        super().__init__(message)
        self.reason = reason


class ProviderError(IngestionCoreError):
    """Non-2xx, network or malformed response from a provider call."""

    def __init__(
        self,
        provider: str,
        message: str,
        *,
        status_code: Optional[int] = None,
        payload: Any = None,
    ) -> None:
        super().__init__(f"{provider}: {message}")
        self.provider = provider
        self.status_code = status_code
        self.payload = payload

    @property
    def is_auth_failure(self) -> bool:
        return self.status_code in (401, 403)

    @property
    def retryable(self) -> bool:
        if self.status_code is None:
            return True
        return self.status_code in (408, 429) or self.status_code >= 500


class StorageError(IngestionCoreError):
    """Local filesystem or database failure while persisting ingested data."""


class UnsupportedOperation(IngestionCoreError):
    """Operation not offered by a provider (e.g. refresh without rotating tokens)."""


class MediaDownloadError(IngestionCoreError):
    """Remote media could not be downloaded."""

    def __init__(self, message: str, *, retryable: bool = True, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.retryable = retryable
        self.status_code = status_code


class BlockedMediaUrlError(MediaDownloadError):
    """Media URL points at a disallowed scheme or private network host."""

    def __init__(self, message: str) -> None:
        super().__init__(message, retryable=False)
