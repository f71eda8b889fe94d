"""
Sync Pipeline Exceptions
========================

Custom exception types for the Shopify sync and reconciliation pipeline.

WHY THIS FILE EXISTS
--------------------
Each failure has a different blast radius:
- Upstream errors fail one sync run (recorded on its SyncLog row)
- Malformed records skip one record, the batch continues
- Storage errors abort the rest of the batch
- Missing credentials are reported to the caller before anything starts
- Bad webhook signatures drop one delivery, the request is still acknowledged

RELATED FILES
-------------
- storepulse/services/shopify_client.py: Raises Upstream* errors
- storepulse/services/reconciliation.py: Raises MalformedRecordError, StorageError
- storepulse/services/shopify_sync_service.py: Catches and records them
- storepulse/routers/shopify_webhooks.py: Handles SignatureVerificationError
"""

from typing import Optional


class StorePulseError(Exception):
    """Base exception for all pipeline errors."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class UpstreamError(StorePulseError):
    """The Shopify API could not be used for this request."""


class UpstreamAuthError(UpstreamError):
    """Shopify rejected the access token (401/403)."""


class UpstreamRequestError(UpstreamError):
    """
    Non-success response, timeout or transport failure.

    `status_code` is None when no HTTP response was received.
    """

    def __init__(self, message: str, status_code: Optional[int] = None, body: Optional[str] = None):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class MalformedRecordError(StorePulseError):
    """One external record could not be mapped; it is skipped."""

    def __init__(self, message: str, kind: Optional[str] = None):
        super().__init__(message)
        self.kind = kind


class StorageError(StorePulseError):
    """Local persistence failed; the current batch stops here."""


class NotConnectedError(StorePulseError):
    """Sync requested for a tenant without a stored access token."""


class TenantNotFoundError(StorePulseError):
    """No tenant exists with the given id."""


class SignatureVerificationError(StorePulseError):
    """Webhook HMAC did not match the raw request body."""


class SyncLogStateError(StorePulseError):
    """A terminal SyncLog row was asked to transition again."""
