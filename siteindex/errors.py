"""siteindex.errors — Error taxonomy shared by the index and graph layers."""

from __future__ import annotations

from typing import Any, Dict, Optional


class SiteIndexError(Exception):
    """Base class for every error raised by siteindex."""

    status_code = 500

    def __init__(self, message: str, *, data: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.data = data or {}


class ValidationError(SiteIndexError, ValueError):
    """Malformed input, rejected before any I/O."""

    status_code = 400


class AccessDenied(SiteIndexError):
    status_code = 403


class NotFound(SiteIndexError):
    status_code = 404


class Conflict(SiteIndexError):
    """A unique-key pointer already belongs to a different entity."""

    status_code = 409


class TransientStoreError(SiteIndexError, RuntimeError):
    """A page, batch or transaction call failed for infrastructure reasons.

    Safe to retry the same item-level call. A rename must re-verify its
    uniqueness precondition before being retried.
    """

    status_code = 503


class ScopeLimitExceeded(TransientStoreError):
    """The collector hit its page cap before the store stopped paginating."""


class PartialTraversalFailure(SiteIndexError):
    """One content node's block tree could not be walked."""

    def __init__(self, node_id: str, message: str):
        super().__init__(f"{node_id}: {message}", data={"node_id": node_id})
        self.node_id = node_id
