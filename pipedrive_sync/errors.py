from __future__ import annotations

from typing import Optional


class SyncError(Exception):
    """Base class for every failure surfaced by a person sync."""

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class ConfigurationError(SyncError):
    """Credentials, mapping table or input data must be fixed before retrying."""


class RemoteApiError(SyncError):
    """A Pipedrive search/create/update call failed."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class OrchestrationError(SyncError):
    """Wraps a stage failure as "<context>: <inner message>"."""

    def __init__(self, stage: str, context: str, inner: Exception, person_name: Optional[str] = None):
        inner_message = getattr(inner, "message", None) or str(inner) or type(inner).__name__
        super().__init__(f"{context}: {inner_message}")
        self.stage = stage
        self.inner = inner
        self.person_name = person_name
