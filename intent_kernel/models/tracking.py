"""Tracked observations — what a task saw when it last read a resource."""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel


class FreshnessStatus(str, Enum):
    FRESH = "fresh"
    STALE = "stale"
    UNOBSERVED = "unobserved"   # No baseline; callers allow


class TrackedObservation(BaseModel):
    """One live observation per (task, resource)."""

    resource: str                           # Canonical workspace-relative path
    fingerprint: str
    observed_at: datetime
    intent_id: Optional[str] = None         # Intent active when the read happened


class FreshnessReport(BaseModel):
    """Outcome of comparing a stored baseline against the resource's current content."""

    resource: str
    status: FreshnessStatus
    baseline_fingerprint: Optional[str] = None
    current_fingerprint: Optional[str] = None   # None when the resource is gone or unreadable
