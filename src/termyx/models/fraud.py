from __future__ import annotations

from datetime import datetime
from typing import ClassVar, Optional

from pydantic import Field

from .base import DBSerializableModel


class DeviceFingerprint(DBSerializableModel):
    """
    One recorded signup device. Append-only; duplicate-account detection
    happens at query time, there is no uniqueness constraint on the hash.
    """

    collection_name: ClassVar[str] = "device_fingerprints"

    id: Optional[str] = Field(default=None)
    fingerprint_hash: str
    user_id: str
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)


class IPSignupRecord(DBSerializableModel):
    collection_name: ClassVar[str] = "ip_signup_tracking"

    id: Optional[str] = Field(default=None)
    ip_address: str
    user_id: str
    created_at: datetime = Field(default_factory=datetime.utcnow)


class BlockedEmailDomain(DBSerializableModel):
    collection_name: ClassVar[str] = "blocked_email_domains"

    id: Optional[str] = Field(default=None)
    domain: str = Field(description="Lowercase domain, matched exactly.")
    reason: str = "disposable"
    created_at: datetime = Field(default_factory=datetime.utcnow)
