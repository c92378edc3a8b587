"""Data models for assets and thumbnail jobs."""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional
from uuid import UUID


class AssetStatus(str, Enum):
    """Asset processing status values."""

    PENDING_UPLOAD = "pending_upload"
    UPLOADED = "uploaded"
    QUEUED = "queued"
    PROCESSING = "processing"
    READY = "ready"
    FAILED = "failed"


# Statuses from which a repeated completion notification is a no-op.
PAST_UPLOADED_STATUSES = frozenset(
    {
        AssetStatus.QUEUED,
        AssetStatus.PROCESSING,
        AssetStatus.READY,
        AssetStatus.FAILED,
    }
)


class JobStatus(str, Enum):
    """Job status values. Succeeded jobs are deleted, not kept."""

    PENDING = "pending"
    DEAD = "dead"


class Variant:
    """A stored, resized rendition of an asset's original."""

    def __init__(self, key: str, width: int, height: int, content_type: str):
        self.key = key
        self.width = width
        self.height = height
        self.content_type = content_type

    def to_dict(self) -> Dict[str, Any]:
        return {
            "key": self.key,
            "width": self.width,
            "height": self.height,
            "content_type": self.content_type,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Variant":
        return cls(
            key=data["key"],
            width=int(data["width"]),
            height=int(data["height"]),
            content_type=data.get("content_type", "image/jpeg"),
        )

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Variant):
            return NotImplemented
        return self.to_dict() == other.to_dict()

    def __repr__(self) -> str:
        return f"Variant(key={self.key!r}, width={self.width}, height={self.height})"


class Asset:
    """Represents an uploaded media asset record."""

    def __init__(
        self,
        id: UUID,
        owner_id: str,
        original_key: str,
        content_type: str,
        status: AssetStatus,
        variants: Optional[Dict[str, Variant]] = None,
        last_error: Optional[str] = None,
        created_at: Optional[datetime] = None,
        updated_at: Optional[datetime] = None,
    ):
        self.id = id
        self.owner_id = owner_id
        self.original_key = original_key
        self.content_type = content_type
        self.status = AssetStatus(status) if isinstance(status, str) else status
        self.variants = variants or {}
        self.last_error = last_error
        self.created_at = created_at
        self.updated_at = updated_at

    def to_dict(self) -> Dict[str, Any]:
        """Convert asset to dictionary for JSON serialization."""
        return {
            "id": str(self.id),
            "owner_id": self.owner_id,
            "original_key": self.original_key,
            "content_type": self.content_type,
            "status": self.status.value,
            "variants": {
                label: variant.to_dict() for label, variant in self.variants.items()
            },
            "last_error": self.last_error,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


class Job:
    """Represents a thumbnail job record."""

    def __init__(
        self,
        id: UUID,
        asset_id: UUID,
        status: JobStatus,
        attempt: int,
        next_run_at: datetime,
        lease_owner: Optional[str] = None,
        lease_expires_at: Optional[datetime] = None,
        last_error: Optional[Dict[str, Any]] = None,
        created_at: Optional[datetime] = None,
        updated_at: Optional[datetime] = None,
    ):
        self.id = id
        self.asset_id = asset_id
        self.status = JobStatus(status) if isinstance(status, str) else status
        self.attempt = attempt
        self.next_run_at = next_run_at
        self.lease_owner = lease_owner
        self.lease_expires_at = lease_expires_at
        self.last_error = last_error
        self.created_at = created_at
        self.updated_at = updated_at

    def is_leased(self, now: datetime) -> bool:
        """True while some worker holds an unexpired lease."""
        return (
            self.lease_owner is not None
            and self.lease_expires_at is not None
            and self.lease_expires_at > now
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert job to dictionary for JSON serialization."""
        return {
            "id": str(self.id),
            "asset_id": str(self.asset_id),
            "status": self.status.value,
            "attempt": self.attempt,
            "next_run_at": self.next_run_at.isoformat() if self.next_run_at else None,
            "lease_owner": self.lease_owner,
            "lease_expires_at": (
                self.lease_expires_at.isoformat() if self.lease_expires_at else None
            ),
            "last_error": self.last_error,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


def original_key(owner_id: str, asset_id: UUID) -> str:
    """Object-store key reserved for an asset's raw upload."""
    return f"{owner_id}/{asset_id}/original"


def variant_key(owner_id: str, asset_id: UUID, label: str) -> str:
    """Deterministic object-store key for one variant of an asset."""
    return f"{owner_id}/{asset_id}/{label}"
