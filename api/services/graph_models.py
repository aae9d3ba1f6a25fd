"""
Identity graph records for LifeGraph.

Six record types make up the graph:
- Person: canonical identity node for one real individual
- IdentityEvidence: one raw identifier (email, phone, platform id) known to
  belong to a Person
- Interaction: one communication event, deduplicated by external_reference
- InteractionParticipant: a Person's role on an Interaction
- SyncState: per-platform pagination cursor
- SyncRun: one execution attempt of a source importer

Records reference each other by id only. Persons are never deleted; a person
superseded by a merge keeps its row with merged_into set.
"""
import uuid
from dataclasses import dataclass, field, asdict
from datetime import datetime
from enum import Enum
from typing import Optional

from api.utils.datetime_utils import from_iso, to_iso, utc_now


def generate_id() -> str:
    """Mint a new record id."""
    return str(uuid.uuid4())


class Platform(str, Enum):
    GOOGLE = "google"
    GMAIL = "gmail"
    WHATSAPP = "whatsapp"
    LINKEDIN = "linkedin"
    SYSTEM = "system"


class IdentifierType(str, Enum):
    EMAIL = "email"
    PHONE = "phone"
    PLATFORM_ID = "platform_user_id"


class RunStatus(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class ParticipantRole(str, Enum):
    SENDER = "sender"
    RECEIVER = "receiver"


@dataclass
class Person:
    """Canonical identity node."""

    id: str = field(default_factory=generate_id)
    full_name: str = ""
    created_at: datetime = field(default_factory=utc_now)
    merged_into: Optional[str] = None  # Forward reference to the surviving person
    confidence_score: float = 0.1  # 0.0-1.0, provisional until corroborated

    @property
    def is_merged(self) -> bool:
        """True if this person was superseded by another."""
        return self.merged_into is not None

    def to_dict(self) -> dict:
        data = asdict(self)
        data["created_at"] = to_iso(self.created_at)
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "Person":
        return cls(
            id=data["id"],
            full_name=data.get("full_name", ""),
            created_at=from_iso(data.get("created_at")) or utc_now(),
            merged_into=data.get("merged_into"),
            confidence_score=float(data.get("confidence_score", 0.1)),
        )


@dataclass
class IdentityEvidence:
    """
    A raw identifier observed on a platform and attributed to a person.

    (identifier_type, lowercase identifier_value) is unique across all
    evidence rows; see match_key.
    """

    person_id: str
    source_platform: Platform
    identifier_type: IdentifierType
    identifier_value: str
    confidence: float = 1.0
    id: str = field(default_factory=generate_id)
    first_seen_at: datetime = field(default_factory=utc_now)

    @property
    def match_key(self) -> tuple[str, str]:
        return evidence_key(self.identifier_type, self.identifier_value)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "person_id": self.person_id,
            "source_platform": self.source_platform.value,
            "identifier_type": self.identifier_type.value,
            "identifier_value": self.identifier_value,
            "confidence": self.confidence,
            "first_seen_at": to_iso(self.first_seen_at),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "IdentityEvidence":
        return cls(
            id=data["id"],
            person_id=data["person_id"],
            source_platform=Platform(data["source_platform"]),
            identifier_type=IdentifierType(data["identifier_type"]),
            identifier_value=data["identifier_value"],
            confidence=float(data.get("confidence", 1.0)),
            first_seen_at=from_iso(data.get("first_seen_at")) or utc_now(),
        )


def evidence_key(identifier_type, identifier_value: str) -> tuple[str, str]:
    """Uniqueness key for evidence: (type, lowercase value)."""
    type_value = identifier_type.value if isinstance(identifier_type, Enum) else str(identifier_type)
    return type_value, identifier_value.lower()


@dataclass
class Interaction:
    """
    A single communication event between the local user and a counterpart.

    Stores a short summary and a pointer to the raw content, NOT the content
    itself. external_reference is the idempotency key across sync runs.
    """

    interaction_type: Platform
    occurred_at: datetime
    source_platform: Platform
    external_reference: str  # gmail-<message id>, wa-<day>-<sender>
    summary_short: str = ""
    raw_content_pointer: str = ""  # Key into the blob store
    id: str = field(default_factory=generate_id)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "interaction_type": self.interaction_type.value,
            "occurred_at": to_iso(self.occurred_at),
            "source_platform": self.source_platform.value,
            "external_reference": self.external_reference,
            "summary_short": self.summary_short,
            "raw_content_pointer": self.raw_content_pointer,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Interaction":
        return cls(
            id=data["id"],
            interaction_type=Platform(data["interaction_type"]),
            occurred_at=from_iso(data["occurred_at"]),
            source_platform=Platform(data["source_platform"]),
            external_reference=data["external_reference"],
            summary_short=data.get("summary_short", ""),
            raw_content_pointer=data.get("raw_content_pointer", ""),
        )


@dataclass
class InteractionParticipant:
    """Join record: a person's role on an interaction."""

    interaction_id: str
    person_id: str
    role: ParticipantRole

    @property
    def id(self) -> str:
        """Composite key, unique per (interaction, person)."""
        return f"{self.interaction_id}:{self.person_id}"

    def to_dict(self) -> dict:
        return {
            "interaction_id": self.interaction_id,
            "person_id": self.person_id,
            "role": self.role.value,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "InteractionParticipant":
        return cls(
            interaction_id=data["interaction_id"],
            person_id=data["person_id"],
            role=ParticipantRole(data["role"]),
        )


@dataclass
class SyncState:
    """Pagination cursor for a platform. At most one live row per platform."""

    platform: Platform
    last_cursor: Optional[str] = None
    last_success_timestamp: Optional[datetime] = None

    def to_dict(self) -> dict:
        return {
            "platform": self.platform.value,
            "last_cursor": self.last_cursor,
            "last_success_timestamp": to_iso(self.last_success_timestamp),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "SyncState":
        return cls(
            platform=Platform(data["platform"]),
            last_cursor=data.get("last_cursor"),
            last_success_timestamp=from_iso(data.get("last_success_timestamp")),
        )


@dataclass
class SyncRun:
    """
    One execution attempt of a source importer.

    Created running; transitions exactly once to completed or failed.
    """

    platform: Platform
    run_id: str = field(default_factory=generate_id)
    started_at: datetime = field(default_factory=utc_now)
    completed_at: Optional[datetime] = None
    status: RunStatus = RunStatus.RUNNING
    error_log: Optional[str] = None

    # Counters (informational, reported by the importer)
    records_processed: int = 0
    records_created: int = 0

    @property
    def is_terminal(self) -> bool:
        return self.status != RunStatus.RUNNING

    @property
    def duration_seconds(self) -> Optional[float]:
        if not self.completed_at:
            return None
        return (self.completed_at - self.started_at).total_seconds()

    def to_dict(self) -> dict:
        return {
            "run_id": self.run_id,
            "platform": self.platform.value,
            "started_at": to_iso(self.started_at),
            "completed_at": to_iso(self.completed_at),
            "status": self.status.value,
            "error_log": self.error_log,
            "records_processed": self.records_processed,
            "records_created": self.records_created,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "SyncRun":
        return cls(
            run_id=data["run_id"],
            platform=Platform(data["platform"]),
            started_at=from_iso(data.get("started_at")) or utc_now(),
            completed_at=from_iso(data.get("completed_at")),
            status=RunStatus(data.get("status", RunStatus.RUNNING.value)),
            error_log=data.get("error_log"),
            records_processed=int(data.get("records_processed") or 0),
            records_created=int(data.get("records_created") or 0),
        )
