"""
Identity Resolver for the LifeGraph identity graph.

Deterministic resolution only: an identifier maps to a person when an
evidence row with the same (type, normalized value) exists. No fuzzy
scoring, no cross-type matching.

Every importer obtains person ids through this resolver, which keeps the
at-most-one-person-per-identifier invariant. Two different identifiers only
end up on one person when a source explicitly attaches secondary evidence
to an already-resolved person (attach_evidence).
"""
import logging
from dataclasses import dataclass
from typing import Callable, Optional

from api.services.entity_store import EntityStore
from api.services.graph_models import IdentityEvidence, IdentifierType, Person, Platform
from api.utils.datetime_utils import utc_now
from config.identity_config import IdentityConfig
from config.settings import settings

logger = logging.getLogger(__name__)


class InvalidIdentifierError(ValueError):
    """Raised when an identifier is empty after normalization."""
    pass


def normalize_identifier(value: Optional[str]) -> str:
    """Trim and lowercase a raw identifier."""
    return (value or "").strip().lower()


@dataclass
class ResolutionResult:
    """Result of identity resolution."""

    person_id: str
    is_new: bool  # True if a new person was minted


class IdentityResolver:
    """Maps (platform, identifier type, value) to a person id."""

    def __init__(self, store: EntityStore, clock: Callable = utc_now):
        """
        Initialize the resolver.

        Args:
            store: EntityStore holding persons and evidence
            clock: Time source for created_at / first_seen_at
        """
        self._store = store
        self._clock = clock

    @property
    def store(self) -> EntityStore:
        return self._store

    def resolve(
        self,
        platform: Platform,
        identifier_type: IdentifierType,
        raw_value: str,
        name_hint: Optional[str] = None,
    ) -> str:
        """
        Resolve an identifier to a person id, minting a person if unseen.

        Args:
            platform: Platform the identifier was observed on
            identifier_type: Kind of identifier
            raw_value: Identifier as observed (case and whitespace ignored)
            name_hint: Display name for a newly minted person

        Returns:
            Person id

        Raises:
            InvalidIdentifierError: If the identifier is blank
        """
        return self.resolve_detailed(platform, identifier_type, raw_value, name_hint).person_id

    def resolve_detailed(
        self,
        platform: Platform,
        identifier_type: IdentifierType,
        raw_value: str,
        name_hint: Optional[str] = None,
    ) -> ResolutionResult:
        """Same as resolve(), also reporting whether a person was minted."""
        value = normalize_identifier(raw_value)
        if not value:
            raise InvalidIdentifierError(f"Empty {identifier_type.value} identifier from {platform.value}")

        # Lookup and mint under one lock so concurrent importers cannot
        # mint two persons for the same identifier.
        with self._store.lock:
            existing = self._store.find_evidence(identifier_type, value)
            if existing:
                return ResolutionResult(person_id=existing.person_id, is_new=False)

            now = self._clock()
            person = Person(
                full_name=(name_hint or "").strip() or IdentityConfig.UNKNOWN_NAME,
                created_at=now,
                merged_into=None,
                confidence_score=(
                    IdentityConfig.SYSTEM_PERSON_CONFIDENCE
                    if platform == Platform.SYSTEM
                    else IdentityConfig.PROVISIONAL_PERSON_CONFIDENCE
                ),
            )
            evidence = IdentityEvidence(
                person_id=person.id,
                source_platform=platform,
                identifier_type=identifier_type,
                identifier_value=value,
                confidence=IdentityConfig.PRIMARY_EVIDENCE_CONFIDENCE,
                first_seen_at=now,
            )
            self._store.upsert_person(person)
            self._store.upsert_evidence(evidence)

        logger.debug(f"Minted person {person.id[:8]} for {identifier_type.value} via {platform.value}")
        return ResolutionResult(person_id=person.id, is_new=True)

    def attach_evidence(
        self,
        person_id: str,
        platform: Platform,
        identifier_type: IdentifierType,
        raw_value: str,
        confidence: float = IdentityConfig.SECONDARY_EVIDENCE_CONFIDENCE,
    ) -> bool:
        """
        Attach a secondary identifier to a known person.

        First writer wins: if the identifier already belongs to any person
        (including a different one) nothing changes.

        Returns:
            True if a new evidence row was added
        """
        value = normalize_identifier(raw_value)
        if not value:
            return False
        return self._store.upsert_evidence(
            IdentityEvidence(
                person_id=person_id,
                source_platform=platform,
                identifier_type=identifier_type,
                identifier_value=value,
                confidence=confidence,
                first_seen_at=self._clock(),
            )
        )

    def resolve_self(self) -> str:
        """Person id of the local user."""
        return self.resolve(
            Platform.SYSTEM,
            IdentifierType.PLATFORM_ID,
            IdentityConfig.SELF_IDENTIFIER,
            settings.self_display_name,
        )

    def find_person_id(self, identifier_type: IdentifierType, raw_value: str) -> Optional[str]:
        """Lookup without minting."""
        value = normalize_identifier(raw_value)
        if not value:
            return None
        evidence = self._store.find_evidence(identifier_type, value)
        return evidence.person_id if evidence else None
