"""
Read-only views over the identity graph.

Everything here is computed on demand from the EntityStore; nothing is
stored. Used by the graph routes and the CLI:
- list_people: the people index (merged persons and the local user hidden)
- get_person_timeline: one person with evidence and interactions
- relationship_narrative: LLM synthesis over a person's interaction summaries
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from api.services.blob_store import BlobStore
from api.services.enrichment import EnrichmentService
from api.services.entity_store import EntityStore
from api.services.graph_models import IdentityEvidence, Interaction, Person

logger = logging.getLogger(__name__)

INSUFFICIENT_DATA = "Identity cluster active. Data volume insufficient for synthesis."


@dataclass
class PersonOverview:
    """One row of the people index."""
    person: Person
    interaction_count: int
    last_interaction: Optional[datetime]

    def to_dict(self) -> dict:
        data = self.person.to_dict()
        data["interaction_count"] = self.interaction_count
        data["last_interaction"] = self.last_interaction.isoformat() if self.last_interaction else None
        return data


@dataclass
class PersonTimeline:
    """A person with everything known about them, interactions newest first."""
    person: Person
    evidence: list[IdentityEvidence] = field(default_factory=list)
    interactions: list[Interaction] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "person": self.person.to_dict(),
            "evidence": [e.to_dict() for e in self.evidence],
            "interactions": [i.to_dict() for i in self.interactions],
        }


def list_people(
    store: EntityStore,
    search: Optional[str] = None,
    self_person_id: Optional[str] = None,
) -> list[PersonOverview]:
    """
    People index, most recently contacted first, then by name.

    Args:
        store: Entity store
        search: Case-insensitive substring filter on full name
        self_person_id: Person id of the local user, excluded from the list
    """
    needle = (search or "").strip().lower()
    rows = []
    for person in store.list_persons():
        if person.id == self_person_id:
            continue
        if needle and needle not in person.full_name.lower():
            continue
        interactions = store.interactions_for_person(person.id)
        rows.append(
            PersonOverview(
                person=person,
                interaction_count=len(interactions),
                last_interaction=interactions[0].occurred_at if interactions else None,
            )
        )

    rows.sort(key=lambda r: r.person.full_name.lower())
    rows.sort(key=lambda r: r.last_interaction.timestamp() if r.last_interaction else float("-inf"), reverse=True)
    return rows


def get_person_timeline(store: EntityStore, person_id: str) -> Optional[PersonTimeline]:
    """Timeline for a person, or None if unknown or merged away."""
    person = store.get_person(person_id)
    if person is None or person.is_merged:
        return None
    return PersonTimeline(
        person=person,
        evidence=store.evidence_for_person(person_id),
        interactions=store.interactions_for_person(person_id),
    )


def relationship_narrative(store: EntityStore, enrichment: EnrichmentService, person_id: str) -> str:
    """Synthesized relationship narrative over the person's interaction summaries."""
    interactions = store.interactions_for_person(person_id)
    if not interactions:
        return INSUFFICIENT_DATA
    return enrichment.summarize_relationship([i.summary_short for i in interactions])


def load_raw_content(blobs: BlobStore, interaction: Interaction) -> str:
    return blobs.load(interaction.raw_content_pointer)
