"""
LifeGraph Services Package.

Example:
    from api.services import GraphContainer

    graph = GraphContainer.from_settings()
    graph.start()
    graph.whatsapp.import_archive(data, "chat.zip")

Key service modules:
- graph_models: Person, IdentityEvidence, Interaction, SyncRun records
- entity_store: in-memory graph with a durable mirror
- identity_resolver: identifier -> person resolution
- sync_runs: SyncRun lifecycle
- whatsapp_import, linkedin_import, google_sync: source importers
- timeline: read views
"""

# ============================================================================
# Graph Model & Store
# ============================================================================

from api.services.graph_models import (
    IdentityEvidence,
    IdentifierType,
    Interaction,
    InteractionParticipant,
    ParticipantRole,
    Person,
    Platform,
    RunStatus,
    SyncRun,
    SyncState,
)

from api.services.entity_store import EntityStore

# ============================================================================
# Resolution & Ingestion
# ============================================================================

from api.services.identity_resolver import IdentityResolver, InvalidIdentifierError
from api.services.sync_runs import SyncRunTracker, SyncRunStateError
from api.services.container import GraphContainer


__all__ = [
    # Model
    "IdentityEvidence",
    "IdentifierType",
    "Interaction",
    "InteractionParticipant",
    "ParticipantRole",
    "Person",
    "Platform",
    "RunStatus",
    "SyncRun",
    "SyncState",
    "EntityStore",
    # Ingestion
    "IdentityResolver",
    "InvalidIdentifierError",
    "SyncRunTracker",
    "SyncRunStateError",
    "GraphContainer",
]
