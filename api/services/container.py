"""
Wiring for the identity graph services.

GraphContainer builds one store, resolver, run tracker, blob store,
enrichment service and the three importers, all sharing the same store.
The API lifespan and the CLI each build one container; tests build their
own with in-memory backends.
"""
import logging
from typing import Optional

from api.services.blob_store import BlobStore, SqliteBlobStore
from api.services.durable_store import DurableStore, InMemoryDurableStore, SqliteDurableStore
from api.services.enrichment import EnrichmentService, get_enrichment_service
from api.services.entity_store import EntityStore
from api.services.google_sync import GoogleSync
from api.services.graph_models import IdentifierType
from api.services.identity_resolver import IdentityResolver
from api.services.linkedin_import import LinkedInImporter
from api.services.sync_runs import SyncRunTracker
from api.services.whatsapp_import import ChatExportImporter
from api.utils.db_paths import get_graph_db_path
from config.identity_config import IdentityConfig
from config.settings import settings

logger = logging.getLogger(__name__)


class GraphContainer:
    """Holds the shared graph services for one process."""

    def __init__(
        self,
        durable: Optional[DurableStore] = None,
        blobs: Optional[BlobStore] = None,
        enrichment: Optional[EnrichmentService] = None,
        async_writes: bool = True,
    ):
        """
        Initialize the container.

        Args:
            durable: Durable backend (None = in-memory)
            blobs: Raw content store (None = memory-only SqliteBlobStore)
            enrichment: Summarizer (None = selected by settings)
            async_writes: Mirror store mutations on a background worker
        """
        self.store = EntityStore(
            durable=durable or InMemoryDurableStore(),
            async_writes=async_writes,
            run_history_limit=settings.sync_run_history_limit,
        )
        self.blobs = blobs if blobs is not None else SqliteBlobStore()
        self.enrichment = enrichment if enrichment is not None else get_enrichment_service()
        self.resolver = IdentityResolver(self.store)
        self.tracker = SyncRunTracker(self.store)

        self.whatsapp = ChatExportImporter(
            self.store, self.resolver, self.enrichment, self.blobs, self.tracker,
            self_display_name=settings.self_display_name,
        )
        self.linkedin = LinkedInImporter(self.resolver, self.tracker)
        self.google = GoogleSync(self.store, self.resolver, self.enrichment, self.blobs, self.tracker)

    @classmethod
    def from_settings(cls) -> "GraphContainer":
        """Container backed by the SQLite graph database under data_dir."""
        db_path = get_graph_db_path()
        logger.info(f"Using graph database at {db_path}")
        return cls(durable=SqliteDurableStore(db_path), blobs=SqliteBlobStore(db_path))

    def start(self) -> dict[str, int]:
        """Load persisted state into memory."""
        counts = self.store.load()
        logger.info(f"Graph loaded: {counts}")
        return counts

    def self_person_id(self) -> Optional[str]:
        """Person id of the local user, if it has been resolved yet."""
        return self.resolver.find_person_id(IdentifierType.PLATFORM_ID, IdentityConfig.SELF_IDENTIFIER)

    def close(self) -> None:
        self.store.close()
