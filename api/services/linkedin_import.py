"""
LinkedIn connections importer for LifeGraph.

Data source: LinkedIn "Export Your Data" -> Connections.csv

The export is identity enrichment only: each row resolves the connection's
email to a person and no interactions are produced. Columns are read by
position (first name, last name, email); the header row is skipped.
"""
import csv
import io
import logging
from dataclasses import dataclass

from api.services.graph_models import IdentifierType, Platform
from api.services.identity_resolver import IdentityResolver
from api.services.sync_runs import SyncRunTracker

logger = logging.getLogger(__name__)


@dataclass
class ConnectionRow:
    """One data row of the connections export."""
    first_name: str
    last_name: str
    email: str

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


def parse_connections_csv(content: str) -> list[ConnectionRow]:
    """
    Parse the connections export.

    Quoted fields may contain commas. Blank rows and rows with fewer than
    three fields are skipped.

    Args:
        content: Raw CSV text including the header row

    Returns:
        Parsed rows (email may be empty)
    """
    rows = []
    reader = csv.reader(io.StringIO(content.lstrip("\ufeff")))
    for line_number, fields in enumerate(reader):
        if line_number == 0:
            continue  # header
        fields = [f.strip() for f in fields]
        if not any(fields):
            continue
        if len(fields) < 3:
            logger.debug(f"Skipping short LinkedIn row {line_number + 1}")
            continue
        rows.append(ConnectionRow(first_name=fields[0], last_name=fields[1], email=fields[2]))
    return rows


class LinkedInImporter:
    """Resolves LinkedIn connections into persons."""

    def __init__(self, resolver: IdentityResolver, tracker: SyncRunTracker):
        self._resolver = resolver
        self._tracker = tracker

    def import_csv(self, content: str) -> dict:
        """
        Import a connections export under a SyncRun.

        Args:
            content: Raw CSV text

        Returns:
            Import statistics
        """
        stats = {
            "rows_read": 0,
            "rows_skipped": 0,
            "identities_resolved": 0,
            "persons_created": 0,
        }

        with self._tracker.track(Platform.LINKEDIN) as ctx:
            for row in parse_connections_csv(content):
                stats["rows_read"] += 1
                ctx.records_processed += 1
                if not row.email:
                    stats["rows_skipped"] += 1
                    continue

                result = self._resolver.resolve_detailed(
                    Platform.LINKEDIN, IdentifierType.EMAIL, row.email, row.full_name
                )
                stats["identities_resolved"] += 1
                if result.is_new:
                    stats["persons_created"] += 1
                    ctx.records_created += 1

        stats["run_id"] = ctx.run.run_id
        logger.info(
            f"LinkedIn import: {stats['rows_read']} rows, {stats['persons_created']} persons created, "
            f"{stats['rows_skipped']} skipped"
        )
        return stats
