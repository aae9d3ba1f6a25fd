"""
Sync Run tracking for LifeGraph importers.

Every importer invocation is wrapped in a SyncRun record:

    open(platform) -> run (running)
    ... ingestion work ...
    close(run, completed | failed, error)

Runs are closed exactly once. A failed run keeps everything ingested
before the failure; records are idempotent so a rerun picks up cleanly.

Concurrent runs for the same platform are not serialized here. Starting a
run while another run for that platform is still open logs a warning;
mutual exclusion is the caller's responsibility.
"""
import dataclasses
import logging
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Callable, Iterator, Optional

from api.services.entity_store import EntityStore
from api.services.graph_models import Platform, RunStatus, SyncRun
from api.utils.datetime_utils import utc_now

logger = logging.getLogger(__name__)


class SyncRunStateError(Exception):
    """Raised on an illegal run state transition."""
    pass


@dataclass
class RunContext:
    """Handle yielded by SyncRunTracker.track(); importers bump the counters."""

    run: SyncRun
    records_processed: int = 0
    records_created: int = 0


class SyncRunTracker:
    """Opens and closes SyncRun records in the entity store."""

    def __init__(self, store: EntityStore, clock: Callable = utc_now):
        self._store = store
        self._clock = clock

    def open(self, platform: Platform) -> SyncRun:
        """Create and persist a running SyncRun."""
        in_flight = [r for r in self._store.list_sync_runs(platform) if r.status == RunStatus.RUNNING]
        if in_flight:
            logger.warning(
                f"Starting {platform.value} sync while {len(in_flight)} earlier run(s) are still running"
            )
        run = SyncRun(platform=platform, started_at=self._clock(), status=RunStatus.RUNNING)
        self._store.upsert_sync_run(run)
        logger.info(f"Started sync for {platform.value} (run_id={run.run_id[:8]})")
        return run

    def close(
        self,
        run: SyncRun,
        status: RunStatus,
        error: Optional[str] = None,
        records_processed: int = 0,
        records_created: int = 0,
    ) -> SyncRun:
        """
        Move a run to its terminal state.

        Raises:
            SyncRunStateError: If the run is already terminal or status is running
        """
        if status == RunStatus.RUNNING:
            raise SyncRunStateError("A run cannot be closed as running")
        current = self._current(run)
        if current.is_terminal:
            raise SyncRunStateError(f"Run {run.run_id} already {current.status.value}")

        closed = dataclasses.replace(
            current,
            status=status,
            completed_at=self._clock(),
            error_log=error if status == RunStatus.FAILED else None,
            records_processed=records_processed,
            records_created=records_created,
        )
        self._store.upsert_sync_run(closed)

        if status == RunStatus.FAILED:
            logger.error(f"Sync failed for {run.platform.value} (run_id={run.run_id[:8]}): {error}")
        else:
            logger.info(
                f"Sync completed for {run.platform.value} (run_id={run.run_id[:8]}): "
                f"{records_processed} processed, {records_created} created"
            )
        return closed

    def _current(self, run: SyncRun) -> SyncRun:
        for existing in self._store.list_sync_runs(run.platform):
            if existing.run_id == run.run_id:
                return existing
        return run

    @contextmanager
    def track(self, platform: Platform) -> Iterator[RunContext]:
        """
        Wrap a block of ingestion work in a SyncRun.

        Closes the run completed on normal exit. On any exception the run is
        closed failed with the error message, then the exception propagates.
        """
        ctx = RunContext(run=self.open(platform))
        try:
            yield ctx
        except BaseException as e:
            ctx.run = self.close(
                ctx.run,
                RunStatus.FAILED,
                error=str(e) or type(e).__name__,
                records_processed=ctx.records_processed,
                records_created=ctx.records_created,
            )
            raise
        ctx.run = self.close(
            ctx.run,
            RunStatus.COMPLETED,
            records_processed=ctx.records_processed,
            records_created=ctx.records_created,
        )

    # ------------------------------------------------------------------
    # Health views
    # ------------------------------------------------------------------

    def latest_run(self, platform: Platform) -> Optional[SyncRun]:
        """Most recent terminal run for a platform."""
        for run in self._store.list_sync_runs(platform):
            if run.is_terminal:
                return run
        return None

    def get_sync_summary(self, platforms: Optional[list[Platform]] = None) -> dict:
        """Summary of the last run of every ingesting platform."""
        if platforms is None:
            platforms = [Platform.GOOGLE, Platform.WHATSAPP, Platform.LINKEDIN]

        sources = {}
        failed = []
        never_run = []
        for platform in platforms:
            run = self.latest_run(platform)
            if run is None:
                never_run.append(platform.value)
                sources[platform.value] = {"last_status": None, "last_sync": None, "last_error": None}
                continue
            if run.status == RunStatus.FAILED:
                failed.append(platform.value)
            sources[platform.value] = {
                "last_status": run.status.value,
                "last_sync": run.completed_at.isoformat() if run.completed_at else None,
                "last_error": run.error_log,
            }

        return {
            "total_sources": len(platforms),
            "sources": sources,
            "failed_sources": failed,
            "never_run_sources": never_run,
            "all_healthy": not failed and not never_run,
        }
