"""
Entity Store for the LifeGraph identity graph.

Holds the in-memory collections for every record type and mirrors each
mutation to a DurableStore.

Guarantees:
- In-memory state is the source of truth for the running process. A mutation
  is visible to the next read immediately.
- Durable writes are write-behind: dispatched to a single background worker,
  at most once per mutation. A failed durable write is logged and counted
  (durable_failures); it never undoes or blocks the in-memory mutation.
- Upserts are idempotent. Duplicate evidence, interactions and participants
  are silent no-ops and are not mirrored.
- Every collection is guarded by one re-entrant lock (store.lock). Callers
  needing an atomic read-then-write, like the IdentityResolver's
  find-or-create, hold the lock across both steps.

The store is constructed explicitly and passed to the resolver, the run
tracker and the importers; there is no module-level instance.
"""
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Optional

from api.services.durable_store import DurableStore, EntityKind
from api.services.graph_models import (
    IdentityEvidence,
    IdentifierType,
    Interaction,
    InteractionParticipant,
    Person,
    Platform,
    SyncRun,
    SyncState,
    evidence_key,
)

logger = logging.getLogger(__name__)

# Sync runs loaded at startup (most recent first)
DEFAULT_RUN_HISTORY_LIMIT = 50


class EntityStore:
    """
    In-memory identity graph with a durable mirror.

    Collections keep insertion order, except sync runs which are kept
    most-recent-first for display.
    """

    def __init__(
        self,
        durable: Optional[DurableStore] = None,
        async_writes: bool = True,
        run_history_limit: int = DEFAULT_RUN_HISTORY_LIMIT,
    ):
        """
        Initialize the entity store.

        Args:
            durable: Durable backend to mirror mutations to (None = memory only)
            async_writes: Mirror on a background worker (False = inline, still best-effort)
            run_history_limit: Max sync runs loaded from the durable store
        """
        self.lock = threading.RLock()
        self._durable = durable
        self._run_history_limit = run_history_limit
        self._executor: Optional[ThreadPoolExecutor] = None
        if durable is not None and async_writes:
            self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="durable-mirror")
        self._failure_lock = threading.Lock()
        self.durable_failures = 0
        self._reset()

    def _reset(self) -> None:
        self._persons: dict[str, Person] = {}
        self._evidence: list[IdentityEvidence] = []
        self._evidence_index: dict[tuple[str, str], IdentityEvidence] = {}  # (type, value.lower())
        self._interactions: list[Interaction] = []
        self._interactions_by_id: dict[str, Interaction] = {}
        self._interaction_refs: dict[str, Interaction] = {}  # external_reference -> interaction
        self._participants: list[InteractionParticipant] = []
        self._participant_pairs: set[tuple[str, str]] = set()
        self._participants_by_person: dict[str, list[InteractionParticipant]] = {}
        self._sync_states: list[SyncState] = []
        self._sync_runs: list[SyncRun] = []

    # ------------------------------------------------------------------
    # Bootstrap
    # ------------------------------------------------------------------

    def load(self) -> dict[str, int]:
        """
        Load every entity kind from the durable store.

        Each kind is fetched independently; a kind that fails to load is
        logged and starts empty without affecting the others.

        Returns:
            Row counts loaded per kind
        """
        counts = {kind.value: 0 for kind in EntityKind}
        if self._durable is None:
            return counts

        rows_by_kind: dict[EntityKind, list] = {}
        for kind in EntityKind:
            try:
                rows_by_kind[kind] = self._durable.fetch_all(kind)
            except Exception as e:
                logger.error(f"Failed to load {kind.value}; starting empty: {e}")
                rows_by_kind[kind] = []

        with self.lock:
            self._reset()
            for row in rows_by_kind[EntityKind.PERSONS]:
                person = self._decode(Person, row)
                if person:
                    self._persons[person.id] = person
            for row in rows_by_kind[EntityKind.EVIDENCE]:
                evidence = self._decode(IdentityEvidence, row)
                if evidence and evidence.match_key not in self._evidence_index:
                    self._add_evidence(evidence)
            for row in rows_by_kind[EntityKind.INTERACTIONS]:
                interaction = self._decode(Interaction, row)
                if interaction and interaction.external_reference not in self._interaction_refs:
                    self._add_interaction(interaction)
            for row in rows_by_kind[EntityKind.PARTICIPANTS]:
                participant = self._decode(InteractionParticipant, row)
                if participant and self._pair(participant) not in self._participant_pairs:
                    self._add_participant(participant)
            states: dict[Platform, SyncState] = {}
            for row in rows_by_kind[EntityKind.SYNC_STATES]:
                state = self._decode(SyncState, row)
                if state:
                    states[state.platform] = state
            self._sync_states = list(states.values())
            runs = [r for r in (self._decode(SyncRun, row) for row in rows_by_kind[EntityKind.SYNC_RUNS]) if r]
            runs.sort(key=lambda r: r.started_at, reverse=True)
            self._sync_runs = runs[: self._run_history_limit]

            counts = {
                EntityKind.PERSONS.value: len(self._persons),
                EntityKind.EVIDENCE.value: len(self._evidence),
                EntityKind.INTERACTIONS.value: len(self._interactions),
                EntityKind.PARTICIPANTS.value: len(self._participants),
                EntityKind.SYNC_STATES.value: len(self._sync_states),
                EntityKind.SYNC_RUNS.value: len(self._sync_runs),
            }

        logger.info(f"Loaded identity graph: {counts['persons']} persons, {counts['interactions']} interactions")
        return counts

    @staticmethod
    def _decode(record_cls, row: dict):
        try:
            return record_cls.from_dict(row)
        except (KeyError, ValueError, TypeError) as e:
            logger.warning(f"Skipping unreadable {record_cls.__name__} row: {e}")
            return None

    # ------------------------------------------------------------------
    # Durable mirror
    # ------------------------------------------------------------------

    def _mirror(self, kind: EntityKind, row: dict) -> None:
        """Dispatch a durable write. Never raises."""
        if self._durable is None:
            return
        if self._executor is not None:
            self._executor.submit(self._write, kind, row)
        else:
            self._write(kind, row)

    def _write(self, kind: EntityKind, row: dict) -> None:
        try:
            self._durable.upsert(kind, row)
        except Exception as e:
            with self._failure_lock:
                self.durable_failures += 1
            logger.warning(f"Durable write failed for {kind.value}: {e}")

    def flush(self) -> None:
        """Block until every dispatched durable write has been attempted."""
        if self._executor is not None:
            # Single worker: a no-op queued now runs after all earlier writes
            self._executor.submit(lambda: None).result()

    def close(self) -> None:
        """Flush pending writes and stop the mirror worker."""
        if self._executor is not None:
            self.flush()
            self._executor.shutdown(wait=True)
            self._executor = None

    # ------------------------------------------------------------------
    # Internal index maintenance (caller holds the lock)
    # ------------------------------------------------------------------

    def _add_evidence(self, evidence: IdentityEvidence) -> None:
        self._evidence.append(evidence)
        self._evidence_index[evidence.match_key] = evidence

    def _add_interaction(self, interaction: Interaction) -> None:
        self._interactions.append(interaction)
        self._interactions_by_id[interaction.id] = interaction
        self._interaction_refs[interaction.external_reference] = interaction

    @staticmethod
    def _pair(participant: InteractionParticipant) -> tuple[str, str]:
        return participant.interaction_id, participant.person_id

    def _add_participant(self, participant: InteractionParticipant) -> None:
        self._participants.append(participant)
        self._participant_pairs.add(self._pair(participant))
        self._participants_by_person.setdefault(participant.person_id, []).append(participant)

    # ------------------------------------------------------------------
    # Idempotent upserts
    # ------------------------------------------------------------------

    def upsert_person(self, person: Person) -> None:
        """Replace by id if present, else append."""
        with self.lock:
            self._persons[person.id] = person
            row = person.to_dict()
        self._mirror(EntityKind.PERSONS, row)

    def upsert_evidence(self, evidence: IdentityEvidence) -> bool:
        """
        Add evidence unless its (type, lowercase value) is already known.

        First writer wins: an existing row is never repointed.

        Returns:
            True if the evidence was added
        """
        with self.lock:
            if evidence.match_key in self._evidence_index:
                return False
            self._add_evidence(evidence)
            row = evidence.to_dict()
        self._mirror(EntityKind.EVIDENCE, row)
        return True

    def upsert_interaction(self, interaction: Interaction) -> bool:
        """
        Add an interaction unless its external_reference is already present.

        Returns:
            True if newly inserted. Participants must only be linked when True.
        """
        with self.lock:
            if interaction.external_reference in self._interaction_refs:
                return False
            self._add_interaction(interaction)
            row = interaction.to_dict()
        self._mirror(EntityKind.INTERACTIONS, row)
        return True

    def upsert_participant(self, participant: InteractionParticipant) -> bool:
        """Add a participant unless the (interaction, person) pair exists."""
        with self.lock:
            if self._pair(participant) in self._participant_pairs:
                return False
            self._add_participant(participant)
            row = participant.to_dict()
        self._mirror(EntityKind.PARTICIPANTS, row)
        return True

    def upsert_sync_state(self, state: SyncState) -> None:
        """Replace the platform's cursor row."""
        with self.lock:
            self._sync_states = [s for s in self._sync_states if s.platform != state.platform]
            self._sync_states.append(state)
            row = state.to_dict()
        self._mirror(EntityKind.SYNC_STATES, row)

    def upsert_sync_run(self, run: SyncRun) -> None:
        """Replace by run_id if present, else prepend (most recent first)."""
        with self.lock:
            for idx, existing in enumerate(self._sync_runs):
                if existing.run_id == run.run_id:
                    self._sync_runs[idx] = run
                    break
            else:
                self._sync_runs.insert(0, run)
            row = run.to_dict()
        self._mirror(EntityKind.SYNC_RUNS, row)

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def find_evidence(self, identifier_type: IdentifierType, value: str) -> Optional[IdentityEvidence]:
        """Case-insensitive exact lookup. At most one row can match."""
        with self.lock:
            return self._evidence_index.get(evidence_key(identifier_type, value))

    def get_person(self, person_id: str) -> Optional[Person]:
        with self.lock:
            return self._persons.get(person_id)

    def evidence_for_person(self, person_id: str) -> list[IdentityEvidence]:
        with self.lock:
            return [e for e in self._evidence if e.person_id == person_id]

    def has_interaction(self, external_reference: str) -> bool:
        with self.lock:
            return external_reference in self._interaction_refs

    def get_interaction(self, interaction_id: str) -> Optional[Interaction]:
        with self.lock:
            return self._interactions_by_id.get(interaction_id)

    def get_interaction_by_reference(self, external_reference: str) -> Optional[Interaction]:
        with self.lock:
            return self._interaction_refs.get(external_reference)

    def participants_for_interaction(self, interaction_id: str) -> list[InteractionParticipant]:
        with self.lock:
            return [p for p in self._participants if p.interaction_id == interaction_id]

    def interactions_for_person(self, person_id: str) -> list[Interaction]:
        """Interactions the person participates in, most recent first."""
        with self.lock:
            interactions = [
                self._interactions_by_id[p.interaction_id]
                for p in self._participants_by_person.get(person_id, [])
                if p.interaction_id in self._interactions_by_id
            ]
        interactions.sort(key=lambda i: i.occurred_at, reverse=True)
        return interactions

    def get_sync_state(self, platform: Platform) -> Optional[SyncState]:
        with self.lock:
            for state in self._sync_states:
                if state.platform == platform:
                    return state
            return None

    def list_persons(self, include_merged: bool = False) -> list[Person]:
        """All persons; merged persons are excluded unless requested."""
        with self.lock:
            return [p for p in self._persons.values() if include_merged or not p.is_merged]

    def list_sync_runs(self, platform: Optional[Platform] = None, limit: Optional[int] = None) -> list[SyncRun]:
        """Sync runs, most recent first."""
        with self.lock:
            runs = [r for r in self._sync_runs if platform is None or r.platform == platform]
        return runs[:limit] if limit else runs

    # Snapshots (copies of the collections, safe to iterate)

    @property
    def persons(self) -> list[Person]:
        with self.lock:
            return list(self._persons.values())

    @property
    def evidence(self) -> list[IdentityEvidence]:
        with self.lock:
            return list(self._evidence)

    @property
    def interactions(self) -> list[Interaction]:
        with self.lock:
            return list(self._interactions)

    @property
    def participants(self) -> list[InteractionParticipant]:
        with self.lock:
            return list(self._participants)

    @property
    def sync_states(self) -> list[SyncState]:
        with self.lock:
            return list(self._sync_states)

    @property
    def sync_runs(self) -> list[SyncRun]:
        with self.lock:
            return list(self._sync_runs)

    def get_statistics(self) -> dict:
        """Aggregate counts for health and status views."""
        with self.lock:
            return {
                "persons": len(self._persons),
                "active_persons": sum(1 for p in self._persons.values() if not p.is_merged),
                "evidence": len(self._evidence),
                "interactions": len(self._interactions),
                "participants": len(self._participants),
                "sync_runs": len(self._sync_runs),
                "durable_failures": self.durable_failures,
            }
