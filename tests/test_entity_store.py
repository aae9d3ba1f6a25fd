"""
Tests for the EntityStore.

Covers idempotent upserts, lookups, the write-behind durable mirror and
independent per-kind loading.
"""
import threading
from datetime import datetime, timedelta, timezone

import pytest

from api.services.durable_store import EntityKind, InMemoryDurableStore
from api.services.entity_store import EntityStore
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

pytestmark = pytest.mark.unit


def make_interaction(ref: str, occurred_at: datetime = None) -> Interaction:
    return Interaction(
        interaction_type=Platform.GMAIL,
        occurred_at=occurred_at or datetime(2024, 12, 1, tzinfo=timezone.utc),
        source_platform=Platform.GMAIL,
        external_reference=ref,
        summary_short="hi",
    )


class BrokenDurableStore(InMemoryDurableStore):
    """Durable store whose writes always fail; reads can fail per kind."""

    def __init__(self, failing_kinds=()):
        super().__init__()
        self.failing_kinds = set(failing_kinds)

    def fetch_all(self, kind):
        if kind in self.failing_kinds:
            raise RuntimeError(f"{kind.value} table unavailable")
        return super().fetch_all(kind)

    def upsert(self, kind, row):
        raise RuntimeError("disk full")


class TestEvidenceUpsert:
    """Evidence uniqueness on (type, lowercase value)."""

    def test_first_writer_wins(self, store):
        """A second row with the same identifier is a no-op."""
        first = IdentityEvidence("p1", Platform.GOOGLE, IdentifierType.EMAIL, "a@example.com")
        second = IdentityEvidence("p2", Platform.GMAIL, IdentifierType.EMAIL, "A@Example.com")

        assert store.upsert_evidence(first) is True
        assert store.upsert_evidence(second) is False

        assert len(store.evidence) == 1
        assert store.find_evidence(IdentifierType.EMAIL, "a@EXAMPLE.com").person_id == "p1"

    def test_same_value_different_type_is_distinct(self, store):
        store.upsert_evidence(IdentityEvidence("p1", Platform.GOOGLE, IdentifierType.EMAIL, "x"))
        assert store.upsert_evidence(IdentityEvidence("p2", Platform.WHATSAPP, IdentifierType.PLATFORM_ID, "x"))
        assert len(store.evidence) == 2

    def test_evidence_for_person(self, store):
        store.upsert_evidence(IdentityEvidence("p1", Platform.GOOGLE, IdentifierType.EMAIL, "a@example.com"))
        store.upsert_evidence(IdentityEvidence("p1", Platform.GOOGLE, IdentifierType.PHONE, "+1 555"))
        store.upsert_evidence(IdentityEvidence("p2", Platform.GOOGLE, IdentifierType.EMAIL, "b@example.com"))

        assert {e.identifier_value for e in store.evidence_for_person("p1")} == {"a@example.com", "+1 555"}


class TestInteractionUpsert:
    """Interactions are keyed by external_reference."""

    def test_duplicate_reference_not_inserted(self, store):
        assert store.upsert_interaction(make_interaction("gmail-1")) is True
        assert store.upsert_interaction(make_interaction("gmail-1")) is False

        assert len(store.interactions) == 1
        assert store.has_interaction("gmail-1")
        assert not store.has_interaction("gmail-2")

    def test_lookup_by_id_and_reference(self, store):
        interaction = make_interaction("gmail-1")
        store.upsert_interaction(interaction)

        assert store.get_interaction(interaction.id) is interaction
        assert store.get_interaction_by_reference("gmail-1") is interaction
        assert store.get_interaction("missing") is None


class TestParticipantUpsert:
    """Participants are unique per (interaction, person)."""

    def test_duplicate_pair_ignored(self, store):
        assert store.upsert_participant(InteractionParticipant("i1", "p1", ParticipantRole.SENDER))
        assert not store.upsert_participant(InteractionParticipant("i1", "p1", ParticipantRole.RECEIVER))
        assert len(store.participants) == 1

    def test_interactions_for_person_most_recent_first(self, store):
        older = make_interaction("gmail-old", datetime(2024, 1, 1, tzinfo=timezone.utc))
        newer = make_interaction("gmail-new", datetime(2024, 6, 1, tzinfo=timezone.utc))
        for interaction in (older, newer):
            store.upsert_interaction(interaction)
            store.upsert_participant(InteractionParticipant(interaction.id, "p1", ParticipantRole.SENDER))

        assert [i.external_reference for i in store.interactions_for_person("p1")] == ["gmail-new", "gmail-old"]
        assert store.interactions_for_person("p2") == []


class TestSyncRecords:
    """SyncState replacement and SyncRun ordering."""

    def test_sync_state_replaced_per_platform(self, store):
        store.upsert_sync_state(SyncState(Platform.GMAIL, "page-1"))
        store.upsert_sync_state(SyncState(Platform.GMAIL, "page-2"))

        assert len(store.sync_states) == 1
        assert store.get_sync_state(Platform.GMAIL).last_cursor == "page-2"
        assert store.get_sync_state(Platform.WHATSAPP) is None

    def test_sync_runs_most_recent_first_and_replaced_by_id(self, store):
        first = SyncRun(platform=Platform.WHATSAPP)
        second = SyncRun(platform=Platform.LINKEDIN)
        store.upsert_sync_run(first)
        store.upsert_sync_run(second)
        store.upsert_sync_run(SyncRun(platform=Platform.WHATSAPP, run_id=first.run_id, status=RunStatus.COMPLETED))

        runs = store.list_sync_runs()
        assert [r.run_id for r in runs] == [second.run_id, first.run_id]
        assert runs[1].status == RunStatus.COMPLETED
        assert [r.run_id for r in store.list_sync_runs(Platform.WHATSAPP)] == [first.run_id]
        assert len(store.list_sync_runs(limit=1)) == 1


class TestPersons:
    def test_merged_persons_hidden_by_default(self, store):
        store.upsert_person(Person(id="p1", full_name="Alice"))
        store.upsert_person(Person(id="p2", full_name="Alice (old)", merged_into="p1"))

        assert [p.id for p in store.list_persons()] == ["p1"]
        assert len(store.list_persons(include_merged=True)) == 2

    def test_statistics(self, store):
        store.upsert_person(Person(id="p1", full_name="Alice"))
        store.upsert_person(Person(id="p2", full_name="Old", merged_into="p1"))

        stats = store.get_statistics()
        assert stats["persons"] == 2
        assert stats["active_persons"] == 1
        assert stats["durable_failures"] == 0


class TestDurableMirror:
    """Write-behind mirroring to the durable store."""

    def test_writes_reach_durable_store(self):
        durable = InMemoryDurableStore()
        store = EntityStore(durable=durable)
        store.upsert_person(Person(id="p1", full_name="Alice"))
        store.upsert_interaction(make_interaction("gmail-1"))
        store.flush()

        assert durable.get_scalar(EntityKind.PERSONS, "p1")["full_name"] == "Alice"
        assert len(durable.fetch_all(EntityKind.INTERACTIONS)) == 1
        store.close()

    def test_duplicates_not_mirrored(self):
        durable = InMemoryDurableStore()
        store = EntityStore(durable=durable, async_writes=False)
        store.upsert_participant(InteractionParticipant("i1", "p1", ParticipantRole.SENDER))
        store.upsert_participant(InteractionParticipant("i1", "p1", ParticipantRole.SENDER))

        assert len(durable.fetch_all(EntityKind.PARTICIPANTS)) == 1

    def test_failed_write_keeps_memory_state(self):
        """A durable failure is counted and the in-memory mutation stands."""
        store = EntityStore(durable=BrokenDurableStore())
        store.upsert_person(Person(id="p1", full_name="Alice"))
        assert store.upsert_interaction(make_interaction("gmail-1")) is True
        store.flush()

        assert store.get_person("p1").full_name == "Alice"
        assert store.has_interaction("gmail-1")
        assert store.durable_failures == 2
        store.close()

    def test_reload_restores_graph(self):
        durable = InMemoryDurableStore()
        store = EntityStore(durable=durable, async_writes=False)
        store.upsert_person(Person(id="p1", full_name="Alice"))
        store.upsert_evidence(IdentityEvidence("p1", Platform.GOOGLE, IdentifierType.EMAIL, "a@example.com"))
        interaction = make_interaction("gmail-1")
        store.upsert_interaction(interaction)
        store.upsert_participant(InteractionParticipant(interaction.id, "p1", ParticipantRole.SENDER))
        store.upsert_sync_state(SyncState(Platform.GMAIL, "page-2"))

        reloaded = EntityStore(durable=durable, async_writes=False)
        counts = reloaded.load()

        assert counts["persons"] == 1
        assert counts["evidence"] == 1
        assert counts["participants"] == 1
        assert reloaded.find_evidence(IdentifierType.EMAIL, "A@example.com").person_id == "p1"
        assert reloaded.get_sync_state(Platform.GMAIL).last_cursor == "page-2"
        assert [i.id for i in reloaded.interactions_for_person("p1")] == [interaction.id]


class TestLoad:
    """Each entity kind loads independently."""

    def test_failed_kind_starts_empty_others_load(self):
        durable = BrokenDurableStore(failing_kinds={EntityKind.INTERACTIONS})
        InMemoryDurableStore.upsert(durable, EntityKind.PERSONS, Person(id="p1", full_name="Alice").to_dict())
        InMemoryDurableStore.upsert(durable, EntityKind.INTERACTIONS, make_interaction("gmail-1").to_dict())

        store = EntityStore(durable=durable, async_writes=False)
        counts = store.load()

        assert counts["persons"] == 1
        assert counts["interactions"] == 0
        assert store.get_person("p1") is not None

    def test_unreadable_rows_skipped(self):
        durable = InMemoryDurableStore()
        durable.upsert(EntityKind.PERSONS, Person(id="p1", full_name="Alice").to_dict())
        durable.upsert(EntityKind.EVIDENCE, {"id": "e1", "person_id": "p1"})

        store = EntityStore(durable=durable, async_writes=False)
        counts = store.load()

        assert counts["persons"] == 1
        assert counts["evidence"] == 0

    def test_run_history_limited_and_sorted(self):
        durable = InMemoryDurableStore()
        base = datetime(2024, 1, 1, tzinfo=timezone.utc)
        for day in range(5):
            run = SyncRun(platform=Platform.WHATSAPP, started_at=base + timedelta(days=day))
            durable.upsert(EntityKind.SYNC_RUNS, run.to_dict())

        store = EntityStore(durable=durable, async_writes=False, run_history_limit=3)
        store.load()

        runs = store.list_sync_runs()
        assert len(runs) == 3
        assert runs[0].started_at == base + timedelta(days=4)

    def test_load_without_durable_is_empty(self, store):
        assert all(count == 0 for count in store.load().values())


class TestConcurrency:
    def test_concurrent_interaction_upserts_insert_once(self, store):
        """Racing upserts of one reference insert exactly one row."""
        results = []

        def worker():
            results.append(store.upsert_interaction(make_interaction("gmail-race")))

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert results.count(True) == 1
        assert len(store.interactions) == 1
