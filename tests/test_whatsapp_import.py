"""Tests for WhatsApp chat export import."""
import pytest
from datetime import date, datetime, timezone

from api.services.graph_models import IdentifierType, ParticipantRole, Platform, RunStatus
from api.services.whatsapp_import import (
    ChatArchiveError,
    ChatExportImporter,
    chat_reference,
    decode_transcript,
    group_by_day_and_sender,
    is_self_sender,
    parse_chat_line,
    read_chat_archive,
)
from tests.fixtures.graph_data import FailingEnrichment, FakeEnrichment, SAMPLE_TRANSCRIPT, make_chat_zip

pytestmark = pytest.mark.unit


@pytest.fixture
def importer(store, resolver, enrichment, blobs, tracker):
    return ChatExportImporter(store, resolver, enrichment, blobs, tracker)


class TestParseChatLine:
    """Tests for the line grammar."""

    def test_bracket_format_12_hour(self):
        line = parse_chat_line("[12/1/2024, 10:30:15 AM] John Doe: Hello there!")

        assert line.day == date(2024, 12, 1)
        assert line.time_of_day == "10:30:15 AM"
        assert line.sender == "John Doe"
        assert line.text == "Hello there!"

    def test_dash_format_24_hour(self):
        line = parse_chat_line("01/12/24, 22:30 - Alice: First message")

        assert line.day == date(2024, 1, 12)
        assert line.sender == "Alice"
        assert line.text == "First message"

    def test_bracket_with_dash_before_sender(self):
        line = parse_chat_line("[3/4/2024, 9:05] - Bob: ok")
        assert line.sender == "Bob"
        assert line.text == "ok"

    def test_day_first_fallback(self):
        """A date that cannot be month-first is read day-first."""
        line = parse_chat_line("31/12/2024, 23:59 - Alice: Happy new year")
        assert line.day == date(2024, 12, 31)

    def test_ios_invisible_characters(self):
        line = parse_chat_line("\u200e[12/1/24, 10:30:15\u202fPM] Alice: hi")
        assert line.sender == "Alice"
        assert line.day == date(2024, 12, 1)

    def test_text_may_contain_colons(self):
        line = parse_chat_line("[12/1/2024, 10:30] Alice: meet at 10:45: ok?")
        assert line.text == "meet at 10:45: ok?"

    @pytest.mark.parametrize("raw", [
        "",
        "this line continues the previous message",
        "Messages and calls are end-to-end encrypted",
        "[13/13/2024, 10:30] Alice: impossible date",
        "[12/1/2024, 10:30] Alice no colon here",
        "[12/1/2024, 10:31:00 AM]  : stray line",
    ])
    def test_non_matching_lines_dropped(self, raw):
        assert parse_chat_line(raw) is None


class TestGrouping:
    """Grouping by (day, sender) and self/system filtering."""

    def test_groups_by_day_then_sender(self):
        lines = [parse_chat_line(l) for l in SAMPLE_TRANSCRIPT.splitlines()]
        groups = group_by_day_and_sender([l for l in lines if l], "Anqer User")

        assert list(groups) == [date(2024, 12, 1), date(2024, 12, 2)]
        assert groups[date(2024, 12, 1)] == {
            "Alice Smith": ["Hi there!", "Lunch tomorrow?"],
            "Bob": ["Are you coming tonight?"],
        }
        assert groups[date(2024, 12, 2)] == {"Alice Smith": ["Running late"]}

    @pytest.mark.parametrize("sender", ["You", "you", "ME", "Anqer User", "anqer user"])
    def test_self_senders(self, sender):
        assert is_self_sender(sender, "Anqer User")

    def test_counterpart_not_self(self):
        assert not is_self_sender("Alice", "Anqer User")

    def test_long_sender_treated_as_system(self):
        line = parse_chat_line(f"[12/1/2024, 10:30] {'x' * 51}: text")
        assert group_by_day_and_sender([line], "Anqer User") == {}

    def test_chat_reference(self):
        assert chat_reference(date(2024, 12, 1), "Alice  Smith\tJr") == "wa-2024-12-01-Alice_Smith_Jr"


class TestReadChatArchive:
    """Archive validation (adapter-fatal failures)."""

    def test_extracts_first_transcript(self):
        data = make_chat_zip("[12/1/2024, 10:30] Alice: hi", extra={"__MACOSX/._chat.txt": "junk"})
        assert read_chat_archive(data, "chat.zip") == "[12/1/2024, 10:30] Alice: hi"

    def test_requires_zip_filename(self):
        with pytest.raises(ChatArchiveError, match="requires a .zip archive"):
            read_chat_archive(b"whatever", "chat.txt")

    def test_missing_transcript(self):
        data = make_chat_zip(None, extra={"photo.jpg": "binary"})
        with pytest.raises(ChatArchiveError, match="Chat log not found in archive."):
            read_chat_archive(data, "chat.zip")

    def test_corrupt_zip(self):
        with pytest.raises(ChatArchiveError):
            read_chat_archive(b"not a zip at all", "chat.zip")

    def test_latin1_fallback(self):
        assert decode_transcript("José".encode("latin-1")) == "José"
        assert decode_transcript("\ufeffJosé".encode("utf-8")) == "José"


class TestImportArchive:
    """End-to-end import through the store and resolver."""

    def test_import_creates_interactions_and_persons(self, importer, store, blobs, enrichment):
        stats = importer.import_archive(make_chat_zip(SAMPLE_TRANSCRIPT), "chat.zip")

        assert stats["lines_total"] == 8
        assert stats["lines_parsed"] == 6
        assert stats["lines_dropped"] == 2
        assert stats["persons_created"] == 2
        assert stats["interactions_created"] == 3
        assert stats["interactions_skipped"] == 0

        interaction = store.get_interaction_by_reference("wa-2024-12-01-Alice_Smith")
        assert interaction.occurred_at == datetime(2024, 12, 1, tzinfo=timezone.utc)
        assert interaction.source_platform == Platform.WHATSAPP
        assert interaction.summary_short == enrichment.summary
        assert blobs.load(interaction.raw_content_pointer) == "Hi there!\nLunch tomorrow?"

        prompt = enrichment.summarize_calls[0]
        assert "Day: 2024-12-01" in prompt
        assert "Participants: You and Alice Smith" in prompt

    def test_participant_linkage(self, importer, store, resolver):
        importer.import_archive(make_chat_zip(SAMPLE_TRANSCRIPT), "chat.zip")
        my_id = resolver.resolve_self()
        alice = resolver.find_person_id(IdentifierType.PLATFORM_ID, "alice smith")

        for interaction in store.interactions:
            participants = store.participants_for_interaction(interaction.id)
            roles = sorted(p.role.value for p in participants)
            assert roles == ["receiver", "sender"]
            receiver = next(p for p in participants if p.role == ParticipantRole.RECEIVER)
            assert receiver.person_id == my_id

        assert len(store.interactions_for_person(alice)) == 2

    def test_replay_is_idempotent(self, importer, store, enrichment):
        data = make_chat_zip(SAMPLE_TRANSCRIPT)
        importer.import_archive(data, "chat.zip")
        counts = (len(store.persons), len(store.evidence), len(store.interactions), len(store.participants))
        calls = len(enrichment.summarize_calls)

        stats = importer.import_archive(data, "chat.zip")

        assert stats["interactions_created"] == 0
        assert stats["interactions_skipped"] == 3
        assert (len(store.persons), len(store.evidence), len(store.interactions), len(store.participants)) == counts
        assert len(enrichment.summarize_calls) == calls

    def test_blank_sender_line_skipped(self, importer, store, resolver):
        """A line with no sender name is dropped; the rest of the chat imports."""
        transcript = "[12/1/2024, 10:30:00 AM] Alice: Hi\n[12/1/2024, 10:31:00 AM]  : stray line\n"

        stats = importer.import_archive(make_chat_zip(transcript), "chat.zip")

        assert stats["lines_dropped"] == 1
        assert stats["interactions_created"] == 1
        assert store.list_sync_runs(Platform.WHATSAPP)[0].status == RunStatus.COMPLETED
        assert resolver.find_person_id(IdentifierType.PLATFORM_ID, "alice") is not None

    def test_run_recorded(self, importer, store):
        stats = importer.import_archive(make_chat_zip(SAMPLE_TRANSCRIPT), "chat.zip")
        run = store.list_sync_runs(Platform.WHATSAPP)[0]

        assert run.run_id == stats["run_id"]
        assert run.status == RunStatus.COMPLETED
        assert run.records_created == 3

    def test_missing_transcript_fails_run(self, importer, store):
        with pytest.raises(ChatArchiveError):
            importer.import_archive(make_chat_zip(None, extra={"a.jpg": "x"}), "chat.zip")

        run = store.list_sync_runs(Platform.WHATSAPP)[0]
        assert run.status == RunStatus.FAILED
        assert run.error_log == "Chat log not found in archive."
        assert store.interactions == []

    def test_enrichment_failure_keeps_committed_records(self, store, resolver, blobs, tracker):
        """A mid-run failure fails the run; a rerun picks up where it left off."""
        failing = ChatExportImporter(store, resolver, FailingEnrichment(fail_on=2), blobs, tracker)
        data = make_chat_zip(SAMPLE_TRANSCRIPT)

        with pytest.raises(RuntimeError):
            failing.import_archive(data, "chat.zip")

        assert len(store.interactions) == 1
        assert store.list_sync_runs()[0].status == RunStatus.FAILED
        assert store.list_sync_runs()[0].error_log == "enrichment backend exploded"

        healthy = ChatExportImporter(store, resolver, FakeEnrichment(), blobs, tracker)
        stats = healthy.import_archive(data, "chat.zip")

        assert stats["interactions_created"] == 2
        assert stats["interactions_skipped"] == 1
        assert len(store.interactions) == 3
