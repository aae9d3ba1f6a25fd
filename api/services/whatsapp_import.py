"""
WhatsApp chat export importer for LifeGraph.

Reads a WhatsApp "Export chat" .zip archive, which holds one line-oriented
transcript, and ingests it as one Interaction per (calendar day, sender).

Export format (Android/iOS vary slightly):
[date, time] sender: message
[date, time] - sender: message
date, time - sender: message

Each physical line is evaluated on its own. Lines that do not match the
grammar, including continuation lines of multi-line messages, are dropped.

Grouping by day and sender bounds interaction volume and gives the
summarizer a day of context. Messages from the local user ("You", "Me", or
the configured self name) are not grouped as a counterpart.
"""
import io
import logging
import re
import zipfile
from dataclasses import dataclass
from datetime import date, datetime
from typing import Iterable, Optional

from api.services.blob_store import BlobStore
from api.services.enrichment import EnrichmentService
from api.services.entity_store import EntityStore
from api.services.graph_models import (
    IdentifierType,
    Interaction,
    InteractionParticipant,
    ParticipantRole,
    Platform,
)
from api.services.identity_resolver import IdentityResolver
from api.services.sync_runs import SyncRunTracker
from api.utils.datetime_utils import start_of_day
from config.identity_config import ChatExportConfig
from config.settings import settings

logger = logging.getLogger(__name__)


class ChatArchiveError(Exception):
    """Raised when an export archive is unusable. Fails the whole run."""
    pass


# Grammar pieces shared by every line variant
_DATE = r"(\d{1,2}/\d{1,2}/\d{2,4})"
_TIME = r"(\d{1,2}:\d{2}(?::\d{2})?(?:\s?[AP]M)?)"
_BODY = r"\s+(?:-\s+)?([^:]+):\s+(.*)$"

# Opening/closing punctuation around "date, time"
BRACKET_VARIANTS = (
    (r"\[", r"\]"),  # [12/1/2024, 10:30:15 AM] Bob: hi
    ("", ""),        # 12/1/24, 22:30 - Bob: hi
    (r"\[", ""),
    ("", r"\]"),
)

LINE_PATTERNS = tuple(
    re.compile(rf"^{open_}{_DATE},?\s+{_TIME}{close}{_BODY}", re.IGNORECASE)
    for open_, close in BRACKET_VARIANTS
)

# Month-first as exported by US locales, day-first as fallback
DATE_FORMATS = (
    "%m/%d/%Y",
    "%m/%d/%y",
    "%d/%m/%Y",
    "%d/%m/%y",
)

# Invisible characters iOS exports put around timestamps
_INVISIBLE = str.maketrans({"\u200e": None, "\u200f": None, "\u202f": " ", "\xa0": " "})


@dataclass(frozen=True)
class ChatLine:
    """One parsed transcript line."""
    day: date
    time_of_day: str
    sender: str
    text: str


def _parse_day(date_str: str) -> Optional[date]:
    """Parse the date part of a line using DATE_FORMATS in order."""
    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(date_str, fmt).date()
        except ValueError:
            continue
    logger.debug(f"Could not parse date: {date_str}")
    return None


def parse_chat_line(line: str) -> Optional[ChatLine]:
    """
    Parse one transcript line.

    Returns:
        ChatLine, or None if the line does not match the grammar, names no
        sender, or its date is not a real calendar day
    """
    line = line.translate(_INVISIBLE).strip()
    if not line:
        return None

    for pattern in LINE_PATTERNS:
        match = pattern.match(line)
        if match:
            break
    else:
        return None

    date_str, time_str, sender, text = match.groups()
    sender = sender.strip()
    if not sender:
        return None
    day = _parse_day(date_str)
    if day is None:
        return None
    return ChatLine(day=day, time_of_day=time_str.strip(), sender=sender, text=text.strip())


def is_self_sender(sender: str, self_display_name: Optional[str] = None) -> bool:
    """True if the sender name refers to the local user."""
    if sender.lower() in ChatExportConfig.SELF_ALIASES:
        return True
    name = settings.self_display_name if self_display_name is None else self_display_name
    return bool(name) and sender.lower() == name.lower()


def _is_system_sender(sender: str) -> bool:
    return len(sender) > ChatExportConfig.MAX_SENDER_LENGTH or ChatExportConfig.SYSTEM_NOTICE_MARKER in sender


def group_by_day_and_sender(
    lines: Iterable[ChatLine],
    self_display_name: Optional[str] = None,
) -> dict[date, dict[str, list[str]]]:
    """
    Group counterpart messages by calendar day, then sender.

    Order of first appearance is kept for both days and senders.
    """
    groups: dict[date, dict[str, list[str]]] = {}
    for line in lines:
        if _is_system_sender(line.sender):
            continue
        if is_self_sender(line.sender, self_display_name):
            continue
        groups.setdefault(line.day, {}).setdefault(line.sender, []).append(line.text)
    return groups


def chat_reference(day: date, sender: str) -> str:
    """Idempotency key for a (day, sender) interaction."""
    safe_sender = re.sub(r"\s+", "_", sender)
    return f"{ChatExportConfig.REFERENCE_PREFIX}-{day.isoformat()}-{safe_sender}"


def decode_transcript(content: bytes) -> str:
    """Decode transcript bytes, UTF-8 first with latin-1 fallback."""
    try:
        return content.decode("utf-8-sig")
    except UnicodeDecodeError:
        return content.decode("latin-1")


def read_chat_archive(data: bytes, filename: str) -> str:
    """
    Extract the transcript from an export archive.

    Raises:
        ChatArchiveError: If the file is not a .zip archive or holds no transcript
    """
    if not filename.lower().endswith(".zip"):
        raise ChatArchiveError("Chat export requires a .zip archive.")
    try:
        with zipfile.ZipFile(io.BytesIO(data)) as archive:
            for member in archive.namelist():
                base = member.rsplit("/", 1)[-1]
                if member.startswith("__") or base.startswith("__") or base.startswith("."):
                    continue
                if member.lower().endswith(".txt"):
                    return decode_transcript(archive.read(member))
    except zipfile.BadZipFile as e:
        raise ChatArchiveError(f"Chat export is not a readable .zip archive: {e}") from e
    raise ChatArchiveError("Chat log not found in archive.")


class ChatExportImporter:
    """Ingests WhatsApp export archives into the identity graph."""

    def __init__(
        self,
        store: EntityStore,
        resolver: IdentityResolver,
        enrichment: EnrichmentService,
        blobs: BlobStore,
        tracker: SyncRunTracker,
        self_display_name: Optional[str] = None,
    ):
        self._store = store
        self._resolver = resolver
        self._enrichment = enrichment
        self._blobs = blobs
        self._tracker = tracker
        self._self_display_name = self_display_name

    def import_archive(self, data: bytes, filename: str) -> dict:
        """
        Import a WhatsApp export archive under a SyncRun.

        Args:
            data: Raw bytes of the .zip archive
            filename: Original filename (must end in .zip)

        Returns:
            Import statistics

        Raises:
            ChatArchiveError: If the archive is unusable (run closed as failed)
        """
        with self._tracker.track(Platform.WHATSAPP) as ctx:
            transcript = read_chat_archive(data, filename)
            stats = self._ingest(transcript, ctx)
        stats["run_id"] = ctx.run.run_id
        stats["filename"] = filename
        logger.info(
            f"WhatsApp import {filename}: {stats['interactions_created']} interactions created, "
            f"{stats['interactions_skipped']} already present, {stats['lines_dropped']} lines dropped"
        )
        return stats

    def _ingest(self, transcript: str, ctx) -> dict:
        stats = {
            "lines_total": 0,
            "lines_parsed": 0,
            "lines_dropped": 0,
            "persons_created": 0,
            "interactions_created": 0,
            "interactions_skipped": 0,
        }

        parsed = []
        for raw_line in transcript.splitlines():
            if not raw_line.strip():
                continue
            stats["lines_total"] += 1
            line = parse_chat_line(raw_line)
            if line is None:
                stats["lines_dropped"] += 1
                continue
            parsed.append(line)
        stats["lines_parsed"] = len(parsed)

        my_id = self._resolver.resolve_self()
        groups = group_by_day_and_sender(parsed, self._self_display_name)

        for day, senders in groups.items():
            for sender, messages in senders.items():
                ctx.records_processed += 1
                result = self._resolver.resolve_detailed(
                    Platform.WHATSAPP, IdentifierType.PLATFORM_ID, sender, sender
                )
                if result.is_new:
                    stats["persons_created"] += 1

                reference = chat_reference(day, sender)
                if self._store.has_interaction(reference):
                    stats["interactions_skipped"] += 1
                    continue

                day_text = "\n".join(messages)
                summary = self._enrichment.summarize(
                    f"Day: {day.isoformat()}\nSource: WhatsApp\nParticipants: You and {sender}\n"
                    f"Content Synthesis:\n{day_text}"
                )
                pointer = self._blobs.save(day_text)

                interaction = Interaction(
                    interaction_type=Platform.WHATSAPP,
                    occurred_at=start_of_day(day),
                    source_platform=Platform.WHATSAPP,
                    external_reference=reference,
                    summary_short=summary,
                    raw_content_pointer=pointer,
                )
                if not self._store.upsert_interaction(interaction):
                    stats["interactions_skipped"] += 1
                    continue

                self._store.upsert_participant(
                    InteractionParticipant(interaction.id, result.person_id, ParticipantRole.SENDER)
                )
                self._store.upsert_participant(
                    InteractionParticipant(interaction.id, my_id, ParticipantRole.RECEIVER)
                )
                stats["interactions_created"] += 1
                ctx.records_created += 1

        return stats
