"""
Google contacts + Gmail sync for LifeGraph.

One sync run does three things in order:

1. Identity phase: every contact's primary identifier (first email, else
   first phone) is resolved to a person. The contact's other emails and all
   of its phones are attached to that person as secondary evidence, since
   the source asserts they belong together.
2. Interaction phase: one page of Gmail messages is read from the stored
   cursor. Each unseen message becomes an Interaction linked to its sender
   and to the local user.
3. The cursor advances to the next page token.

The run is recorded under platform "google"; the cursor lives in the
SyncState for platform "gmail".
"""
import logging
from pathlib import Path
from typing import Callable, Optional

from api.services.blob_store import BlobStore
from api.services.enrichment import EnrichmentService
from api.services.entity_store import EntityStore
from api.services.google_client import GoogleSession, message_date, message_header, parse_sender
from api.services.graph_models import (
    IdentifierType,
    Interaction,
    InteractionParticipant,
    ParticipantRole,
    Platform,
    SyncState,
)
from api.services.identity_resolver import IdentityResolver, InvalidIdentifierError
from api.services.sync_runs import RunContext, SyncRunTracker
from api.utils.datetime_utils import utc_now
from config.identity_config import GoogleSyncConfig
from config.settings import settings

logger = logging.getLogger(__name__)


def gmail_reference(message_id: str) -> str:
    """Idempotency key for a Gmail message."""
    return f"{GoogleSyncConfig.REFERENCE_PREFIX}-{message_id}"


def _values(entries: Optional[list[dict]]) -> list[str]:
    return [e["value"].strip() for e in entries or [] if (e.get("value") or "").strip()]


def _contact_name(contact: dict) -> Optional[str]:
    names = contact.get("names") or []
    if names:
        return names[0].get("displayName")
    return None


class GoogleSync:
    """Contacts + mail adapter."""

    def __init__(
        self,
        store: EntityStore,
        resolver: IdentityResolver,
        enrichment: EnrichmentService,
        blobs: BlobStore,
        tracker: SyncRunTracker,
        page_size: Optional[int] = None,
        clock: Callable = utc_now,
    ):
        self._store = store
        self._resolver = resolver
        self._enrichment = enrichment
        self._blobs = blobs
        self._tracker = tracker
        self._page_size = page_size or settings.gmail_page_size
        self._clock = clock

    def sync(self, session: Optional[GoogleSession] = None, token_path: Optional[Path] = None) -> dict:
        """
        Run both phases under one SyncRun.

        Args:
            session: Authorized Google session (None = load from token_path)
            token_path: Authorized-user token JSON (default from settings)

        Returns:
            Sync statistics

        Raises:
            GoogleSessionError: If credentials are unusable (run closed as failed)
            HttpError: On Google API failures (run closed as failed)
        """
        stats = {
            "contacts_read": 0,
            "contacts_skipped": 0,
            "persons_created": 0,
            "evidence_attached": 0,
            "messages_read": 0,
            "messages_skipped": 0,
            "interactions_created": 0,
            "interactions_existing": 0,
        }

        with self._tracker.track(Platform.GOOGLE) as ctx:
            if session is None:
                session = GoogleSession.from_token_file(token_path)
            self._sync_contacts(session, stats, ctx)
            self._sync_messages(session, stats, ctx)

        stats["run_id"] = ctx.run.run_id
        logger.info(
            f"Google sync: {stats['contacts_read']} contacts, {stats['persons_created']} persons created, "
            f"{stats['interactions_created']} interactions created, "
            f"{stats['interactions_existing']} already present"
        )
        return stats

    def _sync_contacts(self, session: GoogleSession, stats: dict, ctx: RunContext) -> None:
        for contact in session.fetch_contacts():
            stats["contacts_read"] += 1
            ctx.records_processed += 1

            emails = _values(contact.get("emailAddresses"))
            phones = _values(contact.get("phoneNumbers"))
            name = _contact_name(contact)

            if emails:
                primary = (IdentifierType.EMAIL, emails[0])
            elif phones:
                primary = (IdentifierType.PHONE, phones[0])
            else:
                stats["contacts_skipped"] += 1
                continue

            try:
                result = self._resolver.resolve_detailed(Platform.GOOGLE, primary[0], primary[1], name)
            except InvalidIdentifierError as e:
                logger.warning(f"Skipping contact {contact.get('resourceName')}: {e}")
                stats["contacts_skipped"] += 1
                continue

            if result.is_new:
                stats["persons_created"] += 1
                ctx.records_created += 1

            secondary = [(IdentifierType.EMAIL, e) for e in emails[1:]]
            secondary += [(IdentifierType.PHONE, p) for p in phones]
            for identifier_type, value in secondary:
                if self._resolver.attach_evidence(result.person_id, Platform.GOOGLE, identifier_type, value):
                    stats["evidence_attached"] += 1

    def _sync_messages(self, session: GoogleSession, stats: dict, ctx: RunContext) -> None:
        state = self._store.get_sync_state(Platform.GMAIL)
        cursor = state.last_cursor if state else None

        messages, next_page_token = session.fetch_emails(self._page_size, cursor)
        my_id = self._resolver.resolve_self()

        for message in messages:
            stats["messages_read"] += 1
            ctx.records_processed += 1

            reference = gmail_reference(message["id"])
            if self._store.has_interaction(reference):
                stats["interactions_existing"] += 1
                continue

            sender_name, sender_email = parse_sender(message_header(message, "From"))
            if not sender_email:
                logger.warning(f"Skipping Gmail message {message['id']}: no sender address")
                stats["messages_skipped"] += 1
                continue

            subject = message_header(message, "Subject")
            snippet = message.get("snippet", "")
            summary = self._enrichment.summarize(f"Subject: {subject}\nSnippet: {snippet}")
            pointer = self._blobs.save(snippet)

            interaction = Interaction(
                interaction_type=Platform.GMAIL,
                occurred_at=message_date(message),
                source_platform=Platform.GMAIL,
                external_reference=reference,
                summary_short=summary,
                raw_content_pointer=pointer,
            )
            if not self._store.upsert_interaction(interaction):
                stats["interactions_existing"] += 1
                continue

            sender_id = self._resolver.resolve(Platform.GMAIL, IdentifierType.EMAIL, sender_email, sender_name)
            self._store.upsert_participant(
                InteractionParticipant(interaction.id, sender_id, ParticipantRole.SENDER)
            )
            self._store.upsert_participant(
                InteractionParticipant(interaction.id, my_id, ParticipantRole.RECEIVER)
            )
            stats["interactions_created"] += 1
            ctx.records_created += 1

        self._store.upsert_sync_state(
            SyncState(platform=Platform.GMAIL, last_cursor=next_page_token, last_success_timestamp=self._clock())
        )
