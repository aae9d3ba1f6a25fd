"""
Google People + Gmail access for the contacts/mail adapter.

GoogleSession wraps the two discovery services built from already-authorized
credentials. Obtaining the token (the browser OAuth flow) happens outside
LifeGraph; a token JSON produced by any installed-app flow can be loaded
with GoogleSession.from_token_file().
"""
import logging
import re
from datetime import datetime
from email.utils import parsedate_to_datetime
from pathlib import Path
from typing import Optional

from google.auth.exceptions import GoogleAuthError
from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from api.utils.datetime_utils import make_aware, utc_now
from config.identity_config import GoogleSyncConfig
from config.settings import settings

logger = logging.getLogger(__name__)

SCOPES = [
    "https://www.googleapis.com/auth/contacts.readonly",
    "https://www.googleapis.com/auth/gmail.readonly",
]


class GoogleSessionError(Exception):
    """Raised when credentials are missing, invalid, or cannot be refreshed."""
    pass


def parse_sender(from_header: str) -> tuple[str, str]:
    """
    Parse sender name and email from From header.

    Args:
        from_header: Raw From header value

    Returns:
        Tuple of (sender_name, sender_email). Email is "" when the header
        carries no address.
    """
    value = (from_header or "").strip()
    # Pattern: "Name <email@example.com>" or just "email@example.com"
    match = re.match(r'^"?([^"<]*)"?\s*<([^>]+)>$', value)
    if match:
        email = match.group(2).strip()
        return match.group(1).strip() or email, email

    if "@" in value:
        return value, value

    return value, ""


def message_header(message: dict, name: str) -> str:
    """Case-insensitive header lookup on a full-format Gmail message."""
    for header in message.get("payload", {}).get("headers", []):
        if header.get("name", "").lower() == name.lower():
            return header.get("value", "")
    return ""


def message_date(message: dict) -> datetime:
    """Date header as an aware datetime, falling back to now."""
    date_str = message_header(message, "Date")
    if date_str:
        try:
            return make_aware(parsedate_to_datetime(date_str))
        except (TypeError, ValueError):
            logger.debug(f"Unparseable Date header on {message.get('id')}: {date_str}")
    return utc_now()


class GoogleSession:
    """Authorized People and Gmail API clients."""

    def __init__(self, people_service, gmail_service):
        """
        Initialize the session.

        Args:
            people_service: googleapiclient Resource for people v1
            gmail_service: googleapiclient Resource for gmail v1
        """
        self.people = people_service
        self.gmail = gmail_service

    @classmethod
    def from_credentials(cls, credentials: Credentials) -> "GoogleSession":
        if not credentials or not credentials.valid:
            raise GoogleSessionError("Google credentials are not valid")
        people = build("people", "v1", credentials=credentials, cache_discovery=False)
        gmail = build("gmail", "v1", credentials=credentials, cache_discovery=False)
        return cls(people, gmail)

    @classmethod
    def from_token_file(cls, token_path: Optional[Path] = None) -> "GoogleSession":
        """
        Load an authorized-user token, refreshing it if expired.

        Raises:
            GoogleSessionError: If the token is missing or cannot be refreshed
        """
        path = Path(token_path or settings.google_token_path)
        if not path.exists():
            raise GoogleSessionError(f"Google token not found at {path}")

        try:
            credentials = Credentials.from_authorized_user_file(str(path), SCOPES)
        except ValueError as e:
            raise GoogleSessionError(f"Google token at {path} is malformed: {e}") from e

        if not credentials.valid:
            if not (credentials.expired and credentials.refresh_token):
                raise GoogleSessionError("Google token expired and has no refresh token")
            try:
                logger.info("Refreshing expired Google token")
                credentials.refresh(Request())
            except GoogleAuthError as e:
                raise GoogleSessionError(f"Google token refresh failed (may be revoked): {e}") from e
            path.write_text(credentials.to_json())

        return cls.from_credentials(credentials)

    def fetch_contacts(self, page_size: int = GoogleSyncConfig.CONTACTS_PAGE_SIZE) -> list[dict]:
        """All connections of the authorized user, following pagination."""
        contacts = []
        page_token = None
        while True:
            result = self.people.people().connections().list(
                resourceName="people/me",
                pageSize=page_size,
                personFields="names,emailAddresses,phoneNumbers",
                pageToken=page_token,
            ).execute()
            contacts.extend(result.get("connections", []))
            page_token = result.get("nextPageToken")
            if not page_token:
                break
        logger.info(f"Fetched {len(contacts)} Google contacts")
        return contacts

    def fetch_emails(
        self,
        max_results: int = 30,
        page_token: Optional[str] = None,
        query: Optional[str] = None,
    ) -> tuple[list[dict], Optional[str]]:
        """
        One page of full-format messages.

        Individual messages that fail to fetch are logged and skipped.

        Returns:
            Tuple of (messages, next_page_token)
        """
        listing = self.gmail.users().messages().list(
            userId="me",
            maxResults=max_results,
            pageToken=page_token,
            q=query or settings.gmail_query,
        ).execute()

        messages = []
        for stub in listing.get("messages", []):
            try:
                messages.append(
                    self.gmail.users().messages().get(userId="me", id=stub["id"], format="full").execute()
                )
            except HttpError as e:
                logger.warning(f"Skipped Gmail message {stub.get('id')}: {e}")
        return messages, listing.get("nextPageToken")
