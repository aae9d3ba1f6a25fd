"""
Identity and Ingestion Configuration for LifeGraph.

Confidence values used when minting identity evidence, and limits applied by
the source importers. Edit this file to tune resolution behavior.
"""


class IdentityConfig:
    """Configuration for deterministic identity resolution."""

    # Confidence for a person minted from the local system identity
    SYSTEM_PERSON_CONFIDENCE: float = 1.0

    # Confidence for a person minted from any external source.
    # The node stays provisional until corroborated.
    PROVISIONAL_PERSON_CONFIDENCE: float = 0.1

    # Confidence of the evidence row that minted a person
    PRIMARY_EVIDENCE_CONFIDENCE: float = 1.0

    # Confidence of identifiers co-listed on one external contact record
    SECONDARY_EVIDENCE_CONFIDENCE: float = 0.9

    # Name given to a person when the source offers no name hint
    UNKNOWN_NAME: str = "Unknown Node"

    # Platform identifier of the local user
    SELF_IDENTIFIER: str = "ME"


class ChatExportConfig:
    """Configuration for chat export ingestion."""

    # Senders with longer names are system notices, not people
    MAX_SENDER_LENGTH: int = 50

    # Sender names containing this marker are group notices ("X changed the subject")
    SYSTEM_NOTICE_MARKER: str = " changed "

    # Names the export uses for the local user
    SELF_ALIASES: frozenset = frozenset({"you", "me"})

    # Prefix of the external reference for a (day, sender) interaction
    REFERENCE_PREFIX: str = "wa"


class GoogleSyncConfig:
    """Configuration for contacts and Gmail ingestion."""

    # Page size for People API connection listing
    CONTACTS_PAGE_SIZE: int = 100

    # Prefix of the external reference for a Gmail message
    REFERENCE_PREFIX: str = "gmail"
