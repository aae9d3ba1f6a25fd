"""
Interaction enrichment using a local LLM.

Produces the short summary stored on each Interaction and the relationship
narrative shown on a person's timeline. Uses Ollama for zero-cost local
summarization.

Enrichment never raises: when the LLM is not configured or unreachable a
sentinel string is returned so ingestion never blocks on its availability.
Importers call it once per record, sequentially.

## Usage

    from api.services.enrichment import get_enrichment_service

    enrichment = get_enrichment_service()
    summary = enrichment.summarize("Subject: Lunch\\nSnippet: Are we still on?")
"""
import logging
from typing import Optional, Protocol

import httpx

from config.settings import settings

logger = logging.getLogger(__name__)

# Sentinels
NOT_CONFIGURED = "Enrichment not configured."
RELATIONSHIP_NOT_CONFIGURED = "Intelligence services unavailable."
NO_HISTORY = "No interaction history found."
SUMMARY_UNAVAILABLE = "Summary unavailable."
SUMMARY_ERROR = "Error generating summary."
RELATIONSHIP_UNAVAILABLE = "Relationship summary unavailable."
RELATIONSHIP_ERROR = "Could not generate relationship summary."


INTERACTION_SYSTEM_PROMPT = (
    "You are an expert relationship analyst. Provide a detailed 3-4 sentence summary. "
    "Focus on factual content, relationship dynamics, and underlying values "
    "(e.g., integrity, efficiency, empathy). Avoid fluff."
)

INTERACTION_PROMPT = """Analyze and summarize this interaction data. Identify the core topics, the tone of the relationship, and any apparent personal or professional values expressed.

Data: "{content}"

Summary:"""

RELATIONSHIP_SYSTEM_PROMPT = (
    "Create a sophisticated relationship dossier. Structure: 1. Relationship Essence (1 sentence), "
    "2. Recurring Themes & Values, 3. Evolution of Interaction. "
    "Use professional, objective language. Limit to 8 sentences."
)

RELATIONSHIP_PROMPT = """Synthesize the following interaction history into a master relationship narrative. Summaries:
- {context}"""


class EnrichmentService(Protocol):
    """Port consumed by importers and the timeline view."""

    def summarize(self, text: str) -> str:
        ...

    def summarize_relationship(self, summaries: list[str]) -> str:
        ...


class NullEnrichment:
    """Enrichment that is switched off. Always returns sentinels."""

    def summarize(self, text: str) -> str:
        return NOT_CONFIGURED

    def summarize_relationship(self, summaries: list[str]) -> str:
        if not summaries:
            return NO_HISTORY
        return RELATIONSHIP_NOT_CONFIGURED


class OllamaEnrichment:
    """
    Summarization via the Ollama generate API.

    One blocking request per call; no retries, so a slow or missing server
    costs at most one timeout per record.
    """

    def __init__(
        self,
        host: Optional[str] = None,
        model: Optional[str] = None,
        timeout: Optional[int] = None,
        max_chars: Optional[int] = None,
        client: Optional[httpx.Client] = None,
    ):
        """
        Initialize Ollama enrichment.

        Args:
            host: Ollama server URL (default from settings)
            model: Model name to use (default from settings)
            timeout: Request timeout in seconds (default from settings)
            max_chars: Max chars of content sent to the LLM
            client: Pre-built httpx client (tests inject a MockTransport)
        """
        self.host = (host if host is not None else settings.ollama_host).rstrip("/")
        self.model = model or settings.ollama_model
        self.timeout = timeout or settings.ollama_timeout
        self.max_chars = max_chars or settings.enrichment_max_chars
        self._client = client

    @property
    def configured(self) -> bool:
        return bool(self.host)

    def _generate(self, prompt: str, system: str) -> str:
        payload = {
            "model": self.model,
            "prompt": prompt,
            "system": system,
            "stream": False,
            "options": {"temperature": 0.3},
        }
        url = f"{self.host}/api/generate"
        if self._client is not None:
            response = self._client.post(url, json=payload, timeout=self.timeout)
        else:
            with httpx.Client(timeout=self.timeout) as client:
                response = client.post(url, json=payload)
        response.raise_for_status()
        return (response.json().get("response") or "").strip()

    def summarize(self, text: str) -> str:
        """Summarize one interaction (an email or a day of chat)."""
        if not self.configured:
            return NOT_CONFIGURED
        content = text[: self.max_chars]
        try:
            summary = self._generate(INTERACTION_PROMPT.format(content=content), INTERACTION_SYSTEM_PROMPT)
        except (httpx.HTTPError, ValueError) as e:
            logger.warning(f"Interaction summarization failed: {e}")
            return SUMMARY_ERROR
        return summary or SUMMARY_UNAVAILABLE

    def summarize_relationship(self, summaries: list[str]) -> str:
        """Synthesize interaction summaries into a relationship narrative."""
        if not self.configured:
            return RELATIONSHIP_NOT_CONFIGURED
        if not summaries:
            return NO_HISTORY
        context = "\n- ".join(summaries)[: self.max_chars]
        try:
            narrative = self._generate(RELATIONSHIP_PROMPT.format(context=context), RELATIONSHIP_SYSTEM_PROMPT)
        except (httpx.HTTPError, ValueError) as e:
            logger.warning(f"Relationship summarization failed: {e}")
            return RELATIONSHIP_ERROR
        return narrative or RELATIONSHIP_UNAVAILABLE


def get_enrichment_service() -> EnrichmentService:
    """Build the enrichment service selected by settings."""
    if not settings.enrichment_configured:
        logger.info("Enrichment disabled; interactions will carry sentinel summaries")
        return NullEnrichment()
    return OllamaEnrichment()
