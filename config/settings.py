"""
LifeGraph Configuration Settings
"""
from pathlib import Path
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    # Paths (use LIFEGRAPH_ prefix)
    data_dir: Path = Field(
        default=Path("./data"),
        alias="LIFEGRAPH_DATA_DIR",
        description="Directory holding graph.db and raw content"
    )

    # Enrichment (local LLM via Ollama)
    enrichment_enabled: bool = Field(
        default=True,
        alias="LIFEGRAPH_ENRICHMENT_ENABLED",
        description="Set to false to skip summarization entirely (sentinel summaries)"
    )
    ollama_host: str = Field(default="http://localhost:11434", alias="OLLAMA_HOST")
    ollama_model: str = Field(default="qwen2.5:7b-instruct", alias="OLLAMA_MODEL")
    ollama_timeout: int = Field(default=45, alias="OLLAMA_TIMEOUT")
    enrichment_max_chars: int = Field(
        default=6000,
        alias="LIFEGRAPH_ENRICHMENT_MAX_CHARS",
        description="Max characters of interaction text sent to the LLM"
    )

    # Identity of the local user. Chat senders with this name are treated as self.
    self_display_name: str = Field(
        default="Anqer User",
        alias="LIFEGRAPH_SELF_NAME",
        description="Display name of the local user in imported chats"
    )

    # Google (contacts + Gmail)
    google_token_path: Path = Field(
        default=Path("./config/token_personal.json"),
        alias="LIFEGRAPH_GOOGLE_TOKEN",
        description="Authorized-user token JSON produced by an OAuth flow"
    )
    gmail_page_size: int = Field(default=30, alias="LIFEGRAPH_GMAIL_PAGE_SIZE")
    gmail_query: str = Field(
        default="is:sent OR is:inbox -category:promotions -category:social -from:noreply",
        alias="LIFEGRAPH_GMAIL_QUERY"
    )

    # Sync run history kept in memory at startup
    sync_run_history_limit: int = Field(default=50, alias="LIFEGRAPH_SYNC_RUN_HISTORY")

    @property
    def db_path(self) -> Path:
        """Path to the SQLite database backing the durable store."""
        return self.data_dir / "graph.db"

    @property
    def enrichment_configured(self) -> bool:
        """Check if the local LLM is configured."""
        return bool(self.enrichment_enabled and self.ollama_host.strip())


settings = Settings()
