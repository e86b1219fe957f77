"""Application configuration loaded from environment variables."""

from functools import lru_cache

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from .env file and environment variables."""

    # Voice backend agent IDs (empty string = role not configured)
    client_officer_agent_id: str = ""
    security_agent_id: str = ""
    travel_agent_id: str = ""
    researcher_agent_id: str = ""
    contacts_agent_id: str = ""
    medical_agent_id: str = ""

    # ElevenLabs Conversational AI transport
    elevenlabs_ws_url: str = "wss://api.elevenlabs.io/v1/convai/conversation"
    elevenlabs_api_key: str = ""
    speaking_idle_seconds: float = 0.8

    # Orchestration timing
    session_settle_delay_seconds: float = 0.5
    default_volume: int = 80

    # Research gateway
    research_endpoint: str = ""
    research_api_key: str = ""
    research_timeout_seconds: float = 30.0

    # Azure Key Vault (API key for this service)
    key_vault_url: str = ""
    api_key_secret_name: str = "soc-room-api-key"
    api_key: str = ""

    # Azure Blob Storage (image attachments)
    blob_storage_url: str = ""

    # Logging
    log_level: str = "INFO"

    model_config = {
        "env_file": ".env",
        "case_sensitive": False,
    }

    def agent_id_for(self, role: str) -> str | None:
        """Return the configured agent ID for a role wire name, or None."""
        field_name = _ROLE_FIELDS.get(role)
        if field_name is None:
            return None
        return getattr(self, field_name) or None


_ROLE_FIELDS: dict[str, str] = {
    "clientOfficer": "client_officer_agent_id",
    "security": "security_agent_id",
    "travel": "travel_agent_id",
    "researcher": "researcher_agent_id",
    "contacts": "contacts_agent_id",
    "medical": "medical_agent_id",
}


@lru_cache
def get_settings() -> Settings:
    """Return a cached Settings instance."""
    return Settings()
