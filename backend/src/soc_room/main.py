"""FastAPI app for the SOC room: voice agent orchestration with SSE streaming."""

import logging
from contextlib import asynccontextmanager

from dotenv import load_dotenv

# Load .env BEFORE any other imports that read env vars
load_dotenv()

from azure.identity.aio import DefaultAzureCredential  # noqa: E402
from azure.keyvault.secrets.aio import SecretClient as KeyVaultSecretClient  # noqa: E402
from fastapi import FastAPI  # noqa: E402

from soc_room.agents.orchestrator import Orchestrator  # noqa: E402
from soc_room.agents.registry import SpecialistRegistry  # noqa: E402
from soc_room.agents.room import SOCRoom  # noqa: E402
from soc_room.api.health import router as health_router  # noqa: E402
from soc_room.api.room import router as room_router  # noqa: E402
from soc_room.auth import APIKeyMiddleware  # noqa: E402
from soc_room.config import Settings, get_settings  # noqa: E402
from soc_room.db.blob_storage import BlobStorageManager  # noqa: E402
from soc_room.streaming.adapter import RoomBroadcaster  # noqa: E402
from soc_room.tools.research import ResearchGateway  # noqa: E402
from soc_room.transport.elevenlabs import ElevenLabsTransport  # noqa: E402

logger = logging.getLogger(__name__)


async def _fetch_api_key(settings: Settings) -> str | None:
    """Read the API key from Azure Key Vault, falling back to settings."""
    if not settings.key_vault_url:
        if settings.api_key:
            logger.info("Key Vault not configured, using API key from settings")
        return settings.api_key or None

    credential = DefaultAzureCredential()
    try:
        kv_client = KeyVaultSecretClient(
            vault_url=settings.key_vault_url, credential=credential
        )
        secret = await kv_client.get_secret(settings.api_key_secret_name)
        logger.info("API key fetched from Key Vault")
        await kv_client.close()
        return secret.value
    except Exception:
        logger.warning(
            "Could not fetch API key from Key Vault. "
            "API key auth will not be available until Key Vault is configured."
        )
        return settings.api_key or None
    finally:
        await credential.close()


def build_room(
    settings: Settings, blob_manager: BlobStorageManager | None = None
) -> SOCRoom:
    """Wire registry, transport, research gateway and orchestrator into a room."""
    registry = SpecialistRegistry.from_settings(settings)
    transport = ElevenLabsTransport(
        ws_url=settings.elevenlabs_ws_url,
        api_key=settings.elevenlabs_api_key,
        speaking_idle_seconds=settings.speaking_idle_seconds,
    )
    research = ResearchGateway(
        endpoint=settings.research_endpoint,
        api_key=settings.research_api_key,
        timeout=settings.research_timeout_seconds,
    )
    orchestrator = Orchestrator(
        registry,
        transport,
        research=research,
        settle_delay=settings.session_settle_delay_seconds,
        volume=settings.default_volume,
    )
    return SOCRoom(orchestrator, RoomBroadcaster(), blob_manager=blob_manager)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize resources at startup, clean up at shutdown."""
    settings = get_settings()
    logging.getLogger("soc_room").setLevel(settings.log_level.upper())

    app.state.api_key = await _fetch_api_key(settings)

    # Blob Storage for image attachments is optional
    blob_manager: BlobStorageManager | None = None
    if settings.blob_storage_url:
        blob_mgr = BlobStorageManager(account_url=settings.blob_storage_url)
        try:
            await blob_mgr.initialize()
            blob_manager = blob_mgr
            logger.info("Blob Storage manager initialized")
        except Exception:
            logger.warning(
                "Could not initialize Blob Storage. "
                "Image attachments will be recorded without storage."
            )
    app.state.blob_manager = blob_manager

    app.state.room = build_room(settings, blob_manager)
    logger.info("SOC room created and stored on app.state")

    yield

    await app.state.room.close()
    if app.state.blob_manager is not None:
        await app.state.blob_manager.close()


# ---------------------------------------------------------------------------
# App
# ---------------------------------------------------------------------------

app = FastAPI(title="SOC Room Server", lifespan=lifespan)

# API key auth middleware -- reads app.state.api_key lazily (set by lifespan)
app.add_middleware(APIKeyMiddleware)

app.include_router(health_router)
app.include_router(room_router)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="127.0.0.1", port=8003)
