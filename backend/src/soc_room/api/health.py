"""Health check endpoint with voice backend and collaborator status."""

from fastapi import APIRouter, Request

router = APIRouter()


@router.get("/health")
async def health_check(request: Request) -> dict:
    """Return service health, configured agents and optional collaborators."""
    room = getattr(request.app.state, "room", None)
    if room is None:
        return {
            "status": "degraded",
            "room": "not_configured",
            "agents": {},
            "research": "not_configured",
            "storage": "not_configured",
        }

    orchestrator = room.orchestrator
    agents = {
        specialist.role.value: (
            "configured" if specialist.is_configured else "not_configured"
        )
        for specialist in orchestrator.registry
    }
    research = orchestrator.research
    research_status = (
        "configured" if research is not None and research.is_configured else "not_configured"
    )
    storage_status = "connected" if room.blob_manager is not None else "not_configured"

    primary_ready = orchestrator.registry.primary.is_configured
    return {
        "status": "ok" if primary_ready else "degraded",
        "room": orchestrator.state.connection_phase.value,
        "agents": agents,
        "research": research_status,
        "storage": storage_status,
    }
