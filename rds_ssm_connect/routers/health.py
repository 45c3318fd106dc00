from fastapi import APIRouter, Depends
from pydantic import BaseModel

from rds_ssm_connect import __version__
from rds_ssm_connect.dependencies.registry import get_connection_registry
from rds_ssm_connect.services.tunnels.registry import ConnectionRegistry
from rds_ssm_connect.websocket import websocket_manager
from rds_ssm_connect.websocket.manager import EVENTS_CHANNEL

router = APIRouter()


class HealthResponse(BaseModel):
    status: str
    version: str
    active_connections: int
    forwarding_processes: int
    event_listeners: int


@router.get("/health", response_model=HealthResponse)
async def health_check(registry: ConnectionRegistry = Depends(get_connection_registry)):
    """Liveness check for the control surface."""
    return HealthResponse(
        status="ok",
        version=__version__,
        active_connections=registry.connection_count,
        forwarding_processes=len(registry.process_manager.get_tracked_processes()),
        event_listeners=websocket_manager.get_channel_stats().get(EVENTS_CHANNEL, 0),
    )
