from fastapi import APIRouter, Depends, HTTPException
from typing import Optional

from rds_ssm_connect.core.exceptions import (
    BudgetExhaustedError,
    PortConflictError,
    ResolutionError,
    SessionClosedError,
    TunnelError,
    UnknownProjectError,
    ValidationError,
)
from rds_ssm_connect.core.logging import api_logger
from rds_ssm_connect.dependencies.registry import get_connection_registry
from rds_ssm_connect.schemas.connection import (
    ActiveConnection,
    ConnectRequest,
    ConnectResponse,
    MessageResponse,
    StatusResponse,
)
from rds_ssm_connect.services.tunnels.registry import ConnectionRegistry
from rds_ssm_connect.services.tunnels.schemas import RetryPolicy

router = APIRouter(tags=["connections"])


def tunnel_http_exception(error: TunnelError) -> HTTPException:
    """Translate a tunnel error into the HTTP status the caller should see."""
    if isinstance(error, UnknownProjectError):
        status_code = 404
    elif isinstance(error, (PortConflictError, SessionClosedError)):
        status_code = 409
    elif isinstance(error, ValidationError):
        status_code = 422
    elif isinstance(error, (ResolutionError, BudgetExhaustedError)):
        status_code = 502
    else:
        status_code = 500
    return HTTPException(status_code=status_code, detail=str(error))


def retry_policy(request: ConnectRequest) -> Optional[RetryPolicy]:
    """Build the retry policy of a connect request, or None for the defaults."""
    overrides = {
        name: value
        for name, value in (
            ("max_recovery_attempts", request.max_recovery_attempts),
            ("max_reconnect_attempts", request.max_reconnect_attempts),
            ("reconnect_backoff", request.reconnect_backoff),
        )
        if value is not None
    }
    return RetryPolicy(**overrides) if overrides else None


@router.post("", response_model=ConnectResponse, response_model_by_alias=True)
async def connect(
    request: ConnectRequest,
    registry: ConnectionRegistry = Depends(get_connection_registry),
):
    """Open a tunnel and return the connection info once it is resolved."""
    try:
        connection_id, connection_info = await registry.connect(
            request.project_key, request.profile, request.local_port, retry_policy(request)
        )
    except TunnelError as e:
        api_logger.warning(f"Connect to {request.project_key} as {request.profile} failed: {e}")
        raise tunnel_http_exception(e)

    return ConnectResponse(connection_id=connection_id, connection_info=connection_info)


@router.get("", response_model=StatusResponse, response_model_by_alias=True)
async def status(registry: ConnectionRegistry = Depends(get_connection_registry)):
    """List the active connections."""
    connections = registry.status()
    return StatusResponse(connection_count=len(connections), connections=connections)


@router.get("/{connection_id}", response_model=ActiveConnection, response_model_by_alias=True)
async def get_connection(
    connection_id: str,
    registry: ConnectionRegistry = Depends(get_connection_registry),
):
    """Show one connection."""
    connection = registry.describe(connection_id)
    if connection is None:
        raise HTTPException(status_code=404, detail=f"Unknown connection: {connection_id}")
    return connection


@router.delete("/{connection_id}", response_model=MessageResponse)
async def disconnect(
    connection_id: str,
    registry: ConnectionRegistry = Depends(get_connection_registry),
):
    """Close one connection."""
    if not await registry.disconnect(connection_id):
        raise HTTPException(status_code=404, detail=f"Unknown connection: {connection_id}")
    return MessageResponse(message=f"Disconnected {connection_id}")


@router.delete("", response_model=MessageResponse)
async def disconnect_all(registry: ConnectionRegistry = Depends(get_connection_registry)):
    """Close every connection."""
    count = await registry.disconnect_all()
    return MessageResponse(message=f"Disconnected {count} connections")
