from pydantic import BaseModel, Field
from typing import List, Optional, Union


class ConnectionInfo(BaseModel):
    """What a database client needs to use an open tunnel."""

    host: str = Field(default="127.0.0.1", description="Always the loopback address")
    port: str = Field(..., description="Fixed local port of the tunnel")
    username: str
    password: str
    database: str
    rds_endpoint: Optional[str] = Field(default=None, alias="rdsEndpoint")
    instance_id: Optional[str] = Field(default=None, alias="instanceId")

    class Config:
        populate_by_name = True


class ConnectRequest(BaseModel):
    project_key: str = Field(..., alias="projectKey")
    profile: str
    local_port: Optional[Union[int, str]] = Field(default=None, alias="localPort")

    # Retry policy overrides; unset fields keep the configured defaults
    max_recovery_attempts: Optional[int] = Field(default=None, ge=0, alias="maxRecoveryAttempts")
    max_reconnect_attempts: Optional[int] = Field(default=None, ge=0, alias="maxReconnectAttempts")
    reconnect_backoff: Optional[float] = Field(default=None, ge=0, alias="reconnectBackoff")

    class Config:
        populate_by_name = True


class ConnectResponse(BaseModel):
    connection_id: str = Field(..., alias="connectionId")
    connection_info: ConnectionInfo = Field(..., alias="connectionInfo")

    class Config:
        populate_by_name = True


class ActiveConnection(BaseModel):
    connection_id: str = Field(..., alias="connectionId")
    project_key: str = Field(..., alias="projectKey")
    profile: str
    state: str
    connection_info: Optional[ConnectionInfo] = Field(default=None, alias="connectionInfo")

    class Config:
        populate_by_name = True


class StatusResponse(BaseModel):
    connection_count: int = Field(..., alias="connectionCount")
    connections: List[ActiveConnection]

    class Config:
        populate_by_name = True


class MessageResponse(BaseModel):
    message: str


class PrerequisiteStatus(BaseModel):
    name: str
    installed: bool
    version: Optional[str] = None
    install_url: str = Field(..., alias="installUrl")
    install_command: Optional[str] = Field(default=None, alias="installCommand")

    class Config:
        populate_by_name = True


class PrerequisitesResult(BaseModel):
    all_installed: bool = Field(..., alias="allInstalled")
    prerequisites: List[PrerequisiteStatus]

    class Config:
        populate_by_name = True
