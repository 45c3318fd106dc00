from pydantic import BaseModel, Field, field_validator
from typing import Dict, Literal, Optional

from rds_ssm_connect.core.security import REGION_PATTERN

ENGINE_DEFAULT_PORTS = {
    "postgres": 5432,
    "mysql": 3306,
}


class ProjectDefinition(BaseModel):
    """Connection settings for one project, as stored in projects.json."""

    name: str = Field(..., description="Display name of the project")
    region: str = Field(..., description="AWS region, e.g. us-east-2")
    database: str = Field(..., description="Database name reported to clients")
    secret_prefix: str = Field(
        ..., alias="secretPrefix", description="Prefix of the Secrets Manager secret holding credentials"
    )
    rds_type: Literal["cluster", "instance"] = Field(
        ..., alias="rdsType", description="Whether rdsPattern matches clusters or instances"
    )
    rds_pattern: str = Field(
        ..., alias="rdsPattern", description="Substring of the DB cluster/instance identifier"
    )
    env_port_mapping: Dict[str, str] = Field(
        default_factory=dict,
        alias="envPortMapping",
        description="Environment-name suffix to fixed local port",
    )
    default_port: str = Field(..., alias="defaultPort", description="Local port when no suffix matches")
    engine: Literal["postgres", "mysql"] = Field(default="postgres", description="Database engine family")
    bastion_pattern: str = Field(
        default="*bastion*", alias="bastionPattern", description="Name tag pattern of the jump host"
    )
    profile_filter: Optional[str] = Field(
        default=None, alias="profileFilter", description="Only offer profiles containing this substring"
    )

    class Config:
        frozen = True
        populate_by_name = True

    @field_validator("region")
    @classmethod
    def _region_format(cls, value: str) -> str:
        if not REGION_PATTERN.match(value):
            raise ValueError(f"Invalid region format: {value}")
        return value

    @field_validator("default_port", mode="before")
    @classmethod
    def _default_port_numeric(cls, value: str) -> str:
        if not str(value).isdigit():
            raise ValueError(f"defaultPort must be a numeric string: {value}")
        return str(value)

    @field_validator("env_port_mapping", mode="before")
    @classmethod
    def _mapping_ports_numeric(cls, value: Dict[str, str]) -> Dict[str, str]:
        if not isinstance(value, dict):
            return value
        for suffix, port in value.items():
            if not str(port).isdigit():
                raise ValueError(f'Port for "{suffix}" must be a numeric string: {port}')
        return {suffix: str(port) for suffix, port in value.items()}

    @property
    def engine_default_port(self) -> int:
        return ENGINE_DEFAULT_PORTS[self.engine]


class ProjectSummary(BaseModel):
    key: str
    name: str
