"""
Infrastructure Resolver

Finds the pieces a port forwarding session needs: the running jump host,
the database endpoint and port, the database credentials and the SSM agent
status of the jump host. Also drives jump host replacement by terminating a
dead instance and polling until the auto-scaling group brings up a new one.
"""

import asyncio
import json
from typing import Optional, Tuple

from rds_ssm_connect.core.config import settings
from rds_ssm_connect.core.exceptions import ResolutionError
from rds_ssm_connect.core.logging import aws_logger
from rds_ssm_connect.core.utils import StopSignal
from rds_ssm_connect.core.security import (
    validate_hostname,
    validate_instance_id,
    validate_port,
    validate_region,
    validate_search_pattern,
    validate_secret_name,
    validate_secret_prefix,
)
from rds_ssm_connect.schemas.project import ProjectDefinition
from rds_ssm_connect.services.aws.command_runner import CommandRunner, is_empty_result

AGENT_ONLINE = "Online"


class InfrastructureResolver:
    """Resolves jump host, database and credential identity for a profile."""

    def __init__(
        self,
        runner: Optional[CommandRunner] = None,
        agent_stabilization_seconds: Optional[float] = None,
    ):
        self.runner = runner or CommandRunner()
        self.agent_stabilization_seconds = (
            agent_stabilization_seconds
            if agent_stabilization_seconds is not None
            else settings.SSM_AGENT_READY_WAIT_SECONDS
        )

    async def _pause(self, seconds: float, stop: Optional[StopSignal]) -> bool:
        """Sleep between polls. Returns True if the caller asked to stop."""
        if stop is not None:
            return await stop.wait(seconds)
        await asyncio.sleep(seconds)
        return False

    async def find_jump_host(
        self, profile: str, region: str, pattern: str = "*bastion*"
    ) -> str:
        """
        Find the id of a running instance whose Name tag matches ``pattern``.

        Raises:
            ResolutionError: If no running instance matches
            ValidationError: If the returned id is malformed
        """
        validate_region(region)
        validate_search_pattern(pattern, "jump host pattern")
        output = await self.runner.run(
            profile,
            [
                "ec2", "describe-instances",
                "--region", region,
                "--filters",
                f"Name=tag:Name,Values={pattern}",
                "Name=instance-state-name,Values=running",
                "--query", "Reservations[].Instances[].InstanceId | [0]",
                "--output", "text",
            ],
        )
        if is_empty_result(output):
            raise ResolutionError("jump host", profile, f"no running instance tagged {pattern}")
        return validate_instance_id(output.split()[0])

    def _rds_query(self, project: ProjectDefinition, field: str) -> list:
        pattern = validate_search_pattern(project.rds_pattern, "database pattern")
        if project.rds_type == "cluster":
            return [
                "rds", "describe-db-clusters",
                "--region", project.region,
                "--query",
                f"DBClusters[?contains(DBClusterIdentifier, '{pattern}') "
                f"&& Status=='available'].{field} | [0]",
                "--output", "text",
            ]
        instance_field = "Endpoint.Address" if field == "Endpoint" else "Endpoint.Port"
        return [
            "rds", "describe-db-instances",
            "--region", project.region,
            "--query",
            f"DBInstances[?contains(DBInstanceIdentifier, '{pattern}') "
            f"&& DBInstanceStatus=='available'].{instance_field} | [0]",
            "--output", "text",
        ]

    async def get_database_endpoint(self, profile: str, project: ProjectDefinition) -> str:
        """
        Find the endpoint hostname of the available cluster or instance
        matching the project's identifier pattern.
        """
        validate_region(project.region)
        output = await self.runner.run(profile, self._rds_query(project, "Endpoint"))
        if is_empty_result(output):
            raise ResolutionError(
                "database endpoint", profile,
                f"no available {project.rds_type} matching {project.rds_pattern}",
            )
        return validate_hostname(output.split()[0])

    async def get_database_port(self, profile: str, project: ProjectDefinition) -> int:
        """Remote database port, or the engine default if the query yields nothing."""
        validate_region(project.region)
        output = await self.runner.run(profile, self._rds_query(project, "Port"))
        if is_empty_result(output):
            aws_logger.info(
                f"No port reported for {project.rds_pattern}, using "
                f"{project.engine} default {project.engine_default_port}"
            )
            return project.engine_default_port
        return validate_port(output.split()[0], "database port")

    async def get_credentials(self, profile: str, project: ProjectDefinition) -> Tuple[str, str]:
        """
        Read the database username and password from Secrets Manager.

        Raises:
            ResolutionError: If no secret matches or its payload is malformed
        """
        validate_region(project.region)
        prefix = validate_secret_prefix(project.secret_prefix)
        secret_name = await self.runner.run(
            profile,
            [
                "secretsmanager", "list-secrets",
                "--region", project.region,
                "--filters", f"Key=name,Values={prefix}",
                "--query", "SecretList[0].Name",
                "--output", "text",
            ],
        )
        if is_empty_result(secret_name):
            raise ResolutionError("credentials", profile, f"no secret with prefix {prefix}")
        secret_name = validate_secret_name(secret_name.splitlines()[0].strip())

        payload = await self.runner.run(
            profile,
            [
                "secretsmanager", "get-secret-value",
                "--region", project.region,
                "--secret-id", secret_name,
                "--query", "SecretString",
                "--output", "text",
            ],
            sensitive=True,
        )
        if is_empty_result(payload):
            raise ResolutionError("credentials", profile, f"secret {secret_name} has no value")

        try:
            credentials = json.loads(payload)
        except json.JSONDecodeError:
            raise ResolutionError("credentials", profile, "secret is not valid JSON")
        if not isinstance(credentials, dict):
            raise ResolutionError("credentials", profile, "secret is not a JSON object")

        username = credentials.get("username") or credentials.get("user")
        password = credentials.get("password")
        if not username or not password:
            raise ResolutionError("credentials", profile, "secret is missing username or password")
        return str(username), str(password)

    async def is_agent_online(self, profile: str, instance_id: str, region: str) -> bool:
        validate_instance_id(instance_id)
        validate_region(region)
        output = await self.runner.run(
            profile,
            [
                "ssm", "describe-instance-information",
                "--region", region,
                "--filters", f"Key=InstanceIds,Values={instance_id}",
                "--query", "InstanceInformationList[0].PingStatus",
                "--output", "text",
            ],
        )
        return output == AGENT_ONLINE

    async def wait_for_agent_ready(
        self,
        profile: str,
        instance_id: str,
        region: str,
        max_attempts: int,
        poll_interval: float,
        stop: Optional[StopSignal] = None,
    ) -> bool:
        """
        Poll the SSM agent until it reports Online, then wait one more
        stabilization interval before declaring the instance ready.

        Returns:
            True once ready; False if attempts ran out or ``stop`` fired
        """
        for attempt in range(1, max_attempts + 1):
            if await self.is_agent_online(profile, instance_id, region):
                aws_logger.info(
                    f"SSM agent on {instance_id} is online, waiting "
                    f"{self.agent_stabilization_seconds}s to stabilize"
                )
                if await self._pause(self.agent_stabilization_seconds, stop):
                    return False
                return True

            aws_logger.debug(
                f"SSM agent on {instance_id} not online yet "
                f"(attempt {attempt}/{max_attempts})"
            )
            if attempt < max_attempts and await self._pause(poll_interval, stop):
                return False

        aws_logger.warning(f"SSM agent on {instance_id} never came online")
        return False

    async def wait_for_replacement_jump_host(
        self,
        profile: str,
        old_instance_id: Optional[str],
        region: str,
        max_attempts: int,
        poll_interval: float,
        pattern: str = "*bastion*",
        agent_max_attempts: Optional[int] = None,
        agent_poll_interval: Optional[float] = None,
        stop: Optional[StopSignal] = None,
    ) -> Optional[str]:
        """
        Poll for a running jump host other than ``old_instance_id`` and
        confirm its SSM agent is ready.

        Returns:
            The new instance id, or None if attempts ran out or ``stop`` fired
        """
        for attempt in range(1, max_attempts + 1):
            try:
                instance_id = await self.find_jump_host(profile, region, pattern)
            except ResolutionError:
                instance_id = None

            if instance_id and instance_id != old_instance_id:
                aws_logger.info(
                    f"Replacement jump host {instance_id} found "
                    f"(attempt {attempt}/{max_attempts})"
                )
                ready = await self.wait_for_agent_ready(
                    profile,
                    instance_id,
                    region,
                    agent_max_attempts or settings.AGENT_READY_MAX_ATTEMPTS,
                    agent_poll_interval
                    if agent_poll_interval is not None
                    else settings.AGENT_READY_POLL_SECONDS,
                    stop=stop,
                )
                return instance_id if ready else None

            aws_logger.info(
                f"Waiting for replacement of jump host {old_instance_id} "
                f"(attempt {attempt}/{max_attempts})"
            )
            if attempt < max_attempts and await self._pause(poll_interval, stop):
                return None

        return None

    async def terminate_jump_host(self, profile: str, instance_id: str, region: str) -> None:
        """
        Ask EC2 to terminate a jump host. The auto-scaling group is
        responsible for launching the replacement.
        """
        validate_instance_id(instance_id)
        validate_region(region)
        aws_logger.warning(f"Terminating unreachable jump host {instance_id}")
        output = await self.runner.run(
            profile,
            [
                "ec2", "terminate-instances",
                "--region", region,
                "--instance-ids", instance_id,
                "--output", "text",
            ],
        )
        if output is None:
            aws_logger.warning(f"Terminate request for {instance_id} did not succeed")
