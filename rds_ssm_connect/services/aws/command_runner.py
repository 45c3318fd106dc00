"""
AWS CLI Command Runner

Runs AWS CLI queries under a named identity profile through the identity
wrapper (aws-vault by default). Failed queries return None; deciding whether
a missing answer matters is left to the caller.
"""

import asyncio
from typing import List, Optional, Sequence

from rds_ssm_connect.core.config import settings
from rds_ssm_connect.core.logging import aws_logger, log_command
from rds_ssm_connect.core.security import (
    validate_hostname,
    validate_instance_id,
    validate_port,
    validate_profile,
    validate_region,
)

# What `--output text` prints for an empty JMESPath result
NONE_SENTINEL = "None"

PORT_FORWARDING_DOCUMENT = "AWS-StartPortForwardingSessionToRemoteHost"


def is_empty_result(text: Optional[str]) -> bool:
    return not text or text == NONE_SENTINEL


class CommandRunner:
    """Executes AWS CLI commands wrapped in the identity wrapper."""

    def __init__(
        self,
        identity_wrapper: Optional[str] = None,
        aws_cli: Optional[str] = None,
        timeout: Optional[float] = None,
    ):
        self.identity_wrapper = identity_wrapper or settings.IDENTITY_WRAPPER
        self.aws_cli = aws_cli or settings.AWS_CLI
        self.timeout = timeout if timeout is not None else settings.COMMAND_TIMEOUT

    def build_argv(self, profile: str, args: Sequence[str]) -> List[str]:
        """
        Wrap AWS CLI arguments so they run under ``profile``.

        Raises:
            ValidationError: If the profile name fails the allow-list
        """
        validate_profile(profile)
        return [self.identity_wrapper, "exec", profile, "--", self.aws_cli, *args]

    def build_forwarding_argv(
        self,
        profile: str,
        instance_id: str,
        host: str,
        remote_port: int,
        local_port: int,
        region: str,
    ) -> List[str]:
        """Command line of the long-running SSM port forwarding session."""
        validate_instance_id(instance_id)
        validate_hostname(host)
        validate_region(region)
        remote_port = validate_port(remote_port, "remote port")
        local_port = validate_port(local_port, "local port")
        return self.build_argv(
            profile,
            [
                "ssm", "start-session",
                "--region", region,
                "--target", instance_id,
                "--document-name", PORT_FORWARDING_DOCUMENT,
                "--parameters",
                f"host={host},portNumber={remote_port},localPortNumber={local_port}",
                "--cli-connect-timeout", "0",
            ],
        )

    async def run(
        self, profile: str, args: Sequence[str], sensitive: bool = False
    ) -> Optional[str]:
        """
        Run one AWS CLI command and return its trimmed stdout.

        Args:
            profile: Identity profile to run under
            args: AWS CLI arguments (everything after ``aws``)
            sensitive: Keep the arguments out of the logs

        Returns:
            Trimmed stdout, or None if the command could not be started,
            timed out or exited non-zero
        """
        argv = self.build_argv(profile, args)
        log_command(aws_logger, argv, sensitive=sensitive)

        try:
            process = await asyncio.create_subprocess_exec(
                *argv,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            aws_logger.error(f"Failed to start {argv[0]}: {e}")
            return None

        try:
            stdout, stderr = await asyncio.wait_for(
                process.communicate(), timeout=self.timeout
            )
        except asyncio.TimeoutError:
            aws_logger.error(
                f"Command timed out after {self.timeout}s for profile {profile}"
            )
            try:
                process.kill()
            except ProcessLookupError:
                pass
            await process.wait()
            return None

        if process.returncode != 0:
            aws_logger.warning(
                f"Command exited with code {process.returncode} for profile "
                f"{profile}: {stderr.decode(errors='replace').strip()}"
            )
            return None

        return stdout.decode(errors="replace").strip()
