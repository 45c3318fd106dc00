import asyncio
from dataclasses import dataclass
from typing import Callable, List, Optional

from rds_ssm_connect.core.config import settings
from rds_ssm_connect.core.logging import get_logger
from rds_ssm_connect.schemas.connection import PrerequisiteStatus, PrerequisitesResult

logger = get_logger("prerequisites")


def _whole_output(text: str) -> str:
    return text.strip()


def _first_token(text: str) -> str:
    # "aws-cli/2.15.0 Python/3.11.6 Darwin/23.0.0 exe/x86_64" -> "aws-cli/2.15.0"
    parts = text.split()
    return parts[0] if parts else ""


@dataclass(frozen=True)
class Prerequisite:
    name: str
    command: str
    install_url: str
    install_command: Optional[str] = None
    parse_version: Callable[[str], str] = _whole_output


def default_prerequisites() -> List[Prerequisite]:
    return [
        Prerequisite(
            name="aws-vault",
            command=settings.IDENTITY_WRAPPER,
            install_url="https://github.com/99designs/aws-vault#installing",
            install_command="brew install aws-vault",
        ),
        Prerequisite(
            name="AWS CLI",
            command=settings.AWS_CLI,
            install_url="https://docs.aws.amazon.com/cli/latest/userguide/getting-started-install.html",
            install_command="brew install awscli",
            parse_version=_first_token,
        ),
        Prerequisite(
            name="Session Manager Plugin",
            command="session-manager-plugin",
            install_url=(
                "https://docs.aws.amazon.com/systems-manager/latest/userguide/"
                "session-manager-working-with-install-plugin.html"
            ),
        ),
    ]


async def check_prerequisite(prerequisite: Prerequisite) -> PrerequisiteStatus:
    """Run ``<command> --version`` and report whether the tool is usable."""
    version = None
    try:
        process = await asyncio.create_subprocess_exec(
            prerequisite.command,
            "--version",
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        stdout, stderr = await asyncio.wait_for(
            process.communicate(), timeout=settings.COMMAND_TIMEOUT
        )
        if process.returncode == 0:
            # AWS CLI v1 prints its version on stderr
            output = stdout.decode(errors="replace") or stderr.decode(errors="replace")
            version = prerequisite.parse_version(output)
    except (OSError, asyncio.TimeoutError) as e:
        logger.debug(f"{prerequisite.name} not available: {e}")

    installed = version is not None
    if not installed:
        logger.warning(f"Prerequisite missing: {prerequisite.name}")

    return PrerequisiteStatus(
        name=prerequisite.name,
        installed=installed,
        version=version,
        install_url=prerequisite.install_url,
        install_command=prerequisite.install_command,
    )


async def check_prerequisites(
    prerequisites: Optional[List[Prerequisite]] = None,
) -> PrerequisitesResult:
    """Check every external tool the tunnels depend on."""
    prerequisites = prerequisites if prerequisites is not None else default_prerequisites()
    statuses = await asyncio.gather(*(check_prerequisite(p) for p in prerequisites))
    return PrerequisitesResult(
        all_installed=all(s.installed for s in statuses),
        prerequisites=list(statuses),
    )
