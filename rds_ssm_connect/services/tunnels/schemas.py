"""
Schemas for Tunnel Session Management

Data classes for session context, retry policy and forwarding outcomes.
"""

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Optional

from rds_ssm_connect.core.config import settings

if TYPE_CHECKING:
    from .process_manager import ForwardingProcess


@dataclass
class SessionOutcome:
    """How one forwarding subprocess ended."""
    returncode: Optional[int]
    stderr: str = ""
    established: bool = False
    target_unreachable: bool = False
    duration: float = 0.0


@dataclass
class RetryPolicy:
    """Retry budgets and wait intervals of one session."""
    max_recovery_attempts: int = field(default_factory=lambda: settings.MAX_RECOVERY_ATTEMPTS)
    max_reconnect_attempts: int = field(default_factory=lambda: settings.MAX_RECONNECT_ATTEMPTS)
    reconnect_backoff: float = field(default_factory=lambda: settings.RECONNECT_BACKOFF_SECONDS)
    replacement_max_attempts: int = field(default_factory=lambda: settings.BASTION_WAIT_MAX_RETRIES)
    replacement_poll_interval: float = field(
        default_factory=lambda: settings.BASTION_WAIT_RETRY_DELAY_SECONDS
    )
    agent_max_attempts: int = field(default_factory=lambda: settings.AGENT_READY_MAX_ATTEMPTS)
    agent_poll_interval: float = field(default_factory=lambda: settings.AGENT_READY_POLL_SECONDS)
    stable_session_seconds: float = field(default_factory=lambda: settings.STABLE_SESSION_SECONDS)


@dataclass
class SessionContext:
    """Mutable state owned by exactly one TunnelSession."""
    connection_id: str
    project_key: str
    profile: str
    local_port: int
    instance_id: Optional[str] = None
    rds_endpoint: Optional[str] = None
    remote_port: Optional[int] = None
    username: Optional[str] = None
    password: Optional[str] = None
    reconnect_count: int = 0
    recovery_count: int = 0
    manual_disconnect: bool = False
    process: Optional["ForwardingProcess"] = None
