"""
Exception hierarchy for tunnel sessions.

Resolution and validation errors are fatal to a session. Target-unreachable
and session-ended errors are recovered locally until their retry budget runs
out, at which point a BudgetExhaustedError is raised instead.
"""
from typing import Optional


class TunnelError(Exception):
    """Base class for all tunnel session errors."""


class ResolutionError(TunnelError):
    """Jump host, endpoint or credentials could not be found."""

    def __init__(self, what: str, profile: Optional[str] = None, detail: Optional[str] = None):
        self.what = what
        self.profile = profile
        self.detail = detail
        message = f"Failed to resolve {what}"
        if profile:
            message += f" for profile {profile}"
        if detail:
            message += f": {detail}"
        super().__init__(message)


class ValidationError(TunnelError):
    """A value failed its allow-list check and must not reach a command line."""

    def __init__(self, field: str, value: object):
        self.field = field
        self.value = value
        super().__init__(f"Invalid {field}: {value!r}")


class TargetUnreachableError(TunnelError):
    """The forwarding session reported that its jump host is gone."""

    def __init__(self, instance_id: Optional[str], stderr: str = ""):
        self.instance_id = instance_id
        self.stderr = stderr
        super().__init__(f"Jump host {instance_id} is no longer reachable")


class SessionEndedError(TunnelError):
    """The forwarding subprocess exited without a manual disconnect."""

    def __init__(self, returncode: Optional[int], stderr: str = ""):
        self.returncode = returncode
        self.stderr = stderr
        super().__init__(f"Port forwarding session ended with exit code {returncode}")


class BudgetExhaustedError(TunnelError):
    """A recovery or reconnect budget ran out."""

    def __init__(self, kind: str, budget: int, cause: Optional[BaseException] = None):
        self.kind = kind
        self.budget = budget
        self.cause = cause
        message = f"Giving up after {budget} {kind} attempts"
        if cause is not None:
            message += f" (last error: {cause})"
        super().__init__(message)


class PortConflictError(TunnelError):
    """The requested local port is claimed or not free on loopback."""

    def __init__(self, port: int, reason: str):
        self.port = port
        self.reason = reason
        super().__init__(
            f"Port {port} is not available ({reason}). Close the application "
            f"using it or change the port in project settings."
        )


class UnknownProjectError(TunnelError):
    """No project definition exists for the given key."""

    def __init__(self, project_key: str):
        self.project_key = project_key
        super().__init__(f"Unknown project: {project_key}")


class SessionClosedError(TunnelError):
    """The session was disconnected before its tunnel was established."""

    def __init__(self, connection_id: str):
        self.connection_id = connection_id
        super().__init__(f"Connection {connection_id} was closed while resolving")
