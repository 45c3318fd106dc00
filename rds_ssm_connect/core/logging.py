import logging
from typing import Optional, Sequence

from rich.console import Console
from rich.logging import RichHandler
from rich.theme import Theme
from rich.traceback import install as install_rich_traceback

from rds_ssm_connect.core.config import settings

# Install rich traceback handling
install_rich_traceback(show_locals=False)

# Create rich console with custom theme
console = Console(
    stderr=True,
    theme=Theme(
        {
            "info": "cyan",
            "warning": "yellow",
            "error": "red",
            "debug": "grey50",
            "tunnel": "green",
            "aws": "blue",
            "api": "magenta",
        }
    ),
)

# Configure rich handler
rich_handler = RichHandler(
    console=console,
    rich_tracebacks=True,
    markup=True,
    show_time=True,
    show_path=False,
)


def _level() -> int:
    if settings.DEBUG:
        return logging.DEBUG
    return getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO)


# Create logger
logger = logging.getLogger("rds_ssm_connect")
logger.setLevel(_level())
logger.handlers = []
logger.addHandler(rich_handler)
logger.propagate = False


def get_logger(name: Optional[str] = None) -> logging.Logger:
    """Get a logger instance with rich formatting."""
    logger_name = name or "rds_ssm_connect"
    named_logger = logging.getLogger(logger_name)

    # Configure logger if not already configured
    if not named_logger.handlers:
        named_logger.setLevel(_level())
        named_logger.addHandler(rich_handler)
        named_logger.propagate = False

    return named_logger


# Create specific loggers for different components
tunnel_logger = get_logger("tunnel")
aws_logger = get_logger("aws")
api_logger = get_logger("api")


def log_command(
    target: logging.Logger, argv: Sequence[str], sensitive: bool = False
) -> None:
    """Log an external command execution with proper formatting."""
    if sensitive:
        target.debug(f"[bold]Executing command:[/bold] {argv[0]} <sensitive arguments>")
    else:
        target.debug(f"[bold]Executing command:[/bold] {' '.join(argv)}")


def log_session_transition(connection_id: str, old: str, new: str, details: dict) -> None:
    """Log a tunnel session state transition with its context."""
    tunnel_logger.info(
        f"[bold]Session {connection_id}[/bold] {old} -> [tunnel]{new}[/tunnel]"
        + "".join(f"\n  [cyan]{k}:[/cyan] {v}" for k, v in details.items())
    )
