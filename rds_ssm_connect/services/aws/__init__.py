"""
AWS access layer

Command runner for the AWS CLI and the resolver built on top of it.
"""

from .command_runner import CommandRunner, NONE_SENTINEL
from .resolver import InfrastructureResolver

__all__ = [
    'CommandRunner',
    'NONE_SENTINEL',
    'InfrastructureResolver',
]
