"""
Dependency injection for the Connection Registry
"""

from functools import lru_cache
from rds_ssm_connect.services.tunnels.registry import ConnectionRegistry


@lru_cache()
def get_connection_registry() -> ConnectionRegistry:
    """
    The process-wide ConnectionRegistry.

    Local port ownership is only enforced within one registry, so every
    request and the shutdown hook in main.py must share this instance.
    Tests swap it out through ``app.dependency_overrides``.
    """
    return ConnectionRegistry()
