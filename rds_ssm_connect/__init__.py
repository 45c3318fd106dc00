"""Resilient SSM port forwarding tunnels to RDS through a bastion jump host."""

__version__ = "1.0.0"
