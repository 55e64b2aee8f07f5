"""Load-balancer backends for lbcfg.

Provides the BackendClient capability the router depends on, the
ClientRegistry that turns credential records into per-command clients,
and the aiohttp Cloud Load Balancers implementation.
"""

from .base import BackendClient, BackendId, ClientFactory
from .cloud import CloudLoadBalancerClient, cloud_client_builder
from .registry import ClientRegistry

__all__ = [
    "BackendClient",
    "BackendId",
    "ClientFactory",
    "ClientRegistry",
    "CloudLoadBalancerClient",
    "cloud_client_builder",
]
