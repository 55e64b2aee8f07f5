"""Backend client capability used by the command router.

The router only needs three operations from a load-balancer provider:
register the balancer ids it is about to operate on, fetch their
status, and change one node's condition. Clients own their network
resources; the router creates a fresh client per command and never
shares one across commands.
"""

from abc import ABC, abstractmethod
from typing import Callable, List, Union

from ..models import LbStatus, NodeCondition

BackendId = Union[int, str]


class BackendClient(ABC):
    """Abstract load-balancer client for one region/environment pair.

    Failures are raised as ``exceptions.BackendError`` subclasses.
    """

    @abstractmethod
    def add_target(self, lb_id: BackendId) -> None:
        """Register a balancer id for subsequent status/update calls."""
        ...

    @abstractmethod
    async def status(self) -> List[LbStatus]:
        """Return a snapshot of every registered balancer."""
        ...

    @abstractmethod
    async def update_node(self, node_name: str, condition: NodeCondition) -> None:
        """Set ``node_name`` to ``condition`` on every registered balancer."""
        ...

    async def close(self) -> None:
        """Release network resources. Default: nothing to release."""
        return None


# Builds a client for an ``<region>-<environment>`` key
ClientFactory = Callable[[str], BackendClient]
