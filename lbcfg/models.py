"""Data models shared by the router, backends and transports.

Transient values (Command, InboundMessage) are frozen dataclasses that
live for a single request/response cycle. Backend snapshots and
credential records are pydantic models because they are parsed from
provider responses and YAML configuration.

Enums:
    Origin, NodeCondition

Models:
    Command, InboundMessage, NodeStatus, LbStatus, CredentialRecord
"""

from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Union

from pydantic import BaseModel, Field


class Origin(str, Enum):
    """Kind of channel a command arrived on."""
    DIRECT = "direct"    # One-to-one / private message
    GROUP = "group"      # Shared channel or group chat
    SHELL = "shell"      # Local console adapter, never private


class NodeCondition(str, Enum):
    """Administrative condition of a node within a balancer."""
    ENABLED = "ENABLED"
    DRAINING = "DRAINING"
    DISABLED = "DISABLED"


@dataclass(frozen=True)
class Command:
    """A structured command parsed from one inbound message.

    All string fields are lower-cased on construction so lookups and
    backend calls never depend on how the operator typed them.
    """

    action: str
    region: str
    environment: str
    balancer: str
    node: Optional[str] = None
    origin: Origin = Origin.GROUP

    def __post_init__(self):
        for name in ("action", "region", "environment", "balancer"):
            object.__setattr__(self, name, getattr(self, name).lower())
        if self.node is not None:
            object.__setattr__(self, "node", self.node.lower())

    @property
    def path(self) -> str:
        """Dotted ``region.environment.balancer`` path."""
        return f"{self.region}.{self.environment}.{self.balancer}"

    @property
    def env_key(self) -> str:
        """Key used to look up backend credentials."""
        return f"{self.region}-{self.environment}"


@dataclass(frozen=True)
class InboundMessage:
    """A chat message as delivered by a transport.

    Attributes:
        body: Message text with any robot mention stripped.
        sender: Phone number, UUID or console user name.
        origin: Channel kind, used for policy gating.
        is_command: True when the message was addressed to the bot.
        reply_to: Destination for replies (group id or sender).
    """

    body: str
    sender: str
    origin: Origin
    is_command: bool = True
    reply_to: Optional[str] = None


class NodeStatus(BaseModel):
    """One backend node as reported by a balancer."""

    name: str
    condition: str
    ip: str
    id: Union[int, str]


class LbStatus(BaseModel):
    """Read-only snapshot of one load balancer and its nodes."""

    name: str
    id: Union[int, str]
    nodes: List[NodeStatus] = Field(default_factory=list)


class CredentialRecord(BaseModel):
    """Credentials for one region/environment pair.

    ``key`` may be empty in settings.yaml when ``key_env`` names an
    environment variable holding the API key instead.
    """

    region: str
    env: str
    username: str
    key: str = Field(default="", repr=False)
    key_env: Optional[str] = None

    @property
    def env_key(self) -> str:
        return f"{self.region}-{self.env}".lower()
