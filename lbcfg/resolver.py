"""Resolve a region/environment/balancer path to backend ids.

The configuration tree is a nested mapping::

    {
        "<region>": {
            "<environment>": {
                "<balancer>": [42, 84],
            },
        },
    }

``resolve`` walks it one level at a time so that a failed lookup says
exactly which segment was missing. Failures are returned as a
``MissingKeyError`` value rather than raised, callers branch on
``level`` to build their message.
"""

from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import Any, Optional, Union

ConfigTree = Mapping


class MissingKeyLevel(str, Enum):
    """Which part of the path failed to resolve."""
    REGION = "region"
    ENVIRONMENT = "environment"
    BALANCER = "balancer"
    SHAPE_MISMATCH = "shape_mismatch"


@dataclass(frozen=True)
class MissingKeyError:
    """A failed resolution. Not an exception.

    Only the segments up to and including the missing one are set; a
    shape mismatch carries whatever part of the path was walked.
    """

    level: MissingKeyLevel
    region: str
    environment: Optional[str] = None
    balancer: Optional[str] = None


@dataclass(frozen=True)
class BackendIdList:
    """The id sequence stored for a balancer, exactly as configured."""

    ids: Sequence

    def __iter__(self):
        return iter(self.ids)

    def __len__(self) -> int:
        return len(self.ids)


ResolutionResult = Union[BackendIdList, MissingKeyError]


def _is_id_sequence(value: Any) -> bool:
    return isinstance(value, Sequence) and not isinstance(value, (str, bytes))


def resolve(
    tree: ConfigTree, region: str, environment: str, balancer: str
) -> ResolutionResult:
    """Look up the backend ids for ``region.environment.balancer``.

    Args:
        tree: Configuration tree with lower-cased keys.
        region: Region name, any case.
        environment: Environment name, any case.
        balancer: Balancer name, any case.

    Returns:
        BackendIdList on success, otherwise the MissingKeyError for the
        shallowest segment that could not be resolved.
    """
    region = region.lower()
    environment = environment.lower()
    balancer = balancer.lower()

    if not isinstance(tree, Mapping):
        return MissingKeyError(MissingKeyLevel.SHAPE_MISMATCH, region)
    if region not in tree:
        return MissingKeyError(MissingKeyLevel.REGION, region)

    environments = tree[region]
    if not isinstance(environments, Mapping):
        return MissingKeyError(MissingKeyLevel.SHAPE_MISMATCH, region)
    if environment not in environments:
        return MissingKeyError(MissingKeyLevel.ENVIRONMENT, region, environment)

    balancers = environments[environment]
    if not isinstance(balancers, Mapping):
        return MissingKeyError(
            MissingKeyLevel.SHAPE_MISMATCH, region, environment
        )
    if balancer not in balancers:
        return MissingKeyError(
            MissingKeyLevel.BALANCER, region, environment, balancer
        )

    ids = balancers[balancer]
    if not _is_id_sequence(ids):
        return MissingKeyError(
            MissingKeyLevel.SHAPE_MISMATCH, region, environment, balancer
        )
    return BackendIdList(ids)


def build_tree(raw: Mapping) -> ConfigTree:
    """Freeze a loaded ``lb_hash`` mapping into a read-only ConfigTree.

    Keys are lower-cased at every level, mappings become read-only views
    and id lists become tuples. Values of an unexpected shape are kept
    as they are so that ``resolve`` reports them as shape mismatches.
    """
    return _freeze(raw, depth=0)


def _freeze(value: Any, depth: int) -> Any:
    if depth < 3 and isinstance(value, Mapping):
        return MappingProxyType({
            str(key).lower(): _freeze(child, depth + 1)
            for key, child in value.items()
        })
    if depth == 3 and isinstance(value, list):
        return tuple(value)
    return value
