"""Choosing the address used to reach a node."""

from __future__ import annotations

from collections.abc import Iterable

from kubemetrics.types import Node, NodeAddressType

# Overrides first, internal before external, DNS before IPs.
DEFAULT_ADDRESS_TYPE_PRIORITY: tuple[NodeAddressType, ...] = (
    NodeAddressType.HOSTNAME,
    NodeAddressType.INTERNAL_DNS,
    NodeAddressType.INTERNAL_IP,
    NodeAddressType.EXTERNAL_DNS,
    NodeAddressType.EXTERNAL_IP,
)


class NoAddressError(LookupError):
    """Raised when a node reports no address of any wanted type."""


class PriorityNodeAddressResolver:
    """Resolves node addresses by type priority, then by the node's own order."""

    def __init__(
        self, type_priority: Iterable[NodeAddressType] = DEFAULT_ADDRESS_TYPE_PRIORITY
    ) -> None:
        self._type_priority = tuple(type_priority)

    @property
    def type_priority(self) -> tuple[NodeAddressType, ...]:
        return self._type_priority

    def node_address(self, node: Node) -> str:
        for address_type in self._type_priority:
            for address in node.addresses:
                if address.type == address_type:
                    return address.address
        wanted = " ".join(t.value for t in self._type_priority)
        raise NoAddressError(f"no address matched types [{wanted}]")