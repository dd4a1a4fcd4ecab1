"""
Address Registry - logical contract role to address, for exactly one network.
"""

import logging
from types import MappingProxyType
from typing import Dict, Mapping, Optional

from ark_common.canon import canon_addr
from ark_orders.contracts import CHAIN_IDS, NETWORK_ALIASES, NETWORK_CONTRACTS
from ark_orders.errors import ConfigurationError, UnknownRoleError

logger = logging.getLogger(__name__)

ROLES = ("orderbook", "executor", "messaging", "currency", "collectible")


def normalize_network(network: str) -> str:
    key = (network or "").strip().lower()
    if key not in NETWORK_ALIASES:
        raise ConfigurationError(
            f"Unknown network '{network}'",
            {"network": network, "known": sorted(NETWORK_ALIASES)},
        )
    return NETWORK_ALIASES[key]


class AddressRegistry:
    """Immutable role table bound to one network."""

    __slots__ = ("_network", "_chain_id", "_addresses")

    def __init__(self, network: str, addresses: Mapping[str, str], chain_id: int):
        object.__setattr__(self, "_network", network)
        object.__setattr__(self, "_chain_id", int(chain_id))
        object.__setattr__(
            self, "_addresses",
            MappingProxyType({role: canon_addr(addr) for role, addr in addresses.items()}),
        )

    def __setattr__(self, name, value):
        raise AttributeError("AddressRegistry is immutable")

    @classmethod
    def for_network(cls, network: str, overrides: Optional[Dict[str, str]] = None) -> "AddressRegistry":
        """Load the static table for ``network`` and apply explicit overrides."""
        name = normalize_network(network)
        table = dict(NETWORK_CONTRACTS[name])
        for role, addr in (overrides or {}).items():
            if role not in ROLES:
                raise ConfigurationError(f"Unknown contract role '{role}' in overrides", {"role": role})
            logger.info(f"[registry] {name}: overriding {role} -> {addr}")
            table[role] = addr
        return cls(name, table, CHAIN_IDS[name])

    @property
    def network(self) -> str:
        return self._network

    @property
    def chain_id(self) -> int:
        return self._chain_id

    def resolve(self, role: str) -> str:
        try:
            return self._addresses[role]
        except KeyError:
            raise UnknownRoleError(role, self._network) from None

    def has_role(self, role: str) -> bool:
        return role in self._addresses

    def roles(self) -> Mapping[str, str]:
        return self._addresses

    def __repr__(self) -> str:
        return f"AddressRegistry(network={self._network!r}, roles={sorted(self._addresses)})"
