"""Known EVM networks for x402 exact payments."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Optional

_CAIP_NETWORK_RE = re.compile(r"^eip155:(\d+)$")


@dataclass(frozen=True)
class NetworkConfig:
    id: str
    chain_id: int
    usdc_address: str


NETWORKS: dict[str, NetworkConfig] = {
    "base": NetworkConfig(
        id="base",
        chain_id=8453,
        usdc_address="0x833589fCD6eDb6E08f4c7C32D4f71b54bdA02913",
    ),
    "base-sepolia": NetworkConfig(
        id="base-sepolia",
        chain_id=84532,
        usdc_address="0x036CbD53842c5426634e7929541eC2318f3dCF7e",
    ),
}


def get_network(network: str) -> Optional[NetworkConfig]:
    """Resolve a network name ('base') or CAIP-2 id ('eip155:8453')."""
    config = NETWORKS.get(network)
    if config is not None:
        return config
    match = _CAIP_NETWORK_RE.match(network.strip())
    if match is None:
        return None
    chain_id = int(match.group(1))
    for candidate in NETWORKS.values():
        if candidate.chain_id == chain_id:
            return candidate
    return None


def network_to_chain_id(network: str) -> Optional[int]:
    config = get_network(network)
    return config.chain_id if config else None
