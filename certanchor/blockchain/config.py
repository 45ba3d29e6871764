"""
Blockchain network configuration for CertAnchor.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Dict

from ..core.exceptions import ConfigurationError


class NetworkType(Enum):
    """Supported blockchain networks"""
    LOCAL = "local"
    MUMBAI = "mumbai"
    AMOY = "amoy"
    POLYGON = "polygon"


@dataclass(frozen=True)
class NetworkConfig:
    """Network configuration for blockchain interactions"""
    name: str
    rpc_url: str
    chain_id: int
    currency: str
    explorer_url: str

    def tx_url(self, transaction_id: str) -> str:
        return f"{self.explorer_url}/tx/{transaction_id}"


NETWORKS: Dict[NetworkType, NetworkConfig] = {
    NetworkType.LOCAL: NetworkConfig(
        name="localhost",
        rpc_url="http://127.0.0.1:8545",
        chain_id=31337,
        currency="ETH",
        explorer_url="http://localhost:8545",
    ),
    NetworkType.MUMBAI: NetworkConfig(
        name="mumbai",
        rpc_url="https://rpc-mumbai.maticvigil.com",
        chain_id=80001,
        currency="MATIC",
        explorer_url="https://mumbai.polygonscan.com",
    ),
    NetworkType.AMOY: NetworkConfig(
        name="amoy",
        rpc_url="https://rpc-amoy.polygon.technology",
        chain_id=80002,
        currency="POL",
        explorer_url="https://amoy.polygonscan.com",
    ),
    NetworkType.POLYGON: NetworkConfig(
        name="polygon",
        rpc_url="https://polygon-rpc.com",
        chain_id=137,
        currency="MATIC",
        explorer_url="https://polygonscan.com",
    ),
}

# Polygon chains need the PoA extraData middleware
POA_CHAIN_IDS = {80001, 80002, 137}


def get_network_config(name: str) -> NetworkConfig:
    """
    Look up a network by name.

    Raises:
        ConfigurationError: For unknown network names
    """
    try:
        return NETWORKS[NetworkType(name.lower())]
    except ValueError:
        raise ConfigurationError(f"Unsupported blockchain network: {name}")
