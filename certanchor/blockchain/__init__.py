"""
Blockchain anchoring clients for CertAnchor.
"""

from .anchor_client import (
    AnchorClient,
    MintReceipt,
    OnChainCertificate,
    SimulatedAnchorClient,
    WalletState,
    build_anchor_client,
)

__all__ = [
    "AnchorClient",
    "MintReceipt",
    "OnChainCertificate",
    "SimulatedAnchorClient",
    "WalletState",
    "build_anchor_client",
]
