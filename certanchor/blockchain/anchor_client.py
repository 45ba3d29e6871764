"""
Anchor client interface and the simulated ledger.

Every ledger call is async; the live implementation lives in
``web3_client`` and pushes blocking RPC work to a thread.
"""

import secrets
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ReturnDocument

from ..core.config import Settings
from ..utils.logger import get_logger
from ..utils.timeutils import from_epoch_seconds, utcnow
from .config import NetworkConfig, get_network_config

logger = get_logger("anchor_client")

SIMULATED_BLOCK_RANGE = (15_000_000, 16_000_000)
SIMULATED_WALLET = "0x" + "51" * 20
SIMULATED_LEDGER = "simulated_ledger"


@dataclass
class MintReceipt:
    on_chain_id: Optional[str]
    transaction_id: str
    block_number: Optional[int]


@dataclass
class OnChainCertificate:
    on_chain_id: str
    owner: str
    course_id: str
    course_name: str
    completion_date: datetime
    metadata_hash: str
    is_valid: bool
    minted_at: Optional[datetime] = None


@dataclass
class WalletState:
    connected: bool
    address: Optional[str] = None
    balance: Optional[float] = None
    currency: Optional[str] = None


class AnchorClient(ABC):
    """Ledger operations used by the mint orchestrator, worker and verifier."""

    is_simulated: bool = False

    def __init__(self, network: NetworkConfig, contract_address: Optional[str] = None):
        self.network = network
        self.contract_address = contract_address

    @property
    def network_name(self) -> str:
        return self.network.name

    def explorer_url(self, transaction_id: str) -> str:
        return self.network.tx_url(transaction_id)

    @abstractmethod
    async def mint(
        self,
        recipient_address: str,
        course_id: str,
        course_name: str,
        completion_epoch: int,
        metadata_content_hash: str,
    ) -> MintReceipt:
        """
        Mint a certificate.

        Raises:
            MintFailed, InsufficientFunds, NotAuthorized, NetworkError
        """

    @abstractmethod
    async def verify(self, on_chain_id: str) -> Optional[OnChainCertificate]:
        """Return the on-chain certificate, or None when it does not exist."""

    @abstractmethod
    async def certificates_of(self, owner: str) -> List[OnChainCertificate]:
        """All certificates minted to ``owner``."""

    @abstractmethod
    async def can_mint(self, address: Optional[str] = None) -> bool:
        """Whether ``address`` (default: the signing wallet) may mint now."""

    @abstractmethod
    async def wallet_state(self) -> WalletState:
        """Connection and balance of the signing wallet."""

    @abstractmethod
    async def total_issued(self) -> int:
        """Number of certificates minted by the contract."""


class SimulatedAnchorClient(AnchorClient):
    """
    Ledger simulation for development and tests.

    Minted certificates live in a MongoDB collection so verification keeps
    working across restarts. Always connected and authorized. Block numbers
    and transaction ids are random, shaped like real Polygon values.
    """

    is_simulated = True

    def __init__(
        self,
        db: AsyncIOMotorDatabase,
        network: Optional[NetworkConfig] = None,
        contract_address: Optional[str] = None,
    ):
        super().__init__(network or get_network_config("polygon"), contract_address)
        self.collection = db[SIMULATED_LEDGER]

    async def _next_id(self) -> str:
        counter = await self.collection.find_one_and_update(
            {"_id": "__sequence__"},
            {"$inc": {"value": 1}},
            upsert=True,
            return_document=ReturnDocument.AFTER,
        )
        return str(counter["value"])

    @staticmethod
    def _to_certificate(document) -> OnChainCertificate:
        return OnChainCertificate(
            on_chain_id=document["on_chain_id"],
            owner=document["owner"],
            course_id=document["course_id"],
            course_name=document["course_name"],
            completion_date=document["completion_date"],
            metadata_hash=document["metadata_hash"],
            is_valid=document["is_valid"],
            minted_at=document.get("minted_at"),
        )

    async def mint(
        self,
        recipient_address: str,
        course_id: str,
        course_name: str,
        completion_epoch: int,
        metadata_content_hash: str,
    ) -> MintReceipt:
        on_chain_id = await self._next_id()
        receipt = MintReceipt(
            on_chain_id=on_chain_id,
            transaction_id="0x" + secrets.token_hex(32),
            block_number=SIMULATED_BLOCK_RANGE[0] + secrets.randbelow(
                SIMULATED_BLOCK_RANGE[1] - SIMULATED_BLOCK_RANGE[0]
            ),
        )
        await self.collection.insert_one({
            "on_chain_id": on_chain_id,
            "owner": recipient_address,
            "course_id": course_id,
            "course_name": course_name,
            "completion_date": from_epoch_seconds(completion_epoch),
            "metadata_hash": metadata_content_hash,
            "is_valid": True,
            "minted_at": utcnow(),
            "transaction_id": receipt.transaction_id,
            "block_number": receipt.block_number,
        })
        logger.info(f"Simulated mint {on_chain_id} for course {course_id} in block {receipt.block_number}")
        return receipt

    async def verify(self, on_chain_id: str) -> Optional[OnChainCertificate]:
        document = await self.collection.find_one({"on_chain_id": str(on_chain_id)})
        return self._to_certificate(document) if document else None

    async def certificates_of(self, owner: str) -> List[OnChainCertificate]:
        cursor = self.collection.find({"owner": owner}).sort("minted_at", 1)
        return [self._to_certificate(document) async for document in cursor]

    async def can_mint(self, address: Optional[str] = None) -> bool:
        return True

    async def wallet_state(self) -> WalletState:
        return WalletState(connected=True, address=SIMULATED_WALLET, balance=None, currency=self.network.currency)

    async def total_issued(self) -> int:
        return await self.collection.count_documents({"on_chain_id": {"$exists": True}})


def build_anchor_client(settings: Settings, db: AsyncIOMotorDatabase) -> AnchorClient:
    """
    Create the anchor client selected by ``ANCHOR_MODE``.

    Raises:
        ConfigurationError: If live mode is missing its contract or key
    """
    network = get_network_config(settings.blockchain_network)

    if settings.is_live:
        from .web3_client import Web3AnchorClient
        return Web3AnchorClient(settings, network)

    logger.info(f"Using simulated ledger for network {network.name}")
    return SimulatedAnchorClient(db, network, settings.certificate_contract_address)
