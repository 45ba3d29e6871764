"""
Live anchor client backed by web3.py.

web3's HTTP provider is blocking, so every call runs in a worker thread and
is bounded by ``asyncio.wait_for``. Library exceptions are translated into
the service's anchor errors here and nowhere else.
"""

import asyncio
from typing import Any, Callable, List, Optional

from eth_account import Account
from web3 import Web3
from web3.exceptions import ContractLogicError, TimeExhausted
from web3.logs import DISCARD
from web3.middleware import ExtraDataToPOAMiddleware

from ..core.config import Settings
from ..core.exceptions import (
    AnchorError,
    ConfigurationError,
    InsufficientFunds,
    MintFailed,
    NetworkError,
    NotAuthorized,
)
from ..utils.logger import get_logger
from ..utils.timeutils import from_epoch_seconds
from .anchor_client import AnchorClient, MintReceipt, OnChainCertificate, WalletState
from .config import POA_CHAIN_IDS, NetworkConfig, get_network_config
from .contract_abi import CERTIFICATE_REGISTRY_ABI, MINTER_ROLE

logger = get_logger("web3_client")

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"


def classify_error(exc: Exception) -> AnchorError:
    """Map a web3 / transport exception onto an anchor error."""
    if isinstance(exc, AnchorError):
        return exc

    message = getattr(exc, "message", None) or str(exc) or exc.__class__.__name__
    lowered = message.lower()

    if isinstance(exc, TimeExhausted):
        return NetworkError(f"Timed out waiting for receipt: {message}")
    if "insufficient funds" in lowered:
        return InsufficientFunds()
    if isinstance(exc, ContractLogicError):
        if "accesscontrol" in lowered or "missing role" in lowered:
            return NotAuthorized(message)
        return MintFailed(message, permanent=True)
    if isinstance(exc, (OSError, asyncio.TimeoutError)):
        return NetworkError(message)
    # nonce races, gas underpricing and unknown RPC errors may clear up on retry
    return MintFailed(message, permanent=False)


class Web3AnchorClient(AnchorClient):
    """Certificate registry contract on an EVM chain."""

    is_simulated = False

    def __init__(self, settings: Settings, network: Optional[NetworkConfig] = None):
        network = network or get_network_config(settings.blockchain_network)

        if not settings.certificate_contract_address:
            raise ConfigurationError("CERTIFICATE_CONTRACT_ADDRESS is required for the live ledger")
        if not settings.blockchain_private_key:
            raise ConfigurationError("BLOCKCHAIN_PRIVATE_KEY is required for the live ledger")

        try:
            contract_address = Web3.to_checksum_address(settings.certificate_contract_address)
            self.account = Account.from_key(settings.blockchain_private_key)
        except ValueError as e:
            raise ConfigurationError(f"Invalid blockchain credentials: {e}") from e

        super().__init__(network, contract_address)

        rpc_url = settings.blockchain_rpc_url or network.rpc_url
        self.w3 = Web3(Web3.HTTPProvider(rpc_url, request_kwargs={"timeout": settings.rpc_timeout_seconds}))

        # Add PoA middleware for Polygon networks
        if network.chain_id in POA_CHAIN_IDS:
            self.w3.middleware_onion.inject(ExtraDataToPOAMiddleware, layer=0)

        self.contract = self.w3.eth.contract(address=contract_address, abi=CERTIFICATE_REGISTRY_ABI)
        self.min_balance = settings.min_wallet_balance
        self.rpc_timeout = settings.rpc_timeout_seconds
        self.receipt_timeout = settings.receipt_timeout_seconds
        self.gas_limit = settings.gas_limit

        logger.info(f"Live ledger client for {network.name} (chain {network.chain_id}), wallet {self.account.address}")

    async def _run(self, fn: Callable, *args: Any, timeout: Optional[float] = None) -> Any:
        try:
            return await asyncio.wait_for(asyncio.to_thread(fn, *args), timeout or self.rpc_timeout)
        except asyncio.TimeoutError as e:
            raise NetworkError(f"Ledger call {fn.__name__} timed out") from e

    # -- sync helpers, executed in a worker thread --

    def _balance_sync(self, address: str) -> float:
        wei = self.w3.eth.get_balance(Web3.to_checksum_address(address))
        return float(Web3.from_wei(wei, "ether"))

    def _has_minter_role_sync(self, address: str) -> bool:
        role = Web3.to_bytes(hexstr=MINTER_ROLE)
        return bool(self.contract.functions.hasRole(role, Web3.to_checksum_address(address)).call())

    def _mint_sync(
        self,
        recipient_address: str,
        course_id: str,
        course_name: str,
        completion_epoch: int,
        metadata_content_hash: str,
    ) -> MintReceipt:
        balance = self._balance_sync(self.account.address)
        if balance < self.min_balance:
            raise InsufficientFunds(balance, self.min_balance)
        if not self._has_minter_role_sync(self.account.address):
            raise NotAuthorized(f"Wallet {self.account.address} does not hold MINTER_ROLE")

        transaction = self.contract.functions.mintCertificate(
            Web3.to_checksum_address(recipient_address),
            course_id,
            course_name,
            int(completion_epoch),
            metadata_content_hash,
        ).build_transaction({
            'from': self.account.address,
            'chainId': self.network.chain_id,
            'gas': self.gas_limit,
            'gasPrice': self.w3.eth.gas_price,
            'nonce': self.w3.eth.get_transaction_count(self.account.address, 'pending'),
        })

        signed_txn = self.account.sign_transaction(transaction)
        tx_hash = self.w3.eth.send_raw_transaction(signed_txn.raw_transaction)
        transaction_id = Web3.to_hex(tx_hash)
        logger.info(f"Mint transaction sent: {transaction_id}")

        receipt = self.w3.eth.wait_for_transaction_receipt(tx_hash, timeout=self.receipt_timeout)
        if receipt.status != 1:
            raise MintFailed(f"Mint transaction {transaction_id} reverted", permanent=True)

        events = self.contract.events.CertificateMinted().process_receipt(receipt, errors=DISCARD)
        on_chain_id = str(events[0]["args"]["certificateId"]) if events else None

        return MintReceipt(on_chain_id=on_chain_id, transaction_id=transaction_id, block_number=receipt.blockNumber)

    def _read_certificate_sync(self, function_name: str, on_chain_id: int) -> Optional[OnChainCertificate]:
        try:
            result = getattr(self.contract.functions, function_name)(on_chain_id).call()
        except ContractLogicError:
            return None

        student, course_id, course_name, completion_date, ipfs_hash, is_valid, minted_at = result
        if student == ZERO_ADDRESS:
            return None

        return OnChainCertificate(
            on_chain_id=str(on_chain_id),
            owner=student,
            course_id=course_id,
            course_name=course_name,
            completion_date=from_epoch_seconds(completion_date),
            metadata_hash=ipfs_hash,
            is_valid=bool(is_valid),
            minted_at=from_epoch_seconds(minted_at) if minted_at else None,
        )

    def _certificates_of_sync(self, owner: str) -> List[OnChainCertificate]:
        ids = self.contract.functions.getStudentCertificates(Web3.to_checksum_address(owner)).call()
        certificates = []
        for on_chain_id in ids:
            certificate = self._read_certificate_sync("getCertificate", int(on_chain_id))
            if certificate is not None:
                certificates.append(certificate)
        return certificates

    def _wallet_state_sync(self) -> WalletState:
        if not self.w3.is_connected():
            return WalletState(connected=False, address=self.account.address, currency=self.network.currency)
        return WalletState(
            connected=True,
            address=self.account.address,
            balance=self._balance_sync(self.account.address),
            currency=self.network.currency,
        )

    # -- AnchorClient --

    async def mint(
        self,
        recipient_address: str,
        course_id: str,
        course_name: str,
        completion_epoch: int,
        metadata_content_hash: str,
    ) -> MintReceipt:
        try:
            return await self._run(
                self._mint_sync,
                recipient_address,
                course_id,
                course_name,
                completion_epoch,
                metadata_content_hash,
                timeout=self.rpc_timeout * 2 + self.receipt_timeout,
            )
        except Exception as e:
            error = classify_error(e)
            logger.error(f"Mint for course {course_id} failed: {error.__class__.__name__}: {error}")
            raise error from e

    async def verify(self, on_chain_id: str) -> Optional[OnChainCertificate]:
        try:
            numeric_id = int(on_chain_id)
        except (TypeError, ValueError):
            return None
        try:
            return await self._run(self._read_certificate_sync, "verifyCertificate", numeric_id)
        except NetworkError:
            raise
        except Exception as e:
            raise NetworkError(f"verifyCertificate({on_chain_id}) failed: {e}") from e

    async def certificates_of(self, owner: str) -> List[OnChainCertificate]:
        try:
            return await self._run(self._certificates_of_sync, owner)
        except NetworkError:
            raise
        except Exception as e:
            raise NetworkError(f"getStudentCertificates({owner}) failed: {e}") from e

    async def can_mint(self, address: Optional[str] = None) -> bool:
        """
        Whether ``address`` holds MINTER_ROLE and the minimum balance.

        Raises:
            NetworkError: If the ledger could not answer; an unreachable
                RPC is not reported as a missing permission
        """
        address = address or self.account.address
        try:
            if not await self._run(self._has_minter_role_sync, address):
                return False
            balance = await self._run(self._balance_sync, address)
        except ContractLogicError as e:
            logger.warning(f"Mint permission check for {address} reverted: {e}")
            return False
        except NetworkError:
            raise
        except Exception as e:
            raise NetworkError(f"Mint permission check for {address} failed: {e}") from e
        return balance >= self.min_balance

    async def wallet_state(self) -> WalletState:
        try:
            return await self._run(self._wallet_state_sync)
        except Exception as e:
            logger.warning(f"Wallet state unavailable: {e}")
            return WalletState(connected=False, address=self.account.address, currency=self.network.currency)

    async def total_issued(self) -> int:
        try:
            return int(await self._run(self.contract.functions.totalCertificates().call))
        except NetworkError:
            raise
        except Exception as e:
            raise NetworkError(f"totalCertificates() failed: {e}") from e
