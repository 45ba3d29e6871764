"""
Exception types raised across CertAnchor services.
"""

from typing import Optional


class CertAnchorError(Exception):
    """Base class for all service errors."""


class ConfigurationError(CertAnchorError):
    """A required setting is missing or invalid."""


class NotEligible(CertAnchorError):
    """The completion event does not qualify for a certificate."""


class CertificateNotFound(CertAnchorError):
    def __init__(self, certificate_id: str):
        super().__init__(f"Certificate {certificate_id} not found")
        self.certificate_id = certificate_id


class JobNotFound(CertAnchorError):
    def __init__(self, job_id: str):
        super().__init__(f"Queue job {job_id} not found")
        self.job_id = job_id


class ContentStoreError(CertAnchorError):
    """The content store rejected or failed a read or write."""


class MetadataUploadFailed(CertAnchorError):
    """Certificate metadata could not be stored; issuance is aborted."""


class QueueStoreError(CertAnchorError):
    """The retry queue could not be read or written."""


class AnchorError(CertAnchorError):
    """Base class for ledger failures."""


class MintFailed(AnchorError):
    """
    The mint did not go through.

    Args:
        reason: Human readable cause
        permanent: True when retrying cannot succeed (e.g. contract revert)
    """

    def __init__(self, reason: str, permanent: bool = False):
        super().__init__(reason)
        self.reason = reason
        self.permanent = permanent


class InsufficientFunds(AnchorError):
    def __init__(self, balance: Optional[float] = None, required: Optional[float] = None):
        message = "Insufficient wallet balance for gas"
        if balance is not None and required is not None:
            message = f"{message}: {balance} < {required}"
        super().__init__(message)
        self.balance = balance
        self.required = required


class NotAuthorized(AnchorError):
    """The signing wallet lacks the minter role."""


class NetworkError(AnchorError):
    """The ledger RPC could not be reached or timed out."""
