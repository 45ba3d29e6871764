"""
CertAnchor Backend.
Certificate issuance, verification and blockchain anchoring service.
"""

__version__ = "1.0.0"
