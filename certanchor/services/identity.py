"""
Certificate identity and hash derivation.

Pure functions: no I/O, safe to call from anywhere.
"""

import hashlib
import json
import secrets
import string
from datetime import datetime
from typing import Optional

from ..core.exceptions import ConfigurationError
from ..utils.timeutils import epoch_millis, to_iso_millis, utcnow

CANONICAL_VERSION = "1.0"
CERTIFICATE_ID_LENGTH = 12
VERIFICATION_CODE_LENGTH = 16

_BASE36_DIGITS = string.digits + string.ascii_lowercase


def _to_base36(value: int) -> str:
    if value == 0:
        return "0"
    digits = []
    while value:
        value, remainder = divmod(value, 36)
        digits.append(_BASE36_DIGITS[remainder])
    return "".join(reversed(digits))


def new_certificate_id(now: Optional[datetime] = None) -> str:
    """
    Generate a 12 character uppercase certificate id.

    The first six characters come from the millisecond clock in base 36, the
    last six from three random bytes, so ids issued in the same millisecond
    still differ.

    Args:
        now: Clock override for tests

    Returns:
        Certificate id such as ``"LX4K9ZA1B2C3"``
    """
    timestamp = _to_base36(epoch_millis(now or utcnow()))[-6:]
    random_part = secrets.token_hex(3)
    return (timestamp + random_part).upper()[:CERTIFICATE_ID_LENGTH].rjust(CERTIFICATE_ID_LENGTH, "0")


def new_certificate_number(now: Optional[datetime] = None) -> str:
    """Human-facing number: ``CERT-YYYYMM-XXXXXXXX``."""
    now = now or utcnow()
    return f"CERT-{now.year}{now.month:02d}-{secrets.token_hex(4).upper()}"


def verification_code(certificate_id: str, secret: str) -> str:
    """
    Derive the 16 character verification code for a certificate.

    Args:
        certificate_id: Public certificate id
        secret: Deployment secret

    Returns:
        Uppercase hex code

    Raises:
        ConfigurationError: If the secret is empty
    """
    if not secret:
        raise ConfigurationError("Certificate secret is not configured")
    digest = hashlib.sha256((certificate_id + secret).encode("utf-8")).hexdigest()
    return digest[:VERIFICATION_CODE_LENGTH].upper()


def canonical_payload(
    student_name: str,
    course_name: str,
    completion_date: datetime,
    certificate_number: str,
    issuer: str,
    version: str = CANONICAL_VERSION,
) -> str:
    """Compact JSON with a fixed key order; the input to ``content_hash``."""
    payload = {
        "studentName": student_name,
        "courseName": course_name,
        "completionDate": to_iso_millis(completion_date),
        "certificateNumber": certificate_number,
        "issuer": issuer,
        "version": version,
    }
    return json.dumps(payload, separators=(",", ":"), ensure_ascii=False)


def content_hash(
    student_name: str,
    course_name: str,
    completion_date: datetime,
    certificate_number: str,
    issuer: str,
    version: str = CANONICAL_VERSION,
) -> str:
    """
    SHA-256 over the canonical payload, lowercase hex.

    Any change in one of the covered fields changes the hash.
    """
    canonical = canonical_payload(
        student_name, course_name, completion_date, certificate_number, issuer, version
    )
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def certificate_content_hash(certificate) -> str:
    """Recompute ``content_hash`` from a stored ``Certificate``."""
    return content_hash(
        student_name=certificate.student_name,
        course_name=certificate.course_name,
        completion_date=certificate.completion_date,
        certificate_number=certificate.certificate_number,
        issuer=certificate.issuer,
    )
