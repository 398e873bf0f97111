"""Identifier hashing so student and record identifiers never reach logs.

Record and subject identifiers are hashed with a secret salt before they
are logged. Query fingerprints (unsalted) give stable cache keys for
analytics queries without embedding their parameters.
"""
import hashlib
import json
import logging
from typing import Any, Mapping, Optional

logger = logging.getLogger(__name__)

MIN_SALT_LENGTH = 32

_PII_SALT: Optional[str] = None


def configure_pii_salt(salt: str) -> None:
    """Configure the identifier hashing salt.

    Must be called during startup before any identifier is hashed.

    Args:
        salt: Secret salt value

    Raises:
        ValueError: If salt is empty or too short
    """
    global _PII_SALT
    if not salt or len(salt) < MIN_SALT_LENGTH:
        logger.critical(
            "PII_SALT_CONFIGURATION_FAILED",
            extra={"reason": "Salt too short or empty", "min_length": MIN_SALT_LENGTH}
        )
        raise ValueError(f"PII salt must be at least {MIN_SALT_LENGTH} characters")

    _PII_SALT = salt
    logger.info("PII_SALT_CONFIGURED", extra={"salt_length": len(salt)})


def hash_pii(value: str) -> str:
    """Hash an identifier for safe logging.

    Args:
        value: Student, subject or record identifier

    Returns:
        64-char hex SHA-256 of the salted value

    Raises:
        RuntimeError: If the salt has not been configured
    """
    if _PII_SALT is None:
        logger.critical(
            "PII_HASH_FAILED",
            extra={"reason": "Salt not configured", "action": "call configure_pii_salt()"}
        )
        raise RuntimeError("PII salt not configured. Call configure_pii_salt() first.")

    salted = f"{_PII_SALT}{value}"
    return hashlib.sha256(salted.encode()).hexdigest()


def log_safe_id(value: str) -> str:
    """Short hashed form of an identifier for log lines."""
    return hash_pii(value)[:16]


def fingerprint(params: Mapping[str, Any]) -> str:
    """Stable SHA-256 fingerprint of query parameters.

    Keys are sorted so logically equal parameter sets share a fingerprint.

    Args:
        params: JSON-serializable parameters

    Returns:
        Hex digest
    """
    canonical = json.dumps(params, sort_keys=True, default=str, separators=(",", ":"))
    return hashlib.sha256(canonical.encode()).hexdigest()
