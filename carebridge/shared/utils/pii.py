"""Log-safe handling of patient identifiers.

Patient ids and free-text clinical notes never appear raw in application
logs. Identifiers are replaced by a salted SHA-256 digest so that log lines
for the same patient can still be correlated.
"""
import hashlib
import logging
import os
from typing import Mapping, Optional

logger = logging.getLogger(__name__)

SALT_ENV_VAR = "PII_HASH_SALT"
MIN_SALT_LENGTH = 32
# Local runs only; deployed stacks inject PII_HASH_SALT from Secrets Manager
DEV_SALT = "carebridge_local_development_salt_not_for_production"

_PII_SALT: Optional[str] = None


def configure_pii_salt(salt: str) -> None:
    """Set the salt used by hash_pii.

    Raises:
        ValueError: If the salt is shorter than MIN_SALT_LENGTH
    """
    global _PII_SALT
    length = len(salt or "")
    if length < MIN_SALT_LENGTH:
        logger.critical(
            "PII_SALT_REJECTED",
            extra={"salt_length": length, "min_length": MIN_SALT_LENGTH}
        )
        raise ValueError(f"PII salt must be at least {MIN_SALT_LENGTH} characters")

    _PII_SALT = salt
    logger.info("PII_SALT_CONFIGURED", extra={"salt_length": length})


def configure_pii_salt_from_env(environ: Optional[Mapping[str, str]] = None) -> None:
    """Configure the salt from PII_HASH_SALT once per cold start.

    An unset or empty variable falls back to the development salt and logs
    a warning; a set but short salt is rejected.

    Args:
        environ: Environment mapping (os.environ when omitted)
    """
    environ = os.environ if environ is None else environ
    salt = environ.get(SALT_ENV_VAR)
    if not salt:
        logger.warning("PII_SALT_DEVELOPMENT_DEFAULT", extra={"env_var": SALT_ENV_VAR})
        salt = DEV_SALT
    configure_pii_salt(salt)


def _current_salt() -> str:
    if _PII_SALT is None:
        logger.critical("PII_HASH_FAILED", extra={"reason": "salt not configured"})
        raise RuntimeError("PII salt not configured. Call configure_pii_salt() first.")
    return _PII_SALT


def hash_pii(value: Optional[str]) -> str:
    """Salted SHA-256 hex digest of a patient identifier; "" for a missing value.

    Raises:
        RuntimeError: If the salt has not been configured
    """
    salt = _current_salt()
    if not value:
        return ""
    return hashlib.sha256((salt + value).encode()).hexdigest()


def hash_text_for_audit(text: str) -> str:
    """Fingerprint free text (e.g. supervisor notes) without exposing it."""
    return hashlib.sha256(text.encode()).hexdigest()
