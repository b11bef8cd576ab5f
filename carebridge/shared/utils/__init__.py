"""Shared utilities for CareBridge services."""
from .pii import configure_pii_salt, configure_pii_salt_from_env, hash_pii, hash_text_for_audit

__all__ = ["configure_pii_salt", "configure_pii_salt_from_env", "hash_pii", "hash_text_for_audit"]
