"""
Security utilities for reqsession

This module provides session id minting, secret key generation and
validation, and helpers that keep identifiers out of log output.
"""

import logging
import os
import re
import secrets
import string
from typing import Optional

logger = logging.getLogger(__name__)

# Minted ids come from secrets.token_urlsafe, so anything outside this
# alphabet/length range cannot be one of ours
SESSION_ID_PATTERN = re.compile(r"^[A-Za-z0-9_-]{16,128}$")

_INSECURE_DEFAULTS = [
    "your-secret-key-here-change-in-production",
    "change-me",
    "secret",
    "password",
    "123456",
    "admin",
]


def new_session_id(nbytes: int = 32) -> str:
    """
    Mint a new opaque session identifier.

    Args:
        nbytes: Number of random bytes (the string is ~1.3x longer)

    Returns:
        A URL-safe random string
    """
    return secrets.token_urlsafe(nbytes)


def is_valid_session_id(session_id: Optional[str]) -> bool:
    """Check that a string has the shape of a minted session id."""
    return bool(session_id) and SESSION_ID_PATTERN.match(session_id) is not None


def generate_secure_secret_key(length: int = 64) -> str:
    """
    Generate a cryptographically secure secret key.

    Args:
        length: Length of the secret key (default: 64 characters)

    Returns:
        A secure random string suitable for signing cookies
    """
    alphabet = string.ascii_letters + string.digits + "-_"
    return ''.join(secrets.choice(alphabet) for _ in range(length))


def validate_secret_key(secret_key: str) -> None:
    """
    Validate that a secret key meets security requirements.

    Args:
        secret_key: The secret key to validate

    Raises:
        ValueError: If the secret key doesn't meet requirements
    """
    if not secret_key:
        raise ValueError("SECRET_KEY cannot be empty")

    if len(secret_key) < 32:
        raise ValueError("SECRET_KEY must be at least 32 characters long")

    if secret_key.lower() in [default.lower() for default in _INSECURE_DEFAULTS]:
        raise ValueError("SECRET_KEY appears to be an insecure default value")

    # At least 8 different characters
    unique_chars = len(set(secret_key.lower()))
    if unique_chars < 8:
        raise ValueError("SECRET_KEY has insufficient entropy (too repetitive)")

    logger.debug("SECRET_KEY validation passed")


def get_or_create_secret_key(secret_file_path: Optional[str] = None) -> str:
    """
    Get a signing key from a key file, or generate a new secure one.

    Resolution order:
    1. If ``secret_file_path`` exists and holds a key, use it
    2. Otherwise generate a new key and, when a path was given, save it
       with owner-only permissions so it survives restarts

    Args:
        secret_file_path: Optional path of a persistent key file

    Returns:
        A validated secret key string
    """
    if secret_file_path and os.path.exists(secret_file_path):
        try:
            with open(secret_file_path, 'r') as f:
                secret_key = f.read().strip()
            if secret_key:
                logger.info("Using session secret key from secret file")
                validate_secret_key(secret_key)
                return secret_key
        except OSError as e:
            logger.warning(f"Could not read secret key file: {e}")

    logger.warning("No session secret key configured, generating new one")
    secret_key = generate_secure_secret_key()

    if secret_file_path:
        try:
            directory = os.path.dirname(secret_file_path)
            if directory:
                os.makedirs(directory, exist_ok=True)
            with open(secret_file_path, 'w') as f:
                f.write(secret_key)
            _set_secure_file_permissions(secret_file_path)
            logger.info("Generated new session secret key and saved to secure file")
        except OSError as e:
            logger.error(f"Could not save secret key to file: {e}")
            logger.warning("Using generated key in memory only (will regenerate on restart)")
    else:
        logger.warning("Using generated key in memory only (cookies will not survive a restart)")

    validate_secret_key(secret_key)
    return secret_key


def _set_secure_file_permissions(file_path: str) -> None:
    """Set 0o600 (owner read/write only) on a file."""
    try:
        os.chmod(file_path, 0o600)
        logger.debug(f"Set secure file permissions 0o600 on {file_path}")
    except OSError as e:
        logger.warning(f"Could not set secure file permissions on {file_path}: {e}")


def mask_session_id(session_id: Optional[str]) -> str:
    """
    Mask a session id for safe logging.

    Shows the first 4 characters for correlation and masks the rest.
    """
    if not session_id:
        return ""
    if len(session_id) > 8:
        return session_id[:4] + "****"
    return "****"
