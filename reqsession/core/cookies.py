"""
Cookie codecs for the session identifier.

The identifier never travels in the clear: it is either signed with a
timestamp (itsdangerous) or encrypted (Fernet with a PBKDF2-derived key).
"""

import base64
import logging
from abc import ABC, abstractmethod
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC
from itsdangerous import BadSignature, SignatureExpired, TimestampSigner

from reqsession.core.config import SessionSettings
from reqsession.core.errors import CookieError
from reqsession.core.security import get_or_create_secret_key, is_valid_session_id

logger = logging.getLogger(__name__)


class CookieCodec(ABC):
    """Turns a session id into a cookie value and back."""

    @abstractmethod
    def encode(self, session_id: str) -> str:
        """Produce the cookie value for a session id."""

    @abstractmethod
    def decode(self, cookie_value: str) -> str:
        """Recover the session id from a cookie value.

        Raises:
            CookieError: If the value is malformed, tampered with or expired
        """

    @staticmethod
    def _checked(session_id: str) -> str:
        if not is_valid_session_id(session_id):
            raise CookieError("cookie does not carry a valid session id")
        return session_id


class SignedCookieCodec(CookieCodec):
    """HMAC-signed, timestamped identifier cookie."""

    def __init__(self, secret_key: str, max_age: Optional[int] = None, salt: str = "reqsession.cookie"):
        self.signer = TimestampSigner(secret_key, salt=salt)
        self.max_age = max_age

    def encode(self, session_id: str) -> str:
        return self.signer.sign(session_id.encode("utf-8")).decode("utf-8")

    def decode(self, cookie_value: str) -> str:
        try:
            raw = self.signer.unsign(cookie_value.encode("utf-8"), max_age=self.max_age)
        except SignatureExpired as e:
            raise CookieError("cookie signature expired") from e
        except BadSignature as e:
            raise CookieError("cookie signature mismatch") from e
        return self._checked(raw.decode("utf-8", errors="replace"))


class EncryptedCookieCodec(CookieCodec):
    """Fernet-encrypted identifier cookie."""

    def __init__(
        self,
        secret_key: str,
        max_age: Optional[int] = None,
        salt: str = "reqsession.cookie",
        kdf_iterations: int = 300_000,
    ):
        self.cipher = self._create_cipher(secret_key, salt, kdf_iterations)
        self.max_age = max_age

    @staticmethod
    def _create_cipher(secret_key: str, salt: str, kdf_iterations: int) -> Fernet:
        """Create a Fernet cipher using a key derived from the secret key."""
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=32,
            salt=salt.encode("utf-8"),
            iterations=kdf_iterations,
        )
        key = base64.urlsafe_b64encode(kdf.derive(secret_key.encode("utf-8")))
        return Fernet(key)

    def encode(self, session_id: str) -> str:
        # Fernet tokens are already URL-safe base64
        return self.cipher.encrypt(session_id.encode("utf-8")).decode("utf-8")

    def decode(self, cookie_value: str) -> str:
        try:
            raw = self.cipher.decrypt(cookie_value.encode("utf-8"), ttl=self.max_age)
        except InvalidToken as e:
            raise CookieError("cookie could not be decrypted") from e
        return self._checked(raw.decode("utf-8", errors="replace"))


def create_cookie_codec(settings: SessionSettings) -> CookieCodec:
    """
    Build the cookie codec described by the settings.

    Args:
        settings: Session settings

    Returns:
        An encrypting codec if ``encrypt_cookie`` is set, else a signing codec
    """
    if settings.secret_key is not None:
        secret_key = settings.secret_key.get_secret_value()
    else:
        secret_key = get_or_create_secret_key(settings.secret_key_file)

    if settings.encrypt_cookie:
        logger.debug("Using encrypted session cookies")
        return EncryptedCookieCodec(
            secret_key,
            max_age=settings.max_age,
            salt=settings.kdf_salt,
            kdf_iterations=settings.kdf_iterations,
        )
    return SignedCookieCodec(secret_key, max_age=settings.max_age, salt=settings.kdf_salt)
