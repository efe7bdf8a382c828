"""
Exception types raised by reqsession.

Read-path helpers (``get``/``pop``) collapse ``NotFound`` into an empty
result; every other error propagates to the caller.
"""


class SessionError(Exception):
    """Base class for all session errors"""
    pass


class NotFound(SessionError, KeyError):
    """Raised when a key (or the whole session) has no stored value"""

    def __init__(self, key: str = ""):
        super().__init__(key)
        self.key = key

    def __str__(self) -> str:
        if not self.key:
            return "No session value stored"
        return f"No session value stored for key {self.key!r}"


class EncodeError(SessionError, ValueError):
    """Raised when a value cannot be represented by the codec"""
    pass


class DecodeError(SessionError, ValueError):
    """Raised when stored bytes cannot be decoded into the requested type"""
    pass


class StoreError(SessionError):
    """Raised when the storage backend fails (connection, timeout, SQL error)"""
    pass


class CookieError(SessionError):
    """Raised when an identifier cookie is malformed, tampered with or expired"""
    pass
