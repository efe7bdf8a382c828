"""reqsession: pluggable per-request sessions for Starlette/FastAPI."""

from reqsession.core.codec import Codec, Envelope, JSONCodec
from reqsession.core.config import SessionSettings
from reqsession.core.cookies import CookieCodec, EncryptedCookieCodec, SignedCookieCodec
from reqsession.core.errors import (
    CookieError,
    DecodeError,
    EncodeError,
    NotFound,
    SessionError,
    StoreError,
)
from reqsession.manager import FlashMessage, Lookup, RequestSession, SessionManager
from reqsession.middleware import SessionMiddleware, current_session
from reqsession.stores import MemoryStore, Store, create_store

__version__ = "1.0.0"

__all__ = [
    "Codec",
    "CookieCodec",
    "CookieError",
    "DecodeError",
    "EncodeError",
    "EncryptedCookieCodec",
    "Envelope",
    "FlashMessage",
    "JSONCodec",
    "Lookup",
    "MemoryStore",
    "NotFound",
    "RequestSession",
    "SessionError",
    "SessionManager",
    "SessionMiddleware",
    "SessionSettings",
    "SignedCookieCodec",
    "Store",
    "StoreError",
    "create_store",
    "current_session",
]
