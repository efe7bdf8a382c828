"""
Session manager.

``SessionManager`` is the process-wide configuration (store, codec, cookie
codec, settings) and is never mutated after construction. Each request gets
its own ``RequestSession`` bound to one resolved session id; every
read/write/consume operation lives there.
"""

import logging
from typing import Any, List, NamedTuple, Optional, Tuple, Union

from pydantic import BaseModel
from starlette.requests import HTTPConnection
from starlette.responses import Response
from starlette.types import ASGIApp

from reqsession.core.codec import Codec, JSONCodec
from reqsession.core.config import SessionSettings
from reqsession.core.cookies import CookieCodec, create_cookie_codec
from reqsession.core.errors import CookieError, DecodeError, NotFound
from reqsession.core.security import mask_session_id, new_session_id
from reqsession.core.utils.logging_config import log_cookie_rejected
from reqsession.stores import Store, create_store

logger = logging.getLogger(__name__)

# Store key of the flash list; user keys live under VALUE_PREFIX so they
# can never collide with it
FLASH_KEY = "flash"
VALUE_PREFIX = "value:"

# Attribute on request.state holding the bound RequestSession
_STATE_ATTR = "reqsession"


def _value_key(key: str) -> str:
    return VALUE_PREFIX + key


class FlashMessage(BaseModel):
    """A one-time notification shown on a later request."""

    message: str
    kind: Optional[str] = None


class Lookup(NamedTuple):
    """Result of a plain-string read: the value and whether one was stored."""

    value: str
    found: bool


class RequestSession:
    """Session operations for a single request.

    Created by ``SessionManager.bind``; do not share across requests.
    """

    def __init__(self, manager: "SessionManager", session_id: str, is_new: bool):
        self._manager = manager
        self._session_id = session_id
        self._is_new = is_new
        self._touched = False
        self._cleared = False

    def __repr__(self) -> str:
        return f"<RequestSession(id={mask_session_id(self._session_id)!r}, new={self._is_new})>"

    @property
    def manager(self) -> "SessionManager":
        return self._manager

    @property
    def session_id(self) -> str:
        return self._session_id

    @property
    def is_new(self) -> bool:
        """True if the id was minted for this request."""
        return self._is_new

    @property
    def cleared(self) -> bool:
        return self._cleared

    @property
    def needs_cookie(self) -> bool:
        """Whether the response must (re)issue the identifier cookie."""
        if self._cleared:
            return False
        return self._is_new or self._touched or self._manager.settings.rolling

    @property
    def _store(self) -> Store:
        return self._manager.store

    @property
    def _codec(self) -> Codec:
        return self._manager.codec

    def add(self, key: str, value: Any) -> None:
        """
        Store a value under ``key``, replacing any previous value.

        Raises:
            EncodeError: If the value cannot be encoded
            StoreError: If the backend write fails
        """
        data = self._codec.encode(value)
        self._store.write(self._session_id, _value_key(key), data)
        self._cleared = False
        logger.debug(f"Stored session key {key!r} for session {mask_session_id(self._session_id)}")

    def _lookup(self, data: Optional[bytes]) -> Lookup:
        if data is None:
            return Lookup("", False)
        try:
            return Lookup(self._codec.render(data), True)
        except NotFound:
            return Lookup("", False)

    def get_value(self, key: str) -> Lookup:
        """Read ``key`` as plain text without consuming it."""
        return self._lookup(self._store.read(self._session_id, _value_key(key)))

    def get(self, key: str) -> str:
        """Read ``key`` as plain text; empty string if nothing is stored."""
        return self.get_value(key).value

    def pop_value(self, key: str) -> Lookup:
        """Read ``key`` as plain text and remove it in one step."""
        return self._lookup(self._store.take(self._session_id, _value_key(key)))

    def pop(self, key: str) -> str:
        """Like ``get``, but the value is removed once read."""
        return self.pop_value(key).value

    def load(self, key: str, target: Any) -> Any:
        """
        Decode the value under ``key`` into ``target`` without consuming it.

        Args:
            key: Session key
            target: Type to decode into (str, int, a dataclass, a model, ...)

        Returns:
            The decoded value

        Raises:
            NotFound: If nothing is stored under ``key``
            DecodeError: If the stored value does not fit ``target``
        """
        return self._decode(key, self._store.read(self._session_id, _value_key(key)), target)

    def _decode(self, key: str, data: Optional[bytes], target: Any) -> Any:
        if data is None:
            raise NotFound(key)
        try:
            return self._codec.decode(data, target)
        except NotFound:
            raise NotFound(key) from None

    def pop_load(self, key: str, target: Any) -> Any:
        """
        ``load``, consuming the key. On a decode failure the value is kept.

        The value is taken from the store in one step, so concurrent
        ``pop_load`` calls cannot both receive it.

        Raises:
            NotFound: If nothing is stored under ``key``
            DecodeError: If the stored value does not fit ``target``
        """
        data = self._store.take(self._session_id, _value_key(key))
        try:
            return self._decode(key, data, target)
        except DecodeError:
            self._store.write(self._session_id, _value_key(key), data)
            raise

    def flash(self, message: Union[FlashMessage, str], kind: Optional[str] = None) -> None:
        """
        Append a flash message, keeping every message queued before it.

        Raises:
            EncodeError: If the message cannot be encoded
            StoreError: If the backend fails
        """
        if not isinstance(message, FlashMessage):
            message = FlashMessage(message=message, kind=kind)

        queued = self._read_flashes()
        queued.append(message)
        self._store.write(self._session_id, FLASH_KEY, self._codec.encode(queued))
        self._cleared = False

    def flashes(self) -> List[FlashMessage]:
        """Return all queued flash messages in insertion order and clear them.

        An unreadable queue is discarded and logged; the caller gets ``[]``.
        """
        data = self._store.take(self._session_id, FLASH_KEY)
        if data is None:
            return []
        try:
            return self._codec.decode(data, List[FlashMessage])
        except (NotFound, DecodeError) as e:
            logger.error(
                f"Discarding unreadable flash queue for session "
                f"{mask_session_id(self._session_id)}: {e}"
            )
            return []

    def _read_flashes(self) -> List[FlashMessage]:
        data = self._store.read(self._session_id, FLASH_KEY)
        if data is None:
            return []
        try:
            return self._codec.decode(data, List[FlashMessage])
        except (NotFound, DecodeError) as e:
            logger.error(
                f"Replacing unreadable flash queue for session "
                f"{mask_session_id(self._session_id)}: {e}"
            )
            return []

    def clear(self) -> None:
        """Drop all stored state; the response will delete the cookie."""
        self._store.clear(self._session_id)
        self._cleared = True
        logger.debug(f"Cleared session {mask_session_id(self._session_id)}")

    def touch(self) -> None:
        """Re-issue the cookie on this response (extends its lifetime)."""
        self._touched = True


class SessionManager:
    """Process-wide session configuration.

    Build one per application and pass it to ``SessionMiddleware``. Holds
    no per-request state, so concurrent requests never contend on it.

    Example usage:
        manager = SessionManager(MemoryStore(), settings=SessionSettings(secret_key=...))
        app.add_middleware(SessionMiddleware, manager=manager)
    """

    def __init__(
        self,
        store: Store,
        codec: Optional[Codec] = None,
        cookie_codec: Optional[CookieCodec] = None,
        settings: Optional[SessionSettings] = None,
    ):
        self.settings = settings or SessionSettings()
        self.store = store
        self.codec = codec or JSONCodec()
        self.cookie_codec = cookie_codec or create_cookie_codec(self.settings)

    @classmethod
    def from_settings(cls, settings: Optional[SessionSettings] = None) -> "SessionManager":
        """Build a manager with the store and cookie codec the settings describe."""
        settings = settings or SessionSettings()
        return cls(create_store(settings), settings=settings)

    def middleware(self, app: ASGIApp) -> ASGIApp:
        """Wrap an ASGI app so every request gets a bound session."""
        from reqsession.middleware import SessionMiddleware

        return SessionMiddleware(app, manager=self)

    def resolve_session_id(self, request: HTTPConnection) -> Tuple[str, bool]:
        """
        Determine the session id for a request.

        Returns:
            ``(session_id, is_new)``: the id carried by a valid cookie, or a
            freshly minted one
        """
        cookie_value = request.cookies.get(self.settings.cookie_name)
        if cookie_value:
            try:
                return self.cookie_codec.decode(cookie_value), False
            except CookieError as e:
                logger.debug(f"Ignoring session cookie: {e}")
                log_cookie_rejected(
                    str(e), ip_address=request.client.host if request.client else None
                )

        return new_session_id(self.settings.id_bytes), True

    def bind(self, request: HTTPConnection) -> RequestSession:
        """
        Get the ``RequestSession`` for a request, resolving its id on first use.

        Repeated calls with the same request return the same object, with
        or without the middleware installed.
        """
        bound = getattr(request.state, _STATE_ATTR, None)
        if isinstance(bound, RequestSession) and bound.manager is self:
            return bound

        session_id, is_new = self.resolve_session_id(request)
        bound = RequestSession(self, session_id, is_new)
        setattr(request.state, _STATE_ATTR, bound)
        if is_new:
            logger.debug(f"Minted new session {mask_session_id(session_id)}")
        return bound

    def write_cookie(self, response: Response, session: RequestSession) -> None:
        """Persist the identifier on the response if the session requires it."""
        settings = self.settings
        if session.cleared:
            response.delete_cookie(
                settings.cookie_name,
                path=settings.cookie_path,
                domain=settings.cookie_domain,
                secure=settings.https_only,
                httponly=settings.http_only,
                samesite=settings.same_site,
            )
            return

        if not session.needs_cookie:
            return

        response.set_cookie(
            settings.cookie_name,
            self.cookie_codec.encode(session.session_id),
            max_age=settings.max_age,
            path=settings.cookie_path,
            domain=settings.cookie_domain,
            secure=settings.https_only,
            httponly=settings.http_only,
            samesite=settings.same_site,
        )

    # Request-first convenience wrappers

    def add(self, request: HTTPConnection, key: str, value: Any) -> None:
        self.bind(request).add(key, value)

    def get(self, request: HTTPConnection, key: str) -> str:
        return self.bind(request).get(key)

    def pop(self, request: HTTPConnection, key: str) -> str:
        return self.bind(request).pop(key)

    def load(self, request: HTTPConnection, key: str, target: Any) -> Any:
        return self.bind(request).load(key, target)

    def pop_load(self, request: HTTPConnection, key: str, target: Any) -> Any:
        return self.bind(request).pop_load(key, target)

    def flash(self, request: HTTPConnection, message: Union[FlashMessage, str], kind: Optional[str] = None) -> None:
        self.bind(request).flash(message, kind=kind)

    def flashes(self, request: HTTPConnection) -> List[FlashMessage]:
        return self.bind(request).flashes()
