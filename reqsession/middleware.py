"""
Session middleware.

Binds a session to every inbound request and writes the identifier cookie
on the way out.
"""

import logging
import uuid

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.responses import Response
from starlette.types import ASGIApp

from reqsession.core.security import mask_session_id
from reqsession.core.utils.logging_config import set_correlation_id
from reqsession.manager import RequestSession, SessionManager

logger = logging.getLogger(__name__)


class SessionMiddleware(BaseHTTPMiddleware):
    """
    Middleware that makes a ``RequestSession`` available as
    ``request.state.session``.

    Per request: resolve the id from the cookie (or mint one), run the
    handler, then issue the cookie if the id is new or the session asks for
    it, or delete it if the session was cleared.
    """

    def __init__(self, app: ASGIApp, manager: SessionManager):
        super().__init__(app)
        self.manager = manager

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        correlation_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        set_correlation_id(correlation_id)

        session = self.manager.bind(request)
        request.state.session = session

        response = await call_next(request)

        self.manager.write_cookie(response, session)
        response.headers["X-Request-ID"] = correlation_id
        if session.is_new and session.needs_cookie:
            logger.debug(
                f"Issued session cookie for {mask_session_id(session.session_id)} "
                f"on {request.method} {request.url.path}"
            )
        return response


def current_session(request: Request) -> RequestSession:
    """
    FastAPI dependency returning the request's bound session.

    Raises:
        RuntimeError: If SessionMiddleware is not installed
    """
    session = getattr(request.state, "session", None)
    if not isinstance(session, RequestSession):
        raise RuntimeError("SessionMiddleware must be installed to use current_session")
    return session
