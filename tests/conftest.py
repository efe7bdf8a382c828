"""
Global test configuration and fixtures for reqsession

This module provides shared fixtures: settings, stores, a session manager,
bare Starlette requests for calling the manager directly, and a FastAPI
app exposing the /set, /get and /pop conformance endpoints.
"""

import os
import tempfile
from typing import Dict, List, Optional

import pytest
from fastapi import Depends, FastAPI
from fastapi.responses import PlainTextResponse
from fastapi.testclient import TestClient
from starlette.requests import Request

from reqsession.core.config import SessionSettings
from reqsession.manager import FlashMessage, RequestSession, SessionManager
from reqsession.middleware import SessionMiddleware, current_session
from reqsession.stores.memory import MemoryStore

TEST_SECRET_KEY = "test-secret-key-for-reqsession-0123456789-abcdef"


# ============================================================================
# Settings and Manager Fixtures
# ============================================================================

@pytest.fixture(scope="function")
def session_settings() -> SessionSettings:
    """Settings for testing, isolated from the process environment"""
    return SessionSettings(
        _env_file=None,
        secret_key=TEST_SECRET_KEY,
        cookie_name="test_session",
        backend="memory",
        json_logs=False,
    )


@pytest.fixture(scope="function")
def memory_store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture(scope="function")
def manager(session_settings, memory_store) -> SessionManager:
    """Session manager backed by a fresh in-memory store"""
    return SessionManager(memory_store, settings=session_settings)


@pytest.fixture(scope="function")
def db_url():
    """Temporary SQLite database URL for each test function"""
    db_fd, db_path = tempfile.mkstemp(suffix='.db')
    yield f"sqlite:///{db_path}"
    os.close(db_fd)
    try:
        os.unlink(db_path)
    except OSError:
        pass


# ============================================================================
# Request Fixtures
# ============================================================================

def build_request(cookies: Optional[Dict[str, str]] = None, client_host: str = "127.0.0.1") -> Request:
    """Build a bare Starlette request, optionally carrying cookies"""
    headers = []
    if cookies:
        cookie_header = "; ".join(f"{name}={value}" for name, value in cookies.items())
        headers.append((b"cookie", cookie_header.encode("latin-1")))
    scope = {
        "type": "http",
        "method": "GET",
        "path": "/",
        "query_string": b"",
        "headers": headers,
        "client": (client_host, 50000),
    }
    return Request(scope)


@pytest.fixture(scope="function")
def make_request():
    """Factory for bare requests (no middleware involved)"""
    return build_request


# ============================================================================
# Application Client Fixtures
# ============================================================================

def create_test_app(manager: SessionManager) -> FastAPI:
    """FastAPI app exposing the session contract over HTTP"""
    app = FastAPI()
    app.add_middleware(SessionMiddleware, manager=manager)

    @app.get("/set", response_class=PlainTextResponse)
    def set_value(key: str, value: str, session: RequestSession = Depends(current_session)):
        session.add(key, value)
        return session.get(key)

    @app.get("/get", response_class=PlainTextResponse)
    def get_value(key: str, session: RequestSession = Depends(current_session)):
        return session.get(key)

    @app.get("/pop", response_class=PlainTextResponse)
    def pop_value(key: str, session: RequestSession = Depends(current_session)):
        return session.pop(key)

    @app.get("/flash")
    def add_flash(message: str, kind: Optional[str] = None, session: RequestSession = Depends(current_session)):
        session.flash(message, kind=kind)
        return {"queued": True}

    @app.get("/flashes", response_model=List[FlashMessage])
    def read_flashes(session: RequestSession = Depends(current_session)):
        return session.flashes()

    @app.get("/clear")
    def clear_session(session: RequestSession = Depends(current_session)):
        session.clear()
        return {"cleared": True}

    @app.get("/whoami", response_class=PlainTextResponse)
    def whoami(session: RequestSession = Depends(current_session)):
        return session.session_id

    return app


@pytest.fixture(scope="function")
def app_factory():
    """Build the conformance app around any manager"""
    return create_test_app


@pytest.fixture(scope="function")
def app(manager) -> FastAPI:
    return create_test_app(manager)


@pytest.fixture(scope="function")
def client(app) -> TestClient:
    """Create FastAPI test client (keeps cookies between requests)"""
    with TestClient(app) as test_client:
        yield test_client


# ============================================================================
# Data Fixtures
# ============================================================================

@pytest.fixture(scope="function")
def conformance_values() -> Dict[str, str]:
    """Keys/values that must survive the cookie and codec round-trip unchanged"""
    return {
        "key": "value",
        "中文测试": "中文测试",
        "<html> &tag, test": "<html> &tag, test",
    }


# ============================================================================
# Test Markers and Configuration
# ============================================================================

def pytest_configure(config):
    """Configure pytest with custom markers"""
    config.addinivalue_line(
        "markers", "unit: isolated tests of a single component"
    )
    config.addinivalue_line(
        "markers", "integration: tests exercising the middleware over HTTP"
    )
    config.addinivalue_line(
        "markers", "security: mark test as security-related"
    )


def pytest_collection_modifyitems(config, items):
    """Add markers based on file location"""
    for item in items:
        path = str(item.fspath)
        if "security" in path:
            item.add_marker(pytest.mark.security)
        if "integration" in path:
            item.add_marker(pytest.mark.integration)
