"""Database models"""

from reqsession.db.models.session_store import SessionData

__all__ = [
    "SessionData",
]
