"""Server-side session storage on a SQL database (SQLite, PostgreSQL, ...).

Stores encoded session values in the `sessiondata` table, one row per
(session_id, key).
"""
from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from threading import Event, Lock
from typing import Any, Dict, Optional

from sqlalchemy import delete, inspect, or_, select, update
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from reqsession.core.errors import StoreError
from reqsession.db.base import Base
from reqsession.db.models.session_store import SessionData
from reqsession.db.session import create_session_engine, create_session_factory, get_db_sync
from reqsession.stores.base import Store

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    # Stored naive, in UTC
    return datetime.now(timezone.utc).replace(tzinfo=None)


class DatabaseStore(Store):
    def __init__(self, engine: Engine, ttl_seconds: Optional[int] = None):
        """
        Args:
            engine: SQLAlchemy engine to store sessions in
            ttl_seconds: Idle lifetime of a value; rows past their
                ``expires_at`` are invisible and removed by ``purge_expired``
        """
        self.engine = engine
        self.ttl_seconds = ttl_seconds
        self._factory = create_session_factory(engine)
        self._tables_initialized = False
        self._tables_init_lock = Lock()
        self._tables_init_event = Event()

    @classmethod
    def from_url(cls, database_url: str, ttl_seconds: Optional[int] = None) -> "DatabaseStore":
        return cls(create_session_engine(database_url), ttl_seconds=ttl_seconds)

    def _ensure_table(self) -> None:
        """Ensure the sessiondata table exists in a thread-safe manner."""
        if self._tables_initialized or self._tables_init_event.is_set():
            return

        with self._tables_init_lock:
            # Double-check after acquiring lock
            if not self._tables_initialized:
                try:
                    Base.metadata.create_all(
                        bind=self.engine,
                        tables=[SessionData.__table__],
                        checkfirst=True,
                    )
                except SQLAlchemyError as e:
                    logger.error(f"Failed to initialize session store table: {e}")
                    raise StoreError(f"Failed to initialize session store table: {e}") from e
                self._tables_initialized = True
                logger.debug("Session store table initialized successfully")
            self._tables_init_event.set()

    def _expiry(self) -> Optional[datetime]:
        if self.ttl_seconds is None:
            return None
        return _utcnow() + timedelta(seconds=self.ttl_seconds)

    @staticmethod
    def _live(now: datetime):
        return or_(SessionData.expires_at.is_(None), SessionData.expires_at > now)

    def read(self, session_id: str, key: str) -> Optional[bytes]:
        self._ensure_table()
        try:
            with get_db_sync(self._factory) as db:
                return db.scalar(
                    select(SessionData.data).where(
                        SessionData.session_id == session_id,
                        SessionData.key == key,
                        self._live(_utcnow()),
                    )
                )
        except SQLAlchemyError as e:
            logger.error(f"Database read failed for session key {key}: {e}")
            raise StoreError(f"Database read failed: {e}") from e

    def write(self, session_id: str, key: str, data: bytes) -> None:
        self._ensure_table()
        expires_at = self._expiry()
        with get_db_sync(self._factory) as db:
            try:
                # Update first, insert if no row exists yet
                result = db.execute(
                    update(SessionData)
                    .where(SessionData.session_id == session_id, SessionData.key == key)
                    .values(data=data, expires_at=expires_at)
                )

                if result.rowcount == 0:
                    try:
                        db.add(SessionData(
                            session_id=session_id, key=key, data=data, expires_at=expires_at
                        ))
                        db.flush()
                    except IntegrityError:
                        # Another writer inserted between our UPDATE and INSERT
                        db.rollback()
                        logger.debug(f"Insert raced for session key {key}, retrying update")
                        result = db.execute(
                            update(SessionData)
                            .where(SessionData.session_id == session_id, SessionData.key == key)
                            .values(data=data, expires_at=expires_at)
                        )
                        if result.rowcount == 0:
                            raise StoreError(f"Failed to insert or update session data for key: {key}")

                db.commit()

            except SQLAlchemyError as e:
                db.rollback()
                logger.error(f"Database write failed for session key {key}: {e}")
                raise StoreError(f"Database write failed: {e}") from e

    def delete(self, session_id: str, key: str) -> None:
        self._ensure_table()
        with get_db_sync(self._factory) as db:
            try:
                db.execute(
                    delete(SessionData).where(
                        SessionData.session_id == session_id, SessionData.key == key
                    )
                )
                db.commit()
            except SQLAlchemyError as e:
                db.rollback()
                logger.error(f"Database delete failed for session key {key}: {e}")
                raise StoreError(f"Database delete failed: {e}") from e

    def read_all(self, session_id: str) -> Dict[str, bytes]:
        self._ensure_table()
        try:
            with get_db_sync(self._factory) as db:
                rows = db.execute(
                    select(SessionData.key, SessionData.data).where(
                        SessionData.session_id == session_id, self._live(_utcnow())
                    )
                ).all()
        except SQLAlchemyError as e:
            logger.error(f"Database read_all failed: {e}")
            raise StoreError(f"Database read failed: {e}") from e
        return {row.key: row.data for row in rows}

    def take(self, session_id: str, key: str) -> Optional[bytes]:
        self._ensure_table()
        with get_db_sync(self._factory) as db:
            try:
                row = db.execute(
                    select(SessionData.id, SessionData.data)
                    .where(
                        SessionData.session_id == session_id,
                        SessionData.key == key,
                        self._live(_utcnow()),
                    )
                    .with_for_update()
                ).first()
                if row is None:
                    db.rollback()
                    return None

                # FOR UPDATE is a no-op on SQLite; the row count decides who won
                result = db.execute(delete(SessionData).where(SessionData.id == row.id))
                if result.rowcount != 1:
                    db.rollback()
                    logger.debug(f"Session key {key} was taken by a concurrent request")
                    return None
                db.commit()
                return row.data
            except SQLAlchemyError as e:
                db.rollback()
                logger.error(f"Database take failed for session key {key}: {e}")
                raise StoreError(f"Database take failed: {e}") from e

    def clear(self, session_id: str) -> None:
        self._ensure_table()
        with get_db_sync(self._factory) as db:
            try:
                db.execute(delete(SessionData).where(SessionData.session_id == session_id))
                db.commit()
            except SQLAlchemyError as e:
                db.rollback()
                logger.error(f"Database clear failed: {e}")
                raise StoreError(f"Database clear failed: {e}") from e

    def purge_expired(self) -> int:
        """
        Delete rows whose ``expires_at`` has passed.

        Returns:
            Number of rows removed
        """
        self._ensure_table()
        with get_db_sync(self._factory) as db:
            try:
                result = db.execute(
                    delete(SessionData).where(
                        SessionData.expires_at.is_not(None),
                        SessionData.expires_at <= _utcnow(),
                    )
                )
                db.commit()
            except SQLAlchemyError as e:
                db.rollback()
                logger.error(f"Database purge failed: {e}")
                raise StoreError(f"Database purge failed: {e}") from e
        if result.rowcount:
            logger.info(f"Purged {result.rowcount} expired session values")
        return result.rowcount

    def health(self) -> Dict[str, Any]:
        health = {
            "status": "healthy",
            "type": "database",
            "dialect": self.engine.dialect.name,
            "connected": False,
            "last_error": None,
        }
        try:
            with self.engine.connect():
                health["connected"] = True
            if SessionData.__tablename__ not in inspect(self.engine).get_table_names():
                health["status"] = "warning"
                health["last_error"] = "Session table not created yet"
        except SQLAlchemyError as e:
            logger.error(f"Session store health check failed: {e}")
            health["status"] = "unhealthy"
            health["last_error"] = str(e)
        return health
