from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime, Integer, LargeBinary, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from reqsession.db.base import Base, TimestampMixin


class SessionData(TimestampMixin, Base):
    """One encoded session value, keyed by (session_id, key)."""

    __table_args__ = (UniqueConstraint("session_id", "key"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    session_id: Mapped[str] = mapped_column(String(128), index=True, nullable=False)
    key: Mapped[str] = mapped_column(String(255), nullable=False)
    data: Mapped[bytes] = mapped_column(LargeBinary, nullable=False)
    # NULL means the value never expires
    expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True, index=True)

    def __repr__(self) -> str:
        return f"<SessionData(key={self.key!r})>"
