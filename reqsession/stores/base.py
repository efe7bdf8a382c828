"""Abstract base class for session storage backends.

This module defines the storage contract that every backend (in-memory,
database, Redis) must conform to. The session manager only ever talks to
this interface.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, Optional


class Store(ABC):
    """Abstract base class for session stores.

    A store maps ``(session_id, key)`` to an opaque byte blob. Operations on
    distinct keys are independent and no ordering between keys is implied.
    Backend failures must be raised as ``StoreError``; a missing key is
    never an error.

    Example usage:
        store = MemoryStore()
        store.write(session_id, "value:cart", b"...")
        data = store.read(session_id, "value:cart")
    """

    @abstractmethod
    def read(self, session_id: str, key: str) -> Optional[bytes]:
        """Read one value.

        Args:
            session_id: Session identifier
            key: Storage key within the session

        Returns:
            The stored bytes, or None if nothing is stored under the key.

        Raises:
            StoreError: If the backend fails.
        """
        pass

    @abstractmethod
    def write(self, session_id: str, key: str, data: bytes) -> None:
        """Write (or overwrite) one value.

        Raises:
            StoreError: If the backend fails.
        """
        pass

    @abstractmethod
    def delete(self, session_id: str, key: str) -> None:
        """Delete one value. Deleting a missing key is a no-op.

        Raises:
            StoreError: If the backend fails.
        """
        pass

    @abstractmethod
    def read_all(self, session_id: str) -> Dict[str, bytes]:
        """Read every key of a session.

        Returns:
            Mapping of key to bytes; empty if the session has no data.

        Raises:
            StoreError: If the backend fails.
        """
        pass

    @abstractmethod
    def clear(self, session_id: str) -> None:
        """Drop every key of a session.

        Raises:
            StoreError: If the backend fails.
        """
        pass

    def take(self, session_id: str, key: str) -> Optional[bytes]:
        """Read one value and delete it.

        The default is a plain read followed by a delete; backends that can
        do better (a lock, a transaction, MULTI/EXEC) override it so no
        concurrent reader can observe the value once it has been taken.

        Returns:
            The stored bytes, or None if nothing was stored.
        """
        data = self.read(session_id, key)
        if data is not None:
            self.delete(session_id, key)
        return data

    def health(self) -> Dict[str, Any]:
        """Report backend health.

        Returns:
            Dict with at least ``status`` and ``type`` entries.
        """
        return {"status": "healthy", "type": type(self).__name__}
