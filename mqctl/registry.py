"""
Active connection table
At most one connection per canonical host, safe for concurrent use
"""
import threading
from typing import Callable, Dict, List, Optional, Tuple

from .errors import RegistryClosedError
from .models import Connection


class ConnectionRegistry:
    """
    In-memory table of active connections keyed by canonical host.

    Each host has its own lock, so inserts and removals for different hosts
    never wait on each other. Reads take no lock.
    """

    def __init__(self):
        self._by_host: Dict[str, Connection] = {}
        self._by_id: Dict[str, Connection] = {}
        self._host_locks: Dict[str, threading.Lock] = {}
        self._closed = False

    def _lock_for(self, host: str) -> threading.Lock:
        # setdefault is atomic, so two threads always end up with the same lock
        return self._host_locks.setdefault(host, threading.Lock())

    def get_or_create(self, host: str, factory: Callable[[], Connection]) -> Tuple[Connection, bool]:
        """
        Return the connection for a host, creating it when there is none.

        Args:
            host: Canonical host key
            factory: Builds the new Connection; only called when needed

        Returns:
            Tuple of (connection, created)
        """
        with self._lock_for(host):
            if self._closed:
                raise RegistryClosedError("Connection registry is closed")
            existing = self._by_host.get(host)
            if existing is not None:
                return existing, False
            connection = factory()
            if connection.host != host:
                raise ValueError(f"Connection host {connection.host!r} does not match key {host!r}")
            self._by_host[host] = connection
            self._by_id[connection.id] = connection
            return connection, True

    def get(self, connection_id: str) -> Optional[Connection]:
        return self._by_id.get(connection_id)

    def get_by_host(self, host: str) -> Optional[Connection]:
        return self._by_host.get(host)

    def remove(self, connection_id: str) -> Optional[Connection]:
        """
        Remove a connection.

        Returns:
            The removed connection, or None if it was not registered
        """
        connection = self._by_id.get(connection_id)
        if connection is None:
            return None
        with self._lock_for(connection.host):
            self._by_id.pop(connection_id, None)
            if self._by_host.get(connection.host) is connection:
                del self._by_host[connection.host]
        return connection

    def list(self) -> List[Connection]:
        return list(self._by_id.values())

    def __len__(self) -> int:
        return len(self._by_id)

    def __contains__(self, connection_id: str) -> bool:
        return connection_id in self._by_id

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self):
        """Tear down the registry; later inserts raise RegistryClosedError"""
        self._closed = True
        for host in list(self._by_host):
            with self._lock_for(host):
                self._by_host.pop(host, None)
        self._by_id.clear()
