"""
Connection lifecycle management
Orchestrates connect/refresh/disconnect, owns the per-connection state
machine and retry policy
"""
import asyncio
import logging
from typing import Dict, List, Optional

from .addressing import CanonicalHost, derive_journal_address, normalize_host, to_provider_address
from .classifier import classify, is_timeout
from .config import Config, get_config
from .discovery import QueueDiscoveryService
from .errors import ConnectionNotFoundError, InvalidTimeoutError, OperationError, RetryNotAllowedError
from .events import ConnectionEvent, EventBus
from .models import (
    Connection,
    ConnectionFailed,
    ConnectionRefreshed,
    ConnectionStateChanged,
    ConnectionStatus,
    Credentials,
    QueueMessage,
)
from .provider import QueueProvider
from .registry import ConnectionRegistry
from .workers import Deadline, KeyedLock, WorkerPool, backoff_delay


logger = logging.getLogger(__name__)


class ConnectionManager:
    """
    High-level interface for managing queue host connections.

    Operations on the same connection run one at a time; operations on
    different connections proceed independently. Blocking provider calls
    run on a bounded worker pool under a deadline.
    """

    def __init__(self, provider: QueueProvider, config: Optional[Config] = None,
                 registry: Optional[ConnectionRegistry] = None,
                 events: Optional[EventBus] = None,
                 pool: Optional[WorkerPool] = None,
                 machine_name: Optional[str] = None):
        """
        Initialize connection manager.

        Args:
            provider: Queue transport provider
            config: Settings (defaults to the global config)
            registry: Connection table (a fresh one is created if omitted)
            events: Event bus subscribers register on
            pool: Worker pool for provider calls
            machine_name: Override for the local machine name
        """
        self.config = config or get_config()
        self.provider = provider
        self.registry = registry or ConnectionRegistry()
        self.events = events or EventBus()
        self.pool = pool or WorkerPool(self.config.max_workers)
        self.machine_name = machine_name
        self.discovery = QueueDiscoveryService(provider, self.pool, machine_name)
        self._locks = KeyedLock()
        self._finished_attempts: Dict[str, int] = {}
        self._closed = False

    async def __aenter__(self) -> "ConnectionManager":
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()

    # Connection lifecycle

    async def connect(self, host: str, credentials: Optional[Credentials] = None,
                      display_name: Optional[str] = None,
                      timeout: Optional[float] = None) -> Connection:
        """
        Connect to a host, or return the existing connection for it.

        Args:
            host: Computer name ("." or "localhost" for this machine)
            credentials: Optional account for the host
            display_name: Name shown to users
            timeout: Deadline in seconds for probe plus discovery

        Returns:
            The Connected connection

        Raises:
            InvalidAddressError: Malformed host, before any I/O
            InvalidTimeoutError: Timeout is not positive, before any state change
            OperationError: Probe or discovery failed (message is classified)
            RetryNotAllowedError: Previous attempts failed and the retry policy is exhausted
        """
        canonical = normalize_host(host, self.machine_name)
        timeout = self._timeout(timeout)

        while True:
            connection, created = self.registry.get_or_create(
                canonical.name,
                lambda: self._new_connection(canonical, credentials, display_name),
            )
            attempts_seen = self._finished_attempts.get(connection.id, 0)

            async with self._locks.hold(connection.id):
                if self.registry.get(connection.id) is not connection:
                    # disconnected or abandoned while we waited
                    continue

                if connection.is_connected:
                    logger.debug(f"Reusing connection {connection.id} to {connection.host}")
                    return connection

                if not created and connection.has_failed:
                    if self._finished_attempts.get(connection.id, 0) != attempts_seen:
                        # joined an attempt that was already in flight
                        raise OperationError(connection.error_message or "Connection failed",
                                             connection_id=connection.id,
                                             timed_out=connection.status == ConnectionStatus.TIMEOUT)
                    self._check_retry(connection)
                    if credentials is not None:
                        connection.credentials = credentials
                        connection.username = credentials.username

                return await self._attempt(connection, created, timeout)

    async def reconnect(self, connection_id: str, timeout: Optional[float] = None) -> Connection:
        """
        Retry a failed or timed-out connection under its retry policy.

        Raises:
            ConnectionNotFoundError: Unknown id
            RetryNotAllowedError: Retry policy exhausted
            OperationError: The new attempt failed
        """
        timeout = self._timeout(timeout)
        connection = self._require(connection_id)
        async with self._locks.hold(connection_id):
            self._require_registered(connection)
            if connection.is_connected:
                return connection
            self._check_retry(connection)
            return await self._attempt(connection, False, timeout)

    async def connect_with_retry(self, host: str, credentials: Optional[Credentials] = None,
                                 display_name: Optional[str] = None,
                                 timeout: Optional[float] = None) -> Connection:
        """
        Connect, retrying with exponential backoff while the retry policy allows.

        Raises:
            OperationError: The last attempt failed and no retries remain
        """
        while True:
            try:
                return await self.connect(host, credentials, display_name, timeout)
            except OperationError:
                connection = self.find_connection(host)
                if connection is None or not connection.can_retry:
                    raise
                delay = backoff_delay(connection.retry_count, self.config.backoff_base)
                logger.info(f"Retrying {connection.host} in {delay:g}s "
                            f"(attempt {connection.retry_count + 1}/{connection.max_retries})")
                await asyncio.sleep(delay)

    async def refresh(self, connection_id: str, include_system_queues: bool = False,
                      timeout: Optional[float] = None) -> Connection:
        """
        Re-run discovery for a connection.

        On success the snapshot is replaced and last_refreshed_at updated;
        status never changes. On failure or cancellation the connection is
        left exactly as it was.

        Raises:
            ConnectionNotFoundError: Unknown id
            OperationError: Discovery failed (message is classified)
        """
        timeout = self._timeout(timeout)
        connection = self._require(connection_id)
        async with self._locks.hold(connection_id):
            self._require_registered(connection)
            connection.is_refreshing = True
            try:
                result = await self.discovery.discover(
                    _canonical(connection),
                    include_system_queues,
                    connection.credentials,
                    timeout=timeout,
                )
            except Exception as e:
                message = classify(e)
                logger.warning(f"Refresh of {connection.host} failed: {message}")
                raise OperationError(message, e, connection.id, timed_out=is_timeout(e)) from e
            finally:
                connection.is_refreshing = False

            connection.replace_queues(result.queues)
            logger.info(f"Refreshed {connection.host}: {len(result)} queues")
            await self._emit(ConnectionRefreshed(connection.id, len(result)))
            return connection

    async def refresh_all(self, include_system_queues: bool = False,
                          timeout: Optional[float] = None) -> Dict[str, Optional[Exception]]:
        """
        Refresh every connected connection independently.

        Returns:
            Dict of connection id to the error it raised, or None on success
        """
        connections = self.connections_by_status(ConnectionStatus.CONNECTED)
        results = await asyncio.gather(
            *(self.refresh(c.id, include_system_queues, timeout) for c in connections),
            return_exceptions=True,
        )
        return {
            c.id: (r if isinstance(r, Exception) else None)
            for c, r in zip(connections, results)
        }

    async def disconnect(self, connection_id: str):
        """
        Disconnect and remove a connection from the registry.

        Raises:
            ConnectionNotFoundError: Unknown id
        """
        connection = self._require(connection_id)
        async with self._locks.hold(connection_id):
            self._require_registered(connection)
            previous = connection.status
            connection.mark_disconnected()
            self.registry.remove(connection_id)
            self._finished_attempts.pop(connection_id, None)
            logger.info(f"Disconnected from {connection.host}")
            await self._emit(ConnectionStateChanged(connection.id, previous, connection.status))

    async def disconnect_all(self):
        for connection in self.registry.list():
            try:
                await self.disconnect(connection.id)
            except ConnectionNotFoundError:
                continue

    async def probe(self, host: str, credentials: Optional[Credentials] = None,
                    timeout: Optional[float] = None) -> CanonicalHost:
        """
        Check that a host's queue manager answers, without registering a connection.

        Returns:
            The canonical host that was probed

        Raises:
            InvalidAddressError: Malformed host, before any I/O
            OperationError: The probe failed (message is classified)
        """
        canonical = normalize_host(host, self.machine_name)
        deadline = Deadline(self._timeout(timeout))
        try:
            await self.pool.run(self.provider.probe, canonical.name, credentials,
                                deadline=deadline,
                                operation=f"Probe of {canonical.name}")
        except Exception as e:
            raise OperationError(classify(e), e, timed_out=is_timeout(e)) from e
        return canonical

    async def test_connection_health(self, connection_id: str, timeout: Optional[float] = None) -> bool:
        """Probe a connection's host without changing its state"""
        connection = self._require(connection_id)
        try:
            await self.probe(connection.host, connection.credentials, timeout)
        except OperationError as e:
            logger.info(f"Health check of {connection.host} failed: {e}")
            return False
        return True

    async def close(self):
        """Disconnect everything and release the registry and worker pool"""
        if self._closed:
            return
        self._closed = True
        await self.disconnect_all()
        self.registry.close()
        self.pool.close()

    # Lookups

    def list_connections(self) -> List[Connection]:
        return self.registry.list()

    def get_connection(self, connection_id: str) -> Optional[Connection]:
        return self.registry.get(connection_id)

    def find_connection(self, host: str) -> Optional[Connection]:
        return self.registry.get_by_host(normalize_host(host, self.machine_name).name)

    def connections_by_status(self, status: ConnectionStatus) -> List[Connection]:
        return [c for c in self.registry.list() if c.status == status]

    # Addresses and provider primitives

    def journal_address(self, address: str) -> str:
        return derive_journal_address(address)

    async def exists(self, address: str, timeout: Optional[float] = None) -> bool:
        return await self.discovery.exists(address, timeout=self._timeout(timeout))

    async def peek_messages(self, address: str, limit: Optional[int] = None,
                            timeout: Optional[float] = None) -> List[QueueMessage]:
        return await self.pool.run(self.provider.peek_messages, to_provider_address(address), limit,
                                   deadline=Deadline(self._timeout(timeout)), operation=f"Peek of {address}")

    async def send_message(self, address: str, body: bytes, label: str = "",
                           timeout: Optional[float] = None) -> str:
        return await self.pool.run(self.provider.send_message, to_provider_address(address), body, label,
                                   deadline=Deadline(self._timeout(timeout)), operation=f"Send to {address}")

    async def receive_message(self, address: str, timeout: Optional[float] = None) -> QueueMessage:
        """
        Remove the oldest message from a queue.

        Journaled queues keep a copy in their journal.

        Raises:
            ProviderError: The queue is missing or has no message (IO_TIMEOUT)
        """
        return await self.pool.run(self.provider.receive_message, to_provider_address(address),
                                   deadline=Deadline(self._timeout(timeout)), operation=f"Receive from {address}")

    async def purge_queue(self, address: str, timeout: Optional[float] = None) -> int:
        count = await self.pool.run(self.provider.purge, to_provider_address(address),
                                    deadline=Deadline(self._timeout(timeout)), operation=f"Purge of {address}")
        logger.warning(f"Purged {count} messages from {address}")
        return count

    # Internals

    def _new_connection(self, canonical: CanonicalHost, credentials: Optional[Credentials],
                        display_name: Optional[str]) -> Connection:
        return Connection(
            host=canonical.name,
            display_name=display_name or ("" if canonical.is_local else canonical.original),
            is_local=canonical.is_local,
            username=credentials.username if credentials else None,
            max_retries=self.config.max_retries,
            auto_reconnect=self.config.auto_reconnect,
            timeout_seconds=self.config.probe_timeout,
            credentials=credentials,
        )

    def _timeout(self, timeout: Optional[float]) -> float:
        seconds = self.config.probe_timeout if timeout is None else timeout
        if seconds <= 0:
            raise InvalidTimeoutError(f"Timeout must be a positive number of seconds, got {seconds!r}")
        return seconds

    def _require(self, connection_id: str) -> Connection:
        connection = self.registry.get(connection_id)
        if connection is None:
            raise ConnectionNotFoundError(connection_id)
        return connection

    def _require_registered(self, connection: Connection):
        if self.registry.get(connection.id) is not connection:
            raise ConnectionNotFoundError(connection.id)

    def _check_retry(self, connection: Connection):
        if not connection.can_retry:
            raise RetryNotAllowedError(
                f"Reconnect to {connection.host} refused after {connection.retry_count} failed "
                f"attempt(s) (auto_reconnect={connection.auto_reconnect}, "
                f"max_retries={connection.max_retries})")

    async def _attempt(self, connection: Connection, created: bool, timeout: Optional[float]) -> Connection:
        """Run one probe + discovery attempt; caller holds the connection's lock"""
        deadline = Deadline(self._timeout(timeout))
        connection.timeout_seconds = deadline.seconds
        previous = connection.status
        await self._set_status(connection, ConnectionStatus.CONNECTING)
        logger.info(f"Connecting to {connection.host} (timeout {deadline.seconds:g}s)")

        try:
            await self.pool.run(self.provider.probe, connection.host, connection.credentials,
                                deadline=deadline, operation=f"Probe of {connection.host}")
            result = await self.discovery.discover(
                _canonical(connection),
                self.config.include_system_queues,
                connection.credentials,
                deadline=deadline,
            )
            queues = connection.check_queues(result.queues)
        except asyncio.CancelledError:
            await self._abandon(connection, previous, created)
            raise
        except Exception as e:
            message = await self._fail(connection, e)
            raise OperationError(message, e, connection.id, timed_out=is_timeout(e)) from e

        self._record_finished(connection)
        connection.mark_connected(queues)
        logger.info(f"Connected to {connection.host}: {len(result)} queues")
        await self._emit(ConnectionStateChanged(connection.id, ConnectionStatus.CONNECTING, connection.status))
        return connection

    async def _fail(self, connection: Connection, error: BaseException) -> str:
        message = classify(error)
        self._record_finished(connection)
        connection.mark_failed(message, timed_out=is_timeout(error))
        logger.warning(f"Connection to {connection.host} {connection.status.value}: {message}")
        await self._emit(ConnectionStateChanged(connection.id, ConnectionStatus.CONNECTING, connection.status))
        await self._emit(ConnectionFailed(
            connection_id=connection.id,
            error_message=message,
            will_retry=connection.can_retry,
            retry_attempt=connection.retry_count,
        ))
        return message

    def _record_finished(self, connection: Connection):
        self._finished_attempts[connection.id] = self._finished_attempts.get(connection.id, 0) + 1

    async def _abandon(self, connection: Connection, previous: ConnectionStatus, created: bool):
        """Undo a cancelled attempt: restore the prior status, drop never-connected entries"""
        await self._set_status(connection, previous)
        if created:
            self.registry.remove(connection.id)
            self._finished_attempts.pop(connection.id, None)
        logger.info(f"Connection attempt to {connection.host} cancelled")

    async def _set_status(self, connection: Connection, status: ConnectionStatus):
        previous = connection.transition(status)
        await self._emit(ConnectionStateChanged(connection.id, previous, status))

    async def _emit(self, event: ConnectionEvent):
        await self.events.emit(event)


def _canonical(connection: Connection) -> CanonicalHost:
    """Canonical host of a registered connection, without re-normalizing its name"""
    return CanonicalHost(connection.host, connection.is_local, connection.display_name or connection.host)
