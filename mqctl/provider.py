"""
Queue transport provider interface
The blocking primitives mqctl consumes, plus an in-memory implementation
"""
import threading
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from .addressing import (
    LOCAL_HOST,
    direct_format_name,
    is_local_host,
    is_scheme_qualified,
    parse_address,
    private_queue_path,
)
from .errors import InvalidAddressError, ProviderError, ProviderErrorCode
from .models import Credentials, QueueMessage, utcnow


@dataclass
class ProviderQueue:
    """Queue handle as reported by a provider"""
    path: str
    format_name: str
    host: str
    label: str = ""
    transactional: bool = False
    use_journal: bool = True


class QueueProvider(ABC):
    """
    Blocking queue transport.

    Every method may raise ProviderError. Calls are made from worker
    threads, so implementations must be thread-safe.
    """

    def probe(self, host: str, credentials: Optional[Credentials] = None) -> None:
        """Check that a host's queue manager answers; raises on failure"""
        self.list_private_queues(host, credentials)

    @abstractmethod
    def list_private_queues(self, host: str, credentials: Optional[Credentials] = None) -> List[ProviderQueue]:
        """Enumerate the private queues visible at a host"""

    @abstractmethod
    def open_queue(self, address: str) -> ProviderQueue:
        """Open a queue by provider address"""

    @abstractmethod
    def exists(self, path: str) -> bool:
        """Native existence check; only conventional paths are supported"""

    @abstractmethod
    def count_messages(self, address: str) -> int:
        """Number of messages in the queue (or journal) at an address"""

    @abstractmethod
    def peek_messages(self, address: str, limit: Optional[int] = None) -> List[QueueMessage]:
        """Read messages without removing them"""

    @abstractmethod
    def receive_message(self, address: str) -> QueueMessage:
        """Remove and return the oldest message"""

    @abstractmethod
    def send_message(self, address: str, body: bytes, label: str = "") -> str:
        """Send a message and return its id"""

    @abstractmethod
    def purge(self, address: str) -> int:
        """Delete all messages and return how many were removed"""

    def close(self):
        """Release provider resources"""


def resolve_queue_key(address: str) -> Tuple[str, str, bool]:
    """
    Reduce an address to (host, queue name, is_journal) for providers that
    keep queues by host and name.

    Raises:
        ProviderError: ILLEGAL_FORMAT_NAME for addresses that name no machine
    """
    try:
        parsed = parse_address(address)
    except InvalidAddressError as e:
        raise ProviderError(ProviderErrorCode.ILLEGAL_FORMAT_NAME, str(e))
    if not parsed.machine:
        raise ProviderError(ProviderErrorCode.ILLEGAL_FORMAT_NAME,
                            f"Format name does not identify a machine: {address}")
    host = LOCAL_HOST if is_local_host(parsed.machine) else parsed.machine.lower()
    return host, parsed.name.lower(), parsed.is_journal


@dataclass
class _MemoryQueue:
    info: ProviderQueue
    messages: List[QueueMessage] = field(default_factory=list)
    journal: List[QueueMessage] = field(default_factory=list)


class MemoryProvider(QueueProvider):
    """
    In-process provider holding hosts and queues in dictionaries.

    Failures can be injected per host and per address, and host enumeration
    can be slowed down, so connection handling is testable without a network.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._hosts: Dict[str, Dict[str, _MemoryQueue]] = {}
        self._host_errors: Dict[str, ProviderError] = {}
        self._address_errors: Dict[Tuple[str, str, bool], ProviderError] = {}
        self._delays: Dict[str, float] = {}
        self._released = threading.Event()
        self.calls: List[Tuple[str, str]] = []

    def _host_key(self, host: str) -> str:
        return LOCAL_HOST if is_local_host(host) else host.lower()

    def add_host(self, host: str) -> "MemoryProvider":
        with self._lock:
            self._hosts.setdefault(self._host_key(host), {})
        return self

    def add_queue(self, host: str, name: str, messages: int = 0, journal_messages: int = 0,
                  label: str = "", transactional: bool = False) -> ProviderQueue:
        """Create a private queue, optionally pre-filled with messages"""
        key = self._host_key(host)
        info = ProviderQueue(
            path=private_queue_path(key, name),
            format_name=direct_format_name(key, name),
            host=key,
            label=label,
            transactional=transactional,
        )
        queue = _MemoryQueue(info)
        queue.messages = [self._message(info.path, f"message {i}") for i in range(messages)]
        queue.journal = [self._message(info.path, f"journal {i}") for i in range(journal_messages)]
        with self._lock:
            self._hosts.setdefault(key, {})[name.lower()] = queue
        return info

    def fail_host(self, host: str, code: ProviderErrorCode, message: str = ""):
        """Make every call against a host raise"""
        self._host_errors[self._host_key(host)] = ProviderError(code, message)

    def fail_address(self, address: str, code: ProviderErrorCode, message: str = ""):
        """Make calls against one queue (or its journal) raise"""
        self._address_errors[resolve_queue_key(address)] = ProviderError(code, message)

    def clear_failures(self):
        self._host_errors.clear()
        self._address_errors.clear()

    def delay_host(self, host: str, seconds: float):
        """Slow down enumeration of a host; close() releases waiting calls"""
        self._delays[self._host_key(host)] = seconds

    def close(self):
        self._released.set()

    def _message(self, address: str, body: str, label: str = "") -> QueueMessage:
        return QueueMessage(id=uuid.uuid4().hex, address=address, body=body.encode(),
                            label=label, arrived_at=utcnow())

    def _check_host(self, host: str) -> Dict[str, _MemoryQueue]:
        if host in self._host_errors:
            raise self._host_errors[host]
        if host not in self._hosts:
            raise ProviderError(ProviderErrorCode.REMOTE_MACHINE_NOT_AVAILABLE,
                                f"Remote computer '{host}' is not available")
        return self._hosts[host]

    def _lookup(self, address: str) -> Tuple[_MemoryQueue, bool]:
        key = resolve_queue_key(address)
        host, name, is_journal = key
        if key in self._address_errors:
            raise self._address_errors[key]
        queues = self._check_host(host)
        if name not in queues:
            raise ProviderError(ProviderErrorCode.QUEUE_NOT_FOUND, f"Queue not found: {address}")
        return queues[name], is_journal

    def list_private_queues(self, host: str, credentials: Optional[Credentials] = None) -> List[ProviderQueue]:
        key = self._host_key(host)
        self.calls.append(("list_private_queues", key))
        delay = self._delays.get(key)
        if delay:
            self._released.wait(delay)
        with self._lock:
            queues = self._check_host(key)
            return [q.info for q in queues.values()]

    def open_queue(self, address: str) -> ProviderQueue:
        self.calls.append(("open_queue", address))
        with self._lock:
            queue, _ = self._lookup(address)
            return queue.info

    def exists(self, path: str) -> bool:
        self.calls.append(("exists", path))
        if is_scheme_qualified(path):
            raise ProviderError(ProviderErrorCode.ILLEGAL_FORMAT_NAME,
                                "Existence checks do not accept format names")
        with self._lock:
            try:
                self._lookup(path)
            except ProviderError as e:
                if e.code == ProviderErrorCode.QUEUE_NOT_FOUND:
                    return False
                raise
            return True

    def count_messages(self, address: str) -> int:
        self.calls.append(("count_messages", address))
        with self._lock:
            queue, is_journal = self._lookup(address)
            return len(queue.journal if is_journal else queue.messages)

    def peek_messages(self, address: str, limit: Optional[int] = None) -> List[QueueMessage]:
        with self._lock:
            queue, is_journal = self._lookup(address)
            messages = queue.journal if is_journal else queue.messages
            return list(messages[:limit] if limit else messages)

    def receive_message(self, address: str) -> QueueMessage:
        with self._lock:
            queue, is_journal = self._lookup(address)
            messages = queue.journal if is_journal else queue.messages
            if not messages:
                raise ProviderError(ProviderErrorCode.IO_TIMEOUT, f"No message available in {address}")
            message = messages.pop(0)
            if not is_journal and queue.info.use_journal:
                queue.journal.append(message)
            return message

    def send_message(self, address: str, body: bytes, label: str = "") -> str:
        with self._lock:
            queue, is_journal = self._lookup(address)
            if is_journal:
                raise ProviderError(ProviderErrorCode.ACCESS_DENIED, "Journal queues are read-only")
            message = QueueMessage(id=uuid.uuid4().hex, address=queue.info.path, body=body,
                                   label=label, arrived_at=utcnow())
            queue.messages.append(message)
            return message.id

    def purge(self, address: str) -> int:
        with self._lock:
            queue, is_journal = self._lookup(address)
            if is_journal:
                count, queue.journal = len(queue.journal), []
            else:
                count, queue.messages = len(queue.messages), []
            return count
