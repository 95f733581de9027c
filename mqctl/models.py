"""
Connection and queue models for mqctl
State machine, queue snapshots and lifecycle events
"""
import uuid
from dataclasses import dataclass, field, asdict
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Dict, FrozenSet, Generic, Iterable, List, Optional, TypeVar

from .errors import InvalidTransitionError


T = TypeVar("T")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ConnectionStatus(Enum):
    """Valid connection states"""
    NOT_CONNECTED = "not_connected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    FAILED = "failed"
    DISCONNECTED = "disconnected"
    TIMEOUT = "timeout"


ALLOWED_TRANSITIONS: Dict[ConnectionStatus, FrozenSet[ConnectionStatus]] = {
    ConnectionStatus.NOT_CONNECTED: frozenset({ConnectionStatus.CONNECTING}),
    ConnectionStatus.CONNECTING: frozenset({
        ConnectionStatus.CONNECTED,
        ConnectionStatus.FAILED,
        ConnectionStatus.TIMEOUT,
        # restore after a cancelled attempt
        ConnectionStatus.NOT_CONNECTED,
    }),
    ConnectionStatus.CONNECTED: frozenset(),
    ConnectionStatus.FAILED: frozenset({ConnectionStatus.CONNECTING}),
    ConnectionStatus.TIMEOUT: frozenset({ConnectionStatus.CONNECTING}),
    ConnectionStatus.DISCONNECTED: frozenset({ConnectionStatus.CONNECTING}),
}


def can_transition(current: ConnectionStatus, new: ConnectionStatus) -> bool:
    """Check a status change against the state machine (disconnect is always allowed)"""
    if new == ConnectionStatus.DISCONNECTED:
        return current != ConnectionStatus.DISCONNECTED
    return new in ALLOWED_TRANSITIONS[current]


class QueueCategory(Enum):
    """Kind of queue, derived from its name and path"""
    PRIVATE = "private"
    PUBLIC = "public"
    SYSTEM = "system"
    JOURNAL = "journal"
    DEAD_LETTER = "dead_letter"
    TRANSACTIONAL_DEAD_LETTER = "transactional_dead_letter"

    @classmethod
    def classify(cls, name: str, path: str = "") -> "QueueCategory":
        """
        Classify a queue by leaf name first, then by path.

        Names ending in "$" (admin_queue$, order_queue$, ...) are system queues.
        """
        lowered_name = (name or "").lower()
        lowered_path = (path or "").lower()

        if "xactdeadletter" in lowered_name or "xactdeadletter" in lowered_path:
            return cls.TRANSACTIONAL_DEAD_LETTER
        if "deadletter" in lowered_name or "deadletter" in lowered_path:
            return cls.DEAD_LETTER
        if "journal$" in lowered_path or lowered_path.endswith(";journal"):
            return cls.JOURNAL
        if lowered_name.endswith("$") or lowered_name in SYSTEM_QUEUE_NAMES:
            return cls.SYSTEM
        if "private$" in lowered_path:
            return cls.PRIVATE
        return cls.PUBLIC

    @property
    def is_system(self) -> bool:
        return _CATEGORY_FLAGS[self][0]

    @property
    def is_journal(self) -> bool:
        return _CATEGORY_FLAGS[self][1]


SYSTEM_QUEUE_NAMES = frozenset({
    "admin_queue$", "order_queue$", "notify_queue$", "mqis_queue$",
    "triggers", "system$",
})

# (is_system, is_journal); every category must have an entry
_CATEGORY_FLAGS = {
    QueueCategory.PRIVATE: (False, False),
    QueueCategory.PUBLIC: (False, False),
    QueueCategory.SYSTEM: (True, False),
    QueueCategory.JOURNAL: (False, True),
    QueueCategory.DEAD_LETTER: (True, False),
    QueueCategory.TRANSACTIONAL_DEAD_LETTER: (True, False),
}


@dataclass(frozen=True)
class Credentials:
    """Account used to reach a remote host"""
    username: str
    password: Optional[str] = field(default=None, repr=False)


@dataclass(frozen=True)
class BestEffort(Generic[T]):
    """
    Best-effort lookup result.

    Holds either a value or the error that prevented reading it. Callers
    unwrap it to a default instead of propagating the error.
    """
    value: Optional[T] = None
    error: Optional[BaseException] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def unwrap_or(self, default: T) -> T:
        if self.error is not None or self.value is None:
            return default
        return self.value


@dataclass
class QueueSnapshot:
    """
    Point-in-time description of one discovered queue.

    Attributes:
        name: Leaf queue name
        path: Conventional path (machine\\private$\\name)
        format_name: Scheme-qualified address of the queue
        journal_address: Derived journal address, independent of whether it exists
        host: Canonical host the queue was discovered on
        category: QueueCategory
        message_count: Messages currently in the queue
        journal_message_count: Messages in the companion journal
        accessible: False when the queue's properties could not be read
        error_message: Why the queue is not accessible
    """
    name: str
    path: str
    format_name: str
    journal_address: str
    host: str
    category: QueueCategory = QueueCategory.PRIVATE
    message_count: int = 0
    journal_message_count: int = 0
    accessible: bool = True
    error_message: Optional[str] = None
    label: str = ""
    transactional: bool = False

    @property
    def is_system(self) -> bool:
        return self.category.is_system

    @property
    def is_journal(self) -> bool:
        return self.category.is_journal

    @property
    def is_empty(self) -> bool:
        return self.message_count == 0

    def to_dict(self) -> dict:
        data = asdict(self)
        data["category"] = self.category.value
        return data


@dataclass
class Connection:
    """
    A session with one host.

    Attributes:
        host: Canonical host key ("." for this machine)
        display_name: Name shown to users
        id: Unique, immutable identifier
        status: Current ConnectionStatus
        retry_count: Failed attempts since the last successful connect
        max_retries: Retry budget before reconnects are refused
        auto_reconnect: Whether reconnect attempts are allowed at all
        queues: Snapshot from the last successful discovery pass
    """
    host: str
    display_name: str = ""
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    is_local: bool = False
    username: Optional[str] = None
    status: ConnectionStatus = ConnectionStatus.NOT_CONNECTED
    retry_count: int = 0
    max_retries: int = 3
    auto_reconnect: bool = True
    timeout_seconds: float = 30
    connected_at: Optional[datetime] = None
    last_refreshed_at: Optional[datetime] = None
    last_accessed_at: Optional[datetime] = None
    error_message: Optional[str] = None
    queues: List[QueueSnapshot] = field(default_factory=list)
    is_refreshing: bool = False
    credentials: Optional[Credentials] = field(default=None, repr=False, compare=False)

    def __setattr__(self, name, value):
        if name == "id" and "id" in self.__dict__:
            raise AttributeError("Connection id is immutable")
        super().__setattr__(name, value)

    @property
    def is_connected(self) -> bool:
        return self.status == ConnectionStatus.CONNECTED

    @property
    def has_failed(self) -> bool:
        return self.status in (ConnectionStatus.FAILED, ConnectionStatus.TIMEOUT)

    @property
    def can_retry(self) -> bool:
        """Check if another connect attempt is permitted"""
        return self.auto_reconnect and self.retry_count < self.max_retries

    @property
    def total_queues(self) -> int:
        return len(self.queues)

    @property
    def total_messages(self) -> int:
        return sum(q.message_count for q in self.queues)

    @property
    def uptime(self) -> Optional[timedelta]:
        if self.connected_at is None or not self.is_connected:
            return None
        return utcnow() - self.connected_at

    @property
    def formatted_display_name(self) -> str:
        if self.display_name:
            return self.display_name
        if self.is_local:
            return "Local Computer"
        return self.host

    @property
    def status_description(self) -> str:
        descriptions = {
            ConnectionStatus.NOT_CONNECTED: "Not connected",
            ConnectionStatus.CONNECTING: "Connecting...",
            ConnectionStatus.CONNECTED: f"Connected ({self.total_queues} queues, {self.total_messages} messages)",
            ConnectionStatus.FAILED: f"Failed: {self.error_message}",
            ConnectionStatus.DISCONNECTED: "Disconnected",
            ConnectionStatus.TIMEOUT: "Connection timeout",
        }
        return descriptions[self.status]

    def transition(self, new_status: ConnectionStatus) -> ConnectionStatus:
        """
        Move to a new status.

        Returns:
            The previous status

        Raises:
            InvalidTransitionError: If the state machine does not allow the change
        """
        previous = self.status
        if not can_transition(previous, new_status):
            raise InvalidTransitionError(
                f"Connection {self.id}: {previous.value} -> {new_status.value} is not allowed")
        self.status = new_status
        return previous

    def mark_connected(self, queues: Iterable[QueueSnapshot]):
        """
        Mark the connection as connected with a fresh snapshot.

        Raises:
            ValueError: A queue belongs to another host; status is unchanged
        """
        snapshot = self.check_queues(queues)
        self.transition(ConnectionStatus.CONNECTED)
        now = utcnow()
        self.connected_at = now
        self.last_accessed_at = now
        self.retry_count = 0
        self.error_message = None
        self.replace_queues(snapshot)

    def mark_failed(self, error_message: str, timed_out: bool = False):
        """Mark the connection as failed (or timed out) and count the attempt"""
        self.transition(ConnectionStatus.TIMEOUT if timed_out else ConnectionStatus.FAILED)
        self.error_message = error_message
        self.retry_count += 1

    def mark_disconnected(self):
        """Mark the connection as disconnected"""
        self.transition(ConnectionStatus.DISCONNECTED)
        self.connected_at = None

    def replace_queues(self, queues: Iterable[QueueSnapshot]):
        """Replace the whole snapshot; partial lists are never merged"""
        self.queues = self.check_queues(queues)
        now = utcnow()
        self.last_refreshed_at = now
        self.last_accessed_at = now

    def check_queues(self, queues: Iterable[QueueSnapshot]) -> List[QueueSnapshot]:
        """Return the queues as a list, rejecting any from another host"""
        snapshot = list(queues)
        foreign = [q for q in snapshot if q.host != self.host]
        if foreign:
            raise ValueError(f"Queue {foreign[0].path} does not belong to host {self.host}")
        return snapshot

    def filtered_queues(self, show_system: bool = True, show_journal: bool = True) -> List[QueueSnapshot]:
        queues = self.queues
        if not show_system:
            queues = [q for q in queues if not q.is_system]
        if not show_journal:
            queues = [q for q in queues if not q.is_journal]
        return list(queues)

    def to_dict(self) -> dict:
        """Convert connection to dictionary (credentials are never included)"""
        return {
            "id": self.id,
            "host": self.host,
            "display_name": self.formatted_display_name,
            "is_local": self.is_local,
            "username": self.username,
            "status": self.status.value,
            "retry_count": self.retry_count,
            "max_retries": self.max_retries,
            "auto_reconnect": self.auto_reconnect,
            "connected_at": _iso(self.connected_at),
            "last_refreshed_at": _iso(self.last_refreshed_at),
            "error_message": self.error_message,
            "queues": [q.to_dict() for q in self.queues],
        }

    def __str__(self) -> str:
        return f"{self.formatted_display_name} - {self.status_description}"


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


@dataclass
class QueueMessage:
    """Message as returned by a transport provider"""
    id: str
    address: str
    body: bytes = b""
    label: str = ""
    arrived_at: Optional[datetime] = None

    def body_text(self, encoding: str = "utf-8") -> str:
        return self.body.decode(encoding, errors="replace")


@dataclass(frozen=True)
class ConnectionStateChanged:
    connection_id: str
    previous_status: ConnectionStatus
    new_status: ConnectionStatus
    timestamp: datetime = field(default_factory=utcnow)


@dataclass(frozen=True)
class ConnectionRefreshed:
    connection_id: str
    queue_count: int
    timestamp: datetime = field(default_factory=utcnow)


@dataclass(frozen=True)
class ConnectionFailed:
    connection_id: str
    error_message: str
    will_retry: bool
    retry_attempt: int
    timestamp: datetime = field(default_factory=utcnow)
