"""
Queue discovery
Enumerates the queues of a host and augments each with a best-effort
journal message count
"""
import logging
import threading
from dataclasses import dataclass, field
from typing import Callable, Iterator, List, Optional, Union

from .addressing import (
    CanonicalHost,
    derive_journal_address,
    normalize_host,
    parse_address,
    to_provider_address,
)
from .classifier import classify
from .errors import DiscoveryAborted, InvalidAddressError, ProviderError, ProviderErrorCode
from .models import BestEffort, Credentials, QueueCategory, QueueSnapshot
from .provider import ProviderQueue, QueueProvider
from .workers import Deadline, WorkerPool


logger = logging.getLogger(__name__)


@dataclass
class DiscoveryResult:
    """
    Outcome of one complete discovery pass.

    Attributes:
        host: Canonical host that was enumerated
        queues: Snapshots in provider order, system queues removed unless requested
        hidden_system_queues: System queues found but filtered out
    """
    host: str
    queues: List[QueueSnapshot] = field(default_factory=list)
    hidden_system_queues: int = 0

    @property
    def total_found(self) -> int:
        return len(self.queues) + self.hidden_system_queues

    def __iter__(self) -> Iterator[QueueSnapshot]:
        return iter(self.queues)

    def __len__(self) -> int:
        return len(self.queues)


class QueueDiscoveryService:
    """
    Enumerates queues on a host through a QueueProvider.

    Blocking provider calls run on the worker pool. A pass is atomic: it
    returns every queue or raises, never a partial list.
    """

    def __init__(self, provider: QueueProvider, pool: WorkerPool, machine_name: Optional[str] = None):
        self.provider = provider
        self.pool = pool
        self.machine_name = machine_name

    async def discover(self, host: Union[str, CanonicalHost], include_system_queues: bool = False,
                       credentials: Optional[Credentials] = None,
                       deadline: Optional[Deadline] = None,
                       timeout: Optional[float] = None) -> DiscoveryResult:
        """
        Enumerate the private queues visible at a host.

        Args:
            host: Host name or CanonicalHost
            include_system_queues: Keep system queues in the result
            credentials: Optional account for the host
            deadline: Shared deadline for the whole operation
            timeout: Used to build a deadline when none is given

        Returns:
            DiscoveryResult

        Raises:
            InvalidAddressError: Malformed host, before any I/O
            ProviderError: If enumerating the host itself fails
            ProbeTimeoutError: If the deadline expires
        """
        key = host.name if isinstance(host, CanonicalHost) else normalize_host(host, self.machine_name).name
        deadline = deadline or Deadline(timeout)
        cancel = threading.Event()
        try:
            return await self.pool.run(
                self._discover_blocking, key, include_system_queues, credentials, cancel,
                deadline=deadline, operation=f"Discovery on {key}",
            )
        finally:
            # stops an abandoned pass at the next queue boundary
            cancel.set()

    def _discover_blocking(self, host: str, include_system_queues: bool,
                           credentials: Optional[Credentials], cancel: threading.Event) -> DiscoveryResult:
        logger.info(f"Discovering queues on {host}")
        provider_queues = self.provider.list_private_queues(host, credentials)

        result = DiscoveryResult(host=host)
        for provider_queue in provider_queues:
            if cancel.is_set():
                raise DiscoveryAborted(f"Discovery on {host} was cancelled")

            name = _leaf_name(provider_queue.path)
            category = QueueCategory.classify(name, provider_queue.path)
            if category.is_system and not include_system_queues:
                result.hidden_system_queues += 1
                continue
            result.queues.append(self._snapshot(host, name, category, provider_queue))

        logger.info(f"Found {result.total_found} private queues on {host} "
                    f"({result.hidden_system_queues} system queues hidden)")
        return result

    def _snapshot(self, host: str, name: str, category: QueueCategory,
                  provider_queue: ProviderQueue) -> QueueSnapshot:
        address = provider_queue.format_name or provider_queue.path
        snapshot = QueueSnapshot(
            name=name,
            path=provider_queue.path,
            format_name=provider_queue.format_name,
            journal_address=derive_journal_address(address),
            host=host,
            category=category,
            label=provider_queue.label,
            transactional=provider_queue.transactional,
        )

        count = _best_effort(self.provider.count_messages, to_provider_address(address))
        if count.ok:
            snapshot.message_count = count.value
        else:
            snapshot.accessible = False
            snapshot.error_message = classify(count.error)

        if not snapshot.is_journal:
            snapshot.journal_message_count = self.journal_count(snapshot.journal_address).unwrap_or(0)
        return snapshot

    def journal_count(self, journal_address: str) -> BestEffort:
        """
        Count the messages in a journal.

        Any failure (missing journal, access denied, ...) is returned inside
        the result rather than raised.
        """
        result = _best_effort(self.provider.count_messages, to_provider_address(journal_address))
        if not result.ok:
            logger.debug(f"Journal not readable at {journal_address}: {result.error}")
        return result

    async def exists(self, address: str, timeout: Optional[float] = None) -> bool:
        """
        Check whether a queue exists.

        Conventional paths use the provider's native check. Format names are
        opened instead: not found means False, access denied means the queue
        exists. Any other failure is raised.

        Raises:
            InvalidAddressError: Malformed address, before any I/O
            ProviderError: For failures other than not-found/access-denied
        """
        parsed = parse_address(address)
        return await self.pool.run(self._exists_blocking, parsed.address, parsed.scheme_qualified,
                                   deadline=Deadline(timeout), operation=f"Existence check of {address}")

    def _exists_blocking(self, address: str, scheme_qualified: bool) -> bool:
        if not scheme_qualified:
            return self.provider.exists(address)
        try:
            self.provider.open_queue(to_provider_address(address))
        except ProviderError as e:
            if e.code == ProviderErrorCode.QUEUE_NOT_FOUND:
                return False
            if e.code == ProviderErrorCode.ACCESS_DENIED:
                return True
            raise
        return True


def _leaf_name(path: str) -> str:
    try:
        return parse_address(path).name
    except InvalidAddressError:
        return path.replace("/", "\\").rsplit("\\", 1)[-1]


def _best_effort(func: Callable[[str], int], address: str) -> BestEffort:
    try:
        return BestEffort(value=func(address))
    except Exception as e:
        return BestEffort(error=e)
