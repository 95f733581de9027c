"""
mqctl - Message queue connectivity and discovery

Connect to queue hosts and inspect them with:
- Address resolution between paths and format names
- Journal address derivation
- Bounded, cancellable probes and queue discovery
- Connection lifecycle with retry policy and events
"""

__version__ = "1.0.0"

from .addressing import derive_journal_address, normalize_host, parse_address, to_provider_address
from .config import Config, get_config
from .errors import (
    ConnectionNotFoundError,
    InvalidAddressError,
    InvalidTimeoutError,
    MqctlError,
    OperationError,
    ProviderError,
    ProviderErrorCode,
    RetryNotAllowedError,
)
from .manager import ConnectionManager
from .models import Connection, ConnectionStatus, Credentials, QueueCategory, QueueSnapshot
from .provider import MemoryProvider, QueueProvider
from .storage import SqliteProvider

__all__ = [
    "ConnectionManager",
    "Connection",
    "ConnectionStatus",
    "Credentials",
    "QueueCategory",
    "QueueSnapshot",
    "QueueProvider",
    "MemoryProvider",
    "SqliteProvider",
    "Config",
    "get_config",
    "parse_address",
    "normalize_host",
    "derive_journal_address",
    "to_provider_address",
    "MqctlError",
    "InvalidAddressError",
    "InvalidTimeoutError",
    "ProviderError",
    "ProviderErrorCode",
    "OperationError",
    "ConnectionNotFoundError",
    "RetryNotAllowedError",
]
