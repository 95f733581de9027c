"""
Exception types for mqctl
Provider error codes and the errors raised to callers
"""
from enum import Enum
from typing import Optional


class ProviderErrorCode(Enum):
    """Low-level failure categories raised by a queue transport provider"""
    QUEUE_NOT_FOUND = "queue_not_found"
    ACCESS_DENIED = "access_denied"
    REMOTE_MACHINE_NOT_AVAILABLE = "remote_machine_not_available"
    SERVICE_NOT_AVAILABLE = "service_not_available"
    IO_TIMEOUT = "io_timeout"
    NAME_RESOLUTION_FAILED = "name_resolution_failed"
    ILLEGAL_FORMAT_NAME = "illegal_format_name"
    TRANSACTION_USAGE = "transaction_usage"
    UNKNOWN = "unknown"


class MqctlError(Exception):
    """Base class for all mqctl errors"""


class InvalidAddressError(MqctlError, ValueError):
    """Malformed or empty host/address, rejected before any I/O"""


class InvalidTimeoutError(MqctlError, ValueError):
    """Timeout that is not a positive number of seconds, rejected before any state change"""


class ProviderError(MqctlError):
    """
    Failure reported by the queue transport provider.

    Attributes:
        code: ProviderErrorCode describing the failure category
        message: Provider's own message text
    """

    def __init__(self, code: ProviderErrorCode, message: str = ""):
        self.code = code
        self.message = message or code.value.replace("_", " ")
        super().__init__(self.message)

    def __repr__(self) -> str:
        return f"ProviderError({self.code.value!r}, {self.message!r})"


class ProbeTimeoutError(MqctlError, TimeoutError):
    """A probe or discovery pass exceeded its deadline"""

    def __init__(self, seconds: float, operation: str = "operation"):
        self.seconds = seconds
        super().__init__(f"{operation} timed out after {seconds:g} seconds")


class OperationError(MqctlError):
    """
    A connect/refresh failure surfaced to the caller.

    The message is always the classified, user-facing text; the raw
    failure is kept in ``cause``.
    """

    def __init__(self, message: str, cause: Optional[BaseException] = None,
                 connection_id: Optional[str] = None, timed_out: bool = False):
        self.cause = cause
        self.connection_id = connection_id
        self.timed_out = timed_out
        super().__init__(message)


class ConnectionNotFoundError(MqctlError, KeyError):
    """No connection is registered under the given id"""

    def __init__(self, connection_id: str):
        self.connection_id = connection_id
        super().__init__(connection_id)

    def __str__(self) -> str:
        return f"Connection '{self.connection_id}' not found"


class RetryNotAllowedError(MqctlError):
    """Reconnect refused by the connection's retry policy"""


class InvalidTransitionError(MqctlError):
    """Connection status change not permitted by the state machine"""


class RegistryClosedError(MqctlError):
    """The connection registry has been torn down"""


class DiscoveryAborted(MqctlError):
    """A discovery pass was cancelled before it completed"""
