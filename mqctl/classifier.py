"""
Error classification
Maps low-level transport failures to stable, user-facing explanations
"""
import asyncio
import socket
from enum import Enum
from typing import Optional

from .errors import OperationError, ProbeTimeoutError, ProviderError, ProviderErrorCode


class ErrorCategory(Enum):
    """Failure categories with a fixed user-facing explanation"""
    HOST_UNREACHABLE = "host_unreachable"
    ACCESS_DENIED = "access_denied"
    SERVICE_UNAVAILABLE = "service_unavailable"
    TIMEOUT = "timeout"
    NAME_RESOLUTION = "name_resolution"


MESSAGES = {
    ErrorCategory.HOST_UNREACHABLE: (
        "The remote computer could not be reached. Check that it is online and "
        "that the firewall allows RPC and Message Queuing traffic "
        "(TCP 135, 1801, 2103 and 2105)."
    ),
    ErrorCategory.ACCESS_DENIED: (
        "Access denied. Your account is not allowed to read queues on this "
        "computer; ask an administrator to grant queue permissions or connect "
        "with different credentials."
    ),
    ErrorCategory.SERVICE_UNAVAILABLE: (
        "Message Queuing is not installed or not running on the target computer. "
        "Install the Message Queuing feature and start the MSMQ service."
    ),
    ErrorCategory.TIMEOUT: (
        "The operation timed out. The computer may be busy or unreachable; "
        "check network connectivity and retry with a longer timeout."
    ),
    ErrorCategory.NAME_RESOLUTION: (
        "The computer name could not be resolved. Check the spelling, or use "
        "the fully qualified domain name or IP address."
    ),
}

PROVIDER_CODES = {
    ProviderErrorCode.REMOTE_MACHINE_NOT_AVAILABLE: ErrorCategory.HOST_UNREACHABLE,
    ProviderErrorCode.ACCESS_DENIED: ErrorCategory.ACCESS_DENIED,
    ProviderErrorCode.SERVICE_NOT_AVAILABLE: ErrorCategory.SERVICE_UNAVAILABLE,
    ProviderErrorCode.IO_TIMEOUT: ErrorCategory.TIMEOUT,
    ProviderErrorCode.NAME_RESOLUTION_FAILED: ErrorCategory.NAME_RESOLUTION,
}


def categorize(error: BaseException) -> Optional[ErrorCategory]:
    """
    Find the category of a raw failure.

    Returns:
        ErrorCategory, or None when the failure is not one of the mapped kinds
    """
    if isinstance(error, ProviderError):
        return PROVIDER_CODES.get(error.code)
    if isinstance(error, OperationError) and error.cause is not None:
        return categorize(error.cause)
    if isinstance(error, socket.gaierror):
        return ErrorCategory.NAME_RESOLUTION
    if isinstance(error, (ProbeTimeoutError, TimeoutError, asyncio.TimeoutError)):
        return ErrorCategory.TIMEOUT
    return None


def classify(error: BaseException) -> str:
    """
    Explain a failure to the user.

    Mapped categories always yield the same text. Anything else passes the
    original message through unmodified.

    Args:
        error: Raw exception from a provider or the event loop

    Returns:
        User-facing message
    """
    category = categorize(error)
    if category is not None:
        return MESSAGES[category]
    if isinstance(error, ProviderError):
        return error.message
    message = str(error)
    return message if message else type(error).__name__


def is_timeout(error: BaseException) -> bool:
    return categorize(error) == ErrorCategory.TIMEOUT
