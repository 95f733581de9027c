"""
Queue address resolution
Converts between the address syntaxes that name the same queue and derives
journal addresses. Everything in this module is free of I/O.
"""
import socket
from dataclasses import dataclass, field
from typing import Optional, Set

from .errors import InvalidAddressError


LOCAL_HOST = "."
LOCAL_ALIASES = {".", "localhost"}
INVALID_HOST_CHARS = set('/\\:*?"<>|')

FORMAT_NAME_PREFIX = "FormatName:"
FORMAT_NAME_SCHEMES = ("DIRECT=", "PUBLIC=", "PRIVATE=")
PRIVATE_SEGMENT = "private$"
JOURNAL_SEGMENT = "journal$"

# Bare format names take the uppercase marker, provider-prefixed ones the
# lowercase marker. Both spellings are what the transport accepts.
JOURNAL_MARKER_FORMAT_NAME = ";JOURNAL"
JOURNAL_MARKER_PROVIDER = ";journal"


@dataclass(frozen=True)
class CanonicalHost:
    """
    Normalized host key used to deduplicate connections.

    Attributes:
        name: "." for this machine, otherwise the lower-cased host name
        is_local: True when the input named this machine
        original: The caller's input, kept for display only
    """
    name: str
    is_local: bool
    original: str = field(default="", compare=False)

    def __str__(self) -> str:
        return self.name


@dataclass(frozen=True)
class QueueAddress:
    """Parsed form of a queue address"""
    address: str
    scheme_qualified: bool
    provider_prefixed: bool
    machine: str
    name: str
    is_private: bool
    is_journal: bool


def local_machine_names(machine_name: Optional[str] = None) -> Set[str]:
    """Lower-cased names (full and short) this machine answers to"""
    name = (machine_name or socket.gethostname()).strip().lower()
    if not name:
        return set()
    return {name, name.split(".")[0]}


def is_local_host(name: str, machine_name: Optional[str] = None) -> bool:
    """Check whether a host name refers to this machine"""
    lowered = name.strip().lower()
    return lowered in LOCAL_ALIASES or lowered in local_machine_names(machine_name)


def validate_host(host: Optional[str]) -> str:
    """
    Validate a computer name and return it trimmed.

    Raises:
        InvalidAddressError: If the name is empty or contains illegal characters
    """
    if host is None or not str(host).strip():
        raise InvalidAddressError("Computer name is required")

    trimmed = str(host).strip()
    if any(c.isspace() for c in trimmed):
        raise InvalidAddressError(f"Computer name cannot contain spaces: {host!r}")
    if any(c in INVALID_HOST_CHARS for c in trimmed):
        raise InvalidAddressError(f"Computer name contains invalid characters: {host!r}")
    return trimmed


def normalize_host(host: Optional[str], machine_name: Optional[str] = None) -> CanonicalHost:
    """
    Normalize a host name into its canonical connection key.

    ".", "localhost" and the local machine name (compared case-insensitively)
    all map to the same local key.

    Args:
        host: Computer name as entered by the caller
        machine_name: Override for the local machine name (defaults to the hostname)

    Returns:
        CanonicalHost
    """
    trimmed = validate_host(host)
    if is_local_host(trimmed, machine_name):
        return CanonicalHost(LOCAL_HOST, True, trimmed)
    return CanonicalHost(trimmed.lower(), False, trimmed)


def is_scheme_qualified(address: str) -> bool:
    """True for format-name style addresses, with or without the provider prefix"""
    body = address.strip()
    if body[:len(FORMAT_NAME_PREFIX)].lower() == FORMAT_NAME_PREFIX.lower():
        return True
    upper = body.upper()
    return any(upper.startswith(scheme) for scheme in FORMAT_NAME_SCHEMES)


def _split_segments(path: str):
    return path.replace("/", "\\").split("\\")


def _parse_format_name(address: str, prefixed: bool) -> QueueAddress:
    body = address[len(FORMAT_NAME_PREFIX):] if prefixed else address
    upper = body.upper()
    scheme = next((s for s in FORMAT_NAME_SCHEMES if upper.startswith(s)), None)
    if scheme is None:
        raise InvalidAddressError(f"Unsupported format name: {address!r}")

    value = body[len(scheme):]
    is_journal = value.lower().endswith(JOURNAL_MARKER_PROVIDER)
    if is_journal:
        value = value[:-len(JOURNAL_MARKER_PROVIDER)]
    if not value.strip():
        raise InvalidAddressError(f"Format name has no queue identifier: {address!r}")

    machine = ""
    if scheme == "DIRECT=":
        protocol, sep, target = value.partition(":")
        if not sep or not protocol or not target.strip("/\\"):
            raise InvalidAddressError(f"Malformed direct format name: {address!r}")
        segments = [s for s in _split_segments(target.lstrip("/\\")) if s]
        if protocol.upper() in ("HTTP", "HTTPS") and len(segments) > 1 and segments[1].lower() == "msmq":
            segments = [segments[0]] + segments[2:]
        if len(segments) < 2:
            raise InvalidAddressError(f"Direct format name has no queue name: {address!r}")
        machine = segments[0]
        name = segments[-1]
        is_private = any(s.lower() == PRIVATE_SEGMENT for s in segments)
    elif scheme == "PRIVATE=":
        name = _split_segments(value)[-1]
        is_private = True
    else:
        name = value
        is_private = False

    return QueueAddress(
        address=address,
        scheme_qualified=True,
        provider_prefixed=prefixed,
        machine=machine,
        name=name,
        is_private=is_private,
        is_journal=is_journal,
    )


def _parse_path(address: str) -> QueueAddress:
    segments = _split_segments(address)
    if len(segments) < 2 or any(not s for s in segments):
        raise InvalidAddressError(
            f"Queue path must look like 'machine\\private$\\name': {address!r}")

    lowered = [s.lower() for s in segments]
    if lowered[-1] == PRIVATE_SEGMENT:
        raise InvalidAddressError(f"Queue path has no queue name: {address!r}")

    is_journal = JOURNAL_SEGMENT in lowered
    name_segments = [s for s in segments[1:] if s.lower() not in (PRIVATE_SEGMENT, JOURNAL_SEGMENT)]
    if not name_segments:
        raise InvalidAddressError(f"Queue path has no queue name: {address!r}")

    return QueueAddress(
        address=address,
        scheme_qualified=False,
        provider_prefixed=False,
        machine=segments[0],
        name=name_segments[-1],
        is_private=PRIVATE_SEGMENT in lowered,
        is_journal=is_journal,
    )


def parse_address(address: Optional[str]) -> QueueAddress:
    """
    Parse a queue address in either family.

    Supported forms:
        DIRECT=OS:host\\private$\\name, DIRECT=TCP:10.0.0.1\\private$\\name,
        PUBLIC=<guid>, PRIVATE=<guid>\\<id>, any of those prefixed with
        "FormatName:", and conventional paths such as .\\private$\\name.

    Raises:
        InvalidAddressError: If the address is empty or malformed
    """
    if address is None or not str(address).strip():
        raise InvalidAddressError("Queue address is required")

    address = str(address).strip()
    if address[:len(FORMAT_NAME_PREFIX)].lower() == FORMAT_NAME_PREFIX.lower():
        return _parse_format_name(address, prefixed=True)
    if is_scheme_qualified(address):
        return _parse_format_name(address, prefixed=False)
    return _parse_path(address)


def derive_journal_address(address: str) -> str:
    """
    Derive the companion journal address of a queue.

    Scheme-qualified addresses get a journal marker suffix (";JOURNAL" for
    bare format names, ";journal" once prefixed with "FormatName:").
    Conventional paths get a journal$ segment next to private$, right before
    the queue name, or a trailing journal$ segment when there is no private$
    segment. An address that already names a journal is returned unchanged.

    Examples:
        DIRECT=OS:host\\private$\\q -> DIRECT=OS:host\\private$\\q;JOURNAL
        .\\private$\\q -> .\\private$\\journal$\\q
        host\\q -> host\\q\\journal$
    """
    parsed = parse_address(address)
    if parsed.is_journal:
        return parsed.address

    if parsed.scheme_qualified:
        marker = JOURNAL_MARKER_PROVIDER if parsed.provider_prefixed else JOURNAL_MARKER_FORMAT_NAME
        return parsed.address + marker

    segments = parsed.address.split("\\")
    if any(s.lower() == PRIVATE_SEGMENT for s in segments[:-1]):
        return "\\".join(segments[:-1] + [JOURNAL_SEGMENT, segments[-1]])
    return parsed.address + "\\" + JOURNAL_SEGMENT


def to_provider_address(address: str) -> str:
    """
    Rewrite an address into the syntax the transport provider opens.

    Bare format names (DIRECT=, PUBLIC=, PRIVATE=) gain the "FormatName:"
    prefix; anything else is already compatible and returned as-is.
    """
    parsed = parse_address(address)
    if parsed.scheme_qualified and not parsed.provider_prefixed:
        return FORMAT_NAME_PREFIX + parsed.address
    return parsed.address


def queue_name(address: str) -> str:
    """Leaf queue name of an address"""
    return parse_address(address).name


def private_queue_path(host: str, name: str) -> str:
    """Conventional path of a private queue"""
    return f"{host}\\{PRIVATE_SEGMENT}\\{name}"


def direct_format_name(host: str, name: str) -> str:
    """Direct format name of a private queue"""
    return f"DIRECT=OS:{host}\\{PRIVATE_SEGMENT}\\{name}"
