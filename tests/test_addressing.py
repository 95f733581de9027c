"""
Tests for queue address resolution and host normalization
Run with: pytest tests/test_addressing.py -v
"""
import socket

import pytest

from mqctl.addressing import (
    CanonicalHost,
    derive_journal_address,
    direct_format_name,
    is_scheme_qualified,
    normalize_host,
    parse_address,
    private_queue_path,
    queue_name,
    to_provider_address,
    validate_host,
)
from mqctl.errors import InvalidAddressError


class TestNormalizeHost:
    """Test canonical host keys"""

    def test_local_aliases_are_equal(self):
        """Test that '.', 'localhost' and the machine name share one key"""
        machine = socket.gethostname()
        assert normalize_host("localhost") == normalize_host(".") == normalize_host(machine)
        assert normalize_host(machine.upper()) == normalize_host(".")

    def test_local_aliases_with_override(self):
        """Test local detection against an explicit machine name"""
        assert normalize_host("TESTBOX", machine_name="testbox") == CanonicalHost(".", True)
        assert normalize_host("LocalHost", machine_name="testbox").is_local

    def test_short_name_of_fqdn_is_local(self):
        """Test that the short form of a dotted machine name is local"""
        assert normalize_host("build01", machine_name="build01.corp.example.com").is_local

    def test_remote_hosts_are_lowercased(self):
        """Test that remote host names compare case-insensitively"""
        host = normalize_host("  Server01 ", machine_name="testbox")
        assert host.name == "server01"
        assert not host.is_local
        assert host.original == "Server01"
        assert host == normalize_host("SERVER01", machine_name="testbox")

    @pytest.mark.parametrize("bad", ["", "   ", None, "my server", "a\\b", "a/b", "host:1801", "x*", 'q"'])
    def test_invalid_hosts_rejected(self, bad):
        """Test that malformed host names raise before any I/O"""
        with pytest.raises(InvalidAddressError):
            normalize_host(bad)

    def test_validate_host_trims(self):
        """Test that validation returns the trimmed name"""
        assert validate_host("  server01\t") == "server01"

    def test_invalid_address_error_is_value_error(self):
        """Test that callers can catch ValueError"""
        with pytest.raises(ValueError):
            validate_host("")


class TestParseAddress:
    """Test address parsing for both families"""

    def test_conventional_private_path(self):
        """Test parsing machine\\private$\\name"""
        parsed = parse_address(".\\private$\\orders")
        assert parsed.machine == "."
        assert parsed.name == "orders"
        assert parsed.is_private
        assert not parsed.is_journal
        assert not parsed.scheme_qualified

    def test_journal_path(self):
        """Test that a journal$ segment marks a journal path"""
        parsed = parse_address("server01\\private$\\journal$\\orders")
        assert parsed.is_journal
        assert parsed.name == "orders"

    def test_direct_format_name(self):
        """Test parsing DIRECT=OS: format names"""
        parsed = parse_address("DIRECT=OS:server01\\private$\\orders")
        assert parsed.scheme_qualified
        assert not parsed.provider_prefixed
        assert parsed.machine == "server01"
        assert parsed.name == "orders"
        assert parsed.is_private

    def test_direct_tcp_and_http(self):
        """Test DIRECT=TCP and DIRECT=HTTP addresses"""
        assert parse_address("DIRECT=TCP:10.0.0.5\\private$\\q").machine == "10.0.0.5"
        parsed = parse_address("DIRECT=HTTP://web01/msmq/private$/q")
        assert parsed.machine == "web01"
        assert parsed.name == "q"

    def test_prefixed_journal_format_name(self):
        """Test FormatName: prefix and ;journal marker"""
        parsed = parse_address("FormatName:DIRECT=OS:server01\\private$\\orders;journal")
        assert parsed.provider_prefixed
        assert parsed.is_journal
        assert parsed.name == "orders"

    def test_public_format_name_has_no_machine(self):
        """Test that PUBLIC= names carry no machine"""
        parsed = parse_address("PUBLIC=3d3c8f8a-0000-0000-0000-000000000001")
        assert parsed.machine == ""
        assert not parsed.is_private

    @pytest.mark.parametrize("bad", [
        "", None, "orders", ".\\private$", ".\\\\orders", "DIRECT=OS:", "DIRECT=server\\q",
        "DIRECT=OS:server01", "FormatName:BOGUS=1",
    ])
    def test_malformed_addresses(self, bad):
        """Test that malformed addresses are rejected"""
        with pytest.raises(InvalidAddressError):
            parse_address(bad)

    def test_scheme_detection(self):
        """Test recognition of scheme-qualified addresses"""
        assert is_scheme_qualified("direct=os:host\\private$\\q")
        assert is_scheme_qualified("FormatName:PUBLIC=abc")
        assert not is_scheme_qualified(".\\private$\\q")

    def test_queue_name(self):
        """Test leaf name extraction"""
        assert queue_name("host\\private$\\Orders") == "Orders"


class TestJournalAddress:
    """Test journal address derivation"""

    def test_direct_format_name_gets_uppercase_marker(self):
        """Test the uppercase marker on bare format names"""
        assert derive_journal_address("DIRECT=OS:host\\private$\\q") == "DIRECT=OS:host\\private$\\q;JOURNAL"

    def test_conventional_path_gets_journal_segment(self):
        """Test journal$ inserted right before the leaf name"""
        assert derive_journal_address(".\\private$\\q") == ".\\private$\\journal$\\q"

    def test_prefixed_format_name_gets_lowercase_marker(self):
        """Test the lowercase marker on FormatName: addresses"""
        assert (derive_journal_address("FormatName:DIRECT=OS:host\\private$\\q")
                == "FormatName:DIRECT=OS:host\\private$\\q;journal")

    def test_path_without_private_segment(self):
        """Test fallback to a trailing journal$ segment"""
        assert derive_journal_address("host\\orders") == "host\\orders\\journal$"

    def test_already_journal_is_unchanged(self):
        """Test that deriving from a journal address returns it as-is"""
        journal = derive_journal_address("DIRECT=OS:host\\private$\\q")
        assert derive_journal_address(journal) == journal
        path_journal = derive_journal_address(".\\private$\\q")
        assert derive_journal_address(path_journal) == path_journal

    def test_pure_function(self):
        """Test that the same input always yields the same output"""
        address = "DIRECT=TCP:10.1.2.3\\private$\\billing"
        assert derive_journal_address(address) == derive_journal_address(address)

    def test_invalid_address_rejected(self):
        """Test that journal derivation validates its input"""
        with pytest.raises(InvalidAddressError):
            derive_journal_address("   ")


class TestProviderAddress:
    """Test rewriting into the provider's syntax"""

    def test_direct_gets_prefix(self):
        """Test that bare format names gain the FormatName: prefix"""
        assert to_provider_address("DIRECT=OS:host\\private$\\q") == "FormatName:DIRECT=OS:host\\private$\\q"

    def test_compatible_addresses_unchanged(self):
        """Test no-op for paths and already-prefixed names"""
        assert to_provider_address(".\\private$\\q") == ".\\private$\\q"
        prefixed = "FormatName:DIRECT=OS:host\\private$\\q"
        assert to_provider_address(prefixed) == prefixed

    def test_builders(self):
        """Test path and format-name builders agree"""
        assert private_queue_path("host", "q") == "host\\private$\\q"
        assert direct_format_name("host", "q") == "DIRECT=OS:host\\private$\\q"
        assert parse_address(private_queue_path("host", "q")).name == parse_address(direct_format_name("host", "q")).name
