"""
Tests for error classification
"""
import asyncio
import socket

import pytest

from mqctl.classifier import MESSAGES, ErrorCategory, categorize, classify, is_timeout
from mqctl.errors import OperationError, ProbeTimeoutError, ProviderError, ProviderErrorCode


class TestClassify:
    """Test the mapping from raw failures to user-facing text"""

    @pytest.mark.parametrize("code,category", [
        (ProviderErrorCode.REMOTE_MACHINE_NOT_AVAILABLE, ErrorCategory.HOST_UNREACHABLE),
        (ProviderErrorCode.ACCESS_DENIED, ErrorCategory.ACCESS_DENIED),
        (ProviderErrorCode.SERVICE_NOT_AVAILABLE, ErrorCategory.SERVICE_UNAVAILABLE),
        (ProviderErrorCode.IO_TIMEOUT, ErrorCategory.TIMEOUT),
        (ProviderErrorCode.NAME_RESOLUTION_FAILED, ErrorCategory.NAME_RESOLUTION),
    ])
    def test_provider_codes(self, code, category):
        """Test every mapped provider code"""
        error = ProviderError(code, "raw provider text")
        assert categorize(error) == category
        assert classify(error) == MESSAGES[category]

    def test_every_category_has_text(self):
        """Test that the message table is exhaustive"""
        assert set(MESSAGES) == set(ErrorCategory)
        assert all(MESSAGES.values())

    def test_deterministic(self):
        """Test that the same category always yields the same text"""
        first = classify(ProviderError(ProviderErrorCode.ACCESS_DENIED, "one"))
        second = classify(ProviderError(ProviderErrorCode.ACCESS_DENIED, "two"))
        assert first == second

    def test_unmapped_provider_code_passes_message_through(self):
        """Test that unknown categories keep their original message"""
        error = ProviderError(ProviderErrorCode.TRANSACTION_USAGE, "Queue requires a transaction")
        assert categorize(error) is None
        assert classify(error) == "Queue requires a transaction"

    def test_unknown_exception_passes_through(self):
        """Test that arbitrary errors keep their message"""
        assert classify(RuntimeError("disk on fire")) == "disk on fire"
        assert classify(RuntimeError()) == "RuntimeError"

    def test_timeouts(self):
        """Test timeout detection for all timeout types"""
        for error in (ProbeTimeoutError(1, "Probe"), TimeoutError(), asyncio.TimeoutError()):
            assert is_timeout(error)
            assert classify(error) == MESSAGES[ErrorCategory.TIMEOUT]

    def test_name_resolution_from_socket(self):
        """Test socket.gaierror mapping"""
        assert categorize(socket.gaierror(-2, "Name or service not known")) == ErrorCategory.NAME_RESOLUTION

    def test_operation_error_uses_cause(self):
        """Test that wrapped errors are classified by their cause"""
        cause = ProviderError(ProviderErrorCode.ACCESS_DENIED)
        assert categorize(OperationError("wrapped", cause)) == ErrorCategory.ACCESS_DENIED

    def test_host_unreachable_mentions_firewall_ports(self):
        """Test remediation text for unreachable hosts"""
        assert "1801" in MESSAGES[ErrorCategory.HOST_UNREACHABLE]
