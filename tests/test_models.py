"""
Tests for connection state and queue snapshot models
"""
import pytest

from mqctl.errors import InvalidTransitionError
from mqctl.models import (
    BestEffort,
    Connection,
    ConnectionStatus,
    Credentials,
    QueueCategory,
    QueueSnapshot,
    _CATEGORY_FLAGS,
    can_transition,
)


def make_snapshot(host=".", name="orders", category=QueueCategory.PRIVATE, messages=0):
    return QueueSnapshot(
        name=name,
        path=f"{host}\\private$\\{name}",
        format_name=f"DIRECT=OS:{host}\\private$\\{name}",
        journal_address=f"{host}\\private$\\journal$\\{name}",
        host=host,
        category=category,
        message_count=messages,
    )


class TestStateMachine:
    """Test connection status transitions"""

    def test_initial_state(self):
        """Test that a new connection is NotConnected"""
        conn = Connection(host=".")
        assert conn.status == ConnectionStatus.NOT_CONNECTED
        assert conn.retry_count == 0

    @pytest.mark.parametrize("current,new", [
        (ConnectionStatus.NOT_CONNECTED, ConnectionStatus.CONNECTING),
        (ConnectionStatus.CONNECTING, ConnectionStatus.CONNECTED),
        (ConnectionStatus.CONNECTING, ConnectionStatus.FAILED),
        (ConnectionStatus.CONNECTING, ConnectionStatus.TIMEOUT),
        (ConnectionStatus.CONNECTED, ConnectionStatus.DISCONNECTED),
        (ConnectionStatus.FAILED, ConnectionStatus.CONNECTING),
        (ConnectionStatus.TIMEOUT, ConnectionStatus.CONNECTING),
        (ConnectionStatus.DISCONNECTED, ConnectionStatus.CONNECTING),
    ])
    def test_allowed_transitions(self, current, new):
        """Test the documented transitions"""
        assert can_transition(current, new)

    @pytest.mark.parametrize("current,new", [
        (ConnectionStatus.NOT_CONNECTED, ConnectionStatus.CONNECTED),
        (ConnectionStatus.CONNECTED, ConnectionStatus.CONNECTING),
        (ConnectionStatus.FAILED, ConnectionStatus.CONNECTED),
        (ConnectionStatus.DISCONNECTED, ConnectionStatus.DISCONNECTED),
    ])
    def test_rejected_transitions(self, current, new):
        """Test that skipping states is refused"""
        assert not can_transition(current, new)

    def test_transition_raises_on_invalid_change(self):
        """Test that Connection.transition enforces the state machine"""
        conn = Connection(host=".")
        with pytest.raises(InvalidTransitionError):
            conn.transition(ConnectionStatus.CONNECTED)
        assert conn.status == ConnectionStatus.NOT_CONNECTED

    def test_mark_connected_resets_failure_state(self):
        """Test that success clears the error and retry count"""
        conn = Connection(host=".")
        conn.transition(ConnectionStatus.CONNECTING)
        conn.mark_failed("boom")
        conn.transition(ConnectionStatus.CONNECTING)
        conn.mark_connected([make_snapshot()])

        assert conn.is_connected
        assert conn.retry_count == 0
        assert conn.error_message is None
        assert conn.connected_at is not None
        assert conn.last_refreshed_at is not None
        assert conn.total_queues == 1

    def test_mark_failed_counts_attempts(self):
        """Test retry counting and the timeout status"""
        conn = Connection(host=".")
        conn.transition(ConnectionStatus.CONNECTING)
        conn.mark_failed("slow", timed_out=True)
        assert conn.status == ConnectionStatus.TIMEOUT
        assert conn.retry_count == 1
        assert conn.has_failed

    def test_mark_disconnected_clears_connected_at(self):
        """Test disconnect bookkeeping"""
        conn = Connection(host=".")
        conn.transition(ConnectionStatus.CONNECTING)
        conn.mark_connected([])
        conn.mark_disconnected()
        assert conn.status == ConnectionStatus.DISCONNECTED
        assert conn.connected_at is None
        assert conn.uptime is None


class TestConnection:
    """Test connection fields and invariants"""

    def test_ids_unique_and_immutable(self):
        """Test id generation and immutability"""
        first, second = Connection(host="a"), Connection(host="b")
        assert first.id != second.id
        with pytest.raises(AttributeError):
            first.id = "other"

    def test_can_retry_policy(self):
        """Test auto_reconnect and max_retries gating"""
        conn = Connection(host="a", max_retries=2)
        assert conn.can_retry
        conn.retry_count = 2
        assert not conn.can_retry
        conn.retry_count = 0
        conn.auto_reconnect = False
        assert not conn.can_retry

    def test_snapshot_must_belong_to_host(self):
        """Test that foreign queues are refused"""
        conn = Connection(host="server01")
        with pytest.raises(ValueError):
            conn.replace_queues([make_snapshot(host="server02")])

    def test_mark_connected_checks_queues_first(self):
        """Test that a foreign snapshot leaves a connecting connection untouched"""
        conn = Connection(host="server01")
        conn.transition(ConnectionStatus.CONNECTING)

        with pytest.raises(ValueError):
            conn.mark_connected([make_snapshot(host="server01"), make_snapshot(host=".")])

        assert conn.status == ConnectionStatus.CONNECTING
        assert conn.connected_at is None
        assert conn.queues == []

    def test_totals_and_filters(self):
        """Test message totals and queue filtering"""
        conn = Connection(host=".")
        conn.replace_queues([
            make_snapshot(messages=3),
            make_snapshot(name="admin_queue$", category=QueueCategory.SYSTEM, messages=1),
            make_snapshot(name="orders", category=QueueCategory.JOURNAL, messages=2),
        ])
        assert conn.total_messages == 6
        assert len(conn.filtered_queues(show_system=False)) == 2
        assert len(conn.filtered_queues(show_system=False, show_journal=False)) == 1

    def test_display_name(self):
        """Test display name fallbacks"""
        assert Connection(host=".", is_local=True).formatted_display_name == "Local Computer"
        assert Connection(host="server01").formatted_display_name == "server01"
        assert Connection(host="server01", display_name="Billing").formatted_display_name == "Billing"

    def test_to_dict_omits_credentials(self):
        """Test that secrets never leave the model"""
        conn = Connection(host="server01", username="ops", credentials=Credentials("ops", "s3cret"))
        data = conn.to_dict()
        assert "credentials" not in data
        assert "s3cret" not in repr(conn)
        assert data["status"] == "not_connected"


class TestQueueCategory:
    """Test queue classification"""

    @pytest.mark.parametrize("name,path,expected", [
        ("orders", ".\\private$\\orders", QueueCategory.PRIVATE),
        ("orders", "server\\orders", QueueCategory.PUBLIC),
        ("admin_queue$", ".\\private$\\admin_queue$", QueueCategory.SYSTEM),
        ("triggers", ".\\private$\\triggers", QueueCategory.SYSTEM),
        ("orders", ".\\private$\\journal$\\orders", QueueCategory.JOURNAL),
        ("orders", "FormatName:DIRECT=OS:.\\private$\\orders;journal", QueueCategory.JOURNAL),
        ("deadletter", "DIRECT=OS:.\\SYSTEM$;DEADLETTER", QueueCategory.DEAD_LETTER),
        ("xactdeadletter", "DIRECT=OS:.\\SYSTEM$;DEADXACT", QueueCategory.TRANSACTIONAL_DEAD_LETTER),
    ])
    def test_classify(self, name, path, expected):
        """Test category assignment by name and path"""
        assert QueueCategory.classify(name, path) == expected

    def test_every_category_has_flags(self):
        """Test that flag lookups cover all categories"""
        assert set(_CATEGORY_FLAGS) == set(QueueCategory)
        for category in QueueCategory:
            assert isinstance(category.is_system, bool)
            assert isinstance(category.is_journal, bool)

    def test_flags(self):
        """Test system and journal flags"""
        assert QueueCategory.SYSTEM.is_system
        assert QueueCategory.DEAD_LETTER.is_system
        assert QueueCategory.JOURNAL.is_journal
        assert not QueueCategory.PRIVATE.is_system


class TestBestEffort:
    """Test the best-effort result type"""

    def test_value(self):
        """Test unwrapping a successful result"""
        result = BestEffort(value=4)
        assert result.ok
        assert result.unwrap_or(0) == 4

    def test_error_unwraps_to_default(self):
        """Test that errors degrade to the default"""
        result = BestEffort(error=RuntimeError("denied"))
        assert not result.ok
        assert result.unwrap_or(0) == 0
