"""
Shared fixtures for the mqctl test suite
"""
import pytest
import pytest_asyncio

from mqctl.config import Config
from mqctl.manager import ConnectionManager
from mqctl.provider import MemoryProvider
from mqctl.workers import WorkerPool


@pytest.fixture
def config(tmp_path):
    """Config stored in a temporary directory, with fast retries"""
    cfg = Config(str(tmp_path / "config.json"))
    cfg.set("backoff_base", 0.01)
    cfg.set("probe_timeout", 5)
    cfg.set("db_path", str(tmp_path / "mqctl.db"))
    return cfg


@pytest.fixture
def provider():
    """In-memory provider with a local host and one remote host"""
    memory = MemoryProvider()
    memory.add_queue(".", "orders", messages=3, journal_messages=2, label="Order intake")
    memory.add_queue(".", "invoices", messages=1)
    memory.add_queue(".", "admin_queue$")
    memory.add_queue("server01", "payments", messages=5, journal_messages=1)
    yield memory
    # release any call still sleeping in delay_host
    memory.close()


@pytest.fixture
def pool():
    workers = WorkerPool(max_workers=4)
    yield workers
    workers.close()


@pytest_asyncio.fixture
async def manager(provider, config):
    """ConnectionManager over the in-memory provider"""
    instance = ConnectionManager(provider, config, machine_name="testbox")
    yield instance
    provider.close()
    await instance.close()
