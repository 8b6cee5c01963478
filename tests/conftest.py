"""
Pytest configuration and shared fixtures.

Provides raw snapshot documents, in-memory and failing key-value stores, a
fake remote endpoint, a manually driven clock, and engines wired from them.
"""

import asyncio
import copy
from datetime import datetime, timedelta, timezone
from typing import Any

import pytest

from ems_sync.core.cache.store import LocalCache
from ems_sync.core.config.loader import clear_cache
from ems_sync.core.sync.engine import SyncEngine
from ems_sync.core.sync.state import AppState

# ==============================================================================
# Sample Data
# ==============================================================================

RAW_SNAPSHOT: dict[str, Any] = {
    "users": [
        {"User_ID": "1", "User_Name": "Asha", "User_Type": "Admin"},
        {"User_ID": 7.0, "User_Name": "Ravi", "User_Type": " normal "},
    ],
    "departments": [
        {"Department_ID": "10", "Department_Name": "Revenue"},
        {"Department_ID": 11, "Department_Name": "Health"},
    ],
    "offices": [
        {"Office_ID": "101", "Office_Name": "North", "Department_ID": "10", "User_ID": "7", "Finalized": "No"},
        {"Office_ID": 102, "Office_Name": "South", "Department_ID": 10, "User_ID": 1},
        {"Office_ID": "103", "Office_Name": "East", "Department_ID": "11", "User_ID": "7", "Finalized": "Yes"},
    ],
    "banks": [{"Bank_ID": "5", "Bank_Name": "State Bank"}],
    "branches": [{"Branch_ID": "50", "Branch_Name": "Main", "Bank_ID": "5", "IFSC_Code": "SBIN0000050"}],
    "posts": [
        {"Post_ID": "1", "Post_Name": "Clerk"},
        {"Post_ID": "2", "Post_Name": "Officer"},
        {"Post_ID": "3", "Post_Name": "Driver"},
    ],
    "payscales": [{"Pay_ID": "4", "Pay_Name": "Level 4"}],
    "employees": [
        {"Employee_ID": "1001", "Employee_Name": "Meera", "Office_ID": "101", "Post_ID": "1", "Active": "Yes"},
        {"Employee_ID": "1002", "Employee_Name": "Kiran", "Office_ID": "102", "Post_ID": "2"},
        {
            "Employee_ID": "1003",
            "Employee_Name": "Joseph",
            "Office_ID": "103",
            "Post_ID": "3",
            "Active": "No",
            "DA_Reason": "TRANSFER",
            "DA_Doc": "doc-17",
        },
    ],
    "userPostSelections": {"7": "[1, 2]"},
}


@pytest.fixture
def raw_snapshot() -> dict[str, Any]:
    """A loosely typed remote snapshot, freshly copied per test."""
    return copy.deepcopy(RAW_SNAPSHOT)


@pytest.fixture(autouse=True)
def _reset_config_cache():
    clear_cache()
    yield
    clear_cache()


# ==============================================================================
# Test Doubles
# ==============================================================================


class MemoryStore:
    """Dict-backed key-value store."""

    def __init__(self) -> None:
        self.data: dict[str, str] = {}

    def get(self, key: str) -> str | None:
        return self.data.get(key)

    def set(self, key: str, value: str) -> None:
        self.data[key] = value

    def remove(self, key: str) -> None:
        self.data.pop(key, None)


class FailingStore(MemoryStore):
    """Memory store whose writes (and optionally reads) can be made to fail."""

    def __init__(self) -> None:
        super().__init__()
        self.fail_writes = False
        self.fail_reads = False
        self.read_error: Exception = OSError("disk unavailable")
        self.write_error: Exception = OSError("quota exceeded")

    def get(self, key: str) -> str | None:
        if self.fail_reads:
            raise self.read_error
        return super().get(key)

    def set(self, key: str, value: str) -> None:
        if self.fail_writes:
            raise self.write_error
        super().set(key, value)

    def remove(self, key: str) -> None:
        if self.fail_writes:
            raise self.write_error
        super().remove(key)


class FakeRemote:
    """
    Stand-in for RemoteStore.

    ``responses`` is a queue of send results: a dict (canonical data), None,
    or an exception to raise. Gates hold a call open until the test sets them.
    """

    endpoint = "https://script.example.test/exec"

    def __init__(self, snapshot: dict[str, Any] | None = None) -> None:
        self.snapshot: dict[str, Any] = snapshot if snapshot is not None else {}
        self.fetch_error: Exception | None = None
        self.fetch_calls = 0
        self.fetch_gate: asyncio.Event | None = None
        self.responses: list[Any] = []
        self.sent: list[tuple[str, Any]] = []
        self.send_gate: asyncio.Event | None = None
        self.closed = False

    async def fetch_snapshot(self) -> dict[str, Any]:
        self.fetch_calls += 1
        if self.fetch_gate is not None:
            await self.fetch_gate.wait()
        if self.fetch_error is not None:
            raise self.fetch_error
        return copy.deepcopy(self.snapshot)

    async def send(self, action: str, payload: Any) -> dict[str, Any] | None:
        self.sent.append((action, copy.deepcopy(payload)))
        if self.send_gate is not None:
            await self.send_gate.wait()
        response = self.responses.pop(0) if self.responses else None
        if isinstance(response, Exception):
            raise response
        return response

    async def aclose(self) -> None:
        self.closed = True


class ManualClock:
    """Clock whose time only moves when the test calls ``advance``."""

    def __init__(self, start: datetime | None = None) -> None:
        self.current = start or datetime(2026, 1, 1, 9, 0, tzinfo=timezone.utc)
        self.sleeps: list[float] = []
        self._waiters: list[tuple[datetime, asyncio.Future[None]]] = []

    def now(self) -> datetime:
        return self.current

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        future: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        self._waiters.append((self.current + timedelta(seconds=seconds), future))
        await future

    @property
    def pending_sleeps(self) -> int:
        return sum(1 for _, future in self._waiters if not future.done())

    async def advance(self, seconds: float) -> None:
        """Move time forward, wake due sleepers and let them run."""
        self.current += timedelta(seconds=seconds)
        still_waiting = []
        for deadline, future in self._waiters:
            if future.done():
                continue
            if deadline <= self.current:
                future.set_result(None)
            else:
                still_waiting.append((deadline, future))
        self._waiters = still_waiting
        await settle()


async def settle(rounds: int = 20) -> None:
    """Let every ready task run until it blocks again."""
    for _ in range(rounds):
        await asyncio.sleep(0)


# ==============================================================================
# Fixtures
# ==============================================================================


@pytest.fixture
def memory_store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture
def failing_store() -> FailingStore:
    return FailingStore()


@pytest.fixture
def cache(memory_store) -> LocalCache:
    return LocalCache(memory_store)


@pytest.fixture
def state(cache) -> AppState:
    return AppState(cache=cache)


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def remote(raw_snapshot) -> FakeRemote:
    return FakeRemote(raw_snapshot)


@pytest.fixture
def engine(state, remote, clock) -> SyncEngine:
    """Online engine over the fake remote, with empty local state."""
    return SyncEngine(state, remote, clock=clock)


@pytest.fixture
def offline_engine(state, clock) -> SyncEngine:
    return SyncEngine(state, None, clock=clock)
