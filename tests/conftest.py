"""Shared fixtures for s3-tree-clone tests."""

import io
import stat
from types import SimpleNamespace

import pytest
from rich.console import Console

from s3_tree_clone.limiter import AdmissionLimiter, BackendGate, RetryPolicy
from s3_tree_clone.memory_store import InMemoryObjectStore


def make_console(stderr: bool = False) -> Console:
    """Console that records into a StringIO; read it back with ``console.file.getvalue()``."""
    return Console(file=io.StringIO(), stderr=stderr, soft_wrap=True, width=200, color_system=None)


def fake_stat(
    size=5,
    mode=stat.S_IFREG | 0o644,
    uid=1000,
    gid=1000,
    ctime_ns=1_634_567_890_123_456_789,
    mtime_ns=1_634_567_800_000_000_001,
):
    """Stand-in for os.stat_result carrying only the fields the engine reads."""
    return SimpleNamespace(
        st_size=size,
        st_mode=mode,
        st_uid=uid,
        st_gid=gid,
        st_ctime_ns=ctime_ns,
        st_mtime_ns=mtime_ns,
    )


@pytest.fixture
def out_console():
    return make_console()


@pytest.fixture
def err_console():
    return make_console(stderr=True)


@pytest.fixture
def store():
    memory = InMemoryObjectStore()
    memory.create_bucket("hello")
    return memory


@pytest.fixture
def gate():
    return BackendGate(AdmissionLimiter(10), RetryPolicy(max_attempts=3, base_delay=0))
