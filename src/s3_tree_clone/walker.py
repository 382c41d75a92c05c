"""Concurrent traversal of the local tree and the per-entry sync handler."""

import os
import posixpath
import stat
import threading
from concurrent.futures import Executor
from dataclasses import dataclass
from itertools import islice
from typing import Iterator, List, Optional

from rich.console import Console

from s3_tree_clone.backend import ObjectStore, RemoteObjectHeader
from s3_tree_clone.comparator import Comparator
from s3_tree_clone.errors import ObjectNotFound, OperationCancelled
from s3_tree_clone.limiter import BackendGate
from s3_tree_clone.uploader import Uploader

READ_BATCH_SIZE = 16


def build_key(prefix: str, rel_path: str, name: str, is_dir: bool) -> str:
    """Join prefix, relative path and name into an object key without doubled separators."""
    parts = [part.strip("/") for part in (prefix, rel_path, name)]
    key = "/".join(part for part in parts if part)
    if is_dir:
        key += "/"
    if "//" in key:
        raise ValueError(f"object key contains '//': {key!r}")
    return key


@dataclass
class Entry:
    """A filesystem object discovered while walking a directory."""

    rel_path: str
    dir_name: str
    name: str
    st: Optional[os.stat_result] = None
    key: str = ""

    @property
    def pathname(self) -> str:
        return os.path.join(self.dir_name, self.name)

    @property
    def is_dir(self) -> bool:
        return self.st is not None and stat.S_ISDIR(self.st.st_mode)

    @property
    def is_regular(self) -> bool:
        return self.st is not None and stat.S_ISREG(self.st.st_mode)


class PendingWork:
    """Counter of dispatched but unfinished handlers, awaited as the run's join barrier."""

    def __init__(self):
        self._count = 0
        self._condition = threading.Condition()

    @property
    def count(self) -> int:
        with self._condition:
            return self._count

    def add(self, n: int = 1) -> None:
        with self._condition:
            self._count += n

    def done(self) -> None:
        with self._condition:
            if self._count <= 0:
                raise RuntimeError("PendingWork.done() called more times than add()")
            self._count -= 1
            if self._count == 0:
                self._condition.notify_all()

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until every dispatched handler finished; False on timeout."""
        with self._condition:
            return self._condition.wait_for(lambda: self._count == 0, timeout=timeout)


def _read_batches(dir_name: str, batch_size: int) -> Iterator[List[str]]:
    with os.scandir(dir_name) as it:
        while True:
            batch = [entry.name for entry in islice(it, batch_size)]
            if not batch:
                return
            yield batch


class TreeWalker:
    """Walk directories and dispatch one handler per entry onto a worker pool.

    ``walk`` returns as soon as the names of one directory have been
    dispatched; completion of the whole tree is observed with ``wait``.
    Subdirectories are walked from inside their own handler, after their
    directory marker has been dealt with.
    """

    def __init__(
        self,
        executor: Executor,
        store: ObjectStore,
        gate: BackendGate,
        comparator: Comparator,
        uploader: Uploader,
        bucket: str,
        prefix: str = "",
        verbose: bool = False,
        console: Optional[Console] = None,
        err_console: Optional[Console] = None,
        batch_size: int = READ_BATCH_SIZE,
    ):
        self.executor = executor
        self.store = store
        self.gate = gate
        self.comparator = comparator
        self.uploader = uploader
        self.bucket = bucket
        self.prefix = prefix
        self.verbose = verbose
        self.console = console or Console(soft_wrap=True)
        self.err_console = err_console or Console(stderr=True, soft_wrap=True)
        self.batch_size = batch_size
        self.pending = PendingWork()

    def _error(self, message: str) -> None:
        self.err_console.print(message, markup=False, highlight=False)

    def _info(self, message: str) -> None:
        if self.verbose:
            self.console.print(message, markup=False, highlight=False)

    def walk(self, rel_path: str, dir_name: str, name_filter: str = "") -> Optional[OSError]:
        """Dispatch handlers for the entries of ``dir_name``.

        A non-empty ``name_filter`` restricts dispatch to that single child.
        Returns the OSError that stopped reading the directory, if any.
        """
        try:
            for names in _read_batches(dir_name, self.batch_size):
                for name in names:
                    if name_filter and name != name_filter:
                        continue
                    self._dispatch(Entry(rel_path=rel_path, dir_name=dir_name, name=name))
        except OSError as e:
            self._error(f"Unable to read directory {dir_name}: {e}")
            return e
        return None

    def _dispatch(self, entry: Entry) -> None:
        self.pending.add()
        try:
            self.executor.submit(self._run_handler, entry)
        except RuntimeError:
            # Executor already shut down.
            self.pending.done()
            raise

    def _run_handler(self, entry: Entry) -> None:
        try:
            self.handle_entry(entry)
        except OperationCancelled:
            pass
        except Exception as e:
            self._error(f"Unexpected error while handling {entry.pathname}: {e!r}")
        finally:
            self.pending.done()

    def wait(self, timeout: Optional[float] = None) -> bool:
        return self.pending.wait(timeout)

    def fetch_header(self, key: str) -> Optional[RemoteObjectHeader]:
        """HEAD the key; None means it must be uploaded (missing or unreadable)."""
        try:
            return self.gate.call(self.store.head_object, self.bucket, key, weight=1)
        except ObjectNotFound:
            self._info(f"s3://{self.bucket}/{key} does not exist; will resync object")
        except OperationCancelled:
            raise
        except Exception as e:
            self._error(f"HeadObject on s3://{self.bucket}/{key} failed; will resync object: {e}")
        return None

    def handle_entry(self, entry: Entry) -> None:
        pathname = entry.pathname
        if "//" in pathname:
            raise ValueError(f"pathname contains '//': {pathname!r}")

        try:
            entry.st = os.stat(pathname)
        except OSError as e:
            self._error(f"Unable to get status of {pathname}: {e}")
            return

        if not entry.is_dir and not entry.is_regular:
            self._info(f"Skipping non-regular file {pathname}")
            return

        key = entry.key = build_key(self.prefix, entry.rel_path, entry.name, entry.is_dir)
        self._info(f"Comparing {pathname} against s3://{self.bucket}/{key}")
        header = self.fetch_header(key)

        if entry.is_dir:
            verdict = self.comparator.evaluate(pathname, key, entry.st, header, is_dir=True)
            if verdict.must_upload:
                self.uploader.upload_directory_marker(pathname, key, entry.st)
            self._error(f"Walking directory {pathname}")
            self.walk(posixpath.join(entry.rel_path, entry.name), pathname)
            return

        try:
            verdict = self.comparator.evaluate(pathname, key, entry.st, header, is_dir=False)
        except OSError as e:
            self._error(f"Unable to get hashes for {pathname}: {e}")
            return

        if verdict.must_upload:
            self.uploader.upload_file(pathname, key, entry.st, verdict.hashes)
