"""Decide whether a local entry is already in sync with its remote object."""

import os
from dataclasses import dataclass
from typing import Optional, Tuple

from rich.console import Console

from s3_tree_clone.backend import RemoteObjectHeader
from s3_tree_clone.checksum import ALGORITHMS, ChecksumCalculator, HashBundle
from s3_tree_clone.metadata import (
    CTIME_KEY,
    GROUP_KEY,
    MTIME_KEY,
    OWNER_KEY,
    PERMISSION_BITS,
    PERMISSIONS_KEY,
    parse_id,
    parse_permissions,
    parse_timestamp,
    remote_digests,
    squash_id,
)
from s3_tree_clone.stat_times import get_ctime, get_mtime


@dataclass
class Verdict:
    """Outcome of comparing one entry; ``hashes`` is kept for reuse by the uploader."""

    must_upload: bool
    reason: str = ""
    hashes: Optional[HashBundle] = None


class Comparator:
    """Compare local stat results and file content with remote object headers.

    Checks run in a fixed order and the first mismatch wins: size (files),
    owner, group, permissions, ctime, mtime (unless timestamps are ignored),
    then the strongest content digest present in the remote metadata (files
    that already exist remotely). The remote ETag is never used because it is
    not the plaintext MD5 for encrypted or multipart objects.
    """

    def __init__(
        self,
        bucket: str,
        root_uid: int = 0,
        root_gid: int = 0,
        ignore_timestamps: bool = False,
        checksum_calculator: Optional[ChecksumCalculator] = None,
        console: Optional[Console] = None,
        err_console: Optional[Console] = None,
        verbose: bool = False,
    ):
        self.bucket = bucket
        self.root_uid = root_uid
        self.root_gid = root_gid
        self.ignore_timestamps = ignore_timestamps
        self.checksum_calculator = checksum_calculator or ChecksumCalculator()
        self.console = console or Console(soft_wrap=True)
        self.err_console = err_console or Console(stderr=True, soft_wrap=True)
        self.verbose = verbose

    def _url(self, key: str) -> str:
        return f"s3://{self.bucket}/{key}"

    def _mismatch(self, message: str) -> str:
        self.err_console.print(f"{message}; will resync", markup=False, highlight=False)
        return message

    def metadata_mismatch(
        self,
        pathname: str,
        key: str,
        st: os.stat_result,
        header: RemoteObjectHeader,
        is_dir: bool,
        ignore_timestamps: Optional[bool] = None,
    ) -> Optional[str]:
        """Return a description of the first metadata mismatch, or None if everything matches."""
        if ignore_timestamps is None:
            ignore_timestamps = self.ignore_timestamps
        url = self._url(key)
        metadata = header.metadata or {}

        if not is_dir and header.content_length != st.st_size:
            return self._mismatch(
                f"Content size mismatch: {url} has size {header.content_length}; "
                f"{pathname} has size {st.st_size}"
            )

        ownership = (
            (OWNER_KEY, squash_id(st.st_uid, self.root_uid)),
            (GROUP_KEY, squash_id(st.st_gid, self.root_gid)),
        )
        for field, local_id in ownership:
            raw = metadata.get(field)
            if raw is None:
                return self._mismatch(f"No {field} specified for {url}")
            remote_id = parse_id(raw)
            if remote_id is None:
                return self._mismatch(f"Non-integer value for {field} for {url}: {raw}")
            if remote_id != local_id:
                return self._mismatch(
                    f"Ownership mismatch: {url} has {field} {remote_id}; {pathname} has {field} {local_id}"
                )

        raw = metadata.get(PERMISSIONS_KEY)
        if raw is None:
            return self._mismatch(f"No {PERMISSIONS_KEY} specified for {url}")
        remote_mode = parse_permissions(raw)
        if remote_mode is None:
            return self._mismatch(f"Non-octal value for {PERMISSIONS_KEY} for {url}: {raw}")
        local_mode = st.st_mode & PERMISSION_BITS
        if remote_mode != local_mode:
            return self._mismatch(
                f"Permissions mismatch: {url} has {remote_mode:04o}; {pathname} has {local_mode:04o}"
            )

        if not ignore_timestamps:
            for field, local_ns in ((CTIME_KEY, get_ctime(st)), (MTIME_KEY, get_mtime(st))):
                raw = metadata.get(field)
                if raw is None:
                    return self._mismatch(f"No {field} specified for {url}")
                remote_ns = parse_timestamp(raw)
                if remote_ns is None:
                    return self._mismatch(f"Cannot parse {field} for {url}: {raw}")
                if remote_ns != local_ns:
                    return self._mismatch(
                        f"Timestamp mismatch: {url} has {field} {remote_ns} ns; "
                        f"{pathname} has {field} {local_ns} ns"
                    )

        if self.verbose:
            self.console.print(f"Metadata for {pathname} and {url} matches", markup=False, highlight=False)
        return None

    def verify_digests(self, header: RemoteObjectHeader, pathname: str) -> Tuple[Optional[HashBundle], bool]:
        """Compare the strongest remote digest with the local file.

        Returns ``(hashes, equal)``. When the remote metadata carries no
        digest at all the check is skipped: ``(None, True)``. OSError from
        reading the file propagates.
        """
        remote = remote_digests(header.metadata or {})
        if not remote:
            return None, True

        hashes = self.checksum_calculator.digest_file(pathname)
        for algorithm in ALGORITHMS:
            if algorithm in remote:
                return hashes, remote[algorithm] == hashes.hexdigest(algorithm)
        return hashes, True

    def evaluate(
        self,
        pathname: str,
        key: str,
        st: os.stat_result,
        header: Optional[RemoteObjectHeader],
        is_dir: bool,
        ignore_timestamps: Optional[bool] = None,
    ) -> Verdict:
        if header is None:
            return Verdict(must_upload=True, reason="missing")

        reason = self.metadata_mismatch(pathname, key, st, header, is_dir, ignore_timestamps)
        if is_dir:
            return Verdict(must_upload=reason is not None, reason=reason or "")

        hashes, equal = self.verify_digests(header, pathname)
        if not equal:
            self.err_console.print(
                f"File hashes differ for {self._url(key)} and {pathname}; will resync object",
                markup=False,
                highlight=False,
            )
            return Verdict(must_upload=True, reason=reason or "digest mismatch", hashes=hashes)

        if hashes is not None and self.verbose:
            self.console.print(
                f"Hash values for {pathname} and {self._url(key)} match", markup=False, highlight=False
            )
        return Verdict(must_upload=reason is not None, reason=reason or "", hashes=hashes)

    def decide(
        self,
        pathname: str,
        st: os.stat_result,
        header: Optional[RemoteObjectHeader],
        is_dir: bool,
        ignore_timestamps: Optional[bool] = None,
        key: str = "",
    ) -> bool:
        """Return True when the entry must be uploaded."""
        return self.evaluate(pathname, key or pathname, st, header, is_dir, ignore_timestamps).must_upload
