"""Upload files and directory markers with File Gateway compatible metadata."""

import codecs
import os
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from typing import BinaryIO, Dict, Optional, Set

import filetype
from rich.console import Console

from s3_tree_clone.backend import ObjectStore, PutOptions
from s3_tree_clone.checksum import ChecksumCalculator, HashBundle
from s3_tree_clone.limiter import BackendGate
from s3_tree_clone.metadata import DEFAULT_CONTENT_TYPE, encode_metadata

TEXT_CONTENT_TYPE = "text/plain; charset=utf-8"
SNIFF_LENGTH = 8192

MIB = 1024 * 1024
MAX_PARTS = 10000


def detect_content_type(pathname: str) -> str:
    """Sniff the file's content type from its leading bytes.

    Known binary formats are recognised by magic numbers; anything else that
    decodes as UTF-8 without NUL bytes is plain text. Raises OSError if the
    file cannot be read.
    """
    with open(pathname, "rb") as f:
        head = f.read(SNIFF_LENGTH)

    mime = filetype.guess_mime(head)
    if mime:
        return mime

    if b"\x00" in head:
        return DEFAULT_CONTENT_TYPE
    try:
        codecs.getincrementaldecoder("utf-8")().decode(head, final=False)
    except UnicodeDecodeError:
        return DEFAULT_CONTENT_TYPE
    return TEXT_CONTENT_TYPE


class Uploader:
    """Create objects for files (single put or multipart) and directory markers."""

    def __init__(
        self,
        store: ObjectStore,
        gate: BackendGate,
        bucket: str,
        storage_class: str = "STANDARD",
        encryption: Optional[str] = "AES256",
        kms_key_id: Optional[str] = None,
        root_uid: int = 0,
        root_gid: int = 0,
        checksum_calculator: Optional[ChecksumCalculator] = None,
        multipart_threshold: int = 8 * MIB,
        part_size: int = 8 * MIB,
        part_concurrency: int = 5,
        err_console: Optional[Console] = None,
    ):
        self.store = store
        self.gate = gate
        self.bucket = bucket
        self.storage_class = storage_class
        self.encryption = encryption
        self.kms_key_id = kms_key_id if encryption == "aws:kms" else None
        self.root_uid = root_uid
        self.root_gid = root_gid
        self.checksum_calculator = checksum_calculator or ChecksumCalculator()
        self.multipart_threshold = multipart_threshold
        self.part_size = max(part_size, 1)
        self.part_concurrency = max(part_concurrency, 1)
        self.err_console = err_console or Console(stderr=True, soft_wrap=True)

    @property
    def upload_width(self) -> int:
        """Limiter weight of one file upload and the number of parts it may have in flight."""
        return min(self.part_concurrency, self.gate.limiter.capacity)

    def _report(self, message: str) -> None:
        self.err_console.print(message, markup=False, highlight=False)

    def _options(self, content_type: str, metadata: Dict[str, str]) -> PutOptions:
        return PutOptions(
            content_type=content_type,
            metadata=metadata,
            storage_class=self.storage_class,
            encryption=self.encryption,
            kms_key_id=self.kms_key_id,
        )

    def _part_size_for(self, size: int) -> int:
        part_size = self.part_size
        while size > part_size * MAX_PARTS:
            part_size *= 2
        return part_size

    def upload_directory_marker(self, pathname: str, key: str, st: os.stat_result) -> bool:
        """Create a zero-length object standing in for a directory."""
        metadata = encode_metadata(st, self.root_uid, self.root_gid)
        options = self._options(DEFAULT_CONTENT_TYPE, metadata)
        try:
            self.gate.call(self.store.put_object, self.bucket, key, b"", options, weight=1)
        except Exception as e:
            self._report(f"Failed to upload {pathname}: {e}")
            return False

        self._report(f"Uploaded {pathname} to s3://{self.bucket}/{key}")
        return True

    def upload_file(
        self,
        pathname: str,
        key: str,
        st: os.stat_result,
        hashes: Optional[HashBundle] = None,
    ) -> bool:
        """
        Upload a regular file.

        Args:
            pathname: Local file path
            key: Destination object key
            st: Stat result the metadata is built from
            hashes: Digests from an earlier verification pass, if any

        Returns:
            True if the object was created
        """
        try:
            content_type = detect_content_type(pathname)
        except OSError as e:
            self._report(f"Cannot detect mime-type for {pathname}: {e}")
            content_type = DEFAULT_CONTENT_TYPE

        try:
            with open(pathname, "rb") as fd:
                if hashes is None:
                    hashes = self.checksum_calculator.digest_stream(fd)
                    fd.seek(0)

                metadata = encode_metadata(st, self.root_uid, self.root_gid, hashes)
                options = self._options(content_type, metadata)

                with self.gate.limiter.slot(self.upload_width):
                    if st.st_size < self.multipart_threshold:
                        self._put(fd, key, options)
                    else:
                        self._multipart(fd, key, options, st.st_size)
        except Exception as e:
            self._report(f"Failed to upload {pathname}: {e}")
            return False

        self._report(f"Uploaded {pathname} to s3://{self.bucket}/{key}")
        return True

    def _put(self, fd: BinaryIO, key: str, options: PutOptions) -> None:
        def attempt():
            fd.seek(0)
            return self.store.put_object(self.bucket, key, fd, options)

        self.gate.retry.call(attempt)

    def _multipart(self, fd: BinaryIO, key: str, options: PutOptions, size: int) -> None:
        retry = self.gate.retry
        upload_id = retry.call(self.store.create_multipart_upload, self.bucket, key, options)
        part_size = self._part_size_for(size)

        try:
            etags = self._upload_parts(fd, key, upload_id, part_size)
            parts = [{"PartNumber": n, "ETag": etags[n]} for n in sorted(etags)]
            retry.call(self.store.complete_multipart_upload, self.bucket, key, upload_id, parts)
        except BaseException:
            try:
                retry.call(self.store.abort_multipart_upload, self.bucket, key, upload_id)
            except Exception as abort_error:
                self._report(f"Failed to abort multipart upload {upload_id} for s3://{self.bucket}/{key}: {abort_error}")
            raise

    def _upload_parts(self, fd: BinaryIO, key: str, upload_id: str, part_size: int) -> Dict[int, str]:
        retry = self.gate.retry
        etags: Dict[int, str] = {}
        in_flight: Dict[Future, int] = {}

        def collect(done: Set[Future]) -> None:
            for future in done:
                etags[in_flight.pop(future)] = future.result()

        with ThreadPoolExecutor(max_workers=self.upload_width) as pool:
            try:
                part_number = 0
                while True:
                    chunk = fd.read(part_size)
                    if not chunk and part_number > 0:
                        break
                    part_number += 1
                    future = pool.submit(
                        retry.call, self.store.upload_part, self.bucket, key, upload_id, part_number, chunk
                    )
                    in_flight[future] = part_number
                    if len(in_flight) >= self.upload_width:
                        done, _ = wait(list(in_flight), return_when=FIRST_COMPLETED)
                        collect(done)
                    if len(chunk) < part_size:
                        break
                done, _ = wait(list(in_flight))
                collect(done)
            except BaseException:
                for future in in_flight:
                    future.cancel()
                raise

        return etags
