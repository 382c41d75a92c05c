"""In-memory ObjectStore used by tests and dry experiments."""

import hashlib
import threading
import uuid
from collections import Counter, defaultdict
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from botocore.exceptions import ClientError

from s3_tree_clone.backend import Body, ObjectStore, PutOptions, PutResult, RemoteObjectHeader
from s3_tree_clone.errors import ObjectNotFound


def make_client_error(operation: str, code: str, message: str, status: int) -> ClientError:
    """Build a botocore ClientError shaped like a real S3 error response."""
    return ClientError(
        error_response={
            "Error": {"Code": code, "Message": message},
            "ResponseMetadata": {"HTTPStatusCode": status},
        },
        operation_name=operation,
    )


@dataclass
class MemoryObject:
    content: bytes
    content_type: str
    metadata: Dict[str, str]
    storage_class: str = "STANDARD"
    encryption: Optional[str] = None
    kms_key_id: Optional[str] = None
    etag: str = ""
    version_id: str = ""

    @property
    def content_length(self) -> int:
        return len(self.content)


@dataclass
class MemoryBucket:
    name: str
    location: Optional[str] = None
    objects: Dict[str, MemoryObject] = field(default_factory=dict)


@dataclass
class _PendingUpload:
    bucket: str
    key: str
    options: PutOptions
    parts: Dict[int, bytes] = field(default_factory=dict)


class InMemoryObjectStore(ObjectStore):
    """Thread-safe object store holding everything in dictionaries.

    Every call is counted in ``calls`` by operation name. ``inject_error``
    queues errors to be raised by the next calls of an operation on a key.
    """

    def __init__(self):
        self.buckets: Dict[str, MemoryBucket] = {}
        self.calls: Counter = Counter()
        self._uploads: Dict[str, _PendingUpload] = {}
        self._faults: Dict[Tuple[str, str], List[BaseException]] = defaultdict(list)
        self._lock = threading.RLock()

    def create_bucket(self, name: str, location: Optional[str] = None) -> MemoryBucket:
        with self._lock:
            bucket = MemoryBucket(name=name, location=location)
            self.buckets[name] = bucket
            return bucket

    def inject_error(self, operation: str, key: str, error: BaseException, times: int = 1) -> None:
        with self._lock:
            self._faults[(operation, key)].extend([error] * times)

    def get_object(self, bucket: str, key: str) -> Optional[MemoryObject]:
        with self._lock:
            found = self.buckets.get(bucket)
            if found is None:
                return None
            return found.objects.get(key)

    def keys(self, bucket: str) -> List[str]:
        with self._lock:
            return sorted(self.buckets[bucket].objects)

    def _record(self, operation: str, key: str) -> None:
        self.calls[operation] += 1
        faults = self._faults.get((operation, key))
        if faults:
            raise faults.pop(0)

    def _bucket(self, operation: str, name: str) -> MemoryBucket:
        bucket = self.buckets.get(name)
        if bucket is None:
            raise make_client_error(operation, "NoSuchBucket", "The specified bucket does not exist", 404)
        return bucket

    def _store(self, bucket: MemoryBucket, key: str, content: bytes, options: PutOptions) -> PutResult:
        obj = MemoryObject(
            content=content,
            content_type=options.content_type,
            metadata=dict(options.metadata),
            storage_class=options.storage_class,
            encryption=options.encryption,
            kms_key_id=options.kms_key_id,
            etag='"%s"' % hashlib.md5(content).hexdigest(),
            version_id=uuid.uuid4().hex[:12],
        )
        bucket.objects[key] = obj
        return PutResult(etag=obj.etag, version_id=obj.version_id)

    def head_object(self, bucket: str, key: str) -> RemoteObjectHeader:
        with self._lock:
            self._record("head_object", key)
            found = self.buckets.get(bucket)
            obj = found.objects.get(key) if found is not None else None
            if obj is None:
                raise ObjectNotFound(bucket, key)
            return RemoteObjectHeader(
                content_length=obj.content_length,
                metadata=dict(obj.metadata),
                etag=obj.etag,
                content_type=obj.content_type,
                version_id=obj.version_id,
            )

    def put_object(self, bucket: str, key: str, body: Body, options: PutOptions) -> PutResult:
        content = body if isinstance(body, bytes) else body.read()
        with self._lock:
            self._record("put_object", key)
            return self._store(self._bucket("PutObject", bucket), key, content, options)

    def create_multipart_upload(self, bucket: str, key: str, options: PutOptions) -> str:
        with self._lock:
            self._record("create_multipart_upload", key)
            self._bucket("CreateMultipartUpload", bucket)
            upload_id = uuid.uuid4().hex
            self._uploads[upload_id] = _PendingUpload(bucket=bucket, key=key, options=options)
            return upload_id

    def upload_part(self, bucket: str, key: str, upload_id: str, part_number: int, body: bytes) -> str:
        with self._lock:
            self._record("upload_part", key)
            upload = self._uploads.get(upload_id)
            if upload is None:
                raise make_client_error("UploadPart", "NoSuchUpload", "The specified upload does not exist", 404)
            upload.parts[part_number] = bytes(body)
            return '"%s"' % hashlib.md5(body).hexdigest()

    def complete_multipart_upload(self, bucket: str, key: str, upload_id: str, parts) -> PutResult:
        with self._lock:
            self._record("complete_multipart_upload", key)
            upload = self._uploads.pop(upload_id, None)
            if upload is None:
                raise make_client_error(
                    "CompleteMultipartUpload", "NoSuchUpload", "The specified upload does not exist", 404
                )
            numbers = [part["PartNumber"] for part in parts]
            if numbers != sorted(numbers) or any(n not in upload.parts for n in numbers):
                raise make_client_error("CompleteMultipartUpload", "InvalidPart", "Invalid part list", 400)
            content = b"".join(upload.parts[n] for n in numbers)
            return self._store(self._bucket("CompleteMultipartUpload", bucket), key, content, upload.options)

    def abort_multipart_upload(self, bucket: str, key: str, upload_id: str) -> None:
        with self._lock:
            self._record("abort_multipart_upload", key)
            self._uploads.pop(upload_id, None)

    def get_bucket_location(self, bucket: str) -> Optional[str]:
        with self._lock:
            self._record("get_bucket_location", bucket)
            return self._bucket("GetBucketLocation", bucket).location

    @property
    def pending_uploads(self) -> int:
        with self._lock:
            return len(self._uploads)
