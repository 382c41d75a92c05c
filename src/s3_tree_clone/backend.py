"""Object-store capability surface and its boto3-backed S3 implementation."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import BinaryIO, Dict, List, Optional, Union

import boto3
from botocore.config import Config as BotocoreConfig
from botocore.exceptions import ClientError

from s3_tree_clone.errors import ErrorClassifier, ErrorKind, ObjectNotFound, classify_error

Body = Union[bytes, BinaryIO]


@dataclass
class RemoteObjectHeader:
    """Subset of an object's HEAD response that matters for comparison."""

    content_length: int
    metadata: Dict[str, str] = field(default_factory=dict)
    etag: Optional[str] = None
    content_type: Optional[str] = None
    version_id: Optional[str] = None


@dataclass
class PutResult:
    etag: Optional[str] = None
    version_id: Optional[str] = None


@dataclass
class PutOptions:
    """Per-object creation options shared by single puts and multipart uploads."""

    content_type: str
    metadata: Dict[str, str]
    storage_class: str = "STANDARD"
    encryption: Optional[str] = None
    kms_key_id: Optional[str] = None


class ObjectStore(ABC):
    """Minimal set of object-store operations required by the sync engine."""

    @abstractmethod
    def head_object(self, bucket: str, key: str) -> RemoteObjectHeader:
        """Return the object's header, or raise ObjectNotFound."""

    @abstractmethod
    def put_object(self, bucket: str, key: str, body: Body, options: PutOptions) -> PutResult:
        """Create or replace an object in one request."""

    @abstractmethod
    def create_multipart_upload(self, bucket: str, key: str, options: PutOptions) -> str:
        """Start a multipart upload and return its upload id."""

    @abstractmethod
    def upload_part(self, bucket: str, key: str, upload_id: str, part_number: int, body: bytes) -> str:
        """Upload one part and return its entity tag."""

    @abstractmethod
    def complete_multipart_upload(
        self, bucket: str, key: str, upload_id: str, parts: List[Dict[str, object]]
    ) -> PutResult:
        """Assemble ``parts`` (``{"PartNumber": n, "ETag": tag}``) into the final object."""

    @abstractmethod
    def abort_multipart_upload(self, bucket: str, key: str, upload_id: str) -> None:
        """Discard an unfinished multipart upload."""

    @abstractmethod
    def get_bucket_location(self, bucket: str) -> Optional[str]:
        """Return the bucket's location constraint (None or '' for us-east-1)."""


def region_from_location(location: Optional[str]) -> str:
    """Translate a bucket location constraint into a region name."""
    if not location:
        return "us-east-1"
    if location == "EU":
        return "eu-west-1"
    return location


def create_s3_client(
    profile: Optional[str] = None,
    region: Optional[str] = None,
    max_pool_connections: int = 30,
):
    """Create a boto3 S3 client with SDK-level retries turned off.

    Retries are handled by RetryPolicy so that every attempt passes through
    the shared admission limiter and token bucket.
    """
    session = boto3.Session(profile_name=profile)
    client_config = BotocoreConfig(
        retries={"total_max_attempts": 1, "mode": "standard"},
        max_pool_connections=max_pool_connections,
    )
    return session.client("s3", region_name=region, config=client_config)


class S3ObjectStore(ObjectStore):
    """ObjectStore backed by a boto3 S3 client."""

    def __init__(self, client, classifier: ErrorClassifier = classify_error):
        self.client = client
        self.classifier = classifier

    def _object_kwargs(self, options: PutOptions) -> Dict[str, object]:
        kwargs: Dict[str, object] = {
            "ContentType": options.content_type,
            "Metadata": dict(options.metadata),
            "StorageClass": options.storage_class,
        }
        if options.encryption:
            kwargs["ServerSideEncryption"] = options.encryption
            if options.encryption == "aws:kms" and options.kms_key_id:
                kwargs["SSEKMSKeyId"] = options.kms_key_id
        return kwargs

    def head_object(self, bucket: str, key: str) -> RemoteObjectHeader:
        try:
            response = self.client.head_object(Bucket=bucket, Key=key)
        except ClientError as e:
            if self.classifier(e) is ErrorKind.NOT_FOUND:
                raise ObjectNotFound(bucket, key) from e
            raise

        return RemoteObjectHeader(
            content_length=int(response.get("ContentLength", 0)),
            metadata=dict(response.get("Metadata", {})),
            etag=response.get("ETag"),
            content_type=response.get("ContentType"),
            version_id=response.get("VersionId"),
        )

    def put_object(self, bucket: str, key: str, body: Body, options: PutOptions) -> PutResult:
        response = self.client.put_object(
            Bucket=bucket, Key=key, Body=body, **self._object_kwargs(options)
        )
        return PutResult(etag=response.get("ETag"), version_id=response.get("VersionId"))

    def create_multipart_upload(self, bucket: str, key: str, options: PutOptions) -> str:
        response = self.client.create_multipart_upload(
            Bucket=bucket, Key=key, **self._object_kwargs(options)
        )
        return response["UploadId"]

    def upload_part(self, bucket: str, key: str, upload_id: str, part_number: int, body: bytes) -> str:
        response = self.client.upload_part(
            Bucket=bucket, Key=key, UploadId=upload_id, PartNumber=part_number, Body=body
        )
        return response["ETag"]

    def complete_multipart_upload(
        self, bucket: str, key: str, upload_id: str, parts: List[Dict[str, object]]
    ) -> PutResult:
        response = self.client.complete_multipart_upload(
            Bucket=bucket,
            Key=key,
            UploadId=upload_id,
            MultipartUpload={"Parts": parts},
        )
        return PutResult(etag=response.get("ETag"), version_id=response.get("VersionId"))

    def abort_multipart_upload(self, bucket: str, key: str, upload_id: str) -> None:
        self.client.abort_multipart_upload(Bucket=bucket, Key=key, UploadId=upload_id)

    def get_bucket_location(self, bucket: str) -> Optional[str]:
        response = self.client.get_bucket_location(Bucket=bucket)
        return response.get("LocationConstraint")
