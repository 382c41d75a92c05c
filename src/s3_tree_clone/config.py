"""Configuration management for s3-tree-clone."""

import os
from typing import Any, Dict, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from s3_tree_clone.errors import ConfigurationError, UsageError

STORAGE_CLASSES = (
    "STANDARD",
    "STANDARD_IA",
    "ONEZONE_IA",
    "INTELLIGENT_TIERING",
    "GLACIER",
    "DEEP_ARCHIVE",
    "OUTPOSTS",
)

ENCRYPTION_ALGORITHMS = ("AES256", "aws:kms")

MIB = 1024 * 1024


class AWSConfig(BaseModel):
    """AWS session settings."""

    model_config = ConfigDict(frozen=True)

    profile: Optional[str] = None
    region: Optional[str] = None


class S3Config(BaseModel):
    """Destination settings."""

    model_config = ConfigDict(frozen=True)

    bucket: str = ""
    prefix: str = ""
    storage_class: str = "STANDARD"
    encryption_algorithm: str = "AES256"
    kms_key_id: str = "aws/s3"
    check_bucket: bool = True

    @field_validator("prefix")
    @classmethod
    def _normalize_prefix(cls, value: str) -> str:
        return normalize_prefix(value)

    @field_validator("storage_class")
    @classmethod
    def _check_storage_class(cls, value: str) -> str:
        if value not in STORAGE_CLASSES:
            raise ValueError(f"Invalid storage class: {value}")
        return value

    @field_validator("encryption_algorithm")
    @classmethod
    def _check_encryption(cls, value: str) -> str:
        if value not in ENCRYPTION_ALGORITHMS:
            raise ValueError(f"Invalid encryption algorithm: {value}")
        return value


class SyncConfig(BaseModel):
    """Traversal, comparison and concurrency settings."""

    model_config = ConfigDict(frozen=True)

    root_uid: int = Field(default=0, ge=0)
    root_gid: int = Field(default=0, ge=0)
    ignore_timestamps: bool = False
    verbose: bool = False
    max_concurrent: int = Field(default=30, ge=1)
    max_retries: int = Field(default=10, ge=0)
    max_backoff_delay: float = Field(default=60.0, gt=0)
    workers: int = Field(default=32, ge=1)
    multipart_threshold: int = Field(default=8 * MIB, ge=1)
    part_size: int = Field(default=8 * MIB, ge=1)
    part_concurrency: int = Field(default=5, ge=1)


class Config(BaseModel):
    """Immutable configuration for one run."""

    model_config = ConfigDict(frozen=True)

    aws: AWSConfig = Field(default_factory=AWSConfig)
    s3: S3Config = Field(default_factory=S3Config)
    sync: SyncConfig = Field(default_factory=SyncConfig)

    @classmethod
    def build(cls, **sections: Dict[str, Any]) -> "Config":
        """Build a config from plain section dicts, turning validation failures into ConfigurationError."""
        try:
            return cls.model_validate(sections)
        except ValidationError as e:
            raise ConfigurationError(_describe_validation_error(e)) from e

    def with_overrides(self, **sections: Dict[str, Any]) -> "Config":
        """Return a new config with the non-None values in ``sections`` applied."""
        data = self.model_dump()
        for section, values in sections.items():
            data[section].update({k: v for k, v in values.items() if v is not None})
        return Config.build(**data)

    @classmethod
    def from_env(cls, base: Optional["Config"] = None, environ: Optional[Dict[str, str]] = None) -> "Config":
        """Apply ``S3TC_*`` environment overrides on top of ``base`` (or the defaults)."""
        environ = os.environ if environ is None else environ
        base = base or cls()

        def env(name: str) -> Optional[str]:
            value = environ.get(f"S3TC_{name}")
            return value if value else None

        verbose = env("VERBOSE")
        return base.with_overrides(
            aws={"profile": env("PROFILE"), "region": env("REGION")},
            s3={
                "storage_class": env("STORAGE_CLASS"),
                "encryption_algorithm": env("ENCRYPTION_ALGORITHM"),
                "kms_key_id": env("KMS_KEY"),
            },
            sync={
                "max_concurrent": env("MAX_CONCURRENT"),
                "max_retries": env("MAX_RETRIES"),
                "verbose": None if verbose is None else verbose.lower() in ("1", "true", "yes", "on"),
            },
        )


def _describe_validation_error(error: ValidationError) -> str:
    messages = []
    for item in error.errors():
        location = ".".join(str(part) for part in item["loc"])
        messages.append(f"{location}: {item['msg']}")
    return "; ".join(messages)


def normalize_prefix(prefix: str) -> str:
    """Collapse repeated slashes, drop leading and trailing ones, and end a non-empty prefix with one."""
    prefix = "/".join(part for part in prefix.split("/") if part)
    return f"{prefix}/" if prefix else ""


def parse_destination(destination: str) -> Tuple[str, str]:
    """Split ``s3://bucket[/prefix]`` into bucket and normalized prefix."""
    scheme = "s3://"
    if not destination.startswith(scheme):
        raise UsageError(f"Destination is not a valid S3 URL: {destination}")

    bucket, _, prefix = destination[len(scheme):].partition("/")
    if not bucket:
        raise UsageError(f"Destination is not a valid S3 URL: {destination}")
    return bucket, normalize_prefix(prefix)


def split_source(source: str) -> Tuple[str, str]:
    """Split the source argument rsync-style into ``(base_dir, first_filter)``.

    ``dir/`` syncs the contents of ``dir``; ``dir`` syncs ``dir`` itself as a
    single top-level key. ``.`` means the contents of the current directory.
    """
    head, tail = os.path.split(source)
    if tail in (".", ""):
        tail = ""
        if not head:
            head = source or "."
    if not head:
        head = "."
    if head != "/":
        head = os.path.normpath(head)
    return head, tail
