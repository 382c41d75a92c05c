"""Single-pass multi-algorithm checksums for local files."""

import hashlib
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO, Dict, Union

# Preference order used when verifying against remote metadata: strongest first.
ALGORITHMS = ("sha512", "sha256", "sha1", "md5")


@dataclass(frozen=True)
class HashBundle:
    """MD5, SHA-1, SHA-256 and SHA-512 digests of one file."""

    md5: bytes
    sha1: bytes
    sha256: bytes
    sha512: bytes

    def hexdigest(self, algorithm: str) -> str:
        """Return the lowercase hex digest for ``algorithm`` (one of ALGORITHMS)."""
        if algorithm not in ALGORITHMS:
            raise ValueError(f"Unsupported checksum algorithm: {algorithm}")
        return getattr(self, algorithm).hex()

    def as_hex(self) -> Dict[str, str]:
        return {algorithm: self.hexdigest(algorithm) for algorithm in ALGORITHMS}


class ChecksumCalculator:
    """Calculate every supported digest of a file while reading it only once."""

    def __init__(self, chunk_size: int = 1024 * 1024):
        """Initialize with the read buffer size in bytes."""
        if chunk_size <= 0:
            raise ValueError("chunk_size must be positive")
        self.chunk_size = chunk_size

    def digest_stream(self, stream: BinaryIO) -> HashBundle:
        """
        Hash a binary stream from its current position to EOF.

        Args:
            stream: Readable binary file-like object

        Returns:
            HashBundle with all four digests
        """
        md5 = hashlib.md5()
        sha1 = hashlib.sha1()
        sha256 = hashlib.sha256()
        sha512 = hashlib.sha512()

        while True:
            chunk = stream.read(self.chunk_size)
            if not chunk:
                break
            md5.update(chunk)
            sha1.update(chunk)
            sha256.update(chunk)
            sha512.update(chunk)

        return HashBundle(
            md5=md5.digest(),
            sha1=sha1.digest(),
            sha256=sha256.digest(),
            sha512=sha512.digest(),
        )

    def digest_file(self, file_path: Union[str, Path]) -> HashBundle:
        """Hash the file at ``file_path``."""
        with open(file_path, "rb") as f:
            return self.digest_stream(f)
