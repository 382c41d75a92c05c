"""Conversion between POSIX stat attributes and File Gateway object metadata."""

import os
from typing import Dict, Mapping, Optional

from s3_tree_clone.checksum import ALGORITHMS, HashBundle
from s3_tree_clone.durations import format_nanoseconds, parse_duration
from s3_tree_clone.stat_times import get_ctime, get_mtime

OWNER_KEY = "file-owner"
GROUP_KEY = "file-group"
PERMISSIONS_KEY = "file-permissions"
CTIME_KEY = "file-ctime"
MTIME_KEY = "file-mtime"
USER_AGENT_KEY = "user-agent"
USER_AGENT = "s3-tree-clone"

# File Gateway stores directories and unknown content as a generic binary type.
DEFAULT_CONTENT_TYPE = "application/octet-stream"

PERMISSION_BITS = 0o7777
MAX_ID = 2 ** 32 - 1


def squash_id(value: int, substitute: int) -> int:
    """Replace root's id 0 with ``substitute``; ``substitute`` is 0 when root-squash is off."""
    return substitute if value == 0 else value


def format_permissions(mode: int) -> str:
    """File Gateway always uses 4-digit octal modes."""
    return f"{mode & PERMISSION_BITS:04o}"


def parse_permissions(value: Optional[str]) -> Optional[int]:
    if not value or any(c not in "01234567" for c in value):
        return None
    parsed = int(value, 8)
    if parsed > 0xFFFF:
        return None
    return parsed


def parse_id(value: Optional[str]) -> Optional[int]:
    """Decode a decimal uid/gid; None when missing or not an unsigned 32-bit integer."""
    if value is None or not (value.isascii() and value.isdigit()):
        return None
    parsed = int(value)
    if parsed > MAX_ID:
        return None
    return parsed


def parse_timestamp(value: Optional[str]) -> Optional[int]:
    """Decode a ``<integer>ns`` timestamp (any duration unit is accepted) to nanoseconds."""
    if value is None:
        return None
    try:
        return parse_duration(value)
    except ValueError:
        return None


def encode_metadata(
    st: os.stat_result,
    root_uid: int = 0,
    root_gid: int = 0,
    hashes: Optional[HashBundle] = None,
) -> Dict[str, str]:
    """Build the object metadata map for a file or directory."""
    metadata = {
        OWNER_KEY: str(squash_id(st.st_uid, root_uid)),
        GROUP_KEY: str(squash_id(st.st_gid, root_gid)),
        PERMISSIONS_KEY: format_permissions(st.st_mode),
        CTIME_KEY: format_nanoseconds(get_ctime(st)),
        MTIME_KEY: format_nanoseconds(get_mtime(st)),
        USER_AGENT_KEY: USER_AGENT,
    }
    if hashes is not None:
        metadata.update(hashes.as_hex())
    return metadata


def remote_digests(metadata: Mapping[str, str]) -> Dict[str, str]:
    """Return the non-empty digests present in remote metadata, keyed by algorithm."""
    return {
        algorithm: metadata[algorithm].lower()
        for algorithm in ALGORITHMS
        if metadata.get(algorithm)
    }
