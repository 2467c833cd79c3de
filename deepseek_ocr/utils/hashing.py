# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Hashing utilities for weight files.

A weight file may ship with a ``metadata.json`` next to it that records its
SHA256. When it does, the loader refuses a file whose digest differs.
"""

import hashlib
from pathlib import Path

HASH_ALGORITHM = "sha256"
HASH_BUFFER_SIZE = 65536  # 64 KiB


def compute_sha256(file_path: Path) -> str:
    """
    Compute the SHA256 hex digest of a file, reading it in chunks so
    multi-gigabyte checkpoints never sit in memory twice.

    Raises:
        FileNotFoundError: If the file doesn't exist.
        OSError: If the file can't be read.
    """
    hasher = hashlib.sha256()
    with open(file_path, "rb") as f:
        while True:
            chunk = f.read(HASH_BUFFER_SIZE)
            if not chunk:
                break
            hasher.update(chunk)
    return hasher.hexdigest()


def verify_checksum(file_path: Path, expected_hash: str) -> bool:
    """True if the file's SHA256 matches ``expected_hash`` (case-insensitive)."""
    return compute_sha256(file_path) == expected_hash.lower()
