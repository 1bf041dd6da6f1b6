"""
sha256 helpers for Formulary.

Release artifacts are trusted only after their sha256 matches the checksum
declared in the descriptor.
"""

import hashlib
import logging
import re
from pathlib import Path
from typing import Union

logger = logging.getLogger(__name__)

_HEX_DIGEST = re.compile(r"^[0-9a-f]{64}$")


class ChecksumMismatchError(Exception):
    """Raised when an artifact's sha256 differs from the declared checksum."""

    def __init__(self, expected: str, actual: str, path: Union[str, Path, None] = None):
        self.expected = expected
        self.actual = actual
        self.path = path
        where = f" for {path}" if path else ""
        super().__init__(
            f"sha256 mismatch{where}: expected {expected}, got {actual}"
        )


def normalize_digest(value: str) -> str:
    """
    Normalize a sha256 digest to 64 lower-case hex characters.

    Accepts surrounding whitespace, upper case and a ``sha256:`` prefix.

    Raises:
        ValueError: if the value is not a sha256 digest
    """
    digest = value.strip().lower()
    if digest.startswith("sha256:"):
        digest = digest[len("sha256:") :]
    if not _HEX_DIGEST.match(digest):
        raise ValueError(f"Not a sha256 digest: {value!r}")
    return digest


class StreamingHasher:
    """Incremental sha256 for data that arrives in chunks."""

    def __init__(self) -> None:
        self._hash = hashlib.sha256()
        self.size = 0

    def update(self, chunk: bytes) -> None:
        self._hash.update(chunk)
        self.size += len(chunk)

    def hexdigest(self) -> str:
        return self._hash.hexdigest()


def sha256_file(path: Union[str, Path], chunk_size: int = 65536) -> str:
    """Calculate the sha256 of a file's content."""
    hasher = StreamingHasher()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(chunk_size), b""):
            hasher.update(chunk)
    return hasher.hexdigest()


def verify_file(path: Union[str, Path], expected: str) -> str:
    """
    Verify that the file at *path* has the *expected* sha256.

    Returns:
        The actual digest

    Raises:
        ChecksumMismatchError: if the digests differ
    """
    want = normalize_digest(expected)
    actual = sha256_file(path)
    if actual != want:
        logger.error(f"Checksum mismatch for {path}")
        raise ChecksumMismatchError(want, actual, path)
    logger.debug(f"Checksum verified for {path}")
    return actual
