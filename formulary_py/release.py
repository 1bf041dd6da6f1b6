"""
Release intake for Formulary.

This module turns the artifacts of a GoReleaser-style release into a
release descriptor: it reads the release's ``checksums.txt``, maps each
supported platform to the default archive name, and builds download URLs
on the project's GitHub releases page. It also bumps an existing descriptor
to a new release, producing a fresh descriptor that supersedes the old one.
"""

import logging
import re
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence, Union

from formulary_py.checksum import normalize_digest
from formulary_py.descriptor import (
    DescriptorError,
    PlatformPredicate,
    PlatformRule,
    ReleaseDescriptor,
)
from formulary_py.descriptor.validate import DEFAULT_MATRIX
from formulary_py.platform import ARM, MACOS

logger = logging.getLogger("formulary.release")

ARCHIVE_EXTENSION = ".tar.gz"

_GITHUB_REPO_RE = re.compile(r"^https://github\.com/[^/]+/[^/]+$")


def parse_checksums(text: str) -> Dict[str, str]:
    """
    Parse a ``checksums.txt`` file as written by ``sha256sum``/GoReleaser.

    Args:
        text: File content, one ``<sha256>  <filename>`` per line

    Returns:
        Dictionary mapping filename to lower-case sha256

    Raises:
        DescriptorError: if a line is malformed
    """
    checksums: Dict[str, str] = {}
    for lineno, raw in enumerate(text.splitlines(), start=1):
        line = raw.strip()
        if not line or line.startswith("#"):
            continue
        parts = line.split(None, 1)
        if len(parts) != 2:
            raise DescriptorError(f"checksums line {lineno} is malformed: {raw!r}")
        digest, filename = parts
        filename = filename.strip()
        if filename.startswith("*"):
            filename = filename[1:]
        try:
            checksums[filename] = normalize_digest(digest)
        except ValueError as e:
            raise DescriptorError(f"checksums line {lineno}: {e}") from None
    logger.debug(f"Parsed {len(checksums)} checksums")
    return checksums


def load_checksums(path: Union[str, Path]) -> Dict[str, str]:
    """Read and parse a checksums file."""
    try:
        with open(path, "r") as f:
            return parse_checksums(f.read())
    except IOError as e:
        raise DescriptorError(f"Failed to read checksums from {path}: {e}") from e


def artifact_name(name: str, predicate: PlatformPredicate) -> str:
    """
    Return GoReleaser's default archive name for a platform.

    ``link-patrol`` on macOS/arm becomes ``link-patrol_Darwin_arm64.tar.gz``.
    """
    os_title = "Darwin" if predicate.os == MACOS else "Linux"
    arch = "arm64" if predicate.cpu == ARM else "x86_64"
    return f"{name}_{os_title}_{arch}{ARCHIVE_EXTENSION}"


def download_url(homepage: str, version: str, filename: str) -> str:
    """
    Build the GitHub release download URL for *filename*.

    Raises:
        DescriptorError: if *homepage* is not a GitHub repository URL
    """
    base = homepage.rstrip("/")
    if not _GITHUB_REPO_RE.match(base):
        raise DescriptorError(
            f"Cannot derive download URLs: {homepage!r} is not a GitHub repository"
        )
    return f"{base}/releases/download/v{version}/{filename}"


def build_rules(
    name: str,
    homepage: str,
    version: str,
    checksums: Dict[str, str],
    binary: Optional[str] = None,
    matrix: Iterable[PlatformPredicate] = DEFAULT_MATRIX,
) -> List[PlatformRule]:
    """Build one rule per matrix entry from the release's checksums."""
    rules: List[PlatformRule] = []
    missing: List[str] = []
    for predicate in matrix:
        filename = artifact_name(name, predicate)
        digest = checksums.get(filename)
        if digest is None:
            missing.append(filename)
            continue
        rules.append(
            PlatformRule(
                predicate=predicate,
                url=download_url(homepage, version, filename),
                sha256=digest,
                binary=binary or name,
            )
        )
    if missing:
        raise DescriptorError(
            f"checksums for {version} are missing: {', '.join(missing)}"
        )
    return rules


def build_descriptor(
    name: str,
    desc: str,
    homepage: str,
    version: str,
    checksums: Dict[str, str],
    binary: Optional[str] = None,
    matrix: Iterable[PlatformPredicate] = DEFAULT_MATRIX,
) -> ReleaseDescriptor:
    """
    Build a descriptor for a release from its checksums.

    Rules follow the matrix order, which for the default matrix is the
    order GoReleaser writes: macOS arm, macOS intel, Linux intel, Linux arm64.
    """
    version = str(version).lstrip("v")
    rules = build_rules(name, homepage, version, checksums, binary, matrix)
    logger.info(f"Built descriptor for {name} {version} with {len(rules)} rules")
    return ReleaseDescriptor(
        name=name, desc=desc, homepage=homepage, version=version, rules=tuple(rules)
    )


def bump(
    descriptor: ReleaseDescriptor,
    version: str,
    checksums: Dict[str, str],
    matrix: Optional[Sequence[PlatformPredicate]] = None,
) -> ReleaseDescriptor:
    """
    Produce the descriptor that supersedes *descriptor* for a new release.

    The package metadata, binary names and platform set carry over; URLs and
    checksums are rebuilt for *version*. The original descriptor is unchanged.
    """
    version = str(version).lstrip("v")
    if version == descriptor.version:
        raise DescriptorError(f"{descriptor.name} is already at version {version}")

    if matrix is None:
        matrix = [rule.predicate for rule in descriptor.rules]

    binaries = {rule.predicate: rule.binary for rule in descriptor.rules}
    rules = build_rules(
        descriptor.name,
        descriptor.homepage,
        version,
        checksums,
        binary=descriptor.binary,
        matrix=matrix,
    )
    rules = [
        PlatformRule(
            predicate=rule.predicate,
            url=rule.url,
            sha256=rule.sha256,
            binary=binaries.get(rule.predicate, rule.binary),
        )
        for rule in rules
    ]
    logger.info(f"Bumped {descriptor.name} from {descriptor.version} to {version}")
    return descriptor.superseded_by(version, rules)
