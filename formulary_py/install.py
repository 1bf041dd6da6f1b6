"""
The install action for Formulary.

A release rule installs exactly one thing: the named executable, copied into
the binary directory. Artifacts are either ``.tar.gz`` archives holding the
binary or the bare binary itself.
"""

import asyncio
import logging
import os
import shutil
import tarfile
import tempfile
from pathlib import Path, PurePosixPath
from typing import Optional

from formulary_py.descriptor import ReleaseDescriptor
from formulary_py.fetch import ArtifactFetcher
from formulary_py.platform import Platform

logger = logging.getLogger("formulary.install")

_ARCHIVE_SUFFIXES = (".tar.gz", ".tgz")


class InstallError(Exception):
    """Raised when the binary cannot be installed from an artifact."""


def _is_archive(path: Path) -> bool:
    return path.name.endswith(_ARCHIVE_SUFFIXES)


def _find_member(tar: tarfile.TarFile, binary: str) -> tarfile.TarInfo:
    """Find the regular file named *binary*, preferring the shallowest one."""
    candidates = []
    for member in tar.getmembers():
        member_path = PurePosixPath(member.name)
        if member_path.is_absolute() or ".." in member_path.parts:
            raise InstallError(f"Refusing unsafe archive member: {member.name}")
        if member.isfile() and member_path.name == binary:
            candidates.append(member)
    if not candidates:
        raise InstallError(f"Archive does not contain {binary!r}")
    return min(candidates, key=lambda m: len(PurePosixPath(m.name).parts))


def _place(source, binary: str, bin_dir: Path) -> Path:
    """Copy the *source* stream to ``bin_dir/binary`` atomically with mode 0755."""
    bin_dir.mkdir(parents=True, exist_ok=True)
    target = bin_dir / binary
    fd, tmp_name = tempfile.mkstemp(prefix=f".{binary}-", dir=bin_dir)
    try:
        with os.fdopen(fd, "wb") as out:
            shutil.copyfileobj(source, out)
        os.chmod(tmp_name, 0o755)
        os.replace(tmp_name, target)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise
    return target


def install_binary(artifact: Path, binary: str, bin_dir: Path) -> Path:
    """
    Install *binary* from *artifact* into *bin_dir*.

    Args:
        artifact: A downloaded ``.tar.gz`` archive or bare executable
        binary: Name of the executable to install
        bin_dir: Destination directory, created if needed

    Returns:
        Path of the installed executable

    Raises:
        InstallError: if the binary name is not a plain file name, or the
            artifact is unreadable, unsafe, or lacks the binary
    """
    if not binary or binary in (".", "..") or "/" in binary or os.sep in binary:
        raise InstallError(f"Invalid binary name: {binary!r}")
    if not artifact.exists():
        raise InstallError(f"Artifact not found: {artifact}")

    if _is_archive(artifact):
        try:
            with tarfile.open(artifact, "r:gz") as tar:
                member = _find_member(tar, binary)
                source = tar.extractfile(member)
                if source is None:
                    raise InstallError(f"Cannot read {member.name} from {artifact}")
                with source:
                    target = _place(source, binary, bin_dir)
        except (tarfile.TarError, OSError) as e:
            raise InstallError(f"Failed to extract {binary} from {artifact}: {e}") from e
    else:
        try:
            with open(artifact, "rb") as source:
                target = _place(source, binary, bin_dir)
        except OSError as e:
            raise InstallError(f"Failed to install {binary} from {artifact}: {e}") from e

    logger.info(f"Installed {binary} to {target}")
    return target


async def _fetch_and_install(
    descriptor: ReleaseDescriptor,
    platform: Platform,
    bin_dir: Path,
    cache_dir: Path,
    fetcher: ArtifactFetcher,
) -> Path:
    rule = descriptor.select(platform)
    logger.info(f"Installing {descriptor.name} {descriptor.version} ({rule.label})")
    download_dir = cache_dir / descriptor.name / descriptor.version
    async with fetcher:
        result = await fetcher.fetch_rule(rule, download_dir)
    return install_binary(result.path, rule.binary, bin_dir)


def install_release(
    descriptor: ReleaseDescriptor,
    platform: Platform,
    bin_dir: Path,
    cache_dir: Path,
    fetcher: Optional[ArtifactFetcher] = None,
) -> Path:
    """
    Select, download, verify and install the binary for *platform*.

    Raises:
        UnsupportedPlatformError: if the descriptor has no rule for *platform*
        FetchError: if the download fails
        ChecksumMismatchError: if the artifact does not match its checksum
        InstallError: if the binary cannot be placed
    """
    return asyncio.run(
        _fetch_and_install(
            descriptor, platform, bin_dir, cache_dir, fetcher or ArtifactFetcher()
        )
    )
