"""
Artifact download for Formulary.

Downloads release artifacts over HTTP with aiohttp, hashing them as they
stream to disk, and verifies every artifact of a descriptor concurrently.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Sequence
from urllib.parse import urlparse

import aiohttp

from formulary_py.checksum import ChecksumMismatchError, StreamingHasher, normalize_digest
from formulary_py.descriptor import DescriptorError, PlatformRule

logger = logging.getLogger("formulary.fetch")

CHUNK_SIZE = 64 * 1024


class FetchError(Exception):
    """Raised when an artifact cannot be downloaded."""

    def __init__(self, url: str, message: str, status: Optional[int] = None):
        self.url = url
        self.status = status
        super().__init__(f"{url}: {message}")


@dataclass
class FetchResult:
    """A downloaded artifact."""

    url: str
    path: Path
    sha256: str
    size: int


@dataclass
class VerifyResult:
    """Outcome of checking one rule's artifact."""

    label: str
    url: str
    ok: bool
    sha256: Optional[str] = None
    error: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "label": self.label,
            "url": self.url,
            "ok": self.ok,
            "sha256": self.sha256,
            "error": self.error,
        }


def _discard(path: Path) -> None:
    """Remove a partial download; directories and missing paths are left alone."""
    if path.is_file():
        path.unlink()


def artifact_filename(url: str) -> str:
    """Return the last path segment of *url*."""
    name = Path(urlparse(url).path).name
    return name or "artifact"


class ArtifactFetcher:
    """
    Async HTTP client for release artifacts.

    The aiohttp session is created lazily and shared by every download;
    use the fetcher as an async context manager, or call ``close()``.
    """

    def __init__(
        self,
        timeout: float = 60.0,
        token: Optional[str] = None,
        session: Optional[aiohttp.ClientSession] = None,
    ) -> None:
        self._timeout = timeout
        self._token = token
        self._session = session

    async def __aenter__(self) -> "ArtifactFetcher":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    def _headers(self) -> dict:
        headers = {"Accept": "application/octet-stream"}
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"
        return headers

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create aiohttp session."""
        if self._session is None or self._session.closed:
            timeout = aiohttp.ClientTimeout(total=self._timeout)
            self._session = aiohttp.ClientSession(timeout=timeout)
        return self._session

    async def close(self) -> None:
        """Close the HTTP session."""
        if self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None

    async def download(self, url: str, dest: Path) -> FetchResult:
        """
        Download *url* to *dest*, hashing the content as it is written.

        Raises:
            FetchError: on HTTP errors, timeouts, connection failures and
                errors writing *dest*
        """
        hasher = StreamingHasher()
        logger.info(f"Downloading {url}")

        try:
            dest.parent.mkdir(parents=True, exist_ok=True)
            session = await self._get_session()
            async with session.get(url, headers=self._headers()) as resp:
                if not 200 <= resp.status < 300:
                    raise FetchError(url, f"HTTP {resp.status}", status=resp.status)
                with open(dest, "wb") as f:
                    async for chunk in resp.content.iter_chunked(CHUNK_SIZE):
                        hasher.update(chunk)
                        f.write(chunk)
        except asyncio.TimeoutError:
            _discard(dest)
            raise FetchError(url, f"Request timed out after {self._timeout}s") from None
        except aiohttp.ClientError as e:
            _discard(dest)
            raise FetchError(url, str(e)) from e
        except FetchError:
            _discard(dest)
            raise
        except OSError as e:
            _discard(dest)
            raise FetchError(url, f"Cannot write {dest}: {e}") from e

        logger.debug(f"Downloaded {hasher.size} bytes to {dest}")
        return FetchResult(url=url, path=dest, sha256=hasher.hexdigest(), size=hasher.size)

    async def fetch_rule(self, rule: PlatformRule, dest_dir: Path) -> FetchResult:
        """
        Download a rule's artifact into *dest_dir* and verify its checksum.

        Raises:
            FetchError: if the download fails
            ChecksumMismatchError: if the content does not match; the
                downloaded file is removed
            DescriptorError: if the rule declares a malformed sha256
        """
        try:
            expected = normalize_digest(rule.sha256)
        except ValueError as e:
            raise DescriptorError(f"Rule {rule.label}: {e}") from None
        dest = dest_dir / artifact_filename(rule.url)
        result = await self.download(rule.url, dest)
        if result.sha256 != expected:
            _discard(dest)
            logger.error(f"Checksum mismatch for {rule.label} ({rule.url})")
            raise ChecksumMismatchError(expected, result.sha256, rule.url)
        logger.info(f"Verified {rule.label}: {result.sha256}")
        return result

    async def _verify_one(self, rule: PlatformRule, dest_dir: Path) -> VerifyResult:
        try:
            result = await self.fetch_rule(rule, dest_dir / rule.label.replace("/", "-"))
        except ChecksumMismatchError as e:
            return VerifyResult(rule.label, rule.url, False, e.actual, str(e))
        except (FetchError, ValueError) as e:
            return VerifyResult(rule.label, rule.url, False, None, str(e))
        return VerifyResult(rule.label, rule.url, True, result.sha256)

    async def verify_rules(
        self, rules: Sequence[PlatformRule], dest_dir: Path
    ) -> List[VerifyResult]:
        """
        Download and verify every rule's artifact concurrently.

        Returns:
            One VerifyResult per rule, in rule order
        """
        results = await asyncio.gather(
            *(self._verify_one(rule, dest_dir) for rule in rules)
        )
        failed = sum(1 for r in results if not r.ok)
        if failed:
            logger.warning(f"{failed} of {len(results)} artifacts failed verification")
        else:
            logger.info(f"All {len(results)} artifacts verified")
        return list(results)
