"""Fetching of remote build inputs.

This module handles:
- Streaming downloads of the BusyBox binary and the kernel package
- Optional SHA-256 verification of downloads
- Extraction of .deb packages with dpkg-deb
"""

from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

import httpx

from linux_imagegen.errors import ImageGenError, NetworkFetchError

if TYPE_CHECKING:
    from linux_imagegen.runner import CommandRunner

logger = logging.getLogger(__name__)

# Timeout for downloads (seconds)
DOWNLOAD_TIMEOUT = 600

# Chunk size for downloads (bytes)
DOWNLOAD_CHUNK_SIZE = 64 * 1024  # 64 KB

USER_AGENT = "linux-imagegen"


@dataclass
class DownloadResult:
    """Result of a download."""

    path: Path
    checksum: str
    size_bytes: int


def create_client(timeout: float = DOWNLOAD_TIMEOUT) -> httpx.Client:
    """Create the HTTP client used for all downloads of a build.

    Raises:
        ImageGenError: If the environment holds an unusable proxy setting.
    """
    try:
        return httpx.Client(
            follow_redirects=True,
            timeout=timeout,
            headers={"User-Agent": USER_AGENT},
        )
    except ValueError as e:
        raise ImageGenError(
            f"Failed to create HTTP client: {e}", code="http_client_error"
        ) from e


def download_file(
    client: httpx.Client,
    url: str,
    dest_path: Path,
    expected_checksum: str | None = None,
    timeout: float = DOWNLOAD_TIMEOUT,
    chunk_size: int = DOWNLOAD_CHUNK_SIZE,
) -> DownloadResult:
    """Download a file with optional checksum verification.

    A partially written file is removed when the download fails.

    Args:
        client: HTTPX client instance.
        url: URL to download from.
        dest_path: Destination path for the downloaded file.
        expected_checksum: Expected SHA256 checksum (optional).
        timeout: Download timeout in seconds.
        chunk_size: Size of chunks to download.

    Returns:
        DownloadResult with path, checksum, and size.

    Raises:
        NetworkFetchError: If the download fails or the checksum mismatches.
    """
    logger.debug("Downloading %s to %s", url, dest_path)
    dest_path.parent.mkdir(parents=True, exist_ok=True)

    try:
        with client.stream("GET", url, timeout=timeout) as response:
            response.raise_for_status()

            total_bytes = 0
            sha256 = hashlib.sha256()

            with dest_path.open("wb") as f:
                for chunk in response.iter_bytes(chunk_size):
                    f.write(chunk)
                    sha256.update(chunk)
                    total_bytes += len(chunk)

    except httpx.HTTPStatusError as e:
        dest_path.unlink(missing_ok=True)
        raise NetworkFetchError(
            f"HTTP error downloading {url}: "
            f"{e.response.status_code} {e.response.reason_phrase}",
            url=url,
            code="http_error",
        ) from e
    except httpx.TimeoutException as e:
        dest_path.unlink(missing_ok=True)
        raise NetworkFetchError(
            f"Timeout downloading {url}",
            url=url,
            code="timeout",
        ) from e
    except httpx.RequestError as e:
        dest_path.unlink(missing_ok=True)
        raise NetworkFetchError(
            f"Network error downloading {url}: {e}",
            url=url,
            code="network_error",
        ) from e

    computed_checksum = sha256.hexdigest()
    if expected_checksum and computed_checksum != expected_checksum.lower():
        dest_path.unlink(missing_ok=True)
        raise NetworkFetchError(
            f"Checksum mismatch for {url}: "
            f"expected {expected_checksum}, got {computed_checksum}",
            url=url,
            code="checksum_mismatch",
        )

    logger.debug(
        "Downloaded %s (%d bytes, checksum: %s)",
        dest_path.name,
        total_bytes,
        computed_checksum[:16] + "...",
    )

    return DownloadResult(
        path=dest_path,
        checksum=computed_checksum,
        size_bytes=total_bytes,
    )


def extract_deb(runner: CommandRunner, package: Path, dest_dir: Path) -> Path:
    """Extract the filesystem tree of a .deb package.

    Args:
        runner: Command runner.
        package: Path to the .deb file.
        dest_dir: Directory to extract into.

    Returns:
        The extraction directory.

    Raises:
        ExternalToolError: If dpkg-deb fails.
    """
    logger.debug("Extracting %s to %s", package.name, dest_dir)
    dest_dir.mkdir(parents=True, exist_ok=True)
    runner.run(["dpkg-deb", "-x", package, dest_dir])
    return dest_dir


__all__ = [
    "DOWNLOAD_CHUNK_SIZE",
    "DOWNLOAD_TIMEOUT",
    "DownloadResult",
    "create_client",
    "download_file",
    "extract_deb",
]
