"""
Release Download

Fetches pinned release archives over HTTPS and unpacks them.
"""

import asyncio
import logging
import tarfile
import zipfile
from pathlib import Path
from typing import Optional

import aiofiles
import aiohttp

from .errors import DownloadError

logger = logging.getLogger(__name__)

CHUNK_SIZE = 64 * 1024


class ReleaseDownloader:
    """Downloads release archives with a shared HTTP session."""

    def __init__(self, timeout: int = 300, chunk_size: int = CHUNK_SIZE):
        self.timeout = timeout
        self.chunk_size = chunk_size
        self.session: Optional[aiohttp.ClientSession] = None

    async def __aenter__(self):
        self.session = aiohttp.ClientSession(
            timeout=aiohttp.ClientTimeout(total=self.timeout),
        )
        return self

    async def __aexit__(self, exc_type, exc, tb):
        if self.session:
            await self.session.close()
            self.session = None

    async def download_file(self, url: str, destination: Path) -> Path:
        """
        Stream a URL to a local file.

        Args:
            url: Archive URL (redirects are followed)
            destination: File to write

        Returns:
            The destination path

        Raises:
            DownloadError: On a non-success HTTP status, a transport error or a timeout
        """
        if self.session is None:
            raise RuntimeError("ReleaseDownloader must be used as an async context manager")

        logger.info(f"⬇️  Downloading {url}")
        destination.parent.mkdir(parents=True, exist_ok=True)

        try:
            async with self.session.get(url) as resp:
                if resp.status != 200:
                    raise DownloadError(f"Failed to download {url}: HTTP {resp.status}")

                size = 0
                async with aiofiles.open(destination, "wb") as f:
                    async for chunk in resp.content.iter_chunked(self.chunk_size):
                        await f.write(chunk)
                        size += len(chunk)
        except asyncio.TimeoutError as e:
            raise DownloadError(f"Timed out downloading {url}") from e
        except aiohttp.ClientError as e:
            raise DownloadError(f"Failed to download {url}: {e}") from e

        logger.info(f"   Saved {size} bytes to {destination}")
        return destination


def _check_member_path(target_dir: Path, name: str) -> None:
    resolved = (target_dir / name).resolve()
    if resolved != target_dir and target_dir not in resolved.parents:
        raise DownloadError(f"Archive member escapes extraction directory: {name}")


def extract_archive(archive: Path, target_dir: Path) -> Path:
    """Extract a .tar.gz/.tgz or .zip archive into target_dir"""
    target_dir.mkdir(parents=True, exist_ok=True)
    target_dir = target_dir.resolve()
    name = archive.name.lower()

    try:
        if name.endswith((".tar.gz", ".tgz")):
            with tarfile.open(archive, "r:gz") as tar:
                for member in tar.getmembers():
                    _check_member_path(target_dir, member.name)
                    if member.issym() or member.islnk():
                        raise DownloadError(f"Refusing to extract link from archive: {member.name}")
                tar.extractall(target_dir)
        elif name.endswith(".zip"):
            with zipfile.ZipFile(archive, "r") as zipf:
                for member_name in zipf.namelist():
                    _check_member_path(target_dir, member_name)
                zipf.extractall(target_dir)
        else:
            raise DownloadError(f"Unsupported archive format: {archive.name}")
    except (tarfile.TarError, zipfile.BadZipFile) as e:
        raise DownloadError(f"Failed to extract {archive.name}: {e}") from e

    logger.info(f"📦 Extracted {archive.name}")
    return target_dir


def find_member(root: Path, relative: str) -> Path:
    """
    Locate an extracted file.

    Release archives sometimes wrap their contents in a versioned top-level
    folder, so one directory level below root is searched as well.
    """
    candidate = root / relative
    if candidate.is_file():
        return candidate

    for child in sorted(root.iterdir()):
        if child.is_dir():
            candidate = child / relative
            if candidate.is_file():
                return candidate

    raise DownloadError(f"{relative} not found in extracted archive")
