"""
Extension Sources

Install sources other than a plain directory: ``.rua`` archives and
``github:owner/repo[@version]`` release downloads. Both end as an extracted
directory that the registry installs through its usual copy.
"""

import asyncio
import io
import re
import zipfile
from pathlib import Path, PurePosixPath
from typing import Any, Dict, List, Optional, Tuple, Union

import aiohttp

from ..core.config import get_config
from ..core.exceptions import StorageError
from ..core.logging import get_logger
from .storage import MANIFEST_FILE

logger = get_logger(__name__)

GITHUB_PREFIX = "github:"
ARCHIVE_SUFFIX = ".rua"

_GITHUB_PART = re.compile(r"[A-Za-z0-9_.-]+")


def parse_github_source(source: str) -> Optional[Tuple[str, str, Optional[str]]]:
    """
    Parse ``github:owner/repo`` or ``github:owner/repo@version``.

    Returns:
        (owner, repo, version) with version None for the latest release, or None
        if the source is not a GitHub reference
    """
    if not source.startswith(GITHUB_PREFIX):
        return None

    reference = source[len(GITHUB_PREFIX):]
    version: Optional[str] = None
    if "@" in reference:
        reference, version = reference.split("@", 1)
        if not version:
            return None

    parts = reference.split("/")
    if len(parts) != 2 or not all(_GITHUB_PART.fullmatch(part) for part in parts):
        return None
    if any(part in (".", "..") for part in parts):
        return None

    return parts[0], parts[1], version


def is_archive(path: Union[str, Path]) -> bool:
    """True if the path names a ``.rua`` archive file"""
    path = Path(path)
    return path.suffix == ARCHIVE_SUFFIX and path.is_file()


def _safe_member_path(name: str) -> Optional[PurePosixPath]:
    member = PurePosixPath(name.replace("\\", "/"))
    if member.is_absolute() or ".." in member.parts:
        return None
    if member.parts and ":" in member.parts[0]:
        return None
    return member


def extract_archive(archive: Union[bytes, str, Path], destination: Path) -> Path:
    """
    Extract a ``.rua`` archive (a zip with manifest.json at its root).

    Entries whose names would land outside ``destination`` are skipped.

    Args:
        archive: Archive bytes or a path to the archive file
        destination: Directory to extract into (created if missing)

    Returns:
        The destination directory

    Raises:
        StorageError: If the archive is unreadable or has no root manifest.json
    """
    source = io.BytesIO(archive) if isinstance(archive, bytes) else Path(archive)

    try:
        with zipfile.ZipFile(source, "r") as zf:
            if MANIFEST_FILE not in zf.namelist():
                raise StorageError(f"Archive has no {MANIFEST_FILE} at its root")

            destination.mkdir(parents=True, exist_ok=True)
            skipped: List[str] = []
            for info in zf.infolist():
                member = _safe_member_path(info.filename)
                if member is None:
                    skipped.append(info.filename)
                    continue

                target = destination.joinpath(*member.parts)
                if info.is_dir():
                    target.mkdir(parents=True, exist_ok=True)
                    continue
                target.parent.mkdir(parents=True, exist_ok=True)
                with zf.open(info) as src, open(target, "wb") as dst:
                    dst.write(src.read())

    except zipfile.BadZipFile as e:
        raise StorageError(f"Invalid extension archive: {e}")
    except OSError as e:
        raise StorageError(f"Failed to extract extension archive: {e}")

    if skipped:
        logger.warning(f"Skipped {len(skipped)} unsafe archive entries: {skipped}")
    return destination


class GitHubReleaseFetcher:
    """
    Downloads the ``.rua`` asset of a GitHub release.

    A new client session is opened per fetch; installs are rare.
    """

    def __init__(self, timeout_s: Optional[float] = None, api_url: Optional[str] = None):
        extensions_config = get_config().extensions
        self.timeout_s = timeout_s if timeout_s is not None else extensions_config.http_timeout_s
        self.api_url = (api_url or extensions_config.github_api_url).rstrip("/")

    def release_url(self, owner: str, repo: str, version: Optional[str]) -> str:
        if version:
            return f"{self.api_url}/repos/{owner}/{repo}/releases/tags/{version}"
        return f"{self.api_url}/repos/{owner}/{repo}/releases/latest"

    async def fetch_archive(self, owner: str, repo: str, version: Optional[str] = None) -> bytes:
        """
        Fetch the release archive bytes.

        Raises:
            StorageError: If the release or its ``.rua`` asset cannot be downloaded
        """
        url = self.release_url(owner, repo, version)
        timeout = aiohttp.ClientTimeout(total=self.timeout_s)
        headers = {"User-Agent": "rua", "Accept": "application/vnd.github+json"}

        try:
            async with aiohttp.ClientSession(timeout=timeout, headers=headers) as session:
                release = await self._get_json(session, url)
                asset_url = self._find_asset(release, owner, repo)
                tag = release.get("tag_name", "latest")
                logger.info(f"Downloading {owner}/{repo} {tag} from {asset_url}")
                async with session.get(asset_url) as response:
                    if response.status != 200:
                        raise StorageError(
                            f"Failed to download release asset: HTTP {response.status}",
                            {"url": asset_url},
                        )
                    return await response.read()

        except asyncio.TimeoutError:
            raise StorageError(
                f"Timed out fetching {owner}/{repo} after {self.timeout_s:g}s"
            )
        except aiohttp.ClientError as e:
            raise StorageError(f"Failed to fetch {owner}/{repo}: {e}")

    @staticmethod
    async def _get_json(session: aiohttp.ClientSession, url: str) -> Dict[str, Any]:
        async with session.get(url) as response:
            if response.status == 404:
                raise StorageError(f"Release not found: {url}")
            if response.status != 200:
                raise StorageError(f"GitHub API returned HTTP {response.status}", {"url": url})
            data = await response.json(content_type=None)
        if not isinstance(data, dict):
            raise StorageError(f"Unexpected GitHub API response from {url}")
        return data

    @staticmethod
    def _find_asset(release: Dict[str, Any], owner: str, repo: str) -> str:
        for asset in release.get("assets") or []:
            name = asset.get("name", "")
            if name.endswith(ARCHIVE_SUFFIX) and asset.get("browser_download_url"):
                return asset["browser_download_url"]
        raise StorageError(f"No {ARCHIVE_SUFFIX} asset in release of {owner}/{repo}")
