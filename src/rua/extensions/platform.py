"""
Platform Capabilities

Concrete host implementations for the http and storage capabilities. Hosts pass
these (or their own implementations) to the CapabilityGate via PlatformAPIs.
"""

import asyncio
import re
from pathlib import Path
from typing import Any, Dict, List, Optional

import aiohttp

from ..core.config import get_config
from ..core.exceptions import CapabilityError, StorageError
from ..core.logging import get_logger
from .api import HttpPlatform, HttpResponse, StoragePlatform
from .storage import read_json, write_json_atomic

logger = get_logger(__name__)

STORAGE_FILE = "storage.json"

_NAMESPACE_PATTERN = re.compile(r"^[a-z0-9-]+(\.[a-z0-9-]+)?$")


class AiohttpHttpPlatform(HttpPlatform):
    """
    HTTP capability backed by a shared aiohttp client session.

    The session is created on first use and must be closed with ``close()``.
    """

    def __init__(self, timeout_s: Optional[float] = None):
        if timeout_s is None:
            timeout_s = get_config().extensions.http_timeout_s
        self.timeout_s = timeout_s
        self._session: Optional[aiohttp.ClientSession] = None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout_s)
            )
        return self._session

    async def request(
        self,
        method: str,
        url: str,
        headers: Optional[Dict[str, str]] = None,
        body: Optional[str] = None,
    ) -> HttpResponse:
        session = self._get_session()

        try:
            async with session.request(
                method=method.upper(),
                url=url,
                headers=headers,
                data=body,
                allow_redirects=True,
            ) as response:
                text = await response.text()
                return HttpResponse(
                    status=response.status,
                    headers=dict(response.headers),
                    body=text,
                )

        except asyncio.TimeoutError:
            raise CapabilityError(
                f"http.request: request to {url} timed out after {self.timeout_s:g}s",
                "http",
                "request",
            )
        except aiohttp.ClientError as e:
            raise CapabilityError(f"http.request: request to {url} failed: {e}", "http", "request")

    async def close(self) -> None:
        if self._session is not None:
            await self._session.close()
            self._session = None


class JSONFileStoragePlatform(StoragePlatform):
    """
    Namespaced key-value storage in JSON files.

    Layout::

        <base_dir>/<namespace>/storage.json

    Values must be JSON serializable. Writes are atomic per namespace file.
    """

    def __init__(self, base_dir: Optional[Path] = None):
        if base_dir is None:
            base_dir = get_config().extensions.get_storage_dir()
        self.base_dir = Path(base_dir)
        self._lock = asyncio.Lock()

    def _path(self, namespace: str) -> Path:
        if not _NAMESPACE_PATTERN.fullmatch(namespace):
            raise StorageError(f"Invalid storage namespace: {namespace!r}")
        return self.base_dir / namespace / STORAGE_FILE

    def _read(self, path: Path) -> Dict[str, Any]:
        if not path.exists():
            return {}
        data = read_json(path)
        if not isinstance(data, dict):
            raise StorageError(f"Storage file must contain an object: {path}")
        return data

    async def _load(self, namespace: str) -> Dict[str, Any]:
        return await asyncio.to_thread(self._read, self._path(namespace))

    async def _store(self, namespace: str, data: Dict[str, Any]) -> None:
        await asyncio.to_thread(write_json_atomic, self._path(namespace), data)

    async def get(self, namespace: str, key: str) -> Any:
        async with self._lock:
            data = await self._load(namespace)
        return data.get(key)

    async def set(self, namespace: str, key: str, value: Any) -> None:
        async with self._lock:
            data = await self._load(namespace)
            data[key] = value
            await self._store(namespace, data)

    async def remove(self, namespace: str, key: str) -> None:
        async with self._lock:
            data = await self._load(namespace)
            if key in data:
                del data[key]
                await self._store(namespace, data)

    async def keys(self, namespace: str) -> List[str]:
        async with self._lock:
            data = await self._load(namespace)
        return list(data.keys())

    async def clear(self, namespace: str) -> None:
        async with self._lock:
            path = self._path(namespace)
            if path.exists():
                await self._store(namespace, {})
        logger.debug(f"Cleared storage for {namespace}")
