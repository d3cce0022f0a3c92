"""
Pytest configuration and shared fixtures for Rua tests.
"""

import asyncio
import io
import json
import tempfile
import zipfile
from pathlib import Path
from types import SimpleNamespace
from typing import Any, Callable, Dict, Generator, List, Optional

import pytest

from rua.core import config as config_module
from rua.core.config import RuaConfig
from rua.extensions.api import (
    ClipboardPlatform,
    HttpPlatform,
    HttpResponse,
    NotificationOptions,
    NotificationPlatform,
    PlatformAPIs,
    ShellPlatform,
    ShellResult,
    StoragePlatform,
)
from rua.extensions.modules import ModuleLoader
from rua.extensions.storage import FileRegistryStorage


class FakeClipboard(ClipboardPlatform):
    def __init__(self, text: str = ""):
        self.text = text

    async def read(self) -> str:
        return self.text

    async def write(self, text: str) -> None:
        self.text = text


class FakeNotification(NotificationPlatform):
    def __init__(self):
        self.shown: List[NotificationOptions] = []

    async def show(self, options: NotificationOptions) -> None:
        self.shown.append(options)


class MemoryStorage(StoragePlatform):
    """In-memory namespaced storage"""

    def __init__(self):
        self.data: Dict[str, Dict[str, Any]] = {}

    async def get(self, namespace: str, key: str) -> Any:
        return self.data.get(namespace, {}).get(key)

    async def set(self, namespace: str, key: str, value: Any) -> None:
        self.data.setdefault(namespace, {})[key] = value

    async def remove(self, namespace: str, key: str) -> None:
        self.data.get(namespace, {}).pop(key, None)

    async def keys(self, namespace: str) -> List[str]:
        return list(self.data.get(namespace, {}))

    async def clear(self, namespace: str) -> None:
        self.data.pop(namespace, None)


class FakeHttp(HttpPlatform):
    def __init__(self):
        self.requests: List[tuple] = []

    async def request(self, method, url, headers=None, body=None) -> HttpResponse:
        self.requests.append((method, url, headers, body))
        return HttpResponse(status=200, headers={"content-type": "text/plain"}, body="ok")


class FakeShell(ShellPlatform):
    def __init__(self):
        self.commands: List[tuple] = []

    async def execute(self, program: str, args: List[str]) -> ShellResult:
        self.commands.append((program, args))
        return ShellResult(success=True, stdout=" ".join([program] + args), exit_code=0)


class FakeModuleLoader(ModuleLoader):
    """
    Module loader that returns pre-registered module objects.

    Modules are registered by the init path relative to any extension directory,
    so tests do not need to write Python files.
    """

    def __init__(self):
        self.modules: Dict[str, Any] = {}
        self.load_calls: List[Path] = []
        self.released: List[Any] = []
        self.delay_s = 0.0

    def register(self, init_name: str, module: Any) -> None:
        self.modules[init_name] = module

    async def load(self, path) -> Any:
        path = Path(path)
        self.load_calls.append(path)
        if self.delay_s:
            await asyncio.sleep(self.delay_s)
        module = self.modules.get(path.name)
        if module is None:
            raise ModuleNotFoundError(f"No module registered for {path.name}")
        if isinstance(module, Exception):
            raise module
        return module

    def release(self, module: Any) -> None:
        self.released.append(module)


def make_module(**attrs: Any) -> SimpleNamespace:
    """Build a module-like object with the given attributes"""
    return SimpleNamespace(**attrs)


def build_manifest(
    extension_id: str = "acme.hello",
    version: str = "1.0.0",
    actions: Optional[List[Dict[str, Any]]] = None,
    permissions: Optional[List[str]] = None,
    init: Optional[str] = None,
    ui_entry: Optional[str] = "index.html",
    **extra: Any,
) -> Dict[str, Any]:
    """Build a valid manifest dictionary"""
    if actions is None:
        actions = [
            {"name": "greet", "title": "Greet", "mode": "view", "keywords": ["hello"]},
            {"name": "run", "title": "Run", "mode": "command", "script": "run.py"},
        ]

    rua: Dict[str, Any] = {"engineVersion": "^0.1.0", "actions": actions}
    if ui_entry is not None:
        rua["ui"] = {"entry": ui_entry}
    if init is not None:
        rua["init"] = init

    manifest: Dict[str, Any] = {
        "id": extension_id,
        "name": extension_id.split(".")[-1].title(),
        "version": version,
        "rua": rua,
    }
    if permissions is not None:
        manifest["permissions"] = permissions
    manifest.update(extra)
    return manifest


def build_archive(
    manifest: Optional[Dict[str, Any]] = None, files: Optional[Dict[str, str]] = None
) -> bytes:
    """Build .rua archive bytes with manifest.json at the root"""
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as zf:
        if manifest is not None:
            zf.writestr("manifest.json", json.dumps(manifest))
        for name, content in (files or {}).items():
            zf.writestr(name, content)
    return buffer.getvalue()


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Provide a temporary directory for tests."""
    with tempfile.TemporaryDirectory() as temp_dir:
        yield Path(temp_dir)


@pytest.fixture
def test_config(temp_dir: Path) -> Generator[RuaConfig, None, None]:
    """Provide a test configuration and install it as the global config."""
    config = RuaConfig(
        environment="test",
        debug=True,
        logging={"level": "DEBUG"},
        extensions={
            "data_dir": str(temp_dir / "data"),
            "load_timeout_ms": 500,
            "shutdown_timeout_ms": 200,
            "http_timeout_s": 5.0,
        },
    )
    previous = config_module._config
    config_module.set_config(config)
    yield config
    config_module._config = previous


@pytest.fixture
def manifest_factory() -> Callable[..., Dict[str, Any]]:
    """Provide a builder for valid manifest dictionaries."""
    return build_manifest


@pytest.fixture
def write_extension(temp_dir: Path) -> Callable[..., Path]:
    """Provide a helper that writes an extension source directory."""

    def _write(
        manifest: Optional[Dict[str, Any]] = None,
        dirname: Optional[str] = None,
        files: Optional[Dict[str, str]] = None,
        raw_manifest: Optional[str] = None,
    ) -> Path:
        manifest = manifest if manifest is not None else build_manifest()
        name = dirname or f"src-{manifest.get('id', 'ext')}"
        extension_dir = temp_dir / "sources" / name
        extension_dir.mkdir(parents=True, exist_ok=True)

        text = raw_manifest if raw_manifest is not None else json.dumps(manifest, indent=2)
        (extension_dir / "manifest.json").write_text(text, encoding="utf-8")
        for filename, content in (files or {}).items():
            target = extension_dir / filename
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(content, encoding="utf-8")
        return extension_dir

    return _write


@pytest.fixture
def registry_storage(temp_dir: Path) -> FileRegistryStorage:
    """Provide file-backed registry storage in a temporary store."""
    return FileRegistryStorage(temp_dir / "store")


@pytest.fixture
def fake_platform() -> PlatformAPIs:
    """Provide platform capabilities backed by in-memory fakes."""
    return PlatformAPIs(
        clipboard=FakeClipboard("host clipboard"),
        notification=FakeNotification(),
        storage=MemoryStorage(),
        http=FakeHttp(),
        shell=FakeShell(),
    )


@pytest.fixture
def module_loader() -> FakeModuleLoader:
    """Provide a module loader serving in-memory modules."""
    return FakeModuleLoader()


@pytest.fixture
def module_factory() -> Callable[..., SimpleNamespace]:
    """Provide a builder for module-like objects."""
    return make_module


@pytest.fixture
def archive_factory() -> Callable[..., bytes]:
    """Provide a builder for .rua archive bytes."""
    return build_archive
