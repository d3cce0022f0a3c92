"""
Tests for registry persistence and the managed extension store.
"""

import json
from pathlib import Path

import pytest

from rua.core.config import RuaConfig
from rua.core.exceptions import StorageError
from rua.extensions.models import REGISTRY_STATE_VERSION, ExtensionState, RegistryState
from rua.extensions.storage import FileRegistryStorage, read_json, write_json_atomic


def make_state(*extension_ids: str) -> RegistryState:
    return RegistryState(
        extensions={
            extension_id: ExtensionState(
                id=extension_id,
                enabled=True,
                installed_at="2026-01-01T00:00:00+00:00",
                updated_at="2026-01-01T00:00:00+00:00",
                version="1.0.0",
            )
            for extension_id in extension_ids
        }
    )


class TestJsonFiles:
    def test_atomic_write_then_read(self, temp_dir: Path):
        path = temp_dir / "nested" / "data.json"

        write_json_atomic(path, {"answer": 42})

        assert read_json(path) == {"answer": 42}
        assert [p.name for p in path.parent.iterdir()] == ["data.json"]

    def test_unserializable_data_leaves_no_temp_file(self, temp_dir: Path):
        path = temp_dir / "data.json"

        with pytest.raises(StorageError):
            write_json_atomic(path, {"bad": object()})

        assert list(temp_dir.iterdir()) == []

    def test_read_errors_map_to_storage_error(self, temp_dir: Path):
        broken = temp_dir / "broken.json"
        broken.write_text("{", encoding="utf-8")

        with pytest.raises(StorageError):
            read_json(temp_dir / "missing.json")
        with pytest.raises(StorageError):
            read_json(broken)


class TestFileRegistryStorage:
    @pytest.mark.asyncio
    async def test_load_without_document_returns_none(
        self, registry_storage: FileRegistryStorage
    ):
        assert await registry_storage.load() is None

    @pytest.mark.asyncio
    async def test_save_and_load(self, registry_storage: FileRegistryStorage):
        state = make_state("acme.hello", "tools")

        await registry_storage.save(state)
        loaded = await registry_storage.load()

        assert loaded == state
        document = json.loads(registry_storage.registry_path.read_text(encoding="utf-8"))
        assert document["version"] == REGISTRY_STATE_VERSION
        assert document["extensions"]["acme.hello"]["installedAt"] == "2026-01-01T00:00:00+00:00"

    @pytest.mark.asyncio
    async def test_older_schema_is_migrated(self, registry_storage: FileRegistryStorage):
        document = make_state("acme.hello").to_dict()
        document["version"] = 0
        write_json_atomic(registry_storage.registry_path, document)

        loaded = await registry_storage.load()

        assert loaded.version == REGISTRY_STATE_VERSION
        assert "acme.hello" in loaded.extensions

    @pytest.mark.asyncio
    async def test_newer_schema_is_rejected(self, registry_storage: FileRegistryStorage):
        document = make_state().to_dict()
        document["version"] = REGISTRY_STATE_VERSION + 1
        write_json_atomic(registry_storage.registry_path, document)

        with pytest.raises(StorageError, match="Unsupported registry schema version"):
            await registry_storage.load()

    @pytest.mark.asyncio
    async def test_mismatched_key_is_rejected(self, registry_storage: FileRegistryStorage):
        document = make_state("acme.hello").to_dict()
        document["extensions"]["acme.other"] = document["extensions"].pop("acme.hello")
        write_json_atomic(registry_storage.registry_path, document)

        with pytest.raises(StorageError):
            await registry_storage.load()

    @pytest.mark.asyncio
    async def test_copy_extension_replaces_previous_payload(
        self, registry_storage: FileRegistryStorage, write_extension
    ):
        source = write_extension(files={"old.txt": "old"})
        await registry_storage.copy_extension(source, "acme.hello")

        (source / "old.txt").unlink()
        (source / "new.txt").write_text("new", encoding="utf-8")
        installed = Path(await registry_storage.copy_extension(source, "acme.hello"))

        assert installed == registry_storage.get_extension_path("acme.hello")
        assert (installed / "new.txt").exists()
        assert not (installed / "old.txt").exists()
        leftovers = [p.name for p in registry_storage.extensions_dir.iterdir()]
        assert leftovers == ["acme.hello"]

    @pytest.mark.asyncio
    async def test_copy_missing_source_fails(
        self, registry_storage: FileRegistryStorage, temp_dir: Path
    ):
        with pytest.raises(StorageError):
            await registry_storage.copy_extension(temp_dir / "nowhere", "acme.hello")

    @pytest.mark.asyncio
    async def test_registry_document_name_is_reserved(
        self, registry_storage: FileRegistryStorage, write_extension
    ):
        await registry_storage.save(make_state("acme.hello"))
        source = write_extension()

        with pytest.raises(StorageError, match="collides with the registry document"):
            await registry_storage.copy_extension(source, "registry.json")
        with pytest.raises(StorageError, match="collides with the registry document"):
            await registry_storage.remove_extension("registry.json")

        assert registry_storage.registry_path.is_file()
        assert list((await registry_storage.load()).extensions) == ["acme.hello"]

    @pytest.mark.asyncio
    async def test_registry_document_elsewhere_frees_the_name(
        self, temp_dir: Path, write_extension
    ):
        storage = FileRegistryStorage(temp_dir / "store", temp_dir / "state" / "registry.json")

        installed = Path(await storage.copy_extension(write_extension(), "registry.json"))

        assert installed == temp_dir / "store" / "registry.json"
        assert installed.is_dir()

    @pytest.mark.asyncio
    async def test_remove_extension(self, registry_storage: FileRegistryStorage, write_extension):
        source = write_extension()
        installed = Path(await registry_storage.copy_extension(source, "acme.hello"))

        await registry_storage.remove_extension("acme.hello")
        await registry_storage.remove_extension("acme.hello")

        assert not installed.exists()

    @pytest.mark.asyncio
    async def test_read_manifest(self, registry_storage: FileRegistryStorage, write_extension):
        source = write_extension(raw_manifest='{"id": "raw"}')

        assert await registry_storage.read_manifest(source) == '{"id": "raw"}'

        with pytest.raises(StorageError, match="manifest.json not found"):
            await registry_storage.read_manifest(source.parent / "missing")

    def test_default_paths_come_from_config(self, test_config: RuaConfig):
        storage = FileRegistryStorage()

        assert storage.extensions_dir == test_config.extensions.get_extensions_dir()
        assert storage.registry_path == test_config.extensions.get_registry_path()
