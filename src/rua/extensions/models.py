"""
Extension Runtime Data Models

Defines the manifest schema, the persisted registry document, and the runtime
records shared by the registry, the loader and the capability gate.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, List, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field, model_validator

if TYPE_CHECKING:
    from .api import ExtensionAPI
    from .modules import ExtensionModule


class ExtensionPermission(str, Enum):
    """Permissions an extension can declare in its manifest"""

    CLIPBOARD = "clipboard"
    NOTIFICATION = "notification"
    STORAGE = "storage"
    HTTP = "http"
    SHELL = "shell"


class ActionMode(str, Enum):
    """How a manifest action is presented"""

    VIEW = "view"
    COMMAND = "command"


VALID_PERMISSIONS: List[str] = [p.value for p in ExtensionPermission]
VALID_ACTION_MODES: List[str] = [m.value for m in ActionMode]

# Current schema version of the persisted registry document
REGISTRY_STATE_VERSION = 1


class ManifestAction(BaseModel):
    """Action definition in a manifest."""

    name: str = Field(description="Action identifier, unique within the extension")
    title: str = Field(description="Display title")
    mode: ActionMode = Field(description="view opens the UI entry, command runs a script")
    keywords: Optional[List[str]] = Field(default=None, description="Search keywords")
    icon: Optional[str] = Field(default=None, description="Icon name or asset path")
    subtitle: Optional[str] = Field(default=None, description="Subtitle")
    shortcut: Optional[List[str]] = Field(default=None, description="Keyboard shortcut")
    script: Optional[str] = Field(default=None, description="Script for command mode")


class UIConfig(BaseModel):
    """UI entry configuration for view actions."""

    entry: str = Field(description="Entry file for view mode actions")
    width: Optional[int] = Field(default=None, description="Window width")
    height: Optional[int] = Field(default=None, description="Window height")


class RuaSection(BaseModel):
    """Host-specific section of the manifest."""

    engine_version: str = Field(alias="engineVersion", description="Required engine version")
    ui: Optional[UIConfig] = Field(default=None)
    init: Optional[str] = Field(default=None, description="Initialization module path")
    actions: List[ManifestAction] = Field(description="Actions contributed by the extension")

    model_config = ConfigDict(populate_by_name=True)


class ExtensionManifest(BaseModel):
    """Typed manifest.json content. Built only from validated data."""

    id: str = Field(description="Extension id: 'author.name' or 'name'")
    name: str = Field(description="Display name")
    version: str = Field(description="Extension version")
    rua: RuaSection
    description: Optional[str] = None
    author: Optional[str] = None
    homepage: Optional[str] = None
    repository: Optional[str] = None
    keywords: Optional[List[str]] = None
    icon: Optional[str] = None
    permissions: List[ExtensionPermission] = Field(default_factory=list)
    dependencies: Optional[Dict[str, str]] = None

    def has_permission(self, permission: ExtensionPermission) -> bool:
        """Check if the manifest declares a permission"""
        return permission in self.permissions

    def to_dict(self) -> Dict[str, Any]:
        """Wire form with camelCase keys and unset optionals omitted"""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class ExtensionState(BaseModel):
    """Persisted per-extension state (one entry of registry.json)."""

    id: str
    enabled: bool = True
    installed_at: str = Field(alias="installedAt", description="ISO-8601 timestamp")
    updated_at: str = Field(alias="updatedAt", description="ISO-8601 timestamp")
    version: str
    settings: Optional[Dict[str, Any]] = None

    model_config = ConfigDict(populate_by_name=True)


class RegistryState(BaseModel):
    """Persisted registry document."""

    version: int = REGISTRY_STATE_VERSION
    extensions: Dict[str, ExtensionState] = Field(default_factory=dict)

    @model_validator(mode="after")
    def check_keys_match_ids(self) -> "RegistryState":
        for key, state in self.extensions.items():
            if key != state.id:
                raise ValueError(
                    f"Registry key '{key}' does not match extension id '{state.id}'"
                )
        return self

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


@dataclass
class ExtensionInfo:
    """Installed extension as seen by the host, rebuilt at registry startup"""

    manifest: ExtensionManifest
    enabled: bool
    loaded: bool = False
    path: str = ""
    actions: List[str] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def id(self) -> str:
        return self.manifest.id


@dataclass
class ManifestDerivedAction:
    """Action created from a manifest definition at load time"""

    id: str
    title: str
    mode: ActionMode
    extension_id: str
    action_name: str
    keywords: List[str] = field(default_factory=list)
    icon: Optional[str] = None
    subtitle: Optional[str] = None
    shortcut: Optional[List[str]] = None
    ui_entry: Optional[str] = None
    script: Optional[str] = None


@dataclass
class LoadedExtension:
    """An activated extension, owned by the loader"""

    manifest: ExtensionManifest
    module: Optional["ExtensionModule"]
    actions: List[ManifestDerivedAction]
    api: "ExtensionAPI"


@dataclass
class LoadResult:
    """Outcome of ExtensionLoader.load()"""

    success: bool
    extension: Optional[LoadedExtension] = None
    error: Optional[Exception] = None
    timed_out: bool = False


@dataclass
class ExtensionAuditLog:
    """Audit log entry for a capability call"""

    id: UUID = field(default_factory=uuid4)
    extension_id: str = ""
    capability: str = ""
    method: str = ""
    details: Dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    success: bool = True
    error_message: Optional[str] = None
