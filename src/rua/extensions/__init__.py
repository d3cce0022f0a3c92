"""
Rua Extension Runtime

Validates, installs, loads and sandboxes third-party extensions. Extension code
only ever sees the permission-gated API object built for it by the capability gate.
"""

from .api import (
    AuditLogger,
    CapabilityStatus,
    ExtensionAction,
    ExtensionAPI,
    InMemoryActionStore,
    PlatformAPIs,
)
from .bridge import RpcBridge, bridge_platform_apis, route_host_events
from .events import RegistryEvent
from .gate import CapabilityGate
from .loader import ExtensionLoader, derive_actions
from .manager import ExtensionManager
from .manifest import ValidationResult, parse_manifest, validate_manifest
from .models import (
    ExtensionInfo,
    ExtensionManifest,
    ExtensionPermission,
    LoadedExtension,
    LoadResult,
)
from .modules import ModuleLoader, PythonModuleLoader
from .registry import ExtensionRegistry
from .storage import FileRegistryStorage, RegistryStorage

__all__ = [
    "AuditLogger",
    "CapabilityStatus",
    "ExtensionAction",
    "ExtensionAPI",
    "InMemoryActionStore",
    "PlatformAPIs",
    "RpcBridge",
    "bridge_platform_apis",
    "route_host_events",
    "RegistryEvent",
    "CapabilityGate",
    "ExtensionLoader",
    "derive_actions",
    "ExtensionManager",
    "ValidationResult",
    "parse_manifest",
    "validate_manifest",
    "ExtensionInfo",
    "ExtensionManifest",
    "ExtensionPermission",
    "LoadedExtension",
    "LoadResult",
    "ModuleLoader",
    "PythonModuleLoader",
    "ExtensionRegistry",
    "FileRegistryStorage",
    "RegistryStorage",
]
