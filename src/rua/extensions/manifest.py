"""
Extension Manifest Validation

Turns untyped manifest data into a typed ExtensionManifest or a list of findings,
and formats manifests for display. Nothing in this module raises on bad input.
"""

import json
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union

from pydantic import ValidationError as PydanticValidationError

from ..core.exceptions import ManifestValidationError
from .models import (
    VALID_ACTION_MODES,
    VALID_PERMISSIONS,
    ExtensionManifest,
    ManifestAction,
)

EXTENSION_ID_PATTERN = re.compile(r"^[a-z0-9-]+(\.[a-z0-9-]+)?$")
ACTION_NAME_PATTERN = re.compile(r"^[a-z0-9-]+$")


@dataclass
class ValidationResult:
    """Result of validating manifest data"""

    valid: bool
    errors: List[ManifestValidationError] = field(default_factory=list)
    manifest: Optional[ExtensionManifest] = None

    def summary(self) -> str:
        """All error messages joined into one line"""
        return "; ".join(e.message for e in self.errors)


def _is_string(value: Any) -> bool:
    return isinstance(value, str) and value != ""


def _check_string_list(
    owner: Dict[str, Any], key: str, path: str, errors: List[ManifestValidationError]
) -> None:
    if key not in owner:
        return
    value = owner[key]
    if not isinstance(value, list):
        errors.append(
            ManifestValidationError(f"{path} must be an array", path, value)
        )
    elif not all(isinstance(item, str) for item in value):
        errors.append(
            ManifestValidationError(f"{path} must contain only strings", path, value)
        )


def _check_optional_string(
    owner: Dict[str, Any], key: str, path: str, errors: List[ManifestValidationError]
) -> None:
    if key in owner and not isinstance(owner[key], str):
        errors.append(
            ManifestValidationError(f"{path} must be a string", path, owner[key])
        )


def _validate_action(action: Any, index: int) -> List[ManifestValidationError]:
    errors: List[ManifestValidationError] = []
    prefix = f"rua.actions[{index}]"

    if not isinstance(action, dict):
        errors.append(
            ManifestValidationError(f"{prefix} must be an object", prefix, action)
        )
        return errors

    name = action.get("name")
    if not _is_string(name):
        errors.append(
            ManifestValidationError(
                f"{prefix}.name is required and must be a string", f"{prefix}.name", name
            )
        )
    elif not ACTION_NAME_PATTERN.fullmatch(name):
        errors.append(
            ManifestValidationError(
                f"{prefix}.name must contain only lowercase letters, numbers, and hyphens",
                f"{prefix}.name",
                name,
            )
        )

    title = action.get("title")
    if not _is_string(title):
        errors.append(
            ManifestValidationError(
                f"{prefix}.title is required and must be a string",
                f"{prefix}.title",
                title,
            )
        )

    mode = action.get("mode")
    if not _is_string(mode):
        errors.append(
            ManifestValidationError(
                f"{prefix}.mode is required and must be a string", f"{prefix}.mode", mode
            )
        )
    elif mode not in VALID_ACTION_MODES:
        errors.append(
            ManifestValidationError(
                f"{prefix}.mode must be one of: {', '.join(VALID_ACTION_MODES)}",
                f"{prefix}.mode",
                mode,
            )
        )

    _check_string_list(action, "keywords", f"{prefix}.keywords", errors)
    _check_string_list(action, "shortcut", f"{prefix}.shortcut", errors)
    _check_optional_string(action, "icon", f"{prefix}.icon", errors)
    _check_optional_string(action, "subtitle", f"{prefix}.subtitle", errors)

    script = action.get("script")
    if mode == "command" and not script:
        errors.append(
            ManifestValidationError(
                f"{prefix}.script is required when mode is 'command'",
                f"{prefix}.script",
                script,
            )
        )
    elif script is not None and not isinstance(script, str):
        errors.append(
            ManifestValidationError(f"{prefix}.script must be a string", f"{prefix}.script", script)
        )

    return errors


def _validate_ui(ui: Any) -> List[ManifestValidationError]:
    errors: List[ManifestValidationError] = []
    if not isinstance(ui, dict):
        errors.append(ManifestValidationError("rua.ui must be an object", "rua.ui", ui))
        return errors

    if not _is_string(ui.get("entry")):
        errors.append(
            ManifestValidationError(
                "rua.ui.entry is required and must be a string",
                "rua.ui.entry",
                ui.get("entry"),
            )
        )

    for dimension in ("width", "height"):
        if dimension not in ui:
            continue
        value = ui[dimension]
        if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
            errors.append(
                ManifestValidationError(
                    f"rua.ui.{dimension} must be a positive integer",
                    f"rua.ui.{dimension}",
                    value,
                )
            )
    return errors


def _validate_rua_config(rua: Any) -> List[ManifestValidationError]:
    errors: List[ManifestValidationError] = []

    if not isinstance(rua, dict):
        errors.append(
            ManifestValidationError(
                "rua config is required and must be an object", "rua", rua
            )
        )
        return errors

    if not _is_string(rua.get("engineVersion")):
        errors.append(
            ManifestValidationError(
                "rua.engineVersion is required and must be a string",
                "rua.engineVersion",
                rua.get("engineVersion"),
            )
        )

    actions = rua.get("actions")
    if not isinstance(actions, list):
        errors.append(
            ManifestValidationError(
                "rua.actions is required and must be an array", "rua.actions", actions
            )
        )
        actions = []
    elif not actions:
        errors.append(
            ManifestValidationError(
                "rua.actions must contain at least one action", "rua.actions", actions
            )
        )
    else:
        for index, action in enumerate(actions):
            errors.extend(_validate_action(action, index))

        seen = set()
        duplicates: List[str] = []
        for action in actions:
            if not isinstance(action, dict) or not isinstance(action.get("name"), str):
                continue
            name = action["name"]
            if name in seen and name not in duplicates:
                duplicates.append(name)
            seen.add(name)
        if duplicates:
            errors.append(
                ManifestValidationError(
                    f"Duplicate action names found: {', '.join(duplicates)}",
                    "rua.actions",
                    duplicates,
                )
            )

    ui = rua.get("ui")
    if "ui" in rua:
        errors.extend(_validate_ui(ui))

    has_view_action = any(
        isinstance(a, dict) and a.get("mode") == "view" for a in actions
    )
    if has_view_action and not (isinstance(ui, dict) and ui.get("entry")):
        errors.append(
            ManifestValidationError(
                'rua.ui.entry is required when actions with mode "view" exist',
                "rua.ui.entry",
                None,
            )
        )

    if "init" in rua and not isinstance(rua["init"], str):
        errors.append(
            ManifestValidationError("rua.init must be a string", "rua.init", rua["init"])
        )

    return errors


def _validate_permissions(manifest: Dict[str, Any]) -> List[ManifestValidationError]:
    errors: List[ManifestValidationError] = []
    if "permissions" not in manifest:
        return errors

    permissions = manifest["permissions"]
    if not isinstance(permissions, list):
        errors.append(
            ManifestValidationError("permissions must be an array", "permissions", permissions)
        )
        return errors

    for index, permission in enumerate(permissions):
        path = f"permissions[{index}]"
        if not isinstance(permission, str):
            errors.append(ManifestValidationError(f"{path} must be a string", path, permission))
        elif permission not in VALID_PERMISSIONS:
            errors.append(
                ManifestValidationError(
                    f"{path} must be one of: {', '.join(VALID_PERMISSIONS)}",
                    path,
                    permission,
                )
            )
    return errors


def _validate_metadata(manifest: Dict[str, Any]) -> List[ManifestValidationError]:
    errors: List[ManifestValidationError] = []

    extension_id = manifest.get("id")
    if not _is_string(extension_id):
        errors.append(
            ManifestValidationError("id is required and must be a string", "id", extension_id)
        )
    elif not EXTENSION_ID_PATTERN.fullmatch(extension_id):
        errors.append(
            ManifestValidationError(
                'id must be in format "author.extension-name" or "extension-name" '
                "(lowercase, numbers, hyphens only)",
                "id",
                extension_id,
            )
        )

    for key in ("name", "version"):
        if not _is_string(manifest.get(key)):
            errors.append(
                ManifestValidationError(
                    f"{key} is required and must be a string", key, manifest.get(key)
                )
            )

    for key in ("description", "author", "homepage", "repository", "icon"):
        _check_optional_string(manifest, key, key, errors)
    _check_string_list(manifest, "keywords", "keywords", errors)

    if "dependencies" in manifest:
        dependencies = manifest["dependencies"]
        if not isinstance(dependencies, dict) or not all(
            isinstance(k, str) and isinstance(v, str) for k, v in dependencies.items()
        ):
            errors.append(
                ManifestValidationError(
                    "dependencies must map package names to version strings",
                    "dependencies",
                    dependencies,
                )
            )

    return errors


def validate_manifest(data: Any) -> ValidationResult:
    """
    Validate raw manifest data.

    Collects every applicable finding rather than stopping at the first one.

    Args:
        data: Raw manifest data, usually decoded JSON

    Returns:
        ValidationResult; ``manifest`` is set only when ``valid`` is True
    """
    if not isinstance(data, dict):
        return ValidationResult(
            valid=False,
            errors=[ManifestValidationError("Manifest must be an object", None, data)],
        )

    errors: List[ManifestValidationError] = []
    errors.extend(_validate_metadata(data))
    errors.extend(_validate_rua_config(data.get("rua")))
    errors.extend(_validate_permissions(data))

    if errors:
        return ValidationResult(valid=False, errors=errors)

    try:
        manifest = ExtensionManifest.model_validate(data)
    except PydanticValidationError as e:
        return ValidationResult(
            valid=False,
            errors=[
                ManifestValidationError(
                    err["msg"],
                    ".".join(str(part) for part in err["loc"]) or None,
                    err.get("input"),
                )
                for err in e.errors()
            ],
        )

    return ValidationResult(valid=True, errors=[], manifest=manifest)


def parse_manifest(text: Union[str, bytes]) -> ValidationResult:
    """
    Decode JSON text and validate it as a manifest.

    Args:
        text: JSON document

    Returns:
        ValidationResult; decode failures become a single finding
    """
    try:
        data = json.loads(text)
    except (ValueError, TypeError) as e:
        return ValidationResult(
            valid=False,
            errors=[ManifestValidationError(f"Invalid JSON: {e}", None, text)],
        )
    return validate_manifest(data)


def serialize_manifest(manifest: ExtensionManifest, pretty: bool = True) -> str:
    """Serialize a manifest to its JSON wire form"""
    return json.dumps(manifest.to_dict(), indent=2 if pretty else None, ensure_ascii=False)


def deserialize_manifest(text: Union[str, bytes]) -> ValidationResult:
    """Alias of parse_manifest, paired with serialize_manifest"""
    return parse_manifest(text)


def _format_action(action: ManifestAction, indent: str = "  ") -> str:
    lines = [f"{indent}• {action.title} ({action.name})", f"{indent}  Mode: {action.mode.value}"]

    if action.keywords:
        lines.append(f"{indent}  Keywords: {', '.join(action.keywords)}")
    if action.subtitle:
        lines.append(f"{indent}  Subtitle: {action.subtitle}")
    if action.shortcut:
        lines.append(f"{indent}  Shortcut: {'+'.join(action.shortcut)}")
    if action.script:
        lines.append(f"{indent}  Script: {action.script}")

    return "\n".join(lines)


def format_manifest(
    manifest: ExtensionManifest,
    include_actions: bool = True,
    include_permissions: bool = True,
    include_dependencies: bool = False,
) -> str:
    """
    Format a manifest for human-readable display.

    Args:
        manifest: Validated manifest
        include_actions: List the contributed actions
        include_permissions: List declared permissions
        include_dependencies: List package dependencies

    Returns:
        Multi-line description
    """
    lines = [
        f"Extension: {manifest.name}",
        f"ID: {manifest.id}",
        f"Version: {manifest.version}",
    ]

    if manifest.description:
        lines.append(f"Description: {manifest.description}")
    if manifest.author:
        lines.append(f"Author: {manifest.author}")
    if manifest.homepage:
        lines.append(f"Homepage: {manifest.homepage}")
    if manifest.repository:
        lines.append(f"Repository: {manifest.repository}")

    lines.append(f"Engine Version: {manifest.rua.engine_version}")
    if manifest.rua.ui:
        lines.append(f"UI Entry: {manifest.rua.ui.entry}")
    if manifest.rua.init:
        lines.append(f"Init Script: {manifest.rua.init}")

    if include_permissions and manifest.permissions:
        lines.append("")
        lines.append("Permissions:")
        lines.extend(f"  • {permission.value}" for permission in manifest.permissions)

    if include_actions and manifest.rua.actions:
        lines.append("")
        lines.append(f"Actions ({len(manifest.rua.actions)}):")
        lines.extend(_format_action(action) for action in manifest.rua.actions)

    if include_dependencies and manifest.dependencies:
        lines.append("")
        lines.append("Dependencies:")
        lines.extend(
            f"  • {name}: {version}" for name, version in manifest.dependencies.items()
        )

    return "\n".join(lines)


def format_manifest_compact(manifest: ExtensionManifest) -> str:
    """Single-line summary of a manifest"""
    return (
        f"{manifest.name} v{manifest.version} ({manifest.id}) - "
        f"{len(manifest.rua.actions)} action(s), {len(manifest.permissions)} permission(s)"
    )


def format_manifest_json(manifest: ExtensionManifest) -> str:
    """Pretty-printed JSON form of a manifest"""
    return serialize_manifest(manifest, pretty=True)
