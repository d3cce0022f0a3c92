"""
Tests for manifest validation, serialization and formatting.
"""

import json
from typing import Any, Callable, Dict

import pytest

from rua.extensions.manifest import (
    deserialize_manifest,
    format_manifest,
    format_manifest_compact,
    format_manifest_json,
    parse_manifest,
    serialize_manifest,
    validate_manifest,
)
from rua.extensions.models import ActionMode, ExtensionPermission


def fields_of(result):
    return [error.field for error in result.errors]


class TestValidateManifest:
    def test_valid_manifest(self, manifest_factory: Callable[..., Dict[str, Any]]):
        result = validate_manifest(
            manifest_factory(permissions=["clipboard", "storage"], description="Says hi")
        )

        assert result.valid
        assert result.errors == []
        assert result.manifest.id == "acme.hello"
        assert result.manifest.rua.engine_version == "^0.1.0"
        assert result.manifest.rua.actions[0].mode is ActionMode.VIEW
        assert result.manifest.has_permission(ExtensionPermission.CLIPBOARD)
        assert not result.manifest.has_permission(ExtensionPermission.SHELL)

    def test_single_segment_id_is_valid(self, manifest_factory):
        assert validate_manifest(manifest_factory(extension_id="hello")).valid

    @pytest.mark.parametrize("value", [None, 42, [], "text"])
    def test_non_object_manifest(self, value):
        result = validate_manifest(value)

        assert not result.valid
        assert len(result.errors) == 1
        assert result.errors[0].message == "Manifest must be an object"
        assert result.manifest is None

    @pytest.mark.parametrize(
        "extension_id",
        ["Acme.Hello", "a.b.c", "acme_hello", "acme hello", "", ".acme", "foo\n", "acme.hello\n"],
    )
    def test_invalid_ids(self, manifest_factory, extension_id: str):
        result = validate_manifest(manifest_factory(extension_id=extension_id))

        assert not result.valid
        assert "id" in fields_of(result)

    def test_missing_required_fields_are_all_reported(self):
        result = validate_manifest({})

        assert not result.valid
        assert {"id", "name", "version", "rua"} <= set(fields_of(result))

    def test_empty_actions(self, manifest_factory):
        result = validate_manifest(manifest_factory(actions=[]))

        assert not result.valid
        assert fields_of(result) == ["rua.actions"]

    def test_action_field_errors(self, manifest_factory):
        result = validate_manifest(
            manifest_factory(
                actions=[{"name": "Bad Name", "mode": "popup", "keywords": "nope"}],
                ui_entry=None,
            )
        )

        assert not result.valid
        assert {
            "rua.actions[0].name",
            "rua.actions[0].title",
            "rua.actions[0].mode",
            "rua.actions[0].keywords",
        } <= set(fields_of(result))

    def test_action_name_with_trailing_newline(self, manifest_factory):
        result = validate_manifest(
            manifest_factory(
                actions=[{"name": "a\n", "title": "A", "mode": "command", "script": "a.py"}]
            )
        )

        assert not result.valid
        assert fields_of(result) == ["rua.actions[0].name"]

    def test_command_action_requires_script(self, manifest_factory):
        result = validate_manifest(
            manifest_factory(actions=[{"name": "run", "title": "Run", "mode": "command"}])
        )

        assert not result.valid
        assert fields_of(result) == ["rua.actions[0].script"]

    def test_view_action_requires_ui_entry(self, manifest_factory):
        result = validate_manifest(
            manifest_factory(
                actions=[{"name": "show", "title": "Show", "mode": "view"}], ui_entry=None
            )
        )

        assert not result.valid
        assert result.errors[0].field == "rua.ui.entry"
        assert result.errors[0].message == (
            'rua.ui.entry is required when actions with mode "view" exist'
        )

    def test_command_only_manifest_needs_no_ui(self, manifest_factory):
        result = validate_manifest(
            manifest_factory(
                actions=[{"name": "run", "title": "Run", "mode": "command", "script": "run.py"}],
                ui_entry=None,
            )
        )

        assert result.valid
        assert result.manifest.rua.ui is None

    def test_duplicate_names_reported_once(self, manifest_factory):
        action = {"name": "run", "title": "Run", "mode": "command", "script": "run.py"}
        result = validate_manifest(manifest_factory(actions=[action, action, action]))

        duplicate_errors = [e for e in result.errors if "Duplicate" in e.message]
        assert len(duplicate_errors) == 1
        assert duplicate_errors[0].value == ["run"]

    def test_unknown_permission(self, manifest_factory):
        result = validate_manifest(manifest_factory(permissions=["clipboard", "camera"]))

        assert not result.valid
        assert fields_of(result) == ["permissions[1]"]
        assert result.errors[0].value == "camera"

    def test_optional_fields_must_have_correct_types(self, manifest_factory):
        manifest = manifest_factory(description=5, author=None, dependencies={"lib": 1})
        manifest["rua"]["init"] = ["init.py"]
        manifest["rua"]["ui"]["width"] = 0

        result = validate_manifest(manifest)

        assert {"description", "author", "dependencies", "rua.init", "rua.ui.width"} <= set(
            fields_of(result)
        )

    def test_validation_is_deterministic(self, manifest_factory):
        manifest = manifest_factory(extension_id="BAD", permissions=["nope"])

        assert validate_manifest(manifest).errors == validate_manifest(manifest).errors

    def test_validation_does_not_modify_input(self, manifest_factory):
        manifest = manifest_factory()
        snapshot = json.dumps(manifest, sort_keys=True)

        validate_manifest(manifest)

        assert json.dumps(manifest, sort_keys=True) == snapshot


class TestParseManifest:
    def test_invalid_json_becomes_a_finding(self):
        result = parse_manifest("{not json")

        assert not result.valid
        assert result.errors[0].message.startswith("Invalid JSON")

    def test_parse_valid_text(self, manifest_factory):
        result = parse_manifest(json.dumps(manifest_factory()))

        assert result.valid

    def test_serialize_round_trip(self, manifest_factory):
        manifest = validate_manifest(
            manifest_factory(permissions=["http"], keywords=["greeting"])
        ).manifest

        text = serialize_manifest(manifest)
        restored = deserialize_manifest(text)

        assert restored.valid
        assert restored.manifest == manifest
        assert '"engineVersion"' in text
        assert "null" not in text

    def test_compact_serialization(self, manifest_factory):
        manifest = validate_manifest(manifest_factory()).manifest

        assert "\n" not in serialize_manifest(manifest, pretty=False)


class TestFormatManifest:
    @pytest.fixture
    def manifest(self, manifest_factory):
        return validate_manifest(
            manifest_factory(
                permissions=["clipboard", "notification"],
                author="Acme",
                dependencies={"left-pad": "^1.0.0"},
            )
        ).manifest

    def test_format_manifest(self, manifest):
        text = format_manifest(manifest)

        assert "Extension: Hello" in text
        assert "ID: acme.hello" in text
        assert "Author: Acme" in text
        assert "Permissions:" in text
        assert "  • clipboard" in text
        assert "Actions (2):" in text
        assert "Greet (greet)" in text
        assert "Dependencies:" not in text

    def test_format_manifest_sections_are_optional(self, manifest):
        text = format_manifest(
            manifest, include_actions=False, include_permissions=False, include_dependencies=True
        )

        assert "Actions" not in text
        assert "Permissions" not in text
        assert "left-pad: ^1.0.0" in text

    def test_format_compact(self, manifest):
        assert format_manifest_compact(manifest) == (
            "Hello v1.0.0 (acme.hello) - 2 action(s), 2 permission(s)"
        )

    def test_format_json(self, manifest):
        assert json.loads(format_manifest_json(manifest))["id"] == "acme.hello"
