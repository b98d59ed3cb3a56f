"""
Tests for persistence — registry file, atomic writes, version counter.
"""

import json
from pathlib import Path

import pytest

from src.core.models.registry import CURRENT_SCHEMA_VERSION, Host, Registry
from src.core.persistence.registry_file import (
    RegistryError,
    VersionConflictError,
    load_registry,
    save_registry,
    stored_version,
)


class TestLoad:
    def test_missing_file_gives_defaults(self, tmp_path: Path):
        registry = load_registry(tmp_path / "nope.json")
        assert registry.base_domain == ""
        assert [e.id for e in registry.environments] == ["prod", "dev"]
        assert registry.default_environment().id == "prod"
        assert registry.environments[1].api_prefix == "api.dev"
        assert registry.cloudflare.enabled is False

    def test_missing_fields_get_defaults(self, tmp_path: Path):
        path = tmp_path / "r.json"
        path.write_text(json.dumps({"schemaVersion": 3, "baseDomain": "example.com"}))
        registry = load_registry(path)
        assert registry.base_domain == "example.com"
        assert len(registry.environments) == 2
        assert registry.hosts == []

    def test_corrupt_json_raises(self, tmp_path: Path):
        path = tmp_path / "r.json"
        path.write_text("not json at all {{{")
        with pytest.raises(RegistryError, match="Corrupt"):
            load_registry(path)

    def test_non_object_raises(self, tmp_path: Path):
        path = tmp_path / "r.json"
        path.write_text("[1, 2]")
        with pytest.raises(RegistryError):
            load_registry(path)

    def test_invalid_document_raises(self, tmp_path: Path):
        path = tmp_path / "r.json"
        path.write_text(json.dumps({
            "schemaVersion": 3,
            "hosts": [{"subdomain": "www", "targetHost": "h", "targetPort": 70000}],
        }))
        with pytest.raises(RegistryError, match="Invalid registry"):
            load_registry(path)

    def test_newer_schema_raises(self, tmp_path: Path):
        path = tmp_path / "r.json"
        path.write_text(json.dumps({"schemaVersion": 99}))
        with pytest.raises(RegistryError, match="migrate"):
            load_registry(path)


class TestSave:
    def test_roundtrip_camel_case(self, tmp_path: Path, registry: Registry):
        path = tmp_path / "r.json"
        save_registry(registry, path)

        data = json.loads(path.read_text())
        assert data["baseDomain"] == "example.com"
        assert data["schemaVersion"] == CURRENT_SCHEMA_VERSION
        assert data["hosts"][0]["targetHost"] == "192.168.1.10"
        assert "target_host" not in data["hosts"][0]

        loaded = load_registry(path)
        assert loaded.hosts[0].subdomain == "www"
        assert loaded.applications[0].endpoints["prod"].apis[0].target_port == 3001

    def test_version_increments(self, tmp_path: Path):
        path = tmp_path / "r.json"
        registry = Registry()
        save_registry(registry, path)
        save_registry(registry, path)
        assert registry.version == 2
        assert stored_version(path) == 2

    def test_unknown_fields_preserved(self, tmp_path: Path):
        path = tmp_path / "r.json"
        path.write_text(json.dumps({"schemaVersion": 3, "theme": "dark"}))
        save_registry(load_registry(path), path)
        assert json.loads(path.read_text())["theme"] == "dark"

    def test_deprecated_keys_dropped_on_save(self, tmp_path: Path):
        path = tmp_path / "r.json"
        path.write_text(json.dumps({"schemaVersion": 3, "wildcardCert": True}))
        save_registry(load_registry(path), path)
        assert "wildcardCert" not in json.loads(path.read_text())

    def test_creates_directories(self, tmp_path: Path):
        path = tmp_path / "deep" / "nested" / "r.json"
        save_registry(Registry(), path)
        assert path.is_file()

    def test_no_temp_files_left(self, tmp_path: Path):
        save_registry(Registry(), tmp_path / "r.json")
        assert list(tmp_path.glob(".registry_*.tmp")) == []


class TestOptimisticVersion:
    def test_matching_version_saves(self, tmp_path: Path):
        path = tmp_path / "r.json"
        save_registry(Registry(), path)

        registry = load_registry(path)
        save_registry(registry, path, expected_version=registry.version)
        assert stored_version(path) == 2

    def test_stale_write_rejected(self, tmp_path: Path):
        path = tmp_path / "r.json"
        save_registry(Registry(), path)

        first = load_registry(path)
        second = load_registry(path)

        first.hosts.append(Host(subdomain="a", target_host="h", target_port=80))
        save_registry(first, path, expected_version=1)

        second.hosts.append(Host(subdomain="b", target_host="h", target_port=80))
        with pytest.raises(VersionConflictError) as exc:
            save_registry(second, path, expected_version=1)
        assert exc.value.actual == 2
        assert second.version == 1

        assert [h.subdomain for h in load_registry(path).hosts] == ["a"]

    def test_first_save_expects_zero(self, tmp_path: Path):
        path = tmp_path / "r.json"
        save_registry(Registry(), path, expected_version=0)
        assert stored_version(path) == 1
