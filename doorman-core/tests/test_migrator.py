"""Tests for schema version detection and migration."""

import json
from pathlib import Path

import pytest

from doorman.errors import SchemaVersionError
from doorman.config.migrator import (
    SCHEMA_URL,
    MigrationResult,
    auto_migrate,
    detect_schema_version,
    is_compatible_version,
    migrate_config,
    needs_migration,
    register_migration,
    supported_versions,
)
from doorman.models.rules import ActionType, ConditionLogic, IPAction, Operator, ProviderType

FIXTURES = Path(__file__).parent / "fixtures"
NOW = "2026-02-01T00:00:00Z"


@pytest.fixture
def v1_raw() -> dict:
    return json.loads((FIXTURES / "v1_config.json").read_text())


@pytest.fixture
def v2_raw() -> dict:
    return json.loads((FIXTURES / "v2_config.json").read_text())


class TestDetection:
    """Schema version detection."""

    def test_explicit_string_version(self):
        assert detect_schema_version({"version": "2.0"}) == "2.0"
        assert detect_schema_version({"version": "9.9"}) == "9.9"

    def test_numeric_version_is_v1(self):
        assert detect_schema_version({"version": 3, "rules": []}) == "1.0"

    def test_project_id_is_v1(self, v1_raw):
        assert detect_schema_version(v1_raw) == "1.0"
        assert needs_migration(v1_raw)

    def test_condition_group_is_v1(self):
        raw = {"rules": [{"name": "x", "conditionGroup": [], "action": {"mitigate": {"action": "deny"}}}]}
        assert detect_schema_version(raw) == "1.0"

    def test_providers_is_v2(self):
        assert detect_schema_version({"providers": {}, "rules": []}) == "2.0"

    def test_empty_is_current(self):
        assert detect_schema_version({}) == "2.0"
        assert not needs_migration({})


class TestMigration:
    """v1 -> v2 upgrades."""

    def test_v1_to_v2(self, v1_raw):
        result = migrate_config(v1_raw, now=NOW)
        config = result.config
        assert result.migrated
        assert result.from_version == "1.0"
        assert config.version == "2.0"
        assert config.schema_url == SCHEMA_URL
        assert config.provider == ProviderType.VERCEL
        assert config.providers.vercel.project_id == "prj_abc123"
        assert config.providers.vercel.team_id == "team_xyz"
        assert config.metadata.migrated_from == "1.0"
        assert config.metadata.migrated_at == NOW
        assert config.metadata.version == 7

    def test_rules_and_ips_keep_semantics(self, v1_raw):
        config = migrate_config(v1_raw, now=NOW).config
        assert len(config.rules) == 2
        admin = config.rules[0]
        assert admin.id == "rule_block_admin"
        assert admin.action.type == ActionType.DENY
        assert admin.action.duration == "1h"
        assert admin.condition_logic == ConditionLogic.AND
        assert admin.conditions[0].operator == Operator.STARTS_WITH
        assert admin.conditions[1].field == "country"
        assert admin.conditions[1].negated is True
        limit = config.rules[1]
        assert limit.action.rate_limit.requests == 100
        assert limit.action.rate_limit.window == "60s"

        assert len(config.ips) == 1
        ip = config.ips[0]
        assert ip.ip == "203.0.113.7"
        assert ip.action == IPAction.DENY
        assert ip.hostname == "example.com"

    def test_v2_is_unchanged(self, v2_raw):
        result = migrate_config(v2_raw, now=NOW)
        assert not result.migrated
        assert result.warnings == []
        assert result.config.to_dict() == auto_migrate(v2_raw).to_dict()
        assert result.config.metadata is None

    def test_migrating_twice_is_stable(self, v1_raw):
        once = migrate_config(v1_raw, now=NOW).config
        twice = migrate_config(once.to_dict(), now="2030-01-01T00:00:00Z")
        assert not twice.migrated
        assert twice.config == once

    def test_unknown_version_rejected(self):
        with pytest.raises(SchemaVersionError) as exc:
            migrate_config({"version": "3.0", "rules": []})
        assert exc.value.version == "3.0"
        assert "2.0" in exc.value.supported


class TestRegistry:
    def test_supported_versions(self):
        assert supported_versions() == ["1.0", "2.0"]
        assert is_compatible_version("1.0")
        assert not is_compatible_version("0.9")

    def test_register_migration_chains(self, monkeypatch):
        import doorman.config.migrator as migrator

        monkeypatch.setattr(migrator, "_MIGRATIONS", dict(migrator._MIGRATIONS))

        def from_zero(raw, now):
            upgraded = dict(raw)
            upgraded["version"] = 5
            upgraded["projectId"] = "prj_old"
            return upgraded, []

        register_migration("0.5", "1.0", from_zero)
        result = migrate_config({"version": "0.5", "rules": []}, now=NOW)
        assert isinstance(result, MigrationResult)
        assert result.from_version == "0.5"
        assert result.config.providers.vercel.project_id == "prj_old"
