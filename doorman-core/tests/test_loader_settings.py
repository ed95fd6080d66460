"""Tests for config file loading and user settings."""

import json
import shutil
from pathlib import Path

import pytest
import yaml

from doorman.errors import ConfigFileError, ConfigValidationError, SchemaVersionError
from doorman.config.loader import adopt_remote_state, find_config_file, load_config, read_raw_config, write_config
from doorman.config.settings import (
    detect_provider,
    load_settings,
    resolve_credentials,
    resolve_secret,
    save_settings,
)
from doorman.models.rules import (
    CloudflareProviderConfig,
    ConfigMetadata,
    ProvidersConfig,
    ProviderType,
    UnifiedConfig,
    UnifiedIPRule,
    VercelProviderConfig,
)

FIXTURES = Path(__file__).parent / "fixtures"


class TestLoader:
    """Discovery, parsing, and in-memory migration."""

    def test_find_config_walks_up(self, tmp_path):
        shutil.copy(FIXTURES / "v2_config.json", tmp_path / "doorman.config.json")
        nested = tmp_path / "a" / "b"
        nested.mkdir(parents=True)
        assert find_config_file(nested) == (tmp_path / "doorman.config.json").resolve()

    def test_legacy_filename_is_found(self, tmp_path):
        shutil.copy(FIXTURES / "v1_config.json", tmp_path / "vercel-firewall.config.json")
        assert find_config_file(tmp_path).name == "vercel-firewall.config.json"

    def test_find_config_missing(self, tmp_path):
        with pytest.raises(ConfigFileError):
            find_config_file(tmp_path)

    def test_yaml_config(self, tmp_path):
        path = tmp_path / "doorman.config.yaml"
        path.write_text(yaml.safe_dump(json.loads((FIXTURES / "v2_config.json").read_text())))
        loaded = load_config(path)
        assert loaded.config.provider == ProviderType.VERCEL
        assert len(loaded.config.rules) == 3

    def test_bad_json(self, tmp_path):
        path = tmp_path / "doorman.config.json"
        path.write_text("{not json")
        with pytest.raises(ConfigFileError):
            read_raw_config(path)

    def test_top_level_list_rejected(self, tmp_path):
        path = tmp_path / "doorman.config.json"
        path.write_text("[]")
        with pytest.raises(ConfigFileError):
            read_raw_config(path)

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigFileError):
            load_config(tmp_path / "nope.json")

    def test_v1_migrates_in_memory(self):
        loaded = load_config(FIXTURES / "v1_config.json")
        assert loaded.migration.migrated
        assert loaded.migration.from_version == "1.0"
        assert loaded.config.version == "2.0"
        assert json.loads((FIXTURES / "v1_config.json").read_text())["version"] == 7

    def test_schema_errors(self, tmp_path):
        path = tmp_path / "doorman.config.json"
        path.write_text(json.dumps({"version": "2.0", "rules": [{"name": "no action"}]}))
        with pytest.raises(ConfigValidationError) as exc:
            load_config(path)
        assert exc.value.issues[0].code == "SCHEMA_INVALID"
        assert exc.value.issues[0].path.startswith("rules[0]")

    def test_unknown_version(self):
        with pytest.raises(SchemaVersionError):
            load_config(FIXTURES / "future_config.json")

    @pytest.mark.parametrize("name", ["out.json", "out.yaml"])
    def test_write_then_load(self, tmp_path, name):
        config = load_config(FIXTURES / "v2_config.json").config
        write_config(config, tmp_path / name)
        assert load_config(tmp_path / name).config == config

    def test_json_output_is_canonical(self, tmp_path):
        config = load_config(FIXTURES / "v2_config.json").config
        write_config(config, tmp_path / "out.json")
        text = (tmp_path / "out.json").read_bytes().decode()
        assert text.endswith("}\n")
        assert "\r" not in text


class TestAdoptRemoteState:
    def test_rules_come_from_remote_settings_stay(self):
        config = load_config(FIXTURES / "v2_config.json").config.model_copy(
            update={"metadata": ConfigMetadata(version=3, migrated_from="1.0")}
        )
        remote = UnifiedConfig(
            ips=[UnifiedIPRule(id="ip_9", ip="198.51.100.9")],
            metadata=ConfigMetadata(version=8, updated_at="2026-02-01T00:00:00Z"),
        )

        adopted = adopt_remote_state(config, remote)

        assert adopted.rules == []
        assert [i.id for i in adopted.ips] == ["ip_9"]
        assert adopted.provider == ProviderType.VERCEL
        assert adopted.providers == config.providers
        assert adopted.metadata.version == 8
        assert adopted.metadata.updated_at == "2026-02-01T00:00:00Z"
        assert adopted.metadata.migrated_from == "1.0"

    def test_providers_filled_from_remote(self):
        remote = UnifiedConfig(
            provider=ProviderType.CLOUDFLARE,
            providers=ProvidersConfig(cloudflare=CloudflareProviderConfig(zone_id="z1")),
        )
        adopted = adopt_remote_state(UnifiedConfig(), remote)
        assert adopted.providers.cloudflare.zone_id == "z1"
        assert adopted.provider is None


class TestSettings:
    def test_missing_settings_file(self, tmp_path):
        assert load_settings(tmp_path / "config.yaml") == {}

    def test_save_and_load(self, tmp_path):
        path = save_settings({"default_provider": "cloudflare"}, tmp_path / "sub" / "config.yaml")
        assert load_settings(path) == {"default_provider": "cloudflare"}

    def test_non_mapping_settings(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("- a\n- b\n")
        with pytest.raises(ConfigFileError):
            load_settings(path)

    def test_env_secret(self):
        assert resolve_secret("env:MY_TOKEN", {"MY_TOKEN": "abc"}) == "abc"
        assert resolve_secret("env:MISSING", {}) is None
        assert resolve_secret("plain", {}) == "plain"
        assert resolve_secret(None, {}) is None


class TestCredentials:
    """Config ids beat the environment, which beats the settings file."""

    def test_precedence(self):
        config = UnifiedConfig(providers=ProvidersConfig(vercel=VercelProviderConfig(project_id="prj_config")))
        env = {"VERCEL_PROJECT_ID": "prj_env", "VERCEL_TEAM_ID": "team_env", "CF_SECRET": "cf-token"}
        settings = {
            "vercel": {"token": "settings-token", "project_id": "prj_settings", "team_id": "team_settings"},
            "cloudflare": {"api_token": "env:CF_SECRET", "zone_id": "zone_settings"},
        }
        creds = resolve_credentials(config, env=env, settings=settings)
        assert creds.vercel_project_id == "prj_config"
        assert creds.vercel_team_id == "team_env"
        assert creds.vercel_token == "settings-token"
        assert creds.cloudflare_api_token == "cf-token"
        assert creds.cloudflare_zone_id == "zone_settings"
        assert creds.cloudflare_account_id is None

    def test_token_only_from_env(self):
        creds = resolve_credentials(None, env={"VERCEL_TOKEN": "t"}, settings={})
        assert creds.vercel_token == "t"


class TestDetectProvider:
    def test_explicit_field_wins(self):
        config = UnifiedConfig(
            provider=ProviderType.VERCEL,
            providers=ProvidersConfig(
                vercel=VercelProviderConfig(project_id="p"),
                cloudflare=CloudflareProviderConfig(zone_id="z"),
            ),
        )
        detection = detect_provider(config, env={}, settings={})
        assert detection.provider == ProviderType.VERCEL
        assert detection.confidence == "high"

    def test_zone_id_beats_project_id(self):
        config = UnifiedConfig(providers=ProvidersConfig(
            vercel=VercelProviderConfig(project_id="p"),
            cloudflare=CloudflareProviderConfig(zone_id="z"),
        ))
        assert detect_provider(config, env={}, settings={}).provider == ProviderType.CLOUDFLARE

    def test_env_variable(self):
        detection = detect_provider(UnifiedConfig(), env={"DOORMAN_PROVIDER": "Cloudflare"}, settings={})
        assert detection.provider == ProviderType.CLOUDFLARE
        assert detection.confidence == "high"

    def test_env_credentials(self):
        detection = detect_provider(UnifiedConfig(), env={"VERCEL_TOKEN": "t"}, settings={})
        assert detection.provider == ProviderType.VERCEL
        assert detection.confidence == "medium"

    def test_settings_default(self):
        detection = detect_provider(UnifiedConfig(), env={}, settings={"default_provider": "vercel"})
        assert detection.provider == ProviderType.VERCEL
        assert detection.confidence == "low"

    def test_nothing_configured(self):
        detection = detect_provider(UnifiedConfig(), env={}, settings={})
        assert detection.provider is None
        assert detection.confidence == "none"
