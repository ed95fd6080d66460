# Doorman: Multi-Provider Firewall Rules as Code
# Copyright (C) 2026 Doorman Project Contributors
#
# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU Affero General Public License as published
# by the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.
#
# This program is distributed in the hope that it will be useful,
# but WITHOUT ANY WARRANTY; without even the implied warranty of
# MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE. See the
# GNU Affero General Public License for more details.
#
# You should have received a copy of the GNU Affero General Public License
# along with this program. If not, see <https://www.gnu.org/licenses/>.

"""Firewall config file discovery, loading, and writing."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

import yaml
from pydantic import ValidationError

from doorman.errors import ConfigFileError, ConfigValidationError, ValidationIssue
from doorman.config.migrator import MigrationResult, migrate_config
from doorman.models.rules import ConfigMetadata, UnifiedConfig
from doorman.reporter.json_out import write_json

logger = logging.getLogger(__name__)

CONFIG_FILENAMES = (
    "doorman.config.json",
    "doorman.config.yaml",
    "doorman.config.yml",
    "vercel-firewall.config.json",
)
_YAML_SUFFIXES = (".yaml", ".yml")


@dataclass
class LoadedConfig:
    path: Path
    config: UnifiedConfig
    migration: MigrationResult


def find_config_file(start: Optional[Path] = None) -> Path:
    """Find a config file in ``start`` or the nearest parent directory.

    Raises:
        ConfigFileError: If no config file exists up to the filesystem root.
    """
    directory = (start or Path.cwd()).resolve()
    for candidate_dir in (directory, *directory.parents):
        for name in CONFIG_FILENAMES:
            candidate = candidate_dir / name
            if candidate.is_file():
                logger.debug("Found config at %s", candidate)
                return candidate
    raise ConfigFileError(
        f"No config file found in {directory} or its parents (looked for {', '.join(CONFIG_FILENAMES)})"
    )


def read_raw_config(path: Path) -> dict[str, Any]:
    """Parse a JSON or YAML config file into a dict."""
    if not path.exists():
        raise ConfigFileError(f"Config file not found: {path}")
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigFileError(f"Could not read {path}: {e}") from e
    try:
        if path.suffix.lower() in _YAML_SUFFIXES:
            data = yaml.safe_load(text)
        else:
            data = json.loads(text)
    except (json.JSONDecodeError, yaml.YAMLError) as e:
        raise ConfigFileError(f"Could not parse {path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigFileError(f"Config file {path} must contain an object at the top level")
    return data


def issues_from_pydantic(error: ValidationError) -> list[ValidationIssue]:
    issues = []
    for item in error.errors():
        path = ".".join(
            f"[{part}]" if isinstance(part, int) else str(part) for part in item.get("loc", ())
        ).replace(".[", "[")
        issues.append(ValidationIssue(path or "root", item.get("msg", "invalid value"), "SCHEMA_INVALID"))
    return issues


def load_config(path: Optional[Path] = None) -> LoadedConfig:
    """Load a config file, migrating legacy schemas in memory.

    Raises:
        ConfigFileError: If the file is missing or cannot be parsed.
        ConfigValidationError: If the content does not match the schema.
        SchemaVersionError: If the schema version is not recognised.
    """
    path = path or find_config_file()
    raw = read_raw_config(path)
    try:
        migration = migrate_config(raw)
    except ValidationError as e:
        raise ConfigValidationError(issues_from_pydantic(e)) from e
    if migration.migrated:
        logger.info("Config %s uses schema %s; migrated in memory", path, migration.from_version)
    return LoadedConfig(path=path, config=migration.config, migration=migration)


def write_config(config: UnifiedConfig, path: Path) -> None:
    """Write a config as canonical JSON, or YAML for .yaml/.yml paths."""
    if path.suffix.lower() not in _YAML_SUFFIXES:
        write_json(config, path)
        return
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        yaml.safe_dump(config.to_dict(), f, default_flow_style=False, sort_keys=False)
    logger.info("Wrote %s", path)


def adopt_remote_state(config: UnifiedConfig, remote: UnifiedConfig) -> UnifiedConfig:
    """Replace a config's rules and IP entries with live provider state.

    Schema, provider settings, and migration stamps are kept. The remote
    version and timestamp go into ``metadata`` so the next diff starts in
    step with the provider.
    """
    remote_metadata = remote.metadata or ConfigMetadata()
    metadata = (config.metadata or ConfigMetadata()).model_copy(update={
        "version": remote_metadata.version,
        "updated_at": remote_metadata.updated_at,
    })
    return config.model_copy(update={
        "rules": list(remote.rules),
        "ips": list(remote.ips),
        "providers": config.providers or remote.providers,
        "metadata": metadata,
    })
