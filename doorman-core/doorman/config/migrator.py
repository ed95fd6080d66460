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

"""Config schema version detection and migration.

Versions are upgraded through an explicit registry of one-step migrations,
chained until the current version. Adding a schema version means
registering one more step.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from doorman.errors import SchemaVersionError
from doorman.models.changes import TranslationWarning
from doorman.models.rules import CURRENT_SCHEMA_VERSION, UnifiedConfig
from doorman.models.vercel import VercelFirewallConfig
from doorman.translate.rule_translator import VercelTranslator

logger = logging.getLogger(__name__)

LEGACY_SCHEMA_VERSION = "1.0"
SCHEMA_URL = "https://doorman.griffen.codes/schema.json"

# (raw config, timestamp) -> (upgraded raw config, warnings)
Migration = Callable[[dict[str, Any], str], tuple[dict[str, Any], list[TranslationWarning]]]


@dataclass
class MigrationResult:
    config: UnifiedConfig
    from_version: str
    to_version: str = CURRENT_SCHEMA_VERSION
    warnings: list[TranslationWarning] = field(default_factory=list)

    @property
    def migrated(self) -> bool:
        return self.from_version != self.to_version


def _now() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def detect_schema_version(raw: dict[str, Any]) -> str:
    """Detect a config's schema version.

    An explicit string ``version`` wins. Otherwise structural fingerprints
    decide: ``provider``/``providers`` means 2.0; ``projectId``/``teamId`` at
    the top level, or rules shaped with ``conditionGroup``, mean 1.0. A
    numeric ``version`` is the v1 remote counter, not a schema version.
    """
    version = raw.get("version")
    if isinstance(version, str):
        return version.strip()
    if "provider" in raw or "providers" in raw:
        return CURRENT_SCHEMA_VERSION
    if "projectId" in raw or "teamId" in raw:
        return LEGACY_SCHEMA_VERSION
    rules = raw.get("rules") or []
    if isinstance(rules, list) and any(isinstance(r, dict) and "conditionGroup" in r for r in rules):
        return LEGACY_SCHEMA_VERSION
    if isinstance(version, int) and not isinstance(version, bool):
        return LEGACY_SCHEMA_VERSION
    return CURRENT_SCHEMA_VERSION


def migrate_v1_to_v2(raw: dict[str, Any], now: str) -> tuple[dict[str, Any], list[TranslationWarning]]:
    """Wrap a single-provider Vercel config into the unified schema.

    Every rule and IP entry maps to exactly one output entry; a rule that
    cannot be translated aborts the migration instead of being dropped.
    """
    legacy = VercelFirewallConfig.model_validate(raw)
    translator = VercelTranslator()
    warnings: list[TranslationWarning] = []

    rules = []
    for rule in legacy.rules:
        translated = translator.to_unified(rule)
        warnings.extend(translated.warnings)
        rules.append(translated.result.to_dict())

    ips = []
    for ip in legacy.ips:
        translated = translator.ip_to_unified(ip)
        warnings.extend(translated.warnings)
        ips.append(translated.result.to_dict())

    vercel: dict[str, Any] = {}
    if legacy.project_id:
        vercel["projectId"] = legacy.project_id
    if legacy.team_id:
        vercel["teamId"] = legacy.team_id

    metadata: dict[str, Any] = {"migratedFrom": LEGACY_SCHEMA_VERSION, "migratedAt": now}
    if legacy.version is not None:
        metadata["version"] = legacy.version
    if legacy.updated_at:
        metadata["updatedAt"] = legacy.updated_at

    upgraded = {
        "$schema": SCHEMA_URL,
        "version": CURRENT_SCHEMA_VERSION,
        "provider": "vercel",
        "providers": {"vercel": vercel},
        "rules": rules,
        "ips": ips,
        "metadata": metadata,
    }
    return upgraded, warnings


# from_version -> (to_version, migration)
_MIGRATIONS: dict[str, tuple[str, Migration]] = {
    LEGACY_SCHEMA_VERSION: (CURRENT_SCHEMA_VERSION, migrate_v1_to_v2),
}


def register_migration(from_version: str, to_version: str, migration: Migration) -> None:
    """Register a one-step migration from ``from_version`` to ``to_version``."""
    _MIGRATIONS[from_version] = (to_version, migration)


def supported_versions() -> list[str]:
    return sorted(set(_MIGRATIONS) | {CURRENT_SCHEMA_VERSION})


def is_compatible_version(version: str) -> bool:
    return version in supported_versions()


def needs_migration(raw: dict[str, Any]) -> bool:
    return detect_schema_version(raw) != CURRENT_SCHEMA_VERSION


def migrate_config(raw: dict[str, Any], now: Optional[str] = None) -> MigrationResult:
    """Upgrade a raw config dict to the current schema.

    A config already at the current version is validated and returned
    unchanged.

    Raises:
        SchemaVersionError: If the version is not recognised.
    """
    from_version = detect_schema_version(raw)
    if not is_compatible_version(from_version):
        raise SchemaVersionError(from_version, supported_versions())

    timestamp = now or _now()
    version = from_version
    data = raw
    warnings: list[TranslationWarning] = []
    while version != CURRENT_SCHEMA_VERSION:
        to_version, migration = _MIGRATIONS[version]
        logger.info("Migrating config schema %s -> %s", version, to_version)
        data, step_warnings = migration(data, timestamp)
        warnings.extend(step_warnings)
        version = to_version

    for warning in warnings:
        logger.warning("%s", warning)
    return MigrationResult(
        config=UnifiedConfig.model_validate(data),
        from_version=from_version,
        warnings=warnings,
    )


def auto_migrate(raw: dict[str, Any]) -> UnifiedConfig:
    """Return the config in the current schema, migrating if needed."""
    return migrate_config(raw).config
