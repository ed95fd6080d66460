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

"""Provider compatibility matrix and migration reports."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from doorman.errors import TranslationError
from doorman.models.rules import ActionType, ProviderType, UnifiedConfig
from doorman.translate.field_mapper import (
    UNIFIED_TO_CLOUDFLARE_FIELDS,
    UNIFIED_TO_VERCEL_FIELDS,
    VERCEL_ONLY_FIELDS,
    unified_field_to_cloudflare,
    unified_field_to_vercel,
)
from doorman.translate.rule_translator import RuleTranslator

logger = logging.getLogger(__name__)


class SupportLevel(str, Enum):
    FULL = "full"
    PARTIAL = "partial"
    NOT_SUPPORTED = "not-supported"


@dataclass(frozen=True)
class FeatureSupport:
    level: SupportLevel
    note: str = ""


_FULL = FeatureSupport(SupportLevel.FULL)

ACTION_SUPPORT: dict[ActionType, dict[ProviderType, FeatureSupport]] = {
    ActionType.LOG: {ProviderType.VERCEL: _FULL, ProviderType.CLOUDFLARE: _FULL},
    ActionType.DENY: {
        ProviderType.VERCEL: _FULL,
        ProviderType.CLOUDFLARE: FeatureSupport(SupportLevel.FULL, "applied as block"),
    },
    ActionType.BLOCK: {
        ProviderType.VERCEL: FeatureSupport(SupportLevel.PARTIAL, "applied as deny"),
        ProviderType.CLOUDFLARE: _FULL,
    },
    ActionType.CHALLENGE: {
        ProviderType.VERCEL: _FULL,
        ProviderType.CLOUDFLARE: FeatureSupport(SupportLevel.FULL, "applied as managed_challenge"),
    },
    ActionType.BYPASS: {
        ProviderType.VERCEL: _FULL,
        ProviderType.CLOUDFLARE: FeatureSupport(SupportLevel.PARTIAL, "applied as skip"),
    },
    ActionType.RATE_LIMIT: {
        ProviderType.VERCEL: _FULL,
        ProviderType.CLOUDFLARE: FeatureSupport(SupportLevel.FULL, "block with ratelimit parameters"),
    },
    ActionType.REDIRECT: {ProviderType.VERCEL: _FULL, ProviderType.CLOUDFLARE: _FULL},
    ActionType.ALLOW: {
        ProviderType.VERCEL: FeatureSupport(SupportLevel.PARTIAL, "applied as bypass"),
        ProviderType.CLOUDFLARE: _FULL,
    },
}

# Fields that map, but not one-to-one.
_PARTIAL_FIELDS: dict[ProviderType, dict[str, str]] = {
    ProviderType.CLOUDFLARE: {
        "scheme": "compared against the ssl flag",
        "protocol": "compared against the ssl flag",
        "target_path": "matched against the request path",
    },
    ProviderType.VERCEL: {},
}


def get_action_support(action: ActionType, provider: ProviderType) -> FeatureSupport:
    return ACTION_SUPPORT[ActionType(action)][ProviderType(provider)]


def get_field_support(field_name: str, provider: ProviderType) -> FeatureSupport:
    """Support level of a unified (or Vercel-only) field on ``provider``."""
    provider = ProviderType(provider)
    try:
        if provider == ProviderType.CLOUDFLARE:
            unified_field_to_cloudflare(field_name)
        else:
            unified_field_to_vercel(field_name)
    except TranslationError as e:
        return FeatureSupport(SupportLevel.NOT_SUPPORTED, str(e))
    note = _PARTIAL_FIELDS[provider].get(field_name)
    if note:
        return FeatureSupport(SupportLevel.PARTIAL, note)
    return _FULL


def known_fields() -> list[str]:
    """Every field name the matrix covers, built-ins first."""
    names = list(UNIFIED_TO_CLOUDFLARE_FIELDS)
    names += [n for n in UNIFIED_TO_VERCEL_FIELDS if n not in names]
    names += sorted(VERCEL_ONLY_FIELDS)
    return names


@dataclass
class EntityCompatibility:
    """How one rule or IP entry fares on the target provider."""

    name: str
    level: SupportLevel
    notes: list[str] = field(default_factory=list)


@dataclass
class MigrationReport:
    source: Optional[ProviderType]
    target: ProviderType
    entities: list[EntityCompatibility] = field(default_factory=list)

    def count(self, level: SupportLevel) -> int:
        return sum(1 for e in self.entities if e.level == level)

    @property
    def fully_compatible(self) -> bool:
        return all(e.level == SupportLevel.FULL for e in self.entities)


def migration_report(
    config: UnifiedConfig,
    target: ProviderType,
    translator: Optional[RuleTranslator] = None,
) -> MigrationReport:
    """Try translating every rule and IP entry of ``config`` to ``target``.

    Rules that translate cleanly are fully compatible; rules that translate
    with warnings are partial; rules that raise are not supported.
    """
    translator = translator or RuleTranslator()
    native = translator.for_provider(target)
    report = MigrationReport(source=config.provider, target=ProviderType(target))

    for rule in config.rules:
        try:
            result = native.from_unified(rule)
        except TranslationError as e:
            report.entities.append(EntityCompatibility(rule.name, SupportLevel.NOT_SUPPORTED, [e.detail]))
            continue
        notes = [w.message for w in result.warnings if w.severity == "warning"]
        level = SupportLevel.PARTIAL if notes else SupportLevel.FULL
        report.entities.append(EntityCompatibility(rule.name, level, notes))

    for ip in config.ips:
        label = f"IP {ip.ip}"
        try:
            native.ip_from_unified(ip)
        except TranslationError as e:
            report.entities.append(EntityCompatibility(label, SupportLevel.NOT_SUPPORTED, [e.detail]))
            continue
        report.entities.append(EntityCompatibility(label, SupportLevel.FULL))

    logger.info(
        "Compatibility with %s: %d full, %d partial, %d unsupported",
        report.target.value,
        report.count(SupportLevel.FULL),
        report.count(SupportLevel.PARTIAL),
        report.count(SupportLevel.NOT_SUPPORTED),
    )
    return report
