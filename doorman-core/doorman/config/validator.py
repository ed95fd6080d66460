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

"""Declared-config validation and health scoring.

Validation runs before any provider call. Errors block a sync; warnings are
reported and do not.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Optional
from urllib.parse import urlparse

from doorman.errors import (
    ConfigValidationError,
    InvalidWindowFormat,
    TranslationError,
    ValidationIssue,
)
from doorman.models.rules import ActionType, ProviderType, UnifiedConfig, UnifiedRule
from doorman.sync.diff_engine import normalize_ip
from doorman.translate.rule_translator import RuleTranslator, parse_window

logger = logging.getLogger(__name__)

CLOUDFLARE_MAX_RULES = 125
RULE_LIMIT_WARNING_RATIO = 0.8
LARGE_IP_LIST = 50
MIN_MITIGATION_TIMEOUT = 60

_DURATION = re.compile(r"^([0-9]+[smhd]|permanent)$")


@dataclass
class ValidationReport:
    errors: list[ValidationIssue] = field(default_factory=list)
    warnings: list[ValidationIssue] = field(default_factory=list)

    @property
    def valid(self) -> bool:
        return not self.errors

    def error(self, path: str, message: str, code: str) -> None:
        self.errors.append(ValidationIssue(path, message, code, "error"))

    def warn(self, path: str, message: str, code: str) -> None:
        self.warnings.append(ValidationIssue(path, message, code, "warning"))


def is_valid_redirect_location(location: str) -> bool:
    """An absolute http(s) URL or an absolute path."""
    location = location.strip()
    if location.startswith("/") and not location.startswith("//"):
        return True
    parsed = urlparse(location)
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


def _check_action(rule: UnifiedRule, path: str, report: ValidationReport) -> None:
    action = rule.action
    if action.type == ActionType.RATE_LIMIT:
        limit = action.rate_limit
        if limit is None:
            report.error(f"{path}.action.rateLimit", "rate_limit actions need rateLimit parameters", "RATE_LIMIT_MISSING")
        else:
            try:
                parse_window(limit.window)
            except InvalidWindowFormat:
                report.error(
                    f"{path}.action.rateLimit.window",
                    f'Invalid window format: {limit.window}. Must be like "60s", "1h", "1d"',
                    "INVALID_WINDOW_FORMAT",
                )
    elif action.rate_limit is not None:
        report.warn(f"{path}.action.rateLimit", "rateLimit is ignored unless the action is rate_limit", "UNUSED_RATE_LIMIT")

    if action.type == ActionType.REDIRECT:
        if action.redirect is None or not action.redirect.location.strip():
            report.error(f"{path}.action.redirect", "Redirect location is required", "REDIRECT_NO_LOCATION")
        elif not is_valid_redirect_location(action.redirect.location):
            report.error(
                f"{path}.action.redirect.location",
                f"Invalid redirect location: {action.redirect.location}",
                "INVALID_REDIRECT_URL",
            )
    elif action.redirect is not None:
        report.warn(f"{path}.action.redirect", "redirect is ignored unless the action is redirect", "UNUSED_REDIRECT")

    if action.duration is not None and not _DURATION.match(action.duration.strip()):
        report.error(
            f"{path}.action.duration",
            f"Invalid duration: {action.duration}. Must be like \"10m\" or \"permanent\"",
            "INVALID_DURATION",
        )


def _check_cloudflare(config: UnifiedConfig, report: ValidationReport) -> None:
    count = len(config.rules) + len(config.ips)
    if count > CLOUDFLARE_MAX_RULES:
        report.error(
            "rules",
            f"Rule count ({count}) exceeds Cloudflare limit ({CLOUDFLARE_MAX_RULES})",
            "CLOUDFLARE_RULE_LIMIT_EXCEEDED",
        )
    elif count > CLOUDFLARE_MAX_RULES * RULE_LIMIT_WARNING_RATIO:
        report.warn(
            "rules",
            f"Approaching Cloudflare rule limit ({count}/{CLOUDFLARE_MAX_RULES})",
            "CLOUDFLARE_RULE_LIMIT_NEAR",
        )

    for i, rule in enumerate(config.rules):
        limit = rule.action.rate_limit
        if rule.action.type != ActionType.RATE_LIMIT or limit is None:
            continue
        path = f"rules[{i}].action.rateLimit"
        if limit.characteristics is not None and not limit.characteristics:
            report.warn(f"{path}.characteristics", 'Empty characteristics array, defaulting to ["ip.src"]', "CLOUDFLARE_EMPTY_CHARACTERISTICS")
        if limit.mitigation_timeout is not None and limit.mitigation_timeout < MIN_MITIGATION_TIMEOUT:
            report.warn(
                f"{path}.mitigationTimeout",
                "Mitigation timeout less than 60 seconds may not be effective",
                "CLOUDFLARE_SHORT_MITIGATION_TIMEOUT",
            )

    cloudflare = config.providers.cloudflare if config.providers else None
    if len(config.ips) > LARGE_IP_LIST and not (cloudflare and cloudflare.account_id):
        report.warn(
            "ips",
            f"Large IP list ({len(config.ips)} IPs) detected. Consider providing accountId "
            "to use Cloudflare Lists for better performance",
            "CLOUDFLARE_LARGE_IP_LIST",
        )


def validate_config(
    config: UnifiedConfig,
    provider: Optional[ProviderType] = None,
    translator: Optional[RuleTranslator] = None,
) -> ValidationReport:
    """Validate a declared config, optionally against a target provider.

    With a provider, every rule that passes the generic checks is also
    translated, so unsupported fields, operators, and actions surface here
    rather than mid-sync.
    """
    report = ValidationReport()
    provider = ProviderType(provider) if provider else config.provider
    translator = translator or RuleTranslator()

    names: set[str] = set()
    for i, rule in enumerate(config.rules):
        path = f"rules[{i}]"
        errors_before = len(report.errors)
        name = rule.name.strip()
        if not name:
            report.error(f"{path}.name", "Rule name is required", "RULE_NAME_REQUIRED")
        elif name in names:
            report.warn(f"{path}.name", f'Duplicate rule name "{name}"', "DUPLICATE_RULE_NAME")
        names.add(name)

        if not rule.conditions:
            report.error(f"{path}.conditions", f'Rule "{rule.name}" has no conditions', "RULE_NO_CONDITIONS")
        _check_action(rule, path, report)

        if provider is not None and len(report.errors) == errors_before:
            try:
                translator.for_provider(provider).from_unified(rule)
            except TranslationError as e:
                report.error(path, f"Cannot translate for {provider.value}: {e.detail}", "UNSUPPORTED_FOR_PROVIDER")

    seen_ips: set[tuple[str, str]] = set()
    for i, ip in enumerate(config.ips):
        key = (normalize_ip(ip.ip), ip.action.value)
        if key in seen_ips:
            report.warn(f"ips[{i}]", f"Duplicate IP entry {ip.ip} ({ip.action.value})", "DUPLICATE_IP")
        seen_ips.add(key)
        if provider is not None:
            try:
                translator.for_provider(provider).ip_from_unified(ip)
            except TranslationError as e:
                report.error(f"ips[{i}]", f"Cannot translate for {provider.value}: {e.detail}", "UNSUPPORTED_FOR_PROVIDER")

    if provider == ProviderType.CLOUDFLARE:
        _check_cloudflare(config, report)

    logger.debug("Validation: %d error(s), %d warning(s)", len(report.errors), len(report.warnings))
    return report


def ensure_valid(config: UnifiedConfig, provider: Optional[ProviderType] = None) -> ValidationReport:
    """Validate and raise ``ConfigValidationError`` if there are errors."""
    report = validate_config(config, provider)
    for warning in report.warnings:
        logger.warning("%s", warning)
    if not report.valid:
        raise ConfigValidationError(report.errors)
    return report


@dataclass
class HealthIssue:
    severity: str
    category: str
    message: str
    suggestion: Optional[str] = None


@dataclass
class HealthScore:
    score: int
    grade: str
    issues: list[HealthIssue] = field(default_factory=list)

    @property
    def recommendations(self) -> list[str]:
        return [i.suggestion for i in self.issues if i.suggestion]


def grade_for(score: int) -> str:
    if score >= 80:
        return "excellent"
    if score >= 60:
        return "good"
    if score >= 40:
        return "fair"
    return "poor"


def compute_health(config: UnifiedConfig, provider: Optional[ProviderType] = None) -> HealthScore:
    """Score a config from 0 to 100 and list what would improve it."""
    provider = ProviderType(provider) if provider else config.provider
    score = 100
    issues: list[HealthIssue] = []

    if not config.rules:
        score -= 20
        issues.append(HealthIssue("warning", "rules", "No rules defined", "Add security rules to protect your application"))
    else:
        undescribed = [r for r in config.rules if not r.description]
        if undescribed:
            score -= 5
            issues.append(HealthIssue(
                "info", "maintainability", f"{len(undescribed)} rule(s) missing descriptions",
                "Add descriptions to improve maintainability",
            ))
        disabled = [r for r in config.rules if not r.enabled]
        if disabled:
            score -= 5
            issues.append(HealthIssue(
                "info", "maintenance", f"{len(disabled)} disabled rule(s) found", "Review and remove unused rules"
            ))

    if provider == ProviderType.VERCEL:
        if not any(r.action.type == ActionType.RATE_LIMIT for r in config.rules):
            score -= 10
            issues.append(HealthIssue(
                "info", "security", "No rate limiting rules configured",
                "Consider adding rate limiting to protect against abuse",
            ))
        if not config.ips:
            issues.append(HealthIssue(
                "info", "security", "No IP blocking rules configured", "Consider blocking known malicious IPs"
            ))
    elif provider == ProviderType.CLOUDFLARE:
        count = len(config.rules) + len(config.ips)
        if count > CLOUDFLARE_MAX_RULES * RULE_LIMIT_WARNING_RATIO:
            issues.append(HealthIssue(
                "warning", "limits", f"Approaching Cloudflare rule limit ({count}/{CLOUDFLARE_MAX_RULES})",
                "Consider consolidating rules or upgrading plan",
            ))

    score = max(0, score)
    return HealthScore(score=score, grade=grade_for(score), issues=issues)
