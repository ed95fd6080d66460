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

"""Doorman exception hierarchy.

The core only raises; the CLI decides how errors are rendered. Every error
carries enough context (rule, field, token, provider) for a precise report.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional


class DoormanError(Exception):
    """Base class for all Doorman errors."""


@dataclass(frozen=True)
class ValidationIssue:
    """A single problem found while validating a configuration."""

    path: str
    message: str
    code: str
    severity: str = "error"

    def __str__(self) -> str:
        return f"{self.path}: {self.message} [{self.code}]"


class ConfigValidationError(DoormanError):
    """A declared configuration failed validation before any provider call."""

    def __init__(self, issues: list[ValidationIssue]) -> None:
        self.issues = list(issues)
        summary = "; ".join(str(issue) for issue in self.issues[:5])
        if len(self.issues) > 5:
            summary += f"; and {len(self.issues) - 5} more"
        super().__init__(f"Configuration is invalid: {summary}")


class ConfigFileError(DoormanError):
    """A configuration file is missing, unreadable, or not valid JSON/YAML."""


class SchemaVersionError(DoormanError):
    """A configuration declares a schema version Doorman does not know."""

    def __init__(self, version: object, supported: list[str]) -> None:
        self.version = version
        self.supported = list(supported)
        super().__init__(
            f"Unsupported config schema version {version!r} "
            f"(supported: {', '.join(self.supported)})"
        )


class TranslationError(DoormanError):
    """A rule could not be translated to the target representation."""

    def __init__(self, message: str, rule: Optional[str] = None) -> None:
        self.rule = rule
        self.detail = message
        super().__init__(message)

    def with_rule(self, rule: Optional[str]) -> "TranslationError":
        """Attach the rule name if it is not already known."""
        if self.rule is None and rule:
            self.rule = rule
            self.args = (f"Rule {rule!r}: {self.detail}",)
        return self


class UnsupportedFieldError(TranslationError):
    """A condition field has no equivalent on the target provider."""

    def __init__(self, field: str, provider: str, rule: Optional[str] = None) -> None:
        self.field = field
        self.provider = provider
        super().__init__(f"Field {field!r} is not supported by {provider}", rule)


class UnsupportedOperatorError(TranslationError):
    """A comparison operator has no equivalent on the target provider."""

    def __init__(self, operator: str, provider: str, rule: Optional[str] = None) -> None:
        self.operator = operator
        self.provider = provider
        super().__init__(f"Operator {operator!r} is not supported by {provider}", rule)


class UnsupportedActionError(TranslationError):
    """An action has no equivalent on the target provider."""

    def __init__(self, action: str, provider: str, rule: Optional[str] = None) -> None:
        self.action = action
        self.provider = provider
        super().__init__(f"Action {action!r} is not supported by {provider}", rule)


class InvalidWindowFormat(TranslationError):
    """A rate-limit window is not of the form <n>[smhd]."""

    def __init__(self, window: object, rule: Optional[str] = None) -> None:
        self.window = window
        super().__init__(
            f"Invalid window format {window!r}: expected a positive integer "
            f"followed by s, m, h or d (e.g. '60s', '5m')",
            rule,
        )


class ExpressionValidationError(TranslationError):
    """A generated expression failed the structural sanity check."""

    def __init__(self, expression: str, reason: str, rule: Optional[str] = None) -> None:
        self.expression = expression
        self.reason = reason
        super().__init__(f"Invalid expression ({reason}): {expression!r}", rule)


class ProviderError(DoormanError):
    """Base class for provider adapter failures."""


class ProviderNotRegisteredError(ProviderError):
    """No adapter is registered under the requested provider name."""

    def __init__(self, name: str, available: list[str]) -> None:
        self.name = name
        self.available = list(available)
        super().__init__(
            f"Unknown provider {name!r} (available: {', '.join(self.available) or 'none'})"
        )


class MissingCredentialsError(ProviderError):
    """A provider adapter cannot be built without the named settings."""

    def __init__(self, provider: str, missing: list[str]) -> None:
        self.provider = provider
        self.missing = list(missing)
        super().__init__(f"Missing {provider} credentials: {', '.join(self.missing)}")


class RemoteAPIError(ProviderError):
    """A provider API call failed.

    ``transient`` marks failures worth retrying: rate limiting, server errors,
    timeouts, and transport errors.
    """

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        transient: bool = False,
        provider: Optional[str] = None,
    ) -> None:
        self.status_code = status_code
        self.transient = transient
        self.provider = provider
        prefix = f"{provider} API" if provider else "API"
        if status_code is not None:
            prefix += f" {status_code}"
        super().__init__(f"{prefix}: {message}")
