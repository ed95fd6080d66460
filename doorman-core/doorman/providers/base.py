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

"""Provider adapter interface and shared HTTP handling."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Optional

import httpx

from doorman.errors import RemoteAPIError
from doorman.models.changes import Change, ChangeOutcome, TranslationWarning
from doorman.models.rules import ProviderType, UnifiedConfig
from doorman.sync.diff_engine import DEFAULT_IP_COMPARE_FIELDS, Fingerprint

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30.0
TRANSIENT_STATUS_CODES = frozenset({408, 425, 429, 500, 502, 503, 504})


@dataclass(frozen=True)
class FeatureSet:
    """What a provider can represent."""

    supports_rate_limiting: bool = True
    supports_redirect: bool = True
    supports_challenge: bool = True
    supports_ip_allow: bool = True
    supports_custom_response: bool = False
    max_rules: Optional[int] = None
    ip_compare_fields: tuple[str, ...] = DEFAULT_IP_COMPARE_FIELDS


class FirewallProvider(ABC):
    """Base class for provider adapters.

    Adapters fetch live state already translated to the unified schema and
    apply one change at a time. Failures raise ``RemoteAPIError``; retrying
    is the orchestrator's job.
    """

    name: ProviderType

    def __init__(self) -> None:
        self.warnings: list[TranslationWarning] = []

    @abstractmethod
    def fetch_remote_state(self) -> UnifiedConfig:
        """Fetch live rules and IP entries in unified form."""
        ...

    @abstractmethod
    def apply_change(self, change: Change) -> ChangeOutcome:
        """Create, update, or delete one rule or IP entry."""
        ...

    @abstractmethod
    def verify_credentials(self) -> bool:
        """True if the configured credentials are accepted."""
        ...

    @abstractmethod
    def supported_features(self) -> FeatureSet:
        ...

    def fingerprints(self) -> tuple[Optional[Fingerprint], Optional[Fingerprint]]:
        """Content comparison functions for (declared, remote) rules.

        ``(None, None)`` means the unified fingerprint is faithful for this
        provider.
        """
        return None, None

    def close(self) -> None:
        """Release the HTTP client."""

    def _record(self, warnings: list[TranslationWarning]) -> None:
        for warning in warnings:
            logger.warning("[%s] %s", self.name.value, warning)
        self.warnings.extend(warnings)


def send(
    client: httpx.Client,
    method: str,
    url: str,
    provider: str,
    **kwargs: Any,
) -> httpx.Response:
    """Send a request, mapping failures onto ``RemoteAPIError``.

    Rate limiting, server errors, timeouts, and transport errors are
    transient; other 4xx responses are not.
    """
    try:
        response = client.request(method, url, **kwargs)
    except httpx.TimeoutException as e:
        raise RemoteAPIError(f"{method} {url} timed out: {e}", transient=True, provider=provider) from e
    except httpx.TransportError as e:
        raise RemoteAPIError(f"{method} {url} failed: {e}", transient=True, provider=provider) from e

    if response.is_success:
        return response
    raise RemoteAPIError(
        _error_message(response),
        status_code=response.status_code,
        transient=response.status_code in TRANSIENT_STATUS_CODES,
        provider=provider,
    )


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text[:200] or response.reason_phrase
    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
        errors = body.get("errors")
        if isinstance(errors, list) and errors:
            return "; ".join(str(e.get("message", e)) if isinstance(e, dict) else str(e) for e in errors)
    return response.reason_phrase
