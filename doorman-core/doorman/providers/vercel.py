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

"""Vercel Firewall adapter.

Reads the active firewall config and applies single-entry PATCH actions
(``rules.insert``, ``rules.update``, ``rules.remove``, ``ip.insert``,
``ip.update``, ``ip.remove``).
"""

from __future__ import annotations

import logging
from typing import Any, Optional

import httpx

from doorman.errors import RemoteAPIError, TranslationError
from doorman.models.changes import Change, ChangeKind, ChangeOutcome, ChangeTarget
from doorman.models.rules import (
    ConfigMetadata,
    ProvidersConfig,
    ProviderType,
    UnifiedConfig,
    UnifiedRule,
    VercelProviderConfig,
)
from doorman.models.vercel import VercelFirewallConfig
from doorman.providers.base import DEFAULT_TIMEOUT, FeatureSet, FirewallProvider, send
from doorman.sync.diff_engine import Fingerprint, rule_fingerprint
from doorman.translate.rule_translator import VercelTranslator

logger = logging.getLogger(__name__)

VERCEL_API_BASE_URL = "https://api.vercel.com"
FIREWALL_CONFIG_PATH = "/v1/security/firewall/config"

_PATCH_ACTIONS = {
    (ChangeTarget.RULE, ChangeKind.ADD): "rules.insert",
    (ChangeTarget.RULE, ChangeKind.UPDATE): "rules.update",
    (ChangeTarget.RULE, ChangeKind.DELETE): "rules.remove",
    (ChangeTarget.IP, ChangeKind.ADD): "ip.insert",
    (ChangeTarget.IP, ChangeKind.UPDATE): "ip.update",
    (ChangeTarget.IP, ChangeKind.DELETE): "ip.remove",
}


class VercelProvider(FirewallProvider):
    """Vercel project firewall."""

    name = ProviderType.VERCEL

    def __init__(
        self,
        token: str,
        project_id: str,
        team_id: Optional[str] = None,
        client: Optional[httpx.Client] = None,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        super().__init__()
        self.project_id = project_id
        self.team_id = team_id
        self.translator = VercelTranslator()
        self._client = client or httpx.Client(
            base_url=VERCEL_API_BASE_URL,
            headers={"Authorization": f"Bearer {token}"},
            timeout=timeout,
        )

    def _params(self) -> dict[str, str]:
        params = {"projectId": self.project_id}
        if self.team_id:
            params["teamId"] = self.team_id
        return params

    def _fetch_active(self) -> VercelFirewallConfig:
        response = send(self._client, "GET", FIREWALL_CONFIG_PATH, self.name.value, params=self._params())
        data = response.json()
        active = data.get("active", data) if isinstance(data, dict) else {}
        return VercelFirewallConfig.model_validate(active or {})

    def fetch_remote_state(self) -> UnifiedConfig:
        active = self._fetch_active()
        rules = []
        for native in active.rules:
            translated = self.translator.to_unified(native)
            self._record(translated.warnings)
            rules.append(translated.result)
        ips = []
        for native in active.ips:
            translated = self.translator.ip_to_unified(native)
            self._record(translated.warnings)
            ips.append(translated.result)
        logger.info("Fetched %d rule(s) and %d IP(s) from Vercel (version %s)", len(rules), len(ips), active.version)
        return UnifiedConfig(
            provider=ProviderType.VERCEL,
            providers=ProvidersConfig(
                vercel=VercelProviderConfig(project_id=self.project_id, team_id=self.team_id)
            ),
            rules=rules,
            ips=ips,
            metadata=ConfigMetadata(version=active.version, updated_at=active.updated_at),
        )

    def _value(self, change: Change) -> Optional[dict[str, Any]]:
        if change.kind == ChangeKind.DELETE:
            return None
        if change.target == ChangeTarget.RULE:
            translated = self.translator.from_unified(change.rule)
        else:
            translated = self.translator.ip_from_unified(change.ip)
        self._record(translated.warnings)
        value = translated.result.to_dict()
        value.pop("id", None)
        return value

    def apply_change(self, change: Change) -> ChangeOutcome:
        body = {
            "action": _PATCH_ACTIONS[(change.target, change.kind)],
            "id": change.remote_id if change.kind != ChangeKind.ADD else None,
            "value": self._value(change),
        }
        logger.debug("Vercel %s %s", body["action"], change.label)
        response = send(
            self._client, "PATCH", FIREWALL_CONFIG_PATH, self.name.value,
            params=self._params(), json=body,
        )
        data = response.json() if response.content else {}
        new_id = data.get("id") if isinstance(data, dict) else None
        return ChangeOutcome(id=new_id or change.remote_id, message=body["action"])

    def verify_credentials(self) -> bool:
        try:
            self._fetch_active()
        except RemoteAPIError as e:
            if e.status_code in (401, 403):
                return False
            raise
        return True

    def supported_features(self) -> FeatureSet:
        return FeatureSet(supports_ip_allow=False, supports_custom_response=False)

    def fingerprints(self) -> tuple[Optional[Fingerprint], Optional[Fingerprint]]:
        """Compare declared rules as Vercel will store them.

        Remote rules only ever hold what Vercel keeps, so the declared side
        is pushed through a Vercel round trip before fingerprinting.
        """

        def declared(rule: UnifiedRule, include_name: bool) -> str:
            try:
                stored = self.translator.to_unified(self.translator.from_unified(rule).result).result
            except TranslationError:
                stored = rule
            return rule_fingerprint(stored, include_name)

        return declared, rule_fingerprint

    def close(self) -> None:
        self._client.close()
