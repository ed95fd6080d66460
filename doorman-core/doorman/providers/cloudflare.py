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

"""Cloudflare Rulesets adapter.

Doorman manages the zone's ``http_request_firewall_custom`` ruleset. IP
entries are stored as rules of the form ``ip.src eq <ip>`` with an
``IP <action>: <ip>`` description, which is how they are told apart from
other rules when reading back.

With an account id, denied IPs go into an account IP List instead, blocked
by a single ``ip.src in $doorman_ip_blocklist`` rule. Allowed IPs stay
rules because a List can only back one action.
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Optional

import httpx

from doorman.errors import RemoteAPIError
from doorman.models.changes import Change, ChangeKind, ChangeOutcome, ChangeTarget
from doorman.models.cloudflare import (
    CUSTOM_RULES_PHASE,
    CloudflareList,
    CloudflareListItem,
    CloudflareRule,
    CloudflareRuleset,
)
from doorman.models.rules import (
    CloudflareProviderConfig,
    ConfigMetadata,
    IPAction,
    ProvidersConfig,
    ProviderType,
    UnifiedConfig,
    UnifiedIPRule,
    UnifiedRule,
)
from doorman.providers.base import DEFAULT_TIMEOUT, FeatureSet, FirewallProvider, send
from doorman.reporter.json_out import to_canonical_json
from doorman.sync.diff_engine import Fingerprint
from doorman.translate.rule_translator import CloudflareTranslator, is_ip_entry

logger = logging.getLogger(__name__)

CLOUDFLARE_API_BASE_URL = "https://api.cloudflare.com/client/v4"
RULESET_NAME = "Doorman Custom Firewall Rules"
RULESET_DESCRIPTION = "Custom firewall rules managed by Doorman"
MAX_RULES = 125

IP_LIST_NAME = "doorman_ip_blocklist"
IP_LIST_DESCRIPTION = "IP addresses blocked by Doorman"
IP_LIST_EXPRESSION = f"ip.src in ${IP_LIST_NAME}"
IP_LIST_RULE_DESCRIPTION = "Block IPs in Doorman IP Blocklist"
DEFAULT_LIST_COMMENT = "Blocked by Doorman"

# Server-managed fields left out of content comparison.
_VOLATILE_FIELDS = ("id", "version", "last_updated", "ref", "categories")


def is_list_rule(rule: CloudflareRule) -> bool:
    """True for the rule that blocks Doorman's IP List."""
    return " ".join(rule.expression.split()) == IP_LIST_EXPRESSION


class CloudflareProvider(FirewallProvider):
    """Cloudflare zone custom firewall rules."""

    name = ProviderType.CLOUDFLARE

    def __init__(
        self,
        api_token: str,
        zone_id: str,
        account_id: Optional[str] = None,
        client: Optional[httpx.Client] = None,
        translator: Optional[CloudflareTranslator] = None,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        super().__init__()
        self.zone_id = zone_id
        self.account_id = account_id
        self.use_lists = bool(account_id)
        self.translator = translator or CloudflareTranslator()
        self._client = client or httpx.Client(
            base_url=CLOUDFLARE_API_BASE_URL,
            headers={"Authorization": f"Bearer {api_token}"},
            timeout=timeout,
        )
        # Creates run on worker threads; find-or-create must happen once.
        self._ruleset_lock = threading.Lock()
        self._list_lock = threading.Lock()
        self._ruleset_id: Optional[str] = None
        self._list_id: Optional[str] = None
        self._list_rule_present = False
        self._list_item_ids: set[str] = set()
        self._native: dict[str, CloudflareRule] = {}

    def _envelope(self, method: str, path: str, **kwargs: Any) -> dict[str, Any]:
        """Send a request and check Cloudflare's ``{success, errors, result}`` envelope."""
        response = send(self._client, method, path, self.name.value, **kwargs)
        body = response.json() if response.content else {}
        if not isinstance(body, dict):
            return {}
        if body.get("success") is False:
            messages = "; ".join(str(e.get("message", e)) for e in body.get("errors") or []) or "request failed"
            raise RemoteAPIError(messages, status_code=response.status_code, provider=self.name.value)
        return body

    def _call(self, method: str, path: str, **kwargs: Any) -> Any:
        return self._envelope(method, path, **kwargs).get("result")

    # -- ruleset ----------------------------------------------------------

    def _find_ruleset_id(self) -> Optional[str]:
        if self._ruleset_id:
            return self._ruleset_id
        for summary in self._call("GET", f"/zones/{self.zone_id}/rulesets") or []:
            if summary.get("phase") == CUSTOM_RULES_PHASE and summary.get("kind") in ("zone", "custom"):
                self._ruleset_id = summary["id"]
                logger.debug("Found custom firewall ruleset %s", self._ruleset_id)
                break
        return self._ruleset_id

    def _ensure_ruleset_id(self) -> str:
        with self._ruleset_lock:
            ruleset_id = self._find_ruleset_id()
            if ruleset_id:
                return ruleset_id
            logger.info("No custom firewall ruleset in zone %s, creating one", self.zone_id)
            created = self._call(
                "POST",
                f"/zones/{self.zone_id}/rulesets",
                json={
                    "name": RULESET_NAME,
                    "description": RULESET_DESCRIPTION,
                    "kind": "zone",
                    "phase": CUSTOM_RULES_PHASE,
                    "rules": [],
                },
            )
            self._ruleset_id = created["id"]
            return self._ruleset_id

    def fetch_ruleset(self) -> Optional[CloudflareRuleset]:
        ruleset_id = self._find_ruleset_id()
        if ruleset_id is None:
            return None
        return CloudflareRuleset.model_validate(self._call("GET", f"/zones/{self.zone_id}/rulesets/{ruleset_id}"))

    # -- IP List ----------------------------------------------------------

    def _lists_path(self) -> str:
        return f"/accounts/{self.account_id}/rules/lists"

    def find_ip_list(self) -> Optional[CloudflareList]:
        for summary in self._call("GET", self._lists_path()) or []:
            found = CloudflareList.model_validate(summary)
            if found.name == IP_LIST_NAME and found.kind == "ip":
                self._list_id = found.id
                return found
        return None

    def _ensure_list_id(self) -> str:
        with self._list_lock:
            if self._list_id or self.find_ip_list():
                return self._list_id
            logger.info("No Doorman IP List in account %s, creating one", self.account_id)
            created = self._call(
                "POST",
                self._lists_path(),
                json={"name": IP_LIST_NAME, "kind": "ip", "description": IP_LIST_DESCRIPTION},
            )
            self._list_id = created["id"]
            return self._list_id

    def fetch_list_items(self, list_id: str) -> list[CloudflareListItem]:
        """All items of a List, following the pagination cursor."""
        items: list[CloudflareListItem] = []
        params: dict[str, str] = {}
        while True:
            body = self._envelope("GET", f"{self._lists_path()}/{list_id}/items", params=params)
            items.extend(CloudflareListItem.model_validate(item) for item in body.get("result") or [])
            cursor = ((body.get("result_info") or {}).get("cursors") or {}).get("after")
            if not cursor:
                return items
            params = {"cursor": cursor}

    def _ensure_list_rule(self) -> None:
        with self._list_lock:
            if self._list_rule_present:
                return
            ruleset = self.fetch_ruleset()
            if ruleset is None or not any(is_list_rule(r) for r in ruleset.rules):
                logger.info("Adding the rule that blocks the %s List", IP_LIST_NAME)
                self._call(
                    "POST",
                    f"/zones/{self.zone_id}/rulesets/{self._ensure_ruleset_id()}/rules",
                    json={
                        "action": "block",
                        "expression": IP_LIST_EXPRESSION,
                        "description": IP_LIST_RULE_DESCRIPTION,
                        "enabled": True,
                    },
                )
            self._list_rule_present = True

    def _in_list(self, ip: UnifiedIPRule) -> bool:
        return self.use_lists and ip.action == IPAction.DENY

    def _fetch_list_ips(self) -> list[UnifiedIPRule]:
        self._list_item_ids = set()
        ip_list = self.find_ip_list()
        if ip_list is None:
            return []
        ips = []
        for item in self.fetch_list_items(ip_list.id):
            if not item.ip:
                continue
            if item.id:
                self._list_item_ids.add(item.id)
            notes = item.comment if item.comment != DEFAULT_LIST_COMMENT else None
            ips.append(UnifiedIPRule(id=item.id, ip=item.ip, notes=notes, action=IPAction.DENY))
        logger.debug("Fetched %d IP(s) from the %s List", len(ips), IP_LIST_NAME)
        return ips

    # -- FirewallProvider -------------------------------------------------

    def fetch_remote_state(self) -> UnifiedConfig:
        ruleset = self.fetch_ruleset()
        natives = ruleset.rules if ruleset else []
        self._native = {}
        rules = []
        ips = []
        for native in natives:
            if self.use_lists and is_list_rule(native):
                self._list_rule_present = True
                continue
            if native.id:
                self._native[native.id] = native
            if is_ip_entry(native):
                translated = self.translator.ip_to_unified(native)
                ips.append(translated.result)
            else:
                translated = self.translator.to_unified(native)
                rules.append(translated.result)
            self._record(translated.warnings)
        if self.use_lists:
            ips.extend(self._fetch_list_ips())

        version = int(ruleset.version) if ruleset and ruleset.version and ruleset.version.isdigit() else None
        logger.info("Fetched %d rule(s) and %d IP(s) from Cloudflare (version %s)", len(rules), len(ips), version)
        return UnifiedConfig(
            provider=ProviderType.CLOUDFLARE,
            providers=ProvidersConfig(
                cloudflare=CloudflareProviderConfig(zone_id=self.zone_id, account_id=self.account_id)
            ),
            rules=rules,
            ips=ips,
            metadata=ConfigMetadata(version=version, updated_at=ruleset.last_updated if ruleset else None),
        )

    def _native_for(self, change: Change) -> CloudflareRule:
        if change.target == ChangeTarget.RULE:
            translated = self.translator.from_unified(change.rule)
        else:
            translated = self.translator.ip_from_unified(change.ip)
        self._record(translated.warnings)
        return translated.result

    def apply_change(self, change: Change) -> ChangeOutcome:
        if change.target == ChangeTarget.IP:
            if change.kind == ChangeKind.ADD and self._in_list(change.ip):
                return self._add_list_item(change.ip)
            if change.remote_id in self._list_item_ids:
                return self._change_list_item(change)

        ruleset_id = self._ensure_ruleset_id()
        rules_path = f"/zones/{self.zone_id}/rulesets/{ruleset_id}/rules"

        if change.kind == ChangeKind.DELETE:
            self._call("DELETE", f"{rules_path}/{change.remote_id}")
            logger.debug("Deleted Cloudflare rule %s (%s)", change.remote_id, change.label)
            return ChangeOutcome(id=change.remote_id, message="deleted")

        body = _request_body(self._native_for(change))
        if change.kind == ChangeKind.UPDATE:
            self._call("PATCH", f"{rules_path}/{change.remote_id}", json=body)
            return ChangeOutcome(id=change.remote_id, message="updated")

        result = self._call("POST", rules_path, json=body)
        created = (result or {}).get("rules") or []
        new_id = created[-1].get("id") if created else None
        logger.debug("Created Cloudflare rule %s (%s)", new_id, change.label)
        return ChangeOutcome(id=new_id, message="created")

    def _add_list_item(self, ip: UnifiedIPRule) -> ChangeOutcome:
        list_id = self._ensure_list_id()
        comment = ip.notes or ip.hostname or DEFAULT_LIST_COMMENT
        self._call("POST", f"{self._lists_path()}/{list_id}/items", json=[{"ip": ip.ip, "comment": comment}])
        self._ensure_list_rule()
        logger.debug("Added %s to the %s List", ip.ip, IP_LIST_NAME)
        return ChangeOutcome(message="added to list")

    def _change_list_item(self, change: Change) -> ChangeOutcome:
        """Items have no update call; an update replaces the item."""
        list_id = self._ensure_list_id()
        self._call(
            "DELETE",
            f"{self._lists_path()}/{list_id}/items",
            json={"items": [{"id": change.remote_id}]},
        )
        logger.debug("Removed %s from the %s List", change.label, IP_LIST_NAME)
        if change.kind == ChangeKind.DELETE:
            return ChangeOutcome(id=change.remote_id, message="removed from list")
        return self._add_list_item(change.ip)

    def verify_credentials(self) -> bool:
        try:
            self._call("GET", f"/zones/{self.zone_id}/rulesets")
        except RemoteAPIError as e:
            if e.status_code in (401, 403):
                return False
            raise
        return True

    def supported_features(self) -> FeatureSet:
        # List items keep only a comment, so List entries match on (ip, action) alone.
        compare_fields = () if self.use_lists else ("hostname",)
        return FeatureSet(supports_custom_response=True, max_rules=MAX_RULES, ip_compare_fields=compare_fields)

    def fingerprints(self) -> tuple[Optional[Fingerprint], Optional[Fingerprint]]:
        """Compare in Cloudflare's native shape.

        Reverse translation of expressions is lossy, so remote rules are
        compared through the native rule kept from the last fetch and
        declared rules through their forward translation.
        """

        def declared(rule: UnifiedRule, include_name: bool) -> str:
            native = self.translator.from_unified(rule).result
            return native_fingerprint(native, include_name)

        def remote(rule: UnifiedRule, include_name: bool) -> str:
            native = self._native.get(rule.id or "")
            if native is None:
                return declared(rule, include_name)
            return native_fingerprint(native, include_name)

        return declared, remote

    def close(self) -> None:
        self._client.close()


def _request_body(rule: CloudflareRule) -> dict[str, Any]:
    body = rule.to_dict()
    for name in _VOLATILE_FIELDS:
        body.pop(name, None)
    return body


def native_fingerprint(rule: CloudflareRule, include_name: bool = True) -> str:
    """Canonical comparable form of a native Cloudflare rule."""
    body = _request_body(rule)
    body["expression"] = " ".join(rule.expression.split())
    ratelimit = body.get("ratelimit")
    if ratelimit is not None:
        ratelimit["characteristics"] = sorted(ratelimit.get("characteristics") or [])
    if not include_name:
        body.pop("description", None)
    return to_canonical_json(body)
