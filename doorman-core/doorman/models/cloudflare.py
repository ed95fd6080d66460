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

"""Pydantic models for Cloudflare's native ruleset shapes.

Rulesets live on the zone; IP Lists live on the account. Cloudflare's JSON
is already snake_case, so no aliases are needed.
"""

from __future__ import annotations

from typing import Optional

from pydantic import ConfigDict, Field

from doorman.models.rules import DoormanModel

CUSTOM_RULES_PHASE = "http_request_firewall_custom"


class CloudflareRateLimit(DoormanModel):
    characteristics: list[str] = Field(default_factory=lambda: ["ip.src"])
    period: int
    requests_per_period: int
    mitigation_timeout: Optional[int] = None
    counting_expression: Optional[str] = None


class CloudflareTargetURL(DoormanModel):
    value: str


class CloudflareFromValue(DoormanModel):
    status_code: int = 302
    target_url: CloudflareTargetURL
    preserve_query_string: Optional[bool] = None


class CloudflareBlockResponse(DoormanModel):
    status_code: int
    content: str
    content_type: str = "text/plain"


class CloudflareActionParameters(DoormanModel):
    """Known parameters are typed; others (e.g. skip targets) pass through."""

    model_config = ConfigDict(populate_by_name=True, frozen=True, extra="allow")

    from_value: Optional[CloudflareFromValue] = None
    response: Optional[CloudflareBlockResponse] = None


class CloudflareRule(DoormanModel):
    id: Optional[str] = None
    version: Optional[str] = None
    action: str
    expression: str
    description: Optional[str] = None
    enabled: bool = True
    categories: Optional[list[str]] = None
    last_updated: Optional[str] = None
    ref: Optional[str] = None
    action_parameters: Optional[CloudflareActionParameters] = None
    ratelimit: Optional[CloudflareRateLimit] = None


class CloudflareRuleset(DoormanModel):
    id: str
    name: Optional[str] = None
    description: Optional[str] = None
    kind: Optional[str] = None
    version: Optional[str] = None
    phase: Optional[str] = None
    rules: list[CloudflareRule] = Field(default_factory=list)
    last_updated: Optional[str] = None


class CloudflareList(DoormanModel):
    """An account-level IP List, referenced from expressions as ``$name``."""

    id: str
    name: str
    kind: str = "ip"
    description: Optional[str] = None
    num_items: Optional[int] = None


class CloudflareListItem(DoormanModel):
    id: Optional[str] = None
    ip: Optional[str] = None
    comment: Optional[str] = None
    created_on: Optional[str] = None
    modified_on: Optional[str] = None
