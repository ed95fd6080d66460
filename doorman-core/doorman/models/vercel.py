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

"""Pydantic models for Vercel's native firewall shapes.

Rules hold OR'd condition groups whose conditions are AND'd. Operator,
condition type, and action stay plain strings so values the translator does
not know yet still parse and get reported precisely.
"""

from __future__ import annotations

from typing import Optional, Union

from pydantic import Field

from doorman.models.rules import DoormanModel


class VercelCondition(DoormanModel):
    type: str
    op: str
    neg: Optional[bool] = None
    key: Optional[str] = None
    value: Optional[Union[str, int, float, list[Union[str, int, float]]]] = None


class VercelConditionGroup(DoormanModel):
    conditions: list[VercelCondition] = Field(default_factory=list)


class VercelRateLimit(DoormanModel):
    requests: int
    window: str


class VercelRedirect(DoormanModel):
    location: str
    permanent: bool = False


class VercelMitigate(DoormanModel):
    action: str
    rate_limit: Optional[VercelRateLimit] = Field(default=None, alias="rateLimit")
    redirect: Optional[VercelRedirect] = None
    action_duration: Optional[str] = Field(default=None, alias="actionDuration")


class VercelRuleAction(DoormanModel):
    mitigate: VercelMitigate


class VercelCustomRule(DoormanModel):
    id: Optional[str] = None
    name: str
    description: Optional[str] = None
    condition_group: list[VercelConditionGroup] = Field(default_factory=list, alias="conditionGroup")
    action: VercelRuleAction
    active: bool = True


class VercelIPRule(DoormanModel):
    id: Optional[str] = None
    ip: str
    hostname: Optional[str] = None
    notes: Optional[str] = None
    action: str = "deny"


class VercelFirewallConfig(DoormanModel):
    """Legacy (v1) config file and the shape of Vercel's active config."""

    project_id: Optional[str] = Field(default=None, alias="projectId")
    team_id: Optional[str] = Field(default=None, alias="teamId")
    version: Optional[int] = None
    firewall_enabled: Optional[bool] = Field(default=None, alias="firewallEnabled")
    rules: list[VercelCustomRule] = Field(default_factory=list)
    ips: list[VercelIPRule] = Field(default_factory=list)
    updated_at: Optional[str] = Field(default=None, alias="updatedAt")
