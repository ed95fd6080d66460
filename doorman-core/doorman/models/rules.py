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

"""Pydantic models for the provider-agnostic (unified) rule schema.

JSON keys are camelCase; attributes are snake_case with aliases. Instances
are frozen: translation, migration, and diffing always build new ones.
"""

from __future__ import annotations

import ipaddress
from enum import Enum
from typing import Any, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

CURRENT_SCHEMA_VERSION = "2.0"


class DoormanModel(BaseModel):
    """Shared model configuration: aliases in, aliases out, immutable."""

    model_config = ConfigDict(populate_by_name=True, frozen=True, extra="ignore")

    def to_dict(self) -> dict[str, Any]:
        """Dump using the JSON (alias) names, omitting unset optionals."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class ActionType(str, Enum):
    """What a rule does when it matches."""

    LOG = "log"
    DENY = "deny"
    CHALLENGE = "challenge"
    BYPASS = "bypass"
    RATE_LIMIT = "rate_limit"
    REDIRECT = "redirect"
    ALLOW = "allow"
    BLOCK = "block"


class Operator(str, Enum):
    """Comparison operators of the unified vocabulary."""

    EQ = "eq"
    NE = "ne"
    CONTAINS = "contains"
    NOT_CONTAINS = "not_contains"
    STARTS_WITH = "starts_with"
    ENDS_WITH = "ends_with"
    MATCHES = "matches"
    IN = "in"
    NOT_IN = "not_in"
    GT = "gt"
    GE = "ge"
    LT = "lt"
    LE = "le"
    EXISTS = "exists"
    NOT_EXISTS = "not_exists"


MEMBERSHIP_OPERATORS = frozenset({Operator.IN, Operator.NOT_IN})
PRESENCE_OPERATORS = frozenset({Operator.EXISTS, Operator.NOT_EXISTS})


class FieldType(str, Enum):
    """Built-in condition fields. Custom field names are also accepted."""

    IP = "ip"
    COUNTRY = "country"
    CONTINENT = "continent"
    REGION = "region"
    CITY = "city"
    ASN = "asn"
    PATH = "path"
    HOST = "host"
    METHOD = "method"
    HEADER = "header"
    QUERY = "query"
    COOKIE = "cookie"
    USER_AGENT = "user_agent"
    REFERER = "referer"
    SCHEME = "scheme"
    PORT = "port"


KEYED_FIELDS = frozenset({FieldType.HEADER.value, FieldType.COOKIE.value, FieldType.QUERY.value})


class ConditionLogic(str, Enum):
    """How a rule's conditions combine."""

    AND = "AND"
    OR = "OR"


class IPAction(str, Enum):
    """Action of an IP entry."""

    DENY = "deny"
    ALLOW = "allow"


class ProviderType(str, Enum):
    """Supported firewall providers."""

    VERCEL = "vercel"
    CLOUDFLARE = "cloudflare"


ConditionValue = Union[str, int, float, list[Union[str, int, float]]]


def is_list_reference(value: Any) -> bool:
    """True for a named-list reference such as ``$blocklist``."""
    return isinstance(value, str) and len(value) > 1 and value.startswith("$")


class UnifiedCondition(DoormanModel):
    """One comparison against a request attribute.

    ``key`` names the sub-field (header name, cookie name, query parameter)
    for the ``header``, ``cookie`` and ``query`` fields.
    """

    field: str
    operator: Operator
    value: Optional[ConditionValue] = None
    negated: bool = False
    key: Optional[str] = None

    @model_validator(mode="after")
    def _value_matches_operator(self) -> "UnifiedCondition":
        if self.operator in PRESENCE_OPERATORS:
            return self
        if self.value is None:
            raise ValueError(f"operator {self.operator.value!r} requires a value")
        if self.operator in MEMBERSHIP_OPERATORS:
            if not isinstance(self.value, list) and not is_list_reference(self.value):
                raise ValueError(
                    f"operator {self.operator.value!r} requires an array value "
                    f"or a $list reference, got {type(self.value).__name__}"
                )
        elif isinstance(self.value, list):
            raise ValueError(f"operator {self.operator.value!r} requires a scalar value, got an array")
        return self


class UnifiedRateLimit(DoormanModel):
    """Rate-limit parameters. ``window`` is a duration such as ``60s``."""

    requests: int = Field(gt=0)
    window: str
    characteristics: Optional[list[str]] = None
    mitigation_timeout: Optional[int] = Field(default=None, alias="mitigationTimeout")
    counting_expression: Optional[str] = Field(default=None, alias="countingExpression")


class UnifiedRedirect(DoormanModel):
    """Redirect target: an absolute URL or an absolute path."""

    location: str
    permanent: Optional[bool] = None
    status_code: Optional[int] = Field(default=None, alias="statusCode")
    preserve_query_string: Optional[bool] = Field(default=None, alias="preserveQueryString")


class UnifiedResponse(DoormanModel):
    """Custom response body for blocking actions."""

    status_code: int = Field(alias="statusCode")
    content: str
    content_type: str = Field(default="text/plain", alias="contentType")


class UnifiedAction(DoormanModel):
    """Action plus its optional parameters.

    ``rate_limit`` and ``redirect`` are only meaningful for the matching
    action type; providers and the validator enforce that, not the model.
    """

    type: ActionType
    rate_limit: Optional[UnifiedRateLimit] = Field(default=None, alias="rateLimit")
    redirect: Optional[UnifiedRedirect] = None
    response: Optional[UnifiedResponse] = None
    duration: Optional[str] = None


class UnifiedRule(DoormanModel):
    """A provider-agnostic firewall rule."""

    id: Optional[str] = None
    name: str
    description: Optional[str] = None
    enabled: bool = True
    conditions: list[UnifiedCondition] = Field(default_factory=list)
    condition_logic: ConditionLogic = Field(default=ConditionLogic.AND, alias="conditionLogic")
    action: UnifiedAction
    priority: Optional[int] = None
    categories: Optional[list[str]] = None


class UnifiedIPRule(DoormanModel):
    """An IP or CIDR entry. Identity is ``(ip, action)``."""

    id: Optional[str] = None
    ip: str
    hostname: Optional[str] = None
    notes: Optional[str] = None
    action: IPAction = IPAction.DENY

    @field_validator("ip")
    @classmethod
    def _valid_ip(cls, value: str) -> str:
        value = value.strip()
        try:
            if "/" in value:
                ipaddress.ip_network(value, strict=False)
            else:
                ipaddress.ip_address(value)
        except ValueError as e:
            raise ValueError(f"invalid IP address or CIDR {value!r}") from e
        return value


class VercelProviderConfig(DoormanModel):
    project_id: Optional[str] = Field(default=None, alias="projectId")
    team_id: Optional[str] = Field(default=None, alias="teamId")


class CloudflareProviderConfig(DoormanModel):
    zone_id: Optional[str] = Field(default=None, alias="zoneId")
    account_id: Optional[str] = Field(default=None, alias="accountId")


class ProvidersConfig(DoormanModel):
    vercel: Optional[VercelProviderConfig] = None
    cloudflare: Optional[CloudflareProviderConfig] = None

    def get(self, provider: ProviderType) -> Optional[DoormanModel]:
        return getattr(self, provider.value)


class ConfigMetadata(DoormanModel):
    """Bookkeeping: remote version counter and migration stamps."""

    version: Optional[int] = None
    updated_at: Optional[str] = Field(default=None, alias="updatedAt")
    created_at: Optional[str] = Field(default=None, alias="createdAt")
    last_synced_at: Optional[str] = Field(default=None, alias="lastSyncedAt")
    migrated_from: Optional[str] = Field(default=None, alias="migratedFrom")
    migrated_at: Optional[str] = Field(default=None, alias="migratedAt")


class UnifiedConfig(DoormanModel):
    """A complete v2 configuration."""

    schema_url: Optional[str] = Field(default=None, alias="$schema")
    version: str = CURRENT_SCHEMA_VERSION
    provider: Optional[ProviderType] = None
    providers: Optional[ProvidersConfig] = None
    rules: list[UnifiedRule] = Field(default_factory=list)
    ips: list[UnifiedIPRule] = Field(default_factory=list)
    metadata: Optional[ConfigMetadata] = None

    @model_validator(mode="after")
    def _provider_has_settings(self) -> "UnifiedConfig":
        if self.provider is not None:
            if self.providers is None or self.providers.get(self.provider) is None:
                raise ValueError(
                    f"provider is {self.provider.value!r} but providers.{self.provider.value} is missing"
                )
        return self

    @property
    def remote_version(self) -> Optional[int]:
        return self.metadata.version if self.metadata else None
