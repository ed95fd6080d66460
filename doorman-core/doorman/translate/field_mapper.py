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

"""Field and operator mapping between the unified vocabulary and providers.

Every table here is static. A field or operator that a table does not cover
raises ``UnsupportedFieldError``/``UnsupportedOperatorError`` rather than
falling back to a guess. The one deliberate passthrough is a dotted custom
field (``cf.bot_management.score``), which already is a Cloudflare field.
"""

from __future__ import annotations

import re
from typing import Optional

from doorman.errors import UnsupportedFieldError, UnsupportedOperatorError
from doorman.models.rules import Operator, UnifiedCondition
from doorman.models.vercel import VercelCondition

CLOUDFLARE = "cloudflare"
VERCEL = "vercel"

UNIFIED_TO_CLOUDFLARE_FIELDS: dict[str, str] = {
    "ip": "ip.src",
    "country": "ip.geoip.country",
    "continent": "ip.geoip.continent",
    "region": "ip.geoip.subdivision_1",
    "city": "ip.geoip.city",
    "asn": "ip.geoip.asnum",
    "path": "http.request.uri.path",
    "host": "http.host",
    "method": "http.request.method",
    "header": "http.request.headers",
    "query": "http.request.uri.query",
    "cookie": "http.cookie",
    "user_agent": "http.user_agent",
    "referer": "http.referer",
    "scheme": "ssl",
    "port": "cf.edge.server_port",
}

# Vercel-only fields that still have a Cloudflare counterpart. Not reversible.
_VERCEL_EXTRAS_TO_CLOUDFLARE: dict[str, str] = {
    "target_path": "http.request.uri.path",
    "protocol": "ssl",
}

CLOUDFLARE_TO_UNIFIED_FIELDS: dict[str, str] = {
    token: name for name, token in UNIFIED_TO_CLOUDFLARE_FIELDS.items()
}

# Keyed sub-fields: unified field -> Cloudflare map field.
_CLOUDFLARE_KEYED_FIELDS: dict[str, str] = {
    "header": "http.request.headers",
    "cookie": "http.request.cookies",
    "query": "http.request.uri.args",
}
_CLOUDFLARE_KEYED_REVERSE = {token: name for name, token in _CLOUDFLARE_KEYED_FIELDS.items()}

_KEYED_TOKEN = re.compile(r'^([a-z0-9_.]+)\["((?:[^"\\]|\\.)*)"\]$')
_DOTTED_FIELD = re.compile(r"^[a-z][a-z0-9_]*(?:\.[a-z0-9_]+)+$")

UNIFIED_TO_VERCEL_FIELDS: dict[str, str] = {
    "ip": "ip_address",
    "country": "geo_country",
    "continent": "geo_continent",
    "region": "geo_country_region",
    "city": "geo_city",
    "asn": "geo_as_number",
    "path": "path",
    "host": "host",
    "method": "method",
    "header": "header",
    "query": "query",
    "cookie": "cookie",
    "user_agent": "user_agent",
    "scheme": "scheme",
    # Vercel's edge region is not a geo subdivision.
    "edge_region": "region",
}

VERCEL_TO_UNIFIED_FIELDS: dict[str, str] = {
    vercel: name for name, vercel in UNIFIED_TO_VERCEL_FIELDS.items()
}

# Vercel-only condition types carried as custom unified fields of the same name.
VERCEL_ONLY_FIELDS = frozenset({
    "environment", "ja3_digest", "ja4_digest", "target_path", "protocol", "rate_limit_api_id",
})

# (native operator, flips negation)
UNIFIED_TO_CLOUDFLARE_OPERATORS: dict[Operator, tuple[str, bool]] = {
    Operator.EQ: ("eq", False),
    Operator.NE: ("ne", False),
    Operator.CONTAINS: ("contains", False),
    Operator.NOT_CONTAINS: ("contains", True),
    Operator.STARTS_WITH: ("starts_with", False),
    Operator.ENDS_WITH: ("ends_with", False),
    Operator.MATCHES: ("matches", False),
    Operator.IN: ("in", False),
    Operator.NOT_IN: ("in", True),
    Operator.GT: ("gt", False),
    Operator.GE: ("ge", False),
    Operator.LT: ("lt", False),
    Operator.LE: ("le", False),
    Operator.EXISTS: ("exists", False),
    Operator.NOT_EXISTS: ("exists", True),
}

CLOUDFLARE_TO_UNIFIED_OPERATORS: dict[str, Operator] = {
    "eq": Operator.EQ,
    "==": Operator.EQ,
    "ne": Operator.NE,
    "!=": Operator.NE,
    "contains": Operator.CONTAINS,
    "starts_with": Operator.STARTS_WITH,
    "ends_with": Operator.ENDS_WITH,
    "matches": Operator.MATCHES,
    "~": Operator.MATCHES,
    "in": Operator.IN,
    "gt": Operator.GT,
    "ge": Operator.GE,
    "lt": Operator.LT,
    "le": Operator.LE,
}

UNIFIED_TO_VERCEL_OPERATORS: dict[Operator, tuple[str, bool]] = {
    Operator.EQ: ("eq", False),
    Operator.NE: ("eq", True),
    Operator.STARTS_WITH: ("pre", False),
    Operator.ENDS_WITH: ("suf", False),
    Operator.CONTAINS: ("sub", False),
    Operator.NOT_CONTAINS: ("sub", True),
    Operator.MATCHES: ("re", False),
    Operator.IN: ("inc", False),
    Operator.NOT_IN: ("inc", True),
    Operator.EXISTS: ("ex", False),
    Operator.NOT_EXISTS: ("nex", False),
}

VERCEL_TO_UNIFIED_OPERATORS: dict[str, Operator] = {
    "eq": Operator.EQ,
    "pre": Operator.STARTS_WITH,
    "suf": Operator.ENDS_WITH,
    "sub": Operator.CONTAINS,
    "re": Operator.MATCHES,
    "inc": Operator.IN,
    "ex": Operator.EXISTS,
    "nex": Operator.NOT_EXISTS,
}


def quote_key(key: str) -> str:
    return key.replace("\\", "\\\\").replace('"', '\\"')


def _unquote_key(key: str) -> str:
    return re.sub(r"\\(.)", r"\1", key)


def unified_field_to_cloudflare(field: str, key: Optional[str] = None) -> str:
    """Return the Cloudflare field token for a unified field.

    Header names are lower-cased because Cloudflare normalises them.
    """
    if key and field in _CLOUDFLARE_KEYED_FIELDS:
        if field == "header":
            key = key.lower()
        return f'{_CLOUDFLARE_KEYED_FIELDS[field]}["{quote_key(key)}"]'
    if field in UNIFIED_TO_CLOUDFLARE_FIELDS:
        return UNIFIED_TO_CLOUDFLARE_FIELDS[field]
    if field in _VERCEL_EXTRAS_TO_CLOUDFLARE:
        return _VERCEL_EXTRAS_TO_CLOUDFLARE[field]
    if _DOTTED_FIELD.match(field):
        return field
    raise UnsupportedFieldError(field, CLOUDFLARE)


def cloudflare_field_to_unified(token: str) -> tuple[str, Optional[str]]:
    """Return ``(field, key)`` for a Cloudflare field token.

    Tokens the forward mapping cannot produce are rejected, except dotted
    tokens outside Doorman's table, which pass through unchanged.
    """
    token = token.strip()
    keyed = _KEYED_TOKEN.match(token)
    if keyed:
        base, key = keyed.groups()
        if base in _CLOUDFLARE_KEYED_REVERSE:
            return _CLOUDFLARE_KEYED_REVERSE[base], _unquote_key(key)
        raise UnsupportedFieldError(token, "unified")
    if token in CLOUDFLARE_TO_UNIFIED_FIELDS:
        return CLOUDFLARE_TO_UNIFIED_FIELDS[token], None
    if token in _CLOUDFLARE_KEYED_REVERSE:
        return _CLOUDFLARE_KEYED_REVERSE[token], None
    if _DOTTED_FIELD.match(token):
        return token, None
    raise UnsupportedFieldError(token, "unified")


def unified_field_to_vercel(field: str) -> str:
    if field in UNIFIED_TO_VERCEL_FIELDS:
        return UNIFIED_TO_VERCEL_FIELDS[field]
    if field in VERCEL_ONLY_FIELDS:
        return field
    raise UnsupportedFieldError(field, VERCEL)


def vercel_field_to_unified(condition_type: str) -> str:
    if condition_type in VERCEL_TO_UNIFIED_FIELDS:
        return VERCEL_TO_UNIFIED_FIELDS[condition_type]
    if condition_type in VERCEL_ONLY_FIELDS:
        return condition_type
    raise UnsupportedFieldError(condition_type, "unified")


def unified_operator_to_cloudflare(operator: Operator) -> tuple[str, bool]:
    """Return ``(native operator, flips negation)``.

    ``not_in`` becomes ``in`` wrapped in ``not (...)``, and likewise for the
    other negative forms Cloudflare has no token for.
    """
    try:
        return UNIFIED_TO_CLOUDFLARE_OPERATORS[Operator(operator)]
    except (KeyError, ValueError):
        raise UnsupportedOperatorError(str(operator), CLOUDFLARE) from None


def cloudflare_operator_to_unified(token: str) -> Operator:
    try:
        return CLOUDFLARE_TO_UNIFIED_OPERATORS[token.strip().lower()]
    except KeyError:
        raise UnsupportedOperatorError(token, "unified") from None


def unified_operator_to_vercel(operator: Operator) -> tuple[str, bool]:
    """Return ``(native operator, flips negation)``. Vercel has no ordering operators."""
    try:
        return UNIFIED_TO_VERCEL_OPERATORS[Operator(operator)]
    except (KeyError, ValueError):
        op = operator.value if isinstance(operator, Operator) else str(operator)
        raise UnsupportedOperatorError(op, VERCEL) from None


def vercel_operator_to_unified(op: str) -> Operator:
    try:
        return VERCEL_TO_UNIFIED_OPERATORS[op]
    except KeyError:
        raise UnsupportedOperatorError(op, "unified") from None


def vercel_condition_to_unified(condition: VercelCondition) -> UnifiedCondition:
    """Map a Vercel condition onto the unified vocabulary."""
    field = vercel_field_to_unified(condition.type)
    operator = vercel_operator_to_unified(condition.op)
    return UnifiedCondition(
        field=field,
        operator=operator,
        value=condition.value,
        negated=bool(condition.neg),
        key=condition.key,
    )


def unified_condition_to_vercel(condition: UnifiedCondition) -> VercelCondition:
    """Map a unified condition onto Vercel's vocabulary."""
    condition_type = unified_field_to_vercel(condition.field)
    op, flip = unified_operator_to_vercel(condition.operator)
    negated = condition.negated != flip
    value = condition.value
    if op == "inc" and not isinstance(value, list):
        raise UnsupportedOperatorError(f"{condition.operator.value} {value!r}", VERCEL)
    return VercelCondition(
        type=condition_type,
        op=op,
        neg=True if negated else None,
        key=condition.key,
        value=None if op in ("ex", "nex") else value,
    )
