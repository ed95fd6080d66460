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

"""Cloudflare wirefilter expression synthesis.

Builds one boolean expression string from unified conditions or from
Vercel's OR-of-AND condition groups. Building is pure: identical input
always yields a byte-identical string, which the diff relies on.
"""

from __future__ import annotations

import ipaddress
import logging
from typing import Any, Iterable, Optional, Sequence

from doorman.errors import ExpressionValidationError
from doorman.models.rules import ConditionLogic, UnifiedCondition, is_list_reference
from doorman.models.vercel import VercelConditionGroup
from doorman.translate.field_mapper import (
    unified_field_to_cloudflare,
    unified_operator_to_cloudflare,
    vercel_condition_to_unified,
)

logger = logging.getLogger(__name__)

# Fields whose values are IP literals, rendered bare.
_IP_FIELDS = frozenset({"ip.src"})
# Fields whose values are integers.
_NUMERIC_FIELDS = frozenset({"ip.geoip.asnum", "cf.edge.server_port"})
_FUNCTION_OPERATORS = frozenset({"starts_with", "ends_with"})


def quote_string(value: str) -> str:
    """Quote a string literal, escaping backslashes and double quotes."""
    escaped = value.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def _is_ip_literal(value: str) -> bool:
    try:
        if "/" in value:
            ipaddress.ip_network(value, strict=False)
        else:
            ipaddress.ip_address(value)
    except ValueError:
        return False
    return True


def render_value(value: Any, field_token: str = "") -> str:
    """Render a scalar value as a wirefilter literal."""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return str(value)
    text = str(value)
    if field_token in _IP_FIELDS and _is_ip_literal(text.strip()):
        return text.strip()
    if field_token in _NUMERIC_FIELDS and text.strip().isdigit():
        return text.strip()
    return quote_string(text)


def render_set(values: Sequence[Any], field_token: str = "") -> str:
    """Render a membership set literal such as ``{"GB" "FR"}``."""
    return "{" + " ".join(render_value(v, field_token) for v in values) + "}"


def build_condition(condition: UnifiedCondition) -> str:
    """Render one unified condition."""
    token = unified_field_to_cloudflare(condition.field, condition.key)
    op, flips = unified_operator_to_cloudflare(condition.operator)
    negated = condition.negated != flips

    if op == "exists":
        body = token
    elif op in _FUNCTION_OPERATORS:
        body = f"{op}({token}, {render_value(condition.value, token)})"
    elif op == "in":
        if is_list_reference(condition.value):
            body = f"{token} in {condition.value}"
        else:
            body = f"{token} in {render_set(condition.value, token)}"
    else:
        body = f"{token} {op} {render_value(condition.value, token)}"

    return f"not ({body})" if negated else body


def combine_and(expressions: Iterable[str]) -> str:
    """Join expressions with ``and``, parenthesized when more than one."""
    parts = [e for e in expressions if e]
    if len(parts) == 1:
        return parts[0]
    return "(" + " and ".join(parts) + ")" if parts else ""


def combine_or(expressions: Iterable[str]) -> str:
    """Join expressions with ``or``, parenthesized when more than one."""
    parts = [e for e in expressions if e]
    if len(parts) == 1:
        return parts[0]
    return "(" + " or ".join(parts) + ")" if parts else ""


def build_from_conditions(
    conditions: Sequence[UnifiedCondition],
    logic: ConditionLogic = ConditionLogic.AND,
) -> str:
    """Build an expression from unified conditions joined by ``logic``.

    Raises:
        ExpressionValidationError: If the result is empty or unbalanced.
    """
    rendered = [build_condition(c) for c in conditions]
    if logic == ConditionLogic.OR:
        expression = combine_or(rendered)
    else:
        expression = combine_and(rendered)
    return _checked(expression)


def build_from_vercel_groups(groups: Sequence[VercelConditionGroup]) -> str:
    """Build an expression from Vercel condition groups.

    Conditions inside a group are AND'd; groups are OR'd. The result keeps
    the exact group structure, so nothing is lost.
    """
    rendered_groups = []
    for group in groups:
        rendered = [build_condition(vercel_condition_to_unified(c)) for c in group.conditions]
        grouped = combine_and(rendered)
        if grouped:
            rendered_groups.append(grouped)
    if len(rendered_groups) > 1:
        expression = " or ".join(rendered_groups)
    else:
        expression = rendered_groups[0] if rendered_groups else ""
    return _checked(expression)


def check_expression(expression: str) -> Optional[str]:
    """Return why ``expression`` is structurally broken, or None if it is fine.

    Parentheses inside quoted strings are ignored.
    """
    if not expression or not expression.strip():
        return "empty expression"
    depth = 0
    in_string = False
    escaped = False
    for char in expression:
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            continue
        if char == '"':
            in_string = True
        elif char == "(":
            depth += 1
        elif char == ")":
            depth -= 1
            if depth < 0:
                return "unbalanced parentheses"
    if in_string:
        return "unterminated string"
    if depth != 0:
        return "unbalanced parentheses"
    return None


def validate(expression: str) -> bool:
    """True if the expression is non-empty with balanced parentheses."""
    return check_expression(expression) is None


def _checked(expression: str) -> str:
    reason = check_expression(expression)
    if reason is not None:
        logger.debug("Rejected generated expression %r: %s", expression, reason)
        raise ExpressionValidationError(expression, reason)
    return expression
