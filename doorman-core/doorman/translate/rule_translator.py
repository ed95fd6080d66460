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

"""Rule translation among Vercel, Cloudflare, and the unified schema.

One translator per provider implements the same interface (to and from the
unified form, for rules and for IP entries). ``RuleTranslator`` adds the
direct Vercel <-> Cloudflare paths on top.

Lossy steps never fail silently: they are reported as ``TranslationWarning``
values next to the result. Unsupported fields, operators, and actions, and
unparseable windows, raise a ``TranslationError`` naming the rule.
"""

from __future__ import annotations

import logging
import re
from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import Any, Iterator, Optional

from doorman.errors import InvalidWindowFormat, TranslationError, UnsupportedActionError
from doorman.models.changes import TranslationResult, TranslationWarning
from doorman.models.cloudflare import (
    CloudflareActionParameters,
    CloudflareBlockResponse,
    CloudflareFromValue,
    CloudflareRateLimit,
    CloudflareRule,
    CloudflareTargetURL,
)
from doorman.models.rules import (
    ActionType,
    ConditionLogic,
    IPAction,
    Operator,
    ProviderType,
    UnifiedAction,
    UnifiedCondition,
    UnifiedIPRule,
    UnifiedRateLimit,
    UnifiedRedirect,
    UnifiedResponse,
    UnifiedRule,
)
from doorman.models.vercel import (
    VercelConditionGroup,
    VercelCustomRule,
    VercelIPRule,
    VercelMitigate,
    VercelRateLimit,
    VercelRedirect,
    VercelRuleAction,
)
from doorman.translate.expression_builder import (
    build_from_conditions,
    build_from_vercel_groups,
    validate,
)
from doorman.translate.field_mapper import (
    unified_condition_to_vercel,
    vercel_condition_to_unified,
)

logger = logging.getLogger(__name__)

WINDOW_PATTERN = re.compile(r"^([0-9]+)([smhd])$")
WINDOW_UNITS = {"s": 1, "m": 60, "h": 3600, "d": 86400}

VERCEL_TO_UNIFIED_ACTIONS: dict[str, ActionType] = {
    "log": ActionType.LOG,
    "deny": ActionType.DENY,
    "challenge": ActionType.CHALLENGE,
    "bypass": ActionType.BYPASS,
    "rate_limit": ActionType.RATE_LIMIT,
    "redirect": ActionType.REDIRECT,
}

UNIFIED_TO_VERCEL_ACTIONS: dict[ActionType, str] = {
    ActionType.LOG: "log",
    ActionType.DENY: "deny",
    ActionType.BLOCK: "deny",
    ActionType.CHALLENGE: "challenge",
    ActionType.BYPASS: "bypass",
    ActionType.ALLOW: "bypass",
    ActionType.RATE_LIMIT: "rate_limit",
    ActionType.REDIRECT: "redirect",
}

CLOUDFLARE_TO_UNIFIED_ACTIONS: dict[str, ActionType] = {
    "block": ActionType.DENY,
    "challenge": ActionType.CHALLENGE,
    "managed_challenge": ActionType.CHALLENGE,
    "js_challenge": ActionType.CHALLENGE,
    "log": ActionType.LOG,
    "skip": ActionType.BYPASS,
    "allow": ActionType.ALLOW,
    "rewrite": ActionType.BYPASS,
    "redirect": ActionType.REDIRECT,
}

UNIFIED_TO_CLOUDFLARE_ACTIONS: dict[ActionType, str] = {
    ActionType.LOG: "log",
    ActionType.DENY: "block",
    ActionType.BLOCK: "block",
    ActionType.CHALLENGE: "managed_challenge",
    ActionType.BYPASS: "skip",
    ActionType.RATE_LIMIT: "block",
    ActionType.REDIRECT: "redirect",
    ActionType.ALLOW: "allow",
}

# Most restrictive safe actions, used for values no table anticipates.
DEFAULT_UNIFIED_ACTION = ActionType.DENY
DEFAULT_CLOUDFLARE_ACTION = "block"

_PERMANENT_STATUS_CODES = frozenset({301, 308})

_NOT_WRAPPED = re.compile(r"^not\s*\((.*)\)$", re.DOTALL)
_IP_TOKEN = r"[0-9A-Fa-f:.]+(?:/[0-9]{1,3})?"
_IP_EQUALS = re.compile(rf"^ip\.src (?:eq|==) ({_IP_TOKEN})$")
_IP_SINGLE_SET = re.compile(rf"^ip\.src in \{{({_IP_TOKEN})\}}$")
_IP_LIST = re.compile(r"^ip\.src in (\$[A-Za-z0-9_]+)$")
_IP_DESCRIPTION = re.compile(r"^IP (\w+): (\S+)(?: \((.*)\))?$")


def parse_window(window: Any) -> int:
    """Convert a window such as ``"5m"`` to seconds.

    Raises:
        InvalidWindowFormat: If the window is not a positive ``<n>[smhd]``.
    """
    match = WINDOW_PATTERN.match(window.strip()) if isinstance(window, str) else None
    if not match or int(match.group(1)) == 0:
        raise InvalidWindowFormat(window)
    return int(match.group(1)) * WINDOW_UNITS[match.group(2)]


def format_window(seconds: int) -> str:
    return f"{seconds}s"


@contextmanager
def _for_rule(name: Optional[str]) -> Iterator[None]:
    try:
        yield
    except TranslationError as e:
        e.with_rule(name)
        raise


def _lookup_action(
    table: dict[str, Any],
    value: str,
    default: Any,
    provider: str,
    rule: Optional[str],
    warnings: list[TranslationWarning],
) -> Any:
    if value in table:
        return table[value]
    shown = default.value if isinstance(default, ActionType) else default
    logger.debug("Defaulted %s action %r to %r", provider, value, shown)
    warnings.append(TranslationWarning(
        f"Unknown {provider} action {value!r}, using {shown!r}",
        rule=rule,
        field="action",
    ))
    return default


def _vercel_action_to_unified(
    mitigate: VercelMitigate,
    rule: Optional[str],
    warnings: list[TranslationWarning],
) -> UnifiedAction:
    action_type = _lookup_action(
        VERCEL_TO_UNIFIED_ACTIONS, mitigate.action, DEFAULT_UNIFIED_ACTION, "Vercel", rule, warnings
    )
    rate_limit = None
    if mitigate.rate_limit is not None:
        rate_limit = UnifiedRateLimit(
            requests=mitigate.rate_limit.requests,
            window=mitigate.rate_limit.window,
        )
    redirect = None
    if mitigate.redirect is not None:
        redirect = UnifiedRedirect(
            location=mitigate.redirect.location,
            permanent=mitigate.redirect.permanent,
        )
    return UnifiedAction(
        type=action_type,
        rate_limit=rate_limit,
        redirect=redirect,
        duration=mitigate.action_duration,
    )


def parse_cloudflare_expression(expression: str) -> Optional[list[UnifiedCondition]]:
    """Recognise the few expression shapes that map back to conditions.

    Only ``ip.src eq <ip>``, ``ip.src in {<cidr>}`` and ``ip.src in $<list>``,
    optionally wrapped in ``not (...)``, are understood. Anything else
    returns None. This is not a general wirefilter parser.
    """
    text = expression.strip()
    negated = False
    wrapped = _NOT_WRAPPED.match(text)
    if wrapped and validate(wrapped.group(1)):
        negated = True
        text = wrapped.group(1).strip()

    match = _IP_EQUALS.match(text)
    if match:
        return [UnifiedCondition(field="ip", operator=Operator.EQ, value=match.group(1), negated=negated)]
    match = _IP_SINGLE_SET.match(text)
    if match:
        return [UnifiedCondition(field="ip", operator=Operator.IN, value=[match.group(1)], negated=negated)]
    match = _IP_LIST.match(text)
    if match:
        return [UnifiedCondition(field="ip", operator=Operator.IN, value=match.group(1), negated=negated)]
    return None


def is_ip_rule_expression(expression: str) -> bool:
    """True for a plain single-address match: ``ip.src eq 1.2.3.4``."""
    text = expression.strip()
    return bool(_IP_EQUALS.match(text) or _IP_SINGLE_SET.match(text))


def is_ip_entry(rule: CloudflareRule) -> bool:
    """True for a Cloudflare rule Doorman created from an IP entry."""
    return (
        rule.ratelimit is None
        and is_ip_rule_expression(rule.expression)
        and bool(_IP_DESCRIPTION.match(rule.description or ""))
    )


class ProviderTranslator(ABC):
    """Translation interface implemented once per provider."""

    provider: ProviderType

    @abstractmethod
    def to_unified(self, native: Any) -> TranslationResult[UnifiedRule]:
        """Translate a native rule to the unified form."""
        ...

    @abstractmethod
    def from_unified(self, rule: UnifiedRule) -> TranslationResult[Any]:
        """Translate a unified rule to the native form."""
        ...

    @abstractmethod
    def ip_to_unified(self, native: Any) -> TranslationResult[UnifiedIPRule]:
        """Translate a native IP entry to the unified form."""
        ...

    @abstractmethod
    def ip_from_unified(self, ip: UnifiedIPRule) -> TranslationResult[Any]:
        """Translate a unified IP entry to the native form."""
        ...


class VercelTranslator(ProviderTranslator):
    """Vercel rules: OR'd condition groups of AND'd conditions."""

    provider = ProviderType.VERCEL

    def to_unified(self, native: VercelCustomRule) -> TranslationResult[UnifiedRule]:
        """Flatten condition groups into one condition list.

        A single group maps exactly onto AND. Several groups become OR; that
        is exact when every group holds one condition and lossy otherwise.
        """
        warnings: list[TranslationWarning] = []
        with _for_rule(native.name):
            groups = [g for g in native.condition_group if g.conditions]
            conditions = [vercel_condition_to_unified(c) for g in groups for c in g.conditions]
            logic = ConditionLogic.AND
            if not groups:
                warnings.append(TranslationWarning(
                    "Rule has no conditions", rule=native.name, field="conditionGroup"
                ))
            elif len(groups) > 1:
                logic = ConditionLogic.OR
                if any(len(g.conditions) > 1 for g in groups):
                    warnings.append(TranslationWarning(
                        "Condition groups flattened into OR: which conditions were AND'd "
                        "within a group is lost",
                        rule=native.name,
                        field="conditionGroup",
                    ))
            action = _vercel_action_to_unified(native.action.mitigate, native.name, warnings)
            rule = UnifiedRule(
                id=native.id,
                name=native.name,
                description=native.description,
                enabled=native.active,
                conditions=conditions,
                condition_logic=logic,
                action=action,
            )
        return TranslationResult(rule, warnings)

    def from_unified(self, rule: UnifiedRule) -> TranslationResult[VercelCustomRule]:
        """Conditions become one AND group, or one group per condition for OR."""
        return self.build(rule)

    def build(self, rule: UnifiedRule, allow_empty: bool = False) -> TranslationResult[VercelCustomRule]:
        """Translate to Vercel; ``allow_empty`` admits rules without conditions."""
        warnings: list[TranslationWarning] = []
        with _for_rule(rule.name):
            if not rule.conditions and not allow_empty:
                raise TranslationError("Rule has no conditions")
            conditions = [unified_condition_to_vercel(c) for c in rule.conditions]
            if not conditions:
                groups = []
            elif rule.condition_logic == ConditionLogic.OR:
                groups = [VercelConditionGroup(conditions=[c]) for c in conditions]
            else:
                groups = [VercelConditionGroup(conditions=conditions)]
            mitigate = self._mitigate(rule, warnings)
            if rule.priority is not None or rule.categories:
                warnings.append(TranslationWarning(
                    "Vercel rules have no priority or categories; dropped",
                    rule=rule.name,
                    severity="info",
                ))
            native = VercelCustomRule(
                id=rule.id,
                name=rule.name,
                description=rule.description,
                condition_group=groups,
                action=VercelRuleAction(mitigate=mitigate),
                active=rule.enabled,
            )
        return TranslationResult(native, warnings)

    def _mitigate(self, rule: UnifiedRule, warnings: list[TranslationWarning]) -> VercelMitigate:
        action = rule.action
        if action.type == ActionType.ALLOW:
            warnings.append(TranslationWarning(
                "Vercel has no allow action; using bypass", rule=rule.name, field="action"
            ))

        rate_limit = None
        if action.type == ActionType.RATE_LIMIT:
            if action.rate_limit is None:
                raise TranslationError("rate_limit action requires rateLimit parameters")
            parse_window(action.rate_limit.window)
            rate_limit = VercelRateLimit(
                requests=action.rate_limit.requests,
                window=action.rate_limit.window.strip(),
            )
            limit = action.rate_limit
            if limit.characteristics or limit.mitigation_timeout is not None or limit.counting_expression:
                warnings.append(TranslationWarning(
                    "characteristics, mitigationTimeout and countingExpression are "
                    "Cloudflare-only; dropped",
                    rule=rule.name,
                    field="action.rateLimit",
                ))

        redirect = None
        if action.type == ActionType.REDIRECT:
            if action.redirect is None:
                raise TranslationError("redirect action requires redirect parameters")
            permanent = action.redirect.permanent
            if permanent is None:
                permanent = action.redirect.status_code in _PERMANENT_STATUS_CODES
            redirect = VercelRedirect(location=action.redirect.location, permanent=permanent)
            if action.redirect.preserve_query_string is not None:
                warnings.append(TranslationWarning(
                    "Vercel redirects cannot set preserveQueryString; dropped",
                    rule=rule.name,
                    field="action.redirect",
                ))

        if action.response is not None:
            warnings.append(TranslationWarning(
                "Vercel does not support custom block responses; dropped",
                rule=rule.name,
                field="action.response",
            ))

        return VercelMitigate(
            action=UNIFIED_TO_VERCEL_ACTIONS[action.type],
            rate_limit=rate_limit,
            redirect=redirect,
            action_duration=action.duration,
        )

    def ip_to_unified(self, native: VercelIPRule) -> TranslationResult[UnifiedIPRule]:
        warnings: list[TranslationWarning] = []
        if native.action != "deny":
            warnings.append(TranslationWarning(
                f"Unknown Vercel IP action {native.action!r}, using 'deny'",
                rule=native.ip,
                field="action",
            ))
        ip = UnifiedIPRule(
            id=native.id,
            ip=native.ip,
            hostname=native.hostname,
            notes=native.notes,
            action=IPAction.DENY,
        )
        return TranslationResult(ip, warnings)

    def ip_from_unified(self, ip: UnifiedIPRule) -> TranslationResult[VercelIPRule]:
        """Vercel IP blocking only denies; allow entries are rejected."""
        if ip.action != IPAction.DENY:
            raise UnsupportedActionError(ip.action.value, "vercel", rule=ip.ip)
        native = VercelIPRule(id=ip.id, ip=ip.ip, hostname=ip.hostname, notes=ip.notes, action="deny")
        return TranslationResult(native, [])


class CloudflareTranslator(ProviderTranslator):
    """Cloudflare rules: one wirefilter expression and a flat action."""

    provider = ProviderType.CLOUDFLARE

    def to_unified(self, native: CloudflareRule) -> TranslationResult[UnifiedRule]:
        """Best-effort reverse translation.

        The expression is only understood for the IP shapes documented on
        ``parse_cloudflare_expression``; anything else yields an empty
        condition list and a warning.
        """
        warnings: list[TranslationWarning] = []
        name = native.description or native.id or "cloudflare-rule"
        with _for_rule(name):
            conditions = parse_cloudflare_expression(native.expression)
            if conditions is None:
                conditions = []
                warnings.append(TranslationWarning(
                    "Cloudflare expression could not be parsed back into conditions "
                    f"(only IP matches are recognised): {native.expression}",
                    rule=name,
                    field="expression",
                ))
            action = self._action_to_unified(native, name, warnings)
            rule = UnifiedRule(
                id=native.id,
                name=name,
                enabled=native.enabled,
                conditions=conditions,
                action=action,
                categories=native.categories,
            )
        return TranslationResult(rule, warnings)

    def _action_to_unified(
        self,
        native: CloudflareRule,
        name: str,
        warnings: list[TranslationWarning],
    ) -> UnifiedAction:
        params = native.action_parameters
        if native.ratelimit is not None:
            limit = native.ratelimit
            return UnifiedAction(
                type=ActionType.RATE_LIMIT,
                rate_limit=UnifiedRateLimit(
                    requests=limit.requests_per_period,
                    window=format_window(limit.period),
                    characteristics=limit.characteristics,
                    mitigation_timeout=limit.mitigation_timeout,
                    counting_expression=limit.counting_expression,
                ),
            )
        action_type = _lookup_action(
            CLOUDFLARE_TO_UNIFIED_ACTIONS, native.action, DEFAULT_UNIFIED_ACTION, "Cloudflare", name, warnings
        )
        redirect = None
        response = None
        if params is not None and params.from_value is not None:
            from_value = params.from_value
            redirect = UnifiedRedirect(
                location=from_value.target_url.value,
                permanent=from_value.status_code in _PERMANENT_STATUS_CODES,
                status_code=from_value.status_code,
                preserve_query_string=from_value.preserve_query_string,
            )
        if params is not None and params.response is not None:
            response = UnifiedResponse(
                status_code=params.response.status_code,
                content=params.response.content,
                content_type=params.response.content_type,
            )
        return UnifiedAction(type=action_type, redirect=redirect, response=response)

    def from_unified(self, rule: UnifiedRule) -> TranslationResult[CloudflareRule]:
        warnings: list[TranslationWarning] = []
        with _for_rule(rule.name):
            expression = build_from_conditions(rule.conditions, rule.condition_logic)
            native = self.build_rule(
                rule_id=rule.id,
                name=rule.name,
                enabled=rule.enabled,
                action=rule.action,
                expression=expression,
                warnings=warnings,
            )
            if rule.description:
                warnings.append(TranslationWarning(
                    "Cloudflare rules carry only one description; the rule name is used",
                    rule=rule.name,
                    field="description",
                    severity="info",
                ))
            if rule.priority is not None:
                warnings.append(TranslationWarning(
                    "Cloudflare rule order is positional; priority dropped",
                    rule=rule.name,
                    field="priority",
                    severity="info",
                ))
        return TranslationResult(native, warnings)

    def build_rule(
        self,
        rule_id: Optional[str],
        name: str,
        enabled: bool,
        action: UnifiedAction,
        expression: str,
        warnings: list[TranslationWarning],
    ) -> CloudflareRule:
        """Assemble a Cloudflare rule around an already-built expression."""
        cf_action = UNIFIED_TO_CLOUDFLARE_ACTIONS.get(action.type, DEFAULT_CLOUDFLARE_ACTION)
        ratelimit = None
        params = None

        if action.type == ActionType.RATE_LIMIT:
            if action.rate_limit is None:
                raise TranslationError("rate_limit action requires rateLimit parameters")
            limit = action.rate_limit
            ratelimit = CloudflareRateLimit(
                characteristics=limit.characteristics or ["ip.src"],
                period=parse_window(limit.window),
                requests_per_period=limit.requests,
                mitigation_timeout=limit.mitigation_timeout,
                counting_expression=limit.counting_expression,
            )
        elif action.type == ActionType.REDIRECT:
            if action.redirect is None:
                raise TranslationError("redirect action requires redirect parameters")
            redirect = action.redirect
            status = redirect.status_code or (301 if redirect.permanent else 302)
            params = CloudflareActionParameters(
                from_value=CloudflareFromValue(
                    status_code=status,
                    target_url=CloudflareTargetURL(value=redirect.location),
                    preserve_query_string=redirect.preserve_query_string,
                )
            )

        if action.response is not None:
            if cf_action == "block":
                params = CloudflareActionParameters(
                    response=CloudflareBlockResponse(
                        status_code=action.response.status_code,
                        content=action.response.content,
                        content_type=action.response.content_type,
                    )
                )
            else:
                warnings.append(TranslationWarning(
                    f"Custom responses only apply to block actions, not {cf_action!r}; dropped",
                    rule=name,
                    field="action.response",
                ))

        if action.duration:
            warnings.append(TranslationWarning(
                "Cloudflare custom rules have no action duration; dropped",
                rule=name,
                field="action.duration",
            ))

        return CloudflareRule(
            id=rule_id,
            action=cf_action,
            expression=expression,
            description=name,
            enabled=enabled,
            action_parameters=params,
            ratelimit=ratelimit,
        )

    def ip_to_unified(self, native: CloudflareRule) -> TranslationResult[UnifiedIPRule]:
        """Recover an IP entry from a rule created by ``ip_from_unified``."""
        warnings: list[TranslationWarning] = []
        text = native.expression.strip()
        match = _IP_EQUALS.match(text) or _IP_SINGLE_SET.match(text)
        if not match:
            raise TranslationError(f"Not a simple IP rule: {native.expression}", rule=native.description)
        if native.action in ("allow", "skip"):
            action = IPAction.ALLOW
        else:
            if native.action != "block":
                warnings.append(TranslationWarning(
                    f"Unknown Cloudflare IP action {native.action!r}, using 'deny'",
                    rule=match.group(1),
                    field="action",
                ))
            action = IPAction.DENY
        described = _IP_DESCRIPTION.match(native.description or "")
        hostname = described.group(3) if described else None
        ip = UnifiedIPRule(id=native.id, ip=match.group(1), hostname=hostname, action=action)
        return TranslationResult(ip, warnings)

    def ip_from_unified(self, ip: UnifiedIPRule) -> TranslationResult[CloudflareRule]:
        warnings: list[TranslationWarning] = []
        if "/" in ip.ip:
            expression = f"ip.src in {{{ip.ip}}}"
        else:
            expression = f"ip.src eq {ip.ip}"
        description = f"IP {ip.action.value}: {ip.ip}"
        if ip.hostname:
            description += f" ({ip.hostname})"
        if ip.notes:
            warnings.append(TranslationWarning(
                "Cloudflare rules cannot store IP notes; dropped",
                rule=ip.ip,
                field="notes",
                severity="info",
            ))
        native = CloudflareRule(
            id=ip.id,
            action="allow" if ip.action == IPAction.ALLOW else "block",
            expression=expression,
            description=description,
            enabled=True,
        )
        return TranslationResult(native, warnings)


class RuleTranslator:
    """All six translation directions, plus IP entries."""

    def __init__(self) -> None:
        self.vercel = VercelTranslator()
        self.cloudflare = CloudflareTranslator()

    def for_provider(self, provider: ProviderType) -> ProviderTranslator:
        if ProviderType(provider) == ProviderType.VERCEL:
            return self.vercel
        return self.cloudflare

    def vercel_to_unified(self, rule: VercelCustomRule) -> TranslationResult[UnifiedRule]:
        return self.vercel.to_unified(rule)

    def unified_to_vercel(self, rule: UnifiedRule) -> TranslationResult[VercelCustomRule]:
        return self.vercel.from_unified(rule)

    def cloudflare_to_unified(self, rule: CloudflareRule) -> TranslationResult[UnifiedRule]:
        return self.cloudflare.to_unified(rule)

    def unified_to_cloudflare(self, rule: UnifiedRule) -> TranslationResult[CloudflareRule]:
        return self.cloudflare.from_unified(rule)

    def vercel_to_cloudflare(self, rule: VercelCustomRule) -> TranslationResult[CloudflareRule]:
        """Direct translation that keeps Vercel's exact group structure."""
        warnings: list[TranslationWarning] = []
        with _for_rule(rule.name):
            expression = build_from_vercel_groups(rule.condition_group)
            action = _vercel_action_to_unified(rule.action.mitigate, rule.name, warnings)
            native = self.cloudflare.build_rule(
                rule_id=None,
                name=rule.name,
                enabled=rule.active,
                action=action,
                expression=expression,
                warnings=warnings,
            )
        return TranslationResult(native, warnings)

    def cloudflare_to_vercel(self, rule: CloudflareRule) -> TranslationResult[VercelCustomRule]:
        """Lossy: goes through the unified form, conditions may be empty."""
        unified = self.cloudflare.to_unified(rule)
        native = self.vercel.build(unified.result.model_copy(update={"id": None}), allow_empty=True)
        warnings = unified.warnings + native.warnings
        return TranslationResult(native.result, warnings)

    def vercel_ip_to_cloudflare(self, ip: VercelIPRule) -> TranslationResult[CloudflareRule]:
        unified = self.vercel.ip_to_unified(ip)
        native = self.cloudflare.ip_from_unified(unified.result.model_copy(update={"id": None}))
        return TranslationResult(native.result, unified.warnings + native.warnings)

    def cloudflare_ip_to_vercel(self, rule: CloudflareRule) -> TranslationResult[VercelIPRule]:
        unified = self.cloudflare.ip_to_unified(rule)
        native = self.vercel.ip_from_unified(unified.result.model_copy(update={"id": None}))
        return TranslationResult(native.result, unified.warnings + native.warnings)
