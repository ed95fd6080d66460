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

"""Change detection between declared and remote firewall state.

Rules are matched by id first, then by content. Content comparison runs on
a normalised canonical form, so whitespace, key order, condition order, and
equivalent spellings (``ne`` vs. negated ``eq``, ``5m`` vs. ``300s``) never
show up as updates.
"""

from __future__ import annotations

import ipaddress
import logging
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Callable, Optional, Sequence

from doorman.errors import InvalidWindowFormat
from doorman.models.changes import (
    Change,
    ChangeKind,
    ChangeSet,
    ChangeTarget,
    RuleState,
    RuleStateEntry,
)
from doorman.models.rules import (
    ActionType,
    Operator,
    UnifiedAction,
    UnifiedCondition,
    UnifiedConfig,
    UnifiedIPRule,
    UnifiedRule,
)
from doorman.reporter.json_out import to_canonical_json
from doorman.translate.rule_translator import parse_window

logger = logging.getLogger(__name__)

# (rule, include_name) -> comparable string
Fingerprint = Callable[[UnifiedRule, bool], str]

DEFAULT_IP_COMPARE_FIELDS = ("hostname", "notes")

_POSITIVE_FORMS = {
    Operator.NE: Operator.EQ,
    Operator.NOT_IN: Operator.IN,
    Operator.NOT_CONTAINS: Operator.CONTAINS,
    Operator.NOT_EXISTS: Operator.EXISTS,
}
_DEFAULT_CHARACTERISTICS = ["ip.src"]
_PERMANENT_STATUS_CODES = (301, 308)


def _clean(value: Any) -> Any:
    """Trim strings and drop empty values recursively."""
    if isinstance(value, str):
        return value.strip()
    if isinstance(value, dict):
        cleaned = {k: _clean(v) for k, v in value.items()}
        return {k: v for k, v in cleaned.items() if v not in (None, "", [], {})}
    if isinstance(value, list):
        return [_clean(v) for v in value]
    return value


def _scalar(value: Any) -> Any:
    if isinstance(value, str):
        return value.strip()
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return value


def normalize_condition(condition: UnifiedCondition) -> dict[str, Any]:
    operator = condition.operator
    negated = condition.negated
    if operator in _POSITIVE_FORMS:
        operator = _POSITIVE_FORMS[operator]
        negated = not negated

    key = condition.key.strip() if condition.key else None
    if key and condition.field == "header":
        key = key.lower()

    value: Any = None
    if operator != Operator.EXISTS:
        if isinstance(condition.value, list):
            items = [_scalar(v) for v in condition.value]
            value = sorted(items, key=lambda v: (isinstance(v, str), str(v)))
        else:
            value = _scalar(condition.value)

    return _clean({
        "field": condition.field,
        "operator": operator.value,
        "negated": negated,
        "key": key,
        "value": value,
    })


def _window(window: str) -> Any:
    try:
        return parse_window(window)
    except InvalidWindowFormat:
        return window


def normalize_action(action: UnifiedAction) -> dict[str, Any]:
    action_type = ActionType.DENY if action.type == ActionType.BLOCK else action.type
    data: dict[str, Any] = {"type": action_type.value, "duration": action.duration}

    if action.rate_limit is not None:
        limit = action.rate_limit
        characteristics = sorted(c.strip() for c in limit.characteristics or [])
        if characteristics == _DEFAULT_CHARACTERISTICS:
            characteristics = []
        data["rateLimit"] = {
            "requests": limit.requests,
            "window": _window(limit.window),
            "characteristics": characteristics,
            "mitigationTimeout": limit.mitigation_timeout,
            "countingExpression": limit.counting_expression,
        }

    if action.redirect is not None:
        redirect = action.redirect
        permanent = redirect.permanent
        if permanent is None:
            permanent = redirect.status_code in _PERMANENT_STATUS_CODES
        data["redirect"] = {
            "location": redirect.location,
            "permanent": permanent,
            "preserveQueryString": redirect.preserve_query_string,
        }

    if action.response is not None:
        data["response"] = action.response.to_dict()

    return _clean(data)


def normalize_rule(rule: UnifiedRule, include_name: bool = True) -> dict[str, Any]:
    """Canonical comparable form of a rule, without its id.

    Priority is left out: ordering semantics are the provider's own.
    """
    conditions = sorted(
        (normalize_condition(c) for c in rule.conditions),
        key=to_canonical_json,
    )
    logic = rule.condition_logic.value if len(conditions) > 1 else "AND"
    data = {
        "name": rule.name if include_name else None,
        "description": rule.description,
        "enabled": rule.enabled,
        "conditions": conditions,
        "conditionLogic": logic,
        "action": normalize_action(rule.action),
        "categories": sorted(rule.categories or []),
    }
    return _clean(data)


def rule_fingerprint(rule: UnifiedRule, include_name: bool = True) -> str:
    return to_canonical_json(normalize_rule(rule, include_name))


@dataclass
class RuleDiff:
    to_add: list[UnifiedRule] = field(default_factory=list)
    to_update: list[UnifiedRule] = field(default_factory=list)
    to_delete: list[UnifiedRule] = field(default_factory=list)
    states: list[RuleStateEntry] = field(default_factory=list)


@dataclass
class IPDiff:
    to_add: list[UnifiedIPRule] = field(default_factory=list)
    to_update: list[UnifiedIPRule] = field(default_factory=list)
    to_delete: list[UnifiedIPRule] = field(default_factory=list)


def diff_rules(
    declared: Sequence[UnifiedRule],
    remote: Sequence[UnifiedRule],
    declared_fingerprint: Optional[Fingerprint] = None,
    remote_fingerprint: Optional[Fingerprint] = None,
) -> RuleDiff:
    """Partition rules into add/update/delete.

    Declared rules are matched in three passes so declaration order never
    changes the outcome:
    1. Same id remotely: update if the content differs, otherwise no-op.
    2. An unclaimed remote rule with identical content (ignoring id) is the
       same rule: no-op.
    3. An unclaimed remote rule identical ignoring id and name is a rename:
       the declared rule is added and the original stays in the delete set,
       exactly once.
    Anything left is new. Remote rules nobody claimed are deleted.
    """
    declared_fp = declared_fingerprint or rule_fingerprint
    remote_fp = remote_fingerprint or rule_fingerprint
    result = RuleDiff()

    remote_by_id = {r.id: i for i, r in enumerate(remote) if r.id}
    by_content: dict[str, list[int]] = defaultdict(list)
    by_content_unnamed: dict[str, list[int]] = defaultdict(list)
    for i, r in enumerate(remote):
        by_content[remote_fp(r, True)].append(i)
        by_content_unnamed[remote_fp(r, False)].append(i)

    claimed: set[int] = set()
    rename_sources: set[int] = set()
    states: dict[int, RuleStateEntry] = {}
    updates: dict[int, UnifiedRule] = {}
    adds: dict[int, UnifiedRule] = {}

    def first_free(candidates: list[int]) -> Optional[int]:
        return next((i for i in candidates if i not in claimed and i not in rename_sources), None)

    for d, rule in enumerate(declared):
        index = remote_by_id.get(rule.id) if rule.id else None
        if index is None or index in claimed:
            continue
        claimed.add(index)
        if declared_fp(rule, True) == remote_fp(remote[index], True):
            state = RuleState.MATCHED_UNCHANGED
        else:
            state = RuleState.MATCHED_WITH_CHANGES
            updates[d] = rule.model_copy(update={"id": remote[index].id})
        logger.debug("Rule %r matched by id %s: %s", rule.name, rule.id, state.value)
        states[d] = RuleStateEntry(name=rule.name, state=state, id=rule.id)

    for d, rule in enumerate(declared):
        if d in states:
            continue
        index = first_free(by_content[declared_fp(rule, True)])
        if index is not None:
            claimed.add(index)
            logger.debug("Rule %r matched by content to %s", rule.name, remote[index].id)
            states[d] = RuleStateEntry(name=rule.name, state=RuleState.MATCHED_UNCHANGED, id=remote[index].id)

    for d, rule in enumerate(declared):
        if d in states:
            continue
        adds[d] = rule.model_copy(update={"id": None}) if rule.id else rule
        index = first_free(by_content_unnamed[declared_fp(rule, False)])
        if index is not None:
            rename_sources.add(index)
            logger.debug("Rule %r is a rename of remote %r", rule.name, remote[index].name)
            states[d] = RuleStateEntry(name=rule.name, state=RuleState.MATCHED_BY_CONTENT_RENAMED)
        else:
            states[d] = RuleStateEntry(name=rule.name, state=RuleState.UNMATCHED_NEW)

    result.to_update = [updates[d] for d in sorted(updates)]
    result.to_add = [adds[d] for d in sorted(adds)]
    result.states = [states[d] for d in sorted(states)]
    for i, r in enumerate(remote):
        if i not in claimed:
            result.to_delete.append(r)
            result.states.append(RuleStateEntry(name=r.name, state=RuleState.TO_DELETE, id=r.id))

    return result


def normalize_ip(ip: str) -> str:
    """Canonical text of an address or network; unparseable input is trimmed."""
    text = ip.strip()
    try:
        if "/" in text:
            return str(ipaddress.ip_network(text, strict=False))
        return str(ipaddress.ip_address(text))
    except ValueError:
        return text


def _ip_key(entry: UnifiedIPRule) -> tuple[str, str]:
    return normalize_ip(entry.ip), entry.action.value


def _ip_attribute(entry: UnifiedIPRule, name: str) -> str:
    return (getattr(entry, name) or "").strip()


def diff_ips(
    declared: Sequence[UnifiedIPRule],
    remote: Sequence[UnifiedIPRule],
    compare_fields: Sequence[str] = DEFAULT_IP_COMPARE_FIELDS,
) -> IPDiff:
    """Partition IP entries by their ``(ip, action)`` identity.

    Entries on both sides whose compared attributes differ are updates and
    carry the remote id. Duplicate remote entries beyond the first are
    deleted.
    """
    result = IPDiff()
    remote_by_key: dict[tuple[str, str], UnifiedIPRule] = {}
    for entry in remote:
        key = _ip_key(entry)
        if key in remote_by_key:
            result.to_delete.append(entry)
        else:
            remote_by_key[key] = entry

    seen: set[tuple[str, str]] = set()
    for entry in declared:
        key = _ip_key(entry)
        if key in seen:
            continue
        seen.add(key)
        existing = remote_by_key.get(key)
        if existing is None:
            result.to_add.append(entry.model_copy(update={"id": None}) if entry.id else entry)
            continue
        if any(_ip_attribute(entry, f) != _ip_attribute(existing, f) for f in compare_fields):
            result.to_update.append(entry.model_copy(update={"id": existing.id}))

    for key, entry in remote_by_key.items():
        if key not in seen:
            result.to_delete.append(entry)
    return result


def diff_configs(
    declared: UnifiedConfig,
    remote: UnifiedConfig,
    declared_fingerprint: Optional[Fingerprint] = None,
    remote_fingerprint: Optional[Fingerprint] = None,
    ip_compare_fields: Sequence[str] = DEFAULT_IP_COMPARE_FIELDS,
) -> ChangeSet:
    """Compute the change set that turns ``remote`` into ``declared``."""
    rules = diff_rules(declared.rules, remote.rules, declared_fingerprint, remote_fingerprint)
    ips = diff_ips(declared.ips, remote.ips, ip_compare_fields)

    declared_version = declared.remote_version
    remote_version = remote.remote_version
    version_changed = declared_version is not None and declared_version != remote_version

    has_changes = bool(
        rules.to_add or rules.to_update or rules.to_delete
        or ips.to_add or ips.to_update or ips.to_delete
        or version_changed
    )
    change_set = ChangeSet(
        rules_to_add=rules.to_add,
        rules_to_update=rules.to_update,
        rules_to_delete=rules.to_delete,
        ips_to_add=ips.to_add,
        ips_to_update=ips.to_update,
        ips_to_delete=ips.to_delete,
        version=remote_version,
        declared_version=declared_version,
        has_changes=has_changes,
        states=rules.states,
    )
    logger.info(
        "Diff: %d rule(s) to add, %d to update, %d to delete; "
        "%d IP(s) to add, %d to update, %d to delete",
        len(rules.to_add), len(rules.to_update), len(rules.to_delete),
        len(ips.to_add), len(ips.to_update), len(ips.to_delete),
    )
    return change_set


def plan_operations(change_set: ChangeSet) -> list[list[Change]]:
    """Order a change set into phases: creates, then updates, then deletes.

    Deleting a renamed-away rule only after its replacement exists means the
    policy is never missing both.
    """
    creates = [Change(kind=ChangeKind.ADD, target=ChangeTarget.RULE, rule=r) for r in change_set.rules_to_add]
    creates += [Change(kind=ChangeKind.ADD, target=ChangeTarget.IP, ip=i) for i in change_set.ips_to_add]
    updates = [Change(kind=ChangeKind.UPDATE, target=ChangeTarget.RULE, rule=r) for r in change_set.rules_to_update]
    updates += [Change(kind=ChangeKind.UPDATE, target=ChangeTarget.IP, ip=i) for i in change_set.ips_to_update]
    deletes = [Change(kind=ChangeKind.DELETE, target=ChangeTarget.RULE, rule=r) for r in change_set.rules_to_delete]
    deletes += [Change(kind=ChangeKind.DELETE, target=ChangeTarget.IP, ip=i) for i in change_set.ips_to_delete]
    return [phase for phase in (creates, updates, deletes) if phase]
