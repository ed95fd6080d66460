"""Tests for rule translation between Vercel, Cloudflare, and the unified schema."""

import pytest

from doorman.errors import InvalidWindowFormat, TranslationError, UnsupportedActionError, UnsupportedOperatorError
from doorman.models.cloudflare import CloudflareRateLimit, CloudflareRule
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
from doorman.models.vercel import VercelCustomRule, VercelIPRule
from doorman.sync.diff_engine import normalize_rule
from doorman.translate.rule_translator import (
    CloudflareTranslator,
    RuleTranslator,
    VercelTranslator,
    format_window,
    is_ip_entry,
    parse_cloudflare_expression,
    parse_window,
)


def make_rule(action=None, conditions=None, **kwargs):
    return UnifiedRule(
        name=kwargs.pop("name", "test rule"),
        conditions=conditions or [UnifiedCondition(field="path", operator=Operator.STARTS_WITH, value="/admin")],
        action=action or UnifiedAction(type=ActionType.DENY),
        **kwargs,
    )


@pytest.fixture
def translator() -> RuleTranslator:
    return RuleTranslator()


class TestWindows:
    """Rate-limit window parsing."""

    @pytest.mark.parametrize("window,seconds", [("60s", 60), ("5m", 300), ("2h", 7200), ("1d", 86400)])
    def test_valid(self, window, seconds):
        assert parse_window(window) == seconds

    @pytest.mark.parametrize("window", ["60x", "-1s", "0s", "", "m", "1.5h", "\u0666\u0660s", 60, None])
    def test_invalid(self, window):
        with pytest.raises(InvalidWindowFormat):
            parse_window(window)

    def test_format(self):
        assert format_window(300) == "300s"


class TestVercelTranslator:
    """Unified <-> Vercel."""

    def test_and_becomes_one_group(self):
        rule = make_rule(conditions=[
            UnifiedCondition(field="path", operator=Operator.EQ, value="/login"),
            UnifiedCondition(field="method", operator=Operator.EQ, value="POST"),
        ])
        native = VercelTranslator().from_unified(rule).result
        assert len(native.condition_group) == 1
        assert len(native.condition_group[0].conditions) == 2

    def test_or_becomes_one_group_per_condition(self):
        rule = make_rule(
            conditions=[
                UnifiedCondition(field="country", operator=Operator.EQ, value="CN"),
                UnifiedCondition(field="country", operator=Operator.EQ, value="RU"),
            ],
            condition_logic=ConditionLogic.OR,
        )
        result = VercelTranslator().from_unified(rule)
        assert [len(g.conditions) for g in result.result.condition_group] == [1, 1]
        assert result.warnings == []

    def test_flattening_several_multi_condition_groups_warns(self):
        native = VercelCustomRule.model_validate({
            "name": "mixed",
            "conditionGroup": [
                {"conditions": [{"type": "path", "op": "eq", "value": "/a"}, {"type": "method", "op": "eq", "value": "GET"}]},
                {"conditions": [{"type": "path", "op": "eq", "value": "/b"}]},
            ],
            "action": {"mitigate": {"action": "deny"}},
        })
        result = VercelTranslator().to_unified(native)
        assert result.result.condition_logic == ConditionLogic.OR
        assert len(result.result.conditions) == 3
        assert any(w.field == "conditionGroup" for w in result.warnings)

    def test_single_condition_groups_flatten_exactly(self):
        native = VercelCustomRule.model_validate({
            "name": "either",
            "conditionGroup": [
                {"conditions": [{"type": "path", "op": "eq", "value": "/a"}]},
                {"conditions": [{"type": "path", "op": "eq", "value": "/b"}]},
            ],
            "action": {"mitigate": {"action": "deny"}},
        })
        assert VercelTranslator().to_unified(native).warnings == []

    def test_unknown_action_defaults_to_deny(self):
        native = VercelCustomRule.model_validate({
            "name": "odd",
            "conditionGroup": [{"conditions": [{"type": "path", "op": "eq", "value": "/"}]}],
            "action": {"mitigate": {"action": "teleport"}},
        })
        result = VercelTranslator().to_unified(native)
        assert result.result.action.type == ActionType.DENY
        assert any("teleport" in w.message for w in result.warnings)

    def test_allow_becomes_bypass_with_warning(self):
        result = VercelTranslator().from_unified(make_rule(action=UnifiedAction(type=ActionType.ALLOW)))
        assert result.result.action.mitigate.action == "bypass"
        assert result.warnings

    def test_block_becomes_deny(self):
        result = VercelTranslator().from_unified(make_rule(action=UnifiedAction(type=ActionType.BLOCK)))
        assert result.result.action.mitigate.action == "deny"

    def test_rate_limit_window_checked(self):
        rule = make_rule(action=UnifiedAction(
            type=ActionType.RATE_LIMIT, rate_limit=UnifiedRateLimit(requests=10, window="10 minutes")
        ))
        with pytest.raises(InvalidWindowFormat) as exc:
            VercelTranslator().from_unified(rule)
        assert exc.value.rule == "test rule"

    def test_ordering_operator_names_rule(self):
        rule = make_rule(name="big asn", conditions=[UnifiedCondition(field="asn", operator=Operator.GT, value=1000)])
        with pytest.raises(UnsupportedOperatorError) as exc:
            VercelTranslator().from_unified(rule)
        assert exc.value.rule == "big asn"
        assert "big asn" in str(exc.value)

    def test_no_conditions_rejected(self):
        rule = UnifiedRule(name="empty", action=UnifiedAction(type=ActionType.DENY))
        with pytest.raises(TranslationError):
            VercelTranslator().from_unified(rule)

    def test_ip_allow_unsupported(self):
        with pytest.raises(UnsupportedActionError):
            VercelTranslator().ip_from_unified(UnifiedIPRule(ip="198.51.100.1", action=IPAction.ALLOW))

    def test_ip_round_trip(self):
        vercel = VercelTranslator()
        ip = UnifiedIPRule(ip="198.51.100.1", hostname="example.com", notes="abuse")
        native = vercel.ip_from_unified(ip).result
        assert vercel.ip_to_unified(native).result == ip


class TestCloudflareTranslator:
    """Unified <-> Cloudflare."""

    def test_deny_becomes_block(self):
        native = CloudflareTranslator(lambda: "id1").from_unified(make_rule()).result
        assert native.action == "block"
        assert native.id == "id1"
        assert native.description == "test rule"
        assert native.expression == 'starts_with(http.request.uri.path, "/admin")'

    def test_challenge_is_managed_challenge(self):
        native = CloudflareTranslator().from_unified(make_rule(action=UnifiedAction(type=ActionType.CHALLENGE))).result
        assert native.action == "managed_challenge"

    def test_rate_limit_parameters(self):
        rule = make_rule(action=UnifiedAction(
            type=ActionType.RATE_LIMIT,
            rate_limit=UnifiedRateLimit(requests=100, window="5m", mitigation_timeout=600),
        ))
        native = CloudflareTranslator().from_unified(rule).result
        assert native.action == "block"
        assert native.ratelimit.period == 300
        assert native.ratelimit.requests_per_period == 100
        assert native.ratelimit.characteristics == ["ip.src"]
        assert native.ratelimit.mitigation_timeout == 600

    def test_redirect_status(self):
        rule = make_rule(action=UnifiedAction(
            type=ActionType.REDIRECT, redirect=UnifiedRedirect(location="https://example.com/", permanent=True)
        ))
        native = CloudflareTranslator().from_unified(rule).result
        assert native.action_parameters.from_value.status_code == 301
        assert native.action_parameters.from_value.target_url.value == "https://example.com/"

    def test_custom_response_on_block(self):
        rule = make_rule(action=UnifiedAction(
            type=ActionType.BLOCK, response=UnifiedResponse(status_code=403, content="nope")
        ))
        native = CloudflareTranslator().from_unified(rule).result
        assert native.action_parameters.response.status_code == 403

    def test_new_rules_have_no_id(self):
        translator = CloudflareTranslator()
        first = translator.from_unified(make_rule()).result
        second = translator.from_unified(make_rule()).result
        assert first.id is None
        assert first == second
        ip = translator.ip_from_unified(UnifiedIPRule(ip="198.51.100.1")).result
        assert ip.id is None

    def test_duration_dropped_with_warning(self):
        result = CloudflareTranslator().from_unified(make_rule(action=UnifiedAction(type=ActionType.DENY, duration="1h")))
        assert any(w.field == "action.duration" for w in result.warnings)

    def test_unknown_action_defaults(self):
        native = CloudflareRule(id="c1", action="execute", expression="ip.src eq 198.51.100.1", description="r")
        result = CloudflareTranslator().to_unified(native)
        assert result.result.action.type == ActionType.DENY
        assert result.warnings

    def test_unparsed_expression_warns(self):
        native = CloudflareRule(id="c1", action="block", expression='http.host eq "example.com"', description="host")
        result = CloudflareTranslator().to_unified(native)
        assert result.result.conditions == []
        assert result.result.name == "host"
        assert any(w.field == "expression" for w in result.warnings)

    def test_rate_limit_reverse(self):
        native = CloudflareRule(
            id="c2",
            action="block",
            expression="ip.src eq 198.51.100.1",
            description="limit",
            ratelimit=CloudflareRateLimit(period=60, requests_per_period=10),
        )
        action = CloudflareTranslator().to_unified(native).result.action
        assert action.type == ActionType.RATE_LIMIT
        assert action.rate_limit.window == "60s"

    def test_ip_entry(self):
        translator = CloudflareTranslator(lambda: "ipid")
        native = translator.ip_from_unified(UnifiedIPRule(ip="198.51.100.0/24", hostname="example.com")).result
        assert native.expression == "ip.src in {198.51.100.0/24}"
        assert native.description == "IP deny: 198.51.100.0/24 (example.com)"
        assert native.action == "block"
        assert is_ip_entry(native)
        back = translator.ip_to_unified(native).result
        assert back.ip == "198.51.100.0/24"
        assert back.hostname == "example.com"
        assert back.action == IPAction.DENY

    def test_ordinary_rule_is_not_ip_entry(self):
        native = CloudflareRule(action="block", expression="ip.src eq 198.51.100.1", description="block one")
        assert not is_ip_entry(native)


class TestParseCloudflareExpression:
    def test_equality(self):
        [condition] = parse_cloudflare_expression("ip.src eq 198.51.100.1")
        assert condition.operator == Operator.EQ
        assert condition.value == "198.51.100.1"

    def test_list_membership(self):
        [condition] = parse_cloudflare_expression("ip.src in $blocklist")
        assert condition.operator == Operator.IN
        assert condition.value == "$blocklist"

    def test_negated(self):
        [condition] = parse_cloudflare_expression("not (ip.src in $allowlist)")
        assert condition.negated is True

    def test_anything_else(self):
        assert parse_cloudflare_expression('http.request.uri.path eq "/"') is None


class TestRoundTrip:
    """Rules representable by both providers survive a round trip."""

    @pytest.mark.parametrize("rule", [
        make_rule(),
        make_rule(conditions=[
            UnifiedCondition(field="country", operator=Operator.NOT_IN, value=["US", "CA"]),
            UnifiedCondition(field="header", key="user-agent", operator=Operator.CONTAINS, value="curl"),
        ]),
        make_rule(
            conditions=[
                UnifiedCondition(field="path", operator=Operator.EQ, value="/a"),
                UnifiedCondition(field="path", operator=Operator.EQ, value="/b"),
            ],
            condition_logic=ConditionLogic.OR,
        ),
        make_rule(action=UnifiedAction(type=ActionType.RATE_LIMIT, rate_limit=UnifiedRateLimit(requests=5, window="1m"))),
        make_rule(action=UnifiedAction(type=ActionType.REDIRECT, redirect=UnifiedRedirect(location="/new", permanent=False))),
    ])
    def test_vercel_round_trip(self, rule):
        vercel = VercelTranslator()
        back = vercel.to_unified(vercel.from_unified(rule).result).result
        assert normalize_rule(back) == normalize_rule(rule)

    def test_cloudflare_ip_rule_round_trip(self):
        rule = make_rule(conditions=[UnifiedCondition(field="ip", operator=Operator.EQ, value="198.51.100.1")])
        cloudflare = CloudflareTranslator()
        back = cloudflare.to_unified(cloudflare.from_unified(rule).result).result
        assert back.action.type == ActionType.DENY
        assert back.conditions == rule.conditions
        assert back.name == rule.name


class TestDirectTranslation:
    def test_vercel_to_cloudflare_keeps_groups(self, translator):
        native = VercelCustomRule.model_validate({
            "id": "v1",
            "name": "mixed",
            "conditionGroup": [
                {"conditions": [{"type": "path", "op": "eq", "value": "/a"}, {"type": "method", "op": "eq", "value": "GET"}]},
                {"conditions": [{"type": "path", "op": "eq", "value": "/b"}]},
            ],
            "action": {"mitigate": {"action": "challenge"}},
        })
        result = translator.vercel_to_cloudflare(native)
        assert result.result.expression == (
            '(http.request.uri.path eq "/a" and http.request.method eq "GET") or http.request.uri.path eq "/b"'
        )
        assert result.result.action == "managed_challenge"
        assert result.result.id is None
        assert result.warnings == []

    def test_cloudflare_to_vercel_is_lossy(self, translator):
        native = CloudflareRule(id="c1", action="block", expression='http.host eq "a"', description="host rule")
        result = translator.cloudflare_to_vercel(native)
        assert result.result.condition_group == []
        assert result.result.id is None
        assert result.warnings

    def test_ip_entries_cross_providers(self, translator):
        native = translator.vercel_ip_to_cloudflare(VercelIPRule(id="x", ip="198.51.100.1", hostname="h"))
        assert native.result.expression == "ip.src eq 198.51.100.1"
        assert native.result.id is None
        back = translator.cloudflare_ip_to_vercel(native.result)
        assert back.result.ip == "198.51.100.1"
        assert back.result.id is None

    def test_unified_directions(self, translator):
        rule = make_rule()
        ip_rule = make_rule(conditions=[UnifiedCondition(field="ip", operator=Operator.EQ, value="198.51.100.1")])
        cloudflare = translator.unified_to_cloudflare(ip_rule).result
        assert cloudflare.expression == "ip.src eq 198.51.100.1"
        assert translator.cloudflare_to_unified(cloudflare).result.conditions == ip_rule.conditions
        vercel = translator.unified_to_vercel(rule).result
        assert translator.vercel_to_unified(vercel).result.conditions == rule.conditions
        assert translator.for_provider(ProviderType.VERCEL) is translator.vercel
        assert translator.for_provider("cloudflare") is translator.cloudflare
