"""Tests for the Vercel and Cloudflare adapters against mocked HTTP APIs."""

import json
import threading
import time
from pathlib import Path

import httpx
import pytest

from doorman.config.settings import Credentials
from doorman.errors import MissingCredentialsError, ProviderNotRegisteredError, RemoteAPIError
from doorman.models.changes import Change, ChangeKind, ChangeOutcome, ChangeTarget
from doorman.models.rules import (
    ActionType,
    IPAction,
    Operator,
    ProviderType,
    UnifiedAction,
    UnifiedCondition,
    UnifiedConfig,
    UnifiedIPRule,
    UnifiedRateLimit,
    UnifiedRule,
)
from doorman.providers.base import FeatureSet, FirewallProvider
from doorman.providers.cloudflare import (
    CLOUDFLARE_API_BASE_URL,
    DEFAULT_LIST_COMMENT,
    IP_LIST_EXPRESSION,
    IP_LIST_NAME,
    CloudflareProvider,
    native_fingerprint,
)
from doorman.providers.registry import ProviderRegistry, default_registry
from doorman.providers.vercel import VERCEL_API_BASE_URL, VercelProvider
from doorman.sync.orchestrator import SyncOrchestrator
from doorman.translate.rule_translator import CloudflareTranslator

FIXTURES = Path(__file__).parent / "fixtures"

ADMIN_RULE = UnifiedRule(
    name="Block admin",
    conditions=[UnifiedCondition(field="path", operator=Operator.STARTS_WITH, value="/admin")],
    action=UnifiedAction(type=ActionType.DENY),
)


def mock_client(handler, base_url):
    return httpx.Client(transport=httpx.MockTransport(handler), base_url=base_url)


class Recorder:
    """Collects requests and answers them from a routing function."""

    def __init__(self, route):
        self.route = route
        self.requests = []

    def __call__(self, request):
        self.requests.append(request)
        return self.route(request)


# ---------------------------------------------------------------------------
# Vercel
# ---------------------------------------------------------------------------


def vercel(route, team_id="team_xyz"):
    recorder = Recorder(route)
    provider = VercelProvider(
        token="t", project_id="prj_abc123", team_id=team_id,
        client=mock_client(recorder, VERCEL_API_BASE_URL),
    )
    return provider, recorder


class TestVercelProvider:
    def test_fetch_remote_state(self):
        active = json.loads((FIXTURES / "v1_config.json").read_text())
        provider, recorder = vercel(lambda request: httpx.Response(200, json={"active": active}))

        state = provider.fetch_remote_state()

        request = recorder.requests[0]
        assert request.method == "GET"
        assert request.url.path == "/v1/security/firewall/config"
        assert request.url.params["projectId"] == "prj_abc123"
        assert request.url.params["teamId"] == "team_xyz"
        assert [r.name for r in state.rules] == ["Block admin", "API rate limit"]
        assert state.ips[0].ip == "203.0.113.7"
        assert state.metadata.version == 7
        assert state.provider == ProviderType.VERCEL

    def test_team_id_is_optional(self):
        provider, recorder = vercel(lambda request: httpx.Response(200, json={"active": {}}), team_id=None)
        provider.fetch_remote_state()
        assert "teamId" not in recorder.requests[0].url.params

    def test_insert_rule(self):
        provider, recorder = vercel(lambda request: httpx.Response(200, json={"id": "rule_new"}))

        outcome = provider.apply_change(Change(kind=ChangeKind.ADD, target=ChangeTarget.RULE, rule=ADMIN_RULE))

        body = json.loads(recorder.requests[0].content)
        assert recorder.requests[0].method == "PATCH"
        assert body["action"] == "rules.insert"
        assert body["id"] is None
        assert body["value"]["name"] == "Block admin"
        assert "id" not in body["value"]
        assert outcome == ChangeOutcome(id="rule_new", message="rules.insert")

    def test_remove_ip(self):
        provider, recorder = vercel(lambda request: httpx.Response(200, json={}))
        ip = UnifiedIPRule(id="ip_1", ip="203.0.113.7")

        outcome = provider.apply_change(Change(kind=ChangeKind.DELETE, target=ChangeTarget.IP, ip=ip))

        body = json.loads(recorder.requests[0].content)
        assert body == {"action": "ip.remove", "id": "ip_1", "value": None}
        assert outcome.id == "ip_1"

    def test_server_error_is_transient(self):
        provider, _ = vercel(lambda request: httpx.Response(503, text="unavailable"))
        with pytest.raises(RemoteAPIError) as exc:
            provider.fetch_remote_state()
        assert exc.value.transient
        assert exc.value.status_code == 503

    def test_client_error_is_not_transient(self):
        provider, _ = vercel(lambda request: httpx.Response(400, json={"error": {"message": "bad rule"}}))
        with pytest.raises(RemoteAPIError) as exc:
            provider.apply_change(Change(kind=ChangeKind.ADD, target=ChangeTarget.RULE, rule=ADMIN_RULE))
        assert not exc.value.transient
        assert "bad rule" in str(exc.value)

    def test_transport_error_is_transient(self):
        def route(request):
            raise httpx.ConnectError("connection refused", request=request)

        provider, _ = vercel(route)
        with pytest.raises(RemoteAPIError) as exc:
            provider.fetch_remote_state()
        assert exc.value.transient

    def test_verify_credentials(self):
        provider, _ = vercel(lambda request: httpx.Response(401, json={"error": {"message": "no"}}))
        assert provider.verify_credentials() is False
        provider, _ = vercel(lambda request: httpx.Response(200, json={"active": {}}))
        assert provider.verify_credentials() is True

    def test_dropped_fields_do_not_cause_updates(self):
        provider, _ = vercel(lambda request: httpx.Response(200, json={}))
        declared_fp, remote_fp = provider.fingerprints()
        declared = UnifiedRule(
            name="API rate limit",
            conditions=[UnifiedCondition(field="path", operator=Operator.STARTS_WITH, value="/api")],
            action=UnifiedAction(
                type=ActionType.RATE_LIMIT,
                rate_limit=UnifiedRateLimit(requests=100, window="1m", characteristics=["ip.src"]),
            ),
            categories=["api"],
            priority=3,
        )
        remote = UnifiedRule(
            id="rule_1",
            name="API rate limit",
            conditions=declared.conditions,
            action=UnifiedAction(type=ActionType.RATE_LIMIT, rate_limit=UnifiedRateLimit(requests=100, window="1m")),
        )
        assert declared_fp(declared, True) == remote_fp(remote, True)

    def test_features(self):
        provider, _ = vercel(lambda request: httpx.Response(200))
        assert provider.supported_features().supports_ip_allow is False


# ---------------------------------------------------------------------------
# Cloudflare
# ---------------------------------------------------------------------------

PREFIX = "/client/v4"


def envelope(result, status=200):
    return httpx.Response(status, json={"success": True, "errors": [], "result": result})


def native_admin_rule(rule_id="r1"):
    native = CloudflareTranslator().from_unified(ADMIN_RULE.model_copy(update={"id": rule_id})).result
    data = native.to_dict()
    data.update(version="3", last_updated="2026-01-01T00:00:00Z", ref=rule_id)
    return data


IP_RULE = {
    "id": "ip1",
    "action": "block",
    "expression": "ip.src eq 203.0.113.7",
    "description": "IP deny: 203.0.113.7 (example.com)",
    "enabled": True,
}


def cloudflare_route(rulesets=None, ruleset=None, extra=None):
    summaries = rulesets if rulesets is not None else [
        {"id": "managed", "phase": "http_request_firewall_managed", "kind": "managed"},
        {"id": "rs1", "phase": "http_request_firewall_custom", "kind": "zone"},
    ]

    def route(request):
        path = request.url.path[len(PREFIX):]
        key = (request.method, path)
        if extra and key in extra:
            return extra[key](request)
        if key == ("GET", "/zones/z1/rulesets"):
            return envelope(summaries)
        if key == ("GET", "/zones/z1/rulesets/rs1"):
            return envelope(ruleset or {"id": "rs1", "version": "5", "rules": []})
        return httpx.Response(404, json={"success": False, "errors": [{"message": f"no route {key}"}]})

    return route


def cloudflare(route):
    recorder = Recorder(route)
    provider = CloudflareProvider(
        api_token="t", zone_id="z1", client=mock_client(recorder, CLOUDFLARE_API_BASE_URL)
    )
    return provider, recorder


class TestCloudflareProvider:
    def test_fetch_splits_rules_and_ips(self):
        ruleset = {
            "id": "rs1",
            "version": "5",
            "last_updated": "2026-01-02T00:00:00Z",
            "rules": [native_admin_rule(), IP_RULE],
        }
        provider, recorder = cloudflare(cloudflare_route(ruleset=ruleset))

        state = provider.fetch_remote_state()

        assert recorder.requests[0].headers["Authorization"] == "Bearer t"
        assert [r.name for r in state.rules] == ["Block admin"]
        assert state.rules[0].id == "r1"
        assert state.ips[0].ip == "203.0.113.7"
        assert state.ips[0].hostname == "example.com"
        assert state.metadata.version == 5
        assert state.metadata.updated_at == "2026-01-02T00:00:00Z"

    def test_no_ruleset_means_empty_state(self):
        provider, _ = cloudflare(cloudflare_route(rulesets=[]))
        state = provider.fetch_remote_state()
        assert state.rules == [] and state.ips == []
        assert state.metadata.version is None

    def test_envelope_failure(self):
        def route(request):
            return httpx.Response(200, json={"success": False, "errors": [{"code": 10000, "message": "Authentication error"}]})

        provider, _ = cloudflare(route)
        with pytest.raises(RemoteAPIError, match="Authentication error"):
            provider.fetch_remote_state()

    def test_add_creates_ruleset_and_returns_new_id(self):
        created = {}

        def create_ruleset(request):
            created["ruleset"] = json.loads(request.content)
            return envelope({"id": "rs_new", "rules": []})

        def add_rule(request):
            created["rule"] = json.loads(request.content)
            return envelope({"id": "rs_new", "rules": [{"id": "old"}, {"id": "new"}]})

        provider, _ = cloudflare(cloudflare_route(rulesets=[], extra={
            ("POST", "/zones/z1/rulesets"): create_ruleset,
            ("POST", "/zones/z1/rulesets/rs_new/rules"): add_rule,
        }))

        outcome = provider.apply_change(Change(kind=ChangeKind.ADD, target=ChangeTarget.RULE, rule=ADMIN_RULE))

        assert outcome.id == "new"
        assert created["ruleset"]["phase"] == "http_request_firewall_custom"
        assert created["ruleset"]["kind"] == "zone"
        assert created["rule"]["description"] == "Block admin"
        assert created["rule"]["action"] == "block"
        assert "id" not in created["rule"]

    def test_update_and_delete_paths(self):
        seen = []

        def record(request):
            seen.append((request.method, request.url.path[len(PREFIX):]))
            return envelope({"id": "rs1", "rules": []})

        provider, _ = cloudflare(cloudflare_route(extra={
            ("PATCH", "/zones/z1/rulesets/rs1/rules/r1"): record,
            ("DELETE", "/zones/z1/rulesets/rs1/rules/ip1"): record,
        }))

        provider.apply_change(Change(
            kind=ChangeKind.UPDATE, target=ChangeTarget.RULE, rule=ADMIN_RULE.model_copy(update={"id": "r1"})
        ))
        outcome = provider.apply_change(Change(
            kind=ChangeKind.DELETE, target=ChangeTarget.IP, ip=UnifiedIPRule(id="ip1", ip="203.0.113.7")
        ))

        assert seen == [
            ("PATCH", "/zones/z1/rulesets/rs1/rules/r1"),
            ("DELETE", "/zones/z1/rulesets/rs1/rules/ip1"),
        ]
        assert outcome.id == "ip1"

    def test_ruleset_lookup_is_cached(self):
        provider, recorder = cloudflare(cloudflare_route())
        provider.fetch_remote_state()
        provider.fetch_remote_state()
        lists = [r for r in recorder.requests if r.url.path == f"{PREFIX}/zones/z1/rulesets"]
        assert len(lists) == 1

    def test_verify_credentials(self):
        provider, _ = cloudflare(lambda request: httpx.Response(403, json={"success": False, "errors": [{"message": "forbidden"}]}))
        assert provider.verify_credentials() is False

    def test_unchanged_rule_fingerprints_match(self):
        ruleset = {"id": "rs1", "version": "5", "rules": [native_admin_rule()]}
        provider, _ = cloudflare(cloudflare_route(ruleset=ruleset))
        remote = provider.fetch_remote_state().rules[0]
        declared_fp, remote_fp = provider.fingerprints()
        assert declared_fp(ADMIN_RULE, True) == remote_fp(remote, True)

        changed = ADMIN_RULE.model_copy(update={"action": UnifiedAction(type=ActionType.CHALLENGE)})
        assert declared_fp(changed, True) != remote_fp(remote, True)

    def test_native_fingerprint_ignores_server_fields(self):
        translator = CloudflareTranslator()
        a = translator.from_unified(ADMIN_RULE.model_copy(update={"id": "a"})).result
        b = a.model_copy(update={"id": "b", "version": "9", "last_updated": "now"})
        assert native_fingerprint(a) == native_fingerprint(b)
        assert native_fingerprint(a, include_name=False) == native_fingerprint(
            b.model_copy(update={"description": "renamed"}), include_name=False
        )


def failure(status, message):
    return httpx.Response(status, json={"success": False, "errors": [{"message": message}]})


class FakeZone:
    """A zone and account answering the Cloudflare API from memory.

    Safe to call from several threads. ``latency`` delays ruleset listing so
    concurrent lookups overlap.
    """

    def __init__(self, latency=0.0, ruleset=None, lists=(), items=None):
        self.latency = latency
        self.ruleset = ruleset
        self.lists = list(lists)
        self.items = items or {}
        self.ruleset_creates = 0
        self.list_creates = 0
        self.requests = []
        self._ids = 0
        self._lock = threading.Lock()

    def _next_id(self, prefix):
        self._ids += 1
        return f"{prefix}{self._ids}"

    def __call__(self, request):
        method, path = request.method, request.url.path[len(PREFIX):]
        self.requests.append((method, path))
        if (method, path) == ("GET", "/zones/z1/rulesets"):
            time.sleep(self.latency)
        with self._lock:
            return self._handle(method, path, request)

    def _handle(self, method, path, request):
        if (method, path) == ("GET", "/zones/z1/rulesets"):
            if self.ruleset is None:
                return envelope([])
            return envelope([{"id": self.ruleset["id"], "phase": "http_request_firewall_custom", "kind": "zone"}])
        if (method, path) == ("POST", "/zones/z1/rulesets"):
            self.ruleset_creates += 1
            if self.ruleset is not None:
                return failure(400, "phase entrypoint ruleset already exists")
            self.ruleset = {"id": "rs1", "version": "1", "rules": []}
            return envelope(self.ruleset)
        if (method, path) == ("GET", "/zones/z1/rulesets/rs1"):
            return envelope(self.ruleset)
        if (method, path) == ("POST", "/zones/z1/rulesets/rs1/rules"):
            self.ruleset["rules"].append(dict(json.loads(request.content), id=self._next_id("rule")))
            self.ruleset["version"] = str(int(self.ruleset["version"]) + 1)
            return envelope(self.ruleset)
        if path.startswith("/zones/z1/rulesets/rs1/rules/") and method == "DELETE":
            rule_id = path.rsplit("/", 1)[1]
            self.ruleset["rules"] = [r for r in self.ruleset["rules"] if r["id"] != rule_id]
            return envelope(self.ruleset)
        if (method, path) == ("GET", "/accounts/a1/rules/lists"):
            return envelope(self.lists)
        if (method, path) == ("POST", "/accounts/a1/rules/lists"):
            self.list_creates += 1
            created = dict(json.loads(request.content), id=self._next_id("list"), num_items=0)
            self.lists.append(created)
            self.items[created["id"]] = []
            return envelope(created)
        if path.startswith("/accounts/a1/rules/lists/") and path.endswith("/items"):
            list_id = path.split("/")[-2]
            if method == "GET":
                return envelope(self.items[list_id])
            if method == "POST":
                for item in json.loads(request.content):
                    self.items[list_id].append(dict(item, id=self._next_id("item")))
                return envelope({"operation_id": "op"})
            if method == "DELETE":
                gone = {item["id"] for item in json.loads(request.content)["items"]}
                self.items[list_id] = [i for i in self.items[list_id] if i["id"] not in gone]
                return envelope({"operation_id": "op"})
        return failure(404, f"no route {(method, path)}")

    def rules(self):
        return self.ruleset["rules"] if self.ruleset else []


def zone_provider(zone, account_id=None):
    return CloudflareProvider(
        api_token="t", zone_id="z1", account_id=account_id,
        client=mock_client(zone, CLOUDFLARE_API_BASE_URL),
    )


def sync(provider, declared):
    return SyncOrchestrator(provider, batch_size=5, sleep=lambda seconds: None).sync(declared)


def path_rule(path):
    return UnifiedRule(
        name=f"Block {path}",
        conditions=[UnifiedCondition(field="path", operator=Operator.EQ, value=path)],
        action=UnifiedAction(type=ActionType.DENY),
    )


class TestCloudflareFirstSync:
    def test_concurrent_creates_share_one_new_ruleset(self):
        zone = FakeZone(latency=0.05)
        declared = UnifiedConfig(rules=[path_rule(f"/p{i}") for i in range(5)])

        result = sync(zone_provider(zone), declared)

        assert result.success, result.failures
        assert result.rules_added == 5
        assert zone.ruleset_creates == 1
        assert len(zone.rules()) == 5
        assert not any(path.startswith("/accounts") for _, path in zone.requests)

    def test_second_sync_is_a_no_op(self):
        zone = FakeZone()
        declared = UnifiedConfig(rules=[path_rule("/a"), path_rule("/b")])
        sync(zone_provider(zone), declared)

        change_set = SyncOrchestrator(zone_provider(zone)).plan(declared)

        assert not change_set.has_changes


class TestCloudflareIPList:
    """Denied IPs in an account List when an account id is configured."""

    def declared(self, *ips):
        return UnifiedConfig(ips=list(ips))

    def test_fetch_reads_list_items(self):
        zone = FakeZone(
            ruleset={"id": "rs1", "version": "2", "rules": [
                {"id": "lr", "action": "block", "expression": IP_LIST_EXPRESSION, "description": "list"},
                {"id": "ip9", "action": "allow", "expression": "ip.src eq 192.0.2.9", "description": "IP allow: 192.0.2.9"},
            ]},
            lists=[{"id": "L1", "name": IP_LIST_NAME, "kind": "ip"}],
            items={"L1": [
                {"id": "i1", "ip": "198.51.100.1", "comment": "scanner"},
                {"id": "i2", "ip": "198.51.100.0/24", "comment": DEFAULT_LIST_COMMENT},
            ]},
        )

        state = zone_provider(zone, account_id="a1").fetch_remote_state()

        assert state.rules == []
        assert [(i.id, i.ip, i.action, i.notes) for i in state.ips] == [
            ("ip9", "192.0.2.9", IPAction.ALLOW, None),
            ("i1", "198.51.100.1", IPAction.DENY, "scanner"),
            ("i2", "198.51.100.0/24", IPAction.DENY, None),
        ]

    def test_without_account_id_list_rule_is_a_rule(self):
        zone = FakeZone(ruleset={"id": "rs1", "version": "2", "rules": [
            {"id": "lr", "action": "block", "expression": IP_LIST_EXPRESSION, "description": "list"},
        ]})
        state = zone_provider(zone).fetch_remote_state()
        assert [r.id for r in state.rules] == ["lr"]

    def test_item_pagination(self):
        pages = {
            None: {"result": [{"id": "i1", "ip": "198.51.100.1"}], "result_info": {"cursors": {"after": "next"}}},
            "next": {"result": [{"id": "i2", "ip": "198.51.100.2"}], "result_info": {"cursors": {}}},
        }
        cursors = []

        def route(request):
            cursor = request.url.params.get("cursor")
            cursors.append(cursor)
            return httpx.Response(200, json=dict(pages[cursor], success=True, errors=[]))

        provider = CloudflareProvider(
            api_token="t", zone_id="z1", account_id="a1",
            client=mock_client(route, CLOUDFLARE_API_BASE_URL),
        )
        items = provider.fetch_list_items("L1")

        assert [i.ip for i in items] == ["198.51.100.1", "198.51.100.2"]
        assert cursors == [None, "next"]

    def test_sync_creates_one_list_and_one_list_rule(self):
        zone = FakeZone(latency=0.02)
        declared = self.declared(
            UnifiedIPRule(ip="198.51.100.1", notes="scanner"),
            UnifiedIPRule(ip="198.51.100.2", hostname="example.com"),
            UnifiedIPRule(ip="198.51.100.3"),
            UnifiedIPRule(ip="192.0.2.9", action=IPAction.ALLOW),
        )

        result = sync(zone_provider(zone, account_id="a1"), declared)

        assert result.success, result.failures
        assert result.ips_added == 4
        assert zone.list_creates == 1
        assert zone.ruleset_creates == 1
        items = zone.items[zone.lists[0]["id"]]
        assert sorted((i["ip"], i["comment"]) for i in items) == [
            ("198.51.100.1", "scanner"),
            ("198.51.100.2", "example.com"),
            ("198.51.100.3", DEFAULT_LIST_COMMENT),
        ]
        expressions = sorted(r["expression"] for r in zone.rules())
        assert expressions == ["ip.src eq 192.0.2.9", IP_LIST_EXPRESSION]

        again = SyncOrchestrator(zone_provider(zone, account_id="a1")).plan(declared)
        assert not again.has_changes

    def test_removed_ip_leaves_the_list(self):
        zone = FakeZone(
            ruleset={"id": "rs1", "version": "2", "rules": [
                {"id": "lr", "action": "block", "expression": IP_LIST_EXPRESSION, "description": "list"},
            ]},
            lists=[{"id": "L1", "name": IP_LIST_NAME, "kind": "ip"}],
            items={"L1": [
                {"id": "i1", "ip": "198.51.100.1", "comment": "keep"},
                {"id": "i2", "ip": "198.51.100.2", "comment": "drop"},
            ]},
        )

        result = sync(zone_provider(zone, account_id="a1"), self.declared(UnifiedIPRule(ip="198.51.100.1")))

        assert result.success, result.failures
        assert result.ips_deleted == 1
        assert [i["id"] for i in zone.items["L1"]] == ["i1"]
        assert ("DELETE", "/accounts/a1/rules/lists/L1/items") in zone.requests
        assert [r["id"] for r in zone.rules()] == ["lr"]

    def test_rule_based_deny_entries_are_deleted_as_rules(self):
        zone = FakeZone(ruleset={"id": "rs1", "version": "2", "rules": [
            {"id": "old", "action": "block", "expression": "ip.src eq 203.0.113.7", "description": "IP deny: 203.0.113.7"},
        ]})

        result = sync(zone_provider(zone, account_id="a1"), self.declared())

        assert result.success, result.failures
        assert result.ips_deleted == 1
        assert zone.rules() == []
        assert zone.list_creates == 0

    def test_list_features(self):
        assert zone_provider(FakeZone(), account_id="a1").supported_features().ip_compare_fields == ()
        assert zone_provider(FakeZone()).supported_features().ip_compare_fields == ("hostname",)


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------


class StubProvider(FirewallProvider):
    name = ProviderType.VERCEL

    def __init__(self):
        super().__init__()
        self.closed = False

    def fetch_remote_state(self):
        return UnifiedConfig()

    def apply_change(self, change):
        return ChangeOutcome(id=change.remote_id)

    def verify_credentials(self):
        return True

    def supported_features(self):
        return FeatureSet()

    def close(self):
        self.closed = True


class TestRegistry:
    def test_builtins(self):
        assert default_registry().list_providers() == ["cloudflare", "vercel"]

    def test_missing_credentials(self):
        with pytest.raises(MissingCredentialsError) as exc:
            default_registry().create("vercel", Credentials(vercel_token="t"))
        assert exc.value.missing == ["VERCEL_PROJECT_ID"]

    def test_builds_cloudflare(self):
        provider = default_registry().create(
            ProviderType.CLOUDFLARE, Credentials(cloudflare_api_token="t", cloudflare_zone_id="z")
        )
        assert isinstance(provider, CloudflareProvider)
        provider.close()

    def test_unknown_provider(self):
        with pytest.raises(ProviderNotRegisteredError) as exc:
            default_registry().create("akamai", Credentials())
        assert exc.value.available == ["cloudflare", "vercel"]

    def test_get_caches_and_close_releases(self):
        registry = ProviderRegistry()
        built = []
        registry.register("Stub", lambda credentials: built.append(StubProvider()) or built[-1])

        first = registry.get("stub", Credentials())
        assert registry.get("STUB", Credentials()) is first
        assert len(built) == 1
        registry.close()
        assert first.closed
