import asyncio

from directory_toolkit.cache.store import RunCache
from directory_toolkit.collectors import AdAccountCollector, AppPermissionCollector, MailboxCollector
from directory_toolkit.collectors.mailboxes import has_exchange_plan
from directory_toolkit.config import CollectionConfig, MICROSOFT_TENANT_ID

from conftest import directory_client, request_json


def run(coro):
    return asyncio.run(coro)


MAIL_USERS = [
    {
        "id": "u1",
        "userPrincipalName": "alice@contoso.com",
        "mail": "alice@contoso.com",
        "proxyAddresses": ["SMTP:alice@contoso.com"],
        "onPremisesImmutableId": "imm-1",
        "onPremisesSyncEnabled": True,
        "accountEnabled": True,
        "assignedPlans": [{"service": "exchange", "capabilityStatus": "Enabled"}],
    },
    {
        "id": "u2",
        "userPrincipalName": "info@contoso.onmicrosoft.com",
        "mail": "info@contoso.com",
        "accountEnabled": False,
        "assignedPlans": [],
    },
]


def test_has_exchange_plan():
    assert has_exchange_plan([{"service": "Exchange", "capabilityStatus": "Enabled"}])
    assert not has_exchange_plan([{"service": "exchange", "capabilityStatus": "Deleted"}])
    assert not has_exchange_plan(None)


def test_mailbox_collector(graph_stub):
    graph_stub.add("GET", "/v1.0/users", (200, {"value": MAIL_USERS}))

    async def scenario():
        async with graph_stub.client() as graph:
            return await MailboxCollector(graph, CollectionConfig()).execute()

    result = run(scenario())

    assert not result.failed
    first, second = result.data["mailboxes"]
    assert first["immutable_id"] == "imm-1"
    assert first["synced_from_on_premises"] is True
    assert first["has_exchange_license"] is True
    assert second["account_enabled"] is False
    assert second["has_exchange_license"] is False

    (call,) = graph_stub.calls("GET", "/v1.0/users")
    assert call.url.params["$filter"] == "mail ne null"
    assert call.url.params["$count"] == "true"


def test_mailbox_collector_records_permission_gap(graph_stub):
    graph_stub.add("GET", "/v1.0/users", (403, {"error": {"message": "Insufficient privileges"}}))

    async def scenario():
        async with graph_stub.client() as graph:
            return await MailboxCollector(graph, CollectionConfig()).execute()

    result = run(scenario())

    assert result.data["mailboxes"] == []
    assert result.metadata["permission_gaps"] == ["users"]
    assert result.metadata["warnings"]


def test_app_permission_collector(graph_stub):
    graph_stub.add("GET", "/v1.0/servicePrincipals", (200, {"value": [
        {"id": "sp-app", "appId": "a1", "displayName": "Payroll Sync", "appOwnerOrganizationId": "other",
         "appRoles": [], "oauth2PermissionScopes": []},
        {"id": "sp-graph", "appId": "a2", "displayName": "Microsoft Graph",
         "appOwnerOrganizationId": MICROSOFT_TENANT_ID,
         "appRoles": [{"id": "r1", "value": "User.Read.All", "displayName": "Read users", "extra": "x"}]},
    ]}))
    graph_stub.add("GET", "/v1.0/servicePrincipals/sp-app/appRoleAssignments", (200, {"value": [
        {"id": "as-1", "resourceId": "sp-graph", "resourceDisplayName": "Microsoft Graph", "appRoleId": "r1"},
    ]}))
    graph_stub.add("GET", "/v1.0/oauth2PermissionGrants", (200, {"value": [
        {"id": "g1", "clientId": "sp-app", "consentType": "Principal", "principalId": "p1",
         "resourceId": "sp-graph", "scope": "Mail.Read"},
        {"id": "g2", "clientId": "sp-app", "consentType": "Principal", "principalId": "p2",
         "resourceId": "sp-graph", "scope": "Mail.Send"},
    ]}))

    def batch(request):
        subs = request_json(request)["requests"]
        responses = []
        for sub in subs:
            if sub["url"].startswith("/users/p1"):
                responses.append({"id": sub["id"], "status": 200,
                                  "body": {"id": "p1", "userPrincipalName": "pat@contoso.com"}})
            else:
                responses.append({"id": sub["id"], "status": 404, "body": {"error": {"message": "gone"}}})
        return 200, {"responses": responses}

    graph_stub.add("POST", "/v1.0/$batch", batch)

    async def scenario():
        async with graph_stub.client() as graph:
            return await AppPermissionCollector(graph, CollectionConfig()).execute()

    result = run(scenario())

    assert not result.failed
    sps = {sp["id"]: sp for sp in result.data["service_principals"]}
    assert sps["sp-graph"]["isFirstParty"] is True
    assert sps["sp-graph"]["appRoles"] == [{"id": "r1", "value": "User.Read.All", "displayName": "Read users"}]
    assert result.data["app_role_assignments"][0]["servicePrincipalId"] == "sp-app"
    assert result.data["principal_names"] == {"p1": "pat@contoso.com"}
    assert any("could not be resolved" in w for w in result.metadata["warnings"])
    # First-party principals are not audited unless asked for
    assert graph_stub.calls("GET", "/v1.0/servicePrincipals/sp-graph/appRoleAssignments") == []


def test_ad_account_collector(ldap_connection, ldap_config):
    client = directory_client(ldap_connection, ldap_config)
    config = CollectionConfig(include_disabled_accounts=False)

    result = run(AdAccountCollector(client, config).execute())

    assert not result.failed
    assert [a["sam_account_name"] for a in result.data["accounts"]] == ["alice", "bob", "carol", "nina"]


def test_collector_results_are_cached(graph_stub, tmp_path):
    graph_stub.add("GET", "/v1.0/users", (200, {"value": MAIL_USERS}))
    cache = RunCache(tmp_path / "cache")

    async def scenario():
        async with graph_stub.client() as graph:
            first = await MailboxCollector(graph, CollectionConfig(), cache=cache,
                                           run_id="r1", cache_scope="tenant-a").execute()
            second = await MailboxCollector(graph, CollectionConfig(), cache=cache,
                                            run_id="r2", cache_scope="tenant-a").execute()
            other = await MailboxCollector(graph, CollectionConfig(), cache=cache,
                                           run_id="r3", cache_scope="tenant-b").execute()
            return first, second, other

    first, second, other = run(scenario())

    assert second.metadata.get("from_cache") is True
    assert second.data == first.data
    assert not other.metadata.get("from_cache")
    assert len(graph_stub.calls("GET", "/v1.0/users")) == 2


def test_ad_cache_keeps_enabled_only_and_full_inventories_apart(ldap_connection, ldap_config, tmp_path):
    client = directory_client(ldap_connection, ldap_config)
    cache = RunCache(tmp_path / "cache")
    scope = "dc01/DC=contoso,DC=com"

    def collect(include_disabled, run_id):
        config = CollectionConfig(include_disabled_accounts=include_disabled)
        return run(AdAccountCollector(client, config, cache=cache, run_id=run_id,
                                      cache_scope=scope).execute())

    enabled_only = collect(False, "r1")
    everything = collect(True, "r2")
    again = collect(True, "r3")

    assert "dave" not in [a["sam_account_name"] for a in enabled_only.data["accounts"]]
    assert not everything.metadata.get("from_cache")
    assert "dave" in [a["sam_account_name"] for a in everything.data["accounts"]]
    assert again.metadata.get("from_cache") is True
    assert again.data == everything.data
