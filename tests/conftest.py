import json

import httpx
import ldap3
import pytest

from directory_toolkit.config import LdapConfig
from directory_toolkit.directory.client import DirectoryClient
from directory_toolkit.graph.client import GraphClient
from directory_toolkit.safety.guardian import ChangeGuardian

BASE_DN = "DC=contoso,DC=com"
BIND_DN = "CN=svc-dirtools,OU=Service,DC=contoso,DC=com"

ALICE = "CN=Alice Adams,OU=Staff,DC=contoso,DC=com"
BOB = "CN=Bob Brown,OU=Staff,DC=contoso,DC=com"
CAROL = "CN=Carol Boss,OU=Staff,DC=contoso,DC=com"
DAVE = "CN=Dave Gone,OU=Staff,DC=contoso,DC=com"
NINA = "CN=Nina New,OU=Staff,DC=contoso,DC=com"
SALES = "CN=Sales,OU=Groups,DC=contoso,DC=com"
VPN = "CN=VPN Users,OU=Groups,DC=contoso,DC=com"

USER_CLASSES = ["top", "person", "organizationalPerson", "user"]


class GraphStub:
    """
    Canned Microsoft Graph. Routes are keyed by (method, path); each route holds
    a queue of (status, body) pairs or callables taking the request. The last
    item of a queue repeats.
    """

    def __init__(self):
        self.routes: dict[tuple[str, str], list] = {}
        self.requests: list[httpx.Request] = []

    def add(self, method: str, path: str, *responses):
        self.routes.setdefault((method, path), []).extend(responses)

    def calls(self, method: str, path: str) -> list[httpx.Request]:
        return [r for r in self.requests if r.method == method and r.url.path == path]

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        queue = self.routes.get((request.method, request.url.path))
        if not queue:
            return httpx.Response(404, json={"error": {"message": f"No route for {request.url.path}"}})
        item = queue.pop(0) if len(queue) > 1 else queue[0]
        if callable(item):
            item = item(request)
        status, body = item
        if body is None:
            return httpx.Response(status)
        return httpx.Response(status, json=body)

    def client(self, guardian=None, **kwargs) -> GraphClient:
        kwargs.setdefault("initial_backoff", 0)
        return GraphClient(
            "test-token",
            guardian or ChangeGuardian(),
            transport=httpx.MockTransport(self.handler),
            **kwargs,
        )


def request_json(request: httpx.Request) -> dict:
    return json.loads(request.content)


@pytest.fixture
def graph_stub():
    return GraphStub()


def _user(sam, upn, uac=512, **extra):
    attrs = {
        "objectClass": USER_CLASSES,
        "sAMAccountName": sam,
        "userPrincipalName": upn,
        "userAccountControl": str(uac),
        "displayName": sam.title(),
    }
    attrs.update(extra)
    return attrs


@pytest.fixture
def ldap_connection():
    server = ldap3.Server("dc01.contoso.test")
    conn = ldap3.Connection(server, user=BIND_DN, password="secret", client_strategy=ldap3.MOCK_SYNC)

    conn.strategy.add_entry(BASE_DN, {"objectClass": ["top", "domain"], "dc": "contoso"})
    for ou in ("Service", "Staff", "Groups", "Computers"):
        conn.strategy.add_entry(f"OU={ou},{BASE_DN}", {"objectClass": ["top", "organizationalUnit"], "ou": ou})
    conn.strategy.add_entry(BIND_DN, {"objectClass": ["top"], "userPassword": "secret"})

    conn.strategy.add_entry(ALICE, _user(
        "alice", "alice@contoso.com",
        mail="alice@contoso.com",
        proxyAddresses=["SMTP:alice@contoso.com", "smtp:a.adams@contoso.com", "X500:/o=Legacy/cn=alice"],
        manager=CAROL,
    ))
    conn.strategy.add_entry(BOB, _user("bob", "bob@contoso.com", mail="bob@contoso.com", manager=CAROL))
    conn.strategy.add_entry(CAROL, _user("carol", "carol@contoso.com", mail="carol@contoso.com"))
    conn.strategy.add_entry(DAVE, _user("dave", "dave@contoso.com", uac=514))
    conn.strategy.add_entry(NINA, _user("nina", "nina@contoso.com", mail="nina@contoso.com"))
    conn.strategy.add_entry(f"CN=WS01,OU=Computers,{BASE_DN}", {
        "objectClass": USER_CLASSES + ["computer"],
        "sAMAccountName": "WS01$",
        "userAccountControl": "4096",
    })

    conn.strategy.add_entry(SALES, {"objectClass": ["top", "group"], "cn": "Sales", "member": [ALICE, BOB]})
    conn.strategy.add_entry(VPN, {"objectClass": ["top", "group"], "cn": "VPN Users", "member": [ALICE, NINA]})

    conn.bind()
    yield conn
    if not conn.closed:
        conn.unbind()


@pytest.fixture
def ldap_config():
    return LdapConfig(server="dc01.contoso.test", base_dn=BASE_DN, bind_dn=BIND_DN, page_size=2)


def directory_client(connection, config, apply=False) -> DirectoryClient:
    return DirectoryClient(config, ChangeGuardian(apply=apply), connection=connection)
