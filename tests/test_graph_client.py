import asyncio

import httpx
import pytest

from directory_toolkit.config import MAX_RETRIES
from directory_toolkit.graph.client import GraphAPIError, directory_object_ref
from directory_toolkit.safety.guardian import ChangeGuardian, SafetyViolation

from conftest import request_json


def run(coro):
    return asyncio.run(coro)


def test_get_all_pages_follows_next_link(graph_stub):
    graph_stub.add(
        "GET", "/v1.0/users",
        (200, {"value": [{"id": "1"}, {"id": "2"}],
               "@odata.nextLink": "https://graph.microsoft.com/v1.0/users?$skiptoken=abc"}),
        (200, {"value": [{"id": "3"}]}),
    )

    async def scenario():
        async with graph_stub.client() as graph:
            return await graph.get_all_pages("users", params={"$select": "id"})

    items = run(scenario())
    assert [i["id"] for i in items] == ["1", "2", "3"]

    first, second = graph_stub.calls("GET", "/v1.0/users")
    assert first.url.params["$top"] == "999"
    assert first.url.params["$select"] == "id"
    assert second.url.params["$skiptoken"] == "abc"
    assert "$select" not in second.url.params
    assert first.headers["Authorization"] == "Bearer test-token"
    assert first.headers["ConsistencyLevel"] == "eventual"


def test_pagination_stops_at_page_cap(graph_stub):
    graph_stub.add(
        "GET", "/v1.0/users",
        (200, {"value": [{"id": "x"}],
               "@odata.nextLink": "https://graph.microsoft.com/v1.0/users?$skiptoken=more"}),
    )

    async def scenario():
        async with graph_stub.client(max_pages=3) as graph:
            return await graph.get_all_pages("users")

    assert len(run(scenario())) == 3


def test_throttled_request_is_retried(graph_stub):
    graph_stub.add(
        "GET", "/v1.0/users/u1",
        (429, {"error": {"message": "Too many requests"}}),
        (200, {"id": "u1"}),
    )

    async def scenario():
        async with graph_stub.client() as graph:
            return await graph.get("users/u1"), graph.get_stats()

    data, stats = run(scenario())
    assert data == {"id": "u1"}
    assert stats == {"total_requests": 2, "throttle_events": 1}


def test_get_returns_markers_for_404_and_403(graph_stub):
    graph_stub.add("GET", "/v1.0/users/missing", (404, {"error": {"message": "Not found"}}))
    graph_stub.add("GET", "/v1.0/users/secret", (403, {"error": {"message": "Insufficient privileges"}}))

    async def scenario():
        async with graph_stub.client() as graph:
            return await graph.get("users/missing"), await graph.get("users/secret")

    missing, forbidden = run(scenario())
    assert missing["_not_found"] is True
    assert forbidden["_forbidden"] is True
    assert forbidden["_error_message"] == "Insufficient privileges"


def test_stream_raises_on_forbidden(graph_stub):
    graph_stub.add("GET", "/v1.0/servicePrincipals", (403, {"error": {"message": "Denied"}}))

    async def scenario():
        async with graph_stub.client() as graph:
            return await graph.get_all_pages("servicePrincipals")

    with pytest.raises(GraphAPIError) as excinfo:
        run(scenario())
    assert excinfo.value.status_code == 403
    assert excinfo.value.message == "Denied"


def test_server_error_raises(graph_stub):
    graph_stub.add("GET", "/v1.0/users", (500, {"error": {"message": "Boom"}}))

    async def scenario():
        async with graph_stub.client() as graph:
            return await graph.get("users")

    with pytest.raises(GraphAPIError) as excinfo:
        run(scenario())
    assert excinfo.value.status_code == 500


def test_batch_get_keeps_input_order(graph_stub):
    def batch(request):
        body = request_json(request)
        responses = []
        for sub in reversed(body["requests"]):
            if sub["url"].startswith("/users/gone"):
                responses.append({"id": sub["id"], "status": 404,
                                  "body": {"error": {"message": "Not found"}}})
            else:
                responses.append({"id": sub["id"], "status": 200, "body": {"url": sub["url"]}})
        return 200, {"responses": responses}

    graph_stub.add("POST", "/v1.0/$batch", batch)

    async def scenario():
        async with graph_stub.client() as graph:
            return await graph.batch_get(["users/a", "/users/gone", "users/c"])

    results = run(scenario())
    assert results[0] == {"url": "/users/a"}
    assert results[1]["_error"] is True
    assert results[1]["status"] == 404
    assert results[2] == {"url": "/users/c"}


def test_batch_splits_into_chunks_of_twenty(graph_stub):
    def batch(request):
        body = request_json(request)
        return 200, {"responses": [
            {"id": sub["id"], "status": 200, "body": {"url": sub["url"]}} for sub in body["requests"]
        ]}

    graph_stub.add("POST", "/v1.0/$batch", batch)

    async def scenario():
        async with graph_stub.client() as graph:
            return await graph.batch_get([f"users/{i}" for i in range(45)])

    results = run(scenario())
    assert [r["url"] for r in results] == [f"/users/{i}" for i in range(45)]
    assert len(graph_stub.calls("POST", "/v1.0/$batch")) == 3


def test_writes_blocked_in_dry_run(graph_stub):
    async def scenario():
        async with graph_stub.client() as graph:
            await graph.post("groups/g1/members/$ref", directory_object_ref("u1"))

    with pytest.raises(SafetyViolation):
        run(scenario())
    assert graph_stub.requests == []


def test_post_in_apply_mode_sends_reference(graph_stub):
    graph_stub.add("POST", "/v1.0/groups/g1/members/$ref", (204, None))
    guardian = ChangeGuardian(apply=True)

    async def scenario():
        async with graph_stub.client(guardian) as graph:
            return await graph.post("groups/g1/members/$ref", directory_object_ref("u1"))

    assert run(scenario()) == {}
    (call,) = graph_stub.calls("POST", "/v1.0/groups/g1/members/$ref")
    assert request_json(call) == {"@odata.id": "https://graph.microsoft.com/v1.0/directoryObjects/u1"}
    assert len(guardian.changes) == 1


def test_strict_write_raises_on_client_error(graph_stub):
    graph_stub.add(
        "POST", "/v1.0/groups/g1/members/$ref",
        (400, {"error": {"message": "One or more added object references already exist"}}),
    )

    async def scenario():
        async with graph_stub.client(ChangeGuardian(apply=True)) as graph:
            await graph.post("groups/g1/members/$ref", directory_object_ref("u1"))

    with pytest.raises(GraphAPIError) as excinfo:
        run(scenario())
    assert excinfo.value.status_code == 400
    assert "already exist" in excinfo.value.message


def test_connection_failure_surfaces_as_graph_error(graph_stub):
    def unreachable(request):
        raise httpx.ConnectError("down", request=request)

    graph_stub.add("GET", "/v1.0/users/u1", unreachable)

    async def scenario():
        async with graph_stub.client() as graph:
            return await graph.get("users/u1")

    with pytest.raises(GraphAPIError) as excinfo:
        run(scenario())
    assert excinfo.value.status_code == 0
    assert len(graph_stub.calls("GET", "/v1.0/users/u1")) == MAX_RETRIES + 1


def test_batch_retries_throttled_sub_requests(graph_stub):
    def first_round(request):
        return 200, {"responses": [
            {"id": "0", "status": 200, "body": {"id": "a"}},
            {"id": "1", "status": 429, "headers": {"Retry-After": "0"},
             "body": {"error": {"message": "Too many requests"}}},
        ]}

    def second_round(request):
        (sub,) = request_json(request)["requests"]
        assert sub == {"id": "1", "method": "GET", "url": "/users/b"}
        return 200, {"responses": [{"id": "1", "status": 200, "body": {"id": "b"}}]}

    graph_stub.add("POST", "/v1.0/$batch", first_round, second_round)

    async def scenario():
        async with graph_stub.client() as graph:
            return await graph.batch_get(["users/a", "users/b"]), graph.get_stats()

    results, stats = run(scenario())
    assert results == [{"id": "a"}, {"id": "b"}]
    assert len(graph_stub.calls("POST", "/v1.0/$batch")) == 2
    assert stats["throttle_events"] == 1
