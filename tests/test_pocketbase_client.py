from __future__ import annotations

import asyncio
import json

import httpx
import pytest

from pocketbase_mcp.app.pocketbase_client import PocketBaseAPIError, PocketBaseClient
from pocketbase_mcp.app.settings import PocketBaseSettings


def test_error_message_includes_field_errors(pb_client, backend) -> None:
    backend.responses[("POST", "/api/collections/posts/records")] = httpx.Response(
        400,
        json={
            "code": 400,
            "message": "Failed to create record.",
            "data": {"title": {"code": "validation_required", "message": "Cannot be blank."}},
        },
    )

    with pytest.raises(PocketBaseAPIError) as excinfo:
        asyncio.run(pb_client.collection("posts").create({}))

    assert str(excinfo.value) == "Failed to create record. (title: Cannot be blank.)"
    assert excinfo.value.status_code == 400
    assert excinfo.value.payload["code"] == 400


def test_error_without_json_body(pb_client, backend) -> None:
    backend.responses[("GET", "/api/settings")] = httpx.Response(502, text="Bad Gateway")

    with pytest.raises(PocketBaseAPIError, match="PocketBase returned HTTP 502"):
        asyncio.run(pb_client.settings.get_all())


def test_non_json_success_body(pb_client, backend) -> None:
    backend.responses[("GET", "/api/health")] = httpx.Response(200, text="<html>")

    with pytest.raises(PocketBaseAPIError, match="non-JSON"):
        asyncio.run(pb_client.health())


def test_get_full_list_pages_until_short_page(pb_client, backend) -> None:
    def paged(request: httpx.Request) -> dict:
        page = int(request.url.params["page"])
        items = [{"id": f"r{page}-{index}"} for index in range(2 if page < 3 else 1)]
        return {"page": page, "perPage": 2, "items": items}

    backend.responses[("GET", "/api/collections/posts/records")] = paged

    records = asyncio.run(pb_client.collection("posts").get_full_list(batch=2, query={"sort": "-created"}))

    assert [record["id"] for record in records] == ["r1-0", "r1-1", "r2-0", "r2-1", "r3-0"]
    assert [call.url.params["page"] for call in backend.calls] == ["1", "2", "3"]
    assert all(call.url.params["skipTotal"] == "true" for call in backend.calls)
    assert all(call.url.params["sort"] == "-created" for call in backend.calls)


def test_get_first_list_item_not_found(pb_client, backend) -> None:
    backend.responses[("GET", "/api/collections/posts/records")] = {"page": 1, "perPage": 1, "items": []}

    with pytest.raises(PocketBaseAPIError) as excinfo:
        asyncio.run(pb_client.collection("posts").get_first_list_item("slug = 'nope'"))

    assert excinfo.value.status_code == 404
    (request,) = backend.calls
    assert request.url.params["filter"] == "slug = 'nope'"
    assert request.url.params["perPage"] == "1"


def test_path_segments_are_quoted(pb_client, backend) -> None:
    asyncio.run(pb_client.collection("my posts").get_one("a/b"))

    assert backend.calls[0].url.raw_path == b"/api/collections/my%20posts/records/a%2Fb"


def test_file_url_flags(pb_client) -> None:
    assert pb_client.files.get_url("posts", "r1", "cover.png") == "http://pb.test/api/files/posts/r1/cover.png"

    url = pb_client.files.get_url("posts", "r1", "cover.png", thumb="0x100", download=True)
    params = httpx.URL(url).params
    assert params["thumb"] == "0x100"
    assert params["download"] == "1"


def test_batch_collects_sub_requests(pb_client, backend) -> None:
    backend.responses[("POST", "/api/batch")] = []
    batch = pb_client.create_batch()
    batch.collection("posts").upsert({"id": "r1", "title": "a"})
    batch.collection("posts").update("r2", {"title": "b"})
    batch.collection("posts").delete("r3")

    asyncio.run(batch.send())

    (request,) = backend.calls
    assert json.loads(request.content) == {
        "requests": [
            {"method": "PUT", "url": "/api/collections/posts/records", "body": {"id": "r1", "title": "a"}},
            {"method": "PATCH", "url": "/api/collections/posts/records/r2", "body": {"title": "b"}},
            {"method": "DELETE", "url": "/api/collections/posts/records/r3"},
        ]
    }


def test_import_collections_payload(pb_client, backend) -> None:
    asyncio.run(pb_client.collections.import_collections([{"name": "posts"}], delete_missing=True))

    (request,) = backend.calls
    assert request.method == "PUT"
    assert request.url.path == "/api/collections/import"
    assert json.loads(request.content) == {"collections": [{"name": "posts"}], "deleteMissing": True}


def test_configured_token_seeds_session(backend, workspace) -> None:
    settings = PocketBaseSettings(url="http://pb.test/", auth_token="admin-token")
    client = PocketBaseClient(settings, transport=backend.transport())

    asyncio.run(client.health())

    assert client.base_url == "http://pb.test"
    assert backend.calls[0].headers["Authorization"] == "admin-token"


def test_no_authorization_header_without_session(pb_client, backend) -> None:
    asyncio.run(pb_client.health())

    assert "Authorization" not in backend.calls[0].headers


def test_auth_response_without_token_is_rejected(pb_client, backend) -> None:
    backend.responses[("POST", "/api/collections/users/auth-refresh")] = {"record": {"id": "u1"}}

    with pytest.raises(PocketBaseAPIError, match="carries no token"):
        asyncio.run(pb_client.collection("users").auth_refresh())

    assert pb_client.session is None


def test_transport_errors_are_not_retried_by_default(pb_client, backend) -> None:
    backend.responses[("GET", "/api/health")] = httpx.ConnectError("connection refused")

    with pytest.raises(httpx.ConnectError):
        asyncio.run(pb_client.health())

    assert len(backend.calls) == 1


def test_transport_errors_are_retried_when_configured(backend, workspace) -> None:
    outcomes = [httpx.ConnectError("connection refused"), {"code": 200}]
    backend.responses[("GET", "/api/health")] = lambda request: outcomes.pop(0)
    client = PocketBaseClient(PocketBaseSettings(url="http://pb.test", retries=1), transport=backend.transport())

    assert asyncio.run(client.health()) == {"code": 200}
    assert len(backend.calls) == 2


def test_get_full_list_follows_backend_page_size_cap(pb_client, backend) -> None:
    records = [{"id": f"r{index}"} for index in range(2500)]

    def capped(request: httpx.Request) -> dict:
        per_page = min(int(request.url.params["perPage"]), 1000)
        page = int(request.url.params["page"])
        start = (page - 1) * per_page
        return {"page": page, "perPage": per_page, "items": records[start : start + per_page]}

    backend.responses[("GET", "/api/collections/posts/records")] = capped

    result = asyncio.run(pb_client.collection("posts").get_full_list(batch=2000))

    assert len(result) == 2500
    assert result[-1] == {"id": "r2499"}
    assert [call.url.params["page"] for call in backend.calls] == ["1", "2", "3"]


def test_get_full_list_stops_on_empty_page(pb_client, backend) -> None:
    backend.responses[("GET", "/api/collections/posts/records")] = {"page": 1, "perPage": 0, "items": []}

    assert asyncio.run(pb_client.collection("posts").get_full_list()) == []
    assert len(backend.calls) == 1
