# test_sync_endpoints.py
# Description: HTTP behaviour of /api/v1/sync: wire format, validation, conflicts and error mapping.
#
# Imports
from unittest.mock import MagicMock
#
# 3rd-party Libraries
from fastapi import status
#
# Local Imports
from docsync_Server_API.app.main import app
from docsync_Server_API.app.api.v1.API_Deps.Sync_DB_Deps import get_push_service
from docsync_Server_API.app.core.config import settings
from docsync_Server_API.app.core.DB_Management.Sync_DB import SyncDBError
from docsync_Server_API.tests.test_utils import ALICE, BOB
#
########################################################################################################################
#
# Functions:

PULL_URL = "/api/v1/sync/pull"


def test_pull_without_body_is_a_snapshot(client, push):
    push(("create", {"id": "r1", "title": "T", "content": "C", "isFavorite": True, "embedding": [0.5, -0.25, 1.0]}))

    response = client.post(PULL_URL)
    assert response.status_code == status.HTTP_200_OK
    data = response.json()
    assert set(data) == {"records", "serverTime", "count", "total", "hasMore", "activeGrants"}
    record = data["records"][0]
    assert record["isFavorite"] is True
    assert record["embedding"] == [0.5, -0.25, 1.0]
    assert record["ownerIdentity"] == ALICE[1]
    assert record["isShared"] is False
    assert record["version"] == 1
    assert record["deletedAt"] is None
    assert (data["count"], data["total"], data["hasMore"]) == (1, 1, False)


def test_empty_embedding_comes_back_empty(client, push):
    push(("create", {"id": "r1", "title": "T", "content": "C", "embedding": []}),
         ("create", {"id": "r2", "title": "T", "content": "C"}))

    records = {r["id"]: r for r in client.post(PULL_URL).json()["records"]}
    assert records["r1"]["embedding"] == []
    assert records["r2"]["embedding"] is None


def test_incremental_pull_with_cursor(client, push):
    push(("create", {"id": "r1"}), ("create", {"id": "r2"}))
    cursor = client.post(PULL_URL, json={}).json()["serverTime"]
    push(("delete", {"id": "r2"}))

    data = client.post(PULL_URL, json={"cursor": cursor}).json()
    assert [(r["id"], r["deletedAt"] is not None) for r in data["records"]] == [("r2", True)]


def test_pull_pagination(client, push):
    push(*[("create", {"id": f"r{i}"}) for i in range(3)])
    data = client.post(PULL_URL, json={"limit": 2, "offset": 0}).json()
    assert (data["count"], data["total"], data["hasMore"]) == (2, 3, True)
    data = client.post(PULL_URL, json={"limit": 2, "offset": 2}).json()
    assert (data["count"], data["hasMore"]) == (1, False)


def test_pull_invalid_cursor(client):
    response = client.post(PULL_URL, json={"cursor": "not-a-time"})
    assert response.status_code == status.HTTP_400_BAD_REQUEST
    assert "cursor" in response.json()["detail"].lower()


def test_pull_rejects_bad_paging(client):
    assert client.post(PULL_URL, json={"limit": 0}).status_code == status.HTTP_422_UNPROCESSABLE_ENTITY
    assert client.post(PULL_URL, json={"offset": -1}).status_code == status.HTTP_422_UNPROCESSABLE_ENTITY


def test_push_reports_results_and_conflicts(client, push):
    push(("create", {"id": "dup"}))
    response = push(
        ("create", {"id": "r1", "title": "v1"}),
        ("update", {"id": "r1", "title": "v2", "version": 1}),
        ("create", {"id": "dup"}),
        ("update", {"id": "r1", "title": "stale", "version": 1}),
    )
    assert response.status_code == status.HTTP_200_OK
    data = response.json()
    assert data["created"] == ["r1"]
    assert data["updated"] == ["r1"]
    assert data["serverTime"]
    assert data["conflicts"] == [
        {"id": "dup", "reason": "already_exists", "clientVersion": None, "serverVersion": None},
        {"id": "r1", "reason": "version_mismatch", "clientVersion": 1, "serverVersion": 2},
    ]


def test_push_accepts_snake_case_fields(client, push):
    push(("create", {"id": "r1", "is_favorite": True, "created_at": "2023-06-01T12:00:00.000Z"}))
    record = client.get("/api/v1/models/r1").json()
    assert record["isFavorite"] is True
    assert record["createdAt"] == "2023-06-01T12:00:00.000Z"


def test_push_no_permission(client, push, request_user):
    push(("create", {"id": "r1"}))
    request_user.act_as(BOB)
    data = push(("update", {"id": "r1", "version": 1})).json()
    assert data["conflicts"][0]["reason"] == "no_permission"


def test_push_validation_errors(client):
    url = "/api/v1/sync/push"
    assert client.post(url, json={}).status_code == status.HTTP_422_UNPROCESSABLE_ENTITY
    bad_type = {"operations": [{"type": "upsert", "record": {"id": "r1"}}]}
    assert client.post(url, json=bad_type).status_code == status.HTTP_422_UNPROCESSABLE_ENTITY
    missing_id = {"operations": [{"type": "create", "record": {"title": "no id"}}]}
    assert client.post(url, json=missing_id).status_code == status.HTTP_422_UNPROCESSABLE_ENTITY


def test_push_embedding_dimension_mismatch(client, push, monkeypatch, api_db):
    monkeypatch.setitem(settings, "EMBEDDING_DIMENSIONS", 4)
    response = push(("create", {"id": "r1", "embedding": [1.0, 2.0]}), ("create", {"id": "r2"}))
    assert response.status_code == status.HTTP_400_BAD_REQUEST
    assert api_db.get_record_state("r2") is None


def test_push_storage_failure_is_503(client, push):
    failing = MagicMock()
    failing.push.side_effect = SyncDBError("database is locked")
    app.dependency_overrides[get_push_service] = lambda: failing

    response = push(("create", {"id": "r1"}))
    assert response.status_code == status.HTTP_503_SERVICE_UNAVAILABLE
    assert "retry" in response.json()["detail"].lower()


def test_status(client, push):
    empty = client.get("/api/v1/sync/status").json()
    assert (empty["totalModels"], empty["activeModels"], empty["lastUpdate"]) == (0, 0, None)

    push(("create", {"id": "r1"}), ("create", {"id": "r2"}), ("delete", {"id": "r2"}))
    data = client.get("/api/v1/sync/status").json()
    assert (data["totalModels"], data["activeModels"]) == (2, 1)
    assert data["lastUpdate"] < data["serverTime"]


def test_operation_log(client, push):
    push(("create", {"id": "r1"}), ("update", {"id": "r1", "version": 1}), ("delete", {"id": "r1"}))

    data = client.get("/api/v1/sync/log").json()
    assert [(e["operation"], e["recordId"], e["version"]) for e in data["entries"]] == [
        ("create", "r1", 1), ("update", "r1", 2), ("delete", "r1", 3)]
    assert data["latestChangeId"] == data["entries"][-1]["changeId"]

    first_id = data["entries"][0]["changeId"]
    later = client.get("/api/v1/sync/log", params={"sinceId": first_id, "limit": 1}).json()
    assert [e["operation"] for e in later["entries"]] == ["update"]


def test_operation_log_is_per_user(client, push, request_user):
    push(("create", {"id": "r1"}))
    request_user.act_as(BOB)
    data = client.get("/api/v1/sync/log").json()
    assert (data["entries"], data["latestChangeId"]) == ([], 0)

#
# End of test_sync_endpoints.py
########################################################################################################################
