# test_share_endpoints.py
# Description: End-to-end library sharing over HTTP: invite, preview, accept, pull, edit, revoke and leave.
#
# Imports
import pytest
from fastapi import status
#
# Local Imports
from docsync_Server_API.app.core.config import settings
from docsync_Server_API.tests.test_utils import ALICE, BOB, CAROL
#
########################################################################################################################
#
# Functions:

SHARE_URL = "/api/v1/share/library"


@pytest.fixture
def invite(client, request_user):
    def _invite(owner, recipient_email, permission="view"):
        request_user.act_as(owner)
        response = client.post(SHARE_URL, json={"recipientEmail": recipient_email, "permission": permission})
        assert response.status_code == status.HTTP_201_CREATED, response.text
        return response.json()
    return _invite


def test_create_share(client, invite):
    data = invite(ALICE, BOB[1], "edit")
    assert data["success"] is True
    assert data["recipientEmail"] == BOB[1]
    assert data["permission"] == "edit"
    assert data["shareUrl"] == f"{settings['FRONTEND_URL']}/share/{data['shareToken']}"

    shares = client.get(f"{SHARE_URL}/my-shares").json()["shares"]
    assert [(s["id"], s["acceptedAt"]) for s in shares] == [(data["shareId"], None)]


@pytest.mark.parametrize("body, expected", [
    ({"recipientEmail": BOB[1], "permission": "owner"}, status.HTTP_400_BAD_REQUEST),
    ({"recipientEmail": "nobody", "permission": "view"}, status.HTTP_400_BAD_REQUEST),
    ({"recipientEmail": ALICE[1], "permission": "view"}, status.HTTP_400_BAD_REQUEST),
    ({"permission": "view"}, status.HTTP_422_UNPROCESSABLE_ENTITY),
])
def test_create_share_validation(client, body, expected):
    assert client.post(SHARE_URL, json=body).status_code == expected


def test_duplicate_share_is_409(client, invite):
    invite(ALICE, BOB[1])
    response = client.post(SHARE_URL, json={"recipientEmail": BOB[1], "permission": "edit"})
    assert response.status_code == status.HTTP_409_CONFLICT


def test_invitation_preview_needs_no_user(client, invite, push):
    push(("create", {"id": "a1"}))
    token = invite(ALICE, BOB[1])["shareToken"]

    data = client.get(f"{SHARE_URL}/{token}").json()
    assert data["ownerIdentity"] == ALICE[1]
    assert data["modelsCount"] == 1
    assert client.get(f"{SHARE_URL}/{'0' * 32}").status_code == status.HTTP_404_NOT_FOUND


def test_full_share_flow(client, invite, push, request_user):
    push(("create", {"id": "a1", "title": "draft"}))
    token = invite(ALICE, BOB[1], "edit")["shareToken"]

    request_user.act_as(BOB)
    accepted = client.post(f"{SHARE_URL}/{token}/accept").json()
    assert (accepted["ownerId"], accepted["permission"], accepted["alreadyAccepted"]) == (ALICE[0], "edit", False)
    again = client.post(f"{SHARE_URL}/{token}/accept").json()
    assert again["alreadyAccepted"] is True

    libraries = client.get(f"{SHARE_URL}/shared-with-me").json()["libraries"]
    assert [(lib["ownerIdentity"], lib["modelsCount"]) for lib in libraries] == [(ALICE[1], 1)]

    pulled = client.post("/api/v1/sync/pull").json()
    assert pulled["activeGrants"] == [{"ownerId": ALICE[0], "ownerIdentity": ALICE[1], "permission": "edit"}]
    shared = pulled["records"][0]
    assert (shared["id"], shared["isShared"], shared["sharedPermission"]) == ("a1", True, "edit")

    result = push(("update", {"id": "a1", "title": "bob's edit", "version": 1})).json()
    assert result["updated"] == ["a1"]

    request_user.act_as(ALICE)
    own = client.get("/api/v1/models/a1").json()
    assert (own["title"], own["version"], own["ownerId"]) == ("bob's edit", 2, ALICE[0])


def test_accept_errors(client, invite, request_user):
    token = invite(ALICE, BOB[1])["shareToken"]

    # the owner
    assert client.post(f"{SHARE_URL}/{token}/accept").status_code == status.HTTP_400_BAD_REQUEST
    request_user.act_as(CAROL)
    assert client.post(f"{SHARE_URL}/{token}/accept").status_code == status.HTTP_400_BAD_REQUEST
    assert client.post(f"{SHARE_URL}/{'f' * 32}/accept").status_code == status.HTTP_404_NOT_FOUND


def test_revoke_removes_access(client, invite, push, request_user):
    push(("create", {"id": "a1"}))
    share = invite(ALICE, BOB[1], "edit")
    request_user.act_as(BOB)
    client.post(f"{SHARE_URL}/{share['shareToken']}/accept")

    # Only the owner can revoke
    assert client.delete(f"{SHARE_URL}/{share['shareId']}").status_code == status.HTTP_404_NOT_FOUND

    request_user.act_as(ALICE)
    response = client.delete(f"{SHARE_URL}/{share['shareId']}")
    assert response.status_code == status.HTTP_200_OK
    assert response.json()["success"] is True

    request_user.act_as(BOB)
    pulled = client.post("/api/v1/sync/pull").json()
    assert (pulled["records"], pulled["activeGrants"]) == ([], [])
    conflict = push(("update", {"id": "a1", "version": 1})).json()["conflicts"][0]
    assert conflict["reason"] == "no_permission"


def test_recipient_leaves(client, invite, request_user):
    share = invite(ALICE, BOB[1])
    request_user.act_as(BOB)
    client.post(f"{SHARE_URL}/{share['shareToken']}/accept")
    access_id = client.get(f"{SHARE_URL}/shared-with-me").json()["libraries"][0]["accessId"]

    assert client.delete(f"{SHARE_URL}/access/{access_id}").status_code == status.HTTP_200_OK
    assert client.get(f"{SHARE_URL}/shared-with-me").json()["libraries"] == []
    assert client.delete(f"{SHARE_URL}/access/{access_id}").status_code == status.HTTP_404_NOT_FOUND

#
# End of test_share_endpoints.py
########################################################################################################################
