# tests/API/conftest.py
# Description: Test client for the full application, backed by a temporary store and a switchable request user.
#
# Imports
import pytest
from fastapi.testclient import TestClient
#
# Local Imports
from docsync_Server_API.app.main import app
from docsync_Server_API.app.api.v1.API_Deps.Sync_DB_Deps import get_sync_db
from docsync_Server_API.app.core.AuthNZ.User_DB_Handling import get_request_user, User
from docsync_Server_API.tests.test_utils import FakeClock, make_db, ALICE, BOB, CAROL
#
########################################################################################################################
#
# Functions


class RequestUser:
    """Holds the identity the overridden auth dependency returns; `act_as` switches it between requests."""

    def __init__(self):
        self.user = None

    def act_as(self, identity):
        user_id, email = identity
        self.user = User(id=user_id, username=email.split("@")[0], email=email)
        return self.user


@pytest.fixture
def api_db(tmp_path):
    database = make_db(tmp_path / "api.sqlite", FakeClock())
    for user_id, email in (ALICE, BOB, CAROL):
        database.upsert_user(user_id, email)
    yield database
    database.close_all_connections()


@pytest.fixture
def request_user():
    holder = RequestUser()
    holder.act_as(ALICE)
    return holder


@pytest.fixture
def client(api_db, request_user):
    app.dependency_overrides[get_sync_db] = lambda: api_db
    app.dependency_overrides[get_request_user] = lambda: request_user.user
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def push(client):
    """push(*operations) -> response; operations are (type, record dict) tuples."""
    def _push(*operations):
        body = {"operations": [{"type": op_type, "record": record} for op_type, record in operations]}
        return client.post("/api/v1/sync/push", json=body)
    return _push

#
# End of conftest.py
########################################################################################################################
