# tests/Sync/conftest.py
# Description: Fixtures for the sync engine tests (store, services, registered users).
#
# Imports
import pytest
#
# Local Imports
from docsync_Server_API.app.core.Sync import AccessGrantRegistry, PullService, PushService
from docsync_Server_API.tests.test_utils import FakeClock, make_db, ALICE, BOB, CAROL
#
########################################################################################################################
#
# Functions


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def db(tmp_path, clock):
    database = make_db(tmp_path / "engine.sqlite", clock)
    for user_id, email in (ALICE, BOB, CAROL):
        database.upsert_user(user_id, email)
    yield database
    database.close_all_connections()


@pytest.fixture
def registry(db):
    return AccessGrantRegistry(db)


@pytest.fixture
def pull_service(db, registry):
    return PullService(db, grants=registry)


@pytest.fixture
def push_service(db, registry):
    return PushService(db, grants=registry)


@pytest.fixture
def share(registry):
    """share(owner, recipient, permission) -> grant id; creates and accepts a grant."""
    def _share(owner, recipient, permission="edit"):
        grant = registry.create_grant(owner[0], owner[1], recipient[1], permission)
        registry.accept_grant(recipient[0], recipient[1], grant["share_token"])
        return grant["share_id"]
    return _share
