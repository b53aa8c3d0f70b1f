# sync_schemas.py
# Description: Request/response models for the sync API (pull, push, status, operation log).
#              Wire names are camelCase; Python attributes stay snake_case.
#
# Imports
from typing import List, Optional, Literal
#
# 3rd-party Libraries
from pydantic import BaseModel, Field, ConfigDict
from pydantic.alias_generators import to_camel
#
# Local Imports
#
########################################################################################################################
#
# Functions:

# --- Base ---

class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# --- Records ---

class SyncRecordPayload(CamelModel):
    """
    A record as sent by a client in a push operation. Payload fields are opaque to the server;
    `version` is the version the client based its change on.
    """
    id: str = Field(..., min_length=1, description="Globally unique record ID (client-assigned for creates).")
    title: Optional[str] = None
    content: Optional[str] = None
    category: Optional[str] = None
    keywords: Optional[str] = None
    is_favorite: bool = False
    embedding: Optional[List[float]] = Field(None, description="Optional numeric vector, round-tripped as float32 (null and [] are kept distinct).")
    created_at: Optional[str] = Field(None, description="Client creation time; used only on create.")
    updated_at: Optional[str] = Field(None, description="Ignored: the server stamps updated_at.")
    deleted_at: Optional[str] = None
    version: Optional[int] = Field(None, ge=1, description="Expected (last known) server version. Required for updates.")


class SyncRecord(CamelModel):
    """A record as returned by the server, own or shared."""
    id: str
    title: Optional[str] = None
    content: Optional[str] = None
    category: Optional[str] = None
    keywords: Optional[str] = None
    is_favorite: bool = False
    embedding: Optional[List[float]] = None
    created_at: str
    updated_at: str
    deleted_at: Optional[str] = Field(None, description="Tombstone timestamp; non-null means the record was deleted.")
    version: int
    owner_id: int
    owner_identity: Optional[str] = Field(None, description="E-mail of the owning user.")
    is_shared: bool = False
    shared_permission: Optional[Literal['view', 'edit']] = None

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "id": "2f1c3a52-9d7e-4b8e-bb0e-1f7f0c7c9a11",
                "title": "Standard clause",
                "content": "Lorem ipsum...",
                "category": "contracts",
                "keywords": "clause,standard",
                "isFavorite": False,
                "embedding": [0.12, -0.5, 0.33],
                "createdAt": "2024-05-01T10:30:00.000Z",
                "updatedAt": "2024-05-02T08:00:00.000Z",
                "deletedAt": None,
                "version": 3,
                "ownerId": 7,
                "ownerIdentity": "owner@example.com",
                "isShared": True,
                "sharedPermission": "edit",
            }
        }
    )


# --- Pull ---

class PullRequest(CamelModel):
    cursor: Optional[str] = Field(None, description="Last serverTime the client synchronised through. Omit for a full snapshot.")
    limit: Optional[int] = Field(None, ge=1, description="Page size for the client's own records. Server default applies when omitted.")
    offset: int = Field(0, ge=0, description="Offset into the client's own records.")


class ActiveGrantInfo(CamelModel):
    owner_id: int
    owner_identity: Optional[str] = None
    permission: Literal['view', 'edit']


class PullResponse(CamelModel):
    records: List[SyncRecord]
    server_time: str = Field(..., description="Use as the cursor of the next pull.")
    count: int
    total: int
    has_more: bool = Field(..., description="Whether more pages of the caller's own records exist.")
    active_grants: List[ActiveGrantInfo] = Field(default_factory=list)


# --- Push ---

class SyncOperationIn(CamelModel):
    type: Literal['create', 'update', 'delete']
    record: SyncRecordPayload


class PushRequest(CamelModel):
    operations: List[SyncOperationIn] = Field(..., description="Applied in order, in a single transaction.")

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "operations": [
                    {"type": "create", "record": {"id": "r-1", "title": "New", "content": "Body"}},
                    {"type": "update", "record": {"id": "r-2", "title": "Edited", "content": "Body", "version": 4}},
                    {"type": "delete", "record": {"id": "r-3"}},
                ]
            }
        }
    )


class PushConflict(CamelModel):
    id: str
    reason: Literal['already_exists', 'version_mismatch', 'no_permission']
    client_version: Optional[int] = None
    server_version: Optional[int] = None


class PushResponse(CamelModel):
    created: List[str] = Field(default_factory=list)
    updated: List[str] = Field(default_factory=list)
    deleted: List[str] = Field(default_factory=list)
    conflicts: List[PushConflict] = Field(default_factory=list)
    server_time: str


# --- Status / Operation Log ---

class SyncStatusResponse(CamelModel):
    total_models: int
    active_models: int
    last_update: Optional[str] = None
    server_time: str


class OperationLogEntry(CamelModel):
    change_id: int
    user_id: int
    operation: Literal['create', 'update', 'delete']
    record_id: str
    version: int = Field(..., description="Record version after the operation.")
    timestamp: str


class OperationLogResponse(CamelModel):
    entries: List[OperationLogEntry]
    latest_change_id: int

#
# End of sync_schemas.py
########################################################################################################################
