# docsync_Server_API/app/api/v1/endpoints/models.py
# Description: Plain CRUD over the caller's own records ("models"). Writes share the store's
#              compare-and-increment versioning and operation log with the sync push path.
#
# Imports
import asyncio
from typing import Optional
#
# 3rd-party imports
from fastapi import APIRouter, Depends, HTTPException, Query, status
from loguru import logger
#
# Local Imports
from docsync_Server_API.app.api.v1.API_Deps.Sync_DB_Deps import get_sync_db
from docsync_Server_API.app.api.v1.API_Deps.v1_endpoint_deps import get_expected_version
from docsync_Server_API.app.api.v1.schemas.model_schemas import (
    ModelCreate, ModelUpdate, ModelListResponse, ModelDeleteResponse,
)
from docsync_Server_API.app.api.v1.schemas.sync_schemas import SyncRecord
from docsync_Server_API.app.core.AuthNZ.User_DB_Handling import get_request_user, User
from docsync_Server_API.app.core.config import settings
from docsync_Server_API.app.core.DB_Management.Sync_DB import SyncDatabase, SyncDBError, InputError, ConflictError
from docsync_Server_API.app.core.Sync import MalformedOperationError
from docsync_Server_API.app.core.Sync.models import encode_embedding, record_row_to_wire
#
#######################################################################################################################
#
# Functions:

router = APIRouter()


def handle_db_errors(e: Exception, entity_type: str = "model"):
    if isinstance(e, HTTPException):
        raise e
    if isinstance(e, (InputError, MalformedOperationError)):
        logger.warning(f"Input error for {entity_type}: {e}")
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    if isinstance(e, ConflictError):
        logger.warning(f"Conflict error for {entity_type} (ID: {e.entity_id}): {e}")
        if e.reason == "version_mismatch":
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail={
                "message": "The model has been modified since you last fetched it. Please refresh and try again.",
                "serverVersion": e.server_version,
            })
        if e.reason == "already_exists":
            raise HTTPException(status_code=status.HTTP_409_CONFLICT,
                                detail=f"A {entity_type} with the provided identifier already exists.")
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    if isinstance(e, SyncDBError):
        logger.error(f"Database error for {entity_type}: {e}", exc_info=True)
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                            detail=f"A database error occurred while processing your request for {entity_type}.")
    logger.error(f"Unexpected error for {entity_type}: {e}", exc_info=True)
    raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                        detail=f"An unexpected error occurred while processing your request for {entity_type}.")


def _own_live_record(db: SyncDatabase, record_id: str, user_id: int) -> dict:
    record = db.get_record_by_id(record_id)
    if not record or record["owner_id"] != user_id:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Model not found")
    return record


@router.get("/",
            response_model=ModelListResponse,
            summary="List your models, most recently updated first")
async def list_models(
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    current_user: User = Depends(get_request_user),
    db: SyncDatabase = Depends(get_sync_db),
):
    try:
        rows = await asyncio.to_thread(db.list_records, current_user.id, limit, offset)
    except Exception as e:
        handle_db_errors(e, "models list")
    models = [record_row_to_wire(row) for row in rows]
    return {"models": models, "count": len(models)}


@router.get("/{model_id}",
            response_model=SyncRecord,
            summary="Get one of your models")
async def get_model(
    model_id: str,
    current_user: User = Depends(get_request_user),
    db: SyncDatabase = Depends(get_sync_db),
):
    try:
        record = await asyncio.to_thread(_own_live_record, db, model_id, current_user.id)
    except Exception as e:
        handle_db_errors(e)
    return record_row_to_wire(record)


@router.post("/",
             response_model=SyncRecord,
             status_code=status.HTTP_201_CREATED,
             summary="Create a model")
async def create_model(
    model_in: ModelCreate,
    current_user: User = Depends(get_request_user),
    db: SyncDatabase = Depends(get_sync_db),
):
    def _create_sync():
        data = model_in.model_dump()
        data["embedding"] = encode_embedding(model_in.embedding, settings.get("EMBEDDING_DIMENSIONS"), model_in.id)
        record_id = db.add_record(current_user.id, data)
        return db.get_record_by_id(record_id)

    try:
        record = await asyncio.to_thread(_create_sync)
    except Exception as e:
        handle_db_errors(e)
    logger.info(f"[{current_user.username}] Created model {record['id']}.")
    return record_row_to_wire(record)


@router.put("/{model_id}",
            response_model=SyncRecord,
            summary="Update fields of a model")
async def update_model(
    model_id: str,
    model_in: ModelUpdate,
    expected_version: Optional[int] = Depends(get_expected_version),
    current_user: User = Depends(get_request_user),
    db: SyncDatabase = Depends(get_sync_db),
):
    """Only fields present in the body are written. With an `expected-version` header, a stale version is a 409."""
    update_data = model_in.model_dump(exclude_unset=True)
    if not update_data:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No fields provided for update.")

    def _update_sync():
        if "embedding" in update_data:
            update_data["embedding"] = encode_embedding(update_data["embedding"],
                                                        settings.get("EMBEDDING_DIMENSIONS"), model_id)
        current = _own_live_record(db, model_id, current_user.id)
        version = expected_version if expected_version is not None else current["version"]
        db.update_record(model_id, current_user.id, update_data, version)
        return db.get_record_by_id(model_id)

    try:
        record = await asyncio.to_thread(_update_sync)
    except Exception as e:
        handle_db_errors(e)
    logger.info(f"[{current_user.username}] Updated model {model_id} to version {record['version']}.")
    return record_row_to_wire(record)


@router.delete("/{model_id}",
               response_model=ModelDeleteResponse,
               summary="Delete (tombstone) a model")
async def delete_model(
    model_id: str,
    current_user: User = Depends(get_request_user),
    db: SyncDatabase = Depends(get_sync_db),
):
    def _delete_sync():
        _own_live_record(db, model_id, current_user.id)
        return db.soft_delete_record(model_id, current_user.id)

    try:
        new_version = await asyncio.to_thread(_delete_sync)
    except Exception as e:
        handle_db_errors(e)
    if new_version is None:
        # Deleted concurrently between the lookup and the write
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Model not found")
    logger.info(f"[{current_user.username}] Deleted model {model_id}.")
    return {"success": True, "id": model_id, "version": new_version}

#
# End of models.py
#######################################################################################################################
