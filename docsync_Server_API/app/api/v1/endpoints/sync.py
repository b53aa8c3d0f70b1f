# docsync_Server_API/app/api/v1/endpoints/sync.py
# Description: FastAPI endpoints for bidirectional synchronisation: pull, push, status and the operation log.
#
# Imports
import asyncio
from typing import Optional
#
# 3rd-party imports
from fastapi import (
    APIRouter,
    Body,
    Depends,
    HTTPException,
    Query,
    status,
)
from loguru import logger
#
# Local Imports
from docsync_Server_API.app.api.v1.API_Deps.Sync_DB_Deps import get_sync_db, get_pull_service, get_push_service
from docsync_Server_API.app.api.v1.schemas.sync_schemas import (
    PullRequest, PullResponse, PushRequest, PushResponse, SyncStatusResponse, OperationLogResponse,
)
from docsync_Server_API.app.core.AuthNZ.User_DB_Handling import get_request_user, User
from docsync_Server_API.app.core.config import settings
from docsync_Server_API.app.core.DB_Management.Sync_DB import SyncDatabase, SyncDBError, InputError
from docsync_Server_API.app.core.Sync import PullService, PushService, SyncOperation, MalformedOperationError
#
#######################################################################################################################
#
# Functions:

router = APIRouter()

# Pull and push run their synchronous sqlite work in a thread pool (asyncio.to_thread).
# Per-operation conflicts are part of a successful push response, never HTTP errors.


@router.post("/pull",
             response_model=PullResponse,
             summary="Fetch records changed since a cursor (own and shared)")
async def pull_changes(
    request: Optional[PullRequest] = Body(None),
    current_user: User = Depends(get_request_user),
    pull_service: PullService = Depends(get_pull_service),
):
    """
    Without a cursor: a full snapshot of the caller's live records (paginated) plus every shared library.
    With a cursor: only records updated after it, tombstones included. Libraries whose grant was accepted
    after the cursor are returned in full.
    """
    request = request or PullRequest()
    limit = request.limit or settings["SYNC_DEFAULT_PAGE_SIZE"]
    logger.info(f"[{current_user.username}] Pull requested (cursor={request.cursor}, limit={limit}, offset={request.offset}).")
    try:
        result = await asyncio.to_thread(pull_service.pull, current_user.id, request.cursor, limit, request.offset)
    except InputError as e:
        logger.warning(f"[{current_user.username}] Rejected pull: {e}")
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except SyncDBError as e:
        logger.error(f"[{current_user.username}] Storage error during pull: {e}", exc_info=True)
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Failed to retrieve changes from database.")
    return result.to_dict()


@router.post("/push",
             response_model=PushResponse,
             summary="Apply a batch of client operations")
async def push_changes(
    payload: PushRequest,
    current_user: User = Depends(get_request_user),
    push_service: PushService = Depends(get_push_service),
):
    """
    Applies create/update/delete operations in order, in one transaction. Updates require the record's
    current version; mismatches, duplicate creates and missing edit permission come back as conflicts.
    A storage failure rolls back the whole batch and returns 503: retry the entire batch.
    """
    operations = [SyncOperation(type=op.type, record=op.record.model_dump()) for op in payload.operations]
    logger.info(f"[{current_user.username}] Received {len(operations)} operations.")
    try:
        result = await asyncio.to_thread(push_service.push, current_user.id, operations)
    except (MalformedOperationError, InputError) as e:
        logger.warning(f"[{current_user.username}] Rejected malformed push batch: {e}")
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except SyncDBError as e:
        logger.error(f"[{current_user.username}] Push batch rolled back: {e}", exc_info=True)
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                            detail="Storage failure; no operation was applied. Retry the whole batch.")
    return result.to_dict()


@router.get("/status",
            response_model=SyncStatusResponse,
            summary="Counts and last update time of the caller's records")
async def sync_status(
    current_user: User = Depends(get_request_user),
    db: SyncDatabase = Depends(get_sync_db),
):
    def _status_sync():
        stats = db.get_sync_status(current_user.id)
        stats["server_time"] = db.current_timestamp()
        return stats

    try:
        return await asyncio.to_thread(_status_sync)
    except SyncDBError as e:
        logger.error(f"[{current_user.username}] Status error: {e}", exc_info=True)
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Failed to read sync status.")


@router.get("/log",
            response_model=OperationLogResponse,
            summary="The caller's operation log entries after a change id")
async def operation_log(
    since_id: int = Query(0, ge=0, alias="sinceId", description="Return entries with a larger change id."),
    limit: Optional[int] = Query(None, ge=1, description="Maximum entries to return."),
    current_user: User = Depends(get_request_user),
    db: SyncDatabase = Depends(get_sync_db),
):
    limit = min(limit or settings["SYNC_OPERATION_LOG_PAGE_SIZE"], settings["SYNC_OPERATION_LOG_PAGE_SIZE"])

    def _log_sync():
        entries = db.get_operation_log_entries(current_user.id, since_change_id=since_id, limit=limit)
        return entries, db.get_latest_operation_log_change_id(current_user.id)

    try:
        entries, latest_change_id = await asyncio.to_thread(_log_sync)
    except SyncDBError as e:
        logger.error(f"[{current_user.username}] Operation log error: {e}", exc_info=True)
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Failed to read the operation log.")
    logger.debug(f"[{current_user.username}] Sending {len(entries)} log entries since {since_id} (latest {latest_change_id}).")
    return {"entries": entries, "latest_change_id": latest_change_id}

#
# End of sync.py
#######################################################################################################################
