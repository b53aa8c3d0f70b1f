# docsync_Server_API/app/api/v1/endpoints/share.py
# Description: Library sharing endpoints: invite, list, preview, accept, revoke and leave.
#
# Imports
import asyncio
#
# 3rd-party imports
from fastapi import APIRouter, Depends, HTTPException, status
from loguru import logger
#
# Local Imports
from docsync_Server_API.app.api.v1.API_Deps.Sync_DB_Deps import get_grant_registry
from docsync_Server_API.app.api.v1.schemas.share_schemas import (
    CreateShareRequest, CreateShareResponse, MySharesResponse, SharedWithMeResponse, InvitationInfoResponse,
    AcceptShareResponse, SuccessResponse,
)
from docsync_Server_API.app.core.AuthNZ.User_DB_Handling import get_request_user, User
from docsync_Server_API.app.core.config import settings
from docsync_Server_API.app.core.DB_Management.Sync_DB import SyncDBError
from docsync_Server_API.app.core.Sync import (
    AccessGrantRegistry, GrantNotFoundError, GrantConflictError, GrantValidationError,
)
#
#######################################################################################################################
#
# Functions:

router = APIRouter()


def _share_url(share_token: str) -> str:
    return f"{settings['FRONTEND_URL']}/share/{share_token}"


def handle_grant_errors(e: Exception, action: str):
    if isinstance(e, HTTPException):
        raise e
    if isinstance(e, GrantValidationError):
        logger.warning(f"Share {action} rejected: {e}")
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e.args[0]) if e.args else str(e))
    if isinstance(e, GrantNotFoundError):
        logger.warning(f"Share {action}: {e}")
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    if isinstance(e, GrantConflictError):
        logger.warning(f"Share {action} conflict: {e}")
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    if isinstance(e, SyncDBError):
        logger.error(f"Database error during share {action}: {e}", exc_info=True)
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                            detail=f"A database error occurred during share {action}.")
    logger.error(f"Unexpected error during share {action}: {e}", exc_info=True)
    raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                        detail=f"An unexpected error occurred during share {action}.")


@router.post("/library",
             response_model=CreateShareResponse,
             status_code=status.HTTP_201_CREATED,
             summary="Invite a user (by e-mail) to your library")
async def create_share(
    share_in: CreateShareRequest,
    current_user: User = Depends(get_request_user),
    registry: AccessGrantRegistry = Depends(get_grant_registry),
):
    try:
        grant = await asyncio.to_thread(registry.create_grant, current_user.id, current_user.email,
                                        share_in.recipient_email, share_in.permission)
    except Exception as e:
        handle_grant_errors(e, "create")
    logger.info(f"[{current_user.username}] Shared library with {grant['recipient_email']} ({grant['permission']}).")
    return {**grant, "share_url": _share_url(grant["share_token"])}


# The two fixed paths below must be registered before /library/{share_token}
@router.get("/library/my-shares",
            response_model=MySharesResponse,
            summary="Shares you have created")
async def list_my_shares(
    current_user: User = Depends(get_request_user),
    registry: AccessGrantRegistry = Depends(get_grant_registry),
):
    try:
        grants = await asyncio.to_thread(registry.list_owner_grants, current_user.id)
    except Exception as e:
        handle_grant_errors(e, "listing")
    return {"shares": [{**g, "share_url": _share_url(g["share_token"])} for g in grants]}


@router.get("/library/shared-with-me",
            response_model=SharedWithMeResponse,
            summary="Libraries shared with you")
async def list_shared_with_me(
    current_user: User = Depends(get_request_user),
    registry: AccessGrantRegistry = Depends(get_grant_registry),
):
    try:
        grants = await asyncio.to_thread(registry.list_recipient_grants, current_user.id)
    except Exception as e:
        handle_grant_errors(e, "listing")
    return {"libraries": [
        {
            "access_id": g["id"],
            "owner_id": g["owner_id"],
            "owner_identity": g["owner_email"],
            "permission": g["permission"],
            "models_count": g["models_count"],
            "accepted_at": g["accepted_at"],
        }
        for g in grants
    ]}


@router.get("/library/{share_token}",
            response_model=InvitationInfoResponse,
            summary="Preview an invitation (no authentication)")
async def get_invitation(
    share_token: str,
    registry: AccessGrantRegistry = Depends(get_grant_registry),
):
    try:
        return await asyncio.to_thread(registry.get_invitation, share_token)
    except Exception as e:
        handle_grant_errors(e, "lookup")


@router.post("/library/{share_token}/accept",
             response_model=AcceptShareResponse,
             summary="Accept an invitation")
async def accept_share(
    share_token: str,
    current_user: User = Depends(get_request_user),
    registry: AccessGrantRegistry = Depends(get_grant_registry),
):
    try:
        acceptance = await asyncio.to_thread(registry.accept_grant, current_user.id, current_user.email, share_token)
    except Exception as e:
        handle_grant_errors(e, "accept")
    return acceptance


@router.delete("/library/access/{grant_id}",
               response_model=SuccessResponse,
               summary="Leave a library shared with you")
async def leave_share(
    grant_id: str,
    current_user: User = Depends(get_request_user),
    registry: AccessGrantRegistry = Depends(get_grant_registry),
):
    try:
        await asyncio.to_thread(registry.leave_grant, current_user.id, grant_id)
    except Exception as e:
        handle_grant_errors(e, "removal")
    return {"success": True, "message": "Access removed."}


@router.delete("/library/{share_id}",
               response_model=SuccessResponse,
               summary="Revoke a share you created")
async def revoke_share(
    share_id: str,
    current_user: User = Depends(get_request_user),
    registry: AccessGrantRegistry = Depends(get_grant_registry),
):
    try:
        await asyncio.to_thread(registry.revoke_grant, current_user.id, share_id)
    except Exception as e:
        handle_grant_errors(e, "revoke")
    return {"success": True, "message": "Share revoked."}

#
# End of share.py
#######################################################################################################################
