# share_schemas.py
# Description: Request/response models for the library sharing (access grant) API.
#
# Imports
from typing import List, Optional
#
# 3rd-party Libraries
from pydantic import Field
#
# Local Imports
from docsync_Server_API.app.api.v1.schemas.sync_schemas import CamelModel
#
########################################################################################################################
#
# Functions:

class CreateShareRequest(CamelModel):
    recipient_email: str = Field(..., description="E-mail address the invitation is addressed to.")
    # Plain str so an unknown permission is a 400 from the registry, not a 422
    permission: str = Field('view', description="'view' or 'edit'.")


class CreateShareResponse(CamelModel):
    success: bool = True
    share_id: str
    share_token: str
    share_url: str
    recipient_email: str
    permission: str


class ShareInfo(CamelModel):
    id: str
    recipient_email: str
    recipient_id: Optional[int] = None
    permission: str
    share_token: str
    share_url: str
    created_at: str
    accepted_at: Optional[str] = None


class MySharesResponse(CamelModel):
    shares: List[ShareInfo]


class SharedLibraryInfo(CamelModel):
    access_id: str = Field(..., description="Grant ID; pass it to DELETE /library/access/{grantId} to leave.")
    owner_id: int
    owner_identity: Optional[str] = None
    permission: str
    models_count: int
    accepted_at: Optional[str] = None


class SharedWithMeResponse(CamelModel):
    libraries: List[SharedLibraryInfo]


class InvitationInfoResponse(CamelModel):
    owner_id: int
    owner_identity: Optional[str] = None
    permission: str
    models_count: int
    created_at: str


class AcceptShareResponse(CamelModel):
    success: bool = True
    owner_id: int
    owner_identity: Optional[str] = None
    permission: str
    accepted_at: Optional[str] = None
    already_accepted: bool


class SuccessResponse(CamelModel):
    success: bool = True
    message: Optional[str] = None

#
# End of share_schemas.py
########################################################################################################################
