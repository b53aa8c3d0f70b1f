# model_schemas.py
# Description: Request/response models for plain record (model) CRUD.
#
# Imports
from typing import List, Optional
#
# 3rd-party Libraries
from pydantic import Field
#
# Local Imports
from docsync_Server_API.app.api.v1.schemas.sync_schemas import CamelModel, SyncRecord
#
########################################################################################################################
#
# Functions:

class ModelCreate(CamelModel):
    id: Optional[str] = Field(None, min_length=1, description="Optional client-chosen ID; a UUID is generated otherwise.")
    title: str = Field(..., min_length=1)
    content: str = Field(..., min_length=1)
    category: Optional[str] = None
    keywords: Optional[str] = None
    is_favorite: bool = False
    embedding: Optional[List[float]] = None
    created_at: Optional[str] = None


class ModelUpdate(CamelModel):
    """Partial update; only the fields present in the body are written."""
    title: Optional[str] = Field(None, min_length=1)
    content: Optional[str] = Field(None, min_length=1)
    category: Optional[str] = None
    keywords: Optional[str] = None
    is_favorite: Optional[bool] = None
    embedding: Optional[List[float]] = None


class ModelListResponse(CamelModel):
    models: List[SyncRecord]
    count: int


class ModelDeleteResponse(CamelModel):
    success: bool = True
    id: str
    version: int

#
# End of model_schemas.py
########################################################################################################################
