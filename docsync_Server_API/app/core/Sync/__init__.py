# docsync_Server_API/app/core/Sync/__init__.py
from .models import SyncOperation, OperationConflict, PushResult, PullResult, ActiveGrant
from .exceptions import (
    SyncError, MalformedOperationError, GrantError, GrantNotFoundError, GrantConflictError, GrantValidationError,
)
from .conflict import ConflictResolver, VersionMatchResolver, Resolution
from .grants import AccessGrantRegistry
from .pull import PullService
from .push import PushService

__all__ = [
    "SyncOperation",
    "OperationConflict",
    "PushResult",
    "PullResult",
    "ActiveGrant",
    "SyncError",
    "MalformedOperationError",
    "GrantError",
    "GrantNotFoundError",
    "GrantConflictError",
    "GrantValidationError",
    "ConflictResolver",
    "VersionMatchResolver",
    "Resolution",
    "AccessGrantRegistry",
    "PullService",
    "PushService",
]
