# docsync_Server_API/app/core/Sync/exceptions.py

class SyncError(Exception):
    """Base exception for the sync engine."""
    pass

class MalformedOperationError(SyncError):
    """A pushed operation or record payload cannot be interpreted. Raised before anything is written."""
    def __init__(self, message, record_id=None, *args):
        super().__init__(message, *args)
        self.record_id = record_id

    def __str__(self):
        base = super().__str__()
        return f"{base} (RecordID: {self.record_id})" if self.record_id else base

class GrantError(SyncError):
    """Base exception for access grant registry failures."""
    pass

class GrantNotFoundError(GrantError):
    """The grant (or invitation token) does not exist, is revoked, or does not belong to the caller."""
    pass

class GrantConflictError(GrantError):
    """An active grant already exists for the owner/recipient pair."""
    pass

class GrantValidationError(GrantError):
    """Invalid grant request: bad permission, bad e-mail, self-share, or an invitation addressed to someone else."""
    def __init__(self, message, field=None, *args):
        super().__init__(message, *args)
        self.field = field

    def __str__(self):
        base = super().__str__()
        return f"{base} (Field: {self.field})" if self.field else base
