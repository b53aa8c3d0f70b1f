# docsync_Server_API/app/core/Sync/grants.py
# Description: Access grant registry. An owner exposes their whole record set to a recipient with
#              'view' or 'edit' permission; the grant becomes visible to Pull/Push once accepted.
#
from typing import Optional, Dict, Any, List, Set

from loguru import logger

from docsync_Server_API.app.core.DB_Management.Sync_DB import SyncDatabase, ConflictError
from docsync_Server_API.app.core.Utils.Utils import generate_share_token, normalize_email, is_valid_email
from .exceptions import GrantNotFoundError, GrantConflictError, GrantValidationError
from .models import ActiveGrant

GRANT_PERMISSIONS = ('view', 'edit')


class AccessGrantRegistry:
    """Create/accept/revoke operations over the store's access_grants table."""

    def __init__(self, db: SyncDatabase):
        self.db = db

    # --- Owner side ---
    def create_grant(self, owner_id: int, owner_email: Optional[str], recipient_email: str,
                     permission: str = 'view') -> Dict[str, Any]:
        """
        Issues a pending grant addressed to `recipient_email` and returns it with its share token.

        Raises:
            GrantValidationError: unknown permission, malformed e-mail, or a self-share.
            GrantConflictError: an active grant already exists for this owner and recipient.
        """
        if permission not in GRANT_PERMISSIONS:
            raise GrantValidationError(f"Invalid permission '{permission}'. Use 'view' or 'edit'.", field="permission")
        if not is_valid_email(recipient_email):
            raise GrantValidationError("A valid recipient e-mail is required.", field="recipientEmail")

        recipient_email = normalize_email(recipient_email)
        if owner_email and recipient_email == normalize_email(owner_email):
            raise GrantValidationError("You cannot share your library with yourself.", field="recipientEmail")

        recipient = self.db.get_user_by_email(recipient_email)
        if recipient and recipient['id'] == owner_id:
            raise GrantValidationError("You cannot share your library with yourself.", field="recipientEmail")

        existing = self.db.find_active_grant(owner_id, recipient_id=recipient['id'] if recipient else None,
                                             recipient_email=recipient_email)
        if existing:
            raise GrantConflictError(f"An active share for {recipient_email} already exists (ID: {existing['id']}).")

        share_token = generate_share_token()
        try:
            grant_id = self.db.add_grant(owner_id, recipient_email, permission, share_token)
        except ConflictError as e:
            # Lost a race against a concurrent create for the same pair
            raise GrantConflictError(f"An active share for {recipient_email} already exists.") from e

        logger.info(f"Grant {grant_id} created: owner {owner_id} -> {recipient_email} ({permission}).")
        return {
            "share_id": grant_id,
            "share_token": share_token,
            "recipient_email": recipient_email,
            "permission": permission,
        }

    def revoke_grant(self, owner_id: int, grant_id: str) -> None:
        grant = self.db.get_grant_by_id(grant_id)
        if not grant or grant['owner_id'] != owner_id or grant['revoked_at']:
            raise GrantNotFoundError(f"Share {grant_id} not found.")
        self.db.revoke_grant(grant_id)
        logger.info(f"Grant {grant_id} revoked by owner {owner_id}.")

    def list_owner_grants(self, owner_id: int) -> List[Dict[str, Any]]:
        return self.db.list_grants_for_owner(owner_id)

    # --- Recipient side ---
    def get_invitation(self, share_token: str) -> Dict[str, Any]:
        """Public preview of a pending or accepted, non-revoked invitation."""
        grant = self.db.get_active_grant_by_token(share_token)
        if not grant:
            raise GrantNotFoundError("Invalid or expired share link.")
        return {
            "owner_id": grant['owner_id'],
            "owner_identity": grant['owner_email'],
            "permission": grant['permission'],
            "models_count": self.db.count_active_records(grant['owner_id']),
            "created_at": grant['created_at'],
        }

    def accept_grant(self, recipient_id: int, recipient_email: Optional[str], share_token: str) -> Dict[str, Any]:
        """
        Activates the invitation for `recipient_id`. Idempotent: a recipient already holding an accepted grant
        from the same owner gets `already_accepted=True` and nothing changes.
        """
        grant = self.db.get_active_grant_by_token(share_token)
        if not grant:
            raise GrantNotFoundError("Invalid or expired share link.")
        if grant['owner_id'] == recipient_id:
            raise GrantValidationError("You cannot accept your own share.")

        held = self.db.find_active_grant(grant['owner_id'], recipient_id=recipient_id)
        if held and held['accepted_at']:
            logger.info(f"User {recipient_id} already has access to owner {grant['owner_id']}'s library.")
            return self._acceptance(held, already_accepted=True)

        if normalize_email(recipient_email) != grant['recipient_email']:
            raise GrantValidationError("This invitation was sent to a different e-mail address.")
        if grant['accepted_at']:
            raise GrantConflictError("This invitation has already been accepted.")

        try:
            grant['accepted_at'] = self.db.accept_grant(grant['id'], recipient_id)
        except ConflictError as e:
            raise GrantConflictError(f"Could not accept share: {e}") from e
        grant['recipient_id'] = recipient_id
        logger.info(f"User {recipient_id} accepted grant {grant['id']} from owner {grant['owner_id']} ({grant['permission']}).")
        return self._acceptance(grant, already_accepted=False)

    def leave_grant(self, recipient_id: int, grant_id: str) -> None:
        """The recipient drops their access to a shared library."""
        grant = self.db.get_grant_by_id(grant_id)
        if not grant or grant['recipient_id'] != recipient_id or grant['revoked_at']:
            raise GrantNotFoundError(f"Access {grant_id} not found.")
        self.db.revoke_grant(grant_id)
        logger.info(f"User {recipient_id} left shared library of owner {grant['owner_id']} (grant {grant_id}).")

    def list_recipient_grants(self, recipient_id: int) -> List[Dict[str, Any]]:
        return self.db.list_active_grants_for_recipient(recipient_id)

    # --- Queries used by Pull and Push ---
    def active_grants(self, recipient_id: int) -> List[ActiveGrant]:
        return [ActiveGrant.from_row(row) for row in self.db.list_active_grants_for_recipient(recipient_id)]

    def editable_owner_ids(self, recipient_id: int) -> Set[int]:
        rows = self.db.list_active_grants_for_recipient(recipient_id, permission='edit')
        return {row['owner_id'] for row in rows}

    @staticmethod
    def _acceptance(grant: Dict[str, Any], already_accepted: bool) -> Dict[str, Any]:
        return {
            "grant_id": grant['id'],
            "owner_id": grant['owner_id'],
            "owner_identity": grant.get('owner_email'),
            "permission": grant['permission'],
            "accepted_at": grant.get('accepted_at'),
            "already_accepted": already_accepted,
        }
