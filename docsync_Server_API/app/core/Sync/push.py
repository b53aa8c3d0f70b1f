# docsync_Server_API/app/core/Sync/push.py
from typing import Optional, Dict, Any, List, Set

from loguru import logger

from docsync_Server_API.app.core.DB_Management.Sync_DB import SyncDatabase, ConflictError
from .conflict import ConflictResolver, VersionMatchResolver
from .exceptions import MalformedOperationError
from .grants import AccessGrantRegistry
from .models import (
    SyncOperation, OperationConflict, PushResult, OPERATION_TYPES, CONFLICT_ALREADY_EXISTS,
    CONFLICT_VERSION_MISMATCH, CONFLICT_NO_PERMISSION, record_payload_to_store,
)


class PushService:
    """
    Applies a batch of client operations for one actor.

    The batch runs inside a single BEGIN IMMEDIATE transaction: every record write and its operation log
    entry commit together, and a storage failure rolls the whole batch back. Individual operations are
    still checked independently, so a committed batch may mix applied and conflicted operations.
    """

    def __init__(self, db: SyncDatabase, resolver: Optional[ConflictResolver] = None,
                 grants: Optional[AccessGrantRegistry] = None, embedding_dimensions: Optional[int] = None):
        self.db = db
        self.resolver = resolver or VersionMatchResolver()
        self.grants = grants or AccessGrantRegistry(db)
        self.embedding_dimensions = embedding_dimensions

    def push(self, actor_id: int, operations: List[SyncOperation]) -> PushResult:
        # Everything is validated and converted before the first write
        prepared = [(op, self._prepare(op)) for op in operations]

        with self.db.transaction(immediate=True):
            result = PushResult(server_time=self.db.current_timestamp())
            editable_owners = self.grants.editable_owner_ids(actor_id)
            for op, payload in prepared:
                if op.type == 'create':
                    self._apply_create(actor_id, op, payload, result)
                elif op.type == 'update':
                    self._apply_update(actor_id, op, payload, editable_owners, result)
                else:
                    self._apply_delete(actor_id, op, editable_owners, result)

        logger.info(
            f"[{actor_id}] Push: {len(operations)} ops -> created={len(result.created)}, updated={len(result.updated)}, "
            f"deleted={len(result.deleted)}, conflicts={len(result.conflicts)}")
        return result

    def _prepare(self, op: SyncOperation) -> Dict[str, Any]:
        if op.type not in OPERATION_TYPES:
            raise MalformedOperationError(f"Unknown operation type '{op.type}'", record_id=op.record_id)
        if not op.record_id:
            raise MalformedOperationError(f"'{op.type}' operation without a record id")
        return record_payload_to_store(op.record, self.embedding_dimensions)

    def _conflict(self, result: PushResult, op: SyncOperation, reason: str, server_version: Optional[int] = None):
        conflict = OperationConflict(id=op.record_id, reason=reason, client_version=op.expected_version,
                                     server_version=server_version)
        logger.warning(f"Push conflict on {conflict.id}: {reason} (client v{conflict.client_version}, server v{server_version})")
        result.conflicts.append(conflict)

    @staticmethod
    def _effective_owner(actor_id: int, record_owner_id: int, editable_owners: Set[int]) -> Optional[int]:
        if record_owner_id == actor_id:
            return actor_id
        if record_owner_id in editable_owners:
            return record_owner_id
        return None

    def _apply_create(self, actor_id: int, op: SyncOperation, payload: Dict[str, Any], result: PushResult):
        try:
            # New records always belong to the actor
            self.db.add_record(actor_id, payload, actor_id=actor_id)
        except ConflictError as e:
            if e.reason != CONFLICT_ALREADY_EXISTS:
                raise
            self._conflict(result, op, CONFLICT_ALREADY_EXISTS)
            return
        result.created.append(op.record_id)

    def _apply_update(self, actor_id: int, op: SyncOperation, payload: Dict[str, Any], editable_owners: Set[int],
                      result: PushResult):
        state = self.db.get_record_state(op.record_id)
        if state is None:
            self._conflict(result, op, CONFLICT_VERSION_MISMATCH)
            return
        owner_id = self._effective_owner(actor_id, state['owner_id'], editable_owners)
        if owner_id is None:
            self._conflict(result, op, CONFLICT_NO_PERMISSION)
            return
        if state['deleted_at']:
            self._conflict(result, op, CONFLICT_VERSION_MISMATCH, server_version=state['version'])
            return

        resolution = self.resolver.resolve(state['version'], op.expected_version, record_id=op.record_id)
        if not resolution.applied:
            self._conflict(result, op, CONFLICT_VERSION_MISMATCH, server_version=resolution.server_version)
            return
        try:
            self.db.update_record(op.record_id, owner_id, payload, op.expected_version, actor_id=actor_id)
        except ConflictError as e:
            self._conflict(result, op, CONFLICT_VERSION_MISMATCH, server_version=e.server_version)
            return
        if owner_id != actor_id:
            logger.info(f"[{actor_id}] Updated shared record {op.record_id} of owner {owner_id}.")
        result.updated.append(op.record_id)

    def _apply_delete(self, actor_id: int, op: SyncOperation, editable_owners: Set[int], result: PushResult):
        state = self.db.get_record_state(op.record_id)
        if state is None:
            # Nothing to delete; report it so the client drops its pending delete
            result.deleted.append(op.record_id)
            return
        owner_id = self._effective_owner(actor_id, state['owner_id'], editable_owners)
        if owner_id is None:
            self._conflict(result, op, CONFLICT_NO_PERMISSION)
            return
        if not state['deleted_at']:
            # No version check on delete: last delete wins
            self.db.soft_delete_record(op.record_id, owner_id, actor_id=actor_id)
        result.deleted.append(op.record_id)
