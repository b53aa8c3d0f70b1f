# docsync_Server_API/app/core/Sync/pull.py
from typing import Optional, Dict, Any, List

from loguru import logger

from docsync_Server_API.app.core.DB_Management.Sync_DB import SyncDatabase, InputError
from docsync_Server_API.app.core.Utils.Utils import parse_timestamp, format_timestamp
from .grants import AccessGrantRegistry
from .models import PullResult, record_row_to_wire


class PullService:
    """
    Answers "what changed since my cursor" for one actor: their own records (paginated) plus the records of
    every library shared with them (unpaginated, first page only).

    The cursor is the `updated_at` watermark the client last synchronised through, normally the
    `serverTime` of its previous pull.
    """

    def __init__(self, db: SyncDatabase, grants: Optional[AccessGrantRegistry] = None, max_page_size: int = 500):
        self.db = db
        self.grants = grants or AccessGrantRegistry(db)
        self.max_page_size = max_page_size

    @staticmethod
    def normalize_cursor(cursor: Optional[str]) -> Optional[str]:
        """Re-formats a client cursor into the store's timestamp format so SQL string comparison is chronological."""
        if cursor is None or cursor == "":
            return None
        parsed = parse_timestamp(cursor)
        if parsed is None:
            raise InputError(f"Invalid cursor timestamp: {cursor!r}")
        return format_timestamp(parsed)

    def pull(self, actor_id: int, cursor: Optional[str] = None, limit: int = 50, offset: int = 0) -> PullResult:
        cursor = self.normalize_cursor(cursor)
        if limit < 1 or offset < 0:
            raise InputError("limit must be positive and offset non-negative.")
        limit = min(limit, self.max_page_size)

        # Issued under the write lock before querying: writes committed earlier stamp below it, later ones above
        server_time = self.db.sync_watermark()

        active_grants = []
        shared_records: List[Dict[str, Any]] = []
        # One read snapshot, so the counts agree with the rows returned
        with self.db.transaction():
            own_total = self.db.count_owned_records(actor_id, since=cursor)
            own_rows = self.db.fetch_owned_records(actor_id, since=cursor, limit=limit, offset=offset)
            if offset == 0:
                active_grants = self.grants.active_grants(actor_id)
                shared_records = self._shared_records(active_grants, cursor)
        records: List[Dict[str, Any]] = [record_row_to_wire(row) for row in own_rows]

        has_more = offset + len(own_rows) < own_total
        logger.info(
            f"[{actor_id}] Pull: {len(own_rows)}/{own_total} own + {len(shared_records)} shared from "
            f"{len(active_grants)} libraries (cursor={cursor}, offset={offset}, hasMore={has_more})")

        return PullResult(
            records=records + shared_records,
            server_time=server_time,
            total=own_total + len(shared_records),
            has_more=has_more,
            active_grants=active_grants,
        )

    def _shared_records(self, active_grants, cursor: Optional[str]) -> List[Dict[str, Any]]:
        if not active_grants:
            return []
        permissions = {g.owner_id: g.permission for g in active_grants}

        # Owners whose grant is new to this client get their full live set, whatever its age
        new_owner_ids = [g.owner_id for g in active_grants
                         if cursor is None or not g.accepted_at or g.accepted_at > cursor]
        known_owner_ids = [owner_id for owner_id in permissions if owner_id not in new_owner_ids]

        rows = self.db.fetch_records_for_owners(new_owner_ids)
        rows += self.db.fetch_records_for_owners(known_owner_ids, since=cursor)
        if new_owner_ids:
            logger.debug(f"Pull: full history for newly accepted libraries of owners {new_owner_ids}.")
        return [record_row_to_wire(row, shared_permission=permissions[row['owner_id']]) for row in rows]
