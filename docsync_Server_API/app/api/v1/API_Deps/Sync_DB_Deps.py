# docsync_Server_API/app/api/v1/API_Deps/Sync_DB_Deps.py
import threading
from pathlib import Path
from typing import Optional

from fastapi import Depends, HTTPException, status
from loguru import logger
#
# Local Imports
from docsync_Server_API.app.core.config import settings
from docsync_Server_API.app.core.DB_Management.Sync_DB import SyncDatabase, SyncDBError
from docsync_Server_API.app.core.Sync import AccessGrantRegistry, PullService, PushService, VersionMatchResolver
#
#######################################################################################################################

# --- Global Store Instance ---
# One shared database for every user; shared libraries are resolved with joins inside it.
_sync_db_instance: Optional[SyncDatabase] = None
_sync_db_lock = threading.Lock()


def _get_sync_db_path() -> Path:
    return Path(settings.get("SYNC_DB_PATH") or "./docsync_data/databases/docsync.sqlite")


def get_sync_db() -> SyncDatabase:
    """
    FastAPI dependency returning the process-wide SyncDatabase, creating it on first use.
    Tests replace it through `app.dependency_overrides[get_sync_db]`.
    """
    global _sync_db_instance
    if _sync_db_instance is not None:
        return _sync_db_instance

    with _sync_db_lock:
        if _sync_db_instance is None:
            db_path = _get_sync_db_path()
            try:
                _sync_db_instance = SyncDatabase(db_path)
                logger.info(f"Sync database ready at {db_path}")
            except SyncDBError as e:
                logger.error(f"Failed to initialize sync database at {db_path}: {e}", exc_info=True)
                raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                                    detail="Storage is unavailable. Please try again later.") from e
    return _sync_db_instance


def close_sync_db():
    """Closes every connection of the shared instance. Called on application shutdown."""
    global _sync_db_instance
    with _sync_db_lock:
        if _sync_db_instance is not None:
            _sync_db_instance.close_all_connections()
            _sync_db_instance = None
            logger.info("Sync database instance closed.")


# --- Engine Services ---
def get_grant_registry(db: SyncDatabase = Depends(get_sync_db)) -> AccessGrantRegistry:
    return AccessGrantRegistry(db)


def get_pull_service(db: SyncDatabase = Depends(get_sync_db)) -> PullService:
    return PullService(db, max_page_size=settings.get("SYNC_MAX_PAGE_SIZE", 500))


def get_push_service(db: SyncDatabase = Depends(get_sync_db)) -> PushService:
    return PushService(db, resolver=VersionMatchResolver(),
                       embedding_dimensions=settings.get("EMBEDDING_DIMENSIONS"))

#
# End of Sync_DB_Deps.py
#######################################################################################################################
