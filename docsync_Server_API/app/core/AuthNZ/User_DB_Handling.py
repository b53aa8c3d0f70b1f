# User_DB_Handling.py
# Description: Resolves the acting user for a request, based on application mode, and registers
#              that identity in the sync store.
#
# Imports
import asyncio
from typing import Optional
#
# 3rd-Party Libraries
from fastapi import Depends, HTTPException, status, Header
from loguru import logger
from pydantic import BaseModel
#
# Local Imports
from docsync_Server_API.app.core.Security.Security import decode_access_token, TokenData
from docsync_Server_API.app.core.config import settings
from docsync_Server_API.app.core.DB_Management.Sync_DB import SyncDatabase, SyncDBError, ConflictError
from docsync_Server_API.app.api.v1.API_Deps.v1_endpoint_deps import oauth2_scheme
from docsync_Server_API.app.api.v1.API_Deps.Sync_DB_Deps import get_sync_db

#######################################################################################################################

# --- User Model ---
# Standardized User object, used even for the fixed single user.
class User(BaseModel):
    id: int
    username: str
    email: Optional[str] = None
    is_active: bool = True


def _single_user() -> User:
    return User(
        id=settings["SINGLE_USER_FIXED_ID"],
        username="single_user",
        email=settings["SINGLE_USER_EMAIL"],
        is_active=True,
    )

#######################################################################################################################

# --- Store Registration ---

def _register_user(db: SyncDatabase, user_id: int, email: Optional[str]) -> Optional[dict]:
    """Ensures the user row exists (and carries the e-mail, when known). Returns the stored row."""
    existing = db.get_user_by_id(user_id)
    if existing is None or (email and (existing.get('email') or '').lower() != email.lower()):
        db.upsert_user(user_id, email)
        existing = db.get_user_by_id(user_id)
    return existing


async def _ensure_registered(db: SyncDatabase, user_id: int, email: Optional[str]) -> Optional[dict]:
    try:
        return await asyncio.to_thread(_register_user, db, user_id, email)
    except ConflictError as e:
        logger.warning(f"Could not register e-mail for user {user_id}: {e}")
        raise HTTPException(status_code=status.HTTP_409_CONFLICT,
                            detail="This e-mail address is registered to another user.")
    except SyncDBError as e:
        logger.error(f"Storage error registering user {user_id}: {e}", exc_info=True)
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                            detail="Error retrieving user information.")

#######################################################################################################################

# --- Mode-Specific Verification ---

async def verify_jwt_and_fetch_user(token: str, db: SyncDatabase) -> User:
    """Verifies the bearer token and resolves the user from the store (multi-user mode)."""
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    token_data: Optional[TokenData] = decode_access_token(token)
    if token_data is None or token_data.user_id is None:
        logger.warning("Token decoding failed or user_id missing in token payload.")
        raise credentials_exception

    user_id = token_data.user_id
    if token_data.email:
        # The issuer vouches for the e-mail; register or refresh the identity
        user_data = await _ensure_registered(db, user_id, token_data.email)
    else:
        try:
            user_data = await asyncio.to_thread(db.get_user_by_id, user_id)
        except SyncDBError as e:
            logger.error(f"Error fetching user {user_id}: {e}", exc_info=True)
            raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                                detail="Error retrieving user information.")

    if user_data is None:
        logger.warning(f"User with ID {user_id} from token is not registered.")
        raise credentials_exception

    email = user_data.get('email')
    user = User(id=user_id, username=email or f"user_{user_id}", email=email)
    logger.info(f"Authenticated user: {user.username} (ID: {user.id})")
    return user


# --- Combined Primary Authentication Dependency ---

async def get_request_user(
    api_key: Optional[str] = Header(None, alias="X-API-KEY"),
    token: Optional[str] = Depends(oauth2_scheme),
    db: SyncDatabase = Depends(get_sync_db),
    ) -> User:
    """
    Determines the acting user based on the application mode (single/multi).

    - In Single-User Mode: Verifies X-API-KEY against settings["SINGLE_USER_API_KEY"] and returns the fixed user.
    - In Multi-User Mode: Verifies the Bearer token and returns the user it names.

    Either way the user is registered in the sync store, so it can own records and receive grants.
    """
    if settings["SINGLE_USER_MODE"]:
        logger.debug("get_request_user: In SINGLE_USER_MODE.")
        if api_key is None:
            logger.warning("Single-User Mode: X-API-KEY header is missing.")
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="X-API-KEY header required for single-user mode"
            )
        if api_key != settings["SINGLE_USER_API_KEY"]:
            logger.warning(f"Single-User Mode: Invalid X-API-KEY received: '{api_key[:5]}...'")
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Invalid X-API-KEY"
            )
        user = _single_user()
        await _ensure_registered(db, user.id, user.email)
        return user

    logger.debug("get_request_user: In MULTI_USER_MODE.")
    if token is None:
        logger.warning("Multi-User Mode: Authorization Bearer token is missing.")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated (Bearer token required for multi-user mode)",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return await verify_jwt_and_fetch_user(token, db)

#
# End of User_DB_Handling.py
#######################################################################################################################
