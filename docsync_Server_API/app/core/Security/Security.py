# /docsync_Server_API/app/core/Security/Security.py
#
# Description: Validation of JWT access tokens issued by the external auth service (multi-user mode).
#              Tokens are never issued here.
#
# Imports
from typing import Optional

# 3rd-Party Libraries
import jwt # Using PyJWT library (pip install pyjwt)
from pydantic import BaseModel

# Local Imports
from docsync_Server_API.app.core.Utils.Utils import logging
from docsync_Server_API.app.core.config import settings

#######################################################################################################################

# --- JWT Handling ---

# Pydantic model for data extracted from the token payload
class TokenData(BaseModel):
    user_id: Optional[int] = None
    email: Optional[str] = None


def decode_access_token(token: str, secret_key: Optional[str] = None, algorithm: Optional[str] = None) -> Optional[TokenData]:
    """
    Decodes and validates a JWT access token.

    Args:
        token (str): The JWT token string.
        secret_key (Optional[str]): Overrides settings["JWT_SECRET_KEY"].
        algorithm (Optional[str]): Overrides settings["JWT_ALGORITHM"].

    Returns:
        Optional[TokenData]: The user id from the 'sub' claim (and the 'email' claim when present) if the
                             token is valid, otherwise None.
    """
    secret_key = secret_key or settings["JWT_SECRET_KEY"]
    algorithm = algorithm or settings["JWT_ALGORITHM"]
    try:
        # PyJWT handles expiration ('exp') check automatically.
        payload = jwt.decode(token, secret_key, algorithms=[algorithm])

        user_id_str = payload.get("sub")
        if user_id_str is None:
            logging.warning("Token decoded successfully, but 'sub' (user_id) claim is missing.")
            return None

        try:
            token_data = TokenData(user_id=int(user_id_str), email=payload.get("email"))
        except (ValueError, TypeError):
            logging.warning(f"Token 'sub' claim '{user_id_str}' could not be converted to integer.")
            return None
        logging.debug(f"Token successfully decoded for user_id: {token_data.user_id}")
        return token_data

    except jwt.ExpiredSignatureError:
        logging.warning("Token validation failed: Signature has expired.")
        return None
    except jwt.InvalidSignatureError:
        logging.error("Token validation failed: Invalid signature.")
        return None
    except jwt.InvalidAlgorithmError:
        logging.error(f"Token validation failed: Invalid algorithm. Expected {algorithm}.")
        return None
    except jwt.InvalidTokenError as e:
        logging.warning(f"Token validation failed: Invalid token - {e}")
        return None

#
# End of Security.py
# #####################################################################################################################
