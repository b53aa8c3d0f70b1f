# Utils.py
#########################################
# General Utilities Library
# This library is used to hold small utilities used by the store and the sync engine.
#
####
####################
# Function Categories
#
#     Timestamp-Functions
#     UUID/Token-Functions
#     Sanitization/Verification Functions
#
####################
# Function List
#
# 1. utc_now() -> datetime
# 2. format_timestamp(dt) -> str
# 3. parse_timestamp(ts_str) -> Optional[datetime]
# 4. generate_uuid() -> str
# 5. generate_share_token() -> str
# 6. normalize_email(email) -> str
# 7. is_valid_email(email) -> bool
#
####################
#
# Import necessary libraries
import re
import secrets
import uuid
from datetime import datetime, timezone
from typing import Optional
#
# 3rd-party Libraries
from loguru import logger
#
#######################################################################################################################
#
# Function Definitions

logging = logger

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+$")


#######################################################################################################################
#
# Timestamp-Functions

def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def format_timestamp(dt: datetime) -> str:
    """
    Formats a datetime as an ISO-8601 UTC string with millisecond precision and a 'Z' suffix,
    e.g. '2024-05-01T10:30:00.123Z'. Naive datetimes are assumed to be UTC.

    All timestamps stored by the sync database use this single format, so string comparison
    in SQL matches chronological order.
    """
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    else:
        dt = dt.astimezone(timezone.utc)
    return dt.isoformat(timespec='milliseconds').replace('+00:00', 'Z')


def parse_timestamp(ts_str: Optional[str]) -> Optional[datetime]:
    if not ts_str:
        return None
    try:
        dt = datetime.fromisoformat(ts_str.replace('Z', '+00:00'))
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=timezone.utc)
        return dt
    except ValueError:
        try:
            # Fallback for sqlite's CURRENT_TIMESTAMP format
            return datetime.strptime(ts_str, '%Y-%m-%d %H:%M:%S').replace(tzinfo=timezone.utc)
        except ValueError:
            logging.warning(f"Could not parse timestamp string: {ts_str}")
            return None


#######################################################################################################################
#
# UUID/Token-Functions

def generate_uuid() -> str:
    return str(uuid.uuid4())


def generate_share_token() -> str:
    # 16 random bytes, hex encoded
    return secrets.token_hex(16)


#######################################################################################################################
#
# Sanitization/Verification Functions

def normalize_email(email: Optional[str]) -> str:
    return (email or "").strip().lower()


def is_valid_email(email: Optional[str]) -> bool:
    return bool(email) and bool(_EMAIL_RE.match(email.strip()))

#
# End of Utils.py
#######################################################################################################################
