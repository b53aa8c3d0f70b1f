# v1_endpoint_deps.py
# Description: This file is to serve as a sink for dependencies across the v1 endpoints.
# Imports
from typing import Optional
#
# 3rd-party Libraries
from fastapi import Header
from fastapi.security import OAuth2PasswordBearer
#
# Local Imports
#
#######################################################################################################################
#
# Static Variables
# Tokens are issued by the external auth service; tokenUrl only documents where.
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/v1/auth/login", auto_error=False)
#
# Functions:

async def get_expected_version(expected_version: Optional[int] = Header(None, alias="expected-version")) -> Optional[int]:
    """Optional optimistic-concurrency header for the record CRUD endpoints."""
    return expected_version

#
# End of v1_endpoint_deps.py
#######################################################################################################################
