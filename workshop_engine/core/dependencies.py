"""
Staff authentication at the interface boundary.

Identity is owned by Supabase Auth; this module only turns a bearer token into
the staff user dict that staff-facing routes depend on.
"""

import hashlib
import time
from fastapi import Depends, HTTPException, Security, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from supabase import Client
from typing import Any, Dict
import logging

from workshop_engine.database.supabase_client import get_supabase

logger = logging.getLogger(__name__)

security = HTTPBearer()

# Short TTL cache so a burst of staff requests with one token hits Supabase Auth once
_AUTH_USER_CACHE: Dict[str, tuple] = {}
_AUTH_CACHE_TTL_SEC = 60
_AUTH_CACHE_MAX_SIZE = 500


def get_current_user_id(
    credentials: HTTPAuthorizationCredentials = Security(security),
    supabase: Client = Depends(get_supabase)
) -> Dict[str, Any]:
    """Extract current staff user info from the JWT"""
    token = credentials.credentials
    cache_key = hashlib.sha256(token.encode()).hexdigest()
    now = time.monotonic()
    cached = _AUTH_USER_CACHE.get(cache_key)
    if cached:
        user_data, expiry = cached
        if now < expiry:
            return user_data
        _AUTH_USER_CACHE.pop(cache_key, None)
    try:
        user_response = supabase.auth.get_user(jwt=token)
    except Exception as e:
        logger.info(f"Token rejected by Supabase Auth: {e}")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid or expired token")
    if not user_response or not user_response.user:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid or expired token")
    user = user_response.user
    user_data = {
        "id": user.id,
        "email": user.email,
        "user_metadata": user.user_metadata or {},
    }
    if len(_AUTH_USER_CACHE) < _AUTH_CACHE_MAX_SIZE:
        _AUTH_USER_CACHE[cache_key] = (user_data, now + _AUTH_CACHE_TTL_SEC)
    return user_data


def staff_display_name(user_data: Dict[str, Any]) -> str:
    """Author label for timeline entries."""
    metadata = user_data.get("user_metadata") or {}
    return metadata.get("full_name") or user_data.get("email") or "Staff"
