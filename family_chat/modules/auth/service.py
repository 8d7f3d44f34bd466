import hashlib
import logging
import time
from typing import Dict, Tuple

from supabase import AsyncClient

from family_chat.config import settings
from family_chat.core.exceptions import AuthRequired
from family_chat.modules.auth.schemas import CurrentUser

logger = logging.getLogger(__name__)

# In-memory cache for get_current_user to reduce Supabase auth calls (e.g. many parallel requests with same token)
_AUTH_USER_CACHE: Dict[str, Tuple[CurrentUser, float]] = {}


def clear_auth_cache() -> None:
    _AUTH_USER_CACHE.clear()


class AuthService:
    def __init__(self, supabase: AsyncClient):
        self.supabase = supabase

    async def get_current_user(self, token: str) -> CurrentUser:
        """Resolve a Supabase access token to its user. Uses short TTL cache to reduce auth API calls."""
        if not token:
            raise AuthRequired()
        cache_key = hashlib.sha256(token.encode()).hexdigest()
        now = time.monotonic()
        if cache_key in _AUTH_USER_CACHE:
            user, expiry = _AUTH_USER_CACHE[cache_key]
            if now < expiry:
                return user
            del _AUTH_USER_CACHE[cache_key]
        try:
            user_response = await self.supabase.auth.get_user(jwt=token)
        except Exception as e:
            error_msg = str(e)
            if "JWT" in error_msg or "expired" in error_msg.lower() or "invalid" in error_msg.lower():
                raise AuthRequired("Invalid or expired token")
            logger.error(f"Auth lookup failed: {error_msg}")
            raise AuthRequired("Authentication failed")
        if not user_response or not user_response.user:
            raise AuthRequired("Invalid or expired token")
        user = CurrentUser(id=user_response.user.id, email=user_response.user.email)
        if len(_AUTH_USER_CACHE) < settings.auth_cache_max_size:
            _AUTH_USER_CACHE[cache_key] = (user, now + settings.auth_cache_ttl_sec)
        return user
