"""
Core dependencies: authentication, per-request user context and service wiring
"""

from fastapi import Depends, Request, Response, Security
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from supabase import AsyncClient
from typing import Optional
import logging

from family_chat.config import settings
from family_chat.core.exceptions import AuthRequired, ChatError
from family_chat.core.notifications import Notifier
from family_chat.database.supabase_client import SupabaseClient, get_supabase
from family_chat.modules.auth.schemas import CurrentUser
from family_chat.modules.auth.service import AuthService
from family_chat.modules.chats.repository import ChatRepository
from family_chat.modules.chats.service import ChatDirectory
from family_chat.modules.families.repository import FamilyRepository
from family_chat.modules.families.service import FamilyService
from family_chat.modules.messages.repository import MessageRepository
from family_chat.modules.messages.store import MessageStore
from family_chat.modules.profiles.repository import ProfileRepository
from family_chat.modules.profiles.service import ProfileCache, ProfileService

logger = logging.getLogger(__name__)

security = HTTPBearer(auto_error=False)


async def get_service_supabase() -> AsyncClient:
    return await SupabaseClient.get_service_client()


def get_auth_service(supabase: AsyncClient = Depends(get_supabase)) -> AuthService:
    return AuthService(supabase)


def get_chat_repository(supabase: AsyncClient = Depends(get_supabase)) -> ChatRepository:
    return ChatRepository(supabase)


def get_message_repository(supabase: AsyncClient = Depends(get_supabase)) -> MessageRepository:
    return MessageRepository(supabase)


def get_profile_repository(supabase: AsyncClient = Depends(get_supabase)) -> ProfileRepository:
    return ProfileRepository(supabase)


def get_family_repository(supabase: AsyncClient = Depends(get_service_supabase)) -> FamilyRepository:
    return FamilyRepository(supabase)


def get_notifier(request: Request) -> Notifier:
    """Request-scoped notifier; non-fatal warnings raised while serving the request collect here."""
    if not hasattr(request.state, "notifier"):
        request.state.notifier = Notifier()
    return request.state.notifier


def expose_notifications(response: Response, notifier: Notifier) -> None:
    """Return notifications raised while serving the request as HTTP Warning headers (code 199)."""
    for notification in notifier.history:
        text = f"{notification.title}: {notification.description}".replace('"', "'")
        response.headers.append("Warning", f'199 {settings.app_name} "{text}"')


async def resolve_user(token: Optional[str], auth_service: AuthService, profiles: ProfileRepository) -> CurrentUser:
    """Token -> user, with family_id read from the user's profile."""
    user = await auth_service.get_current_user(token)
    try:
        found = await profiles.get_profiles([user.id])
    except ChatError as e:
        logger.warning(f"Could not read profile of {user.id}: {e.detail}")
        return user
    if found:
        return user.model_copy(update={"family_id": found[0].family_id})
    return user


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Security(security),
    auth_service: AuthService = Depends(get_auth_service),
    profiles: ProfileRepository = Depends(get_profile_repository)
) -> CurrentUser:
    """Extract current user info from JWT token"""
    if credentials is None or not credentials.credentials:
        raise AuthRequired()
    return await resolve_user(credentials.credentials, auth_service, profiles)


def get_profile_cache(profiles: ProfileRepository = Depends(get_profile_repository)) -> ProfileCache:
    return ProfileCache(profiles)


def get_profile_service(profiles: ProfileRepository = Depends(get_profile_repository)) -> ProfileService:
    return ProfileService(profiles)


def get_chat_directory(
    chats: ChatRepository = Depends(get_chat_repository),
    profiles: ProfileCache = Depends(get_profile_cache),
    notifier: Notifier = Depends(get_notifier)
) -> ChatDirectory:
    return ChatDirectory(chats, profiles, notifier)


def get_message_store(messages: MessageRepository = Depends(get_message_repository)) -> MessageStore:
    return MessageStore(messages)


def get_family_service(families: FamilyRepository = Depends(get_family_repository)) -> FamilyService:
    return FamilyService(families)
