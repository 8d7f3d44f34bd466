from fastapi import APIRouter, Depends

from family_chat.core.dependencies import get_current_user, get_profile_cache
from family_chat.modules.auth.schemas import CurrentUser, MeResponse
from family_chat.modules.profiles.service import ProfileCache

router = APIRouter(prefix="/auth", tags=["auth"])


@router.get("/me", response_model=MeResponse)
async def get_me(
    current_user: CurrentUser = Depends(get_current_user),
    profiles: ProfileCache = Depends(get_profile_cache)
):
    """Get current authenticated user and their display profile."""
    profile = await profiles.resolve(current_user.id)
    return MeResponse(
        id=current_user.id,
        email=current_user.email,
        family_id=current_user.family_id,
        name=profile.name if profile else None,
        avatar_url=profile.avatar_url if profile else None
    )
