from fastapi import APIRouter, Depends
from typing import List, Optional

from family_chat.core.dependencies import get_current_user, get_family_service, get_profile_service
from family_chat.core.exceptions import PermissionDeniedError
from family_chat.modules.auth.schemas import CurrentUser
from family_chat.modules.families.schemas import Family, FamilyCreate, FamilyJoin
from family_chat.modules.families.service import FamilyService
from family_chat.modules.profiles.schemas import Profile
from family_chat.modules.profiles.service import ProfileService

router = APIRouter(prefix="/families", tags=["families"])


@router.post("", response_model=Family, status_code=201)
async def create_family(
    family_data: FamilyCreate,
    current_user: CurrentUser = Depends(get_current_user),
    service: FamilyService = Depends(get_family_service)
):
    """Create a family and its group chat; the creator becomes its first member"""
    return await service.create_family(current_user.id, family_data.name)


@router.post("/join", response_model=Family)
async def join_family(
    join_data: FamilyJoin,
    current_user: CurrentUser = Depends(get_current_user),
    service: FamilyService = Depends(get_family_service)
):
    """Join a family by invite code"""
    return await service.join_family(current_user.id, join_data.invite_code)


@router.get("/{family_id}/members", response_model=List[Profile])
async def list_members(
    family_id: str,
    search: Optional[str] = None,
    current_user: CurrentUser = Depends(get_current_user),
    service: ProfileService = Depends(get_profile_service)
):
    """Other members of the caller's family, for starting a conversation"""
    if current_user.family_id != family_id:
        raise PermissionDeniedError("You must be a member of this family")
    return await service.list_family_members(family_id, exclude_user_id=current_user.id, search=search)
