"""Directory, public profile and per-user statistics routes."""
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query

from ..errors import AuthorizationError, ValidationError
from ..identity import get_current_user
from ..schemas.common import ApiResponse, Pagination, ok
from ..schemas.users import PictureUpdate, ProfileUpdate, User

_DEFAULT_PAGE_SIZE = 10
_MAX_PAGE_SIZE = 100
_MAX_ACTIVITY_SIZE = 50

router = APIRouter(prefix="/api/users", tags=["users"])


def _ensure_self_or_admin(user_id: str, current_user: User) -> None:
    if user_id != current_user.id and not current_user.is_admin:
        raise AuthorizationError("You can only update your own profile")


@router.get("", response_model=ApiResponse)
def list_users(
    *,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=_DEFAULT_PAGE_SIZE, ge=1, le=_MAX_PAGE_SIZE),
    search: Optional[str] = Query(default=None, min_length=2),
    city: Optional[str] = Query(default=None),
    state: Optional[str] = Query(default=None),
    country: Optional[str] = Query(default=None),
    current_user: User = Depends(get_current_user),
) -> ApiResponse:
    from ..services import users as users_service

    users, total = users_service.list_users(
        page=page, limit=limit, search=search, city=city, state=state, country=country
    )
    return ok(users, pagination=Pagination.build(page=page, limit=limit, total=total))


@router.get("/search/location", response_model=ApiResponse)
def search_by_location(
    *,
    city: Optional[str] = Query(default=None),
    state: Optional[str] = Query(default=None),
    country: Optional[str] = Query(default=None),
    current_user: User = Depends(get_current_user),
) -> ApiResponse:
    """Find active users near a city, state or country."""
    from ..services import users as users_service

    if not (city or state or country):
        raise ValidationError("At least one location parameter is required")
    return ok(users_service.search_by_location(city=city, state=state, country=country))


@router.get("/{user_id}/public", response_model=ApiResponse)
def get_public_profile(user_id: str) -> ApiResponse:
    from ..services import users as users_service

    return ok(users_service.get_public_profile(user_id))


@router.get("/{user_id}", response_model=ApiResponse)
def get_user(user_id: str, *, current_user: User = Depends(get_current_user)) -> ApiResponse:
    from ..services import users as users_service

    return ok(users_service.get_public_profile(user_id))


@router.put("/{user_id}", response_model=ApiResponse)
def update_user(
    user_id: str,
    payload: ProfileUpdate,
    *,
    current_user: User = Depends(get_current_user),
) -> ApiResponse:
    from ..services import users as users_service

    _ensure_self_or_admin(user_id, current_user)
    user = users_service.update_profile(user_id, payload)
    return ok(user, message="Profile updated successfully")


@router.put("/{user_id}/picture", response_model=ApiResponse)
def update_picture(
    user_id: str,
    payload: PictureUpdate,
    *,
    current_user: User = Depends(get_current_user),
) -> ApiResponse:
    from ..services import users as users_service

    _ensure_self_or_admin(user_id, current_user)
    user = users_service.update_picture(user_id, str(payload.picture))
    return ok(user, message="Profile picture updated successfully")


@router.get("/{user_id}/activity", response_model=ApiResponse)
def get_activity(
    user_id: str,
    *,
    limit: int = Query(default=_DEFAULT_PAGE_SIZE, ge=1, le=_MAX_ACTIVITY_SIZE),
    current_user: User = Depends(get_current_user),
) -> ApiResponse:
    from ..services import users as users_service

    return ok(users_service.user_activity(user_id, limit=limit))


@router.get("/{user_id}/stats", response_model=ApiResponse)
def get_stats(user_id: str, *, current_user: User = Depends(get_current_user)) -> ApiResponse:
    from ..services import users as users_service

    return ok(users_service.user_stats(user_id))
