"""Registration and profile routes for the authenticated account."""
from __future__ import annotations

from fastapi import APIRouter, Depends, status

from ..identity import Identity, get_current_identity, get_current_user
from ..schemas.common import ApiResponse, ok
from ..schemas.users import FcmTokenUpdate, ProfileUpdate, RegisterRequest, User

router = APIRouter(prefix="/api/auth", tags=["auth"])


@router.post("/register", response_model=ApiResponse, status_code=status.HTTP_201_CREATED)
def register(
    payload: RegisterRequest,
    *,
    identity: Identity = Depends(get_current_identity),
) -> ApiResponse:
    """Create the local account for a verified identity."""
    from ..services import users as users_service

    user = users_service.register_user(
        identity.subject,
        payload,
        email_verified=identity.email_verified,
    )
    return ok(user, message="User registered successfully")


@router.get("/profile", response_model=ApiResponse)
def get_profile(*, current_user: User = Depends(get_current_user)) -> ApiResponse:
    from ..services import users as users_service

    return ok(users_service.get_user(current_user.id))


@router.put("/profile", response_model=ApiResponse)
def update_profile(
    payload: ProfileUpdate,
    *,
    current_user: User = Depends(get_current_user),
) -> ApiResponse:
    from ..services import users as users_service

    user = users_service.update_profile(current_user.id, payload)
    return ok(user, message="Profile updated successfully")


@router.post("/fcm-token", response_model=ApiResponse)
def update_fcm_token(
    payload: FcmTokenUpdate,
    *,
    current_user: User = Depends(get_current_user),
) -> ApiResponse:
    from ..services import users as users_service

    users_service.set_fcm_token(current_user.id, payload.fcm_token)
    return ok(message="FCM token updated successfully")


@router.delete("/account", response_model=ApiResponse)
def delete_account(*, current_user: User = Depends(get_current_user)) -> ApiResponse:
    from ..services import users as users_service

    users_service.deactivate_account(current_user.id)
    return ok(message="Account deleted successfully")


@router.get("/stats", response_model=ApiResponse)
def get_account_stats(*, current_user: User = Depends(get_current_user)) -> ApiResponse:
    from ..services import users as users_service

    return ok(users_service.account_stats(current_user.id))
