"""Social feed routes: posts, likes and comments."""
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query, status

from ..identity import get_current_user, get_optional_current_user
from ..schemas.common import ApiResponse, Pagination, ok
from ..schemas.posts import CommentCreate, LikeToggle, PostCreate, PostUpdate
from ..schemas.users import User

_DEFAULT_PAGE_SIZE = 10
_MAX_PAGE_SIZE = 50

router = APIRouter(prefix="/api/posts", tags=["posts"])


def _viewer_id(current_user: Optional[User]) -> Optional[str]:
    return current_user.id if current_user else None


@router.get("", response_model=ApiResponse)
def list_posts(
    *,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=_DEFAULT_PAGE_SIZE, ge=1, le=_MAX_PAGE_SIZE),
    user_id: Optional[str] = Query(default=None, alias="userId"),
    current_user: Optional[User] = Depends(get_optional_current_user),
) -> ApiResponse:
    """Return the published feed, newest first."""
    from ..services import posts as posts_service

    posts, total = posts_service.list_feed(
        page=page,
        limit=limit,
        viewer_id=_viewer_id(current_user),
        author_id=user_id,
    )
    return ok(posts, pagination=Pagination.build(page=page, limit=limit, total=total))


@router.get("/user/{user_id}", response_model=ApiResponse)
def list_user_posts(
    user_id: str,
    *,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=_DEFAULT_PAGE_SIZE, ge=1, le=_MAX_PAGE_SIZE),
    current_user: Optional[User] = Depends(get_optional_current_user),
) -> ApiResponse:
    from ..services import posts as posts_service

    posts, total = posts_service.list_user_posts(
        user_id, page=page, limit=limit, viewer_id=_viewer_id(current_user)
    )
    return ok(posts, pagination=Pagination.build(page=page, limit=limit, total=total))


@router.delete("/comments/{comment_id}", response_model=ApiResponse)
def delete_comment(comment_id: str, *, current_user: User = Depends(get_current_user)) -> ApiResponse:
    from ..services import posts as posts_service

    posts_service.delete_comment(comment_id, current_user.id)
    return ok(message="Comment deleted successfully")


@router.get("/{post_id}", response_model=ApiResponse)
def get_post(
    post_id: str,
    *,
    current_user: Optional[User] = Depends(get_optional_current_user),
) -> ApiResponse:
    from ..services import posts as posts_service

    return ok(posts_service.get_post(post_id, viewer_id=_viewer_id(current_user)))


@router.post("", response_model=ApiResponse, status_code=status.HTTP_201_CREATED)
def create_post(payload: PostCreate, *, current_user: User = Depends(get_current_user)) -> ApiResponse:
    from ..services import posts as posts_service

    post = posts_service.create_post(current_user.id, payload)
    return ok(post, message="Post created successfully")


@router.put("/{post_id}", response_model=ApiResponse)
def update_post(
    post_id: str,
    payload: PostUpdate,
    *,
    current_user: User = Depends(get_current_user),
) -> ApiResponse:
    from ..services import posts as posts_service

    post = posts_service.update_post(post_id, current_user.id, payload)
    return ok(post, message="Post updated successfully")


@router.delete("/{post_id}", response_model=ApiResponse)
def delete_post(post_id: str, *, current_user: User = Depends(get_current_user)) -> ApiResponse:
    from ..services import posts as posts_service

    posts_service.delete_post(post_id, current_user.id)
    return ok(message="Post deleted successfully")


@router.post("/{post_id}/like", response_model=ApiResponse)
def toggle_like(post_id: str, *, current_user: User = Depends(get_current_user)) -> ApiResponse:
    from ..services import posts as posts_service

    liked = posts_service.toggle_like(post_id, current_user.id)
    message = "Post liked successfully" if liked else "Post unliked successfully"
    return ok(LikeToggle(liked=liked), message=message)


@router.post("/{post_id}/comments", response_model=ApiResponse, status_code=status.HTTP_201_CREATED)
def add_comment(
    post_id: str,
    payload: CommentCreate,
    *,
    current_user: User = Depends(get_current_user),
) -> ApiResponse:
    from ..services import posts as posts_service

    comment = posts_service.add_comment(post_id, current_user.id, payload)
    return ok(comment, message="Comment added successfully")
