from __future__ import annotations

from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class PostAuthor(BaseModel):
    id: str
    name: str
    picture: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    country: Optional[str] = None


class Comment(BaseModel):
    id: str
    post_id: str = Field(alias="postId")
    user_id: str = Field(alias="userId")
    content: str
    user: Optional[PostAuthor] = None
    created_at: datetime = Field(alias="createdAt")

    model_config = ConfigDict(populate_by_name=True)


class Post(BaseModel):
    id: str
    user_id: str = Field(alias="userId")
    content: str
    images: List[str] = Field(default_factory=list)
    likes: int = 0
    views: int = 0
    is_published: bool = Field(default=True, alias="isPublished")
    user: Optional[PostAuthor] = None
    comments: List[Comment] = Field(default_factory=list)
    counts: Dict[str, int] = Field(default_factory=dict)
    is_liked: bool = Field(default=False, alias="isLiked")
    created_at: datetime = Field(alias="createdAt")
    updated_at: Optional[datetime] = Field(default=None, alias="updatedAt")

    model_config = ConfigDict(populate_by_name=True)


class PostCreate(BaseModel):
    content: str = Field(min_length=1, max_length=2000)
    images: List[str] = Field(default_factory=list)

    model_config = ConfigDict(str_strip_whitespace=True)


class PostUpdate(BaseModel):
    content: Optional[str] = Field(default=None, min_length=1, max_length=2000)
    images: Optional[List[str]] = None
    is_published: Optional[bool] = Field(default=None, alias="isPublished")

    model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=True)


class CommentCreate(BaseModel):
    content: str = Field(min_length=1, max_length=500)

    model_config = ConfigDict(str_strip_whitespace=True)


class LikeToggle(BaseModel):
    liked: bool
