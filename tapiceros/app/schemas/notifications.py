from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from ...push.templates import NotificationType


class NotificationCreate(BaseModel):
    user_id: str = Field(alias="userId")
    title: str
    body: str
    type: NotificationType
    data: Dict[str, Any] = Field(default_factory=dict)
    sent_at: Optional[datetime] = Field(default=None, alias="sentAt")

    model_config = ConfigDict(populate_by_name=True)


class Notification(BaseModel):
    id: str
    user_id: str = Field(alias="userId")
    title: str
    body: str
    type: NotificationType
    data: Dict[str, Any] = Field(default_factory=dict)
    is_read: bool = Field(default=False, alias="isRead")
    sent_at: Optional[datetime] = Field(default=None, alias="sentAt")
    created_at: datetime = Field(alias="createdAt")

    model_config = ConfigDict(populate_by_name=True)


class NotificationUnreadCount(BaseModel):
    unread_count: int = Field(alias="unreadCount")

    model_config = ConfigDict(populate_by_name=True)


class NotificationSendRequest(BaseModel):
    user_ids: List[str] = Field(alias="userIds")
    title: str = Field(min_length=1)
    body: str = Field(min_length=1)
    type: NotificationType
    data: Optional[Dict[str, Any]] = None

    model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=True)


class NotificationSendResult(BaseModel):
    success_count: int = Field(alias="successCount")
    failure_count: int = Field(alias="failureCount")
    total_users: int = Field(alias="totalUsers")

    model_config = ConfigDict(populate_by_name=True)


class TypeCount(BaseModel):
    type: NotificationType
    count: int


class NotificationStats(BaseModel):
    total: int
    unread: int
    today: int
    by_type: List[TypeCount] = Field(alias="byType")

    model_config = ConfigDict(populate_by_name=True)
