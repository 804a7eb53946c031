from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, HttpUrl

_PHONE_PATTERN = r"^\+?[0-9][0-9 ()\-]{6,19}$"


class UserRole(str, Enum):
    ADMIN = "ADMIN"
    USER = "USER"
    PREMIUM = "PREMIUM"


class User(BaseModel):
    """Authenticated account as stored locally."""

    id: str
    auth0_id: str = Field(alias="auth0Id", exclude=True)
    email: str
    name: str
    picture: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    country: Optional[str] = None
    postal_code: Optional[str] = Field(default=None, alias="postalCode")
    bio: Optional[str] = None
    role: UserRole = UserRole.USER
    is_verified: bool = Field(default=False, alias="isVerified")
    is_active: bool = Field(default=True, alias="isActive")
    fcm_token: Optional[str] = Field(default=None, alias="fcmToken", exclude=True)
    stripe_customer_id: Optional[str] = Field(default=None, alias="stripeCustomerId", exclude=True)
    counts: Optional[Dict[str, int]] = None
    created_at: Optional[datetime] = Field(default=None, alias="createdAt")
    updated_at: Optional[datetime] = Field(default=None, alias="updatedAt")

    model_config = ConfigDict(populate_by_name=True)

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN


class PublicUser(BaseModel):
    id: str
    name: str
    picture: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    country: Optional[str] = None
    bio: Optional[str] = None
    is_verified: bool = Field(default=False, alias="isVerified")
    counts: Optional[Dict[str, int]] = None
    created_at: Optional[datetime] = Field(default=None, alias="createdAt")

    model_config = ConfigDict(populate_by_name=True)


class RegisterRequest(BaseModel):
    email: EmailStr
    name: str = Field(min_length=1, max_length=120)
    picture: Optional[str] = None

    model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=True)


class ProfileUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=120)
    phone: Optional[str] = Field(default=None, pattern=_PHONE_PATTERN)
    address: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    country: Optional[str] = None
    postal_code: Optional[str] = Field(default=None, alias="postalCode")
    bio: Optional[str] = Field(default=None, max_length=500)

    model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=True)


class PictureUpdate(BaseModel):
    picture: HttpUrl


class FcmTokenUpdate(BaseModel):
    fcm_token: str = Field(alias="fcmToken", min_length=1)

    model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=True)


class AccountStats(BaseModel):
    total_posts: int = Field(alias="totalPosts")
    total_orders: int = Field(alias="totalOrders")
    total_payments: int = Field(alias="totalPayments")
    total_memberships: Optional[int] = Field(default=None, alias="totalMemberships")
    total_comments: Optional[int] = Field(default=None, alias="totalComments")
    total_revenue: Decimal = Field(alias="totalRevenue")
    completed_orders: int = Field(alias="completedOrders")
    total_budget: Decimal = Field(alias="totalBudget")
    average_order_value: Decimal = Field(alias="averageOrderValue")
    user: Optional[Dict[str, str]] = None

    model_config = ConfigDict(populate_by_name=True)


class ActivityItem(BaseModel):
    type: str
    id: str
    title: str
    data: Dict[str, object]
    created_at: datetime = Field(alias="createdAt")

    model_config = ConfigDict(populate_by_name=True)


class UserActivity(BaseModel):
    user: Dict[str, str]
    activities: List[ActivityItem]

    model_config = ConfigDict(populate_by_name=True)
