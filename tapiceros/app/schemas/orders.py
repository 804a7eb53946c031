from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field

_PHONE_PATTERN = r"^\+?[0-9][0-9 ()\-]{6,19}$"


class OrderStatus(str, Enum):
    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class OrderPriority(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    URGENT = "URGENT"


class Order(BaseModel):
    id: str
    user_id: str = Field(alias="userId")
    title: str
    description: Optional[str] = None
    client_name: str = Field(alias="clientName")
    client_email: Optional[str] = Field(default=None, alias="clientEmail")
    client_phone: Optional[str] = Field(default=None, alias="clientPhone")
    address: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    country: Optional[str] = None
    postal_code: Optional[str] = Field(default=None, alias="postalCode")
    budget: Optional[Decimal] = None
    priority: OrderPriority = OrderPriority.MEDIUM
    status: OrderStatus = OrderStatus.PENDING
    start_date: Optional[datetime] = Field(default=None, alias="startDate")
    end_date: Optional[datetime] = Field(default=None, alias="endDate")
    completed_at: Optional[datetime] = Field(default=None, alias="completedAt")
    payments: Optional[List[Dict[str, Any]]] = None
    invoices: Optional[List[Dict[str, Any]]] = None
    counts: Optional[Dict[str, int]] = None
    created_at: Optional[datetime] = Field(default=None, alias="createdAt")
    updated_at: Optional[datetime] = Field(default=None, alias="updatedAt")

    model_config = ConfigDict(populate_by_name=True)


class OrderCreate(BaseModel):
    title: str = Field(min_length=1, max_length=200)
    description: Optional[str] = Field(default=None, max_length=1000)
    client_name: str = Field(alias="clientName", min_length=1, max_length=200)
    client_email: Optional[EmailStr] = Field(default=None, alias="clientEmail")
    client_phone: Optional[str] = Field(default=None, alias="clientPhone", pattern=_PHONE_PATTERN)
    address: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    country: Optional[str] = None
    postal_code: Optional[str] = Field(default=None, alias="postalCode")
    budget: Optional[Decimal] = Field(default=None, ge=0)
    priority: OrderPriority = OrderPriority.MEDIUM
    start_date: Optional[datetime] = Field(default=None, alias="startDate")
    end_date: Optional[datetime] = Field(default=None, alias="endDate")

    model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=True)


class OrderUpdate(BaseModel):
    title: Optional[str] = Field(default=None, min_length=1, max_length=200)
    description: Optional[str] = Field(default=None, max_length=1000)
    client_name: Optional[str] = Field(default=None, alias="clientName", min_length=1, max_length=200)
    client_email: Optional[EmailStr] = Field(default=None, alias="clientEmail")
    client_phone: Optional[str] = Field(default=None, alias="clientPhone", pattern=_PHONE_PATTERN)
    address: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    country: Optional[str] = None
    postal_code: Optional[str] = Field(default=None, alias="postalCode")
    budget: Optional[Decimal] = Field(default=None, ge=0)
    priority: Optional[OrderPriority] = None
    status: Optional[OrderStatus] = None
    start_date: Optional[datetime] = Field(default=None, alias="startDate")
    end_date: Optional[datetime] = Field(default=None, alias="endDate")

    model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=True)


class StatusCount(BaseModel):
    status: OrderStatus
    count: int
    budget: Optional[Decimal] = None


class OrderStats(BaseModel):
    total_orders: int = Field(alias="totalOrders")
    total_revenue: Decimal = Field(alias="totalRevenue")
    status_breakdown: List[StatusCount] = Field(alias="statusBreakdown")
    monthly_stats: List[StatusCount] = Field(alias="monthlyStats")

    model_config = ConfigDict(populate_by_name=True)
