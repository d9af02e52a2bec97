"""DeviceEndpoint entity model for registered push subscriptions."""

from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import UniqueConstraint
from sqlmodel import Field, SQLModel


class DevicePlatform(str, Enum):
    """Push platforms a device can register from."""
    WEB = "web"
    IOS = "ios"
    ANDROID = "android"


class DeviceEndpoint(SQLModel, table=True):
    """Device registry database model."""

    __tablename__ = "user_devices"
    __table_args__ = (UniqueConstraint("user_id", "credential"),)

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    user_id: UUID = Field(index=True)
    platform: DevicePlatform = Field(default=DevicePlatform.WEB)
    credential: str
    device_name: str | None = Field(default=None, max_length=255)
    enabled: bool = Field(default=True)
    last_used_at: datetime | None = Field(default=None)
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)


class DeviceSubscribe(SQLModel):
    """Schema for registering a push subscription."""

    subscription: dict[str, Any]
    platform: DevicePlatform = DevicePlatform.WEB
    device_name: str | None = Field(default=None, max_length=255)


class DeviceUnsubscribe(SQLModel):
    """Schema for removing a push subscription by endpoint."""

    endpoint: str = Field(min_length=1)


class DeviceResponse(SQLModel):
    """Schema for device response (credential omitted)."""

    id: UUID
    user_id: UUID
    platform: DevicePlatform
    device_name: str | None
    enabled: bool
    last_used_at: datetime | None
    created_at: datetime

    model_config = {"from_attributes": True}


class DeviceListResponse(SQLModel):
    """Schema for device list response."""

    devices: list[DeviceResponse]
    total: int
