"""API and gateway schemas for dispatch records."""

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field


class NotificationPayload(BaseModel):
    """User-visible notification content plus opaque data attributes."""

    title: str = Field(min_length=1)
    body: str
    data: dict[str, str] = Field(default_factory=dict)


class PlatformOptions(BaseModel):
    """Per-platform delivery hints. Unset fields fall back to service defaults."""

    channel_id: str | None = None
    sound: str | None = None
    priority: Literal["high", "normal"] | None = None
    badge: int | None = Field(default=None, ge=0)

    def merged_over(self, defaults: "PlatformOptions") -> "PlatformOptions":
        """Return `defaults` with every field set here taking precedence."""

        return defaults.model_copy(update=self.model_dump(exclude_none=True))


class DispatchCreateRequest(BaseModel):
    """Dispatch payload accepted by the intake endpoint."""

    target: str = Field(min_length=1)
    payload: NotificationPayload
    platform_options: PlatformOptions | None = None


class DispatchResponse(BaseModel):
    """Current view of one dispatch record."""

    id: str
    target: str
    status: str
    created_at: datetime | None = None
    processed_at: datetime | None = None
    gateway_message_id: str | None = None
    error_detail: str | None = None
    error_code: str | None = None

    @classmethod
    def from_record(cls, record) -> "DispatchResponse":
        return cls(
            id=record.id,
            target=record.target,
            status=record.status,
            created_at=record.created_at,
            processed_at=record.processed_at,
            gateway_message_id=record.gateway_message_id,
            error_detail=record.error_detail,
            error_code=record.error_code,
        )
