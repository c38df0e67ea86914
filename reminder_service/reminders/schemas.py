"""
Schemas for the queue wire format and the HTTP API.
"""
from typing import List, Optional
from pydantic import BaseModel, Field, field_validator


# Queue wire format
class SubscriptionKeys(BaseModel):
    p256dh: str
    auth: str


class SubscriptionPayload(BaseModel):
    endpoint: str
    keys: SubscriptionKeys

    def to_subscription_info(self) -> dict:
        """Shape expected by pywebpush."""
        return {"endpoint": self.endpoint, "keys": self.keys.model_dump()}


class ReminderPayload(BaseModel):
    id: int
    action: str
    due: int
    family: str


class DispatchMessage(BaseModel):
    """One (reminder, subscription) pair: the unit of delivery work."""
    reminder: ReminderPayload
    subscription: SubscriptionPayload
    fanout: int = Field(default=1, ge=1)  # messages emitted for this reminder's due-event
    revision: int = Field(default=0, ge=0)  # due-event the message belongs to


# HTTP API
class ReminderCreate(BaseModel):
    recipients: List[int] = Field(..., min_length=1)
    action: str = Field(..., min_length=1)
    due: int = Field(..., ge=0)

    @field_validator("recipients")
    @classmethod
    def unique_recipients(cls, v: List[int]) -> List[int]:
        # keep first occurrence, the recipient set is ordered
        return list(dict.fromkeys(v))


class ReminderUpdate(ReminderCreate):
    """Full replacement of the user-editable fields; resets the status to waiting."""


class RecipientRead(BaseModel):
    user_id: int
    forename: str


class ReminderRead(BaseModel):
    id: int
    family: str
    recipients: List[RecipientRead]
    action: str
    created: int
    due: int
    status: str


class SubscriptionCreate(BaseModel):
    title: Optional[str] = None
    subscription: SubscriptionPayload


class PublicSubscriptionKeys(BaseModel):
    p256dh: str


class PublicSubscription(BaseModel):
    endpoint: str
    keys: PublicSubscriptionKeys


class SubscriptionRead(BaseModel):
    """Subscription as returned by the API; the auth secret is never exposed."""
    id: int
    title: Optional[str] = None
    subscription: PublicSubscription
