from typing import List, Optional
from fastapi import APIRouter, Depends, Query, Response
from sqlalchemy.orm import Session

from reminder_service.core.config import settings
from reminder_service.api.deps import current_group_id, current_user_id, verify_api_key_dependency
from reminder_service.db.session import get_db
from reminder_service.models import Reminder, Subscription
from . import repository
from .metrics import reminders_created_total
from .schemas import (
    PublicSubscription,
    PublicSubscriptionKeys,
    RecipientRead,
    ReminderCreate,
    ReminderRead,
    ReminderUpdate,
    SubscriptionCreate,
    SubscriptionRead,
)


router = APIRouter(dependencies=[Depends(verify_api_key_dependency)])


def _reminder_read(r: Reminder) -> ReminderRead:
    return ReminderRead(
        id=r.id,
        family=r.family,
        recipients=[RecipientRead(user_id=link.user_id, forename=link.user.forename) for link in r.recipient_links],
        action=r.action,
        created=r.created,
        due=r.due,
        status=r.status,
    )


def _subscription_read(s: Subscription) -> SubscriptionRead:
    # auth is a device secret: never sent back to clients
    return SubscriptionRead(
        id=s.id,
        title=s.title,
        subscription=PublicSubscription(endpoint=s.endpoint, keys=PublicSubscriptionKeys(p256dh=s.p256dh)),
    )


@router.post("/reminders", response_model=ReminderRead, status_code=201)
def create_reminder_endpoint(
    payload: ReminderCreate,
    response: Response,
    group_id: int = Depends(current_group_id),
    db: Session = Depends(get_db),
):
    r = repository.create_reminder(db, group_id, payload)
    reminders_created_total.inc()
    response.headers["Location"] = f"{settings.API_V1_STR}/reminders/{r.id}"
    return _reminder_read(r)


@router.get("/reminders", response_model=List[ReminderRead])
def list_reminders_endpoint(
    start: Optional[int] = Query(None, description="Only reminders due after this time (ms); defaults to now"),
    limit: int = Query(20, ge=0, le=500),
    group_id: int = Depends(current_group_id),
    db: Session = Depends(get_db),
):
    return [_reminder_read(r) for r in repository.list_reminders(db, group_id, start=start, limit=limit)]


@router.get("/reminders/{reminder_id}", response_model=ReminderRead)
def get_reminder_endpoint(reminder_id: int, group_id: int = Depends(current_group_id), db: Session = Depends(get_db)):
    return _reminder_read(repository.get_reminder(db, group_id, reminder_id))


@router.put("/reminders/{reminder_id}", response_model=ReminderRead)
def update_reminder_endpoint(
    reminder_id: int,
    payload: ReminderUpdate,
    group_id: int = Depends(current_group_id),
    db: Session = Depends(get_db),
):
    """Replace due/action/recipients; the reminder goes back to waiting."""
    return _reminder_read(repository.update_reminder(db, group_id, reminder_id, payload))


@router.delete("/reminders/{reminder_id}", status_code=204)
def delete_reminder_endpoint(reminder_id: int, group_id: int = Depends(current_group_id), db: Session = Depends(get_db)):
    repository.delete_reminder(db, group_id, reminder_id)
    return Response(status_code=204)


@router.post("/subscriptions", response_model=SubscriptionRead, status_code=201)
def create_subscription_endpoint(
    payload: SubscriptionCreate,
    response: Response,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    s = repository.create_subscription(db, user_id, payload)
    response.headers["Location"] = f"{settings.API_V1_STR}/subscriptions/{s.id}"
    return _subscription_read(s)


@router.get("/subscriptions", response_model=List[SubscriptionRead])
def list_subscriptions_endpoint(user_id: int = Depends(current_user_id), db: Session = Depends(get_db)):
    return [_subscription_read(s) for s in repository.list_subscriptions(db, user_id)]


@router.get("/subscriptions/{subscription_id}", response_model=SubscriptionRead)
def get_subscription_endpoint(subscription_id: int, user_id: int = Depends(current_user_id), db: Session = Depends(get_db)):
    return _subscription_read(repository.get_subscription(db, user_id, subscription_id))


@router.delete("/subscriptions/{subscription_id}", status_code=204)
def delete_subscription_endpoint(subscription_id: int, user_id: int = Depends(current_user_id), db: Session = Depends(get_db)):
    repository.delete_subscription(db, user_id, subscription_id)
    return Response(status_code=204)
