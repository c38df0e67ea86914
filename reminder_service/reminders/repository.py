import logging
from typing import List, Optional, Tuple

from sqlalchemy import delete, distinct, func, select, update
from sqlalchemy.orm import Session, selectinload

from reminder_service.models import (
    DeliveryAttempt,
    Group,
    Reminder,
    ReminderRecipient,
    Subscription,
    User,
)
from reminder_service.utils.timestamps import now_ms
from .errors import (
    DatabaseCorruptedError,
    InvalidInputError,
    InvalidTransitionError,
    NotFoundError,
)
from .schemas import ReminderCreate, ReminderUpdate, SubscriptionCreate
from .status import ReminderStatus, allowed_sources, parse_status, reschedule, transition

logger = logging.getLogger(__name__)


def check_single_row(rowcount: int, mode: str, subject: str, identifier) -> None:
    """Distinguish "nothing matched" from "more than one row matched" after an update/delete."""
    if rowcount == 0:
        raise NotFoundError.for_subject(subject, identifier)
    if rowcount > 1:
        raise DatabaseCorruptedError(
            f"More than 1 {subject} has been {mode} (id={identifier}).",
            subject=subject,
            id=identifier,
        )


# Groups and users

def create_group(db: Session, name: str) -> Group:
    group = Group(name=name)
    db.add(group)
    db.commit()
    db.refresh(group)
    return group


def get_group(db: Session, group_id: int) -> Group:
    group = db.get(Group, group_id)
    if group is None:
        raise NotFoundError.for_subject("group", group_id)
    return group


def create_user(db: Session, forename: str, email: Optional[str] = None) -> User:
    user = User(forename=forename, email=email)
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def get_user(db: Session, user_id: int) -> User:
    user = db.get(User, user_id)
    if user is None:
        raise NotFoundError.for_subject("user", user_id)
    return user


def add_user_to_group(db: Session, group_id: int, user_id: int) -> None:
    group = get_group(db, group_id)
    user = get_user(db, user_id)
    if user not in group.members:
        group.members.append(user)
        db.commit()


# Reminders

def _reminder_query():
    # status is also written by conditional UPDATEs that bypass the identity map
    return (
        select(Reminder)
        .options(
            selectinload(Reminder.group),
            selectinload(Reminder.recipient_links).selectinload(ReminderRecipient.user),
        )
        .execution_options(populate_existing=True)
    )


def _check_recipients(group: Group, recipients: List[int]) -> None:
    member_ids = {member.id for member in group.members}
    strangers = [user_id for user_id in recipients if user_id not in member_ids]
    if strangers:
        raise InvalidInputError(
            f"Recipients {strangers} are not members of group {group.id}.",
            recipients=strangers,
        )


def _set_recipients(reminder: Reminder, recipients: List[int]) -> None:
    existing = {link.user_id: link for link in reminder.recipient_links}
    links = [existing.get(user_id) or ReminderRecipient(user_id=user_id) for user_id in recipients]
    for position, link in enumerate(links):
        link.position = position
    reminder.recipient_links = links


def create_reminder(db: Session, group_id: int, data: ReminderCreate) -> Reminder:
    group = get_group(db, group_id)
    _check_recipients(group, data.recipients)
    reminder = Reminder(
        group_id=group.id,
        action=data.action,
        created=now_ms(),
        due=data.due,
        status=ReminderStatus.WAITING.value,
        revision=0,
    )
    _set_recipients(reminder, data.recipients)
    db.add(reminder)
    db.commit()
    logger.info(f"[Store] Created reminder #{reminder.id} for group {group_id} due at {reminder.due}")
    return get_reminder(db, group_id, reminder.id)


def get_reminder(db: Session, group_id: int, reminder_id: int) -> Reminder:
    stmt = _reminder_query().where(Reminder.id == reminder_id, Reminder.group_id == group_id)
    reminder = db.execute(stmt).scalars().first()
    if reminder is None:
        raise NotFoundError.for_subject("reminder", reminder_id)
    return reminder


def list_reminders(
    db: Session,
    group_id: int,
    start: Optional[int] = None,
    limit: Optional[int] = 20,
) -> List[Reminder]:
    """Reminders of a group due after ``start`` (default: now), soonest first."""
    if start is None:
        start = now_ms()
    stmt = (
        _reminder_query()
        .where(Reminder.group_id == group_id, Reminder.due > start)
        .order_by(Reminder.due.asc(), Reminder.id.asc())
    )
    if limit:
        stmt = stmt.limit(limit)
    return list(db.execute(stmt).scalars())


def update_reminder(db: Session, group_id: int, reminder_id: int, data: ReminderUpdate) -> Reminder:
    reminder = get_reminder(db, group_id, reminder_id)
    _check_recipients(reminder.group, data.recipients)
    reminder.action = data.action
    reminder.due = data.due
    _set_recipients(reminder, data.recipients)
    reminder.status = reschedule(parse_status(reminder.status)).value
    # Messages of the previous due-event still in flight must not settle the new one
    reminder.revision = (reminder.revision or 0) + 1
    db.execute(delete(DeliveryAttempt).where(DeliveryAttempt.reminder_id == reminder_id))
    db.commit()
    logger.info(f"[Store] Updated reminder #{reminder_id}, status reset to {reminder.status}")
    return get_reminder(db, group_id, reminder_id)


def delete_reminder(db: Session, group_id: int, reminder_id: int) -> None:
    get_reminder(db, group_id, reminder_id)
    db.execute(delete(ReminderRecipient).where(ReminderRecipient.reminder_id == reminder_id))
    db.execute(delete(DeliveryAttempt).where(DeliveryAttempt.reminder_id == reminder_id))
    result = db.execute(
        delete(Reminder)
        .where(Reminder.id == reminder_id, Reminder.group_id == group_id)
        .execution_options(synchronize_session=False)
    )
    try:
        check_single_row(result.rowcount, "deleted", "reminder", reminder_id)
    except Exception:
        db.rollback()
        raise
    db.commit()


def find_due_reminders(db: Session, now: int, limit: Optional[int] = None) -> List[Reminder]:
    stmt = (
        _reminder_query()
        .where(Reminder.status == ReminderStatus.WAITING.value)
        .where(Reminder.due <= now)
        .order_by(Reminder.due.asc(), Reminder.id.asc())
    )
    if limit:
        stmt = stmt.limit(limit)
    return list(db.execute(stmt).scalars())


# Status changes

def _status_filter(reminder_id: int, sources: List[str], revision: Optional[int]):
    clauses = [Reminder.id == reminder_id, Reminder.status.in_(sources)]
    if revision is not None:
        clauses.append(Reminder.revision == revision)
    return clauses


def set_reminder_status(
    db: Session,
    reminder_id: int,
    status: ReminderStatus,
    revision: Optional[int] = None,
) -> ReminderStatus:
    """Apply a legal transition as a single conditional write.

    With ``revision`` the write only applies to that due-event of the reminder.
    Raises NotFoundError when the reminder does not exist and
    InvalidTransitionError when its current state does not allow ``status``.
    """
    target = parse_status(status)
    sources = [source.value for source in allowed_sources(target)]
    result = db.execute(
        update(Reminder)
        .where(*_status_filter(reminder_id, sources, revision))
        .values(status=target.value)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 1:
        db.commit()
        logger.debug(f"[Store] Reminder #{reminder_id} -> {target.value}")
        return target
    db.rollback()
    if result.rowcount > 1:
        check_single_row(result.rowcount, "updated", "reminder", reminder_id)

    row = db.execute(
        select(Reminder.status, Reminder.revision).where(Reminder.id == reminder_id)
    ).first()
    if row is None:
        raise NotFoundError.for_subject("reminder", reminder_id)
    current, current_revision = row
    if revision is not None and current_revision != revision:
        raise InvalidTransitionError(
            f"Reminder #{reminder_id} was edited (revision {revision} -> {current_revision})",
            id=reminder_id,
            revision=revision,
            current_revision=current_revision,
        )
    transition(current, target)
    # legal from the state we just read: another writer got there between the two statements
    raise InvalidTransitionError(
        f"Reminder #{reminder_id} changed while moving to {target.value!r}",
        id=reminder_id,
        current=current,
        target=target.value,
    )


def set_reminder_status_if_not_error(
    db: Session,
    reminder_id: int,
    status: ReminderStatus,
    revision: Optional[int] = None,
) -> bool:
    """Conditional write that never touches a reminder already in ERROR.

    Returns False when the write was ignored (reminder in ERROR, missing,
    edited since ``revision``, or not in a state ``status`` can be reached from).
    """
    target = parse_status(status)
    sources = [
        source.value for source in allowed_sources(target) if source is not ReminderStatus.ERROR
    ]
    result = db.execute(
        update(Reminder)
        .where(Reminder.status != ReminderStatus.ERROR.value, *_status_filter(reminder_id, sources, revision))
        .values(status=target.value)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount > 1:
        db.rollback()
        check_single_row(result.rowcount, "updated", "reminder", reminder_id)
    db.commit()
    if result.rowcount == 0:
        logger.info(f"[Store] Ignored status {target.value!r} for reminder #{reminder_id}")
        return False
    return True


def get_reminder_status(db: Session, reminder_id: int) -> ReminderStatus:
    current = db.execute(select(Reminder.status).where(Reminder.id == reminder_id)).scalar_one_or_none()
    if current is None:
        raise NotFoundError.for_subject("reminder", reminder_id)
    return parse_status(current)


# Delivery bookkeeping

def record_delivery_attempt(
    db: Session,
    reminder_id: int,
    due: int,
    endpoint: str,
    succeeded: bool,
    error: Optional[str] = None,
    revision: int = 0,
) -> DeliveryAttempt:
    attempt = DeliveryAttempt(
        reminder_id=reminder_id,
        revision=revision,
        due=due,
        endpoint=endpoint,
        succeeded=succeeded,
        error=error,
        attempted=now_ms(),
    )
    db.add(attempt)
    db.commit()
    return attempt


def delivery_counts(db: Session, reminder_id: int, revision: int) -> Tuple[int, int]:
    """(devices delivered, failed attempts) for one due-event of a reminder.

    A re-sent message can be delivered twice to the same device; it counts once.
    """
    delivered = db.execute(
        select(func.count(distinct(DeliveryAttempt.endpoint))).where(
            DeliveryAttempt.reminder_id == reminder_id,
            DeliveryAttempt.revision == revision,
            DeliveryAttempt.succeeded.is_(True),
        )
    ).scalar_one()
    failed = db.execute(
        select(func.count(DeliveryAttempt.id)).where(
            DeliveryAttempt.reminder_id == reminder_id,
            DeliveryAttempt.revision == revision,
            DeliveryAttempt.succeeded.is_(False),
        )
    ).scalar_one()
    return delivered, failed


def settle_reminder(db: Session, reminder_id: int, revision: int, fanout: int) -> Optional[ReminderStatus]:
    """Move a PENDING reminder to its terminal status once the outcome is known.

    Any failed delivery makes it ERROR; it becomes DONE once ``fanout``
    distinct devices confirmed. Outcomes of an older ``revision`` never settle
    the current due-event. Returns the status applied, or None.
    """
    delivered, failed = delivery_counts(db, reminder_id, revision)
    if failed:
        target = ReminderStatus.ERROR
    elif delivered >= fanout:
        target = ReminderStatus.DONE
    else:
        return None
    if set_reminder_status_if_not_error(db, reminder_id, target, revision=revision):
        logger.info(
            f"[Store] Reminder #{reminder_id} settled as {target.value} "
            f"({delivered} delivered, {failed} failed, {fanout} expected)"
        )
        return target
    return None


# Subscriptions

def find_subscriptions_for_recipient(db: Session, user_id: int) -> List[Subscription]:
    stmt = select(Subscription).where(Subscription.user_id == user_id).order_by(Subscription.id.asc())
    return list(db.execute(stmt).scalars())


def create_subscription(db: Session, user_id: int, data: SubscriptionCreate) -> Subscription:
    get_user(db, user_id)
    endpoint = data.subscription.endpoint
    taken = db.execute(select(Subscription.id).where(Subscription.endpoint == endpoint)).first()
    if taken is not None:
        raise InvalidInputError("This endpoint is already registered.", endpoint=endpoint)
    subscription = Subscription(
        user_id=user_id,
        title=data.title,
        endpoint=endpoint,
        p256dh=data.subscription.keys.p256dh,
        auth=data.subscription.keys.auth,
    )
    db.add(subscription)
    db.commit()
    db.refresh(subscription)
    return subscription


def list_subscriptions(db: Session, user_id: int) -> List[Subscription]:
    return find_subscriptions_for_recipient(db, user_id)


def get_subscription(db: Session, user_id: int, subscription_id: int) -> Subscription:
    subscription = db.execute(
        select(Subscription).where(Subscription.id == subscription_id, Subscription.user_id == user_id)
    ).scalars().first()
    if subscription is None:
        raise NotFoundError.for_subject("subscription", subscription_id)
    return subscription


def delete_subscription(db: Session, user_id: int, subscription_id: int) -> None:
    result = db.execute(
        delete(Subscription)
        .where(Subscription.id == subscription_id, Subscription.user_id == user_id)
        .execution_options(synchronize_session=False)
    )
    try:
        check_single_row(result.rowcount, "deleted", "subscription", subscription_id)
    except Exception:
        db.rollback()
        raise
    db.commit()


def delete_subscription_by_endpoint(db: Session, endpoint: str) -> bool:
    result = db.execute(
        delete(Subscription)
        .where(Subscription.endpoint == endpoint)
        .execution_options(synchronize_session=False)
    )
    db.commit()
    return result.rowcount > 0
