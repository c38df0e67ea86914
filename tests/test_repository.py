import pytest

from reminder_service.reminders import repository
from reminder_service.reminders.errors import (
    DatabaseCorruptedError,
    InvalidInputError,
    InvalidTransitionError,
    NotFoundError,
)
from reminder_service.reminders.schemas import ReminderCreate, ReminderUpdate
from reminder_service.reminders.status import ReminderStatus


def test_find_due_reminders_only_returns_waiting_and_due(db, family, make_reminder):
    late = make_reminder(due=900)
    due = make_reminder(due=1000, recipients=[family.ana_id, family.bob_id])
    make_reminder(due=2000)
    handled = make_reminder(due=500)
    repository.set_reminder_status(db, handled.id, ReminderStatus.PENDING)

    found = repository.find_due_reminders(db, now=1000)

    assert [r.id for r in found] == [late.id, due.id]
    assert found[1].recipient_ids == [family.ana_id, family.bob_id]
    assert found[1].family == "Smith"


def test_set_reminder_status_applies_legal_transition(db, make_reminder, status_of):
    reminder = make_reminder()

    assert repository.set_reminder_status(db, reminder.id, ReminderStatus.PENDING) is ReminderStatus.PENDING
    assert status_of(reminder.id) is ReminderStatus.PENDING


def test_set_reminder_status_unknown_reminder(db, family):
    with pytest.raises(NotFoundError):
        repository.set_reminder_status(db, 4242, ReminderStatus.PENDING)


def test_set_reminder_status_rejects_illegal_transition(db, make_reminder, status_of):
    reminder = make_reminder()

    with pytest.raises(InvalidTransitionError) as excinfo:
        repository.set_reminder_status(db, reminder.id, ReminderStatus.DONE)
    assert excinfo.value.details == {"current": "waiting", "target": "done"}
    assert status_of(reminder.id) is ReminderStatus.WAITING


def test_error_is_never_downgraded(db, make_reminder, status_of):
    reminder = make_reminder()
    repository.set_reminder_status(db, reminder.id, ReminderStatus.PENDING)
    repository.set_reminder_status(db, reminder.id, ReminderStatus.ERROR)

    assert repository.set_reminder_status_if_not_error(db, reminder.id, ReminderStatus.DONE) is False
    assert repository.set_reminder_status_if_not_error(db, reminder.id, ReminderStatus.PENDING) is False
    with pytest.raises(InvalidTransitionError):
        repository.set_reminder_status(db, reminder.id, ReminderStatus.DONE)
    assert status_of(reminder.id) is ReminderStatus.ERROR


def test_set_reminder_status_if_not_error_applies_from_pending(db, make_reminder, status_of):
    reminder = make_reminder()
    repository.set_reminder_status(db, reminder.id, ReminderStatus.PENDING)

    assert repository.set_reminder_status_if_not_error(db, reminder.id, ReminderStatus.DONE) is True
    assert status_of(reminder.id) is ReminderStatus.DONE


def test_check_single_row_distinguishes_missing_from_corruption():
    repository.check_single_row(1, "updated", "reminder", 1)
    with pytest.raises(NotFoundError):
        repository.check_single_row(0, "updated", "reminder", 1)
    with pytest.raises(DatabaseCorruptedError) as excinfo:
        repository.check_single_row(2, "deleted", "reminder", 1)
    assert excinfo.value.code == "database_corrupted"


def test_create_reminder_requires_group_members(db, family):
    outsider = repository.create_user(db, "Eve")

    with pytest.raises(InvalidInputError):
        repository.create_reminder(
            db,
            family.group_id,
            ReminderCreate(recipients=[family.ana_id, outsider.id], action="water the plants", due=1000),
        )


def test_reminders_are_scoped_by_group(db, family, make_reminder):
    reminder = make_reminder()
    other = repository.create_group(db, "Jones")

    with pytest.raises(NotFoundError):
        repository.get_reminder(db, other.id, reminder.id)
    assert repository.list_reminders(db, other.id, start=0) == []


def test_list_reminders_after_start(db, family, make_reminder):
    make_reminder(due=1000)
    later = make_reminder(due=3000)
    latest = make_reminder(due=5000)

    found = repository.list_reminders(db, family.group_id, start=2000, limit=1)
    assert [r.id for r in found] == [later.id]
    found = repository.list_reminders(db, family.group_id, start=2000)
    assert [r.id for r in found] == [later.id, latest.id]


def test_update_reminder_resets_status_and_recipients(db, family, make_reminder, status_of):
    reminder = make_reminder(recipients=[family.ana_id])
    repository.set_reminder_status(db, reminder.id, ReminderStatus.NO_SUBSCRIPTION_WHEN_DUE)

    updated = repository.update_reminder(
        db,
        family.group_id,
        reminder.id,
        ReminderUpdate(recipients=[family.bob_id, family.ana_id], action="call grandma", due=9000),
    )

    assert updated.status == ReminderStatus.WAITING.value
    assert updated.recipient_ids == [family.bob_id, family.ana_id]
    assert updated.action == "call grandma"
    assert updated.due == 9000
    assert status_of(reminder.id) is ReminderStatus.WAITING


def test_delete_reminder(db, family, make_reminder):
    reminder = make_reminder()

    repository.delete_reminder(db, family.group_id, reminder.id)

    with pytest.raises(NotFoundError):
        repository.get_reminder(db, family.group_id, reminder.id)
    with pytest.raises(NotFoundError):
        repository.delete_reminder(db, family.group_id, reminder.id)


def test_settle_waits_for_every_delivery(db, make_reminder, status_of):
    reminder = make_reminder(due=1000)
    repository.set_reminder_status(db, reminder.id, ReminderStatus.PENDING)

    repository.record_delivery_attempt(db, reminder.id, 1000, "https://a", succeeded=True)
    assert repository.settle_reminder(db, reminder.id, reminder.revision, fanout=2) is None
    assert status_of(reminder.id) is ReminderStatus.PENDING

    repository.record_delivery_attempt(db, reminder.id, 1000, "https://b", succeeded=True)
    assert repository.settle_reminder(db, reminder.id, reminder.revision, fanout=2) is ReminderStatus.DONE
    assert status_of(reminder.id) is ReminderStatus.DONE


def test_settle_counts_each_device_once(db, make_reminder, status_of):
    reminder = make_reminder(due=1000)
    repository.set_reminder_status(db, reminder.id, ReminderStatus.PENDING)

    repository.record_delivery_attempt(db, reminder.id, 1000, "https://a", succeeded=True)
    repository.record_delivery_attempt(db, reminder.id, 1000, "https://a", succeeded=True)

    assert repository.delivery_counts(db, reminder.id, reminder.revision) == (1, 0)
    assert repository.settle_reminder(db, reminder.id, reminder.revision, fanout=2) is None
    assert status_of(reminder.id) is ReminderStatus.PENDING


def test_settle_late_success_keeps_error(db, make_reminder, status_of):
    reminder = make_reminder(due=1000)
    repository.set_reminder_status(db, reminder.id, ReminderStatus.PENDING)

    repository.record_delivery_attempt(db, reminder.id, 1000, "https://a", succeeded=False, error="rejected")
    assert repository.settle_reminder(db, reminder.id, reminder.revision, fanout=2) is ReminderStatus.ERROR

    repository.record_delivery_attempt(db, reminder.id, 1000, "https://b", succeeded=True)
    assert repository.settle_reminder(db, reminder.id, reminder.revision, fanout=2) is None
    assert status_of(reminder.id) is ReminderStatus.ERROR


def test_attempts_of_another_revision_are_ignored(db, make_reminder):
    reminder = make_reminder(due=1000)
    repository.record_delivery_attempt(db, reminder.id, 1000, "https://a", succeeded=False, revision=3)

    assert repository.delivery_counts(db, reminder.id, 0) == (0, 0)
    assert repository.delivery_counts(db, reminder.id, 3) == (0, 1)


def test_outcomes_of_an_edited_due_event_do_not_settle(db, family, make_reminder, status_of):
    reminder = make_reminder(due=1000)
    old_revision = reminder.revision
    repository.update_reminder(
        db,
        family.group_id,
        reminder.id,
        ReminderUpdate(recipients=[family.ana_id], action="attend important meeting", due=1000),
    )
    repository.set_reminder_status(db, reminder.id, ReminderStatus.PENDING)

    repository.record_delivery_attempt(db, reminder.id, 1000, "https://a", succeeded=True, revision=old_revision)
    assert repository.settle_reminder(db, reminder.id, old_revision, fanout=1) is None
    assert status_of(reminder.id) is ReminderStatus.PENDING


def test_set_reminder_status_for_a_stale_revision(db, family, make_reminder, status_of):
    reminder = make_reminder(due=1000)
    old_revision = reminder.revision
    updated = repository.update_reminder(
        db,
        family.group_id,
        reminder.id,
        ReminderUpdate(recipients=[family.bob_id], action="attend important meeting", due=1000),
    )
    assert updated.revision == old_revision + 1

    with pytest.raises(InvalidTransitionError):
        repository.set_reminder_status(db, reminder.id, ReminderStatus.PENDING, revision=old_revision)
    assert status_of(reminder.id) is ReminderStatus.WAITING
    assert repository.set_reminder_status(db, reminder.id, ReminderStatus.PENDING, revision=updated.revision) is ReminderStatus.PENDING


def test_subscriptions_are_unique_by_endpoint(db, family, subscribe):
    subscribe(family.ana_id, endpoint="https://push.example.com/shared")

    with pytest.raises(InvalidInputError):
        subscribe(family.bob_id, endpoint="https://push.example.com/shared")


def test_subscription_lookup_and_removal(db, family, subscribe):
    first = subscribe(family.ana_id)
    second = subscribe(family.ana_id)
    subscribe(family.bob_id)

    assert [s.id for s in repository.find_subscriptions_for_recipient(db, family.ana_id)] == [first.id, second.id]

    repository.delete_subscription(db, family.ana_id, first.id)
    assert repository.delete_subscription_by_endpoint(db, second.endpoint) is True
    assert repository.delete_subscription_by_endpoint(db, second.endpoint) is False
    assert repository.find_subscriptions_for_recipient(db, family.ana_id) == []
    with pytest.raises(NotFoundError):
        repository.delete_subscription(db, family.ana_id, first.id)
