from sqlalchemy import BigInteger, Column, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import relationship

from reminder_service.db.base import Base
from reminder_service.reminders.status import ReminderStatus


class Reminder(Base):
    __tablename__ = "reminders"

    id = Column(Integer, primary_key=True, index=True)
    group_id = Column(Integer, ForeignKey("groups.id", ondelete="CASCADE"), nullable=False, index=True)
    action = Column(Text, nullable=False)
    created = Column(BigInteger, nullable=False)  # in milliseconds
    due = Column(BigInteger, nullable=False)  # in milliseconds
    status = Column(String(32), nullable=False, default=ReminderStatus.WAITING.value)
    revision = Column(Integer, nullable=False, default=0)  # bumped on every edit, identifies the due-event

    group = relationship("Group", back_populates="reminders")
    recipient_links = relationship(
        "ReminderRecipient",
        order_by="ReminderRecipient.position",
        cascade="all, delete-orphan",
        back_populates="reminder",
    )

    __table_args__ = (
        Index("ix_reminders_status_due", "status", "due"),
        Index("ix_reminders_group_due", "group_id", "due"),
    )

    @property
    def recipient_ids(self):
        return [link.user_id for link in self.recipient_links]

    @property
    def family(self) -> str:
        return self.group.name if self.group is not None else ""


class ReminderRecipient(Base):
    """Ordered link between a reminder and the users it notifies."""
    __tablename__ = "reminder_recipients"

    reminder_id = Column(Integer, ForeignKey("reminders.id", ondelete="CASCADE"), primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True, index=True)
    position = Column(Integer, nullable=False, default=0)

    reminder = relationship("Reminder", back_populates="recipient_links")
    user = relationship("User")
