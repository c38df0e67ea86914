from sqlalchemy import BigInteger, Boolean, Column, ForeignKey, Index, Integer, Text

from reminder_service.db.base import Base


class DeliveryAttempt(Base):
    """Outcome of one push attempt for one (reminder due-event, device) pair."""
    __tablename__ = "delivery_attempts"

    id = Column(Integer, primary_key=True, index=True)
    reminder_id = Column(Integer, ForeignKey("reminders.id", ondelete="CASCADE"), nullable=False)
    revision = Column(Integer, nullable=False, default=0)  # Reminder.revision the message was built from
    due = Column(BigInteger, nullable=False)
    endpoint = Column(Text, nullable=False)
    succeeded = Column(Boolean, nullable=False)
    error = Column(Text, nullable=True)
    attempted = Column(BigInteger, nullable=False)  # in milliseconds

    __table_args__ = (
        Index("ix_delivery_attempts_reminder_revision", "reminder_id", "revision"),
    )
