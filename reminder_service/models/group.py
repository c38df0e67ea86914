from sqlalchemy import Column, ForeignKey, Integer, String, Table
from sqlalchemy.orm import relationship

from reminder_service.db.base import Base


group_memberships = Table(
    "group_memberships",
    Base.metadata,
    Column("user_id", Integer, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
    Column("group_id", Integer, ForeignKey("groups.id", ondelete="CASCADE"), primary_key=True),
)


class Group(Base):
    """Tenant scope: every reminder belongs to exactly one group."""
    __tablename__ = "groups"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(128), nullable=False)

    members = relationship("User", secondary=group_memberships, back_populates="groups")
    reminders = relationship("Reminder", back_populates="group", cascade="all, delete-orphan")
