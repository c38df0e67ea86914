from sqlalchemy import Column, Integer, String
from sqlalchemy.orm import relationship

from reminder_service.db.base import Base
from .group import group_memberships


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    forename = Column(String(128), nullable=False)
    email = Column(String(256), nullable=True, index=True)

    # Relationships
    groups = relationship("Group", secondary=group_memberships, back_populates="members")
    subscriptions = relationship("Subscription", back_populates="user", cascade="all, delete-orphan")
