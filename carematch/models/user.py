"""User model definitions."""

from sqlalchemy import Column, Integer, String
from carematch.database import Base

USER_ROLES = ('family', 'educator', 'admin')


class User(Base):
    """Represents an application user."""
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String, unique=True, index=True)
    full_name = Column(String, nullable=True)
    role = Column(String)  # family/educator/admin
