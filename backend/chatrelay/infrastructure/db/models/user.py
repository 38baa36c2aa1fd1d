"""
User Database Model

SQLModel table for registered users.
"""

from typing import Optional

from sqlmodel import Field

from chatrelay.infrastructure.db.models.base import BaseModel


class UserModel(BaseModel, table=True):
    """Maps to the 'users' table. Emails are stored lower-cased."""
    
    __tablename__ = "users"
    
    email: str = Field(max_length=255, unique=True, index=True, nullable=False)
    password_hash: str = Field(nullable=False)
    name: Optional[str] = Field(default=None, max_length=255)
