"""
SQLAlchemy ORM models for database tables.

This module contains database table definitions using SQLAlchemy.
For Pydantic request/response schemas, see schemas.py.
"""

from sqlalchemy import CheckConstraint, Column, Integer, String, Text

from smssink.storage import Base


class Message(Base):
    """
    A sent or received message.

    Table: messages
    Primary Key: id (UUID generated server-side)
    """
    __tablename__ = "messages"

    id = Column(String, primary_key=True, index=True)
    created_at = Column(String, nullable=False, index=True)  # ISO-8601 UTC with microseconds
    sender = Column(String, nullable=False)
    recipient = Column(String, nullable=False)
    content = Column(Text, nullable=True)
    media_urls = Column(Text, nullable=False, default="[]")  # JSON-encoded list
    messaging_profile_id = Column(String, nullable=True)
    direction = Column(String, nullable=False)  # outbound | inbound


class Credential(Base):
    """Single-row table holding the shared API key."""
    __tablename__ = "credentials"
    __table_args__ = (CheckConstraint("id = 1", name="single_row"),)

    id = Column(Integer, primary_key=True, default=1)
    api_key = Column(String, nullable=False)
    updated_at = Column(String, nullable=False)


class LogEntry(Base):
    """
    Persisted application log entry shown in the UI log viewer.

    level: info, warning, error
    category: message, webhook, auth, system
    """
    __tablename__ = "logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    created_at = Column(String, nullable=False, index=True)
    level = Column(String, nullable=False, index=True)
    category = Column(String, nullable=False, index=True)
    message = Column(Text, nullable=False)
    details = Column(Text, nullable=True)  # JSON string with extra context


class Setting(Base):
    """Key/value runtime settings (e.g. debug_mode)."""
    __tablename__ = "settings"

    key = Column(String, primary_key=True)
    value = Column(String, nullable=False)
    updated_at = Column(String, nullable=False)
