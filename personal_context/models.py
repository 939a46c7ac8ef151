"""
Table models for the personal context store.

One table per entity kind. Columns prefixed encrypted_ hold a JSON envelope
{"iv": ..., "content": ...} produced by crypto.FieldCipher; they are never
written in plaintext. Everything else is plaintext because it is filtered,
sorted or searched on. List-valued plaintext fields are JSON text.

Timestamps are ISO-8601 UTC strings with a fixed width, so they sort lexically.
user_id references users.id but is not enforced and never cascades.
"""
from sqlalchemy import Column, ForeignKey, Index, String, Text

from personal_context.database import Base


class User(Base):
    """
    - email: unique, searchable.
    - name: searchable.
    - encrypted_preferences: the whole preferences map.
    """
    __tablename__ = "users"

    id = Column(String(32), primary_key=True)
    email = Column(String(255), unique=True, nullable=False)
    name = Column(String(255), nullable=False)
    encrypted_preferences = Column(Text, nullable=False)
    created_at = Column(String(32), nullable=False)
    updated_at = Column(String(32), nullable=False)

    __table_args__ = (Index("idx_users_email", "email"),)


class Contact(Base):
    """encrypted_data holds {emails, phoneNumbers, addresses, relationships, metadata}."""
    __tablename__ = "contacts"

    id = Column(String(32), primary_key=True)
    user_id = Column(String(32), ForeignKey("users.id"), nullable=False)
    first_name = Column(String(255), nullable=False)
    last_name = Column(String(255), nullable=False)
    encrypted_data = Column(Text, nullable=False)
    created_at = Column(String(32), nullable=False)
    updated_at = Column(String(32), nullable=False)

    __table_args__ = (
        Index("idx_contacts_user", "user_id"),
        Index("idx_contacts_name", "first_name", "last_name"),
    )


class Email(Base):
    __tablename__ = "emails"

    id = Column(String(32), primary_key=True)
    user_id = Column(String(32), ForeignKey("users.id"), nullable=False)
    subject = Column(Text, nullable=False)
    encrypted_body = Column(Text, nullable=False)
    sender = Column(String(255), nullable=False)
    recipients = Column(Text, nullable=False)
    thread_id = Column(String(255), nullable=True)
    labels = Column(Text, nullable=False)
    encrypted_attachments = Column(Text, nullable=False)
    created_at = Column(String(32), nullable=False)
    updated_at = Column(String(32), nullable=False)

    __table_args__ = (
        Index("idx_emails_user", "user_id"),
        Index("idx_emails_thread", "thread_id"),
    )


class CalendarItem(Base):
    __tablename__ = "calendar_items"

    id = Column(String(32), primary_key=True)
    user_id = Column(String(32), ForeignKey("users.id"), nullable=False)
    title = Column(String(255), nullable=False)
    encrypted_description = Column(Text, nullable=False)
    start_time = Column(String(64), nullable=False)
    end_time = Column(String(64), nullable=False)
    location = Column(String(255), nullable=True)
    attendees = Column(Text, nullable=False)
    recurrence = Column(String(255), nullable=True)
    encrypted_metadata = Column(Text, nullable=False)
    created_at = Column(String(32), nullable=False)
    updated_at = Column(String(32), nullable=False)

    __table_args__ = (
        Index("idx_calendar_user", "user_id"),
        Index("idx_calendar_time", "start_time", "end_time"),
    )


class OAuthToken(Base):
    """encrypted_tokens holds {accessToken, refreshToken, metadata}; provider, scopes, expiry stay plaintext."""
    __tablename__ = "oauth_tokens"

    id = Column(String(32), primary_key=True)
    user_id = Column(String(32), ForeignKey("users.id"), nullable=False)
    provider = Column(String(64), nullable=False)
    encrypted_tokens = Column(Text, nullable=False)
    scopes = Column(Text, nullable=False)
    expires_at = Column(String(64), nullable=False)
    created_at = Column(String(32), nullable=False)
    updated_at = Column(String(32), nullable=False)

    __table_args__ = (
        Index("idx_oauth_user", "user_id"),
        Index("idx_oauth_provider", "provider"),
    )
