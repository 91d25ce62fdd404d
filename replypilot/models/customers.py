from __future__ import annotations

from datetime import datetime
from uuid import UUID, uuid4

from sqlalchemy import Boolean, DateTime, ForeignKey, Integer, Text
from sqlalchemy.orm import Mapped, mapped_column

from replypilot.models.base import Base, utcnow


class Customer(Base):
    __tablename__ = "customers"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    # NULL means "use the platform default provider".
    sms_provider: Mapped[str | None] = mapped_column(Text, nullable=True)
    fonecloud_sender_id: Mapped[str | None] = mapped_column(Text, nullable=True)
    # Mirrors fonecloud_numbers.customer_id; no FK to keep the two tables acyclic.
    fonecloud_number_id: Mapped[UUID | None] = mapped_column(nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)


class PhoneNumber(Base):
    """A carrier number (Twilio) owned by a customer."""

    __tablename__ = "phone_numbers"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    customer_id: Mapped[UUID] = mapped_column(
        ForeignKey("customers.id", ondelete="CASCADE"), nullable=False
    )
    phone_number: Mapped[str] = mapped_column(Text, nullable=False, index=True)
    provider_sid: Mapped[str | None] = mapped_column(Text, nullable=True)
    friendly_name: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    released_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class FonecloudNumber(Base):
    """Pool entry; `customer_id IS NULL` means the number is free."""

    __tablename__ = "fonecloud_numbers"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    phone_number: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    customer_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("customers.id", ondelete="SET NULL"), nullable=True
    )
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    allocated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    released_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)


class AiSettings(Base):
    __tablename__ = "ai_settings"

    customer_id: Mapped[UUID] = mapped_column(
        ForeignKey("customers.id", ondelete="CASCADE"), primary_key=True
    )
    auto_response_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    auto_response_delay_seconds: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    debounce_window_seconds: Mapped[int | None] = mapped_column(Integer, nullable=True)


class NotificationPreference(Base):
    __tablename__ = "notification_preferences"

    customer_id: Mapped[UUID] = mapped_column(
        ForeignKey("customers.id", ondelete="CASCADE"), primary_key=True
    )
    email_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    email: Mapped[str | None] = mapped_column(Text, nullable=True)
    email_new_lead: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    email_new_message: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    sms_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    sms_phone: Mapped[str | None] = mapped_column(Text, nullable=True)
    sms_new_lead: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    sms_new_message: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
