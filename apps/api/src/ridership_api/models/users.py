"""Rider accounts."""

from __future__ import annotations

from datetime import date  # noqa: TC003 - SQLAlchemy needs this at runtime for Mapped[date]
from typing import Optional

from sqlalchemy import CheckConstraint, Date, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from ridership_api.models.base import Base


class User(Base):
    """A rider whose trips are recorded in the ledger."""

    __tablename__ = "users"

    user_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    username: Mapped[str] = mapped_column(String(50), unique=True, nullable=False)
    email: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    phone: Mapped[Optional[str]] = mapped_column(String(15), nullable=True)
    registration_date: Mapped[date] = mapped_column(
        Date, nullable=False, default=date.today
    )
    date_of_birth: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    preferred_payment_method: Mapped[str] = mapped_column(
        String(20), nullable=False, default="card", server_default="card"
    )
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default="active", server_default="active"
    )

    __table_args__ = (
        CheckConstraint(
            "status IN ('active', 'suspended', 'inactive')", name="ck_users_status"
        ),
    )
