"""Detected IP model: one row per attacker address seen in failed logons."""

from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base

STATUS_DETECTED = "detected"
STATUS_BLOCKED = "blocked"
STATUS_IGNORED = "ignored"
STATUSES = (STATUS_DETECTED, STATUS_BLOCKED, STATUS_IGNORED)


class DetectedIP(Base):
    __tablename__ = "detected_ips"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    ip: Mapped[str] = mapped_column(String(45), nullable=False, unique=True, index=True)
    first_detected: Mapped[datetime] = mapped_column(DateTime, nullable=False, index=True)
    last_seen: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    attempts: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), default=STATUS_DETECTED, nullable=False, index=True
    )
    threat_level: Mapped[str] = mapped_column(String(20), default="low", nullable=False)
    blocked_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    country: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    city: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
