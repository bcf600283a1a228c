"""TargetSpec model: a named extraction scope."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, String
from sqlalchemy.orm import Mapped, mapped_column

from object_camp.models.base import Base, utcnow


class TargetSpec(Base):
    """A named extraction scope such as "doll" or "person:female".

    Subjects and entities of different specs live in independent universes:
    clustering and every mutation operate inside one spec at a time.
    """

    __tablename__ = "target_specs"

    spec_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    display_name: Mapped[str] = mapped_column(String(255))
    target_description: Mapped[str] = mapped_column(String(2048), default="")
    is_enabled: Mapped[bool] = mapped_column(default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
