"""
db/models/feature_flag.py

Runtime feature toggles with optional role targeting.
"""

from __future__ import annotations

import uuid

from sqlalchemy import Boolean, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from db.base import Base, JSONType, TimestampMixin


class FeatureFlag(Base, TimestampMixin):
    __tablename__ = "feature_flags"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    key: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    is_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    enabled_for_roles: Mapped[list[str] | None] = mapped_column(
        JSONType,
        nullable=True,
        comment="Roles that see the flag enabled even when is_enabled is false",
    )
    description: Mapped[str | None] = mapped_column(String(500), nullable=True)
