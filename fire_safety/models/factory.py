"""
Factory model.

A factory is the tenant boundary: users belong to one factory, and
role assignments / permission overrides may be scoped to one.
"""

from __future__ import annotations

from sqlalchemy import Boolean, String
from sqlalchemy.orm import Mapped, mapped_column

from fire_safety.models.base import Base, TimestampMixin, UUIDPrimaryKeyMixin


class Factory(Base, UUIDPrimaryKeyMixin, TimestampMixin):
    __tablename__ = "factories"

    name: Mapped[str] = mapped_column(String(256), unique=True, nullable=False)
    address: Mapped[str | None] = mapped_column(String(512), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    def __repr__(self) -> str:
        return f"<Factory {self.name}>"
