from __future__ import annotations

from datetime import datetime

from sqlalchemy import JSON, DateTime, String, func
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base


class StoreNode(Base):
    """One leaf of the hierarchical document tree, addressed by its slash path."""

    __tablename__ = "store_nodes"

    # e.g. "users/u1/referrals/u2/email"
    path: Mapped[str] = mapped_column(String(768), primary_key=True)
    value: Mapped[object] = mapped_column(JSON, nullable=False)

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )
