from datetime import datetime, timezone
from typing import TYPE_CHECKING, List, Optional

from sqlalchemy import DateTime, Float, Integer, String, Text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship

from travelbot.db.session import Base
from travelbot.models.embedding import EmbeddingMixin

if TYPE_CHECKING:
    from travelbot.models.property import Property


class Destination(EmbeddingMixin, Base):
    __tablename__ = "destinations"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    country: Mapped[str] = mapped_column(String(120), nullable=False, index=True)
    city: Mapped[Optional[str]] = mapped_column(String(120), nullable=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Tag lists, lower-case: ["beach", "island"], ["tropical"], ["diving"]
    tags: Mapped[list] = mapped_column(JSONB, default=list, nullable=False)
    climate: Mapped[list] = mapped_column(JSONB, default=list, nullable=False)
    activities: Mapped[list] = mapped_column(JSONB, default=list, nullable=False)
    # Month numbers 1-12
    best_months_to_visit: Mapped[list] = mapped_column(JSONB, default=list, nullable=False)

    average_cost_per_day: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    # 0-100
    popularity_score: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    lat: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    lng: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    image_url: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False,
    )

    properties: Mapped[List["Property"]] = relationship(back_populates="destination")
