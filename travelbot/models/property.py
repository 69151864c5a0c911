from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import DateTime, ForeignKey, Integer, SmallInteger, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from travelbot.db.session import Base
from travelbot.models.amenity import Amenity, property_amenities
from travelbot.models.category import PropertyCategory
from travelbot.models.destination import Destination
from travelbot.models.embedding import EmbeddingMixin


class Property(EmbeddingMixin, Base):
    """A lodging property (hotel, resort, villa) located in one destination."""

    __tablename__ = "properties"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    destination_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("destinations.id", ondelete="SET NULL"), nullable=True, index=True
    )
    category_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("property_categories.id", ondelete="SET NULL"), nullable=True, index=True
    )
    star_rating: Mapped[Optional[int]] = mapped_column(SmallInteger, nullable=True)
    total_rooms: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )

    destination: Mapped[Optional[Destination]] = relationship(back_populates="properties")
    category: Mapped[Optional[PropertyCategory]] = relationship(back_populates="properties")
    amenities: Mapped[List[Amenity]] = relationship(
        secondary=property_amenities, back_populates="properties"
    )
