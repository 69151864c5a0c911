from typing import TYPE_CHECKING, List, Optional

from sqlalchemy import String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from travelbot.db.session import Base
from travelbot.models.embedding import EmbeddingMixin

if TYPE_CHECKING:
    from travelbot.models.property import Property


class PropertyCategory(EmbeddingMixin, Base):
    """Lodging category: resort, boutique hotel, villa, hostel..."""

    __tablename__ = "property_categories"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(120), unique=True, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    properties: Mapped[List["Property"]] = relationship(back_populates="category")
