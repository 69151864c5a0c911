from datetime import datetime
from typing import List, Optional

from pgvector.sqlalchemy import Vector
from sqlalchemy import DateTime, String
from sqlalchemy.orm import Mapped, mapped_column

from travelbot.core.config import settings


class EmbeddingMixin:
    """
    Nullable embedding columns shared by every searchable table.

    Rows with embedding IS NULL are invisible to similarity search.
    Dimension follows EMBEDDING_DIM; changing it needs a migration
    that ALTERs the column, then a re-run of embed-all.
    """

    embedding: Mapped[Optional[List[float]]] = mapped_column(
        Vector(settings.EMBEDDING_DIM), nullable=True
    )
    embedding_model: Mapped[Optional[str]] = mapped_column(String(120), nullable=True)
    embedding_updated_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
