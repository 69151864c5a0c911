from sqlalchemy import Column, DateTime, Integer, String, Text, func
from pgvector.sqlalchemy import Vector

from travelbot.core.config import settings
from travelbot.db.session import Base


class QueryEmbedding(Base):
    """
    Logged destination-facet query vector at recommendation time.
    Used for offline analysis and re-tuning of thresholds.
    Written fire-and-forget, off the request path.
    """
    __tablename__ = "query_embeddings"

    id = Column(Integer, primary_key=True, index=True)

    user_id = Column(Integer, nullable=True, index=True)

    query_text = Column(Text, nullable=False)
    embedding = Column(Vector(settings.EMBEDDING_DIM), nullable=False)
    model_name = Column(String(120), nullable=False)

    created_at = Column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
