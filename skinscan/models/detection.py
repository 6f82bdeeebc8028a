from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, Float, Index, Integer, JSON, String, Text

from .base import Base


class Detection(Base):
    """One stored analysis of an uploaded skin image.

    ``result`` is the parsed model output and the source of truth; the
    ``condition``/``confidence``/``advice``/``urgency``/``medications``
    columns are copied out of it once, at creation, for aggregate queries.
    Rows are never updated.
    """

    __tablename__ = "detections"

    id = Column(Integer, primary_key=True)
    user_id = Column(String, nullable=False)
    image_url = Column(Text, nullable=False)
    image_meta = Column(JSON(none_as_null=True), nullable=True)
    description = Column(Text, nullable=False, default="")
    model_name = Column(String, nullable=False, default="")
    completion_id = Column(String, nullable=False, default="")
    result = Column(JSON(none_as_null=True), nullable=True)
    condition = Column(String, nullable=False, default="")
    confidence = Column(Float, nullable=True)
    advice = Column(Text, nullable=False, default="")
    urgency = Column(String, nullable=False, default="")
    medications = Column(JSON(none_as_null=True), nullable=True)
    raw = Column(Text, nullable=False)
    created_at = Column(
        DateTime, nullable=False, default=lambda: datetime.now(timezone.utc)
    )

    __table_args__ = (
        Index("ix_detections_user_created", "user_id", "created_at"),
    )
