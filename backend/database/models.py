from uuid import uuid4
from sqlalchemy import (
    Column,
    String,
    DateTime,
    Index,
)
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.sql import func
from database.base import Base


class GifTemplate(Base):
    """
    Saved GIF template.

    A source video plus the overlay variables drawn on it. Variables are
    stored as a JSON list of ``{name, value, styles}`` objects, in drawing
    order.
    """

    __tablename__ = "gif_templates"

    template_id = Column(
        UUID(as_uuid=True),
        unique=True,
        index=True,
        nullable=False,
        primary_key=True,
        default=uuid4,
    )
    name = Column(String, nullable=False)
    video_url = Column(String, nullable=True)
    gif_url = Column(String, nullable=True)  # last rendered preview
    variables = Column(JSONB, nullable=True)
    created_at = Column(DateTime, nullable=False, server_default=func.now())
    updated_at = Column(DateTime, nullable=False, server_default=func.now())

    __table_args__ = (Index("ix_gif_templates_created_at", created_at),)

    def __repr__(self):
        return f"<GifTemplate template_id={self.template_id} name={self.name} video_url={self.video_url}>"
