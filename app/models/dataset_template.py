import uuid

from sqlalchemy import Column, DateTime, String, Text, func
from sqlalchemy.dialects.postgresql import JSONB, UUID

from app.database import Base


class DatasetTemplate(Base):
    """Pre-registered dataset definition, read-only to the extraction pipeline."""

    __tablename__ = "pre_datasettemplate"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    template_key = Column(String(100), unique=True, index=True)
    name = Column(String(255), nullable=False)
    description = Column(Text)
    source_type = Column(String(50))
    query_structure = Column(JSONB)  # {"query": "..."} for keys not registered in code
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    def __repr__(self):
        return f"<DatasetTemplate(id={self.id}, template_key='{self.template_key}')>"
