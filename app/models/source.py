import uuid

from sqlalchemy import Boolean, Column, DateTime, String, func
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import relationship

from app.database import Base


class Source(Base):
    """A connected upstream account (currently Shopify stores)."""

    __tablename__ = "sources"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(UUID(as_uuid=True), nullable=True, index=True)
    name = Column(String(255))
    source_type = Column(String(50), nullable=False)
    url = Column(String(255))  # Store domain
    # Opaque blob: {store_name, api_token} | {access_token, client_id, client_secret} | {credential_id}
    credentials = Column(JSONB)
    is_deleted = Column(Boolean, nullable=False, default=False, server_default="false")
    deletion_marked_at = Column(DateTime(timezone=True))
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    extractions = relationship("Extraction", back_populates="source")

    def __repr__(self):
        return f"<Source(id={self.id}, source_type='{self.source_type}', url='{self.url}')>"
