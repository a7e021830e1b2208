import uuid

from sqlalchemy import Boolean, Column, DateTime, String, func
from sqlalchemy.dialects.postgresql import UUID

from app.database import Base


class ShopifyCredential(Base):
    """Shared credential record, looked up by `credentials.credential_id` or the source id."""

    __tablename__ = "shopify_credentials"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(UUID(as_uuid=True), nullable=True, index=True)
    store_name = Column(String(255))
    api_key = Column(String(255))  # a.k.a. client_id
    api_secret = Column(String(255))  # a.k.a. client_secret
    api_token = Column(String(255))  # a.k.a. access_token
    last_connection_status = Column(Boolean)  # result of the last connection test
    last_connection_time = Column(DateTime(timezone=True))
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    def __repr__(self):
        return f"<ShopifyCredential(id={self.id}, store_name='{self.store_name}')>"
