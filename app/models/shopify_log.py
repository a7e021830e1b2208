import uuid

from sqlalchemy import Column, DateTime, Integer, String, Text, func
from sqlalchemy.dialects.postgresql import JSONB, UUID

from app.database import Base


class ShopifyLog(Base):
    __tablename__ = "shopify_logs"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(UUID(as_uuid=True), nullable=True, index=True)
    store_name = Column(String(255))
    api_key = Column(String(255))
    error_message = Column(Text)
    # {operation, record_count, time_taken_ms, code}
    error_details = Column(JSONB)
    http_status = Column(Integer)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
