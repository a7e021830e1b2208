import enum
import uuid

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, Text, func
from sqlalchemy import Enum as SQLAlchemyEnum
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import relationship

from app.database import Base


class ExtractionStatus(enum.Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (ExtractionStatus.COMPLETED, ExtractionStatus.FAILED)

    def can_transition_to(self, new_status: "ExtractionStatus") -> bool:
        return new_status in ALLOWED_STATUS_TRANSITIONS[self]


# RUNNING -> RUNNING is a progress update, not a restart.
ALLOWED_STATUS_TRANSITIONS: dict[ExtractionStatus, frozenset[ExtractionStatus]] = {
    ExtractionStatus.PENDING: frozenset(
        {ExtractionStatus.RUNNING, ExtractionStatus.FAILED}
    ),
    ExtractionStatus.RUNNING: frozenset(
        {ExtractionStatus.RUNNING, ExtractionStatus.COMPLETED, ExtractionStatus.FAILED}
    ),
    ExtractionStatus.COMPLETED: frozenset(),
    ExtractionStatus.FAILED: frozenset(),
}


class DatasetType(str, enum.Enum):
    PREDEFINED = "predefined"
    DEPENDENT = "dependent"
    CUSTOM = "custom"


class Extraction(Base):
    __tablename__ = "extractions"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(UUID(as_uuid=True), nullable=True, index=True)
    source_id = Column(
        UUID(as_uuid=True), ForeignKey("sources.id"), nullable=False, index=True
    )
    dataset_type = Column(String(20), nullable=False, default=DatasetType.CUSTOM.value)
    template_name = Column(String(255))  # template_key or dependent template name
    custom_query = Column(Text)
    record_limit = Column(Integer)
    status = Column(
        SQLAlchemyEnum(ExtractionStatus),
        nullable=False,
        default=ExtractionStatus.PENDING,
        index=True,
    )
    progress = Column(Integer, nullable=False, default=0)
    status_message = Column(Text)
    error_code = Column(String(50))
    result_data = Column(JSONB)  # Populated only once completed
    record_count = Column(Integer)
    started_at = Column(DateTime(timezone=True))
    completed_at = Column(DateTime(timezone=True))
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    source = relationship("Source", back_populates="extractions")

    def __repr__(self):
        return f"<Extraction(id={self.id}, source_id={self.source_id}, status='{self.status.value}')>"
