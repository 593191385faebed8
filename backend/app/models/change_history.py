"""Change history model for AI-applied file edits."""
from sqlalchemy import Column, String, Text, Integer, Float, DateTime, Index, UniqueConstraint, JSON, Uuid, func
from sqlalchemy.dialects.postgresql import JSONB
import uuid
from app.database import Base
from app.constants import ChangeStatus


class ChangeHistory(Base):
    """Audit-and-revert record of one AI-applied file modification.

    Rows are never deleted. website_id carries no foreign key so the audit
    trail outlives the website itself.
    """
    __tablename__ = "change_history"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    website_id = Column(Uuid(as_uuid=True), nullable=False, index=True)
    file_name = Column(String(500), nullable=False)
    sequence = Column(Integer, nullable=False)  # Order within (website, file)
    description = Column(Text, nullable=False, default="")
    prompt = Column(Text, nullable=False)
    modification = Column(JSON().with_variant(JSONB(), "postgresql"), nullable=False)  # before/after/diff
    status = Column(String(20), nullable=False, default=ChangeStatus.PENDING, index=True)  # pending|applied|reverted
    confidence = Column(Float, nullable=True)
    processing_time_ms = Column(Integer, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    reverted_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        UniqueConstraint("website_id", "file_name", "sequence", name="uq_change_file_sequence"),
        Index("idx_change_website_file", "website_id", "file_name"),
    )
