"""Website model for uploaded web projects."""
from sqlalchemy import Column, String, Text, Integer, DateTime, JSON, Uuid, func
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import relationship
import uuid
from app.database import Base
from app.constants import BuildStatus, ProjectType, WebsiteStatus


class Website(Base):
    """A tenant's uploaded project and the persisted view of its preview runtime."""
    __tablename__ = "websites"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name = Column(String, unique=True, nullable=False, index=True)
    description = Column(Text, nullable=True)
    project_type = Column(String(20), nullable=False, default=ProjectType.STATIC)  # static|react|vite|react-vite
    status = Column(String(20), nullable=False, default=WebsiteStatus.ACTIVE, index=True)  # active|archived|draft
    structure = Column(JSON().with_variant(JSONB(), "postgresql"), nullable=True)

    # Runtime state, driven only by the supervisor and orchestrator
    build_status = Column(String(20), nullable=False, default=BuildStatus.PENDING, index=True)
    port = Column(Integer, nullable=True)
    preview_url = Column(String(500), nullable=True)
    last_build_at = Column(DateTime(timezone=True), nullable=True)
    build_duration_ms = Column(Integer, nullable=True)
    build_output = Column(JSON().with_variant(JSONB(), "postgresql"), nullable=True)  # Ring buffer snapshot

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    # Relationships
    files = relationship(
        "WebsiteFile",
        back_populates="website",
        cascade="all, delete-orphan",
        order_by="WebsiteFile.position",
    )

    @property
    def is_process_backed(self) -> bool:
        return self.project_type in ProjectType.PROCESS_BACKED
