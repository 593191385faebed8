"""Website file model."""
from sqlalchemy import Column, String, Text, Integer, DateTime, ForeignKey, UniqueConstraint, Uuid, func
from sqlalchemy.orm import relationship
import uuid
from app.database import Base


class WebsiteFile(Base):
    """One file of a website; its name doubles as the path inside the project."""
    __tablename__ = "website_files"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    website_id = Column(Uuid(as_uuid=True), ForeignKey("websites.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(500), nullable=False)
    content = Column(Text, nullable=False, default="")
    content_type = Column(String(100), nullable=False, default="text/plain")
    size = Column(Integer, nullable=False, default=0)  # UTF-8 bytes
    position = Column(Integer, nullable=False, default=0)  # Upload order
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    # Relationships
    website = relationship("Website", back_populates="files")

    __table_args__ = (
        UniqueConstraint("website_id", "name", name="uq_website_file_name"),
    )

    def set_content(self, content: str) -> None:
        """Replace the content and keep the size in sync."""
        self.content = content
        self.size = len(content.encode("utf-8"))
