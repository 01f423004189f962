# filevault/models/file.py
import uuid

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import relationship

from filevault.models.database import Base, utcnow


class FileMeta(Base):
    __tablename__ = "files"

    id = Column(String(32), primary_key=True, default=lambda: uuid.uuid4().hex)
    original_name = Column(String, nullable=False)   # Name user uploaded
    stored_name = Column(String, nullable=False, unique=True)  # Name of the blob in storage
    location = Column(String, nullable=False)        # Path or s3:// url of the blob
    size_bytes = Column(Integer, nullable=False)     # Bytes actually written
    content_type = Column(String, nullable=False)
    uploaded_at = Column(DateTime, default=utcnow, nullable=False, index=True)
    is_public = Column(Boolean, default=False, nullable=False)

    owner_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)

    # Many files → one owner (User)
    owner = relationship("User", back_populates="files")

    def __repr__(self) -> str:
        return f"<FileMeta {self.id} {self.stored_name!r} owner={self.owner_id}>"
