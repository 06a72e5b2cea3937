from sqlalchemy import Column, Integer, String, Text, DateTime
from sqlalchemy.sql import func
from clarifind.database import Base


class StorageEntry(Base):
    """A single named value, written wholesale on every change."""

    __tablename__ = "storage_entries"

    key = Column(String(200), primary_key=True)
    value = Column(Text, nullable=False)
    revision = Column(Integer, nullable=False, default=1)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
