"""Settings model - deployment overrides for governor tunables."""
from datetime import datetime
from sqlalchemy import Column, String, DateTime, Text
from wa_governor.db.base import Base


class Settings(Base):
    """Key-value settings store. Values are JSON-serialized."""

    __tablename__ = "settings"

    key = Column(String(100), primary_key=True)
    value_json = Column(Text, nullable=True)
    description = Column(Text, nullable=True)
    updated_by = Column(String(255), nullable=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    def __repr__(self) -> str:
        return f"<Settings(key='{self.key}')>"
