from datetime import datetime

from sqlalchemy import Column, String, DateTime, JSON

from agent_directory.database import Base


class CapabilityRecord(Base):
    __tablename__ = "agent_capabilities"

    # Lower-cased agent name; the display casing lives in ``name``
    name_key = Column(String(32), primary_key=True)
    name = Column(String(32), nullable=False)
    capabilities = Column(JSON, nullable=False, default=list)
    description = Column(String(200), nullable=True)
    updated_at = Column(DateTime, default=datetime.utcnow, nullable=False)
