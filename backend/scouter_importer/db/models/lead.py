"""SQLAlchemy model for scouter leads, the default import sink."""

from sqlalchemy import Column, Integer, String, Text, func
from sqlalchemy.types import DateTime

from scouter_importer.db.base import Base


class Lead(Base):
    __tablename__ = "leads"

    id = Column(Integer, primary_key=True)
    name = Column(String(255), nullable=False)
    age = Column(Integer)
    scouter = Column(String(255), index=True)
    project = Column(String(255))
    phone = Column(String(64))
    email = Column(String(255))
    approach_location = Column(Text)
    stage = Column(String(64))
    lead_date = Column(String(32))
    created_at = Column(DateTime(timezone=True), server_default=func.now())
