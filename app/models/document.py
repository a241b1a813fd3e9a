from sqlalchemy import Column, Integer, String, Text, Numeric, Date, DateTime, ForeignKey, func
from sqlalchemy.orm import relationship
from core.db import Base

DOCUMENT_TYPES = ("title", "registration", "insurance", "receipt", "manual", "other")

class VehicleDocument(Base):
    __tablename__ = "vehicle_documents"
    id = Column(Integer, primary_key=True, index=True)
    vehicle_id = Column(Integer, ForeignKey("vehicles.id", ondelete="CASCADE"), nullable=False, index=True)
    title = Column(String, nullable=False)
    document_type = Column(String, nullable=False, default="other")  # see DOCUMENT_TYPES
    expiration_date = Column(Date, nullable=True)
    cost = Column(Numeric(12, 2), nullable=True)
    notes = Column(Text, nullable=True)
    storage_path = Column(String, nullable=False)
    file_name = Column(String, nullable=False)
    file_type = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    vehicle = relationship("Vehicle", back_populates="documents")
