from sqlalchemy import Column, Integer, String, Text, Numeric, Date, DateTime, ForeignKey, func
from sqlalchemy.orm import relationship
from core.db import Base

SERVICE_CATEGORIES = ("maintenance", "repair", "upgrade", "inspection")

class ServiceRecord(Base):
    __tablename__ = "service_records"
    id = Column(Integer, primary_key=True, index=True)
    vehicle_id = Column(Integer, ForeignKey("vehicles.id", ondelete="CASCADE"), nullable=False, index=True)
    service_date = Column(Date, nullable=False)
    title = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    cost = Column(Numeric(12, 2), nullable=True)
    odometer = Column(Integer, nullable=True)
    shop_name = Column(String, nullable=True)
    category = Column(String, nullable=False, default="maintenance")  # see SERVICE_CATEGORIES
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    vehicle = relationship("Vehicle", back_populates="service_records")
    receipts = relationship("ServiceRecordReceipt", back_populates="service_record", cascade="all, delete-orphan")


class ServiceRecordReceipt(Base):
    __tablename__ = "service_record_receipts"
    id = Column(Integer, primary_key=True, index=True)
    service_record_id = Column(Integer, ForeignKey("service_records.id", ondelete="CASCADE"), nullable=False, index=True)
    storage_path = Column(String, nullable=False)
    file_name = Column(String, nullable=False)
    file_type = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    service_record = relationship("ServiceRecord", back_populates="receipts")
