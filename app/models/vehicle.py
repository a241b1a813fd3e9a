from sqlalchemy import Column, Integer, String, Text, Numeric, Date, DateTime, ForeignKey, JSON, func
from sqlalchemy.orm import relationship
from core.db import Base

VEHICLE_TYPES = ("motorcycle", "car", "boat", "trailer", "other")
VEHICLE_STATUSES = ("active", "sold", "traded", "maintenance")

class Vehicle(Base):
    __tablename__ = "vehicles"
    id = Column(Integer, primary_key=True, index=True)
    collection_id = Column(Integer, ForeignKey("collections.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String, nullable=False)
    vehicle_type = Column(String, nullable=False, default="motorcycle")  # see VEHICLE_TYPES
    make = Column(String, nullable=True)
    model = Column(String, nullable=True)
    year = Column(Integer, nullable=True)
    nickname = Column(String, nullable=True)
    vin = Column(String, nullable=True)
    plate_number = Column(String, nullable=True)
    mileage = Column(String, nullable=True)  # free text, e.g. "12,400"
    tab_expiration = Column(Date, nullable=True)
    status = Column(String, nullable=False, default="active")  # see VEHICLE_STATUSES
    purchase_price = Column(Numeric(12, 2), nullable=True)
    purchase_date = Column(Date, nullable=True)
    estimated_value = Column(Numeric(12, 2), nullable=True)
    sale_info = Column(JSON, nullable=True)  # {type, date, amount, notes}
    notes = Column(Text, nullable=True)
    maintenance_notes = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    collection = relationship("Collection", back_populates="vehicles")
    photos = relationship("Photo", back_populates="vehicle", cascade="all, delete-orphan")
    documents = relationship("VehicleDocument", back_populates="vehicle", cascade="all, delete-orphan")
    service_records = relationship("ServiceRecord", back_populates="vehicle", cascade="all, delete-orphan")
    mileage_history = relationship("MileageEntry", back_populates="vehicle", cascade="all, delete-orphan")
    value_history = relationship("ValueEntry", back_populates="vehicle", cascade="all, delete-orphan")
