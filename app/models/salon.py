"""
Salon, Service and Staff models
"""

from sqlalchemy import Column, String, Integer, Boolean, ForeignKey, Uuid
from sqlalchemy.orm import relationship

from app.models.base import BaseModel


class Salon(BaseModel):
    """
    Salon accepting bookings
    """
    __tablename__ = "salons"

    name = Column(String(255), nullable=False)
    owner_id = Column(Uuid(as_uuid=True), ForeignKey("users.id"), nullable=False, index=True)
    is_active = Column(Boolean, default=True, nullable=False)
    image_url = Column(String(500))

    # Relationships
    owner = relationship("User", back_populates="salons")
    services = relationship("Service", back_populates="salon", cascade="all, delete-orphan")
    staff = relationship("Staff", back_populates="salon", cascade="all, delete-orphan")

    def __repr__(self):
        return f"<Salon(id={self.id}, name={self.name}, active={self.is_active})>"


class Service(BaseModel):
    """
    Service sold by a salon
    """
    __tablename__ = "services"

    salon_id = Column(Uuid(as_uuid=True), ForeignKey("salons.id"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    price_in_paisa = Column(Integer)
    duration_minutes = Column(Integer)

    salon = relationship("Salon", back_populates="services")

    def __repr__(self):
        return f"<Service(id={self.id}, name={self.name}, price={self.price_in_paisa})>"


class Staff(BaseModel):
    """
    Staff member employed at a salon
    """
    __tablename__ = "staff"

    salon_id = Column(Uuid(as_uuid=True), ForeignKey("salons.id"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)

    salon = relationship("Salon", back_populates="staff")

    def __repr__(self):
        return f"<Staff(id={self.id}, name={self.name})>"
