"""
User model
"""

from sqlalchemy import Column, String, Boolean, Enum
from sqlalchemy.orm import relationship
import enum

from app.models.base import BaseModel


class UserRole(str, enum.Enum):
    CUSTOMER = "customer"
    OWNER = "owner"
    ADMIN = "admin"


class User(BaseModel):
    """
    Account shared with the booking platform. Customers join waitlists;
    owners and admins release slots and read salon analytics.
    """
    __tablename__ = "users"

    email = Column(String(255), unique=True, nullable=False, index=True)
    first_name = Column(String(100))
    last_name = Column(String(100))
    phone = Column(String(20))
    role = Column(Enum(UserRole), default=UserRole.CUSTOMER, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    # Tier name synced from the loyalty program, e.g. "Gold Member"
    loyalty_tier = Column(String(50), nullable=True)

    salons = relationship("Salon", back_populates="owner")
    waitlist_entries = relationship("WaitlistEntry", back_populates="user")

    @property
    def full_name(self) -> str:
        return " ".join(part for part in (self.first_name, self.last_name) if part)

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN

    @property
    def is_salon_staff(self) -> bool:
        return self.role in (UserRole.OWNER, UserRole.ADMIN)

    def __repr__(self):
        return f"<User {self.email} ({self.role})>"
