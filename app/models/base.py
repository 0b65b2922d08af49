"""
Base model class with common fields
"""

from sqlalchemy import Column, DateTime, Uuid, func
import uuid

from app.core.clock import local_now
from app.core.database import Base


class BaseModel(Base):
    """
    Abstract base model with common fields
    """
    __abstract__ = True

    id = Column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
        nullable=False
    )
    # Python-side default keeps sub-second precision on every backend;
    # queue ordering depends on it.
    created_at = Column(
        DateTime,
        default=local_now,
        server_default=func.now(),
        nullable=False
    )
    updated_at = Column(
        DateTime,
        default=local_now,
        onupdate=local_now,
        server_default=func.now(),
        nullable=False
    )
