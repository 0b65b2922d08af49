"""
Shared Pydantic configuration for waitlist request and response bodies
"""

from pydantic import BaseModel, ConfigDict
from uuid import UUID


class BaseSchema(BaseModel):
    # Responses are built from ORM rows; enums serialize as their values
    model_config = ConfigDict(
        from_attributes=True,
        use_enum_values=True,
        str_strip_whitespace=True,
    )


class IDSchema(BaseSchema):
    id: UUID
