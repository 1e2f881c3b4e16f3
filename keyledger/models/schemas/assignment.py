from datetime import datetime
from typing import Optional

from pydantic import Field

from .base import CamelModel


class AssignmentCreateModel(CamelModel):
    """Request to hand a key to a user. The actor is the authenticated caller."""

    key_id: int = Field(..., description="ID of the key to assign")
    assigned_to: int = Field(..., description="ID of the user receiving custody")


class AssignmentCreatedModel(CamelModel):
    id: int = Field(..., description="ID of the key assignment record")


class AssignmentModel(CamelModel):
    """A single custody record."""

    id: int
    key_id: int
    assigned_to: int
    assigned_by: int
    assigned_at: datetime
    returned_at: Optional[datetime] = Field(
        None, description="Null while the key is still out."
    )


class AssignmentHistoryModel(AssignmentModel):
    assigned_to_display: str = Field(..., description="Email of the holder")
    assigned_by_display: str = Field(..., description="Email of the assigning user")
