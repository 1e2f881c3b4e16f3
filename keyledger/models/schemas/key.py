from datetime import datetime
from typing import Optional

from pydantic import ConfigDict, Field

from keyledger.models.orm.key import KeyState
from .base import CamelModel


class KeyCreateModel(CamelModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    identifier: str = Field(..., min_length=1, description="Key identifier, e.g. 'K-100'")


class KeyCreatedModel(CamelModel):
    id: int
    identifier: str


class KeyModel(CamelModel):
    """An active key and whether it is currently out."""

    id: int
    identifier: str
    is_active: bool
    created_at: datetime
    state: KeyState
    current_assignment_id: Optional[int] = None
    current_holder_id: Optional[int] = None
