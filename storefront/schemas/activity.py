from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel, field_validator


class ActivityLogResponse(BaseModel):
    id: int
    user_id: int
    username: str
    activity_type: str
    details: Dict[str, Any]
    source_address: Optional[str] = None
    timestamp: datetime

    @field_validator("activity_type", mode="before")
    @classmethod
    def activity_type_value(cls, value):
        return getattr(value, "value", value)

    class Config:
        from_attributes = True
