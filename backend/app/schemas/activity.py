"""
Activity log Pydantic schemas.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel


class ActivityResponse(BaseModel):
    id: int
    action: str
    actor_id: Optional[int]
    details: Dict[str, Any]
    timestamp: datetime

    class Config:
        from_attributes = True


class Pagination(BaseModel):
    page: int
    limit: int
    total: int
    pages: int

    @classmethod
    def build(cls, page: int, limit: int, total: int) -> "Pagination":
        return cls(page=page, limit=limit, total=total, pages=(total + limit - 1) // limit)


class ActivityListResponse(BaseModel):
    activities: List[ActivityResponse]
    pagination: Pagination
