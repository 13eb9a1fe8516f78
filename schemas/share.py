from datetime import datetime
from typing import Any, Dict, List, Literal, Optional
from pydantic import BaseModel, Field


class CreateShareRequest(BaseModel):
    """Share a single path or, with ``items``, a collection."""

    path: Optional[str] = None
    itemName: Optional[str] = None
    type: Literal["timed", "session"] = "timed"
    expiresIn: Optional[str] = Field(None, description="Lifetime such as '30m', '7d' or '2w'")
    loginRequired: bool = False
    items: Optional[List[Dict[str, Any]]] = None

    class Config:
        json_schema_extra = {
            "example": {
                "path": "/folder/1AbCdEf",
                "itemName": "Holiday photos",
                "type": "timed",
                "expiresIn": "7d",
                "loginRequired": False,
            }
        }


class RevokeShareRequest(BaseModel):
    jti: str = Field(..., min_length=1)
    expiresAt: datetime


class DeleteShareRequest(BaseModel):
    id: str = Field(..., min_length=1)
    jti: str = Field(..., min_length=1)
    expiresAt: datetime


class ShareTokenRequest(BaseModel):
    shareToken: Optional[str] = None
