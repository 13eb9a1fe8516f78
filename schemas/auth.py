from typing import Optional
from pydantic import BaseModel, Field


class FolderAuthRequest(BaseModel):
    folderId: Optional[str] = None
    id: Optional[str] = None
    password: Optional[str] = None


class TwoFactorCodeRequest(BaseModel):
    token: str = Field(..., min_length=6, max_length=8, description="6-digit TOTP code")


class SetupFinishRequest(BaseModel):
    clientId: str = Field(..., min_length=1)
    clientSecret: str = Field(..., min_length=1)
    authCode: str = Field(..., min_length=1)
    redirectUri: str = Field(..., min_length=1)
    rootFolderId: str = Field(..., min_length=1)
